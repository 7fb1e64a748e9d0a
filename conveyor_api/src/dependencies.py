from fastapi import HTTPException, Request

from conveyor_api.src.services.github import PullRequestFiles
from conveyor_controller.src.controller import Controller

def get_controller(request: Request) -> Controller:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Controller is not running")
    return controller

def get_pull_request_files(request: Request) -> PullRequestFiles:
    files = getattr(request.app.state, "pull_request_files", None)
    if files is None:
        raise HTTPException(status_code=503, detail="GitHub client is not running")
    return files
