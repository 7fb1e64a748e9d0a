"""
GitHub webhook endpoints.
"""

from fastapi import APIRouter, Request, HTTPException, Header, Depends
from typing import Optional
import logging

from conveyor_api.src.dependencies import get_controller, get_pull_request_files
from conveyor_api.src.models.run import TriggerResponse
from conveyor_api.src.services.github import (
    verify_signature,
    parse_push_payload,
    parse_pull_request_payload,
    WebhookPayloadError,
    PullRequestFiles,
)
from conveyor_controller.src.controller import Controller
from conveyor_controller.src.models.run import EventKind
from conveyor_controller.src.services.scheduler import SchedulerStoppedError
from conveyor_controller.src.services.trigger import needs_changed_paths

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

PARSERS = {
    "push": parse_push_payload,
    "pull_request": parse_pull_request_payload,
}

@router.post("/github", response_model=TriggerResponse)
async def github_webhook(
    request: Request,
    controller: Controller = Depends(get_controller),
    pull_request_files: PullRequestFiles = Depends(get_pull_request_files),
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    # Get raw body for signature verification
    body = await request.body()

    if not verify_signature(body, x_hub_signature_256 or ""):
        raise HTTPException(status_code=401, detail="Invalid signature")

    # Parse JSON payload
    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if x_github_event == "ping":
        return TriggerResponse(status="pong", reason="Webhook configured successfully")

    parser = PARSERS.get(x_github_event or "")
    if parser is None:
        # Ignore other events
        return TriggerResponse(status="ignored", reason=f"Event type '{x_github_event}' not handled")

    try:
        event = parser(payload)
    except WebhookPayloadError as e:
        logger.warning(f"Rejected {x_github_event} payload: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if event is None:
        return TriggerResponse(status="skipped", reason="Nothing to build for this event")

    if event.kind == EventKind.PULL_REQUEST and needs_changed_paths(controller.definitions):
        event = await pull_request_files.resolve(event)

    try:
        handles = await controller.handle_event(event)
    except SchedulerStoppedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not handles:
        logger.info(f"No pipeline triggered by {event.ref}")
        return TriggerResponse(status="skipped", event=event.kind, reason=f"No pipeline triggered by {event.ref}")

    return TriggerResponse(
        status="queued",
        event=event.kind,
        runs=[handle.run.id for handle in handles],
    )
