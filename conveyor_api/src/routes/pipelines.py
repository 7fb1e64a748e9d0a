from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional

from conveyor_api.src.dependencies import get_controller
from conveyor_api.src.models.run import (
    ManualTriggerRequest,
    PipelineResponse,
    PipelineRunResponse,
    TriggerResponse,
)
from conveyor_controller.src.controller import Controller
from conveyor_controller.src.models.run import EventKind, TriggerEvent
from conveyor_controller.src.services.scheduler import SchedulerStoppedError

router = APIRouter(prefix="/pipelines", tags=["pipelines"])

@router.get("", response_model=List[PipelineResponse])
async def list_pipelines(controller: Controller = Depends(get_controller)):
    """List loaded pipeline definitions."""
    return [
        PipelineResponse(
            name=d.name,
            description=d.description,
            steps=[step.name for step in d.steps],
            branches=[str(rule) for rule in d.trigger.branches],
            paths=[str(rule) for rule in d.trigger.paths],
            artifacts=[f"{a.source} => {a.target}" if a.target else a.source for a in d.artifacts],
            timeout_seconds=d.timeout_seconds,
        )
        for d in controller.definitions
    ]

@router.get("/runs", response_model=List[PipelineRunResponse])
async def list_runs(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    pipeline: Optional[str] = None,
    controller: Controller = Depends(get_controller),
):
    """List recent pipeline runs, newest first."""
    runs = [handle.run for handle in reversed(controller.scheduler.runs.values())]

    if status:
        runs = [run for run in runs if run.state.value == status]
    if pipeline:
        runs = [run for run in runs if run.pipeline == pipeline]

    return [PipelineRunResponse.from_run(run) for run in runs[offset:offset + limit]]

@router.post("/runs", response_model=TriggerResponse, status_code=202)
async def trigger_run(request: ManualTriggerRequest, controller: Controller = Depends(get_controller)):
    """Start a pipeline by hand, bypassing its trigger filter."""
    definition = controller.scheduler.get_definition(request.pipeline)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Pipeline '{request.pipeline}' not found")

    event = TriggerEvent(
        kind=EventKind.MANUAL,
        ref=request.ref,
        commit_sha=request.commit_sha,
        repository=request.repository,
        clone_url=request.clone_url or f"https://github.com/{request.repository}.git",
        sender=request.triggered_by,
    )

    try:
        handle = await controller.scheduler.enqueue(definition, event)
    except SchedulerStoppedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return TriggerResponse(status="queued", event=EventKind.MANUAL, runs=[handle.run.id])

@router.get("/runs/{run_id}", response_model=PipelineRunResponse)
async def get_run(run_id: str, controller: Controller = Depends(get_controller)):
    """Get a specific pipeline run."""
    run = controller.scheduler.get_run(run_id)

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return PipelineRunResponse.from_run(run)

@router.get("/runs/{run_id}/logs")
async def get_run_logs(run_id: str, controller: Controller = Depends(get_controller)):
    """Get output for all executed steps of a pipeline run."""
    run = controller.scheduler.get_run(run_id)

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return {
        "run_id": run.id,
        "status": run.state.value,
        "steps": [
            {
                "name": step.name,
                "exit_code": step.exit_code,
                "logs": step.output,
                "error": step.error,
                "duration": step.duration,
            }
            for step in run.steps
        ]
    }

@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str, controller: Controller = Depends(get_controller)):
    """Cancel a queued or running pipeline run."""
    if controller.scheduler.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    if not await controller.scheduler.cancel(run_id):
        raise HTTPException(status_code=409, detail="Pipeline run already finished")

    return {"run_id": run_id, "status": "cancelled"}

@router.get("/history")
async def get_run_history(
    limit: int = 20,
    offset: int = 0,
    pipeline: Optional[str] = None,
    controller: Controller = Depends(get_controller),
):
    """List finished runs from the database."""
    return controller.recorder.recent_runs(limit=limit, offset=offset, pipeline=pipeline)

@router.get("/stats")
async def get_pipeline_stats(controller: Controller = Depends(get_controller)):
    """Get pipeline statistics."""
    stats = controller.recorder.stats()
    stats["pipelines"] = len(controller.definitions)
    stats["active_runs"] = len(controller.scheduler.active_runs())
    stats["queue_length"] = controller.scheduler.queue_length
    return stats
