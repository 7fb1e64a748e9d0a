from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from conveyor_controller.src.models.run import EventKind, Run

class StepResponse(BaseModel):
    name: str
    position: int
    exit_code: int
    duration: float
    error: Optional[str] = None

class PipelineRunResponse(BaseModel):
    id: str
    pipeline: str
    repository: str
    commit_sha: str
    ref: str
    status: str
    trigger: str
    triggered_by: Optional[str] = None
    error: Optional[str] = None
    artifacts: List[str] = []
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    steps: List[StepResponse] = []

    @classmethod
    def from_run(cls, run: Run) -> "PipelineRunResponse":
        return cls(
            id=run.id,
            pipeline=run.pipeline,
            repository=run.repository,
            commit_sha=run.commit_sha,
            ref=run.ref,
            status=run.state.value,
            trigger=run.trigger.value,
            triggered_by=run.triggered_by,
            error=run.error,
            artifacts=run.artifacts,
            created_at=run.created_at,
            started_at=run.started_at,
            finished_at=run.finished_at,
            steps=[
                StepResponse(
                    name=step.name,
                    position=step.position,
                    exit_code=step.exit_code,
                    duration=step.duration,
                    error=step.error,
                )
                for step in run.steps
            ],
        )

class ManualTriggerRequest(BaseModel):
    pipeline: str
    ref: str = "refs/heads/main"
    commit_sha: str
    repository: str
    clone_url: Optional[str] = None
    triggered_by: Optional[str] = None

class PipelineResponse(BaseModel):
    name: str
    description: str
    steps: List[str]
    branches: List[str]
    paths: List[str]
    artifacts: List[str]
    timeout_seconds: float

class TriggerResponse(BaseModel):
    status: str
    event: Optional[EventKind] = None
    runs: List[str] = []
    reason: Optional[str] = None
