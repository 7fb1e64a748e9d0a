"""
Run execution models.
"""

import uuid
from pydantic import BaseModel, Field
from typing import List, Optional, FrozenSet
from datetime import datetime
from enum import Enum

def utcnow() -> datetime:
    return datetime.utcnow()

class RunState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

TERMINAL_STATES = frozenset({
    RunState.SUCCEEDED,
    RunState.FAILED,
    RunState.TIMED_OUT,
    RunState.CANCELLED,
})

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"

class RunStateError(Exception):
    """Raised on a transition a Run does not allow."""
    pass

class TriggerEvent(BaseModel):
    kind: EventKind = EventKind.PUSH
    ref: str
    commit_sha: str
    changed_paths: Optional[FrozenSet[str]] = None
    repository: str = ""
    clone_url: str = ""
    sender: Optional[str] = None

class StepResult(BaseModel):
    name: str
    position: int
    exit_code: int
    output: str = ""
    duration: float = 0.0
    error: Optional[str] = None  # Set when the container could not run at all

    class Config:
        frozen = True

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

class Run(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    pipeline: str
    repository: str = ""
    clone_url: str = ""
    commit_sha: str
    ref: str
    trigger: EventKind = EventKind.PUSH
    triggered_by: Optional[str] = None
    state: RunState = RunState.QUEUED
    steps: List[StepResult] = []
    artifacts: List[str] = []
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def for_event(cls, pipeline: str, event: TriggerEvent) -> "Run":
        return cls(
            pipeline=pipeline,
            repository=event.repository,
            clone_url=event.clone_url,
            commit_sha=event.commit_sha,
            ref=event.ref,
            trigger=event.kind,
            triggered_by=event.sender,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def start(self):
        if self.state != RunState.QUEUED:
            raise RunStateError(f"Run {self.id} cannot start from {self.state.value}")
        self.state = RunState.RUNNING
        self.started_at = utcnow()

    def record(self, result: StepResult):
        """Append the result of the next step."""
        if self.state != RunState.RUNNING:
            raise RunStateError(f"Run {self.id} is {self.state.value}, cannot record steps")
        if result.position != len(self.steps):
            raise RunStateError(
                f"Run {self.id} expected step {len(self.steps)}, got {result.position}"
            )
        self.steps.append(result)

    def finish(self, state: RunState, error: Optional[str] = None):
        if self.is_terminal:
            raise RunStateError(f"Run {self.id} already finished as {self.state.value}")
        if state not in TERMINAL_STATES:
            raise RunStateError(f"{state.value} is not a terminal state")
        self.state = state
        self.error = error
        self.finished_at = utcnow()
