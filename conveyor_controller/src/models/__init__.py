from conveyor_controller.src.models.pipeline import (
    FilterRule,
    TriggerFilter,
    ArtifactRule,
    StepSpec,
    PipelineDefinition,
)
from conveyor_controller.src.models.run import (
    RunState,
    TERMINAL_STATES,
    EventKind,
    RunStateError,
    TriggerEvent,
    StepResult,
    Run,
)

__all__ = [
    "FilterRule",
    "TriggerFilter",
    "ArtifactRule",
    "StepSpec",
    "PipelineDefinition",
    "RunState",
    "TERMINAL_STATES",
    "EventKind",
    "RunStateError",
    "TriggerEvent",
    "StepResult",
    "Run",
]
