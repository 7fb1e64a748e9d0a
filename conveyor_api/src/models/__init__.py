from conveyor_api.src.models.run import (
    StepResponse,
    PipelineRunResponse,
    ManualTriggerRequest,
    PipelineResponse,
    TriggerResponse,
)

__all__ = [
    "StepResponse",
    "PipelineRunResponse",
    "ManualTriggerRequest",
    "PipelineResponse",
    "TriggerResponse",
]
