from conveyor_controller.src.services.executor import StepExecutor, ExecutionError
from conveyor_controller.src.services.loader import (
    ConfigError,
    load_pipelines_file,
    parse_pipelines,
)
from conveyor_controller.src.services.run_recorder import RunRecorder
from conveyor_controller.src.services.runner import PipelineRunner, emit
from conveyor_controller.src.services.scheduler import (
    RunHandle,
    RunTimeoutError,
    Scheduler,
    SchedulerStoppedError,
)
from conveyor_controller.src.services.status_publisher import StatusPublisher, PublishError
from conveyor_controller.src.services.trigger import evaluate
from conveyor_controller.src.services.workspace import Workspace, CheckoutError

__all__ = [
    "StepExecutor",
    "ExecutionError",
    "ConfigError",
    "load_pipelines_file",
    "parse_pipelines",
    "RunRecorder",
    "PipelineRunner",
    "emit",
    "RunHandle",
    "RunTimeoutError",
    "Scheduler",
    "SchedulerStoppedError",
    "StatusPublisher",
    "PublishError",
    "evaluate",
    "Workspace",
    "CheckoutError",
]
