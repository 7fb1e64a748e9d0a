"""
Controller - wires the scheduler, runner, executor and status publisher.
"""

import logging
from typing import List, Optional

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.k8s.client import init_k8s_client, ensure_namespace
from conveyor_controller.src.models.pipeline import PipelineDefinition
from conveyor_controller.src.models.run import TriggerEvent
from conveyor_controller.src.services.executor import StepExecutor
from conveyor_controller.src.services.run_recorder import RunRecorder
from conveyor_controller.src.services.runner import PipelineRunner, RunObserver
from conveyor_controller.src.services.scheduler import RunHandle, Scheduler
from conveyor_controller.src.services.status_publisher import StatusPublisher
from conveyor_controller.src.services.workspace import Workspace

logger = logging.getLogger(__name__)

class Controller:
    def __init__(
        self,
        definitions: List[PipelineDefinition],
        runner: Optional[PipelineRunner] = None,
        publisher: Optional[StatusPublisher] = None,
        recorder: Optional[RunRecorder] = None,
        observers: Optional[List[RunObserver]] = None,
    ):
        self.definitions = list(definitions)
        self.publisher = publisher or StatusPublisher(
            contexts={d.name: d.status_context for d in self.definitions if d.status_context}
        )
        self.recorder = recorder or RunRecorder()
        self.runner = runner or PipelineRunner(StepExecutor(), Workspace())
        self.runner.observers.extend([self.publisher, self.recorder, *(observers or [])])
        self.scheduler = Scheduler(self.runner)

    async def start(self, connect_k8s: bool = True):
        """Connect to Kubernetes and begin accepting events."""
        if connect_k8s:
            if not init_k8s_client():
                raise RuntimeError("Failed to initialize Kubernetes client")
            ensure_namespace()
        await self.scheduler.start(self.definitions)

    async def stop(self, policy: Optional[str] = None):
        await self.scheduler.stop(policy)
        await self.runner.workspace.drain()
        await self.publisher.aclose()

    async def handle_event(self, event: TriggerEvent) -> List[RunHandle]:
        return await self.scheduler.handle_event(event)

def build_controller(definitions: List[PipelineDefinition], observers: Optional[List[RunObserver]] = None) -> Controller:
    settings = get_settings()
    logger.info(f"Kubernetes namespace: {settings.k8s_namespace}")
    logger.info(f"Max concurrent runs: {settings.max_concurrent_runs}")
    return Controller(definitions, observers=observers)
