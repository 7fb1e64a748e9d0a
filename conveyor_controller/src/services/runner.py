"""
Pipeline runner - executes the steps of one run in order.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional

from conveyor_controller.src.models.pipeline import PipelineDefinition
from conveyor_controller.src.models.run import Run, RunState, StepResult
from conveyor_controller.src.services.executor import (
    EXECUTION_ERROR_EXIT_CODE,
    ExecutionError,
    StepExecutor,
)
from conveyor_controller.src.services.workspace import Workspace

logger = logging.getLogger(__name__)

RunObserver = Callable[[Run], None]

def emit(observers: Iterable[RunObserver], run: Run):
    """Tell every observer about a run transition. Observer faults never reach the run."""
    for observer in observers:
        try:
            observer(run)
        except Exception:
            logger.exception(f"Run observer {observer!r} failed for run {run.id}")

class PipelineRunner:
    def __init__(
        self,
        executor: Optional[StepExecutor] = None,
        workspace: Optional[Workspace] = None,
        observers: Optional[List[RunObserver]] = None,
    ):
        self.executor = executor or StepExecutor()
        self.workspace = workspace or Workspace()
        self.observers = observers if observers is not None else []

    async def run(self, definition: PipelineDefinition, run: Run) -> Run:
        """
        Execute a pipeline run.
        Stops at the first failing step; the run always ends in a terminal state
        that observers are told about.
        """
        run.start()
        logger.info(f"Starting run {run.id} of '{definition.name}' on {run.ref} with {len(definition.steps)} steps")
        emit(self.observers, run)

        workdir = None
        try:
            workdir = await self.workspace.checkout(run)
            await self._run_steps(definition, run, workdir)
        except asyncio.CancelledError:
            # Superseded or timed out runs are already finished by the scheduler
            if not run.is_terminal:
                run.finish(RunState.CANCELLED, error="Run interrupted")
                emit(self.observers, run)
            logger.warning(f"Run {run.id} of '{definition.name}' stopped as {run.state.value}")
            raise
        except Exception as e:
            logger.exception(f"Run {run.id} of '{definition.name}' failed")
            if not run.is_terminal:
                run.finish(RunState.FAILED, error=str(e))
        finally:
            if workdir:
                await asyncio.shield(asyncio.to_thread(self.workspace.cleanup, workdir))

        logger.info(f"Run {run.id} of '{definition.name}' finished with status: {run.state.value}")
        emit(self.observers, run)
        return run

    async def _run_steps(self, definition: PipelineDefinition, run: Run, workdir: str):
        for step in definition.steps:
            logger.info(f"Executing step {step.position}: {step.name}")

            try:
                result = await self.executor.execute(
                    step,
                    workdir,
                    run_id=run.id,
                    env=definition.env,
                    timeout=max(1, int(definition.timeout_seconds)),
                )
            except ExecutionError as e:
                logger.error(f"Step {step.position} ({step.name}) could not run: {e}")
                result = StepResult(
                    name=step.name,
                    position=step.position,
                    exit_code=EXECUTION_ERROR_EXIT_CODE,
                    error=str(e),
                )

            run.record(result)
            emit(self.observers, run)

            if not result.succeeded:
                logger.error(f"Step {step.position} ({step.name}) failed with exit code {result.exit_code}")
                run.finish(RunState.FAILED, error=result.error or f"Step '{step.name}' exited with {result.exit_code}")
                return

        run.artifacts = await asyncio.to_thread(
            self.workspace.collect_artifacts, run.id, workdir, definition.artifacts
        )
        run.finish(RunState.SUCCEEDED)
