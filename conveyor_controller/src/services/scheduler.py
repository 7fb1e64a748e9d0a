"""
Scheduler - queues runs, supersedes stale ones and enforces timeouts.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.models.pipeline import FilterRule, PipelineDefinition
from conveyor_controller.src.models.run import Run, RunState, TriggerEvent
from conveyor_controller.src.services.runner import PipelineRunner, RunObserver, emit
from conveyor_controller.src.services.trigger import evaluate, ref_monitored

logger = logging.getLogger(__name__)

class RunTimeoutError(TimeoutError):
    """Raised when a run exceeds its pipeline's timeout budget."""
    pass

class SchedulerStoppedError(Exception):
    """Raised when a run is enqueued on a scheduler that is not accepting runs."""
    pass

class RunHandle:
    def __init__(self, definition: PipelineDefinition, run: Run):
        self.definition = definition
        self.run = run
        self.task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

    @property
    def key(self) -> Tuple[str, str]:
        return (self.run.pipeline, self.run.ref)

    def mark_done(self):
        self._done.set()

    async def wait(self) -> Run:
        """Wait until the run is finished and its task has wound down."""
        await self._done.wait()
        return self.run

class Scheduler:
    """
    Owns the (pipeline, ref) -> active run mapping. Every change to it happens
    under one lock, so a ref never has two active runs.
    """

    def __init__(
        self,
        runner: PipelineRunner,
        max_concurrent: Optional[int] = None,
        observers: Optional[List[RunObserver]] = None,
        shutdown_policy: Optional[str] = None,
        history_limit: Optional[int] = None,
        monitored_refs: Optional[Iterable[str]] = None,
    ):
        settings = get_settings()
        self.runner = runner
        self.max_concurrent = max_concurrent or settings.max_concurrent_runs
        self.observers = observers if observers is not None else runner.observers
        self.shutdown_policy = shutdown_policy or settings.shutdown_policy
        self.history_limit = history_limit or settings.run_history_limit
        self.monitored_refs = [
            FilterRule.parse(rule)
            for rule in (settings.monitored_refs if monitored_refs is None else monitored_refs)
        ]
        self.definitions: List[PipelineDefinition] = []
        self.runs: "OrderedDict[str, RunHandle]" = OrderedDict()
        self._active: Dict[Tuple[str, str], RunHandle] = {}
        self._queue: "asyncio.Queue[RunHandle]" = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._workers: List[asyncio.Task] = []
        self._accepting = False

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def queue_length(self) -> int:
        return self._queue.qsize()

    def active_runs(self) -> List[Run]:
        return [handle.run for handle in self._active.values() if not handle.run.is_terminal]

    def get_definition(self, name: str) -> Optional[PipelineDefinition]:
        for definition in self.definitions:
            if definition.name == name:
                return definition
        return None

    async def start(self, definitions: List[PipelineDefinition]):
        """Load definitions and start the worker slots."""
        self.definitions = list(definitions)
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker(slot), name=f"conveyor-slot-{slot}")
            for slot in range(self.max_concurrent)
        ]
        logger.info(f"Scheduler started with {len(self.definitions)} pipelines and {self.max_concurrent} slots")

    async def stop(self, policy: Optional[str] = None):
        """
        Stop accepting runs. 'drain' lets queued and running runs finish,
        'cancel' cancels them.
        """
        policy = policy or self.shutdown_policy
        async with self._lock:
            self._accepting = False
            if policy == "cancel":
                for handle in list(self._active.values()):
                    if not handle.run.is_terminal:
                        self._stop_run(handle, RunState.CANCELLED, "Scheduler shutting down")

        if self._workers:
            await self._queue.join()

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info(f"Scheduler stopped ({policy})")

    async def handle_event(self, event: TriggerEvent) -> List[RunHandle]:
        """Enqueue a run for every pipeline the event triggers."""
        if not ref_monitored(event.ref, self.monitored_refs):
            logger.info(f"Ignoring {event.kind.value} event for unmonitored ref {event.ref}")
            return []

        matches = evaluate(event, self.definitions)
        logger.info(f"{event.kind.value} event for {event.ref}@{event.commit_sha[:12]} matched {len(matches)} pipeline(s)")
        return [await self.enqueue(definition, event) for definition in matches]

    async def enqueue(self, definition: PipelineDefinition, event: TriggerEvent) -> RunHandle:
        """Queue a run, cancelling the active run for the same pipeline and ref."""
        run = Run.for_event(definition.name, event)
        handle = RunHandle(definition, run)

        async with self._lock:
            if not self._accepting:
                raise SchedulerStoppedError("Scheduler is not accepting runs")

            previous = self._active.get(handle.key)
            if previous is not None and not previous.run.is_terminal:
                logger.info(f"Run {previous.run.id} superseded by {run.id} on {run.ref}")
                self._stop_run(previous, RunState.CANCELLED, f"Superseded by run {run.id}")

            self._active[handle.key] = handle
            self._remember(handle)
            logger.info(f"Queued run {run.id} of '{definition.name}' for {run.ref}@{run.commit_sha[:12]}")
            emit(self.observers, run)
            self._queue.put_nowait(handle)

        return handle

    async def cancel(self, run_id: str) -> bool:
        """Cancel a queued or running run. Returns False if it already finished."""
        async with self._lock:
            handle = self.runs.get(run_id)
            if handle is None or handle.run.is_terminal:
                return False
            self._stop_run(handle, RunState.CANCELLED, "Cancelled by user")
            return True

    def get_run(self, run_id: str) -> Optional[Run]:
        handle = self.runs.get(run_id)
        return handle.run if handle else None

    def _remember(self, handle: RunHandle):
        self.runs[handle.run.id] = handle
        while len(self.runs) > self.history_limit:
            oldest_id, oldest = next(iter(self.runs.items()))
            if not oldest.run.is_terminal:
                break
            del self.runs[oldest_id]

    def _stop_run(self, handle: RunHandle, state: RunState, reason: str):
        """Finish a run from outside its task. Caller holds the lock."""
        handle.run.finish(state, error=reason)
        emit(self.observers, handle.run)
        if handle.task is not None:
            # The executor deletes the in-flight container on cancellation
            handle.task.cancel()
        else:
            handle.mark_done()

    def _release(self, handle: RunHandle):
        if self._active.get(handle.key) is handle:
            del self._active[handle.key]
        handle.mark_done()

    async def _worker(self, slot: int):
        while True:
            handle = await self._queue.get()
            try:
                if handle.run.is_terminal:
                    # Cancelled while queued
                    continue
                await self._execute(handle)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Slot {slot} failed while executing run {handle.run.id}")
            finally:
                async with self._lock:
                    self._release(handle)
                self._queue.task_done()

    async def _execute(self, handle: RunHandle):
        run = handle.run
        handle.task = asyncio.create_task(self.runner.run(handle.definition, run))
        budget = handle.definition.timeout_seconds

        try:
            done, _ = await asyncio.wait({handle.task}, timeout=budget)
        except asyncio.CancelledError:
            handle.task.cancel()
            await asyncio.wait({handle.task})
            raise

        if not done:
            error = RunTimeoutError(f"Run {run.id} exceeded its {budget:g}s timeout")
            logger.warning(str(error))
            async with self._lock:
                if not run.is_terminal:
                    self._stop_run(handle, RunState.TIMED_OUT, str(error))
            # Let the executor tear down the in-flight container
            await asyncio.wait({handle.task})

        if handle.task.cancelled():
            return

        failure = handle.task.exception()
        if failure is not None:
            logger.error(f"Run {run.id} crashed: {failure!r}")
            async with self._lock:
                if not run.is_terminal:
                    run.finish(RunState.FAILED, error=str(failure))
                    emit(self.observers, run)
