"""
Publish run status to GitHub's commit status API.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, Optional, Set, Tuple

import httpx

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.models.run import Run, RunState

logger = logging.getLogger(__name__)

COMMIT_STATES = {
    RunState.RUNNING: "pending",
    RunState.SUCCEEDED: "success",
    RunState.FAILED: "failure",
    RunState.TIMED_OUT: "failure",
    RunState.CANCELLED: "error",
}

class PublishError(Exception):
    """Raised when a commit status cannot be delivered."""
    pass

class _TransientError(Exception):
    pass

def describe(run: Run) -> str:
    """Short status description, GitHub caps it at 140 characters."""
    if run.state == RunState.RUNNING:
        text = "Build started"
    elif run.state == RunState.SUCCEEDED:
        text = "Build finished"
    elif run.state == RunState.FAILED:
        failed = run.steps[-1].name if run.steps else None
        text = f"Failed at step '{failed}'" if failed else f"Build failed: {run.error or 'unknown error'}"
    elif run.state == RunState.TIMED_OUT:
        text = "Build timed out"
    elif run.state == RunState.CANCELLED:
        text = run.error or "Build cancelled"
    else:
        text = run.state.value
    return text[:140]

class StatusPublisher:
    """
    Best-effort commit status delivery.

    Posts for the same (sha, context) are serialized so they land in
    transition order, and a state that was already delivered for the pair is
    not posted again. Only the `remember` most recently published pairs are
    kept for that check.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        context_prefix: Optional[str] = None,
        attempts: Optional[int] = None,
        backoff: Optional[float] = None,
        public_url: Optional[str] = None,
        contexts: Optional[Dict[str, str]] = None,
        remember: Optional[int] = None,
    ):
        settings = get_settings()
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.token = settings.github_token if token is None else token
        self.context_prefix = context_prefix or settings.status_context_prefix
        self.attempts = attempts or settings.publish_attempts
        self.backoff = settings.publish_backoff if backoff is None else backoff
        self.public_url = (settings.public_url if public_url is None else public_url).rstrip("/")
        self.contexts = dict(contexts or {})
        self._client = client or httpx.AsyncClient(timeout=10)
        self.remember = remember or settings.published_states_kept
        # Last delivered state per (sha, context), least recently used first
        self._delivered: "OrderedDict[Tuple[str, str], str]" = OrderedDict()
        # Locks exist only while a publish for the pair is in flight
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._waiters: Dict[Tuple[str, str], int] = {}
        self._pending: Set[asyncio.Task] = set()

    def context_for(self, pipeline: str) -> str:
        return self.contexts.get(pipeline) or f"{self.context_prefix}/{pipeline}"

    def __call__(self, run: Run):
        self.notify(run)

    def notify(self, run: Run):
        """Schedule publishing of the run's current state without waiting for it."""
        state = COMMIT_STATES.get(run.state)
        if state is None:
            return
        if not run.repository or not run.commit_sha:
            logger.debug(f"Run {run.id} has no repository or commit, not publishing")
            return

        task = asyncio.get_running_loop().create_task(self.publish(run.model_copy(deep=True), state))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self):
        """Wait for outstanding deliveries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self):
        await self.drain()
        await self._client.aclose()

    async def publish(self, run: Run, state: str):
        """Publish `state` for the run's commit. Never raises on delivery failure."""
        context = self.context_for(run.pipeline)
        key = (run.commit_sha, context)

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                await self._publish_locked(run, state, context, key)
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    async def _publish_locked(self, run: Run, state: str, context: str, key: Tuple[str, str]):
        if self._delivered.get(key) == state:
            self._delivered.move_to_end(key)
            logger.debug(f"Status {state} already published for {context}@{run.commit_sha[:12]}")
            return

        payload = {
            "state": state,
            "context": context,
            "description": describe(run),
        }
        if self.public_url:
            payload["target_url"] = f"{self.public_url}/api/pipelines/runs/{run.id}"

        try:
            await self._deliver(run.repository, run.commit_sha, payload)
        except PublishError as e:
            logger.error(f"Failed to publish {state} for run {run.id}: {e}")
            return

        self._delivered[key] = state
        self._delivered.move_to_end(key)
        while len(self._delivered) > self.remember:
            self._delivered.popitem(last=False)
        logger.info(f"Published {state} for {context}@{run.commit_sha[:12]}")

    async def _deliver(self, repository: str, commit_sha: str, payload: dict):
        url = f"{self.api_url}/repos/{repository}/statuses/{commit_sha}"
        headers = {
            "Accept": "application/vnd.github+json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        for attempt in range(1, self.attempts + 1):
            try:
                response = await self._client.post(url, json=payload, headers=headers)
                if response.status_code >= 500:
                    raise _TransientError(f"{response.status_code} {response.text}")
                if response.status_code >= 400:
                    raise PublishError(f"GitHub POST {url} -> {response.status_code} {response.text}")
                return
            except (httpx.TransportError, _TransientError) as e:
                if attempt == self.attempts:
                    raise PublishError(f"GitHub POST {url} failed after {attempt} attempts: {e}")
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning(f"Status delivery attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
