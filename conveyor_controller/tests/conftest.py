"""Shared fakes for controller tests."""

import asyncio
from typing import Dict, List, Optional

import pytest

from conveyor_controller.src.models.pipeline import (
    ArtifactRule,
    FilterRule,
    PipelineDefinition,
    StepSpec,
    TriggerFilter,
)
from conveyor_controller.src.models.run import StepResult, TriggerEvent
from conveyor_controller.src.services.executor import ExecutionError
from conveyor_controller.src.services.workspace import CheckoutError

def make_definition(
    name: str = "Lint",
    steps: int = 2,
    branches=("+:pull/*", "+:refs/heads/main"),
    paths=(),
    artifacts=(),
    timeout: float = 300,
) -> PipelineDefinition:
    return PipelineDefinition(
        name=name,
        steps=tuple(
            StepSpec(name=f"step-{i + 1}", image="alpine:3", script=f"echo {i + 1}", position=i)
            for i in range(steps)
        ),
        trigger=TriggerFilter(
            branches=tuple(FilterRule.parse(rule) for rule in branches),
            paths=tuple(FilterRule.parse(rule) for rule in paths),
        ),
        artifacts=tuple(ArtifactRule.parse(rule) for rule in artifacts),
        timeout_seconds=timeout,
    )

def make_event(ref: str = "refs/heads/main", sha: str = "a" * 40, changed=None) -> TriggerEvent:
    return TriggerEvent(
        ref=ref,
        commit_sha=sha,
        changed_paths=frozenset(changed) if changed is not None else None,
        repository="acme/widgets",
        clone_url="https://github.com/acme/widgets.git",
    )

class FakeExecutor:
    """
    Executor double. `exit_codes` maps step names to exit codes, `blocking`
    names steps that hang until cancelled, `broken` names steps whose image
    cannot start.
    """

    def __init__(self, exit_codes: Optional[Dict[str, int]] = None, blocking=(), broken=()):
        self.exit_codes = exit_codes or {}
        self.blocking = set(blocking)
        self.broken = set(broken)
        self.executed: List[str] = []
        self.terminated: List[str] = []
        self.started = asyncio.Event()

    async def execute(self, step: StepSpec, workdir: str, run_id: str, env=None, timeout=None) -> StepResult:
        self.executed.append(step.name)
        self.started.set()
        if step.name in self.broken:
            raise ExecutionError(f"ErrImagePull: {step.image}")
        if step.name in self.blocking:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.terminated.append(step.name)
                raise
        return StepResult(
            name=step.name,
            position=step.position,
            exit_code=self.exit_codes.get(step.name, 0),
            output=f"output of {step.name}",
            duration=0.01,
        )

class FakeWorkspace:
    def __init__(self, fail_checkout: bool = False):
        self.fail_checkout = fail_checkout
        self.cleaned: List[str] = []
        self.collected: List[str] = []

    async def checkout(self, run) -> str:
        if self.fail_checkout:
            raise CheckoutError("Failed to clone repository: not found")
        return f"/tmp/ws/{run.id}"

    def cleanup(self, path: str):
        self.cleaned.append(path)

    async def drain(self):
        pass

    def collect_artifacts(self, run_id, workdir, rules) -> List[str]:
        self.collected.append(run_id)
        return [f"/tmp/artifacts/{run_id}/{rule.target}" for rule in rules if rule.target]

@pytest.fixture
def workspace():
    return FakeWorkspace()
