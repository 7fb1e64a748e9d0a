"""Tests for the Kubernetes step executor."""

import asyncio
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from conveyor_controller.src.k8s.client import delete_job, ensure_namespace
from conveyor_controller.src.k8s.job_builder import build_job, build_job_name, get_job_status
from conveyor_controller.src.models.pipeline import StepSpec
from conveyor_controller.src.services.executor import ExecutionError, StepExecutor
from conveyor_controller.src.services.log_collector import mount_failure, truncate_output

STEP = StepSpec(name="Run ESLint", image="node:20-alpine", script="npm run lint", position=1)

def job_with(succeeded=None, failed=None, active=None):
    return client.V1Job(status=client.V1JobStatus(succeeded=succeeded, failed=failed, active=active))

def pod_with(terminated_exit=None, waiting_reason=None):
    state = client.V1ContainerState(
        terminated=client.V1ContainerStateTerminated(exit_code=terminated_exit) if terminated_exit is not None else None,
        waiting=client.V1ContainerStateWaiting(reason=waiting_reason, message="pull failed") if waiting_reason else None,
    )
    status = client.V1PodStatus(container_statuses=[
        client.V1ContainerStatus(name="step", image="node", image_id="", ready=False, restart_count=0, state=state)
    ])
    return client.V1Pod(metadata=client.V1ObjectMeta(name="pod-1"), status=status)

def make_executor(jobs, pods, logs="lint ok\n"):
    batch_api = MagicMock()
    core_api = MagicMock()
    batch_api.read_namespaced_job.side_effect = list(jobs)
    core_api.list_namespaced_pod.side_effect = [client.V1PodList(items=[pod]) for pod in pods]
    core_api.read_namespaced_pod_log.return_value = logs
    executor = StepExecutor(batch_api=batch_api, core_api=core_api, namespace="ci", poll_interval=0, output_limit=1024)
    return executor, batch_api, core_api

class TestJobBuilder:
    def test_job_name_is_dns_safe(self):
        name = build_job_name("abc", 2, "Check Code_Formatting!!")
        assert name.startswith("cv-")
        assert name.endswith("-2-check-code-formattin")
        assert len(name) <= 63

    def test_job_mounts_workspace(self):
        job = build_job("run1", STEP, "/srv/ws/run1", env_vars={"CI": "true"}, timeout=300, namespace="ci")
        container = job.spec.template.spec.containers[0]

        assert container.image == "node:20-alpine"
        assert container.command == ["/bin/sh", "-c"]
        assert container.args == ["npm run lint"]
        assert container.working_dir == "/workspace"
        assert container.volume_mounts[0].mount_path == "/workspace"
        assert job.spec.template.spec.volumes[0].host_path.path == "/srv/ws/run1"
        assert job.spec.backoff_limit == 0
        assert job.spec.active_deadline_seconds == 300
        assert {"name": "CI", "value": "true"} in [{"name": e.name, "value": e.value} for e in container.env]

    def test_job_is_pinned_to_the_workspace_node(self):
        job = build_job("run1", STEP, "/srv/ws/run1", namespace="ci", node_name="worker-3")
        assert job.spec.template.spec.node_name == "worker-3"

    def test_job_status(self):
        assert get_job_status(client.V1Job()) == "pending"
        assert get_job_status(job_with(active=1)) == "running"
        assert get_job_status(job_with(succeeded=1)) == "succeeded"
        assert get_job_status(job_with(failed=1)) == "failed"

class TestStepExecutor:
    @pytest.mark.asyncio
    async def test_successful_step(self):
        executor, batch_api, _ = make_executor(
            jobs=[job_with(active=1), job_with(succeeded=1)],
            pods=[pod_with(), pod_with(terminated_exit=0)],
        )

        result = await executor.execute(STEP, "/srv/ws/run1", run_id="run1")

        assert result.exit_code == 0
        assert result.output == "lint ok\n"
        assert result.position == 1
        batch_api.create_namespaced_job.assert_called_once()
        batch_api.delete_namespaced_job.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_step_reports_exit_code(self):
        executor, batch_api, _ = make_executor(
            jobs=[job_with(failed=1)],
            pods=[pod_with(terminated_exit=3)],
        )

        result = await executor.execute(STEP, "/srv/ws/run1", run_id="run1")

        assert result.exit_code == 3
        batch_api.delete_namespaced_job.assert_called_once()

    @pytest.mark.asyncio
    async def test_image_pull_failure_raises(self):
        executor, batch_api, _ = make_executor(
            jobs=[job_with()],
            pods=[pod_with(waiting_reason="ImagePullBackOff")],
        )

        with pytest.raises(ExecutionError, match="ImagePullBackOff"):
            await executor.execute(STEP, "/srv/ws/run1", run_id="run1")
        batch_api.delete_namespaced_job.assert_called_once()

    @pytest.mark.asyncio
    async def test_create_failure_raises(self):
        executor, batch_api, _ = make_executor(jobs=[], pods=[])
        batch_api.create_namespaced_job.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ExecutionError, match="Forbidden"):
            await executor.execute(STEP, "/srv/ws/run1", run_id="run1")

    @pytest.mark.asyncio
    async def test_cancellation_deletes_job(self):
        executor, batch_api, core_api = make_executor(jobs=[], pods=[])
        batch_api.read_namespaced_job.side_effect = None
        batch_api.read_namespaced_job.return_value = job_with(active=1)
        core_api.list_namespaced_pod.side_effect = None
        core_api.list_namespaced_pod.return_value = client.V1PodList(items=[pod_with()])

        task = asyncio.create_task(executor.execute(STEP, "/srv/ws/run1", run_id="run1"))
        while not batch_api.read_namespaced_job.called:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        batch_api.delete_namespaced_job.assert_called_once()
        body = batch_api.delete_namespaced_job.call_args.kwargs["body"]
        assert body.grace_period_seconds == 0

    @pytest.mark.asyncio
    async def test_unmountable_workspace_raises(self):
        executor, batch_api, core_api = make_executor(
            jobs=[job_with(active=1)],
            pods=[pod_with(waiting_reason="ContainerCreating")],
        )
        core_api.list_namespaced_event.return_value = SimpleNamespace(items=[
            SimpleNamespace(reason="Scheduled", message="Successfully assigned ci/pod-1 to worker-2"),
            SimpleNamespace(reason="FailedMount", message="hostPath type check failed: /srv/ws/run1 is not a directory"),
        ])

        with pytest.raises(ExecutionError, match="FailedMount: hostPath type check failed"):
            await executor.execute(STEP, "/srv/ws/run1", run_id="run1")
        assert core_api.list_namespaced_event.call_args.kwargs["field_selector"] == "involvedObject.name=pod-1"
        batch_api.delete_namespaced_job.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancelled_while_creating_still_deletes_job(self):
        executor, batch_api, _ = make_executor(jobs=[], pods=[])
        calls = []

        def slow_create(namespace, body):
            time.sleep(0.2)
            calls.append("created")

        batch_api.create_namespaced_job.side_effect = slow_create
        batch_api.delete_namespaced_job.side_effect = lambda **kwargs: calls.append("deleted")

        task = asyncio.create_task(executor.execute(STEP, "/srv/ws/run1", run_id="run1"))
        while not batch_api.create_namespaced_job.called:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert calls == ["created", "deleted"]

class TestClientHelpers:
    def test_missing_job_is_ignored(self):
        batch_api = MagicMock()
        batch_api.delete_namespaced_job.side_effect = ApiException(status=404, reason="Not Found")

        delete_job("cv-1234", namespace="ci", batch_v1=batch_api, grace_period_seconds=0)

        assert batch_api.delete_namespaced_job.call_args.kwargs["namespace"] == "ci"

    def test_namespace_is_created_when_missing(self):
        core_api = MagicMock()
        core_api.read_namespace.side_effect = ApiException(status=404, reason="Not Found")

        ensure_namespace(core_api, namespace="ci")

        body = core_api.create_namespace.call_args.kwargs["body"]
        assert body.metadata.name == "ci"

    def test_existing_namespace_is_kept(self):
        core_api = MagicMock()

        ensure_namespace(core_api, namespace="ci")

        core_api.create_namespace.assert_not_called()

def test_truncate_output_keeps_tail():
    output = "x" * 100 + "the end"
    truncated = truncate_output(output, 10)
    assert truncated.endswith("xxxthe end")
    assert "truncated" in truncated
    assert truncate_output("short", 10) == "short"

def test_mount_failure_only_checked_while_creating_container():
    core_api = MagicMock()

    assert mount_failure(core_api, "ci", pod_with(terminated_exit=0)) is None
    assert mount_failure(core_api, "ci", None) is None
    core_api.list_namespaced_event.assert_not_called()
