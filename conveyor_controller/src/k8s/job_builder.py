"""
Kubernetes Job builder for pipeline steps.
"""

import hashlib
from typing import Dict, List, Optional

from kubernetes import client

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.models.pipeline import StepSpec

settings = get_settings()

WORKSPACE_MOUNT = "/workspace"
WORKSPACE_VOLUME = "workspace"

def build_job_name(run_id: str, step_order: int, step_name: str) -> str:
    """DNS-1123 job name: lowercase alphanumerics and dashes, at most 63 chars."""
    slug = step_name.lower().replace(" ", "-").replace("_", "-")
    slug = "".join(c for c in slug if c.isalnum() or c == "-")[:20].strip("-")
    run_hash = hashlib.md5(run_id.encode()).hexdigest()[:8]
    return f"cv-{run_hash}-{step_order}-{slug}".rstrip("-")

def _step_env(run_id: str, step: StepSpec, env_vars: Optional[Dict[str, str]]) -> List[client.V1EnvVar]:
    variables = {
        "CONVEYOR_RUN_ID": run_id,
        "CONVEYOR_STEP_ORDER": str(step.position),
        "CONVEYOR_STEP_NAME": step.name,
    }
    # Step variables override pipeline variables
    variables.update(env_vars or {})
    variables.update(step.env)
    return [client.V1EnvVar(name=name, value=value) for name, value in variables.items()]

def build_job(
    run_id: str,
    step: StepSpec,
    workdir: str,
    env_vars: Optional[Dict[str, str]] = None,
    timeout: Optional[int] = None,
    namespace: Optional[str] = None,
    node_name: Optional[str] = None,
) -> client.V1Job:
    """
    Build the Job for one step. The step's script runs under /bin/sh in its
    image, with the run's working tree mounted read-write at /workspace.
    The working tree lives on the controller's node, so the pod is pinned there
    when the node name is known.
    """
    labels = {
        "app": "conveyor",
        "run-id": run_id,
        "step-order": str(step.position),
    }

    container = client.V1Container(
        name="step",
        image=step.image,
        command=["/bin/sh", "-c"],
        args=[step.script],
        env=_step_env(run_id, step, env_vars),
        working_dir=WORKSPACE_MOUNT,
        volume_mounts=[client.V1VolumeMount(name=WORKSPACE_VOLUME, mount_path=WORKSPACE_MOUNT)],
        resources=client.V1ResourceRequirements(
            requests={"cpu": "100m", "memory": "128Mi"},
            limits={"cpu": "1", "memory": "1Gi"},
        ),
    )

    workspace = client.V1Volume(
        name=WORKSPACE_VOLUME,
        host_path=client.V1HostPathVolumeSource(path=workdir, type="Directory"),
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=build_job_name(run_id, step.position, step.name),
            namespace=namespace or settings.k8s_namespace,
            labels=labels,
        ),
        spec=client.V1JobSpec(
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(
                    containers=[container],
                    restart_policy="Never",
                    volumes=[workspace],
                    node_name=node_name or settings.node_name or None,
                ),
            ),
            backoff_limit=0,  # A failed step is reported, never retried
            active_deadline_seconds=timeout,
            ttl_seconds_after_finished=settings.job_ttl_after_finished,
        ),
    )

def get_job_status(job: client.V1Job) -> str:
    """
    Determine job status from Kubernetes Job object.
    Returns: 'pending', 'running', 'succeeded', 'failed'
    """
    status = job.status
    if status is None:
        return "pending"
    if status.succeeded:
        return "succeeded"
    if status.failed:
        return "failed"
    if status.active:
        return "running"
    return "pending"
