"""
Collect output and exit status from step pods.
"""

import logging
from typing import Optional
from kubernetes import client
from kubernetes.client.rest import ApiException

logger = logging.getLogger(__name__)

# Waiting reasons that mean the container will never start
START_FAILURES = {
    "ErrImagePull",
    "ImagePullBackOff",
    "InvalidImageName",
    "ErrImageNeverPull",
    "CreateContainerConfigError",
    "CreateContainerError",
}

# Pod events that mean a volume, i.e. the workspace, cannot be mounted
MOUNT_FAILURES = {"FailedMount", "FailedAttachVolume"}

def get_job_pod(core_v1: client.CoreV1Api, namespace: str, job_name: str) -> Optional[client.V1Pod]:
    """Get the pod for a job."""
    try:
        pods = core_v1.list_namespaced_pod(
            namespace=namespace,
            label_selector=f"job-name={job_name}",
        )

        if pods.items:
            return pods.items[0]
        return None
    except ApiException as e:
        logger.error(f"Failed to get pod for job {job_name}: {e}")
        return None

def _container_state(pod: Optional[client.V1Pod]):
    if pod is None or pod.status is None or not pod.status.container_statuses:
        return None
    return pod.status.container_statuses[0].state

def container_exit_code(pod: Optional[client.V1Pod]) -> Optional[int]:
    """Exit code of the step container, None while it has not terminated."""
    state = _container_state(pod)
    if state is None or state.terminated is None:
        return None
    return state.terminated.exit_code

def start_failure(pod: Optional[client.V1Pod]) -> Optional[str]:
    """Describe why the container cannot start, if it cannot."""
    state = _container_state(pod)
    if state is None or state.waiting is None:
        return None
    if state.waiting.reason in START_FAILURES:
        return f"{state.waiting.reason}: {state.waiting.message or ''}".strip()
    return None

def mount_failure(core_v1: client.CoreV1Api, namespace: str, pod: Optional[client.V1Pod]) -> Optional[str]:
    """Describe why a pod stuck in ContainerCreating cannot mount its volumes."""
    if pod is None:
        return None
    state = _container_state(pod)
    if state is not None and (state.waiting is None or state.waiting.reason != "ContainerCreating"):
        return None

    try:
        events = core_v1.list_namespaced_event(
            namespace=namespace,
            field_selector=f"involvedObject.name={pod.metadata.name}",
        )
    except ApiException as e:
        logger.error(f"Failed to list events for pod {pod.metadata.name}: {e}")
        return None

    for event in events.items or []:
        if event.reason in MOUNT_FAILURES:
            return f"{event.reason}: {event.message or ''}".strip()
    return None

def truncate_output(output: str, limit: int) -> str:
    """Keep the tail of the output, at most `limit` bytes."""
    data = output.encode("utf-8", errors="replace")
    if len(data) <= limit:
        return output
    tail = data[-limit:].decode("utf-8", errors="ignore")
    return f"[... {len(data) - limit} bytes truncated ...]\n{tail}"

def collect_logs(core_v1: client.CoreV1Api, namespace: str, pod_name: str, limit: int) -> str:
    """Collect bounded logs from a step pod."""
    try:
        logs = core_v1.read_namespaced_pod_log(
            name=pod_name,
            namespace=namespace,
            tail_lines=1000,  # Limit log lines
        )
        return truncate_output(logs or "", limit)
    except ApiException as e:
        if e.status == 400:
            # Container never started
            return ""
        logger.error(f"Failed to collect logs for {pod_name}: {e}")
        return f"Error collecting logs: {e.reason}"
