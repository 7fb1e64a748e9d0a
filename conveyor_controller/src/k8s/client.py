"""
Kubernetes API clients shared by the step executor.
"""

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from conveyor_controller.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_batch_v1: Optional[client.BatchV1Api] = None
_core_v1: Optional[client.CoreV1Api] = None

def _load_config(in_cluster: bool):
    if in_cluster:
        config.load_incluster_config()
        return "in-cluster"
    # kind, minikube or Docker Desktop on a developer machine
    config.load_kube_config()
    return "kubeconfig"

def init_k8s_client(in_cluster: Optional[bool] = None) -> bool:
    """Load cluster credentials and check that the API server answers."""
    global _batch_v1, _core_v1

    in_cluster = settings.k8s_in_cluster if in_cluster is None else in_cluster
    try:
        source = _load_config(in_cluster)
        api_client = client.ApiClient()
        core_v1 = client.CoreV1Api(api_client)
        core_v1.list_namespace(limit=1)
    except Exception as e:
        logger.error(f"Cannot reach Kubernetes API: {e}")
        return False

    _core_v1 = core_v1
    _batch_v1 = client.BatchV1Api(api_client)
    logger.info(f"Connected to Kubernetes using {source} credentials")
    return True

def get_batch_api() -> client.BatchV1Api:
    if _batch_v1 is None:
        init_k8s_client()
    return _batch_v1

def get_core_api() -> client.CoreV1Api:
    if _core_v1 is None:
        init_k8s_client()
    return _core_v1

def ensure_namespace(core_v1: Optional[client.CoreV1Api] = None, namespace: Optional[str] = None):
    """Create the namespace step jobs run in, unless it is already there."""
    core_v1 = core_v1 or get_core_api()
    namespace = namespace or settings.k8s_namespace

    try:
        core_v1.read_namespace(name=namespace)
        return
    except ApiException as e:
        if e.status != 404:
            raise

    core_v1.create_namespace(
        body=client.V1Namespace(
            metadata=client.V1ObjectMeta(name=namespace, labels={"app": "conveyor"})
        )
    )
    logger.info(f"Created namespace '{namespace}'")

def delete_job(
    job_name: str,
    namespace: Optional[str] = None,
    batch_v1: Optional[client.BatchV1Api] = None,
    grace_period_seconds: Optional[int] = None,
):
    """
    Delete a step job together with its pod. A grace period of 0 kills a
    running container immediately. Missing jobs are ignored.
    """
    batch_v1 = batch_v1 or get_batch_api()
    options = client.V1DeleteOptions(
        propagation_policy="Foreground",
        grace_period_seconds=grace_period_seconds,
    )

    try:
        batch_v1.delete_namespaced_job(
            name=job_name,
            namespace=namespace or settings.k8s_namespace,
            body=options,
        )
    except ApiException as e:
        if e.status == 404:
            return
        logger.error(f"Failed to delete job {job_name}: {e}")
        return
    logger.info(f"Deleted job {job_name}")
