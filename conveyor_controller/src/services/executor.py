"""
Step executor - runs one pipeline step as a Kubernetes Job.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple
from kubernetes import client
from kubernetes.client.rest import ApiException

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.k8s import (
    get_batch_api,
    get_core_api,
    build_job,
    get_job_status,
    delete_job,
)
from conveyor_controller.src.models.pipeline import StepSpec
from conveyor_controller.src.models.run import StepResult
from conveyor_controller.src.services.log_collector import (
    get_job_pod,
    container_exit_code,
    start_failure,
    mount_failure,
    collect_logs,
)

logger = logging.getLogger(__name__)

# Exit code recorded when the container could not be started at all
EXECUTION_ERROR_EXIT_CODE = 125

class ExecutionError(Exception):
    """Raised when a step's container cannot be created, pulled or started."""
    pass

class StepExecutor:
    """
    Creates one Job per step and tears it down afterwards, so no container
    state survives between steps. Cancelling `execute` deletes the Job,
    which kills an in-flight container.
    """

    def __init__(
        self,
        batch_api: Optional[client.BatchV1Api] = None,
        core_api: Optional[client.CoreV1Api] = None,
        namespace: Optional[str] = None,
        poll_interval: Optional[float] = None,
        output_limit: Optional[int] = None,
    ):
        settings = get_settings()
        self._batch_api = batch_api
        self._core_api = core_api
        self.namespace = namespace or settings.k8s_namespace
        self.poll_interval = settings.job_poll_interval if poll_interval is None else poll_interval
        self.output_limit = output_limit or settings.output_limit

    @property
    def batch_api(self) -> client.BatchV1Api:
        if self._batch_api is None:
            self._batch_api = get_batch_api()
        return self._batch_api

    @property
    def core_api(self) -> client.CoreV1Api:
        if self._core_api is None:
            self._core_api = get_core_api()
        return self._core_api

    async def execute(
        self,
        step: StepSpec,
        workdir: str,
        run_id: str,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> StepResult:
        """
        Execute a single pipeline step.
        Returns the step result; raises ExecutionError if the container never ran.
        """
        job = build_job(
            run_id=run_id,
            step=step,
            workdir=workdir,
            env_vars=env,
            timeout=timeout,
            namespace=self.namespace,
        )
        job_name = job.metadata.name
        started = time.monotonic()

        try:
            await self._create_job(job)
            status, pod = await self._wait_for_job(job_name)
            exit_code = container_exit_code(pod)
            if exit_code is None:
                # Pod already gone, or the job hit its deadline before the container ended
                exit_code = 0 if status == "succeeded" else 1
            output = ""
            if pod is not None:
                output = await asyncio.to_thread(
                    collect_logs, self.core_api, self.namespace, pod.metadata.name, self.output_limit
                )
        except asyncio.CancelledError:
            logger.warning(f"Step '{step.name}' interrupted, terminating job {job_name}")
            raise
        finally:
            # Shielded so teardown completes even when the run is being cancelled
            await asyncio.shield(asyncio.to_thread(
                delete_job, job_name, self.namespace, self.batch_api, 0
            ))

        duration = time.monotonic() - started
        logger.info(f"Step '{step.name}' exited with {exit_code} after {duration:.1f}s")

        return StepResult(
            name=step.name,
            position=step.position,
            exit_code=exit_code,
            output=output,
            duration=duration,
        )

    async def _create_job(self, job: client.V1Job):
        job_name = job.metadata.name
        logger.info(f"Creating job {job_name}")

        try:
            await self._submit(job)
        except ApiException as e:
            if e.status != 409:
                raise ExecutionError(f"Failed to create job {job_name}: {e.reason}")

            # Job already exists, delete and recreate
            logger.warning(f"Job {job_name} already exists, deleting...")
            await asyncio.to_thread(delete_job, job_name, self.namespace, self.batch_api, 0)
            await asyncio.sleep(self.poll_interval)
            try:
                await self._submit(job)
            except ApiException as retry_error:
                raise ExecutionError(f"Failed to create job {job_name}: {retry_error.reason}")

    async def _submit(self, job: client.V1Job):
        creating = asyncio.ensure_future(asyncio.to_thread(
            self.batch_api.create_namespaced_job,
            namespace=self.namespace,
            body=job,
        ))
        try:
            await asyncio.shield(creating)
        except asyncio.CancelledError:
            # The request may still create the job; let it land so teardown can delete it
            await asyncio.gather(creating, return_exceptions=True)
            raise

    async def _wait_for_job(self, job_name: str) -> Tuple[str, Optional[client.V1Pod]]:
        """
        Wait for a job to complete and return its final status and pod.
        Raises ExecutionError if the container cannot start.
        """
        while True:
            try:
                job = await asyncio.to_thread(
                    self.batch_api.read_namespaced_job,
                    name=job_name,
                    namespace=self.namespace,
                )
            except ApiException as e:
                logger.error(f"Error checking job status: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            status = get_job_status(job)
            pod = await asyncio.to_thread(get_job_pod, self.core_api, self.namespace, job_name)

            if status in ("succeeded", "failed"):
                return status, pod

            failure = start_failure(pod) or await asyncio.to_thread(
                mount_failure, self.core_api, self.namespace, pod
            )
            if failure:
                raise ExecutionError(f"Container for job {job_name} cannot start: {failure}")

            # Still running or pending
            await asyncio.sleep(self.poll_interval)
