"""
Completion waiting and log retrieval for invocations.

The job is polled until it reaches a terminal phase (or the deadline passes),
then the pods selected by ``job-name=<job>`` are read. When more than one pod
ran an invocation the configured policy decides what is returned:

* ``aggregate`` (default): every pod's log, oldest pod first, each under a
  ``==> pod <name> (<phase>) <==`` header.
* ``latest``: only the log of the most recently created pod.

Pods are ordered by creation timestamp, then name, never by list order.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from ..core.errors import (
    InvocationTimeout,
    LogRetrievalFailure,
    LogStreamUnavailable,
    NoPodForInvocation,
)
from .log_cache import InvocationLogCache
from .naming import Invocation

logger = logging.getLogger(__name__)

LOG_CHUNK_SIZE = 64 * 1024
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
FINISHED_POD_PHASES = ("Succeeded", "Failed")


class JobPhase(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class MultiPodPolicy(str, Enum):
    AGGREGATE = "aggregate"
    LATEST = "latest"


@dataclass
class InvocationOutcome:
    invocation: Invocation
    phase: JobPhase
    log: bytes
    pods: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.phase == JobPhase.SUCCEEDED


def _created(pod) -> datetime:
    ts = pod.metadata.creation_timestamp
    if ts is None:
        return _EPOCH
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def terminal_phase(job) -> Optional[JobPhase]:
    """Terminal phase of a V1Job, or None while it is still pending/running."""
    status = job.status
    if status is None:
        return None
    for condition in status.conditions or []:
        if condition.status == "True" and condition.type == "Complete":
            return JobPhase.SUCCEEDED
        if condition.status == "True" and condition.type == "Failed":
            return JobPhase.FAILED
    if status.succeeded:
        return JobPhase.SUCCEEDED
    if status.failed:
        return JobPhase.FAILED
    return None


class CompletionWaiter:
    def __init__(
        self,
        batch_v1: client.BatchV1Api,
        core_v1: client.CoreV1Api,
        poll_interval: float = 1.0,
        default_timeout: float = 30.0,
        policy: str = MultiPodPolicy.AGGREGATE.value,
        log_cache: Optional[InvocationLogCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.batch_v1 = batch_v1
        self.core_v1 = core_v1
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout
        self.policy = MultiPodPolicy(policy)
        self.log_cache = log_cache
        self._sleep = sleep
        self._clock = clock

    def wait_for_completion(self, invocation: Invocation, timeout: Optional[float] = None) -> JobPhase:
        """Poll the job until Succeeded/Failed; raises InvocationTimeout at the deadline."""
        timeout = self.default_timeout if timeout is None else timeout
        deadline = self._clock() + timeout
        job_name = invocation.job_name
        logger.info(f"Waiting for job {job_name} to complete (max {timeout:g} seconds)...")

        while True:
            phase = self._poll(invocation)
            if phase is not None:
                logger.info(f"Job {job_name} reached phase {phase.value}")
                return phase

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.error(f"Job {job_name} still running after {timeout:g}s")
                raise InvocationTimeout(job_name, invocation.invocation_id, timeout)
            self._sleep(min(self.poll_interval, remaining))

    def _poll(self, invocation: Invocation) -> Optional[JobPhase]:
        try:
            job = self.batch_v1.read_namespaced_job_status(
                name=invocation.job_name, namespace=invocation.namespace
            )
        except ApiException as e:
            if e.status == 404:
                logger.error(f"Job {invocation.job_name} not found in {invocation.namespace}")
                raise NoPodForInvocation(invocation.function_name, invocation.invocation_id) from e
            if e.status == 0 or (e.status is not None and e.status >= 500):
                logger.warning(f"Transient error reading job {invocation.job_name}: {e.status} {e.reason}")
                return None
            raise LogRetrievalFailure(
                f"Cannot read status of job {invocation.job_name}: {e.reason}",
                invocation_id=invocation.invocation_id,
            ) from e
        except TransportError as e:
            logger.warning(f"Transient error reading job {invocation.job_name}: {e}")
            return None
        return terminal_phase(job)

    def list_invocation_pods(self, invocation: Invocation) -> list:
        """Pods that ran the invocation, oldest first."""
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=invocation.namespace,
                label_selector=invocation.label_selector,
            )
        except (ApiException, TransportError) as e:
            logger.error(f"Failed to list pods for {invocation.job_name}: {e}")
            raise LogRetrievalFailure(
                f"Cannot list pods of job {invocation.job_name}: {e}",
                invocation_id=invocation.invocation_id,
            ) from e
        return sorted(pods.items or [], key=lambda p: (_created(p), p.metadata.name))

    def fetch_log(self, invocation: Invocation) -> bytes:
        log, _ = self._fetch(invocation)
        return log

    def _fetch(self, invocation: Invocation):
        if self.log_cache is not None:
            cached = self.log_cache.get(invocation.namespace, invocation.job_name)
            if cached is not None:
                logger.info(f"Serving log of {invocation.job_name} from cache")
                return cached, []

        pods = self.list_invocation_pods(invocation)
        if not pods:
            logger.error(f"No pod found for function {invocation.function_name} - "
                         f"execution {invocation.invocation_id}")
            raise NoPodForInvocation(invocation.function_name, invocation.invocation_id)

        names = [p.metadata.name for p in pods]
        if len(pods) == 1:
            log = self._read_pod_log(invocation, pods[0].metadata.name)
        elif self.policy == MultiPodPolicy.LATEST:
            logger.warning(f"{len(pods)} pods ran {invocation.job_name}; returning log of latest {names[-1]}")
            log = self._read_pod_log(invocation, pods[-1].metadata.name)
        else:
            logger.warning(f"{len(pods)} pods ran {invocation.job_name}; aggregating logs of {names}")
            parts = []
            for pod in pods:
                phase = pod.status.phase if pod.status is not None else "Unknown"
                body = self._read_pod_log(invocation, pod.metadata.name)
                parts.append(f"==> pod {pod.metadata.name} ({phase}) <==\n".encode("utf-8"))
                parts.append(body if body.endswith(b"\n") or not body else body + b"\n")
            log = b"".join(parts)

        # A running pod's log is only a prefix of the final one
        finished = all(pod.status is not None and pod.status.phase in FINISHED_POD_PHASES for pod in pods)
        if self.log_cache is not None and finished:
            self.log_cache.put(invocation.namespace, invocation.job_name, log)
        return log, names

    def _read_pod_log(self, invocation: Invocation, pod_name: str) -> bytes:
        try:
            response = self.core_v1.read_namespaced_pod_log(
                name=pod_name,
                namespace=invocation.namespace,
                timestamps=True,
                _preload_content=False,
            )
        except (ApiException, TransportError) as e:
            logger.error(f"Error getting logs from pod {pod_name}: {e}")
            raise LogStreamUnavailable(pod_name, invocation.invocation_id, e) from e
        try:
            return b"".join(response.stream(LOG_CHUNK_SIZE))
        except TransportError as e:
            raise LogStreamUnavailable(pod_name, invocation.invocation_id, e) from e
        finally:
            response.release_conn()

    def await_outcome(self, invocation: Invocation, timeout: Optional[float] = None) -> InvocationOutcome:
        phase = self.wait_for_completion(invocation, timeout)
        log, pods = self._fetch(invocation)
        return InvocationOutcome(invocation=invocation, phase=phase, log=log, pods=pods)

    def await_and_fetch_log(self, function_name: str, invocation_id: str, namespace: str,
                            timeout: Optional[float] = None) -> bytes:
        invocation = Invocation(function_name=function_name, invocation_id=invocation_id, namespace=namespace)
        return self.await_outcome(invocation, timeout).log
