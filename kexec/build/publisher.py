"""
Registry publishing.

Pushing is kept behind the narrow ``RegistryPublisher`` interface so the push
mechanism can change without touching the pipeline. Two implementations ship:
the docker SDK push and a ``docker push`` shell-out for engines where the SDK
push misbehaves.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

import docker
import docker.errors
import requests

from ..core.errors import AuthRejected, OperationCancelled, PushFailed, RegistryUnreachable
from ..core.retry import transient_retry

logger = logging.getLogger(__name__)

AUTH_MARKERS = ("unauthorized", "authentication required", "denied", "no basic auth credentials")
UNREACHABLE_MARKERS = ("connection refused", "no such host", "i/o timeout", "dial tcp",
                       "server gave http response to https client")


@dataclass
class PushResult:
    image: str
    digest: Optional[str] = None
    log: List[str] = field(default_factory=list)


def split_reference(image: str):
    """Split an image reference into (repository, tag); tag defaults to latest."""
    last = image.rsplit("/", 1)[-1]
    if ":" in last:
        repository, tag = image.rsplit(":", 1)
        return repository, tag
    return image, "latest"


def classify_push_error(image: str, message: str, cause: Optional[Exception] = None):
    lowered = message.lower()
    if any(marker in lowered for marker in AUTH_MARKERS):
        return AuthRejected(image, message)
    if any(marker in lowered for marker in UNREACHABLE_MARKERS):
        return RegistryUnreachable(image, cause or Exception(message))
    return PushFailed(image, message)


class RegistryPublisher:
    """Pushes a tagged image so the cluster can pull it."""

    def __init__(self, retry_attempts: int = 3, retry_backoff: float = 0.5):
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def publish(self, image: str, cancel: Optional[threading.Event] = None) -> PushResult:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("push", image)
        logger.info(f"Pushing image {image}")
        for attempt in transient_retry(self.retry_attempts, self.retry_backoff):
            with attempt:
                result = self._push(image, cancel)
        logger.info(f"Pushed image {image} (digest={result.digest})")
        return result

    def _push(self, image: str, cancel: Optional[threading.Event]) -> PushResult:
        raise NotImplementedError


class DockerSdkPublisher(RegistryPublisher):
    def __init__(self, client: docker.APIClient, username: Optional[str] = None,
                 password: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.client = client
        self.auth_config = {"username": username, "password": password} if username else None

    def _push(self, image: str, cancel: Optional[threading.Event]) -> PushResult:
        repository, tag = split_reference(image)
        result = PushResult(image=image)
        try:
            stream = self.client.push(
                repository,
                tag=tag,
                auth_config=self.auth_config,
                stream=True,
                decode=True,
            )
            for chunk in stream:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled("push", image)
                if "error" in chunk or "errorDetail" in chunk:
                    detail = chunk.get("errorDetail") or {}
                    message = chunk.get("error") or detail.get("message") or str(chunk)
                    logger.error(f"Push of {image} failed: {message}")
                    raise classify_push_error(image, message)
                if "status" in chunk:
                    result.log.append(chunk["status"])
                aux = chunk.get("aux")
                if isinstance(aux, dict) and aux.get("Digest"):
                    result.digest = aux["Digest"]
        except requests.exceptions.ConnectionError as e:
            raise RegistryUnreachable(image, e) from e
        except docker.errors.APIError as e:
            message = e.explanation or str(e)
            if e.status_code in (401, 403):
                raise AuthRejected(image, message) from e
            raise classify_push_error(image, message, e) from e

        # The registry has accepted the manifest only once a digest is reported
        if result.digest is None:
            raise PushFailed(image, "registry did not report a manifest digest")
        return result


class CliPublisher(RegistryPublisher):
    """
    Pushes with the docker command line.

    Used where the SDK push is unreliable; credentials come from the engine's
    own login state (``docker login``). The cancel event is checked every
    ``poll_interval`` seconds while the command runs; a cancelled or overdue
    push kills the child process.
    """

    def __init__(self, docker_binary: str = "docker", timeout: int = 600,
                 poll_interval: float = 0.5, **kwargs):
        super().__init__(**kwargs)
        self.docker_binary = docker_binary
        self.timeout = timeout
        self.poll_interval = poll_interval

    def _push(self, image: str, cancel: Optional[threading.Event]) -> PushResult:
        cmd = [self.docker_binary, "push", image]
        logger.info(f"Running command: {' '.join(cmd)}")
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except FileNotFoundError as e:
            raise PushFailed(image, f"{self.docker_binary} not found") from e

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired as e:
                if cancel is not None and cancel.is_set():
                    logger.warning(f"Push of {image} cancelled, stopping docker push")
                    self._stop(proc)
                    raise OperationCancelled("push", image) from e
                if time.monotonic() >= deadline:
                    logger.error(f"docker push of {image} still running after {self.timeout}s")
                    self._stop(proc)
                    raise RegistryUnreachable(image, e) from e

        if proc.returncode != 0:
            message = (stderr or stdout).strip()
            logger.error(f"docker push exited with {proc.returncode}: {message}")
            raise classify_push_error(image, message)

        result = PushResult(image=image, log=stdout.splitlines())
        for line in result.log:
            if "digest:" in line:
                result.digest = line.split("digest:", 1)[1].split()[0]
        return result

    @staticmethod
    def _stop(proc: subprocess.Popen):
        proc.kill()
        proc.communicate()


def create_publisher(settings, client: Optional[docker.APIClient]) -> RegistryPublisher:
    retry = {"retry_attempts": settings.RETRY_ATTEMPTS, "retry_backoff": settings.RETRY_BACKOFF_SECONDS}
    if settings.REGISTRY_PUSH_MODE == "cli":
        return CliPublisher(**retry)
    return DockerSdkPublisher(
        client,
        username=settings.REGISTRY_USERNAME,
        password=settings.REGISTRY_PASSWORD,
        **retry
    )
