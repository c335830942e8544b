import logging
import os
import threading
from dataclasses import dataclass, field
from typing import List, Optional

import docker
import docker.errors
import requests
from docker.utils import build as build_utils

from ..core.errors import (
    BuildFailed,
    ContextInvalid,
    ContextMissing,
    EngineUnavailable,
    OperationCancelled,
)
from ..core.retry import transient_retry
from .runtimes import DOCKERFILE, DOCKERIGNORE, EXECUTION_FILE

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    tag: str
    image_id: Optional[str] = None
    log: List[str] = field(default_factory=list)


def create_api_client(settings) -> docker.APIClient:
    """Low-level docker client for the configured engine."""
    kwargs = docker.utils.kwargs_from_env()
    if settings.DOCKER_HOST:
        kwargs["base_url"] = settings.DOCKER_HOST
    if settings.DOCKER_TLS_VERIFY and settings.DOCKER_CERT_PATH:
        cert_path = settings.DOCKER_CERT_PATH
        kwargs["tls"] = docker.tls.TLSConfig(
            client_cert=(os.path.join(cert_path, "cert.pem"), os.path.join(cert_path, "key.pem")),
            ca_cert=os.path.join(cert_path, "ca.pem"),
            verify=True,
        )
    try:
        client = docker.APIClient(
            version=settings.DOCKER_API_VERSION,
            timeout=settings.DOCKER_TIMEOUT_SECONDS,
            **kwargs
        )
        client.ping()
    except (docker.errors.DockerException, requests.exceptions.ConnectionError) as e:
        logger.error(f"Docker is not available: {str(e)}")
        raise EngineUnavailable(e) from e
    logger.info("Docker is available and running")
    return client


def read_dockerignore(context_dir: str) -> List[str]:
    """Exclusion patterns from the context's .dockerignore, if present."""
    path = os.path.join(context_dir, DOCKERIGNORE)
    if not os.path.exists(path):
        return []
    with open(path) as f:
        return [
            line.strip() for line in f.read().splitlines()
            if line.strip() and not line.strip().startswith("#")
        ]


class ImageBuilder:
    """Builds function images from an assembled context through the engine API."""

    def __init__(self, client: docker.APIClient, retry_attempts: int = 3, retry_backoff: float = 0.5):
        self.client = client
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def build(self, context_dir: str, tag: str, cancel: Optional[threading.Event] = None) -> BuildResult:
        if not os.path.isdir(context_dir) or not os.path.exists(os.path.join(context_dir, EXECUTION_FILE)):
            logger.error(f"Failed build function. Error: Execution file not found in {context_dir}")
            raise ContextMissing(context_dir)

        excludes = read_dockerignore(context_dir)
        self.validate_context(context_dir, excludes)

        logger.info(f"Building image {tag} from {context_dir}")
        for attempt in transient_retry(self.retry_attempts, self.retry_backoff):
            with attempt:
                result = self._build_once(context_dir, tag, excludes, cancel)
        logger.info(f"Image {tag} built successfully (id={result.image_id})")
        return result

    def validate_context(self, context_dir: str, excludes: List[str]):
        """
        Check every file that would be sent is readable and that the
        entrypoint survives the exclusion rules.
        """
        included = build_utils.exclude_paths(context_dir, list(excludes) + ["!" + DOCKERIGNORE])
        if EXECUTION_FILE not in included:
            raise ContextInvalid(context_dir, f"{EXECUTION_FILE} is excluded by {DOCKERIGNORE}")
        for rel_path in included:
            full_path = os.path.join(context_dir, rel_path)
            if os.path.isfile(full_path) and not os.access(full_path, os.R_OK):
                raise ContextInvalid(context_dir, f"can't stat '{rel_path}'")

    def _build_once(self, context_dir: str, tag: str, excludes: List[str],
                    cancel: Optional[threading.Event]) -> BuildResult:
        # Dockerfile is always kept by docker's matcher; keep .dockerignore too
        archive = build_utils.tar(context_dir, exclude=list(excludes) + ["!" + DOCKERIGNORE], gzip=False)
        result = BuildResult(tag=tag)
        try:
            stream = self.client.build(
                fileobj=archive,
                custom_context=True,
                tag=tag,
                dockerfile=DOCKERFILE,
                rm=True,
                forcerm=True,
                decode=True,
            )
            for chunk in stream:
                if cancel is not None and cancel.is_set():
                    self._discard(tag)
                    raise OperationCancelled("build", tag)
                self._consume(chunk, result)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Failed to build image. Error: {e}")
            raise EngineUnavailable(e) from e
        except docker.errors.APIError as e:
            logger.error(f"Failed to build image. Error: {e}")
            raise BuildFailed(tag, e.explanation or str(e)) from e
        finally:
            archive.close()
        return result

    def _consume(self, chunk: dict, result: BuildResult):
        if "error" in chunk or "errorDetail" in chunk:
            detail = chunk.get("errorDetail") or {}
            message = chunk.get("error") or detail.get("message") or str(chunk)
            logger.error(f"Image build failed for {result.tag}: {message}")
            raise BuildFailed(result.tag, message)
        if "stream" in chunk:
            line = chunk["stream"].rstrip("\n")
            if line:
                result.log.append(line)
                logger.debug(f"[build {result.tag}] {line}")
        elif "status" in chunk:
            result.log.append(chunk["status"])
        aux = chunk.get("aux")
        if isinstance(aux, dict) and aux.get("ID"):
            result.image_id = aux["ID"]

    def _discard(self, tag: str):
        try:
            self.client.remove_image(tag, force=True)
        except docker.errors.APIError as e:
            logger.warning(f"Could not remove image {tag} after cancelled build: {e}")
