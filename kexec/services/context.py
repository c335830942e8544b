import logging
from dataclasses import dataclass
from typing import Optional

import docker
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ..build.builder import ImageBuilder, create_api_client
from ..build.context import BuildContextAssembler
from ..build.publisher import RegistryPublisher, create_publisher
from ..core.config import Settings
from ..database.database import create_db_engine, init_db
from ..k8s.client import KubeClients, load_kube_clients
from ..k8s.job_maker import ExecutionDispatcher
from ..k8s.log_cache import InvocationLogCache
from ..k8s.namespaces import NamespaceManager
from ..k8s.waiter import CompletionWaiter

logger = logging.getLogger(__name__)


@dataclass
class PlatformContext:
    """Everything a request needs, built once at startup."""
    settings: Settings
    session_factory: sessionmaker
    assembler: BuildContextAssembler
    builder: ImageBuilder
    publisher: RegistryPublisher
    namespaces: NamespaceManager
    dispatcher: ExecutionDispatcher
    waiter: CompletionWaiter
    engine: Optional[Engine] = None
    log_cache: Optional[InvocationLogCache] = None

    def close(self):
        if self.engine is not None:
            self.engine.dispose()


def build_platform_context(
    settings: Settings,
    docker_client: Optional[docker.APIClient] = None,
    kube_clients: Optional[KubeClients] = None,
    engine: Optional[Engine] = None,
    log_cache: Optional[InvocationLogCache] = None,
) -> PlatformContext:
    """
    Wire the pipeline components from settings.

    Clients not passed in are created from the settings; a docker engine or
    cluster that cannot be reached fails startup.
    """
    if docker_client is None:
        docker_client = create_api_client(settings)
    if kube_clients is None:
        kube_clients = load_kube_clients(settings)
    if engine is None:
        engine = create_db_engine(settings.SQLALCHEMY_DATABASE_URI)
    if log_cache is None and settings.REDIS_URL:
        log_cache = InvocationLogCache.from_url(settings.REDIS_URL, ttl_seconds=settings.LOG_CACHE_TTL_SECONDS)
        logger.info("Invocation log cache enabled")

    retry = {"retry_attempts": settings.RETRY_ATTEMPTS, "retry_backoff": settings.RETRY_BACKOFF_SECONDS}
    return PlatformContext(
        settings=settings,
        session_factory=init_db(engine),
        assembler=BuildContextAssembler(
            settings.IMAGEBUILD_CONTEXT_ROOT,
            params_env=settings.JOB_PARAMS_ENV,
            keep_contexts=settings.KEEP_BUILD_CONTEXT,
        ),
        builder=ImageBuilder(docker_client, **retry),
        publisher=create_publisher(settings, docker_client),
        namespaces=NamespaceManager(kube_clients.core_v1, suffix=settings.NAMESPACE_SUFFIX, **retry),
        dispatcher=ExecutionDispatcher(
            kube_clients.batch_v1,
            settings.DOCKER_REGISTRY,
            params_env=settings.JOB_PARAMS_ENV,
            ttl_seconds_after_finished=settings.JOB_TTL_SECONDS_AFTER_FINISHED,
        ),
        waiter=CompletionWaiter(
            kube_clients.batch_v1,
            kube_clients.core_v1,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            default_timeout=settings.INVOKE_TIMEOUT_SECONDS,
            policy=settings.MULTI_POD_LOG_POLICY,
            log_cache=log_cache,
        ),
        engine=engine,
        log_cache=log_cache,
    )
