from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request

from .build.runtimes import RUNTIMES
from .core.config import Settings, get_settings
from .core.errors import PlatformError, global_exception_handler, platform_exception_handler
from .routers import functions, metrics
from .services.context import PlatformContext, build_platform_context
from .services.pipeline import FunctionPipeline

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(settings: Optional[Settings] = None, context: Optional[PlatformContext] = None) -> FastAPI:
    """
    Build the API application.

    The platform context (docker and cluster clients, database) is created
    when the application starts, unless one is passed in.
    """
    settings = settings or (context.settings if context else get_settings())
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        platform = context or build_platform_context(settings)
        app.state.platform = platform
        app.state.pipeline = FunctionPipeline(platform)
        logger.info(f"Platform ready: registry={settings.DOCKER_REGISTRY}, "
                    f"runtimes={sorted(RUNTIMES)}")
        try:
            yield
        finally:
            if context is None:
                platform.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="API for building functions into images and invoking them as Kubernetes jobs",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(PlatformError, platform_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Include routers
    app.include_router(functions.router)
    app.include_router(metrics.router)

    @app.get("/")
    async def root(request: Request):
        platform = request.app.state.platform
        return {
            "message": "Welcome to the Function Build-and-Invoke Platform API",
            "version": "1.0.0",
            "registry": platform.settings.DOCKER_REGISTRY,
            "available_runtimes": sorted(RUNTIMES),
            "namespace_suffix": platform.settings.NAMESPACE_SUFFIX,
            "multi_pod_log_policy": platform.settings.MULTI_POD_LOG_POLICY,
            "log_cache": platform.log_cache is not None,
        }

    return app


app = create_app()


def run():
    import uvicorn

    uvicorn.run("kexec.main:app", host="0.0.0.0", port=8000)
