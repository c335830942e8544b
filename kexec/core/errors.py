"""
Error taxonomy for the build-and-invoke pipeline.

Every error carries a ``kind`` (the taxonomy bucket callers switch on) and
the ``stage`` of the pipeline that raised it. The FastAPI handlers at the
bottom of this module turn them into JSON responses.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PlatformError(Exception):
    """Base exception for the platform."""

    kind = "Internal"
    stage = "internal"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"kind": self.kind, "stage": self.stage, "message": self.message}
        body.update({k: v for k, v in self.details.items() if v is not None})
        return body


# ===========================================
# Input validation
# ===========================================


class InputValidationError(PlatformError):
    kind = "InputValidation"
    stage = "validate"
    http_status = status.HTTP_400_BAD_REQUEST


class EmptyInput(InputValidationError):
    """Raised when code, function name or runtime is missing."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required field: {field}", field=field)


class UnsupportedRuntime(InputValidationError):
    def __init__(self, runtime: str):
        self.runtime = runtime
        super().__init__(f"Runtime template {runtime} invalid or not supported yet.", runtime=runtime)


class InvalidName(InputValidationError):
    def __init__(self, field: str, value: str, rule: str):
        super().__init__(f"Invalid {field} {value!r}: {rule}", field=field)


# ===========================================
# Staging / build / push
# ===========================================


class StagingFailure(PlatformError):
    kind = "StagingFailure"
    stage = "stage"


class StagingUnavailable(StagingFailure):
    def __init__(self, path: str, cause: Exception):
        self.cause = cause
        super().__init__(f"Cannot stage build context at {path}: {cause}", path=path)


class BuildFailure(PlatformError):
    kind = "BuildFailure"
    stage = "build"
    http_status = status.HTTP_502_BAD_GATEWAY


class ContextMissing(BuildFailure):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, path: str):
        super().__init__(f"No build context found at {path}", path=path)


class ContextInvalid(BuildFailure):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, path: str, reason: str):
        super().__init__(f"Error checking context {path}: {reason}", path=path)


class EngineUnavailable(BuildFailure):
    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Container engine unreachable: {cause}")


class BuildFailed(BuildFailure):
    """The engine reported a build error; its message is kept verbatim."""

    def __init__(self, tag: str, engine_message: str):
        self.tag = tag
        self.engine_message = engine_message
        super().__init__(engine_message, image=tag)


class PushFailure(PlatformError):
    kind = "PushFailure"
    stage = "push"
    http_status = status.HTTP_502_BAD_GATEWAY


class AuthRejected(PushFailure):
    def __init__(self, image: str, reason: str):
        super().__init__(f"Registry rejected credentials for {image}: {reason}", image=image)


class RegistryUnreachable(PushFailure):
    def __init__(self, image: str, cause: Exception):
        self.cause = cause
        super().__init__(f"Registry unreachable while pushing {image}: {cause}", image=image)


class PushFailed(PushFailure):
    def __init__(self, image: str, reason: str):
        super().__init__(f"Failed to push {image}: {reason}", image=image)


# ===========================================
# Namespace / dispatch / wait / log
# ===========================================


class NamespaceFailure(PlatformError):
    kind = "NamespaceFailure"
    stage = "namespace"
    http_status = status.HTTP_502_BAD_GATEWAY


class ClusterUnreachable(NamespaceFailure):
    def __init__(self, cause: Exception, namespace: Optional[str] = None):
        self.cause = cause
        super().__init__(f"Cluster API unreachable: {cause}", namespace=namespace)


class PermissionDenied(NamespaceFailure):
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, namespace: str, reason: str):
        super().__init__(f"Not allowed to manage namespace {namespace}: {reason}", namespace=namespace)


class DispatchFailure(PlatformError):
    kind = "DispatchFailure"
    stage = "dispatch"
    http_status = status.HTTP_502_BAD_GATEWAY


class NamespaceUnavailable(DispatchFailure):
    def __init__(self, namespace: str, job_name: str, invocation_id: Optional[str] = None):
        super().__init__(
            f"Namespace {namespace} unavailable for job {job_name}",
            namespace=namespace,
            invocation_id=invocation_id,
        )


class SchedulerRejected(DispatchFailure):
    def __init__(self, job_name: str, reason: str, invocation_id: Optional[str] = None):
        super().__init__(
            f"Scheduler rejected job {job_name}: {reason}",
            job_name=job_name,
            invocation_id=invocation_id,
        )


class DispatchFailed(DispatchFailure):
    def __init__(self, job_name: str, cause: Exception, invocation_id: Optional[str] = None):
        self.cause = cause
        super().__init__(
            f"Failed to submit job {job_name}: {cause}",
            job_name=job_name,
            invocation_id=invocation_id,
        )


class ExecutionNotFound(PlatformError):
    kind = "ExecutionNotFound"
    stage = "wait"
    http_status = status.HTTP_404_NOT_FOUND


class NoPodForInvocation(ExecutionNotFound):
    def __init__(self, function_name: str, invocation_id: str):
        self.function_name = function_name
        self.invocation_id = invocation_id
        super().__init__(
            f"No pod found for function {function_name} - execution {invocation_id}.",
            function_name=function_name,
            invocation_id=invocation_id,
        )


class LogRetrievalFailure(PlatformError):
    kind = "LogRetrievalFailure"
    stage = "log"
    http_status = status.HTTP_502_BAD_GATEWAY


class LogStreamUnavailable(LogRetrievalFailure):
    def __init__(self, pod_name: str, invocation_id: str, cause: Exception):
        self.cause = cause
        super().__init__(
            f"Cannot read log of pod {pod_name}: {cause}",
            pod=pod_name,
            invocation_id=invocation_id,
        )


class InvocationTimeout(PlatformError):
    kind = "Timeout"
    stage = "wait"
    http_status = status.HTTP_504_GATEWAY_TIMEOUT

    def __init__(self, job_name: str, invocation_id: str, timeout: float):
        super().__init__(
            f"Job {job_name} did not reach a terminal phase within {timeout:g}s",
            job_name=job_name,
            invocation_id=invocation_id,
        )


class OperationCancelled(PlatformError):
    kind = "Cancelled"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, stage: str, target: str):
        self.stage = stage
        super().__init__(f"{stage} of {target} cancelled by caller")


class FunctionNotFound(PlatformError):
    kind = "FunctionNotFound"
    stage = "resolve"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str, function_name: str):
        super().__init__(f"Function {function_name} not found for user {user_id}")


# ===========================================
# Exception Handlers
# ===========================================


async def platform_exception_handler(request: Request, exc: PlatformError):
    """Render a PlatformError with its kind and stage."""
    logger.warning(
        f"{exc.kind} at stage {exc.stage}: {exc.message}",
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unhandled exceptions."""
    logger.error(
        f"Global exception handler caught: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"kind": "Internal", "stage": "internal", "message": str(exc)}},
    )
