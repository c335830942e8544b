"""
Build-and-invoke orchestration.

``create_function`` runs assemble -> build -> publish -> persist and stops at
the first failing stage, so an image that failed to build is never pushed and
a function whose push failed is never stored. ``invoke_function`` resolves
the stored function, ensures the caller's namespace, dispatches one job,
waits for it and returns its log.

All methods block; HTTP handlers run them in the threadpool.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..core.errors import (
    ExecutionNotFound,
    FunctionNotFound,
    InvalidName,
    InvocationTimeout,
    PlatformError,
)
from ..core.ids import is_uuid
from ..core.naming import image_reference, validate_function_name, validate_user_id
from ..database import crud
from ..k8s.namespaces import namespace_for_user
from ..k8s.naming import Invocation
from ..metrics import collector
from ..metrics.collector import MetricsCollector
from ..models.function import Function
from .context import PlatformContext

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    function: Function
    image: str
    image_id: Optional[str] = None
    digest: Optional[str] = None
    created: bool = True


@dataclass
class InvokeResult:
    invocation_id: str
    job_name: str
    namespace: str
    status: str
    log: bytes
    execution_time: Optional[float] = None


def decode_log(log: bytes) -> str:
    return log.decode("utf-8", errors="replace")


class FunctionPipeline:
    def __init__(self, context: PlatformContext):
        self.context = context

    def create_function(self, db: Session, user_id: str, function_name: str, runtime_id: str,
                        code: str, cancel: Optional[threading.Event] = None) -> CreateResult:
        ctx = self.context
        # assemble() validates every input before writing anything
        with ctx.assembler.assemble(user_id, function_name, runtime_id, code) as build_context:
            image = image_reference(ctx.settings.DOCKER_REGISTRY, user_id, function_name)
            build = ctx.builder.build(build_context.path, image, cancel=cancel)
            push = ctx.publisher.publish(image, cancel=cancel)

        user, new_user = crud.put_user_if_not_exists(db, user_id)
        if new_user:
            logger.info(f"Registered new user {user_id}")
        created = crud.get_function(db, user_id, function_name) is None
        function = crud.put_function(db, user, function_name, code, build_context.runtime.name, image)
        logger.info(f"{'Created' if created else 'Updated'} function {user_id}/{function_name} -> {image}")

        return CreateResult(
            function=function,
            image=image,
            image_id=build.image_id,
            digest=push.digest,
            created=created,
        )

    def get_function(self, db: Session, user_id: str, function_name: str) -> Function:
        function = crud.get_function(db, user_id, function_name)
        if function is None:
            raise FunctionNotFound(user_id, function_name)
        return function

    def invoke_function(self, db: Session, user_id: str, function_name: str, params: str,
                        timeout: Optional[float] = None) -> InvokeResult:
        ctx = self.context
        validate_user_id(user_id)
        validate_function_name(function_name)
        function = self.get_function(db, user_id, function_name)
        if timeout is not None and timeout > ctx.settings.MAX_INVOKE_TIMEOUT_SECONDS:
            logger.info(f"Requested timeout {timeout:g}s capped to {ctx.settings.MAX_INVOKE_TIMEOUT_SECONDS:g}s")
            timeout = ctx.settings.MAX_INVOKE_TIMEOUT_SECONDS

        namespace = ctx.namespaces.ensure_namespace(user_id)
        start_time = time.time()
        invocation = ctx.dispatcher.dispatch(user_id, function_name, params, namespace.name)
        metrics = MetricsCollector(db)

        try:
            outcome = ctx.waiter.await_outcome(invocation, timeout)
        except PlatformError as e:
            if isinstance(e, InvocationTimeout):
                status = collector.TIMEOUT
            elif isinstance(e, ExecutionNotFound):
                status = collector.NOT_FOUND
            else:
                status = collector.ERROR
            e.details.setdefault("invocation_id", invocation.invocation_id)
            metrics.record_execution(
                function, invocation.invocation_id, invocation.job_name, invocation.namespace,
                status=status, error=e.message, execution_time=time.time() - start_time,
            )
            raise

        execution_time = time.time() - start_time
        status = collector.SUCCEEDED if outcome.succeeded else collector.FAILED
        metrics.record_execution(
            function, invocation.invocation_id, invocation.job_name, invocation.namespace,
            status=status, log=decode_log(outcome.log), execution_time=execution_time,
        )
        if not outcome.succeeded:
            logger.warning(f"Invocation {invocation.invocation_id} of {function_name} failed in its container")

        return InvokeResult(
            invocation_id=invocation.invocation_id,
            job_name=invocation.job_name,
            namespace=invocation.namespace,
            status=status,
            log=outcome.log,
            execution_time=execution_time,
        )

    def fetch_invocation_log(self, user_id: str, function_name: str, invocation_id: str,
                             db: Optional[Session] = None) -> bytes:
        """
        Log of a past invocation, found again from its job name alone.

        A stored execution log is preferred when a session is given; the
        cluster is asked otherwise (or when the record has no log).
        """
        validate_user_id(user_id)
        validate_function_name(function_name)
        if not is_uuid(invocation_id):
            raise InvalidName("invocation id", invocation_id, "must be a UUID")

        if db is not None:
            execution = crud.get_execution(db, invocation_id)
            if (execution is not None and execution.log is not None
                    and execution.function.name == function_name
                    and execution.function.owner.name == user_id):
                return execution.log.encode("utf-8")

        invocation = Invocation(
            function_name=function_name,
            invocation_id=invocation_id,
            namespace=namespace_for_user(user_id, self.context.settings.NAMESPACE_SUFFIX),
        )
        return self.context.waiter.fetch_log(invocation)
