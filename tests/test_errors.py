import json
from unittest.mock import MagicMock

import pytest

from kexec.core.errors import (
    AuthRejected,
    BuildFailed,
    InvocationTimeout,
    NoPodForInvocation,
    OperationCancelled,
    PermissionDenied,
    UnsupportedRuntime,
    global_exception_handler,
    platform_exception_handler,
)


@pytest.mark.parametrize("error, kind, stage, status", [
    (UnsupportedRuntime("cobol85"), "InputValidation", "validate", 400),
    (BuildFailed("img", "boom"), "BuildFailure", "build", 502),
    (AuthRejected("img", "unauthorized"), "PushFailure", "push", 502),
    (PermissionDenied("alice-serverless", "Forbidden"), "NamespaceFailure", "namespace", 403),
    (NoPodForInvocation("hello", "id-1"), "ExecutionNotFound", "wait", 404),
    (InvocationTimeout("hello-id-1", "id-1", 30), "Timeout", "wait", 504),
    (OperationCancelled("push", "img"), "Cancelled", "push", 409),
])
def test_error_taxonomy(error, kind, stage, status):
    assert error.kind == kind
    assert error.stage == stage
    assert error.http_status == status


def request_for(path="/functions/"):
    request = MagicMock()
    request.url.path = path
    request.method = "POST"
    return request


@pytest.mark.asyncio
async def test_platform_error_response():
    response = await platform_exception_handler(request_for(), NoPodForInvocation("hello", "id-1"))

    assert response.status_code == 404
    assert json.loads(response.body) == {"error": {
        "kind": "ExecutionNotFound",
        "stage": "wait",
        "message": "No pod found for function hello - execution id-1.",
        "function_name": "hello",
        "invocation_id": "id-1",
    }}


@pytest.mark.asyncio
async def test_unexpected_error_response():
    response = await global_exception_handler(request_for(), RuntimeError("kaboom"))

    assert response.status_code == 500
    assert json.loads(response.body)["error"]["kind"] == "Internal"
