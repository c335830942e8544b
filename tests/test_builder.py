import os
import tarfile
import threading
from unittest.mock import MagicMock

import docker.errors
import pytest
import requests

from conftest import build_stream
from kexec.build.builder import ImageBuilder, read_dockerignore
from kexec.build.context import BuildContextAssembler
from kexec.core.errors import BuildFailed, ContextInvalid, ContextMissing, EngineUnavailable, OperationCancelled

TAG = "localhost:5000/alice/hello"
CODE = "def hello(params):\n    print(params)\n"


@pytest.fixture
def context(tmp_path):
    ctx = BuildContextAssembler(str(tmp_path / "contexts")).assemble("alice", "hello", "python27", CODE)
    yield ctx
    ctx.close()


@pytest.fixture
def engine():
    mock_client = MagicMock()
    mock_client.build.side_effect = lambda **kwargs: iter(build_stream("sha256:cafe"))
    return mock_client


def test_build_returns_image_id_and_log(engine, context):
    result = ImageBuilder(engine, retry_backoff=0).build(context.path, TAG)

    assert result.tag == TAG
    assert result.image_id == "sha256:cafe"
    assert "Step 1/3 : FROM python:2.7" in result.log
    _, kwargs = engine.build.call_args
    assert kwargs["tag"] == TAG
    assert kwargs["custom_context"] is True
    assert kwargs["decode"] is True
    assert kwargs["dockerfile"] == "Dockerfile"


def test_archive_contains_context_files(engine, context):
    sent = {}

    def capture(**kwargs):
        with tarfile.open(fileobj=kwargs["fileobj"]) as tar:
            sent["names"] = sorted(tar.getnames())
        return iter(build_stream())

    engine.build.side_effect = capture
    ImageBuilder(engine, retry_backoff=0).build(context.path, TAG)
    assert sent["names"] == ["Dockerfile", "exec"]


def test_dockerignore_applied_but_kept(engine, context):
    with open(os.path.join(context.path, "notes.txt"), "w") as f:
        f.write("scratch")
    with open(os.path.join(context.path, ".dockerignore"), "w") as f:
        f.write("# comment\n*.txt\n.dockerignore\n")
    sent = {}

    def capture(**kwargs):
        with tarfile.open(fileobj=kwargs["fileobj"]) as tar:
            sent["names"] = sorted(tar.getnames())
        return iter(build_stream())

    engine.build.side_effect = capture
    ImageBuilder(engine, retry_backoff=0).build(context.path, TAG)
    assert sent["names"] == [".dockerignore", "Dockerfile", "exec"]


def test_read_dockerignore_skips_comments(context):
    with open(os.path.join(context.path, ".dockerignore"), "w") as f:
        f.write("# comment\n\n*.pyc\n")
    assert read_dockerignore(context.path) == ["*.pyc"]
    assert read_dockerignore("/nonexistent") == []


def test_missing_context_directory(engine, tmp_path):
    with pytest.raises(ContextMissing):
        ImageBuilder(engine).build(str(tmp_path / "gone"), TAG)
    engine.build.assert_not_called()


def test_missing_execution_file(engine, context):
    os.remove(context.execution_file)
    with pytest.raises(ContextMissing):
        ImageBuilder(engine).build(context.path, TAG)
    engine.build.assert_not_called()


def test_excluded_execution_file_is_invalid(engine, context):
    with open(os.path.join(context.path, ".dockerignore"), "w") as f:
        f.write("exec\n")
    with pytest.raises(ContextInvalid):
        ImageBuilder(engine).build(context.path, TAG)
    engine.build.assert_not_called()


def test_engine_error_message_kept_verbatim(engine, context):
    message = "The command '/bin/sh -c pip install nope' returned a non-zero code: 1"
    engine.build.side_effect = lambda **kwargs: iter([
        {"stream": "Step 2/3 : RUN pip install nope\n"},
        {"errorDetail": {"code": 1, "message": message}, "error": message},
    ])
    with pytest.raises(BuildFailed) as exc_info:
        ImageBuilder(engine, retry_backoff=0).build(context.path, TAG)
    assert exc_info.value.engine_message == message
    assert exc_info.value.message == message
    assert engine.build.call_count == 1


def test_api_error_is_build_failure(engine, context):
    engine.build.side_effect = docker.errors.APIError("boom", explanation="dockerfile parse error")
    with pytest.raises(BuildFailed) as exc_info:
        ImageBuilder(engine, retry_backoff=0).build(context.path, TAG)
    assert exc_info.value.message == "dockerfile parse error"


def test_unreachable_engine_is_retried(engine, context):
    engine.build.side_effect = requests.exceptions.ConnectionError("connection refused")
    with pytest.raises(EngineUnavailable):
        ImageBuilder(engine, retry_attempts=3, retry_backoff=0).build(context.path, TAG)
    assert engine.build.call_count == 3


def test_transient_engine_failure_recovers(engine, context):
    attempts = iter([requests.exceptions.ConnectionError("reset"), None])

    def flaky(**kwargs):
        error = next(attempts)
        if error is not None:
            raise error
        return iter(build_stream("sha256:second"))

    engine.build.side_effect = flaky
    result = ImageBuilder(engine, retry_attempts=3, retry_backoff=0).build(context.path, TAG)
    assert result.image_id == "sha256:second"
    assert engine.build.call_count == 2


def test_cancel_discards_partial_image(engine, context):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled) as exc_info:
        ImageBuilder(engine, retry_backoff=0).build(context.path, TAG, cancel=cancel)
    assert exc_info.value.stage == "build"
    engine.remove_image.assert_called_once_with(TAG, force=True)
