from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from kubernetes import client as k8s
from kubernetes.client.rest import ApiException

from kexec.core.config import Settings
from kexec.core.security import issue_access_token
from kexec.database.database import create_db_engine, init_db
from kexec.k8s.client import KubeClients
from kexec.main import create_app
from kexec.services.context import build_platform_context

USER = "alice"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def api_exception(status, reason="error"):
    return ApiException(status=status, reason=reason)


def build_stream(image_id="sha256:1234abcd"):
    return [
        {"stream": "Step 1/3 : FROM python:2.7\n"},
        {"stream": " ---> 3be5b9e1c2f0\n"},
        {"aux": {"ID": image_id}},
        {"stream": "Successfully built 1234abcd\n"},
    ]


def push_stream(digest="sha256:feedbeef"):
    return [
        {"status": "The push refers to repository [localhost:5000/alice/hello]"},
        {"status": "Pushed", "id": "a1b2c3"},
        {"status": f"latest: digest: {digest} size: 528"},
        {"aux": {"Tag": "latest", "Digest": digest, "Size": 528}},
    ]


def make_pod(name, seconds=0, phase="Succeeded"):
    return k8s.V1Pod(
        metadata=k8s.V1ObjectMeta(name=name, creation_timestamp=T0 + timedelta(seconds=seconds)),
        status=k8s.V1PodStatus(phase=phase),
    )


def pod_list(*pods):
    return k8s.V1PodList(items=list(pods))


def job_status(succeeded=None, failed=None, active=None):
    return k8s.V1Job(status=k8s.V1JobStatus(succeeded=succeeded, failed=failed, active=active))


def log_response(*chunks):
    response = MagicMock()
    response.stream.return_value = iter(chunks)
    return response


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SQLALCHEMY_DATABASE_URI="sqlite://",
        IMAGEBUILD_CONTEXT_ROOT=str(tmp_path / "contexts"),
        DOCKER_REGISTRY="localhost:5000",
        SECRET_KEY="test-secret",
        RETRY_ATTEMPTS=3,
        RETRY_BACKOFF_SECONDS=0,
        POLL_INTERVAL_SECONDS=0,
        INVOKE_TIMEOUT_SECONDS=5,
        REDIS_URL=None,
    )


@pytest.fixture
def docker_client():
    mock_client = MagicMock()
    mock_client.build.side_effect = lambda **kwargs: iter(build_stream())
    mock_client.push.side_effect = lambda *args, **kwargs: iter(push_stream())
    return mock_client


@pytest.fixture
def kube():
    core_v1 = MagicMock()
    batch_v1 = MagicMock()
    core_v1.read_namespace.side_effect = api_exception(404, "Not Found")
    core_v1.create_namespace.side_effect = lambda body: body
    batch_v1.create_namespaced_job.side_effect = lambda namespace, body: body
    batch_v1.read_namespaced_job_status.return_value = job_status(succeeded=1)
    core_v1.list_namespaced_pod.return_value = pod_list(make_pod("hello-pod"))
    core_v1.read_namespaced_pod_log.side_effect = \
        lambda **kwargs: log_response(b"2026-01-01T12:00:01.000000000Z hello world\n")
    return KubeClients(core_v1=core_v1, batch_v1=batch_v1)


@pytest.fixture
def platform(settings, docker_client, kube):
    engine = create_db_engine(settings.SQLALCHEMY_DATABASE_URI)
    ctx = build_platform_context(settings, docker_client=docker_client, kube_clients=kube, engine=engine)
    yield ctx
    ctx.close()


@pytest.fixture
def db(platform):
    session = platform.session_factory()
    yield session
    session.close()


@pytest.fixture
def session_factory():
    return init_db(create_db_engine("sqlite://"))


@pytest.fixture
def api(platform):
    app = create_app(context=platform)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(settings):
    token = issue_access_token(settings, USER)
    return {"Authorization": f"Bearer {token}"}
