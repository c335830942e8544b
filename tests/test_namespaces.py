import threading
from unittest.mock import MagicMock

import pytest
from kubernetes import client as k8s
from urllib3.exceptions import MaxRetryError

from conftest import api_exception
from kexec.core.errors import ClusterUnreachable, PermissionDenied
from kexec.k8s.namespaces import NamespaceManager, namespace_for_user


def existing(name, owner="alice"):
    return k8s.V1Namespace(metadata=k8s.V1ObjectMeta(name=name, labels={"name": name, "kexec/owner": owner}))


@pytest.fixture
def core_v1():
    return MagicMock()


@pytest.mark.parametrize("user_id, expected", [
    ("alice", "alice-serverless"),
    ("john_doe", "john-doe-serverless"),
    ("John.Doe", "john-doe-serverless"),
    ("a__b--c", "a-b-c-serverless"),
])
def test_namespace_for_user(user_id, expected):
    assert namespace_for_user(user_id) == expected
    assert namespace_for_user(user_id) == namespace_for_user(user_id)


def test_namespace_name_fits_label_limit():
    name = namespace_for_user("x" * 100)
    assert len(name) <= 63
    assert name.endswith("-serverless")


def test_long_ids_sharing_a_prefix_get_distinct_namespaces():
    first = namespace_for_user("team" + "x" * 60 + "alice")
    second = namespace_for_user("team" + "x" * 60 + "bob")

    assert first != second
    for name in (first, second):
        assert len(name) <= 63
        assert name.startswith("teamxxx")
        assert name.endswith("-serverless")
    assert first == namespace_for_user("team" + "x" * 60 + "alice")


def test_short_ids_are_not_tagged():
    user_id = "a" * (63 - len("-serverless"))
    assert namespace_for_user(user_id) == user_id + "-serverless"


def test_existing_namespace_is_reused(core_v1):
    core_v1.read_namespace.return_value = existing("alice-serverless")
    handle = NamespaceManager(core_v1).ensure_namespace("alice")

    assert handle.name == "alice-serverless"
    assert handle.created is False
    core_v1.create_namespace.assert_not_called()


def test_missing_namespace_is_created_with_labels(core_v1):
    core_v1.read_namespace.side_effect = api_exception(404, "Not Found")
    core_v1.create_namespace.side_effect = lambda body: body
    handle = NamespaceManager(core_v1).ensure_namespace("john_doe")

    assert handle.created is True
    assert handle.name == "john-doe-serverless"
    body = core_v1.create_namespace.call_args.kwargs["body"]
    assert body.metadata.name == "john-doe-serverless"
    assert body.metadata.labels == {"name": "john-doe-serverless", "kexec/owner": "john_doe"}


def test_creation_race_is_success(core_v1):
    core_v1.read_namespace.side_effect = [api_exception(404), existing("alice-serverless")]
    core_v1.create_namespace.side_effect = api_exception(409, "AlreadyExists")
    handle = NamespaceManager(core_v1).ensure_namespace("alice")

    assert handle.name == "alice-serverless"
    assert handle.created is False


def test_concurrent_ensure_yields_one_namespace(core_v1):
    created = []
    lock = threading.Lock()

    def read(name):
        with lock:
            if not created:
                raise api_exception(404)
        return existing(name)

    def create(body):
        with lock:
            if created:
                raise api_exception(409, "AlreadyExists")
            created.append(body.metadata.name)
        return body

    core_v1.read_namespace.side_effect = read
    core_v1.create_namespace.side_effect = create
    manager = NamespaceManager(core_v1)
    results = []

    def worker():
        results.append(manager.ensure_namespace("alice").name)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == ["alice-serverless"] * 8
    assert created == ["alice-serverless"]


def test_forbidden_is_permission_denied(core_v1):
    core_v1.read_namespace.side_effect = api_exception(404)
    core_v1.create_namespace.side_effect = api_exception(403, "Forbidden")
    with pytest.raises(PermissionDenied):
        NamespaceManager(core_v1, retry_backoff=0).ensure_namespace("alice")
    assert core_v1.create_namespace.call_count == 1


def test_server_error_is_retried(core_v1):
    core_v1.read_namespace.side_effect = api_exception(503, "Service Unavailable")
    with pytest.raises(ClusterUnreachable):
        NamespaceManager(core_v1, retry_attempts=3, retry_backoff=0).ensure_namespace("alice")
    assert core_v1.read_namespace.call_count == 3


def test_transport_error_recovers(core_v1):
    core_v1.read_namespace.side_effect = [
        MaxRetryError(None, "/api/v1/namespaces/alice-serverless"),
        existing("alice-serverless"),
    ]
    handle = NamespaceManager(core_v1, retry_attempts=3, retry_backoff=0).ensure_namespace("alice")
    assert handle.name == "alice-serverless"
