from unittest.mock import patch

import pytest

from kexec.database import crud


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()


def test_put_user_if_not_exists(session):
    user, created = crud.put_user_if_not_exists(session, "alice")
    again, created_again = crud.put_user_if_not_exists(session, "alice")

    assert created is True
    assert created_again is False
    assert again.id == user.id


def test_put_function_inserts_then_overwrites(session):
    user, _ = crud.put_user_if_not_exists(session, "alice")
    first = crud.put_function(session, user, "hello", "v1", "python27", "localhost:5000/alice/hello")
    second = crud.put_function(session, user, "hello", "v2", "python3", "localhost:5000/alice/hello")

    assert second.id == first.id
    assert crud.get_function(session, "alice", "hello").content == "v2"
    assert crud.get_function(session, "alice", "hello").runtime == "python3"


def test_put_function_concurrent_insert_overwrites(session, session_factory):
    user, _ = crud.put_user_if_not_exists(session, "alice")

    other = session_factory()
    other_user = crud.get_user(other, "alice")
    crud.put_function(other, other_user, "hello", "theirs", "python27", "localhost:5000/alice/hello")
    other.close()

    real_get_function = crud.get_function
    lookups = []

    def stale_then_real(db, user_name, name):
        lookups.append(name)
        if len(lookups) == 1:
            return None
        return real_get_function(db, user_name, name)

    with patch("kexec.database.crud.get_function", side_effect=stale_then_real):
        function = crud.put_function(session, user, "hello", "mine", "python3", "localhost:5000/alice/hello")

    assert len(lookups) == 2
    assert function.content == "mine"
    assert function.runtime == "python3"
    assert [f.content for f in crud.list_functions_of_user(session, "alice")] == ["mine"]


def test_functions_are_scoped_to_owner(session):
    alice, _ = crud.put_user_if_not_exists(session, "alice")
    bob, _ = crud.put_user_if_not_exists(session, "bob")
    crud.put_function(session, alice, "zeta", "code", "python27", "r/alice/zeta")
    crud.put_function(session, alice, "alpha", "code", "python27", "r/alice/alpha")
    crud.put_function(session, bob, "alpha", "code", "python27", "r/bob/alpha")

    assert [f.name for f in crud.list_functions_of_user(session, "alice")] == ["alpha", "zeta"]
    assert crud.get_function(session, "bob", "zeta") is None
    assert crud.get_function(session, "bob", "alpha").image == "r/bob/alpha"
    assert crud.list_functions_of_user(session, "carol") == []


def test_record_and_get_execution(session):
    user, _ = crud.put_user_if_not_exists(session, "alice")
    function = crud.put_function(session, user, "hello", "code", "python27", "r/alice/hello")
    invocation_id = "6fa459ea-ee8a-11e6-8d0e-0242ac130003"

    crud.record_execution(session, function, invocation_id, f"hello-{invocation_id}", "alice-serverless",
                          status="succeeded", log="hi\n", execution_time=1.5)

    execution = crud.get_execution(session, invocation_id)
    assert execution.function.name == "hello"
    assert execution.log == "hi\n"
    assert execution.execution_time == 1.5
    assert crud.get_execution(session, "00000000-0000-0000-0000-000000000000") is None
