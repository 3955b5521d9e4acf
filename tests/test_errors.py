import pytest

from gamedatahub.errors import NotFoundError, ServiceError, StorageError, ValidationError


@pytest.mark.parametrize("cls", [NotFoundError, ValidationError, StorageError])
def test_all_errors_are_service_errors(cls):
    err = cls("boom")
    assert isinstance(err, ServiceError)
    assert err.args == ("boom",)
    assert str(err) == "boom"


def test_not_found_is_lookup_error():
    err = NotFoundError("missing")
    assert isinstance(err, LookupError)
    assert err.args == ("missing",)


def test_validation_is_value_error():
    err = ValidationError("bad")
    assert isinstance(err, ValueError)
    assert str(err) == "bad"


def test_storage_error_keeps_cause():
    original = RuntimeError("disk")
    err = StorageError("write failed")
    caught = None
    try:
        raise err from original
    except ServiceError as exc:
        caught = exc
    assert caught is err
    assert err.__cause__ is original
    assert err.args == ("write failed",)
    assert str(err) == "write failed"


def test_storage_error_is_not_validation_error():
    storage = StorageError("io")
    missing = NotFoundError("gone")
    assert not isinstance(storage, ValidationError)
    assert not isinstance(missing, ValueError)
    assert storage.args == ("io",)
    assert missing.args == ("gone",)