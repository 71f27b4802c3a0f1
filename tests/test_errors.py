"""Tests for the error taxonomy and the status classifier."""

import json

import pytest

from errors import (
    ApplicationNotFoundError,
    ApplicationNotSetupError,
    FailedToDisconnectError,
    InternalServerError,
    LicenseBannedError,
    LicenseExpiredError,
    LicenseInUseError,
    LicensePausedError,
    LicensingError,
    MalformedResponseError,
    NotConnectedError,
    NotFoundError,
    RateLimitExceededError,
    ServerConnectionError,
    SessionBusyError,
    SessionExpiredError,
    SessionStateError,
    UnauthenticatedError,
    UnknownStatusError,
    classify_error,
)
from models import DEFAULT_ERROR_MESSAGE, ApiStatus


def body(message: str) -> str:
    return json.dumps({"error": message})


class TestExceptionHierarchy:
    def test_server_errors_inherit_from_licensing_error(self) -> None:
        for exc in (ServerConnectionError, MalformedResponseError, FailedToDisconnectError,
                    UnauthenticatedError, InternalServerError, UnknownStatusError):
            assert issubclass(exc, LicensingError)

    def test_state_errors_are_not_server_errors(self) -> None:
        for exc in (NotConnectedError, SessionBusyError):
            assert issubclass(exc, SessionStateError)
            assert not issubclass(exc, LicensingError)

    def test_connection_error_stores_attempts(self) -> None:
        e = ServerConnectionError("down", attempts=3)
        assert e.attempts == 3
        assert e.message == "down"
        assert str(e) == "down"


class TestClassifyError:
    @pytest.mark.parametrize("status, expected", [
        (401, UnauthenticatedError),
        (403, LicenseBannedError),
        (404, ApplicationNotFoundError),
        (406, ApplicationNotSetupError),
        (407, LicensePausedError),
        (408, LicenseExpiredError),
        (409, LicenseInUseError),
        (410, SessionExpiredError),
        (411, NotFoundError),
        (429, RateLimitExceededError),
        (500, InternalServerError),
    ])
    def test_maps_each_known_status(self, status: int, expected: type) -> None:
        error = classify_error(status, body("nope"))
        assert type(error) is expected
        assert error.status == ApiStatus(status)
        assert error.message == "nope"

    def test_unrecognised_status_is_unknown(self) -> None:
        error = classify_error(418, body("teapot"))
        assert isinstance(error, UnknownStatusError)
        assert error.status == ApiStatus.UNKNOWN
        assert error.status_code == 418
        assert error.message == "teapot"

    def test_missing_error_field_uses_default_message(self) -> None:
        assert classify_error(401, "{}").message == DEFAULT_ERROR_MESSAGE

    def test_empty_body_uses_default_message(self) -> None:
        assert classify_error(500, "").message == DEFAULT_ERROR_MESSAGE

    def test_accepts_message_field(self) -> None:
        assert classify_error(409, json.dumps({"message": "in use"})).message == "in use"

    def test_invalid_json_is_fatal(self) -> None:
        with pytest.raises(MalformedResponseError):
            classify_error(401, "<html>bad gateway</html>")

    def test_non_string_message_is_fatal(self) -> None:
        with pytest.raises(MalformedResponseError):
            classify_error(401, json.dumps({"error": {"nested": True}}))

    @pytest.mark.parametrize("status", [200, 201])
    def test_misplaced_success_status_is_unknown(self, status: int) -> None:
        error = classify_error(status, body("fine"))
        assert isinstance(error, UnknownStatusError)
        assert error.status == ApiStatus.UNKNOWN
        assert error.status_code == status
