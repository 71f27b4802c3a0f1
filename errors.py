"""
Error taxonomy for the licensing client.

Server failures derive from ``LicensingError`` and may be routed to an
installed error handler instead of being raised. Misuse of the client
(calling an operation in the wrong state) raises ``SessionStateError``,
which is never routed to a handler.
"""

import json
from typing import Callable, Optional, Union

from pydantic import ValidationError

from models import ApiStatus, ErrorResponse


class LicensingError(Exception):
    """Base exception for all licensing server errors."""

    status = ApiStatus.UNKNOWN

    def __init__(self, message: str, status: Optional[ApiStatus] = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ServerConnectionError(LicensingError):
    """The server could not be reached."""

    def __init__(self, message: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class MalformedResponseError(LicensingError):
    """The server sent a body that does not match the expected schema."""


class FailedToDisconnectError(LicensingError):
    """The server did not confirm the disconnect."""


class UnauthenticatedError(LicensingError):
    status = ApiStatus.UNAUTHENTICATED


class LicenseBannedError(LicensingError):
    status = ApiStatus.LICENSE_BANNED


class ApplicationNotFoundError(LicensingError):
    status = ApiStatus.APPLICATION_NOT_FOUND


class ApplicationNotSetupError(LicensingError):
    status = ApiStatus.APPLICATION_NOT_SETUP


class LicensePausedError(LicensingError):
    status = ApiStatus.LICENSE_PAUSED


class LicenseExpiredError(LicensingError):
    status = ApiStatus.LICENSE_EXPIRED


class LicenseInUseError(LicensingError):
    status = ApiStatus.LICENSE_IN_USE


class SessionExpiredError(LicensingError):
    status = ApiStatus.SESSION_EXPIRED


class NotFoundError(LicensingError):
    status = ApiStatus.NOT_FOUND


class RateLimitExceededError(LicensingError):
    status = ApiStatus.RATE_LIMIT_EXCEEDED


class InternalServerError(LicensingError):
    status = ApiStatus.INTERNAL_SERVER_ERROR


class UnknownStatusError(LicensingError):
    """The server answered with a status outside the known set."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionStateError(RuntimeError):
    """An operation was called in a state that does not allow it."""


class NotConnectedError(SessionStateError):
    pass


class SessionBusyError(SessionStateError):
    """A connect or disconnect is already in flight."""


ErrorHandler = Callable[[LicensingError, ApiStatus], None]

_ERRORS_BY_STATUS = {
    error.status: error
    for error in (
        UnauthenticatedError,
        LicenseBannedError,
        ApplicationNotFoundError,
        ApplicationNotSetupError,
        LicensePausedError,
        LicenseExpiredError,
        LicenseInUseError,
        SessionExpiredError,
        NotFoundError,
        RateLimitExceededError,
        InternalServerError,
    )
}


def classify_error(status_code: Union[int, ApiStatus], raw_body: Union[str, bytes]) -> LicensingError:
    """
    Map a failed response to its error kind.

    The body is expected to be a JSON object whose ``error`` field holds the
    human readable message. A body that is not JSON at all means client and
    server disagree on the protocol and raises ``MalformedResponseError``.
    """
    status = ApiStatus.from_status_code(int(status_code))
    if status in (ApiStatus.OK, ApiStatus.DISCONNECTED):
        # a success code where the other one was expected
        return UnknownStatusError(
            f"The server answered with unexpected success status {status_code}.",
            status_code=int(status_code),
        )

    try:
        payload = json.loads(raw_body) if raw_body else {}
        error = ErrorResponse.model_validate(payload if isinstance(payload, dict) else {})
    except (ValueError, ValidationError) as e:
        raise MalformedResponseError(
            f"The server sent an undecodable error body for status {status_code}."
        ) from e

    error_class = _ERRORS_BY_STATUS.get(status)
    if error_class is None:
        return UnknownStatusError(error.message, status_code=int(status_code))

    return error_class(error.message)
