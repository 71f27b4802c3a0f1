from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Callable, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

DEFAULT_ERROR_MESSAGE = "This message contains no content."


class ApiStatus(IntEnum):
    OK = 200
    DISCONNECTED = 201
    UNAUTHENTICATED = 401
    LICENSE_BANNED = 403
    APPLICATION_NOT_FOUND = 404
    APPLICATION_NOT_SETUP = 406
    LICENSE_PAUSED = 407
    LICENSE_EXPIRED = 408
    LICENSE_IN_USE = 409
    SESSION_EXPIRED = 410
    NOT_FOUND = 411
    RATE_LIMIT_EXCEEDED = 429
    INTERNAL_SERVER_ERROR = 500
    UNKNOWN = 1000

    @classmethod
    def from_status_code(cls, status_code: int) -> "ApiStatus":
        try:
            return cls(status_code)
        except ValueError:
            return cls.UNKNOWN


# Statuses that read-only calls treat as "no result" rather than an error.
SOFT_STATUSES = frozenset({ApiStatus.RATE_LIMIT_EXCEEDED, ApiStatus.NOT_FOUND})


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


# Requests

class ConnectRequest(BaseModel):
    licenseKey: str
    applicationId: str

class SessionRequest(BaseModel):
    sessionId: str
    applicationId: str

# Responses

class ConnectResponse(BaseModel):
    sessionId: str
    expiration: Optional[datetime] = None
    length: int = 0
    applicationName: Optional[str] = None

class Session(ConnectResponse):
    """
    An authenticated session, created only from a successful connect.

    ``length`` is the total license duration in days.
    """
    model_config = ConfigDict(frozen=True)

    applicationId: str

    @classmethod
    def from_response(cls, response: ConnectResponse, application_id: str) -> "Session":
        return cls(applicationId=application_id, **response.model_dump())

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole days left before the license expires, 0 if unknown."""
        if self.expiration is None:
            return 0

        expiration = self.expiration
        if now is None:
            now = datetime.now(timezone.utc)
            if not expiration.tzinfo:
                now = now.replace(tzinfo=None)

        return max((expiration - now).days, 0)

class DisconnectResponse(BaseModel):
    success: bool

class HeartbeatResponse(BaseModel):
    success: bool

class Feature(BaseModel):
    name: str = ""
    enabled: bool = False

class Variable(BaseModel):
    key: str = ""
    value: str = ""

class ErrorResponse(BaseModel):
    message: str = Field(
        default=DEFAULT_ERROR_MESSAGE,
        validation_alias=AliasChoices("error", "message"),
    )

# Client-side types

class ConnectOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = 3
    post_connect: Optional[Callable[[Session], Any]] = None

class RateLimitWindow(BaseModel):
    limit: int = 0
    remaining: int = 0
    reset_at: datetime = datetime.min
