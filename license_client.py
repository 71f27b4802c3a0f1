import asyncio
import logging
from typing import Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from config import settings
from connect_retrier import ConnectRetrier
from errors import (
    ErrorHandler,
    FailedToDisconnectError,
    LicensingError,
    MalformedResponseError,
    NotConnectedError,
    ServerConnectionError,
    SessionBusyError,
    classify_error,
)
from heartbeat import HeartbeatScheduler
from models import (
    SOFT_STATUSES,
    ApiStatus,
    ConnectionState,
    ConnectOptions,
    ConnectResponse,
    DisconnectResponse,
    Feature,
    HeartbeatResponse,
    Session,
    SessionRequest,
    Variable,
)
from rate_limits import RateLimitTracker
from transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

DISCONNECT_PATH = "/disconnect"
HEARTBEAT_PATH = "/heartbeat"
FEATURE_PATH = "/feature"
VARIABLE_PATH = "/variable"

T = TypeVar("T", bound=BaseModel)


class LicenseClient:
    """
    Session manager for one application against the license server.

    Owns the connection state and the session, runs the heartbeat while
    connected and applies the error propagation policy: failures are raised,
    or handed to ``error_handler`` when one is installed, in which case the
    operation returns None.

    Connect and disconnect are serialized. Issuing one while another is in
    flight raises ``SessionBusyError`` rather than waiting.
    """

    def __init__(
        self,
        application_id: Optional[str] = None,
        transport: Optional[Transport] = None,
        error_handler: Optional[ErrorHandler] = None,
        heartbeat_interval: Optional[float] = None,
        heartbeat_max_failures: Optional[int] = None,
        join_timeout: Optional[float] = None,
    ):
        self.application_id = application_id or settings.APPLICATION_ID
        if not self.application_id:
            raise ValueError("Application ID cannot be empty.")

        self._owns_transport = transport is None
        self.transport = transport or Transport()
        self.error_handler = error_handler
        self.rate_limits = RateLimitTracker()
        self.retrier = ConnectRetrier(self.transport)
        self.join_timeout = join_timeout if join_timeout is not None else settings.HEARTBEAT_JOIN_TIMEOUT_SECONDS
        self.heartbeat = HeartbeatScheduler(
            session_provider=lambda: self._session,
            send_heartbeat=self._send_heartbeat,
            on_threshold=self._teardown_from_heartbeat,
            interval=heartbeat_interval,
            max_failures=heartbeat_max_failures,
        )

        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()
        self._teardown_pending = False

    async def __aenter__(self) -> "LicenseClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        return self._session.sessionId if self._session else None

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self.heartbeat.running

    async def connect(self, license_key: str, options: Optional[ConnectOptions] = None) -> Optional[Session]:
        """
        Authenticate the license and start the heartbeat.

        Connecting again while connected replaces the session and re-arms
        the heartbeat failure count without starting a second loop.
        """
        if not license_key:
            raise ValueError("License key cannot be empty.")
        if options is None:
            options = ConnectOptions(max_retries=settings.CONNECT_MAX_RETRIES)
        if self._lock.locked():
            raise SessionBusyError("A connect or disconnect is already in progress.")

        async with self._lock:
            self._teardown_pending = False
            reconnecting = self._state == ConnectionState.CONNECTED
            if not reconnecting:
                self._state = ConnectionState.CONNECTING

            session = None
            try:
                response = await self.retrier.attempt(license_key, self.application_id, options.max_retries)
                connect_response = self._handle_response(response, ApiStatus.OK, ConnectResponse)
                if connect_response is not None:
                    session = Session.from_response(connect_response, self.application_id)
                    self._session = session
                    self._state = ConnectionState.CONNECTED
                    self.heartbeat.start()
            finally:
                if session is None and not reconnecting:
                    self._state = ConnectionState.DISCONNECTED
                if self._teardown_pending:
                    # the heartbeat gave up on the old session during the handshake
                    self._teardown_pending = False
                    if session is None and self._session is not None:
                        await self._force_teardown()

        if session is None:
            return None

        logger.info("Connected to %s (session expires %s)", session.applicationName or self.application_id, session.expiration)
        if options.post_connect is not None:
            options.post_connect(session)
        return session

    async def disconnect(self) -> bool:
        """
        End the session on the server.

        The session is only dropped once the server confirms it; otherwise
        it is kept, the heartbeat resumes and ``FailedToDisconnectError`` is
        raised or reported. Returns True when disconnected.
        """
        if self._state != ConnectionState.CONNECTED:
            raise NotConnectedError("Cannot call disconnect() without being connected.")
        if self._lock.locked():
            raise SessionBusyError("A connect or disconnect is already in progress.")

        async with self._lock:
            return await self._disconnect(resume_heartbeat=True)

    async def get_feature(self, name: str) -> Optional[Feature]:
        session = self._require_session("get_feature")
        response = await self._get(FEATURE_PATH, session, name)
        return self._handle_response(response, ApiStatus.OK, Feature, soft=True)

    async def get_variable(self, name: str) -> Optional[Variable]:
        session = self._require_session("get_variable")
        response = await self._get(VARIABLE_PATH, session, name)
        return self._handle_response(response, ApiStatus.OK, Variable, soft=True)

    async def aclose(self):
        """
        Stop the heartbeat, disconnect if a session is active and release
        the scheduler and transport. A rejected disconnect is logged, not
        raised.
        """
        self.heartbeat.stop()
        try:
            if self._session is not None and self._state == ConnectionState.CONNECTED and not self._lock.locked():
                try:
                    async with self._lock:
                        await self._disconnect(resume_heartbeat=False)
                except FailedToDisconnectError as e:
                    logger.warning("Failed to disconnect while closing: %s", e)
            else:
                await self.heartbeat.join(self.join_timeout)
        finally:
            await self.heartbeat.shutdown()
            if self._owns_transport:
                await self.transport.aclose()

    async def _disconnect(self, resume_heartbeat: bool, report: bool = True) -> bool:
        """
        Disconnect with the lock held. Joins the heartbeat unless running
        inside it. With ``report`` off, failures are always raised.
        """
        session = self._session
        self._state = ConnectionState.DISCONNECTING
        self.heartbeat.stop()

        disconnected = False
        try:
            body = SessionRequest(sessionId=session.sessionId, applicationId=self.application_id).model_dump()
            try:
                response = await self.transport.post(DISCONNECT_PATH, body)
            except httpx.TransportError as e:
                raise ServerConnectionError(f"The server failed to disconnect. ({e})") from e

            result = self._handle_response(response, ApiStatus.DISCONNECTED, DisconnectResponse, report=report)
            if result is None:
                return False

            if not result.success:
                error = FailedToDisconnectError(
                    "Failed to disconnect from the server.", status=ApiStatus.DISCONNECTED
                )
                if report and self._report(error, error.status):
                    return False
                raise error

            self._session = None
            self._state = ConnectionState.DISCONNECTED
            disconnected = True
            logger.info("Disconnected session for application %s", self.application_id)
            return True
        finally:
            if not disconnected:
                self._state = ConnectionState.CONNECTED
            await self.heartbeat.join(self.join_timeout)
            if not disconnected and resume_heartbeat:
                self.heartbeat.start()

    async def _teardown_from_heartbeat(self):
        """
        Forced teardown after the heartbeat failure threshold. The server is
        asked to disconnect, but the local session is dropped either way.

        While a reconnect holds the lock the teardown is deferred to it, and
        only happens if the reconnect does not install a new session.
        """
        if self._lock.locked():
            self._teardown_pending = True
            logger.debug("Heartbeat teardown deferred until the reconnect completes")
            return
        if self._state != ConnectionState.CONNECTED:
            return

        async with self._lock:
            await self._force_teardown()

    async def _force_teardown(self):
        """Disconnect best-effort with the lock held, then drop the session."""
        try:
            await self._disconnect(resume_heartbeat=False, report=False)
        except LicensingError as e:
            logger.warning("Server did not confirm heartbeat-triggered disconnect: %s", e)
        finally:
            if self._session is not None:
                self._session = None
                self._state = ConnectionState.DISCONNECTED
                logger.info("Session dropped after failed heartbeats")

    async def _send_heartbeat(self, session: Session) -> bool:
        body = SessionRequest(sessionId=session.sessionId, applicationId=session.applicationId).model_dump()
        response = await self.transport.post(HEARTBEAT_PATH, body)
        result = self._handle_response(response, ApiStatus.OK, HeartbeatResponse, soft=True, report=False)
        return result is not None and result.success

    async def _get(self, path: str, session: Session, name: str) -> TransportResponse:
        params = {"sessionId": session.sessionId, "applicationId": self.application_id, "name": name}
        try:
            return await self.transport.get(path, params=params)
        except httpx.TransportError as e:
            raise ServerConnectionError(f"The server failed to respond. ({e})") from e

    def _require_session(self, operation: str) -> Session:
        if self._state != ConnectionState.CONNECTED or self._session is None:
            raise NotConnectedError(f"Cannot call {operation}() without being connected.")
        return self._session

    def _handle_response(
        self,
        response: TransportResponse,
        expected: ApiStatus,
        model: Type[T],
        soft: bool = False,
        report: bool = True,
    ) -> Optional[T]:
        """
        Turn a server response into ``model``.

        With ``soft``, rate limited and not found responses give None. Any
        other unexpected status is classified and raised, or reported to the
        error handler (when ``report`` allows it) and None returned.
        """
        self.rate_limits.update_from(response.headers)
        status = ApiStatus.from_status_code(response.status)

        if soft and status in SOFT_STATUSES:
            logger.debug("No result for %s response", status.name)
            return None

        if response.status != expected:
            error = classify_error(response.status, response.body)
            if report and self._report(error, status):
                return None
            raise error

        try:
            return model.model_validate_json(response.body)
        except ValidationError as e:
            raise MalformedResponseError("The server responded with invalid JSON.", status=status) from e

    def _report(self, error: LicensingError, status: ApiStatus) -> bool:
        if self.error_handler is None:
            return False

        logger.debug("Reporting %s to error handler: %s", type(error).__name__, error.message)
        self.error_handler(error, status)
        return True
