import logging

import httpx

from errors import ServerConnectionError
from models import ConnectRequest
from transport import Transport, TransportResponse, is_transient_network_error

logger = logging.getLogger(__name__)

CONNECT_PATH = "/connect"


class ConnectRetrier:
    """
    Issues the connect handshake, retrying transient network failures.

    Attempts follow each other immediately. Only socket level failures are
    retried; any HTTP response, success or not, ends the loop and is
    returned to the caller for classification.
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self.attempts = 0

    async def attempt(self, license_key: str, application_id: str, max_retries: int) -> TransportResponse:
        max_retries = max(max_retries, 1)
        body = ConnectRequest(licenseKey=license_key, applicationId=application_id).model_dump()
        self.attempts = 0

        while True:
            self.attempts += 1
            try:
                logger.debug("Connect attempt %d of %d", self.attempts, max_retries)
                return await self.transport.post(CONNECT_PATH, body)
            except httpx.TransportError as e:
                if not is_transient_network_error(e):
                    raise ServerConnectionError(
                        f"The server failed to connect. ({e})", attempts=self.attempts
                    ) from e

                logger.debug("Network failure on connect attempt %d: %s", self.attempts, e)
                if self.attempts >= max_retries:
                    logger.debug("Max retries (%d) reached", max_retries)
                    raise ServerConnectionError(
                        f"The server failed to connect. ({e})", attempts=self.attempts
                    ) from e
