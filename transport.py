"""
HTTP transport for the license server.

TLS settings are process wide: the SSL context is built once, on the first
request-issuing client or by an explicit ``configure_tls`` call at start-up,
and shared by every ``Transport`` afterwards.
"""

import logging
import ssl
import threading
from typing import Any, Dict, NamedTuple, Optional, Union

import httpx

from config import settings

logger = logging.getLogger(__name__)

_ssl_context: Optional[ssl.SSLContext] = None
_tls_lock = threading.Lock()

SENSITIVE_FIELDS = frozenset({"licenseKey"})


def _redact(body: Dict[str, Any]) -> Dict[str, Any]:
    return {key: "[REDACTED]" if key in SENSITIVE_FIELDS else value for key, value in body.items()}


def configure_tls(minimum_version: Union[str, ssl.TLSVersion, None] = None) -> ssl.SSLContext:
    """
    Build the shared SSL context. Later calls return the existing context.
    """
    global _ssl_context

    with _tls_lock:
        if _ssl_context is not None:
            return _ssl_context

        if minimum_version is None:
            minimum_version = settings.TLS_MINIMUM_VERSION
        if isinstance(minimum_version, str):
            minimum_version = ssl.TLSVersion[minimum_version]

        context = ssl.create_default_context()
        context.minimum_version = minimum_version
        _ssl_context = context
        logger.debug("TLS configured with minimum version %s", minimum_version.name)
        return _ssl_context


def get_ssl_context() -> ssl.SSLContext:
    if _ssl_context is not None:
        return _ssl_context
    return configure_tls()


def is_transient_network_error(exc: BaseException) -> bool:
    """Socket level failures that are worth retrying."""
    return isinstance(exc, (httpx.NetworkError, httpx.ConnectTimeout))


class TransportResponse(NamedTuple):
    status: int
    body: str
    headers: httpx.Headers


class Transport:
    """
    Thin async wrapper over ``httpx.AsyncClient``.

    Transport failures (``httpx.TransportError``) propagate to the caller,
    HTTP error statuses do not: every response is returned as-is.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        base_url = (base_url or settings.LICENSE_API_URL).rstrip("/")
        api_base = (api_base if api_base is not None else settings.LICENSE_API_BASE).strip("/")
        self.base_url = f"{base_url}/{api_base}" if api_base else base_url

        client_kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "timeout": timeout if timeout is not None else settings.LICENSE_API_TIMEOUT,
            "headers": {"Content-Type": "application/json"},
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["verify"] = get_ssl_context()

        self._client = httpx.AsyncClient(**client_kwargs)
        logger.debug("Created HTTP client with base address: %s", self.base_url)

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post(self, path: str, body: Dict[str, Any]) -> TransportResponse:
        logger.debug("Sending POST request to: %s with content: %s", path, _redact(body))
        response = await self._client.post(path, json=body)
        return self._wrap(response)

    async def get(self, path: str, params: Optional[Dict[str, str]] = None) -> TransportResponse:
        logger.debug("Sending GET request to: %s with query: %s", path, params)
        response = await self._client.get(path, params=params)
        return self._wrap(response)

    def _wrap(self, response: httpx.Response) -> TransportResponse:
        logger.debug("Received response with status: %d, body: %s", response.status_code, response.text)
        return TransportResponse(response.status_code, response.text, response.headers)
