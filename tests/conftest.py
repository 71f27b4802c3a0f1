"""Pytest fixtures: an in-process fake of the license server."""
import asyncio
import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from license_client import LicenseClient
from transport import Transport

APPLICATION_ID = "4129b0d2-5ccb-419d-819f-645f359358c5"
API_PREFIX = "/api/v1"

CONNECT_BODY = {
    "sessionId": "session-1",
    "expiration": "2030-01-01T00:00:00Z",
    "length": 30,
    "applicationName": "Demo App",
}


def json_response(status: int, body: Optional[dict] = None, headers: Optional[dict] = None) -> httpx.Response:
    return httpx.Response(status, json=body if body is not None else {}, headers=headers)


class FakeLicenseServer:
    """
    Routes requests by path to queued responses. The last queued item for a
    path keeps being served. An exception class in the queue is raised as a
    transport failure instead of answering.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, list] = {
            "/connect": [json_response(200, CONNECT_BODY)],
            "/disconnect": [json_response(201, {"success": True})],
            "/heartbeat": [json_response(200, {"success": True})],
            "/feature": [json_response(200, {"name": "enabled", "enabled": True})],
            "/variable": [json_response(200, {"key": "motd", "value": "Hello"})],
        }
        self.gates: Dict[str, asyncio.Event] = {}

    def on(self, path: str, *responses) -> None:
        self.routes[path] = list(responses)

    def hold(self, path: str) -> asyncio.Event:
        """Block requests to ``path`` until the returned event is set."""
        gate = asyncio.Event()
        self.gates[path] = gate
        return gate

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == API_PREFIX + path)

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path == API_PREFIX + path][-1]

    def last_json(self, path: str) -> dict:
        return json.loads(self.last(path).content)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(API_PREFIX):]

        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()

        queue = self.routes.get(path)
        if not queue:
            return json_response(500, {"error": f"no route for {path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(item, type) and issubclass(item, Exception):
            raise item("simulated failure", request=request)
        # Queued responses are templates: hand out a fresh copy each time.
        return httpx.Response(item.status_code, content=item.content, headers=item.headers)


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def server() -> FakeLicenseServer:
    return FakeLicenseServer()


@pytest.fixture
def transport(server: FakeLicenseServer) -> Transport:
    return Transport(
        base_url="http://license.test",
        api_base="api/v1",
        timeout=5,
        transport=httpx.MockTransport(server.handler),
    )


@pytest.fixture
def make_client(transport: Transport) -> Callable[..., LicenseClient]:
    def factory(**kwargs) -> LicenseClient:
        kwargs.setdefault("application_id", APPLICATION_ID)
        kwargs.setdefault("join_timeout", 1)
        return LicenseClient(transport=transport, **kwargs)
    return factory
