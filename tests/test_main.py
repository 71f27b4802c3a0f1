"""Tests for the local license service endpoints."""

import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app

from conftest import APPLICATION_ID, json_response


@pytest.fixture
def api(make_client):
    app = create_app(make_client())
    with TestClient(app) as c:
        yield c


class TestHealth:
    def test_health_reports_application(self, api: TestClient) -> None:
        r = api.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"
        assert r.json()["applicationId"] == APPLICATION_ID


class TestSessionEndpoints:
    def test_connect_then_status(self, api: TestClient) -> None:
        r = api.post("/api/license/connect", json={"licenseKey": "KEY"})
        assert r.status_code == 200
        assert r.json()["sessionId"] == "session-1"

        status = api.get("/api/license/status").json()
        assert status["state"] == "connected"
        assert status["session"]["applicationName"] == "Demo App"
        assert status["daysRemaining"] > 0

    def test_status_when_disconnected(self, api: TestClient) -> None:
        status = api.get("/api/license/status").json()
        assert status["state"] == "disconnected"
        assert status["session"] is None
        assert status["rateLimits"]["limit"] == 0

    def test_connect_rejection_maps_to_bad_gateway(self, server, api: TestClient) -> None:
        server.on("/connect", json_response(403, {"error": "banned"}))
        r = api.post("/api/license/connect", json={"licenseKey": "KEY"})
        assert r.status_code == 502
        assert r.json() == {"detail": "banned", "error": "LicenseBannedError", "serverStatus": 403}

    def test_explicit_zero_retries_is_kept(self, server, api: TestClient) -> None:
        server.on("/connect", httpx.ConnectError)
        r = api.post("/api/license/connect", json={"licenseKey": "KEY", "maxRetries": 0})
        assert r.status_code == 503
        assert server.count("/connect") == 1

    def test_disconnect(self, server, api: TestClient) -> None:
        api.post("/api/license/connect", json={"licenseKey": "KEY"})
        r = api.post("/api/license/disconnect")
        assert r.status_code == 200
        assert r.json() == {"success": True}
        assert server.count("/disconnect") == 1

    def test_disconnect_without_session_conflicts(self, api: TestClient) -> None:
        assert api.post("/api/license/disconnect").status_code == 409


class TestFeatureEndpoints:
    def test_feature_and_variable(self, api: TestClient) -> None:
        api.post("/api/license/connect", json={"licenseKey": "KEY"})
        assert api.get("/api/license/feature/enabled").json() == {"name": "enabled", "enabled": True}
        assert api.get("/api/license/variable/motd").json() == {"key": "motd", "value": "Hello"}

    def test_missing_feature_is_404(self, server, api: TestClient) -> None:
        server.on("/feature", json_response(411, {"error": "no such feature"}))
        api.post("/api/license/connect", json={"licenseKey": "KEY"})
        assert api.get("/api/license/feature/other").status_code == 404

    def test_feature_requires_connection(self, api: TestClient) -> None:
        assert api.get("/api/license/feature/enabled").status_code == 409
