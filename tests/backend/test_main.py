# tests/backend/test_main.py
"""
Tests for the FastAPI routes

Service singletons are patched with test instances; startup/shutdown events
are not run because TestClient is not used as a context manager.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.register_stream = AsyncMock()
    engine.negotiate = AsyncMock(return_value="v=0\r\nanswer\r\n")
    engine.is_available = AsyncMock(return_value=True)
    return engine


@pytest.fixture
def token_service(registry, settings):
    from utils.security import TokenService

    return TokenService(registry, settings)


@pytest.fixture
def discovery(registry, settings):
    from models import DiscoveryMethod
    from services.discovery import DiscoveryService

    scanners = {}
    for key, method in (("sadp", DiscoveryMethod.SADP), ("onvif", DiscoveryMethod.ONVIF), ("sweep", DiscoveryMethod.SUBNET)):
        scanner = MagicMock()
        scanner.method = method
        scanner.name = method.value
        scanner.run = AsyncMock(return_value=[])
        scanners[key] = scanner
    return DiscoveryService(registry, settings, **scanners)


@pytest.fixture
def client(registry, engine, token_service, discovery, settings):
    from main import app
    from services.session_bridge import SessionBridge

    bridge = SessionBridge(registry, engine, settings)
    with patch("main.get_registry", return_value=registry), \
         patch("main.get_media_engine", return_value=engine), \
         patch("main.get_token_service", return_value=token_service), \
         patch("main.get_discovery_service", return_value=discovery), \
         patch("main.get_session_bridge", return_value=bridge):
        yield TestClient(app, raise_server_exceptions=False)


class TestHealthAndStatus:
    """Tests for /api/health and /api/status"""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_status(self, client, registry, make_device):
        registry.add(make_device())

        data = client.get("/api/status").json()["status"]

        assert data["webrtc"] == "ready"
        assert data["cameras"]["total"] == 1
        assert data["cameras"]["online"] == 1
        assert data["discovery"]["running"] is False

    def test_status_engine_down(self, client, engine):
        engine.is_available.return_value = False

        assert client.get("/api/status").json()["status"]["webrtc"] == "not ready"


class TestCameraRoutes:
    """Tests for camera CRUD endpoints"""

    def test_list_empty(self, client):
        data = client.get("/api/cameras").json()

        assert data == {"success": True, "count": 0, "cameras": []}

    def test_add_camera(self, client, registry):
        response = client.post("/api/cameras", json={
            "name": "Porch",
            "streamUri": "rtsp://10.0.0.5/stream",
            "address": "10.0.0.5",
        })

        assert response.status_code == 201
        camera = response.json()["camera"]
        assert camera["manufacturer"] == "Manual"
        assert camera["model"] == "Custom"
        assert camera["status"] == "unknown"
        assert camera["port"] == 554
        assert camera["channel"] == 1
        assert registry.contains(camera["id"])

    def test_add_camera_missing_fields(self, client):
        response = client.post("/api/cameras", json={"name": "Porch"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_add_duplicate_camera(self, client):
        body = {"name": "Porch", "streamUri": "rtsp://10.0.0.5/a", "address": "10.0.0.5"}
        client.post("/api/cameras", json=body)

        assert client.post("/api/cameras", json=body).status_code == 400

    def test_get_camera(self, client, registry, make_device):
        registry.add(make_device("cam-1"))

        assert client.get("/api/cameras/cam-1").json()["camera"]["id"] == "cam-1"
        assert client.get("/api/cameras/missing").status_code == 404

    def test_patch_camera(self, client, registry, make_device):
        registry.add(make_device("cam-1"))

        response = client.patch("/api/cameras/cam-1", json={"name": "Garage", "streamUri": "rtsp://new"})

        assert response.status_code == 200
        assert response.json()["camera"]["name"] == "Garage"
        assert registry.get("cam-1").stream_uri == "rtsp://new"

    def test_patch_missing_camera(self, client):
        assert client.patch("/api/cameras/missing", json={"name": "x"}).status_code == 404

    def test_delete_camera(self, client, registry, make_device):
        registry.add(make_device("cam-1"))

        assert client.delete("/api/cameras/cam-1").status_code == 200
        assert client.delete("/api/cameras/cam-1").status_code == 404

    def test_discover(self, client, discovery, make_candidate):
        discovery.sadp.run.return_value = [make_candidate("10.0.0.5", 1)]

        data = client.post("/api/cameras/discover").json()

        assert data["success"] is True
        assert data["count"] == 1
        assert data["method"] == "sadp"

    def test_setup_dvr(self, client, registry, make_device):
        from models import DeviceStatus

        registry.add(make_device("dvr-1", address="192.168.1.50", channel=0, status=DeviceStatus.OFFLINE))

        response = client.post("/api/cameras/dvr-1/setup", json={"channelCount": 4, "password": "pw"})

        assert response.status_code == 200
        assert response.json()["count"] == 4
        assert len(registry) == 4

    def test_setup_unknown_dvr(self, client):
        assert client.post("/api/cameras/nope/setup", json={"channelCount": 4}).status_code == 404

    def test_persistence_failure_is_500(self, client, registry):
        from errors import PersistenceError

        with patch.object(registry._store, "save", side_effect=PersistenceError("disk full")):
            response = client.post("/api/cameras", json={
                "name": "Porch", "streamUri": "rtsp://x", "address": "10.0.0.5",
            })

        assert response.status_code == 500
        assert response.json()["error"] == "PersistenceError"


class TestWebRTCRoutes:
    """Tests for token issue, ICE servers and stream start"""

    def test_issue_token(self, client, registry, make_device):
        registry.add(make_device("cam-1"))

        data = client.get("/api/webrtc/token", params={"cameraId": "cam-1"}).json()

        assert data["cameraId"] == "cam-1"
        assert data["expiresIn"] == 60
        assert data["token"]

    def test_issue_token_requires_camera_id(self, client):
        assert client.get("/api/webrtc/token").status_code == 400

    def test_issue_token_unknown_camera(self, client):
        assert client.get("/api/webrtc/token", params={"cameraId": "ghost"}).status_code == 404

    def test_ice_servers(self, client):
        servers = client.get("/api/webrtc/ice-servers").json()["iceServers"]

        assert servers
        assert all("urls" in s for s in servers)

    def test_stream_start_with_bearer_token(self, client, registry, engine, token_service, make_device):
        registry.add(make_device("cam-1"))
        token = token_service.issue_token("cam-1").token

        response = client.post(
            "/api/stream/start",
            json={"cameraId": "cam-1"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert response.json()["streamName"] == "camera_cam-1"
        engine.register_stream.assert_awaited_once_with("camera_cam-1", registry.get("cam-1").stream_uri)

    def test_stream_start_with_query_token(self, client, registry, token_service, make_device):
        registry.add(make_device("cam-1"))
        token = token_service.issue_token("cam-1").token

        response = client.post(f"/api/stream/start?token={token}", json={"cameraId": "cam-1"})

        assert response.status_code == 200

    def test_stream_start_without_token(self, client, engine):
        response = client.post("/api/stream/start", json={"cameraId": "cam-1"})

        assert response.status_code == 401
        assert response.json()["message"] == "Authentication token required"
        engine.register_stream.assert_not_called()

    def test_stream_start_token_for_other_camera(self, client, registry, token_service, make_device):
        registry.add(make_device("cam-1", channel=1))
        registry.add(make_device("cam-2", channel=2))
        token = token_service.issue_token("cam-1").token

        response = client.post(
            "/api/stream/start",
            json={"cameraId": "cam-2"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_stream_start_engine_down(self, client, registry, engine, token_service, make_device):
        from errors import UpstreamUnavailableError

        registry.add(make_device("cam-1"))
        token = token_service.issue_token("cam-1").token
        engine.register_stream.side_effect = UpstreamUnavailableError("register_stream")

        response = client.post(
            "/api/stream/start",
            json={"cameraId": "cam-1"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 502


class TestAlexaRoutes:
    """Tests for the Alexa directive endpoint"""

    def test_liveness(self, client):
        assert "active" in client.get("/api/alexa").json()["message"]

    def test_discover(self, client, registry, make_device):
        registry.add(make_device("cam-1"))

        response = client.post("/api/alexa", json={"directive": {
            "header": {"namespace": "Alexa.Discovery", "name": "Discover", "messageId": "m"},
            "payload": {},
        }})

        assert response.status_code == 200
        assert len(response.json()["event"]["payload"]["endpoints"]) == 1

    def test_error_is_still_200(self, client):
        response = client.post("/api/alexa", json={"directive": {
            "header": {"namespace": "Alexa", "name": "ReportState", "correlationToken": "c"},
        }})

        assert response.status_code == 200
        assert response.json()["event"]["payload"]["type"] == "INVALID_DIRECTIVE"
