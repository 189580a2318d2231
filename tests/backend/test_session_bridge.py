# tests/backend/test_session_bridge.py
"""
Tests for the Alexa session bridge
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch


def directive(namespace, name, endpoint_id=None, payload=None, correlation_token="corr-123", wrap=True):
    body = {
        "header": {
            "namespace": namespace,
            "name": name,
            "payloadVersion": "3",
            "messageId": "msg-1",
            "correlationToken": correlation_token,
        },
        "payload": payload or {},
    }
    if endpoint_id is not None:
        body["endpoint"] = {"endpointId": endpoint_id}
    return {"directive": body} if wrap else body


def offer_directive(endpoint_id="cam-1", sdp="v=0\r\noffer\r\n", session_id="session-9"):
    payload = {"sessionId": session_id}
    if sdp is not None:
        payload["offer"] = {"format": "SDP", "value": sdp}
    return directive("Alexa.RTCSessionController", "InitiateSessionWithOffer", endpoint_id, payload)


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.register_stream = AsyncMock()
    engine.negotiate = AsyncMock(return_value="v=0\r\nanswer\r\n")
    engine.remove_stream = AsyncMock()
    return engine


@pytest.fixture
def bridge(registry, engine, settings):
    from services.session_bridge import SessionBridge

    return SessionBridge(registry, engine, settings)


class TestDiscoveryDirectives:
    """Tests for Discover and legacy DiscoverAppliancesRequest"""

    @pytest.mark.asyncio
    async def test_discover_lists_every_device(self, bridge, registry, make_device):
        for i in range(1, 4):
            registry.add(make_device(f"cam-{i}", channel=i))

        response = await bridge.handle_directive(directive("Alexa.Discovery", "Discover"))

        header = response["event"]["header"]
        endpoints = response["event"]["payload"]["endpoints"]
        assert header["name"] == "Discover.Response"
        assert header["messageId"] == "msg-1"
        assert len(endpoints) == len(registry)
        assert [e["endpointId"] for e in endpoints] == ["cam-1", "cam-2", "cam-3"]
        interfaces = [c["interface"] for c in endpoints[0]["capabilities"]]
        assert interfaces == ["Alexa.RTCSessionController", "Alexa.EndpointHealth", "Alexa"]
        assert endpoints[0]["displayCategories"] == ["CAMERA"]

    @pytest.mark.asyncio
    async def test_discover_empty_registry(self, bridge):
        response = await bridge.handle_directive(directive("Alexa.Discovery", "Discover"))

        assert response["event"]["payload"]["endpoints"] == []

    @pytest.mark.asyncio
    async def test_unwrapped_directive(self, bridge, registry, make_device):
        registry.add(make_device())

        response = await bridge.handle_directive(directive("Alexa.Discovery", "Discover", wrap=False))

        assert len(response["event"]["payload"]["endpoints"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_manufacturer_reported_as_annke(self, bridge, registry, make_device):
        registry.add(make_device(manufacturer="Unknown"))

        response = await bridge.handle_directive(directive("Alexa.Discovery", "Discover"))

        assert response["event"]["payload"]["endpoints"][0]["manufacturerName"] == "Annke"

    @pytest.mark.asyncio
    async def test_legacy_discovery_shape(self, bridge, registry, make_device):
        registry.add(make_device("cam-1", name="Porch", manufacturer="Hikvision", model="DS-1"))

        response = await bridge.handle_directive(
            directive("Alexa.ConnectedHome.Discovery", "DiscoverAppliancesRequest", wrap=False)
        )

        assert response["header"]["name"] == "DiscoverAppliancesResponse"
        assert response["header"]["payloadVersion"] == "2"
        appliance = response["payload"]["discoveredAppliances"][0]
        assert appliance["applianceId"] == "cam-1"
        assert appliance["friendlyName"] == "Porch"
        assert appliance["manufacturerName"] == "Hikvision"
        assert appliance["modelName"] == "DS-1"
        assert appliance["isReachable"] is True


class TestInitiateSession:
    """Tests for InitiateSessionWithOffer"""

    @pytest.mark.asyncio
    async def test_answer_generated(self, bridge, registry, engine, make_device):
        from services.session_bridge import NegotiationState

        registry.add(make_device("cam-1"))

        response = await bridge.handle_directive(offer_directive())

        event = response["event"]
        assert event["header"]["name"] == "AnswerGeneratedForSession"
        assert event["header"]["correlationToken"] == "corr-123"
        assert event["endpoint"]["endpointId"] == "cam-1"
        assert event["payload"]["answer"] == {"format": "SDP", "value": "v=0\r\nanswer\r\n"}
        assert event["payload"]["sessionId"] == "session-9"
        engine.register_stream.assert_awaited_once_with("cam-1", registry.get("cam-1").stream_uri)
        engine.negotiate.assert_awaited_once_with("cam-1", "v=0\r\noffer\r\n")
        assert bridge.sessions["session-9"].state == NegotiationState.ACTIVE

    @pytest.mark.asyncio
    async def test_missing_offer_touches_nothing(self, bridge, engine):
        registry = MagicMock()
        bridge.registry = registry

        response = await bridge.handle_directive(offer_directive(sdp=None))

        payload = response["event"]["payload"]
        assert response["event"]["header"]["name"] == "ErrorResponse"
        assert payload["type"] == "INVALID_VALUE"
        assert response["event"]["header"]["correlationToken"] == "corr-123"
        registry.get.assert_not_called()
        engine.register_stream.assert_not_called()
        engine.negotiate.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, bridge, engine):
        response = await bridge.handle_directive(offer_directive(endpoint_id=None))

        assert response["event"]["payload"]["type"] == "INVALID_VALUE"
        engine.negotiate.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_endpoint_never_negotiates(self, bridge, engine):
        response = await bridge.handle_directive(offer_directive(endpoint_id="ghost"))

        assert response["event"]["payload"]["type"] == "NO_SUCH_ENDPOINT"
        engine.negotiate.assert_not_called()

    @pytest.mark.asyncio
    async def test_sentinel_cannot_stream(self, bridge, registry, engine, make_device):
        registry.add(make_device("dvr-1", channel=0))

        response = await bridge.handle_directive(offer_directive(endpoint_id="dvr-1"))

        assert response["event"]["payload"]["type"] == "INVALID_VALUE"
        engine.register_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_engine_down_is_endpoint_unreachable(self, bridge, registry, engine, make_device):
        from errors import UpstreamUnavailableError

        registry.add(make_device("cam-1"))
        engine.negotiate.side_effect = UpstreamUnavailableError("negotiate")

        response = await bridge.handle_directive(offer_directive())

        assert response["event"]["payload"]["type"] == "ENDPOINT_UNREACHABLE"
        assert "session-9" not in bridge.sessions

    @pytest.mark.asyncio
    async def test_failed_negotiations_are_not_kept(self, bridge, registry, engine, make_device):
        from errors import UpstreamUnavailableError

        registry.add(make_device("cam-1"))
        engine.negotiate.side_effect = UpstreamUnavailableError("negotiate")

        for i in range(50):
            await bridge.handle_directive(offer_directive(session_id=f"session-{i}"))

        assert bridge.sessions == {}
        assert bridge.get_active_sessions() == []

    @pytest.mark.asyncio
    async def test_tracked_sessions_are_bounded(self, bridge, registry, make_device):
        from services import session_bridge

        registry.add(make_device("cam-1"))

        with patch.object(session_bridge, "MAX_TRACKED_SESSIONS", 3):
            for i in range(5):
                await bridge.handle_directive(offer_directive(session_id=f"session-{i}"))

        assert list(bridge.sessions) == ["session-2", "session-3", "session-4"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("endpoint", "cam-1"),
        ("endpoint", ["cam-1"]),
        ("payload", ["session-9", "v=0"]),
        ("payload", "v=0"),
        ("endpointId", {"x": 1}),
        ("endpointId", 7),
        ("sessionId", {"id": "session-9"}),
    ])
    async def test_malformed_fields_are_invalid_value(self, bridge, engine, field, value):
        registry = MagicMock()
        bridge.registry = registry
        body = offer_directive()
        if field == "endpointId":
            body["directive"]["endpoint"]["endpointId"] = value
        elif field == "sessionId":
            body["directive"]["payload"]["sessionId"] = value
        else:
            body["directive"][field] = value

        response = await bridge.handle_directive(body)

        assert response["event"]["header"]["name"] == "ErrorResponse"
        assert response["event"]["payload"]["type"] == "INVALID_VALUE"
        registry.get.assert_not_called()
        engine.register_stream.assert_not_called()
        engine.negotiate.assert_not_called()
        assert bridge.sessions == {}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal_error(self, bridge, registry, engine, make_device):
        registry.add(make_device("cam-1"))
        engine.register_stream.side_effect = KeyError("surprise")

        response = await bridge.handle_directive(offer_directive())

        assert response["event"]["payload"]["type"] == "INTERNAL_ERROR"


class TestOtherDirectives:
    """Tests for disconnect and unknown directives"""

    @pytest.mark.asyncio
    async def test_session_disconnected_ack(self, bridge, engine):
        response = await bridge.handle_directive(directive(
            "Alexa.RTCSessionController", "SessionDisconnected", "cam-1", {"sessionId": "session-9"}
        ))

        header = response["event"]["header"]
        assert header["namespace"] == "Alexa"
        assert header["name"] == "Response"
        assert header["correlationToken"] == "corr-123"
        assert response["event"]["payload"] == {}
        engine.remove_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_disconnect_tears_down_when_enabled(self, bridge, registry, engine, make_device):
        bridge.settings.teardown_on_disconnect = True
        registry.add(make_device("cam-1"))
        await bridge.handle_directive(offer_directive())

        await bridge.handle_directive(directive(
            "Alexa.RTCSessionController", "SessionDisconnected", "cam-1", {"sessionId": "session-9"}
        ))
        await bridge.close()

        engine.remove_stream.assert_awaited_once_with("cam-1")
        assert "session-9" not in bridge.sessions

    @pytest.mark.asyncio
    async def test_disconnect_with_malformed_endpoint(self, bridge, engine):
        body = directive("Alexa.RTCSessionController", "SessionDisconnected", payload={"sessionId": "s"})
        body["directive"]["endpoint"] = "cam-1"

        response = await bridge.handle_directive(body)

        assert response["event"]["payload"]["type"] == "INVALID_VALUE"
        engine.remove_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_teardown_failure_is_contained(self, bridge, engine):
        from errors import UpstreamUnavailableError

        bridge.settings.teardown_on_disconnect = True
        engine.remove_stream.side_effect = UpstreamUnavailableError("remove_stream")

        response = await bridge.handle_directive(directive(
            "Alexa.RTCSessionController", "SessionDisconnected", "cam-1", {"sessionId": "s"}
        ))
        await bridge.close()

        assert response["event"]["header"]["name"] == "Response"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("namespace,name", [
        ("Alexa", "ReportState"),
        ("Alexa.PowerController", "TurnOn"),
        (None, None),
    ])
    async def test_unknown_directive(self, bridge, namespace, name):
        response = await bridge.handle_directive(directive(namespace, name))

        payload = response["event"]["payload"]
        assert payload["type"] == "INVALID_DIRECTIVE"
        assert f"{namespace}::{name}" in payload["message"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, [], "garbage", {"directive": None}])
    async def test_malformed_body_still_gets_response(self, bridge, body):
        response = await bridge.handle_directive(body)

        assert response["event"]["header"]["name"] == "ErrorResponse"
        assert response["event"]["header"]["correlationToken"] is None


class TestErrorMapping:
    """Tests for error_type_for()"""

    def test_mapping(self):
        from errors import (
            AuthError, AuthReason, NotFoundError, PersistenceError,
            UpstreamUnavailableError, ValidationError,
        )
        from services.session_bridge import error_type_for

        assert error_type_for(NotFoundError("Camera", "x")) == "NO_SUCH_ENDPOINT"
        assert error_type_for(ValidationError("bad")) == "INVALID_VALUE"
        assert error_type_for(AuthError(AuthReason.EXPIRED)) == "EXPIRED_AUTHORIZATION_CREDENTIAL"
        assert error_type_for(AuthError(AuthReason.INVALID)) == "INVALID_AUTHORIZATION_CREDENTIAL"
        assert error_type_for(AuthError(AuthReason.MISSING_TOKEN)) == "INVALID_AUTHORIZATION_CREDENTIAL"
        assert error_type_for(UpstreamUnavailableError("negotiate")) == "ENDPOINT_UNREACHABLE"
        assert error_type_for(PersistenceError("x")) == "INTERNAL_ERROR"
        assert error_type_for(RuntimeError("x")) == "INTERNAL_ERROR"
