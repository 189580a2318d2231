# backend/services/session_bridge.py
"""
Alexa Smart Home Session Bridge

Translates Alexa directives into registry reads and go2rtc calls:
- Alexa.Discovery / Discover                       -> Discover.Response (v3)
- Alexa.ConnectedHome.Discovery / DiscoverAppliancesRequest
                                                   -> DiscoverAppliancesResponse (v2)
- Alexa.RTCSessionController / InitiateSessionWithOffer
                                                   -> AnswerGeneratedForSession
- Alexa.RTCSessionController / SessionDisconnected -> Alexa.Response

Every failure becomes an Alexa ErrorResponse; nothing raises past
handle_directive().
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from config import Settings, get_settings
from errors import (
    AuthError,
    AuthReason,
    DvrBridgeError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from integrations.go2rtc_client import MediaEngineClient
from models import Device, utcnow
from services.registry import DeviceRegistry

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = "3"
LEGACY_PAYLOAD_VERSION = "2"
DEFAULT_MANUFACTURER = "Annke"

# Sessions Alexa never disconnects are forgotten oldest-first past this
MAX_TRACKED_SESSIONS = 256


class NegotiationState(str, Enum):
    """Lifecycle of one offer/answer exchange"""
    IDLE = "idle"
    STREAM_ENSURED = "stream_ensured"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    ERROR = "error"


@dataclass
class SessionNegotiation:
    """Correlates an Alexa session with one go2rtc negotiation"""
    endpoint_id: str
    session_id: Optional[str]
    offer: str
    state: NegotiationState = NegotiationState.IDLE
    answer: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpointId": self.endpoint_id,
            "sessionId": self.session_id,
            "state": self.state.value,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
        }


# =============================================================================
# RESPONSE BUILDERS
# =============================================================================

def error_type_for(error: Exception) -> str:
    """Alexa ErrorResponse type for an exception."""
    if isinstance(error, NotFoundError):
        return "NO_SUCH_ENDPOINT"
    if isinstance(error, ValidationError):
        return "INVALID_VALUE"
    if isinstance(error, AuthError):
        if error.reason == AuthReason.EXPIRED:
            return "EXPIRED_AUTHORIZATION_CREDENTIAL"
        return "INVALID_AUTHORIZATION_CREDENTIAL"
    if isinstance(error, UpstreamUnavailableError):
        return "ENDPOINT_UNREACHABLE"
    return "INTERNAL_ERROR"


def directive_target(directive: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    Extract the endpoint id and payload of a directive.

    Raises:
        ValidationError: endpoint or payload is not an object, or endpointId is not a string
    """
    endpoint = directive.get("endpoint")
    if endpoint is None:
        endpoint = {}
    if not isinstance(endpoint, dict):
        raise ValidationError("endpoint must be an object", field="endpoint")

    payload = directive.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object", field="payload")

    endpoint_id = endpoint.get("endpointId")
    if endpoint_id is not None and not isinstance(endpoint_id, str):
        raise ValidationError("endpointId must be a string", field="endpointId")
    return endpoint_id, payload


def error_response(header: Dict[str, Any], error_type: str, message: str) -> Dict[str, Any]:
    return {
        "event": {
            "header": {
                "namespace": "Alexa",
                "name": "ErrorResponse",
                "payloadVersion": PAYLOAD_VERSION,
                "messageId": str(uuid4()),
                "correlationToken": header.get("correlationToken"),
            },
            "payload": {
                "type": error_type,
                "message": message,
            },
        }
    }


def endpoint_descriptor(device: Device) -> Dict[str, Any]:
    """Protocol-neutral view of a device shared by the v2 and v3 formats."""
    return {
        "id": device.id,
        "manufacturer": device.manufacturer if device.manufacturer != "Unknown" else DEFAULT_MANUFACTURER,
        "model": device.model if device.model != "Unknown" else "Security Camera",
        "friendly_name": device.name,
        "description": f"Smart Camera {device.channel}",
    }


def v3_endpoint(descriptor: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "endpointId": descriptor["id"],
        "manufacturerName": descriptor["manufacturer"],
        "friendlyName": descriptor["friendly_name"],
        "description": descriptor["description"],
        "displayCategories": ["CAMERA"],
        "capabilities": [
            {
                "type": "AlexaInterface",
                "interface": "Alexa.RTCSessionController",
                "version": "3",
                "configuration": {"isFullDuplexAudioSupported": False},
            },
            {
                "type": "AlexaInterface",
                "interface": "Alexa.EndpointHealth",
                "version": "3",
                "properties": {
                    "supported": [{"name": "connectivity"}],
                    "proactivelyReported": True,
                    "retrievable": True,
                },
            },
            {
                "type": "AlexaInterface",
                "interface": "Alexa",
                "version": "3",
            },
        ],
    }


def v2_appliance(descriptor: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "applianceId": descriptor["id"],
        "manufacturerName": descriptor["manufacturer"],
        "modelName": descriptor["model"],
        "version": "1.0",
        "friendlyName": descriptor["friendly_name"],
        "friendlyDescription": descriptor["description"],
        "isReachable": True,
        "actions": [],
        "additionalApplianceDetails": {},
    }


# =============================================================================
# BRIDGE
# =============================================================================

Handler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]


class SessionBridge:
    """
    Alexa directive handler backed by the device registry and go2rtc.

    Usage:
        bridge = SessionBridge(registry, engine)
        response = await bridge.handle_directive(request_body)
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        engine: MediaEngineClient,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry
        self.engine = engine
        self.settings = settings or get_settings()
        self.sessions: Dict[str, SessionNegotiation] = {}
        self._background: Set[asyncio.Task] = set()
        self._handlers: Dict[Tuple[str, str], Handler] = {
            ("Alexa.Discovery", "Discover"): self._handle_discover,
            ("Alexa.ConnectedHome.Discovery", "DiscoverAppliancesRequest"): self._handle_legacy_discover,
            ("Alexa.RTCSessionController", "InitiateSessionWithOffer"): self._handle_initiate_session,
            ("Alexa.RTCSessionController", "SessionDisconnected"): self._handle_session_disconnected,
        }

    async def handle_directive(self, body: Any) -> Dict[str, Any]:
        """
        Handle one directive, with or without the `directive` wrapper.

        Returns:
            Alexa response event; errors come back as ErrorResponse
        """
        directive = body.get("directive") or body if isinstance(body, dict) else {}
        header = directive.get("header") if isinstance(directive, dict) else None
        if not isinstance(header, dict):
            header = {}
        namespace = header.get("namespace")
        name = header.get("name")
        logger.info(f"Received Alexa Directive: {namespace}::{name}")

        handler = self._handlers.get((namespace, name))
        if handler is None:
            return error_response(header, "INVALID_DIRECTIVE", f"Unknown directive {namespace}::{name}")

        try:
            return await handler(directive, header)
        except DvrBridgeError as e:
            logger.warning(f"Directive {namespace}::{name} failed: {e.message}")
            return error_response(header, error_type_for(e), e.message)
        except Exception as e:
            logger.error(f"Error handling Alexa directive {namespace}::{name}: {e}", exc_info=True)
            return error_response(header, "INTERNAL_ERROR", str(e) or "Unknown error")

    # =========================================================================
    # DISCOVERY
    # =========================================================================

    def _descriptors(self) -> List[Dict[str, Any]]:
        return [endpoint_descriptor(device) for device in self.registry.list()]

    async def _handle_discover(self, directive: Dict, header: Dict) -> Dict[str, Any]:
        endpoints = [v3_endpoint(d) for d in self._descriptors()]
        logger.info(f"Alexa discovery returning {len(endpoints)} endpoints")
        return {
            "event": {
                "header": {
                    "namespace": "Alexa.Discovery",
                    "name": "Discover.Response",
                    "payloadVersion": PAYLOAD_VERSION,
                    "messageId": header.get("messageId") or str(uuid4()),
                },
                "payload": {"endpoints": endpoints},
            }
        }

    async def _handle_legacy_discover(self, directive: Dict, header: Dict) -> Dict[str, Any]:
        logger.warning("Received legacy v2 discovery request, answering in v2 format")
        appliances = [v2_appliance(d) for d in self._descriptors()]
        return {
            "header": {
                "namespace": "Alexa.ConnectedHome.Discovery",
                "name": "DiscoverAppliancesResponse",
                "payloadVersion": LEGACY_PAYLOAD_VERSION,
                "messageId": str(uuid4()),
            },
            "payload": {"discoveredAppliances": appliances},
        }

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def _handle_initiate_session(self, directive: Dict, header: Dict) -> Dict[str, Any]:
        endpoint_id, payload = directive_target(directive)
        session_id = payload.get("sessionId")
        offer = payload.get("offer")
        offer_sdp = offer.get("value") if isinstance(offer, dict) else offer

        # Validate before touching the registry or the engine
        if not endpoint_id:
            raise ValidationError("Missing endpointId", field="endpointId")
        if session_id is not None and not isinstance(session_id, str):
            raise ValidationError("sessionId must be a string", field="sessionId")
        if not offer_sdp or not isinstance(offer_sdp, str):
            raise ValidationError("Missing offer", field="offer")

        device = self.registry.get(endpoint_id)
        if device is None:
            raise NotFoundError("Camera", endpoint_id)
        if device.is_sentinel:
            raise ValidationError("Camera needs setup before streaming", field="endpointId", value=endpoint_id)

        negotiation = SessionNegotiation(endpoint_id=endpoint_id, session_id=session_id, offer=offer_sdp)

        try:
            await self.engine.register_stream(endpoint_id, device.stream_uri)
            negotiation.state = NegotiationState.STREAM_ENSURED

            negotiation.state = NegotiationState.NEGOTIATING
            answer = await self.engine.negotiate(endpoint_id, offer_sdp)
        except DvrBridgeError as e:
            negotiation.state = NegotiationState.ERROR
            negotiation.error = e.message
            raise

        negotiation.answer = answer
        negotiation.state = NegotiationState.ACTIVE
        if session_id:
            self._track(negotiation)
        logger.info(f"WebRTC session {session_id} active for camera {endpoint_id}")

        return {
            "event": {
                "header": {
                    "namespace": "Alexa.RTCSessionController",
                    "name": "AnswerGeneratedForSession",
                    "payloadVersion": PAYLOAD_VERSION,
                    "messageId": str(uuid4()),
                    "correlationToken": header.get("correlationToken"),
                },
                "endpoint": {"endpointId": endpoint_id},
                "payload": {
                    "answer": {"format": "SDP", "value": answer},
                    "sessionId": session_id,
                },
            }
        }

    async def _handle_session_disconnected(self, directive: Dict, header: Dict) -> Dict[str, Any]:
        endpoint_id, payload = directive_target(directive)
        session_id = payload.get("sessionId")

        if isinstance(session_id, str) and session_id:
            self.sessions.pop(session_id, None)
        logger.info(f"Session {session_id} disconnected from camera {endpoint_id}")

        if endpoint_id and self.settings.teardown_on_disconnect and not self._has_active_session(endpoint_id):
            task = asyncio.create_task(self._teardown(endpoint_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return {
            "event": {
                "header": {
                    "namespace": "Alexa",
                    "name": "Response",
                    "payloadVersion": PAYLOAD_VERSION,
                    "messageId": str(uuid4()),
                    "correlationToken": header.get("correlationToken"),
                },
                "payload": {},
            }
        }

    def _track(self, negotiation: SessionNegotiation) -> None:
        """Remember an active session, evicting the oldest past the cap."""
        self.sessions.pop(negotiation.session_id, None)
        self.sessions[negotiation.session_id] = negotiation
        while len(self.sessions) > MAX_TRACKED_SESSIONS:
            stale = next(iter(self.sessions))
            self.sessions.pop(stale)
            logger.debug(f"Forgetting session {stale}, tracking limit reached")

    def _has_active_session(self, endpoint_id: str) -> bool:
        return any(
            s.endpoint_id == endpoint_id and s.state == NegotiationState.ACTIVE
            for s in self.sessions.values()
        )

    async def _teardown(self, endpoint_id: str) -> None:
        """Best-effort stream removal after the last viewer leaves."""
        try:
            await self.engine.remove_stream(endpoint_id)
        except UpstreamUnavailableError as e:
            logger.warning(f"Stream teardown for {endpoint_id} failed: {e.message}")

    def get_active_sessions(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.sessions.values()]

    async def close(self) -> None:
        """Wait for pending teardowns to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


# Global bridge instance
_session_bridge: Optional[SessionBridge] = None


def get_session_bridge() -> SessionBridge:
    """Get or create the session bridge singleton."""
    global _session_bridge
    if _session_bridge is None:
        from integrations.go2rtc_client import get_media_engine
        from services.registry import get_registry
        _session_bridge = SessionBridge(get_registry(), get_media_engine())
    return _session_bridge
