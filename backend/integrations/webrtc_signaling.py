# backend/integrations/webrtc_signaling.py
"""
ICE server configuration for WebRTC clients.

Browsers negotiating directly with go2rtc need STUN (and optionally TURN)
servers; this builds that list from settings.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import Settings, get_settings


@dataclass
class ICEServer:
    """ICE server configuration for WebRTC"""
    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"urls": self.urls}
        if self.username:
            result["username"] = self.username
        if self.credential:
            result["credential"] = self.credential
        return result


def get_ice_servers(settings: Optional[Settings] = None) -> List[ICEServer]:
    """Get configured ICE servers (STUN/TURN) for WebRTC"""
    settings = settings or get_settings()
    servers = []

    # STUN servers (free, for direct P2P)
    stun_urls = [u.strip() for u in settings.stun_server_urls.split(",") if u.strip()]
    if stun_urls:
        servers.append(ICEServer(urls=stun_urls))

    # TURN server (for NAT traversal)
    if settings.turn_server_url:
        servers.append(ICEServer(
            urls=[settings.turn_server_url],
            username=settings.turn_username or None,
            credential=settings.turn_credential or None,
        ))

    return servers


def get_ice_servers_config(settings: Optional[Settings] = None) -> List[Dict[str, Any]]:
    """Get ICE servers as dicts for frontend configuration"""
    return [s.to_dict() for s in get_ice_servers(settings)]
