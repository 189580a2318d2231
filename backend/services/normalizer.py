# backend/services/normalizer.py
"""
Device descriptor normalizer.

Every scanner reports what it found as a plain dict whose keys depend on the
protocol. This module turns those dicts into DeviceCandidate objects so that
the registry's merge logic never has to know which scanner produced them.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from models import DeviceCandidate, DeviceStatus, DiscoveryMethod

logger = logging.getLogger(__name__)

DEFAULT_RTSP_PORT = 554
UNKNOWN = "Unknown"


def build_channel_stream_uri(
    address: str,
    channel: int,
    username: str = "admin",
    password: str = "",
    port: int = DEFAULT_RTSP_PORT,
) -> str:
    """
    Build the Hikvision/Annke main-stream RTSP URI for a channel.

    Channels map to stream ids 101, 201, 301, ... Credentials are
    percent-encoded so reserved characters in passwords survive.
    """
    userinfo = f"{quote(username, safe='')}:{quote(password, safe='')}"
    return f"rtsp://{userinfo}@{address}:{port}/Streaming/Channels/{channel}01"


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_candidate(method: DiscoveryMethod, raw: Dict[str, Any]) -> Optional[DeviceCandidate]:
    """
    Convert one scanner finding into a DeviceCandidate.

    Recognized keys: ip/address, port, channel, name, manufacturer/vendor,
    model/device_type, stream_uri/rtsp_url, status, capabilities/scopes.

    Returns:
        The candidate, or None if no address can be derived or the channel
        is negative
    """
    address = _text(raw.get("address") or raw.get("ip"), "")
    if not address:
        logger.debug(f"Dropping {method.value} finding without address: {raw}")
        return None

    channel = _int(raw.get("channel"), 1)
    if channel < 0:
        logger.debug(f"Dropping {method.value} finding with negative channel {channel} at {address}")
        return None

    port = _int(raw.get("port"), DEFAULT_RTSP_PORT)
    manufacturer = _text(raw.get("manufacturer") or raw.get("vendor"), UNKNOWN)
    model = _text(raw.get("model") or raw.get("device_type"), UNKNOWN)
    name = _text(raw.get("name"), f"Camera {address}")

    stream_uri = raw.get("stream_uri") or raw.get("rtsp_url")
    if not stream_uri:
        stream_uri = build_channel_stream_uri(address, max(channel, 1))

    status = raw.get("status", DeviceStatus.ONLINE)
    try:
        status = DeviceStatus(status)
    except ValueError:
        status = DeviceStatus.UNKNOWN

    capabilities = raw.get("capabilities") or raw.get("scopes")
    if capabilities:
        capabilities = tuple(str(c) for c in capabilities)
    else:
        capabilities = None

    return DeviceCandidate(
        method=method,
        address=address,
        channel=channel,
        port=port,
        name=name,
        stream_uri=stream_uri,
        manufacturer=manufacturer,
        model=model,
        status=status,
        capabilities=capabilities,
    )


def normalize_all(method: DiscoveryMethod, findings: Iterable[Dict[str, Any]]) -> List[DeviceCandidate]:
    """Normalize a batch of findings, dropping the ones without an address."""
    candidates = []
    for raw in findings:
        candidate = normalize_candidate(method, raw)
        if candidate is not None:
            candidates.append(candidate)
    return candidates
