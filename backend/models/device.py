# backend/models/device.py
"""
Device Data Models for DVR Bridge

Defines the registry's device shape, the normalized candidate produced by
scanners, and the discovery result snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4


SENTINEL_CHANNEL = 0  # Parent device found but needs interactive setup


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class DeviceStatus(str, Enum):
    """Reachability of a registered device"""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class DiscoveryMethod(str, Enum):
    """How a device entered the registry"""
    SADP = "sadp"       # Hikvision/Annke multicast search protocol
    ONVIF = "onvif"     # WS-Discovery probe
    PROBE = "probe"     # Channel probing of a configured DVR
    SUBNET = "subnet"   # TCP port sweep of a /24
    MANUAL = "manual"   # Added through the API


# =============================================================================
# DEVICE MODELS
# =============================================================================

@dataclass
class Device:
    """A camera or DVR channel held by the registry"""
    id: str
    name: str
    stream_uri: str
    address: str
    port: int = 554
    channel: int = 1
    manufacturer: str = "Unknown"
    model: str = "Unknown"
    status: DeviceStatus = DeviceStatus.UNKNOWN
    last_seen: datetime = field(default_factory=utcnow)
    capabilities: Optional[List[str]] = None

    # Fields a partial update may touch; id is immutable
    UPDATABLE_FIELDS = (
        "name", "stream_uri", "address", "port", "channel",
        "manufacturer", "model", "status", "capabilities",
    )

    @property
    def dedup_key(self) -> Tuple[str, int]:
        return (self.address, self.channel)

    @property
    def is_sentinel(self) -> bool:
        return self.channel == SENTINEL_CHANNEL

    def copy(self) -> "Device":
        return replace(
            self,
            capabilities=list(self.capabilities) if self.capabilities is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "streamUri": self.stream_uri,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "address": self.address,
            "port": self.port,
            "channel": self.channel,
            "status": self.status.value,
            "lastSeen": self.last_seen.isoformat(),
            "capabilities": self.capabilities,
        }


@dataclass(frozen=True)
class DeviceCandidate:
    """
    A device proposed by a scanner, already normalized.

    Candidates never enter the registry directly; the registry turns them into
    Devices during a merge.
    """
    method: DiscoveryMethod
    address: str
    channel: int
    port: int
    name: str
    stream_uri: str
    manufacturer: str = "Unknown"
    model: str = "Unknown"
    status: DeviceStatus = DeviceStatus.ONLINE
    capabilities: Optional[Tuple[str, ...]] = None

    @property
    def dedup_key(self) -> Tuple[str, int]:
        return (self.address, self.channel)

    def to_device(self, device_id: Optional[str] = None) -> Device:
        return Device(
            id=device_id or str(uuid4()),
            name=self.name,
            stream_uri=self.stream_uri,
            address=self.address,
            port=self.port,
            channel=self.channel,
            manufacturer=self.manufacturer,
            model=self.model,
            status=self.status,
            last_seen=utcnow(),
            capabilities=list(self.capabilities) if self.capabilities else None,
        )


@dataclass(frozen=True)
class DiscoveryResult:
    """Snapshot of the registry after one discovery run"""
    devices: Tuple[Device, ...]
    timestamp: datetime
    method: DiscoveryMethod

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cameras": [d.to_dict() for d in self.devices],
            "count": len(self.devices),
            "timestamp": self.timestamp.isoformat(),
            "method": self.method.value,
        }
