# backend/models/__init__.py
"""
DVR Bridge Data Models

This package contains the in-memory device models (dataclasses) and the
SQLAlchemy models used for the persisted registry snapshot.
"""

from .device import (
    # Enums
    DeviceStatus,
    DiscoveryMethod,

    # Device models
    Device,
    DeviceCandidate,
    DiscoveryResult,
    SENTINEL_CHANNEL,
    utcnow,
)

__all__ = [
    "DeviceStatus",
    "DiscoveryMethod",
    "Device",
    "DeviceCandidate",
    "DiscoveryResult",
    "SENTINEL_CHANNEL",
    "utcnow",
]
