# backend/services/__init__.py
"""
DVR Bridge Business Logic Services

This package contains the device registry, discovery orchestration and the
Alexa session bridge.
"""

from .registry import DeviceRegistry, get_registry
from .discovery_logger import (
    DiscoveryLogger,
    DiscoveryMetrics,
    ScannerMetrics,
)

__all__ = [
    # Registry
    "DeviceRegistry",
    "get_registry",
    # Logging
    "DiscoveryLogger",
    "DiscoveryMetrics",
    "ScannerMetrics",
]
