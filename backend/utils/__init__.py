# backend/utils/__init__.py
"""
Utility modules for DVR Bridge backend.
"""

from .network import (
    local_broadcast_addresses,
    subnet_hosts,
)

__all__ = [
    # Network helpers
    "local_broadcast_addresses",
    "subnet_hosts",
]
