# backend/utils/network.py
"""
Network helpers for discovery.

Local interface enumeration (via psutil) for broadcast probes and /24 host
expansion for the subnet sweep.
"""

import ipaddress
import logging
import socket
from typing import List

import psutil

logger = logging.getLogger(__name__)


def local_broadcast_addresses() -> List[str]:
    """
    Broadcast address of every non-loopback IPv4 interface.

    Computed from address and netmask rather than trusting the reported
    broadcast field, which some platforms leave empty.
    """
    broadcasts = []
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as e:
        logger.warning(f"Could not enumerate network interfaces: {e}")
        return broadcasts

    for ifname, addrs in interfaces.items():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
                if ip.is_loopback or ip.is_link_local:
                    continue
                network = ipaddress.IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                logger.debug(f"Skipping interface {ifname} with unusable address {addr.address}")
                continue
            broadcast = str(network.broadcast_address)
            if broadcast not in broadcasts:
                broadcasts.append(broadcast)

    return broadcasts


def subnet_hosts(subnet: str) -> List[str]:
    """
    Host addresses of a /24.

    Accepts either a three-octet prefix ("192.168.1") or CIDR notation
    ("192.168.1.0/24"); larger networks are rejected to keep sweeps bounded.

    Raises:
        ValueError: If the subnet is malformed or larger than a /24
    """
    if "/" not in subnet:
        subnet = f"{subnet.rstrip('.')}.0/24"
    network = ipaddress.IPv4Network(subnet, strict=False)
    if network.prefixlen < 24:
        raise ValueError(f"Refusing to sweep {network}: larger than a /24")
    return [str(host) for host in network.hosts()]
