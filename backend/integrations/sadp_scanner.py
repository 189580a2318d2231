# backend/integrations/sadp_scanner.py
"""
SADP Scanner (Hikvision/Annke device search protocol)

Sends an XML inquiry to the SADP multicast group and to every local subnet
broadcast address, then collects ProbeMatch replies for a fixed window.
Only replies that look like Hikvision/Annke gear or a DVR/NVR are kept.
"""

import asyncio
import logging
import re
import socket
import struct
import time
from typing import Dict, List, Optional

from integrations.base_scanner import Scanner
from models import DeviceCandidate, DeviceStatus, DiscoveryMethod
from services.normalizer import build_channel_stream_uri, normalize_all
from utils.network import local_broadcast_addresses

logger = logging.getLogger(__name__)

SADP_PORT = 37020
SADP_MULTICAST = "239.255.255.250"
SADP_RTSP_PORT = 554
RECV_BUFFER = 8192

PROBE_MESSAGE = b"""<?xml version="1.0" encoding="utf-8"?>
<Probe>
<Uuid>00000000-0000-0000-0000-000000000000</Uuid>
<Types>inquiry</Types>
</Probe>"""

# Case-insensitive substrings; a reply must match one to count as a device
ALLOWED_MANUFACTURERS = ("hikvision", "annke")
ALLOWED_DEVICE_TYPES = ("nvr", "dvr")


def extract_xml_value(xml: str, tag: str) -> Optional[str]:
    """First text value of <tag> in a loosely formed XML reply."""
    match = re.search(rf"<{tag}>([^<]+)</{tag}>", xml, re.IGNORECASE)
    return match.group(1).strip() if match else None


def parse_sadp_response(payload: bytes, ip: str) -> Optional[Dict]:
    """
    Parse one SADP reply into a finding dict.

    Args:
        payload: Raw UDP datagram
        ip: Sender address

    Returns:
        Finding dict for the normalizer, or None if the reply is not a
        ProbeMatch from a recognized vendor/device class
    """
    response = payload.decode("utf-8", errors="replace")
    if "<ProbeMatch>" not in response:
        return None

    device_type = extract_xml_value(response, "DeviceType") or "Unknown"
    device_name = extract_xml_value(response, "DeviceName") or f"Device {ip}"
    manufacturer = extract_xml_value(response, "Manufacturer") or "Annke"
    model = extract_xml_value(response, "Model") or device_type

    vendor_match = any(v in manufacturer.lower() for v in ALLOWED_MANUFACTURERS)
    class_match = any(t in device_type.lower() for t in ALLOWED_DEVICE_TYPES)
    if not (vendor_match or class_match):
        logger.debug(f"Ignoring SADP reply from {ip}: {manufacturer} {device_type}")
        return None

    return {
        "ip": ip,
        "port": SADP_RTSP_PORT,
        "channel": 1,
        "name": device_name,
        "manufacturer": manufacturer,
        "model": model,
        "status": DeviceStatus.ONLINE,
        "stream_uri": build_channel_stream_uri(ip, 1, "admin", "", SADP_RTSP_PORT),
    }


class SADPScanner(Scanner):
    """Multicast/broadcast SADP discovery"""

    method = DiscoveryMethod.SADP

    def __init__(self, timeout: float = 5.0, port: int = SADP_PORT, multicast_group: str = SADP_MULTICAST):
        """
        Args:
            timeout: Reply collection window in seconds (default: 5)
            port: SADP UDP port
            multicast_group: SADP multicast address
        """
        self.timeout = timeout
        self.port = port
        self.multicast_group = multicast_group

    async def scan(self) -> List[DeviceCandidate]:
        logger.info("Starting SADP discovery...")
        loop = asyncio.get_running_loop()
        findings = await loop.run_in_executor(None, self._scan_blocking)
        candidates = normalize_all(self.method, findings)
        logger.info(f"SADP found {len(candidates)} devices")
        return candidates

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 128)
            sock.bind(("", self.port))
            membership = struct.pack(
                "4s4s", socket.inet_aton(self.multicast_group), socket.inet_aton("0.0.0.0")
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        except OSError:
            sock.close()
            raise
        return sock

    def _send_probes(self, sock: socket.socket) -> None:
        sock.sendto(PROBE_MESSAGE, (self.multicast_group, self.port))
        logger.info("SADP probe sent")

        for broadcast in local_broadcast_addresses():
            try:
                sock.sendto(PROBE_MESSAGE, (broadcast, self.port))
            except OSError as e:
                logger.debug(f"SADP broadcast to {broadcast} failed: {e}")

    def _scan_blocking(self) -> List[Dict]:
        """Send probes and collect replies until the window closes (blocking)."""
        findings: List[Dict] = []
        seen = set()

        sock = self._open_socket()
        try:
            self._send_probes(sock)

            deadline = time.monotonic() + self.timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                sock.settimeout(remaining)
                try:
                    payload, (ip, _port) = sock.recvfrom(RECV_BUFFER)
                except socket.timeout:
                    break

                if ip in seen:
                    continue
                finding = parse_sadp_response(payload, ip)
                if finding:
                    seen.add(ip)
                    findings.append(finding)
                    logger.info(f"Found SADP device: {finding['name']} at {ip}")
        finally:
            sock.close()

        return findings
