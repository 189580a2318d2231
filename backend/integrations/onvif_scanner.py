# backend/integrations/onvif_scanner.py
"""
ONVIF WS-Discovery Scanner

Probes for ONVIF devices with WS-Discovery and reports one candidate per
responding device. The address comes from the first advertised XAddr; when
that cannot be parsed the advertised endpoint reference is used instead.
"""

# Suppress ResourceWarning from wsdiscovery library's unclosed sockets
# This must be done at module load before any wsdiscovery imports
import warnings
warnings.filterwarnings("ignore", category=ResourceWarning, module="wsdiscovery")

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from wsdiscovery.discovery import ThreadedWSDiscovery as WSDiscovery

from integrations.base_scanner import Scanner
from models import DeviceCandidate, DeviceStatus, DiscoveryMethod
from services.normalizer import build_channel_stream_uri, normalize_all

logger = logging.getLogger(__name__)

ONVIF_HTTP_PORT = 80


def parse_xaddr(xaddr: str) -> Tuple[Optional[str], int]:
    """Parse host and port from an ONVIF XAddr URL"""
    try:
        parsed = urlparse(xaddr)
        if parsed.hostname:
            return parsed.hostname, parsed.port or ONVIF_HTTP_PORT
    except ValueError as e:
        logger.warning(f"Failed to parse XAddr '{xaddr}': {e}")
    return None, ONVIF_HTTP_PORT


def parse_scopes(scopes) -> Dict[str, str]:
    """Parse ONVIF scopes to extract camera metadata"""
    info = {}

    for scope in scopes:
        scope_str = str(scope).lower()

        if "/hardware/" in scope_str:
            info["model"] = scope_str.split("/hardware/")[1].split("/")[0].upper()

        if "/mfr/" in scope_str:
            info["manufacturer"] = scope_str.split("/mfr/")[1].split("/")[0].title()

        if "/name/" in scope_str:
            info["name"] = scope_str.split("/name/")[1].split("/")[0].replace("_", " ").replace("%20", " ")

    return info


class ONVIFScanner(Scanner):
    """
    WS-Discovery based scanner.

    The WSDiscovery library is blocking, so the probe runs in the default
    thread pool.
    """

    method = DiscoveryMethod.ONVIF

    def __init__(
        self,
        timeout: int = 10,
        username: str = "admin",
        password: str = "",
        rtsp_port: int = 554,
    ):
        """
        Args:
            timeout: Probe window in seconds (default: 10)
            username: Credentials embedded in synthesized stream URIs
            password: Credentials embedded in synthesized stream URIs
            rtsp_port: RTSP port for synthesized stream URIs
        """
        self.timeout = timeout
        self.username = username
        self.password = password
        self.rtsp_port = rtsp_port

    async def scan(self) -> List[DeviceCandidate]:
        logger.debug(f"Starting ONVIF discovery (timeout={self.timeout}s)...")

        loop = asyncio.get_running_loop()
        services = await loop.run_in_executor(None, self._discover_services)
        logger.info(f"ONVIF discovery found {len(services)} devices")

        findings = []
        for service in services:
            try:
                finding = self._process_discovered_service(service)
            except Exception as e:
                logger.debug(f"Error processing ONVIF device: {e}")
                continue
            if finding:
                findings.append(finding)

        return normalize_all(self.method, findings)

    def _discover_services(self) -> List:
        """Run a WS-Discovery probe (blocking operation)"""
        wsd = WSDiscovery()
        wsd.start()
        try:
            return list(wsd.searchServices(timeout=self.timeout))
        finally:
            wsd.stop()
            # Give daemon threads time to terminate cleanly
            time.sleep(0.3)

    def _process_discovered_service(self, service) -> Optional[Dict]:
        """
        Turn one WS-Discovery service into a finding dict.

        Returns:
            Finding dict, or None when no address can be derived
        """
        xaddrs = list(service.getXAddrs() or [])
        ip = None
        if xaddrs:
            ip, _port = parse_xaddr(xaddrs[0])
        if not ip:
            # Fall back to the advertised identifier
            ip = service.getEPR() or None
        if not ip:
            return None

        scopes = list(service.getScopes() or [])
        scope_info = parse_scopes(scopes)

        return {
            "ip": ip,
            "port": ONVIF_HTTP_PORT,
            "channel": 1,
            "name": scope_info.get("name", f"Camera {ip}"),
            "manufacturer": scope_info.get("manufacturer", "Unknown"),
            "model": scope_info.get("model", "Unknown"),
            "status": DeviceStatus.ONLINE,
            "stream_uri": build_channel_stream_uri(ip, 1, self.username, self.password, self.rtsp_port),
            "scopes": [str(s) for s in scopes],
        }
