# backend/integrations/port_sweep.py
"""
Subnet Port-Sweep Scanner

Connect-tests HTTP (80), RTSP (554) and the vendor SDK port (8000) on every
host of a /24. Connection attempts share one semaphore per event loop so the
sweep never has more than `concurrency` sockets open at once.

Classification:
- 80, 554 and 8000 open: a DVR that needs setup (sentinel, channel 0)
- only 80 and 554 open: a standalone IP camera (channel 1)
- anything else: ignored
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from integrations.base_scanner import Scanner
from models import DeviceCandidate, DeviceStatus, DiscoveryMethod, SENTINEL_CHANNEL
from services.normalizer import build_channel_stream_uri, normalize_all
from utils.network import subnet_hosts

logger = logging.getLogger(__name__)

HTTP_PORT = 80
RTSP_PORT = 554
SDK_PORT = 8000
SWEEP_PORTS = (HTTP_PORT, RTSP_PORT, SDK_PORT)


def classify_host(ip: str, http_open: bool, rtsp_open: bool, sdk_open: bool) -> Optional[Dict]:
    """
    Decide what an open-port pattern means.

    Returns:
        Finding dict for the normalizer, or None when the host does not look
        like a camera or DVR
    """
    stream_uri = build_channel_stream_uri(ip, 1, "admin", "", RTSP_PORT)

    if http_open and rtsp_open and sdk_open:
        logger.info(f"Found Annke DVR at {ip} - will prompt for credentials")
        return {
            "ip": ip,
            "port": RTSP_PORT,
            "channel": SENTINEL_CHANNEL,
            "name": f"Annke DVR {ip} (Setup Required)",
            "manufacturer": "Annke",
            "model": "Network DVR - Needs Setup",
            "status": DeviceStatus.OFFLINE,
            "stream_uri": stream_uri,
        }

    if http_open and rtsp_open:
        logger.info(f"Found IP Camera at {ip} (ports 80, 554 open)")
        return {
            "ip": ip,
            "port": RTSP_PORT,
            "channel": 1,
            "name": f"Camera {ip}",
            "manufacturer": "Unknown",
            "model": "IP Camera",
            "status": DeviceStatus.ONLINE,
            "stream_uri": stream_uri,
        }

    return None


class PortSweepScanner(Scanner):
    """Bounded-concurrency TCP connect sweep of one /24"""

    method = DiscoveryMethod.SUBNET

    def __init__(
        self,
        subnet: str = "192.168.1",
        connect_timeout: float = 0.3,
        concurrency: int = 64,
        ports: Sequence[int] = SWEEP_PORTS,
        timeout: float = 60.0,
    ):
        """
        Args:
            subnet: Three-octet prefix or CIDR of the /24 to sweep
            connect_timeout: Per-connection timeout in seconds (default: 0.3)
            concurrency: Max simultaneous connection attempts
            ports: Ports tested per host; classification uses the first three
            timeout: Hard bound for the whole sweep in seconds
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if len(ports) < 3:
            raise ValueError("ports must list the HTTP, RTSP and SDK ports")
        self.subnet = subnet
        self.connect_timeout = connect_timeout
        self.concurrency = concurrency
        self.ports = tuple(ports)
        self.timeout = timeout
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    async def scan(self) -> List[DeviceCandidate]:
        hosts = subnet_hosts(self.subnet)
        logger.info(f"Scanning subnet {self.subnet} ({len(hosts)} hosts) for cameras...")

        results = await asyncio.gather(
            *(self._probe_host(ip) for ip in hosts),
            return_exceptions=True,
        )

        findings = []
        for ip, result in zip(hosts, results):
            if isinstance(result, BaseException):
                logger.debug(f"Probe of {ip} failed: {result}")
                continue
            if result:
                findings.append(result)

        logger.info(f"Subnet scan complete. Found {len(findings)} devices")
        return normalize_all(self.method, findings)

    async def _probe_host(self, ip: str) -> Optional[Dict]:
        """Test all sweep ports on one host and classify it."""
        try:
            states = await asyncio.gather(*(self.test_port(ip, port) for port in self.ports))
        except Exception as e:
            # Fault isolation: one host never aborts the sweep
            logger.debug(f"Error probing {ip}: {e}")
            return None
        http_open, rtsp_open, sdk_open = states[:3]
        return classify_host(ip, http_open, rtsp_open, sdk_open)

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created inside the running loop; a scanner may outlive its first loop
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    async def test_port(self, ip: str, port: int) -> bool:
        """True if a TCP connection to ip:port succeeds within the timeout."""
        async with self._get_semaphore():
            try:
                _reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(ip, port), timeout=self.connect_timeout
                )
            except (asyncio.TimeoutError, OSError):
                return False

            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            return True
