"""
Camera Discovery Service

Handles camera discovery via:
- SADP multicast search (Hikvision/Annke DVRs and NVRs)
- ONVIF WS-Discovery
- Channel probing of a configured DVR address
- Subnet port sweep (fallback when nothing else answered)

New devices are merged into the registry; existing (address, channel) entries
always win. Only one discovery run is in flight at a time: callers that
arrive during a run join it and receive its result.
"""

import asyncio
import logging
from typing import List, Optional, Sequence
from uuid import uuid4

from config import Settings, get_settings
from errors import PersistenceError
from integrations.base_scanner import Scanner
from integrations.channel_prober import ChannelProber
from integrations.onvif_scanner import ONVIFScanner
from integrations.port_sweep import PortSweepScanner
from integrations.sadp_scanner import SADPScanner
from models import Device, DeviceCandidate, DiscoveryMethod, DiscoveryResult, utcnow
from services.discovery_logger import DiscoveryLogger, DiscoveryMetrics
from services.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class DiscoveryService:
    """
    Camera discovery orchestrator

    Scanners can be injected for testing; any left as None are built from
    settings.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        settings: Optional[Settings] = None,
        sadp: Optional[Scanner] = None,
        onvif: Optional[Scanner] = None,
        prober: Optional[Scanner] = None,
        sweep: Optional[Scanner] = None,
    ):
        self.registry = registry
        self.settings = settings or get_settings()
        s = self.settings

        self.sadp = sadp or SADPScanner(timeout=s.sadp_timeout_seconds)
        self.onvif = onvif or ONVIFScanner(
            timeout=s.onvif_timeout_seconds,
            username=s.dvr_username,
            password=s.dvr_password,
            rtsp_port=s.dvr_port,
        )
        if prober is None and s.dvr_ip:
            prober = ChannelProber(
                s.dvr_ip,
                max_channels=s.max_cameras,
                username=s.dvr_username,
                password=s.dvr_password,
                port=s.dvr_port,
            )
        self.prober = prober
        self.sweep = sweep or PortSweepScanner(
            subnet=s.subnet_scan_prefix,
            connect_timeout=s.port_sweep_timeout_ms / 1000,
            concurrency=s.port_sweep_concurrency,
        )

        self._inflight: Optional[asyncio.Future] = None
        self._periodic: Optional[asyncio.Task] = None
        self.last_result: Optional[DiscoveryResult] = None
        self.last_metrics: Optional[DiscoveryMetrics] = None

    @property
    def is_running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def is_periodic(self) -> bool:
        return self._periodic is not None and not self._periodic.done()

    def primary_scanners(self) -> List[Scanner]:
        """Scanners run on every pass, in merge order."""
        scanners = [self.sadp, self.onvif]
        if self.prober is not None:
            scanners.append(self.prober)
        return scanners

    # =========================================================================
    # DISCOVERY RUN
    # =========================================================================

    async def run_discovery(self) -> DiscoveryResult:
        """
        Discover devices and merge them into the registry.

        If a run is already in flight the caller awaits that run instead of
        starting another. Never raises.

        Returns:
            Full registry contents, timestamp and the method that found devices
        """
        task = self._inflight
        if task is None or task.done():
            task = asyncio.ensure_future(self._run_once())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            logger.info("Discovery already in progress, joining current run")

        # Shielded so a cancelled caller does not cancel a run others await
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Future) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _run_once(self) -> DiscoveryResult:
        run_log = DiscoveryLogger(f"discovery-{uuid4().hex[:8]}")
        run_log.info("Starting camera discovery...")

        method = DiscoveryMethod.SADP
        added: List[Device] = []
        error = None

        try:
            scanners = self.primary_scanners()
            results = await asyncio.gather(
                *(self._run_scanner(scanner, run_log) for scanner in scanners)
            )

            candidates: List[DeviceCandidate] = []
            for scanner, found in zip(scanners, results):
                if found and not candidates:
                    method = scanner.method
                candidates.extend(found)

            if not candidates:
                run_log.info("No devices from SADP/ONVIF/probe, falling back to subnet scan...")
                candidates = await self._run_scanner(self.sweep, run_log)
                if candidates:
                    method = self.sweep.method
            else:
                run_log.scanner_skipped(self.sweep.name, "primary scanners found devices")

            added = await self._merge(candidates, run_log)
        except PersistenceError as e:
            error = e.message
            run_log.error(f"Failed to persist discovered cameras: {e.message}")
        except Exception as e:
            error = str(e)
            run_log.error(f"Discovery failed: {e}")

        result = DiscoveryResult(
            devices=tuple(self.registry.list()),
            timestamp=utcnow(),
            method=method,
        )
        self.last_metrics = run_log.complete(
            added=len(added), registry_size=len(result.devices), error=error
        )
        self.last_result = result
        return result

    async def _run_scanner(self, scanner: Scanner, run_log: DiscoveryLogger) -> List[DeviceCandidate]:
        started = run_log.scanner_started()
        try:
            found = await scanner.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            run_log.warning(f"{scanner.name} failed: {e}")
            found = []
        run_log.scanner_finished(scanner.name, started, len(found))
        return list(found)

    async def _merge(self, candidates: Sequence[DeviceCandidate], run_log: DiscoveryLogger) -> List[Device]:
        if not candidates:
            return []
        # Registry writes hit SQLite; keep them off the event loop
        loop = asyncio.get_running_loop()
        added = await loop.run_in_executor(None, self.registry.merge_candidates, list(candidates))
        run_log.info(f"Merged {len(candidates)} candidates, {len(added)} new")
        return added

    # =========================================================================
    # PERIODIC DISCOVERY
    # =========================================================================

    def start_periodic(self, interval: Optional[float] = None) -> None:
        """Run discovery now and then every `interval` seconds until stopped."""
        if self.is_periodic:
            logger.debug("Periodic discovery already running")
            return
        interval = interval if interval is not None else self.settings.discovery_interval_seconds
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._periodic = asyncio.create_task(self._periodic_loop(interval))
        logger.info(f"Auto-discovery enabled (every {interval} seconds)")

    async def stop_periodic(self) -> None:
        """
        Cancel the periodic loop and wait for it to finish.

        A run still in flight is cancelled too, so nothing merges into the
        registry after this returns.
        """
        task = self._periodic
        self._periodic = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        inflight = self._inflight
        if inflight is not None and not inflight.done():
            inflight.cancel()
            try:
                await inflight
            except asyncio.CancelledError:
                pass
        logger.info("Auto-discovery stopped")

    async def _periodic_loop(self, interval: float) -> None:
        while True:
            # Awaiting the run means ticks never overlap
            await self.run_discovery()
            await asyncio.sleep(interval)


# Global discovery service instance
_discovery_service: Optional[DiscoveryService] = None


def get_discovery_service() -> DiscoveryService:
    """Get or create the discovery service singleton."""
    global _discovery_service
    if _discovery_service is None:
        from services.registry import get_registry
        _discovery_service = DiscoveryService(get_registry())
    return _discovery_service
