# backend/services/discovery_logger.py
"""
Discovery logging and metrics.

Tracks per-scanner timing and candidate counts for one discovery run and
logs a summary when the run completes.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models import utcnow

logger = logging.getLogger("dvrbridge.discovery")


@dataclass
class ScannerMetrics:
    """Metrics for one scanner within a run"""
    scanner: str
    duration_ms: float = 0.0
    candidates: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanner": self.scanner,
            "durationMs": round(self.duration_ms, 1),
            "candidates": self.candidates,
            "skipped": self.skipped,
        }


@dataclass
class DiscoveryMetrics:
    """Aggregated metrics for an entire discovery run"""
    run_id: str
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    scanners: List[ScannerMetrics] = field(default_factory=list)
    added: int = 0
    registry_size: int = 0
    error: Optional[str] = None

    def complete(self, added: int, registry_size: int, error: Optional[str] = None) -> None:
        """Mark run as complete"""
        self.ended_at = utcnow()
        self.total_duration_ms = (self.ended_at - self.started_at).total_seconds() * 1000
        self.added = added
        self.registry_size = registry_size
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "startedAt": self.started_at.isoformat(),
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "totalDurationMs": self.total_duration_ms,
            "scanners": [s.to_dict() for s in self.scanners],
            "added": self.added,
            "registrySize": self.registry_size,
            "error": self.error,
        }

    def summary(self) -> str:
        """Generate human-readable summary"""
        lines = [
            f"Discovery {self.run_id}",
            f"  Total time: {self.total_duration_ms:.1f}ms" if self.total_duration_ms else "  Total time: in progress",
            f"  Added: {self.added}, registry size: {self.registry_size}",
        ]
        if self.error:
            lines.append(f"  Error: {self.error}")
        for scanner in self.scanners:
            state = "skipped" if scanner.skipped else f"{scanner.candidates} candidates"
            lines.append(f"    - {scanner.scanner}: {state} ({scanner.duration_ms:.1f}ms)")
        return "\n".join(lines)


class DiscoveryLogger:
    """
    Structured logger for one discovery run.

    Usage:
        run_log = DiscoveryLogger(run_id)
        started = run_log.scanner_started()
        candidates = await scanner.run()
        run_log.scanner_finished("sadp", started, len(candidates))
        run_log.complete(added=1, registry_size=4)
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.metrics = DiscoveryMetrics(run_id=run_id)

    def _log(self, level: int, message: str) -> None:
        logger.log(level, f"[{self.run_id}] {message}", extra={"run_id": self.run_id})

    def info(self, message: str) -> None:
        self._log(logging.INFO, message)

    def warning(self, message: str) -> None:
        self._log(logging.WARNING, message)

    def error(self, message: str) -> None:
        self._log(logging.ERROR, message)

    @staticmethod
    def scanner_started() -> float:
        return time.perf_counter()

    def scanner_finished(self, scanner: str, started: float, candidates: int) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        self.metrics.scanners.append(
            ScannerMetrics(scanner=scanner, duration_ms=duration_ms, candidates=candidates)
        )
        self.info(f"{scanner} finished in {duration_ms:.1f}ms with {candidates} candidates")

    def scanner_skipped(self, scanner: str, reason: str) -> None:
        self.metrics.scanners.append(ScannerMetrics(scanner=scanner, skipped=True))
        self.info(f"{scanner} skipped: {reason}")

    def complete(self, added: int, registry_size: int, error: Optional[str] = None) -> DiscoveryMetrics:
        """Complete the run and return metrics"""
        self.metrics.complete(added=added, registry_size=registry_size, error=error)
        self.info(
            f"Discovery completed in {self.metrics.total_duration_ms:.1f}ms. "
            f"Added {added}, total cameras: {registry_size}"
        )
        logger.debug(self.metrics.summary())
        return self.metrics
