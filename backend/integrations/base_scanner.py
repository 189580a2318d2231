# backend/integrations/base_scanner.py
"""
Abstract base class for network scanners.

Every discovery strategy (SADP, ONVIF WS-Discovery, subnet sweep, channel
probing) implements this interface. Callers only ever use run(), which
enforces the scanner's hard timeout and turns any failure into an empty
result.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List

from errors import NetworkProbeError
from models import DeviceCandidate, DiscoveryMethod

logger = logging.getLogger(__name__)


class Scanner(ABC):
    """A time-bounded producer of device candidates"""

    #: Discovery method tag stamped on every candidate
    method: DiscoveryMethod

    #: Hard upper bound for one scan, in seconds
    timeout: float = 10.0

    @property
    def name(self) -> str:
        return self.method.value

    @abstractmethod
    async def scan(self) -> List[DeviceCandidate]:
        """
        Probe the network once.

        Implementations may raise; run() converts failures into an empty
        result.
        """
        pass

    async def run(self) -> List[DeviceCandidate]:
        """
        Scan with the hard timeout applied. Never raises.

        Returns:
            Candidates found, or an empty list on failure/timeout
        """
        try:
            # Margin lets scanners with their own collection window finish cleanly
            return await asyncio.wait_for(self.scan(), timeout=self.timeout + 2.0)
        except asyncio.TimeoutError:
            error = NetworkProbeError(self.name, f"timed out after {self.timeout}s")
            logger.warning(str(error))
        except asyncio.CancelledError:
            raise
        except NetworkProbeError as e:
            logger.warning(str(e))
        except Exception as e:
            error = NetworkProbeError(self.name, str(e), details={"type": type(e).__name__})
            logger.warning(str(error), exc_info=logger.isEnabledFor(logging.DEBUG))
        return []
