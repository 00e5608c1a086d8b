# probes/base.py
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from device import NetworkInterface, PendingProbe, ScanReport
from errors import DiscoveryError
from events import EventChannel, ProbeEvent

logger = logging.getLogger(__name__)


class AddressDiscoveryProbe(ABC):
    """Abstract base class for link-layer discovery mechanisms.

    A probe run emits one ``ProbeEvent.RESPONSE`` per discovered host, carrying a
    ``PendingProbe(address, link_address)``, followed by exactly one
    ``ProbeEvent.COMPLETE`` carrying a discovery ``ScanReport``. Nothing is
    emitted after a failure; the failure is raised as ``DiscoveryError``.
    """

    def __init__(self):
        self.events = EventChannel(ProbeEvent)
        self.scan_start_time: Optional[float] = None

    @abstractmethod
    async def discover(self, network_interface: NetworkInterface, broadcast_address: str,
                       timeout_ms: int) -> List[PendingProbe]:
        """Runs the underlying mechanism and returns every host it reported.

        Duplicates and the broadcast address may be included; ``start`` filters them.
        """

    async def start(self, network_interface: NetworkInterface, broadcast_address: str,
                    timeout_ms: int = 3000) -> List[PendingProbe]:
        """Runs one discovery pass and publishes its results on ``self.events``."""
        self.scan_start_time = time.monotonic()
        try:
            entries = await self.discover(network_interface, broadcast_address, timeout_ms)
        except DiscoveryError:
            raise
        except Exception as e:
            raise DiscoveryError(f"{type(self).__name__} failed: {e}") from e

        found: List[PendingProbe] = []
        seen = set()
        for entry in entries:
            if entry.address == broadcast_address:
                logger.debug(f"Ignoring broadcast address: {entry.address} ({entry.link_address})")
                continue
            key = f"{entry.address}:{entry.link_address}"
            if key in seen:
                logger.debug(f"Skipped duplicate: {key}")
                continue
            seen.add(key)
            found.append(entry)
            self.events.emit(ProbeEvent.RESPONSE, entry)

        logger.debug(f"{len(found)} hosts after deduplication (from {len(entries)} reported)")
        self.events.emit(ProbeEvent.COMPLETE,
                         ScanReport.for_discovery([e.address for e in found], self._elapsed_ms()))
        return found

    def _elapsed_ms(self) -> int:
        if self.scan_start_time is None:
            return 0
        return int((time.monotonic() - self.scan_start_time) * 1000)
