# resolver.py
import asyncio
import logging
import socket
from typing import Optional

from mac_vendor_lookup import AsyncMacLookup

from device import DeviceInfo

logger = logging.getLogger(__name__)


class DeviceInfoResolver:
    """Looks up the hostname and MAC vendor of a discovered address.

    Lookups never raise: anything that goes wrong leaves the field as None.
    """

    def __init__(self, timeout_ms: int = 3000, lookup_vendors: bool = True,
                 mac_lookup: Optional[AsyncMacLookup] = None):
        self.timeout_ms = timeout_ms
        self.lookup_vendors = lookup_vendors
        self._mac_lookup = mac_lookup
        self._vendors_loaded: Optional[asyncio.Future] = None

    async def resolve(self, address: str, link_address: Optional[str] = None) -> DeviceInfo:
        hostname = await self.hostname(address)
        vendor = await self.vendor(link_address) if link_address else None
        return DeviceInfo(hostname=hostname, vendor=vendor)

    async def hostname(self, address: str) -> Optional[str]:
        """Reverse DNS lookup, bounded by the resolver timeout."""
        loop = asyncio.get_running_loop()
        try:
            name, _, _ = await asyncio.wait_for(
                loop.run_in_executor(None, socket.gethostbyaddr, address),
                self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.debug(f"Hostname lookup for {address} timed out")
            return None
        except (socket.herror, socket.gaierror, OSError) as e:
            logger.debug(f"No hostname for {address}: {e}")
            return None
        return name.rstrip(".") or None

    async def vendor(self, link_address: str) -> Optional[str]:
        """MAC vendor lookup, bounded by the resolver timeout."""
        if not self.lookup_vendors:
            return None
        try:
            return await asyncio.wait_for(self._lookup_vendor(link_address), self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.debug(f"Vendor lookup for MAC {link_address} timed out")
            return None
        except Exception as e:  # pylint: disable=broad-except
            logger.debug(f"Could not determine vendor for MAC {link_address}: {e}")
            return None

    async def _lookup_vendor(self, link_address: str) -> str:
        if self._mac_lookup is None:
            self._mac_lookup = AsyncMacLookup()
        # The vendor list is loaded (and downloaded if missing) once per resolver
        if self._vendors_loaded is None:
            self._vendors_loaded = asyncio.ensure_future(self._mac_lookup.load_vendors())
        await asyncio.shield(self._vendors_loaded)
        return await self._mac_lookup.lookup(link_address)
