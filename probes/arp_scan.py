# probes/arp_scan.py
import asyncio
import contextlib
import logging
import shutil
from typing import List, Optional

from device import NetworkInterface, PendingProbe
from errors import DiscoveryError
from utils import format_mac, is_valid_ipv4, is_valid_mac, network_cidr

from .base import AddressDiscoveryProbe

logger = logging.getLogger(__name__)

HEADER_MARKERS = ("Interface:", "Starting arp-scan", "Ending arp-scan", "WARNING:")


class ArpScanProbe(AddressDiscoveryProbe):
    """Broadcast ARP discovery backed by the ``arp-scan`` command."""

    def __init__(self, executable: str = "arp-scan"):
        super().__init__()
        self.executable = executable
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        if self._available is None:
            self._available = shutil.which(self.executable) is not None
        return self._available

    def build_command(self, network_interface: NetworkInterface) -> List[str]:
        # arp-scan wants the network base, not the interface address
        return [self.executable, f"--interface={network_interface.name}",
                network_cidr(network_interface.cidr)]

    async def discover(self, network_interface: NetworkInterface, broadcast_address: str,
                       timeout_ms: int) -> List[PendingProbe]:
        if not self.is_available():
            logger.error("ARP broadcast scan requires arp-scan. Install it with: "
                         "sudo apt-get install arp-scan (Linux) or brew install arp-scan (macOS)")
            raise DiscoveryError("arp-scan command not found")

        command = self.build_command(network_interface)
        # A /24 sweep takes a while; never give it less than 30 seconds
        run_timeout = max(30000, timeout_ms * 10) / 1000
        logger.debug(f"ARP-scan command: {' '.join(command)} (timeout {run_timeout}s)")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise DiscoveryError(f"Could not start arp-scan: {err}") from err

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), run_timeout)
        except asyncio.TimeoutError as err:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            with contextlib.suppress(Exception):
                await process.wait()
            raise DiscoveryError(f"arp-scan did not finish within {run_timeout}s") from err

        output = stdout.decode("utf-8", errors="ignore")
        error_output = stderr.decode("utf-8", errors="ignore")
        devices = self.parse_output(output, error_output)

        if process.returncode != 0:
            if not devices:
                details = (error_output or output).strip()[:200]
                raise DiscoveryError(f"arp-scan exited with status {process.returncode}: {details}")
            logger.warning(f"arp-scan exited with status {process.returncode}, "
                           f"keeping {len(devices)} parsed replies")
        logger.info(f"ARP-scan completed: {len(devices)} replies")
        return devices

    def parse_output(self, stdout: str, stderr: str = "") -> List[PendingProbe]:
        """Parses ``IP<tab>MAC<tab>(Vendor)`` lines, skipping headers and noise."""
        devices: List[PendingProbe] = []
        for line in f"{stdout}\n{stderr}".splitlines():
            line = line.strip()
            if not line or line.startswith(HEADER_MARKERS):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            ip, mac = parts[0], parts[1]
            if is_valid_ipv4(ip) and is_valid_mac(mac):
                devices.append(PendingProbe(address=ip, link_address=format_mac(mac)))
        return devices
