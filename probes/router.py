# probes/router.py
import asyncio
import logging
import re
from typing import Any, List, Mapping, Optional

from device import NetworkInterface, PendingProbe
from errors import DiscoveryError
from utils import SSHClient, address_in_network, format_mac, is_valid_mac

from .base import AddressDiscoveryProbe

logger = logging.getLogger(__name__)

ARP_LINE = re.compile(
    r"^(?P<arp_hostname>[^\s\(]+)\s+\((?P<ip>\d+\.\d+\.\d+\.\d+)\)\s+at\s+(?P<mac>[\w:<>-]+)"
    r"(?:\s+\[ether\])?(?:\s+on\s+\S+)?\s*$",
    re.IGNORECASE,
)
LINK_ETHER = re.compile(r"link/ether\s+([\w:]+)", re.IGNORECASE)


class RouterArpProbe(AddressDiscoveryProbe):
    """Discovery from a gateway router's ARP table, read over SSH.

    Useful when the scanning host cannot send raw ARP frames itself. The router
    is reported as a host too, using the MAC of its LAN interface.
    """

    def __init__(self, config: Mapping[str, Any]):
        super().__init__()
        self.router_ip = config.get("router_ip")
        self.router_user = config.get("router_user")
        self.router_password = config.get("router_password")
        self.ssh_timeout = config.get("ssh_timeout", 10)
        self.arp_cmd = "arp -a"
        self.lan_interfaces = list(config.get("lan_interfaces", ["br0", "eth0", "en0", "wlan0"]))

    async def discover(self, network_interface: NetworkInterface, broadcast_address: str,
                       timeout_ms: int) -> List[PendingProbe]:
        if not self.router_ip or not self.router_user:
            raise DiscoveryError("router.router_ip and router.router_user must be configured")
        loop = asyncio.get_running_loop()
        # paramiko is blocking; keep it off the event loop
        devices = await loop.run_in_executor(None, self._fetch_devices)
        return [d for d in devices if address_in_network(d.address, network_interface.cidr)]

    def _fetch_devices(self) -> List[PendingProbe]:
        ssh_client = SSHClient(hostname=self.router_ip, username=self.router_user,
                               password=self.router_password, timeout=self.ssh_timeout)
        if not ssh_client.connect():
            raise DiscoveryError(f"Could not connect to router {self.router_ip}")
        try:
            arp_output = ssh_client.execute_command(self.arp_cmd)
            router_mac = self._get_router_mac(ssh_client)
        finally:
            ssh_client.close()

        devices = self.parse_arp_table(arp_output)
        if router_mac:
            devices.append(PendingProbe(address=self.router_ip, link_address=router_mac))
        else:
            logger.warning("Could not determine router MAC address.")
        logger.info(f"Router {self.router_ip} reported {len(devices)} ARP entries")
        return devices

    def parse_arp_line(self, line: str) -> Optional[PendingProbe]:
        """Parses one ``host (ip) at mac [ether] on iface`` line."""
        match = ARP_LINE.match(line.strip())
        if not match:
            return None
        mac = match.group('mac')
        if not is_valid_mac(mac):
            # <incomplete> entries have no usable link address
            return None
        return PendingProbe(address=match.group('ip'), link_address=format_mac(mac))

    def parse_arp_table(self, arp_output: str) -> List[PendingProbe]:
        devices = []
        for line in arp_output.splitlines():
            device = self.parse_arp_line(line)
            if device:
                devices.append(device)
        return devices

    def _get_router_mac(self, ssh_client: SSHClient) -> Optional[str]:
        """Retrieves the router's LAN MAC address using 'ip link show'."""
        for interface in self.lan_interfaces:
            output = ssh_client.execute_command(f"ip link show {interface}")
            match = LINK_ETHER.search(output)
            if match and is_valid_mac(match.group(1)):
                return format_mac(match.group(1))
        return None
