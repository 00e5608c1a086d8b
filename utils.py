# utils.py
import getpass
import ipaddress
import logging
import os
import re
import socket
import subprocess
from typing import Optional, Tuple

import paramiko
import psutil

from device import NetworkInterface
from errors import ConfigurationError, PrivilegeError

logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")


def format_mac(mac: str) -> str:
    """Formats a MAC address to lowercase with colons."""
    return mac.lower().replace("-", ":")


def is_valid_mac(mac: Optional[str]) -> bool:
    """Checks if a string is a MAC address in colon or dash notation."""
    return bool(mac) and bool(MAC_PATTERN.match(mac))


def is_valid_ipv4(ip: str) -> bool:
    """Checks if a string is a valid IPv4 address."""
    pattern = r"^(\d{1,3}\.){3}\d{1,3}$"
    if re.match(pattern, ip):
        parts = ip.split('.')
        return all(0 <= int(part) <= 255 for part in parts)
    return False


def ip_sort_key(address: str) -> Tuple[int, ...]:
    """Sort key comparing each dot-separated segment as an integer.

    10.0.0.5 < 10.0.0.23 < 10.0.0.100, unlike a plain string comparison.
    """
    return tuple(int(part) for part in address.split('.'))


def _parse_cidr(cidr: str) -> ipaddress.IPv4Interface:
    try:
        interface = ipaddress.ip_interface(cidr)
    except ValueError as err:
        raise ConfigurationError(f"Invalid CIDR '{cidr}': {err}") from err
    if interface.version != 4:
        raise ConfigurationError(f"Only IPv4 networks are supported, got '{cidr}'")
    return interface


def network_cidr(cidr: str) -> str:
    """Returns the network base in CIDR form: 10.10.1.242/24 -> 10.10.1.0/24."""
    return str(_parse_cidr(cidr).network)


def broadcast_address(cidr: str) -> str:
    """Returns the broadcast address of the network an interface CIDR belongs to."""
    return str(_parse_cidr(cidr).network.broadcast_address)


def address_in_network(address: str, cidr: str) -> bool:
    try:
        return ipaddress.ip_address(address) in _parse_cidr(cidr).network
    except ValueError:
        return False


def check_privileges() -> None:
    """Raises PrivilegeError unless the process can send raw link-layer frames."""
    if hasattr(os, "geteuid"):
        if os.geteuid() != 0:
            raise PrivilegeError("ARP discovery requires root privileges (try sudo)")
        return
    import ctypes  # Windows
    try:
        is_admin = bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError) as err:
        raise PrivilegeError(f"Could not determine administrator rights: {err}") from err
    if not is_admin:
        raise PrivilegeError("ARP discovery requires administrator rights")


def _default_gateway() -> Optional[str]:
    """Reads the IPv4 default gateway from the routing table."""
    for command in (["ip", "route", "show", "default"], ["route", "-n", "get", "default"]):
        try:
            output = subprocess.run(command, capture_output=True, text=True, timeout=5).stdout
        except (OSError, subprocess.SubprocessError) as err:
            logger.debug(f"'{' '.join(command)}' failed: {err}")
            continue
        match = re.search(r"(?:default via|gateway:)\s*(\d+\.\d+\.\d+\.\d+)", output)
        if match:
            return match.group(1)
    return None


def get_default_interface() -> NetworkInterface:
    """Finds the interface facing the default gateway.

    Falls back to the first non-loopback IPv4 interface that is up when no
    gateway can be determined.

    Raises:
        ConfigurationError: if no usable IPv4 interface exists.
    """
    gateway = _default_gateway()
    stats = psutil.net_if_stats()
    fallback: Optional[NetworkInterface] = None

    for name, addrs in psutil.net_if_addrs().items():
        if name in stats and not stats[name].isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.address:
                continue
            if addr.address.startswith("127."):
                continue
            netmask = addr.netmask or "255.255.255.0"
            interface = ipaddress.IPv4Interface(f"{addr.address}/{netmask}")
            candidate = NetworkInterface(name=name, cidr=f"{addr.address}/{interface.network.prefixlen}")
            if gateway and ipaddress.IPv4Address(gateway) in interface.network:
                logger.debug(f"Default interface {name} ({candidate.cidr}) via gateway {gateway}")
                return candidate
            if fallback is None:
                fallback = candidate

    if fallback is None:
        raise ConfigurationError("Could not determine a network interface to scan")
    logger.warning(f"Default gateway not found, using {fallback.name} ({fallback.cidr})")
    return fallback


class SSHClient:
    """A utility class for handling SSH connections and command execution."""

    def __init__(self, hostname: str, username: str, password: Optional[str] = None,
                 timeout: int = 10):
        self.hostname = hostname
        self.username = username
        self.password = password
        self.timeout = timeout
        self.client: Optional[paramiko.SSHClient] = None

    def connect(self) -> bool:
        """Connects to the SSH server, using default SSH keys and agent."""
        self.client = paramiko.SSHClient()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            if self.password:
                self.client.connect(hostname=self.hostname, username=self.username,
                                    password=self.password, timeout=self.timeout)
            else:
                try:
                    self.client.connect(hostname=self.hostname, username=self.username,
                                        timeout=self.timeout, look_for_keys=True, allow_agent=True)
                except paramiko.ssh_exception.PasswordRequiredException:
                    password = getpass.getpass(f"Enter password for {self.username}@{self.hostname}: ")
                    self.client.connect(hostname=self.hostname, username=self.username,
                                        password=password, timeout=self.timeout)
            return True
        except Exception as e:  # pylint: disable=broad-except
            logger.error(f"Error connecting to {self.hostname}: {e}")
            self.close()
            return False

    def execute_command(self, command: str) -> str:
        """Executes a command on the connected SSH server."""
        if not self.client:
            raise RuntimeError("SSH client not connected. Call connect() first.")
        try:
            _, stdout, stderr = self.client.exec_command(command, timeout=self.timeout)
            error = stderr.read().decode().strip()
            output = stdout.read().decode()
            if error:
                logger.warning(f"Command '{command}' returned error: {error}")
            return output
        except Exception as e:  # pylint: disable=broad-except
            logger.error(f"Error executing command '{command}': {e}")
            return ""

    def close(self):
        """Closes the SSH connection."""
        if self.client:
            self.client.close()
            self.client = None
