# device.py
import ipaddress
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from errors import ConfigurationError

DEFAULT_TIMEOUT_MS = 3000
DEFAULT_INTERVAL_MS = 0


@dataclass(frozen=True)
class NetworkInterface:
    name: str
    cidr: str  # Interface address with prefix, e.g. 192.168.1.23/24

    @classmethod
    def from_config(cls, value: Any) -> "NetworkInterface":
        """Builds an interface from a mapping or returns it unchanged.

        Raises:
            ConfigurationError: if the value is missing, has no name, or its
                CIDR is not a valid IPv4 interface address.
        """
        if isinstance(value, NetworkInterface):
            interface = value
        elif isinstance(value, Mapping):
            interface = cls(name=value.get("name") or "", cidr=value.get("cidr") or "")
        else:
            raise ConfigurationError("network_interface is required")

        if not interface.name:
            raise ConfigurationError("network_interface.name is required")
        if not interface.cidr:
            raise ConfigurationError("network_interface.cidr is required")
        if not isinstance(interface.name, str) or not isinstance(interface.cidr, str):
            raise ConfigurationError("network_interface.name and network_interface.cidr must be strings")
        try:
            parsed = ipaddress.ip_interface(interface.cidr)
        except ValueError as err:
            raise ConfigurationError(f"Invalid CIDR '{interface.cidr}': {err}") from err
        if parsed.version != 4 or "/" not in interface.cidr:
            raise ConfigurationError(f"Expected an IPv4 CIDR, got '{interface.cidr}'")
        return interface


@dataclass(frozen=True)
class ScanConfig:
    network_interface: NetworkInterface
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    interval_ms: int = DEFAULT_INTERVAL_MS
    verbose: bool = False

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "ScanConfig":
        """Validates a raw configuration mapping.

        Accepted keys: network_interface (required), timeout_ms, interval_ms, verbose.
        """
        if config is None:
            raise ConfigurationError("Scan configuration is required")
        interface = NetworkInterface.from_config(config.get("network_interface"))

        timeout_ms = config.get("timeout_ms")
        interval_ms = config.get("interval_ms")
        timeout_ms = DEFAULT_TIMEOUT_MS if timeout_ms is None else timeout_ms
        interval_ms = DEFAULT_INTERVAL_MS if interval_ms is None else interval_ms

        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be a positive integer, got {timeout_ms!r}")
        if isinstance(interval_ms, bool) or not isinstance(interval_ms, int) or interval_ms < 0:
            raise ConfigurationError(f"interval_ms must be a non-negative integer, got {interval_ms!r}")

        return cls(
            network_interface=interface,
            timeout_ms=timeout_ms,
            interval_ms=interval_ms,
            verbose=bool(config.get("verbose", False)),
        )


@dataclass
class Device:
    address: str
    link_address: Optional[str] = None  # None only for the scanning host itself
    hostname: Optional[str] = None
    reachable: bool = False
    vendor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Device":
        return cls(
            address=data["address"],
            link_address=data.get("link_address"),
            hostname=data.get("hostname"),
            reachable=bool(data.get("reachable", False)),
            vendor=data.get("vendor"),
        )


@dataclass(frozen=True)
class DeviceInfo:
    """Enrichment data for one address; every field is optional."""
    hostname: Optional[str] = None
    vendor: Optional[str] = None


@dataclass(frozen=True)
class PendingProbe:
    address: str
    link_address: Optional[str] = None


class ScanKind(Enum):
    TARGET_LIST = "target_list"  # Closed list of targets: count is targets attempted
    DISCOVERY = "discovery"  # Open-ended discovery: count is targets found


@dataclass
class ScanReport:
    kind: ScanKind
    targets: List[str] = field(default_factory=list)
    count: int = 0
    elapsed_ms: int = 0
    average_ms: int = 0

    @classmethod
    def for_target_list(cls, attempted: List[str], found: List[str], elapsed_ms: int) -> "ScanReport":
        """Summary of a scan over a known list of targets."""
        return cls(
            kind=ScanKind.TARGET_LIST,
            targets=list(found),
            count=len(attempted),
            elapsed_ms=int(elapsed_ms),
            average_ms=_average(elapsed_ms, len(attempted)),
        )

    @classmethod
    def for_discovery(cls, found: List[str], elapsed_ms: int) -> "ScanReport":
        """Summary of an open-ended discovery pass."""
        return cls(
            kind=ScanKind.DISCOVERY,
            targets=list(found),
            count=len(found),
            elapsed_ms=int(elapsed_ms),
            average_ms=_average(elapsed_ms, len(found)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def _average(elapsed_ms: float, count: int) -> int:
    if count <= 0:
        return 0
    return int(round(elapsed_ms / count))
