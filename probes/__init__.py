# probes/__init__.py
from typing import Any, Optional

from errors import ConfigurationError

from .arp_scan import ArpScanProbe
from .base import AddressDiscoveryProbe
from .router import RouterArpProbe

__all__ = ["AddressDiscoveryProbe", "ArpScanProbe", "RouterArpProbe", "get_discovery_probe"]


def get_discovery_probe(config: Any, method: Optional[str] = None) -> AddressDiscoveryProbe:
    """Discovery probe factory: returns the mechanism selected in the settings."""

    general = config.get("general") or {}
    method = method or general.get("discovery_method", "arp_scan")

    if method == "arp_scan":
        return ArpScanProbe(general.get("arp_scan_command", "arp-scan"))
    if method == "router":
        return RouterArpProbe(config.get("router") or {})
    raise ConfigurationError(f"Unsupported discovery method: {method}")
