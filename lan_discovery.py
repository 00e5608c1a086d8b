# lan_discovery.py
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dynaconf import Dynaconf
from mac_vendor_lookup import MacLookup

from data import diff_inventory, load_inventory, save_inventory
from device import Device, NetworkInterface, ScanConfig
from errors import ConfigurationError, DiscoveryError, PrivilegeError
from events import ScanEvent
from liveness import PingSession, ping_available
from orchestrator import start_hybrid_scan
from probes import get_discovery_probe
from resolver import DeviceInfoResolver
from utils import check_privileges, get_default_interface

# Load settings
config = Dynaconf(
    settings_files=['config/settings.toml'],
)

logger = logging.getLogger(__name__)


def resolve_interface(args: argparse.Namespace, settings: Dynaconf) -> NetworkInterface:
    """Picks the interface to scan: command line, then settings, then the default route."""
    configured = settings.get("network_interface") or {}
    name = args.interface or configured.get("name")
    cidr = args.cidr or configured.get("cidr")
    if name and cidr:
        return NetworkInterface.from_config({"name": name, "cidr": cidr})
    detected = get_default_interface()
    return NetworkInterface.from_config({"name": name or detected.name, "cidr": cidr or detected.cidr})


def build_scan_config(args: argparse.Namespace, settings: Dynaconf,
                      interface: NetworkInterface) -> ScanConfig:
    general = settings.get("general") or {}
    return ScanConfig.from_mapping({
        "network_interface": interface,
        "timeout_ms": args.timeout_ms if args.timeout_ms is not None else general.get("timeout_ms"),
        "interval_ms": args.interval_ms if args.interval_ms is not None else general.get("interval_ms"),
        "verbose": args.verbose or general.get("verbose", False),
    })


def print_inventory(devices: List[Device]):
    print(f"{'IP':<16} {'MAC':<18} {'STATUS':<8} {'HOSTNAME':<32} VENDOR")
    for device in devices:
        print(f"{device.address:<16} {device.link_address or 'N/A':<18} "
              f"{'up' if device.reachable else 'down':<8} {device.hostname or 'N/A':<32} "
              f"{device.vendor or ''}")


def report_changes(previous: List[Device], current: List[Device]):
    """Logs devices that appeared or disappeared since the last saved scan."""
    new, gone = diff_inventory(previous, current)
    for device in new:
        logger.info(f"New device: IP={device.address}, MAC={device.link_address}, Hostname={device.hostname or ''}")
    for device in gone:
        logger.info(f"Device went offline: IP={device.address}, MAC={device.link_address}")
    if not new and not gone and previous:
        logger.info("No changes detected.")


def run_scan(args: argparse.Namespace, settings: Dynaconf = config) -> List[Device]:
    """Main function to perform the hybrid scan."""
    interface = resolve_interface(args, settings)
    scan_config = build_scan_config(args, settings, interface)
    discovery_probe = get_discovery_probe(settings, method=args.method)
    if not ping_available():
        logger.warning("ping command not found: every device will be reported as unreachable")

    handlers = {
        ScanEvent.DISCOVERY_RESPONSE: lambda p: logger.info(f"ARP reply from {p.address} ({p.link_address})"),
        ScanEvent.DISCOVERY_COMPLETE: lambda r: logger.info(f"ARP scan complete: {r.count} hosts in {r.elapsed_ms}ms"),
        ScanEvent.PROBE_REACHABLE: lambda ip: logger.debug(f"Ping response from {ip}"),
        ScanEvent.SCAN_COMPLETE: lambda r: logger.info(
            f"Ping scan complete: {len(r.targets)}/{r.count} reachable, {r.elapsed_ms}ms "
            f"(average {r.average_ms}ms)"),
    }
    logger.info(f"Starting hybrid scan on {interface.name} ({interface.cidr})")
    return asyncio.run(start_hybrid_scan(
        scan_config,
        discovery_probe=discovery_probe,
        session_factory=PingSession,
        resolver=DeviceInfoResolver(timeout_ms=scan_config.timeout_ms,
                                    lookup_vendors=not args.no_vendor),
        handlers=handlers,
    ))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="LAN device discovery (ARP + ping)")
    parser.add_argument("--interface", help="Network interface to scan, e.g. eth0")
    parser.add_argument("--cidr", help="Interface address with prefix, e.g. 192.168.1.23/24")
    parser.add_argument("--timeout-ms", type=int, help="Per-probe timeout in milliseconds")
    parser.add_argument("--interval-ms", type=int, help="Minimum spacing between pings (0 = all at once)")
    parser.add_argument("--method", choices=["arp_scan", "router"], help="Discovery mechanism")
    parser.add_argument("--output", help="Inventory JSON file (defaults to general.json_file)")
    parser.add_argument("--no-vendor", action="store_true", help="Skip MAC vendor lookups")
    parser.add_argument("--update-mac-db", action="store_true", help="Force update of the MAC vendor database")
    parser.add_argument("--verbose", action="store_true", help="Log every probe")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    general = config.get("general") or {}
    if args.update_mac_db:
        MacLookup().update_vendors()

    try:
        if (args.method or general.get("discovery_method", "arp_scan")) == "arp_scan":
            check_privileges()
        devices = run_scan(args)
    except ConfigurationError as err:
        logger.error(f"Configuration error: {err}")
        return 2
    except PrivilegeError as err:
        logger.error(str(err))
        return 1
    except DiscoveryError as err:
        logger.error(f"Discovery failed: {err}")
        return 1

    json_file_path = Path(args.output or general.get("json_file", "inventory.json"))
    report_changes(load_inventory(json_file_path), devices)
    save_inventory(devices, json_file_path, datetime.now().isoformat())
    logger.info(f"Inventory of {len(devices)} devices saved to {json_file_path}")
    print_inventory(devices)
    return 0


if __name__ == "__main__":
    sys.exit(main())
