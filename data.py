# data.py
import json
import logging
from pathlib import Path
from typing import Dict, List, Tuple

from device import Device

logger = logging.getLogger(__name__)


def load_inventory(json_file: Path) -> List[Device]:
    """Loads the inventory saved by a previous scan.

    Args:
        json_file (Path): Path to the JSON file.

    Returns:
        List[Device]: The saved devices, or an empty list if the file is missing or invalid.
    """
    try:
        with json_file.open("r", encoding="utf-8") as file:
            data = json.load(file)
        return [Device.from_dict(entry) for entry in data.get("devices", [])]
    except FileNotFoundError as err:
        logger.warning("Inventory file not found: %s. Returning empty list.", err)
    except (json.JSONDecodeError, AttributeError, KeyError, TypeError) as err:
        logger.warning("Error decoding inventory data: %s. Returning empty list.", err)
    return []


def save_inventory(devices: List[Device], json_file: Path, scanned_at: str) -> None:
    """Saves an inventory to the JSON file.

    Args:
        devices (List[Device]): Devices in inventory order.
        json_file (Path): Path to the JSON file.
        scanned_at (str): ISO timestamp of the scan.
    """
    payload = {
        "scanned_at": scanned_at,
        "devices": [device.to_dict() for device in devices],
    }
    try:
        with json_file.open("w", encoding="utf-8") as file:
            json.dump(payload, file, indent=4)
    except OSError as err:
        logger.error("File system error while saving inventory: %s", err)


def diff_inventory(previous: List[Device], current: List[Device]) -> Tuple[List[Device], List[Device]]:
    """Compares two inventories by address.

    Returns:
        (new, gone): devices only in ``current``, and devices only in ``previous``.
    """
    previous_by_ip: Dict[str, Device] = {d.address: d for d in previous}
    current_by_ip: Dict[str, Device] = {d.address: d for d in current}
    new = [d for ip, d in current_by_ip.items() if ip not in previous_by_ip]
    gone = [d for ip, d in previous_by_ip.items() if ip not in current_by_ip]
    return new, gone
