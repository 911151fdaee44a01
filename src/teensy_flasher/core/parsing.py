"""
Parsing helpers for CLI values: serial baud rates and board identities.

The CLI must import these helpers rather than re-implement.
"""

import re
from decimal import Decimal
from typing import Optional, Tuple

from teensy_flasher.models import DeviceConfig, get_device, detect_device

DEFAULT_BAUDRATE = 115200

_BAUD_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([kKmM]?)(?:bps|baud)?")
_BAUD_SCALE = {"": 1, "k": 1_000, "m": 1_000_000}


def parse_baudrate(value: Optional[str]) -> int:
    """
    Parse a serial baud rate.

    Accepts plain numbers ("115200"), k/M multipliers ("115.2k", "2M") and an
    optional "bps"/"baud" unit. None or blank gives DEFAULT_BAUDRATE.

    Raises:
        ValueError: If value is not a positive whole baud rate.
    """
    if value is None or not value.strip():
        return DEFAULT_BAUDRATE

    match = _BAUD_RE.fullmatch(value.strip())
    if match is None:
        raise ValueError(
            f"Invalid baud rate '{value}'. Use a number like 115200, 115.2k or 2M."
        )
    number, unit = match.groups()
    rate = Decimal(number) * _BAUD_SCALE[unit.lower()]
    if rate <= 0 or rate != int(rate):
        raise ValueError(f"Baud rate must be a positive whole number, got '{value}'")
    return int(rate)


def parse_device_id(value: str) -> Tuple[int, int]:
    """
    Parse a USB identity in VID:PID form (hex), e.g. "16C0:0478".

    Raises:
        ValueError: If format is invalid
    """
    try:
        vid_text, pid_text = value.strip().split(":")
        vendor_id, product_id = int(vid_text, 16), int(pid_text, 16)
    except ValueError:
        raise ValueError(
            f"Invalid device id '{value}'. Use VID:PID in hex like '16C0:0478'."
        )
    if not (0 <= vendor_id <= 0xFFFF and 0 <= product_id <= 0xFFFF):
        raise ValueError(f"Device id out of range: '{value}'")
    return vendor_id, product_id


def resolve_device(value: str) -> Tuple[int, int, Optional[DeviceConfig]]:
    """
    Resolve a device given by name ("Teensy 4.1") or VID:PID.

    Returns:
        (vendor_id, product_id, DeviceConfig or None for unregistered ids)

    Raises:
        ValueError: If the value is neither a known name nor a VID:PID
    """
    config = get_device(value)
    if config is not None:
        return config.vendor_id, config.product_id, config
    vendor_id, product_id = parse_device_id(value)
    return vendor_id, product_id, detect_device(vendor_id, product_id)
