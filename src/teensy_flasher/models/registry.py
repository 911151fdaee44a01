"""
Device registry for Teensy boards.

Provides a single source of truth for:
- USB identities (vendor/product id) of HalfKay bootloader devices
- Device family (address-space layout) per board
- Flash address offsets used when decoding HEX images

Usage:
    from teensy_flasher.models import (
        list_devices, get_device, detect_device, family_for
    )

    # Look up by USB identity
    config = detect_device(0x16C0, 0x0478)

    # Address offset for HEX decoding (unknown ids -> small address space)
    offset = address_offset(0x16C0, 0x0478)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


PJRC_VENDOR_ID = 0x16C0


class DeviceFamily(Enum):
    """Address-space classification of a board."""
    LARGE_ADDRESS = "large-address"   # i.MX RT, flash mapped at 0x60000000
    SMALL_ADDRESS = "small-address"   # Kinetis, flash mapped at 0x0

    @property
    def flash_base(self) -> int:
        """Flash region base address subtracted from HEX addresses."""
        if self is DeviceFamily.LARGE_ADDRESS:
            return 0x60000000
        return 0x00000000

    @property
    def supports_dual_segment(self) -> bool:
        """Only large-address boards expose a separate RAM region for loaders."""
        return self is DeviceFamily.LARGE_ADDRESS


@dataclass(frozen=True)
class DeviceConfig:
    """USB identity and family of a known board."""
    name: str
    vendor_id: int
    product_id: int
    family: DeviceFamily
    tested: bool = False
    notes: Tuple[str, ...] = ()

    @property
    def usb_id(self) -> str:
        return f"{self.vendor_id:04X}:{self.product_id:04X}"

    @property
    def flash_base(self) -> int:
        return self.family.flash_base


# ============================================================================
# DEVICE REGISTRY - All known boards
# ============================================================================

_DEVICE_REGISTRY: Dict[str, DeviceConfig] = {}


def _register_device(config: DeviceConfig) -> None:
    """Register a device configuration."""
    _DEVICE_REGISTRY[config.name] = config


def _init_registry() -> None:
    """Initialize the registry with known boards."""

    _register_device(DeviceConfig(
        name="Teensy 4.0",
        vendor_id=PJRC_VENDOR_ID,
        product_id=0x0478,
        family=DeviceFamily.LARGE_ADDRESS,
        tested=True,
        notes=("HalfKay HID bootloader, 1088-byte reports",),
    ))

    _register_device(DeviceConfig(
        name="Teensy 4.1",
        vendor_id=PJRC_VENDOR_ID,
        product_id=0x0479,
        family=DeviceFamily.LARGE_ADDRESS,
        tested=True,
        notes=("HalfKay HID bootloader, 1088-byte reports",),
    ))

    # Teensy 3.x HalfKay does not expose the same HID interface; untested.
    _register_device(DeviceConfig(
        name="Teensy 3.6",
        vendor_id=PJRC_VENDOR_ID,
        product_id=0x0477,
        family=DeviceFamily.SMALL_ADDRESS,
    ))

    _register_device(DeviceConfig(
        name="Teensy 3.5",
        vendor_id=PJRC_VENDOR_ID,
        product_id=0x0474,
        family=DeviceFamily.SMALL_ADDRESS,
    ))

    _register_device(DeviceConfig(
        name="Teensy 3.0",
        vendor_id=PJRC_VENDOR_ID,
        product_id=0x0483,
        family=DeviceFamily.SMALL_ADDRESS,
        notes=("Product id varies between board revisions",),
    ))

    _register_device(DeviceConfig(
        name="Teensy 3.1/3.2",
        vendor_id=PJRC_VENDOR_ID,
        product_id=0x0484,
        family=DeviceFamily.SMALL_ADDRESS,
    ))


_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def list_devices() -> List[str]:
    """
    List all registered device names.

    Returns:
        Sorted list of device names.
    """
    return sorted(_DEVICE_REGISTRY.keys())


def get_device(name: str) -> Optional[DeviceConfig]:
    """
    Get configuration for a device by name (case-insensitive).

    Returns:
        DeviceConfig or None if not found.
    """
    config = _DEVICE_REGISTRY.get(name)
    if config is not None:
        return config
    lowered = name.strip().lower()
    for candidate in _DEVICE_REGISTRY.values():
        if candidate.name.lower() == lowered:
            return candidate
    return None


def detect_device(vendor_id: int, product_id: int) -> Optional[DeviceConfig]:
    """Find the registered device with the given USB identity."""
    for config in _DEVICE_REGISTRY.values():
        if config.vendor_id == vendor_id and config.product_id == product_id:
            return config
    return None


def family_for(vendor_id: int, product_id: int) -> DeviceFamily:
    """Device family for a USB identity; unknown ids are small-address."""
    config = detect_device(vendor_id, product_id)
    if config is None:
        return DeviceFamily.SMALL_ADDRESS
    return config.family


def address_offset(vendor_id: int, product_id: int) -> int:
    """Flash offset to subtract while decoding HEX for this identity."""
    return family_for(vendor_id, product_id).flash_base


def device_filters() -> List[Dict[str, int]]:
    """HID enumeration filters for every registered board."""
    return [
        {"vendor_id": c.vendor_id, "product_id": c.product_id}
        for c in _DEVICE_REGISTRY.values()
    ]
