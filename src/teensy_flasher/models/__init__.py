"""
Device registry for Teensy boards.

Provides a unified layer for USB identity lookup and address-space families.
"""

from .registry import (
    PJRC_VENDOR_ID,
    DeviceFamily,
    DeviceConfig,
    list_devices,
    get_device,
    detect_device,
    family_for,
    address_offset,
    device_filters,
)

__all__ = [
    "PJRC_VENDOR_ID",
    "DeviceFamily",
    "DeviceConfig",
    "list_devices",
    "get_device",
    "detect_device",
    "family_for",
    "address_offset",
    "device_filters",
]
