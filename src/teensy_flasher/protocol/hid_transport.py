"""
HalfKay HID Transport Layer

Handles low-level HID communication with the Teensy HalfKay bootloader.

This module provides:
- Device enumeration against the known identity table
- Exclusive open/close of one bootloader device
- Fixed-size output report writes (report id 0)
"""

import logging
from typing import Dict, List, Optional

try:
    import hid
except ImportError:
    raise ImportError("hidapi required: pip install hidapi")

from teensy_flasher.models import device_filters

logger = logging.getLogger(__name__)

REPORT_ID = 0x00


class HidTransportError(Exception):
    """Base exception for HID transport errors"""
    pass


def enumerate_devices() -> List[Dict]:
    """
    List connected HID devices that match a registered board.

    Returns:
        hidapi device info dicts (path, vendor_id, product_id, ...)
    """
    found: List[Dict] = []
    for flt in device_filters():
        for info in hid.enumerate(flt["vendor_id"], flt["product_id"]):
            logger.debug(
                f"Found {info['vendor_id']:04X}:{info['product_id']:04X} "
                f"at {info.get('path')!r}"
            )
            found.append(info)
    return found


class HalfKayTransport:
    """
    HID transport for one HalfKay bootloader device.

    Handles:
    - Exclusive open (a second open fails fast)
    - Report writes with short-write detection
    - Idempotent close

    Example:
        transport = HalfKayTransport(0x16C0, 0x0478)
        transport.open()
        transport.send_report(report)
        transport.close()
    """

    def __init__(
        self,
        vendor_id: int,
        product_id: int,
        path: Optional[bytes] = None,
    ):
        """
        Initialize transport layer.

        Args:
            vendor_id: USB vendor id
            product_id: USB product id
            path: Optional hidapi device path (takes precedence over ids)
        """
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.path = path
        self.device = None

    @property
    def is_open(self) -> bool:
        return self.device is not None

    def open(self) -> None:
        """
        Open the HID device.

        Raises:
            HidTransportError: If already open or the device cannot be opened
        """
        if self.device is not None:
            raise HidTransportError(
                f"Device {self.vendor_id:04X}:{self.product_id:04X} is already open"
            )

        device = hid.device()
        try:
            if self.path:
                device.open_path(self.path)
            else:
                device.open(self.vendor_id, self.product_id)
            device.set_nonblocking(0)
        except (IOError, OSError, ValueError) as e:
            raise HidTransportError(
                f"Cannot open HID device {self.vendor_id:04X}:{self.product_id:04X}: {e}"
            )

        self.device = device
        logger.debug(f"Opened HID device {self.vendor_id:04X}:{self.product_id:04X}")

    def close(self) -> None:
        """Close the HID device."""
        if self.device is None:
            return
        device, self.device = self.device, None
        device.close()
        logger.debug(f"Closed HID device {self.vendor_id:04X}:{self.product_id:04X}")

    def send_report(self, report: bytes) -> None:
        """
        Send one output report.

        Args:
            report: Report payload (without the report id byte)

        Raises:
            HidTransportError: If the device is not open or the write fails
        """
        if self.device is None:
            raise HidTransportError("HID device not open")

        data = bytes([REPORT_ID]) + bytes(report)
        try:
            written = self.device.write(data)
        except (IOError, OSError, ValueError) as e:
            raise HidTransportError(f"Write error: {e}")

        if written < 0:
            raise HidTransportError(f"Write error: {self.device.error()}")
        if written < len(data):
            raise HidTransportError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )

    def __enter__(self) -> "HalfKayTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
