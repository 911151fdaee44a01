"""
Teensy Flasher - HalfKay firmware uploader and serial monitor for Teensy boards

Intel HEX / binary block building, HID block upload, and line-based serial
output monitoring.
"""

__version__ = "0.1.0"

from teensy_flasher.hexfile import AddressedBlock, FormatError, FirmwareError
from teensy_flasher.firmware import (
    BlockSet,
    FirmwareImage,
    UnsupportedFormatError,
    build_blocks,
)
from teensy_flasher.protocol import (
    BlockTransferEngine,
    TransferError,
    LineFramer,
    SerialPortManager,
)

__all__ = [
    "AddressedBlock",
    "FormatError",
    "FirmwareError",
    "BlockSet",
    "FirmwareImage",
    "UnsupportedFormatError",
    "build_blocks",
    "BlockTransferEngine",
    "TransferError",
    "LineFramer",
    "SerialPortManager",
    "__version__",
]
