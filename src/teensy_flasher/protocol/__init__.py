"""Device protocol layer - HalfKay HID upload and serial line monitor."""

from .block_transfer import (
    BlockTransferEngine,
    TransferConfig,
    TransferError,
    TransferSummary,
    build_report,
    build_sentinel_report,
    eligible_blocks,
    flash_firmware,
    HEADER_SIZE,
    REPORT_SIZE,
)
from .serial_monitor import (
    LineFramer,
    SerialConfig,
    SerialPortManager,
    SerialMonitorError,
)

__all__ = [
    # Block transfer
    "BlockTransferEngine",
    "TransferConfig",
    "TransferError",
    "TransferSummary",
    "build_report",
    "build_sentinel_report",
    "eligible_blocks",
    "flash_firmware",
    "HEADER_SIZE",
    "REPORT_SIZE",
    # Serial monitor
    "LineFramer",
    "SerialConfig",
    "SerialPortManager",
    "SerialMonitorError",
]
