"""
Core workflow actions for Teensy Flasher.

This module exposes functions the CLI calls; they never raise for expected
firmware or transfer failures and report them through a FlashReport.
"""

import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from teensy_flasher.firmware import (
    BlockSet,
    DeviceId,
    FirmwareFormat,
    FirmwareImage,
)
from teensy_flasher.hexfile import FirmwareError
from teensy_flasher.models import DeviceConfig, DeviceFamily
from teensy_flasher.protocol.block_transfer import (
    BlockTransferEngine,
    TransferConfig,
    TransferError,
)
from .results import FlashReport

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "teensy_flasher"


class _ReportLogHandler(logging.Handler):
    """Append package log records to a FlashReport as 'LEVEL module: message'."""

    def __init__(self, report: FlashReport) -> None:
        super().__init__(logging.INFO)
        self.report = report

    def emit(self, record: logging.LogRecord) -> None:
        module = record.name.rsplit(".", 1)[-1]
        self.report.logs.append(f"{record.levelname} {module}: {record.getMessage()}")


@contextmanager
def _recording(report: FlashReport):
    """Route INFO and above from the package loggers into ``report.logs``."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    handler = _ReportLogHandler(report)
    saved_level = package_logger.level
    if package_logger.getEffectiveLevel() > logging.INFO:
        package_logger.setLevel(logging.INFO)
    package_logger.addHandler(handler)
    try:
        yield report
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(saved_level)


def _device_label(device: DeviceId) -> str:
    if isinstance(device, DeviceConfig):
        return device.name
    if isinstance(device, DeviceFamily):
        return device.value
    vendor_id, product_id = device
    return f"{vendor_id:04X}:{product_id:04X}"


def _build(path: Path, device: DeviceId, report: FlashReport) -> BlockSet:
    image = FirmwareImage.from_path(path, device)
    report.size = len(image.raw_bytes)
    report.sha256 = hashlib.sha256(image.raw_bytes).hexdigest()
    report.firmware_format = image.format.value
    report.family = image.family.value

    if image.format is FirmwareFormat.RAW_BINARY and path.suffix.lower() not in (".bin", ""):
        report.add_warning(
            f"Unrecognized extension '{path.suffix}', treating file as raw binary"
        )

    block_set = image.build_blocks()
    report.record_blocks(block_set)
    return block_set


def load_firmware(
    firmware_path: Union[str, Path],
    device: DeviceId,
) -> Tuple[Optional[BlockSet], FlashReport]:
    """
    Read a firmware file and build its block sets.

    Returns:
        (BlockSet or None on failure, FlashReport)
    """
    path = Path(firmware_path)
    report = FlashReport(
        ok=True,
        operation="load_firmware",
        device=_device_label(device),
        firmware=path.name,
    )
    if not path.exists():
        report.add_error(f"Firmware file not found: {path}")
        return None, report

    with _recording(report):
        try:
            return _build(path, device, report), report
        except FirmwareError as e:
            logger.error(f"Cannot decode {path.name}: {e}")
            report.add_error(str(e))
            return None, report


def flash_file(
    firmware_path: Union[str, Path],
    device: DeviceId,
    transport,
    progress_cb: Optional[Callable[[float], None]] = None,
    config: Optional[TransferConfig] = None,
) -> FlashReport:
    """
    Build blocks from a firmware file and upload them.

    Args:
        firmware_path: Path to .hex, .ehex or raw binary image
        device: Target DeviceConfig, DeviceFamily or (vendor_id, product_id)
        transport: Unopened HID transport (open/close/send_report)
        progress_cb: Optional progress callback (0..1)
        config: Optional TransferConfig override

    Returns:
        FlashReport with upload counts, or the failing address on error
    """
    block_set, report = load_firmware(firmware_path, device)
    report.operation = "flash_file"
    if block_set is None:
        return report

    with _recording(report):
        try:
            report.record_transfer(
                BlockTransferEngine(config).flash_firmware(block_set, transport, progress_cb)
            )
        except TransferError as e:
            logger.error(f"Flash failed: {e}")
            report.add_error(str(e))
            report.failed_address = e.address
        except Exception as e:
            # Transport open errors pass through from the HID layer.
            logger.exception("flash_file failed")
            report.add_error(str(e))
    return report
