"""
HalfKay Block Transfer Protocol

Uploads 1 KiB firmware blocks to the Teensy HalfKay bootloader.

Report format (1088 bytes):
[ addr_lo | addr_mid | addr_hi | 0x00 * 61 | payload (1024) ]

Protocol sequence:
1. Send first block of the main set (even if blank) -> bootloader erases flash
2. Wait for the erase (1.5 s), then send remaining non-blank blocks (5 ms apart)
3. Send loader-utility blocks the same way, if any
4. Send sentinel report (address FF FF FF, zero payload) -> device reboots
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from teensy_flasher.firmware import BlockSet
from teensy_flasher.hexfile import BLOCK_SIZE, AddressedBlock

logger = logging.getLogger(__name__)

HEADER_SIZE = 64
REPORT_SIZE = HEADER_SIZE + BLOCK_SIZE  # 1088 bytes
ADDRESS_MASK = 0xFFFFFF
SENTINEL_ADDRESS = 0xFFFFFF


class TransferError(Exception):
    """A block could not be delivered to the bootloader."""

    def __init__(self, message: str, address: Optional[int] = None):
        super().__init__(message)
        self.address = address


@dataclass(frozen=True)
class TransferConfig:
    """
    Timing and framing parameters for one flash operation.

    ``sleep`` is injectable so tests can run the pacing and retry logic
    without wall-clock waits.
    """
    block_size: int = BLOCK_SIZE
    header_size: int = HEADER_SIZE
    max_attempts: int = 5
    retry_delay: float = 0.1
    first_block_delay: float = 1.5
    block_delay: float = 0.005
    settle_delay: float = 0.1
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    @property
    def report_size(self) -> int:
        return self.header_size + self.block_size


@dataclass
class TransferSummary:
    """Counts reported back after a successful flash."""
    sent: int = 0
    skipped: int = 0
    total: int = 0


def build_report(
    address: int,
    payload: bytes,
    header_size: int = HEADER_SIZE,
    block_size: int = BLOCK_SIZE,
) -> bytes:
    """
    Build one HalfKay report.

    The address is truncated to 24 bits, little-endian in bytes 0-2. The rest
    of the header is zero; the payload starts at ``header_size``.
    """
    if len(payload) > block_size:
        raise ValueError(f"Payload too large: {len(payload)} bytes (max {block_size})")
    report = bytearray(header_size + block_size)
    address &= ADDRESS_MASK
    report[0] = address & 0xFF
    report[1] = (address >> 8) & 0xFF
    report[2] = (address >> 16) & 0xFF
    report[header_size:header_size + len(payload)] = payload
    return bytes(report)


def build_sentinel_report(header_size: int = HEADER_SIZE, block_size: int = BLOCK_SIZE) -> bytes:
    """Final report that makes the bootloader commit and reboot."""
    return build_report(SENTINEL_ADDRESS, b"", header_size, block_size)


def eligible_blocks(blocks: Sequence[AddressedBlock]) -> List[AddressedBlock]:
    """Blocks to send: the first one always, the rest only when not blank."""
    return [b for i, b in enumerate(blocks) if i == 0 or not b.is_blank]


class BlockTransferEngine:
    """
    Drives the upload of a BlockSet over a HID transport.

    The transport needs ``open()``, ``close()`` and ``send_report(bytes)``.
    It is opened for the duration of one ``flash_firmware`` call and always
    closed afterwards; close failures are swallowed.
    """

    def __init__(self, config: Optional[TransferConfig] = None):
        self.config = config or TransferConfig()

    def _send_with_retry(self, transport, report: bytes, address: int) -> bool:
        cfg = self.config
        for attempt in range(1, cfg.max_attempts + 1):
            try:
                transport.send_report(report)
                return True
            except Exception as e:
                logger.warning(
                    f"send_report attempt {attempt}/{cfg.max_attempts} "
                    f"at 0x{address:08X} failed: {e}"
                )
                cfg.sleep(cfg.retry_delay)
        return False

    def flash_firmware(
        self,
        block_set: BlockSet,
        transport,
        progress_cb: Optional[Callable[[float], None]] = None,
    ) -> TransferSummary:
        """
        Upload main blocks, then loader blocks, then the sentinel.

        Args:
            block_set: Blocks produced by FirmwareImage.build_blocks()
            transport: Unopened HID transport
            progress_cb: Called once per block sent with a value in [0, 1]

        Returns:
            TransferSummary with sent/skipped counts

        Raises:
            TransferError: A block failed all attempts (transport still closed)
        """
        cfg = self.config
        main = eligible_blocks(block_set.main_blocks)
        loader = eligible_blocks(block_set.loader_blocks)
        queue = main + loader
        summary = TransferSummary(
            total=len(queue),
            skipped=block_set.total_blocks - len(queue),
        )

        transport.open()
        try:
            logger.info(
                f"Uploading {summary.total} blocks "
                f"({len(main)} main, {len(loader)} loader, {summary.skipped} blank skipped)"
            )
            for block in queue:
                report = build_report(
                    block.address, block.data, cfg.header_size, cfg.block_size
                )
                logger.debug(f"Block 0x{block.address:08X}")
                if not self._send_with_retry(transport, report, block.address):
                    raise TransferError(
                        f"Block upload failed at address 0x{block.address:08X} "
                        f"after {cfg.max_attempts} attempts",
                        address=block.address,
                    )

                summary.sent += 1
                if progress_cb:
                    progress_cb(summary.sent / summary.total)

                if summary.sent == 1:
                    logger.info("Waiting for flash erase")
                    cfg.sleep(cfg.first_block_delay)
                else:
                    cfg.sleep(cfg.block_delay)

            sentinel = build_sentinel_report(cfg.header_size, cfg.block_size)
            if not self._send_with_retry(transport, sentinel, SENTINEL_ADDRESS):
                # The board may already be rebooting and dropping off the bus.
                logger.warning("Reboot report was not acknowledged by the transport")
            else:
                logger.info("Reboot report sent")
            cfg.sleep(cfg.settle_delay)
        finally:
            try:
                transport.close()
            except Exception as e:
                logger.debug(f"Ignoring transport close error: {e}")

        return summary


def flash_firmware(
    block_set: BlockSet,
    transport,
    progress_cb: Optional[Callable[[float], None]] = None,
    config: Optional[TransferConfig] = None,
) -> TransferSummary:
    """Module-level shortcut for ``BlockTransferEngine(config).flash_firmware``."""
    return BlockTransferEngine(config).flash_firmware(block_set, transport, progress_cb)
