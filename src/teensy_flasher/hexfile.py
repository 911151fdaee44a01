"""
Intel HEX decoding for Teensy firmware images.

This module turns Intel HEX text into fixed-size, address-tagged blocks:
- Single record parsing with length and checksum validation
- Session decoding with a rolling base address (segment/linear records)
- Dual-segment ".ehex" splitting (primary image + loader utility)

Record layout (after the leading ':'):
    [ len (1) | addr_hi | addr_lo | type (1) | data (len) | checksum (1) ]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

BLOCK_SIZE = 1024
BLANK_BYTE = 0xFF

RECORD_MARK = ":"
EOF_RECORD = ":00000001FF"

_EOF_LINE_RE = re.compile(r"^:00000001FF\s*$")
_HEX_DIGITS_RE = re.compile(r"[0-9A-Fa-f]+")


class FirmwareError(Exception):
    """Base exception for firmware image handling."""


class FormatError(FirmwareError):
    """Malformed or checksum-failing HEX input."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"Line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class RecordType(IntEnum):
    """Intel HEX record types."""
    DATA = 0x00
    END_OF_FILE = 0x01
    EXTENDED_SEGMENT_ADDRESS = 0x02
    START_SEGMENT_ADDRESS = 0x03
    EXTENDED_LINEAR_ADDRESS = 0x04
    START_LINEAR_ADDRESS = 0x05


@dataclass(frozen=True)
class HexRecord:
    """One decoded HEX line."""

    length: int
    address: int
    record_type: int
    data: bytes
    checksum_valid: bool = True

    @property
    def kind(self) -> Optional[RecordType]:
        """Known record type, or None for types we do not recognize."""
        try:
            return RecordType(self.record_type)
        except ValueError:
            return None

    @property
    def upper_address(self) -> int:
        """Big-endian 16-bit value carried by an address record."""
        return int.from_bytes(self.data[:2], "big")


@dataclass(frozen=True)
class AddressedBlock:
    """A BLOCK_SIZE chunk of firmware tagged with its destination address."""

    address: int
    data: bytes

    @property
    def is_blank(self) -> bool:
        return all(b == BLANK_BYTE for b in self.data)


def record_checksum(length: int, address: int, record_type: int, data: bytes) -> int:
    """Twos-complement checksum byte for the given record fields."""
    total = length + ((address >> 8) & 0xFF) + (address & 0xFF) + record_type + sum(data)
    return (-total) & 0xFF


def encode_record(address: int, record_type: int, data: bytes = b"") -> str:
    """Encode a single record as an Intel HEX line (without newline)."""
    if len(data) > 0xFF:
        raise ValueError(f"Record payload too large: {len(data)} bytes (max 255)")
    address &= 0xFFFF
    checksum = record_checksum(len(data), address, record_type, data)
    return (
        f"{RECORD_MARK}{len(data):02X}{address:04X}{record_type:02X}"
        f"{data.hex().upper()}{checksum:02X}"
    )


def parse_record(line: str, line_number: Optional[int] = None) -> HexRecord:
    """
    Parse one trimmed Intel HEX line.

    Blank lines are not records; callers must skip them.

    Args:
        line: ASCII record text starting with ':'
        line_number: 1-based line number used in error messages

    Returns:
        Parsed HexRecord (checksum_valid is always True on return)

    Raises:
        FormatError: Missing ':', length mismatch, bad hex digits or checksum
    """
    if not line.startswith(RECORD_MARK):
        raise FormatError("Invalid HEX: missing ':'", line_number)

    body = line[1:]
    if len(body) < 10:
        raise FormatError(f"Record too short ({len(body)} hex characters)", line_number)

    if not _HEX_DIGITS_RE.fullmatch(body):
        raise FormatError("Record contains non-hex characters", line_number)

    length = int(body[0:2], 16)
    if len(body) != 10 + length * 2:
        raise FormatError(
            f"Line length mismatch: declared {length} data bytes, "
            f"got {len(body)} hex characters",
            line_number,
        )
    raw = bytes.fromhex(body)

    if sum(raw) & 0xFF:
        raise FormatError(
            f"Checksum error (record sum 0x{sum(raw) & 0xFF:02X})", line_number
        )

    return HexRecord(
        length=length,
        address=(raw[1] << 8) | raw[2],
        record_type=raw[3],
        data=bytes(raw[4:4 + length]),
    )


class HexSessionDecoder:
    """
    Fold HEX records into 1 KiB blocks.

    Addresses are mapped as ``base + record_address - offset``; bytes that land
    below zero are outside the region of interest and are dropped. Blocks are
    allocated lazily and pre-filled with 0xFF.

    Example:
        decoder = HexSessionDecoder(offset=0x60000000)
        decoder.feed_lines(text.splitlines())
        blocks = decoder.finalize()
    """

    def __init__(self, offset: int = 0, block_size: int = BLOCK_SIZE):
        self.offset = offset
        self.block_size = block_size
        self.base_address = 0
        self.finished = False
        self.dropped_bytes = 0
        self._blocks: Dict[int, bytearray] = {}

    def _block(self, index: int) -> bytearray:
        block = self._blocks.get(index)
        if block is None:
            block = bytearray([BLANK_BYTE]) * self.block_size
            self._blocks[index] = block
        return block

    def _store(self, address: int, data: bytes) -> None:
        if address < 0:
            self.dropped_bytes += len(data)
            logger.debug(
                f"Dropping {len(data)} bytes below offset 0x{self.offset:08X}"
            )
            return

        pos = 0
        while pos < len(data):
            index, within = divmod(address, self.block_size)
            count = min(self.block_size - within, len(data) - pos)
            self._block(index)[within:within + count] = data[pos:pos + count]
            pos += count
            address += count

    def feed(self, record: HexRecord) -> bool:
        """
        Apply one record to the session.

        Returns:
            False once an end-of-file record has been seen, True otherwise.
        """
        if self.finished:
            return False

        kind = record.kind
        if kind is RecordType.DATA:
            self._store(self.base_address + record.address - self.offset, record.data)
        elif kind is RecordType.END_OF_FILE:
            self.finished = True
            return False
        elif kind is RecordType.EXTENDED_SEGMENT_ADDRESS:
            self.base_address = record.upper_address << 4
        elif kind is RecordType.EXTENDED_LINEAR_ADDRESS:
            self.base_address = record.upper_address << 16
        return True

    def feed_lines(self, lines: Iterable[str], first_line_number: int = 1) -> None:
        """Parse and apply lines until an end-of-file record or end of input."""
        for line_number, raw_line in enumerate(lines, start=first_line_number):
            line = raw_line.strip()
            if not line:
                continue
            if not self.feed(parse_record(line, line_number)):
                logger.debug(f"End-of-file record at line {line_number}")
                break

    def finalize(self) -> List[AddressedBlock]:
        """Return blocks sorted by address."""
        return [
            AddressedBlock(
                address=self.offset + index * self.block_size,
                data=bytes(self._blocks[index]),
            )
            for index in sorted(self._blocks)
        ]


def decode_hex(
    text: str,
    offset: int = 0,
    *,
    block_size: int = BLOCK_SIZE,
    first_line_number: int = 1,
) -> List[AddressedBlock]:
    """Decode one HEX session into address-ascending blocks."""
    decoder = HexSessionDecoder(offset=offset, block_size=block_size)
    decoder.feed_lines(text.splitlines(), first_line_number=first_line_number)
    blocks = decoder.finalize()
    if decoder.dropped_bytes:
        logger.info(
            f"Ignored {decoder.dropped_bytes} bytes below offset 0x{offset:08X}"
        )
    logger.debug(f"Decoded {len(blocks)} blocks at offset 0x{offset:08X}")
    return blocks


def split_dual_segment(text: str) -> Tuple[str, str, int]:
    """
    Split dual-segment HEX text at the first canonical end-of-file line.

    Returns:
        (primary_text, loader_text, loader_first_line_number). If no marker
        exists the whole text is primary and loader_text is empty.
    """
    lines = text.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if _EOF_LINE_RE.match(line.rstrip("\r\n")):
            return "".join(lines[:i + 1]), "".join(lines[i + 1:]), i + 2
    logger.warning("No end-of-file record found; treating input as a single session")
    return text, "", len(lines) + 1


def decode_dual_segment(
    text: str,
    primary_offset: int,
    *,
    block_size: int = BLOCK_SIZE,
) -> Tuple[List[AddressedBlock], List[AddressedBlock]]:
    """
    Decode a dual-segment image.

    The primary session uses the device flash offset; the loader session uses
    offset 0 since its addresses are absolute RAM addresses.
    """
    primary_text, loader_text, loader_line = split_dual_segment(text)
    main_blocks = decode_hex(primary_text, primary_offset, block_size=block_size)
    loader_blocks: List[AddressedBlock] = []
    if loader_text.strip():
        loader_blocks = decode_hex(
            loader_text, 0, block_size=block_size, first_line_number=loader_line
        )
    return main_blocks, loader_blocks
