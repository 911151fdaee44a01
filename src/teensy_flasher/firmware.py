"""
Firmware image loading and block building.

A firmware file is turned into one or two ordered block sets:
- ``.hex``  -> single Intel HEX session at the device flash offset
- ``.ehex`` -> primary session + loader-utility session (large-address boards)
- anything else -> raw binary split into 0xFF-padded pages

The format is chosen once by ``select_format`` and each format carries its own
decode function, so the rest of the pipeline never inspects file names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Union

from teensy_flasher.hexfile import (
    BLANK_BYTE,
    BLOCK_SIZE,
    AddressedBlock,
    FirmwareError,
    decode_dual_segment,
    decode_hex,
)
from teensy_flasher.models import DeviceConfig, DeviceFamily, family_for

logger = logging.getLogger(__name__)

HEX_EXTENSION = ".hex"
DUAL_SEGMENT_EXTENSION = ".ehex"

DeviceId = Union[DeviceConfig, DeviceFamily, Tuple[int, int]]


class UnsupportedFormatError(FirmwareError):
    """Valid input in a combination the target device cannot accept."""


@dataclass(frozen=True)
class BlockSet:
    """Main image blocks plus optional loader-utility blocks."""

    main_blocks: Tuple[AddressedBlock, ...] = ()
    loader_blocks: Tuple[AddressedBlock, ...] = ()

    @property
    def total_blocks(self) -> int:
        return len(self.main_blocks) + len(self.loader_blocks)

    def summary(self) -> Dict[str, int]:
        """Block counts for reporting."""
        return {
            "main_blocks": len(self.main_blocks),
            "main_blank": sum(1 for b in self.main_blocks if b.is_blank),
            "loader_blocks": len(self.loader_blocks),
            "loader_blank": sum(1 for b in self.loader_blocks if b.is_blank),
        }


def split_binary(
    data: bytes,
    base_address: int = 0,
    block_size: int = BLOCK_SIZE,
) -> List[AddressedBlock]:
    """
    Slice raw bytes into block_size pages, padding the last one with 0xFF.

    Page ``i`` is addressed at ``base_address + i * block_size``.
    """
    blocks: List[AddressedBlock] = []
    for offset in range(0, len(data), block_size):
        chunk = bytes(data[offset:offset + block_size])
        if len(chunk) < block_size:
            chunk = chunk + bytes([BLANK_BYTE]) * (block_size - len(chunk))
        blocks.append(AddressedBlock(address=base_address + offset, data=chunk))
    return blocks


def _decode_single_hex(data: bytes, family: DeviceFamily) -> BlockSet:
    text = data.decode("utf-8", errors="replace")
    return BlockSet(main_blocks=tuple(decode_hex(text, family.flash_base)))


def _decode_dual_segment_hex(data: bytes, family: DeviceFamily) -> BlockSet:
    if not family.supports_dual_segment:
        raise UnsupportedFormatError(
            f"{DUAL_SEGMENT_EXTENSION} images need a {DeviceFamily.LARGE_ADDRESS.value} "
            f"device (target is {family.value})"
        )
    text = data.decode("utf-8", errors="replace")
    main_blocks, loader_blocks = decode_dual_segment(text, family.flash_base)
    return BlockSet(main_blocks=tuple(main_blocks), loader_blocks=tuple(loader_blocks))


def _decode_raw_binary(data: bytes, family: DeviceFamily) -> BlockSet:
    return BlockSet(main_blocks=tuple(split_binary(data, family.flash_base)))


class FirmwareFormat(Enum):
    """Decoding strategy for a firmware file."""
    SINGLE_HEX = "hex"
    DUAL_SEGMENT_HEX = "ehex"
    RAW_BINARY = "bin"

    @property
    def decoder(self) -> Callable[[bytes, DeviceFamily], BlockSet]:
        return _DECODERS[self]


_DECODERS: Dict[FirmwareFormat, Callable[[bytes, DeviceFamily], BlockSet]] = {
    FirmwareFormat.SINGLE_HEX: _decode_single_hex,
    FirmwareFormat.DUAL_SEGMENT_HEX: _decode_dual_segment_hex,
    FirmwareFormat.RAW_BINARY: _decode_raw_binary,
}


def select_format(filename: str) -> FirmwareFormat:
    """
    Pick the decoding strategy from the file extension.

    Unknown extensions fall through to raw binary.
    """
    suffix = Path(filename).suffix.lower()
    if suffix == HEX_EXTENSION:
        return FirmwareFormat.SINGLE_HEX
    if suffix == DUAL_SEGMENT_EXTENSION:
        return FirmwareFormat.DUAL_SEGMENT_HEX
    return FirmwareFormat.RAW_BINARY


def resolve_family(device: DeviceId) -> DeviceFamily:
    """Accept a DeviceConfig, a DeviceFamily or a (vendor_id, product_id) pair."""
    if isinstance(device, DeviceFamily):
        return device
    if isinstance(device, DeviceConfig):
        return device.family
    vendor_id, product_id = device
    return family_for(vendor_id, product_id)


@dataclass
class FirmwareImage:
    """
    Firmware file contents bound to a target device.

    Example:
        image = FirmwareImage.from_path("blink.hex", (0x16C0, 0x0478))
        blocks = image.build_blocks()
    """

    raw_bytes: bytes
    filename: str
    device: DeviceId = field(default=DeviceFamily.LARGE_ADDRESS)

    @classmethod
    def from_path(cls, path: Union[str, Path], device: DeviceId) -> "FirmwareImage":
        path = Path(path)
        return cls(raw_bytes=path.read_bytes(), filename=path.name, device=device)

    @property
    def family(self) -> DeviceFamily:
        return resolve_family(self.device)

    @property
    def format(self) -> FirmwareFormat:
        return select_format(self.filename)

    def build_blocks(self) -> BlockSet:
        """
        Decode the image into block sets.

        Raises:
            FormatError: Malformed or checksum-failing HEX
            UnsupportedFormatError: .ehex on a small-address device
        """
        fmt = self.format
        family = self.family
        logger.info(
            f"Building blocks for {self.filename} "
            f"(format={fmt.name}, family={family.value}, {len(self.raw_bytes)} bytes)"
        )
        block_set = fmt.decoder(self.raw_bytes, family)
        logger.info(
            f"Built {len(block_set.main_blocks)} main + "
            f"{len(block_set.loader_blocks)} loader blocks"
        )
        return block_set


def build_blocks(file_bytes: bytes, filename: str, device: DeviceId) -> BlockSet:
    """Module-level shortcut for ``FirmwareImage(...).build_blocks()``."""
    return FirmwareImage(raw_bytes=file_bytes, filename=filename, device=device).build_blocks()
