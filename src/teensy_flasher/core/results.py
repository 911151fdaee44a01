"""
Result objects for load and flash operations.

A FlashReport records what happened to one firmware file: how it decoded,
how many blocks went over the wire, and where an upload stopped if it failed.
The CLI renders it as text or JSON.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from teensy_flasher.firmware import BlockSet
from teensy_flasher.protocol.block_transfer import TransferSummary


@dataclass
class FlashReport:
    """
    Outcome of ``load_firmware`` or ``flash_file``.

    Attributes:
        ok: False as soon as any error is recorded
        operation: "load_firmware" or "flash_file"
        device: Board name or VID:PID label
        firmware: Firmware file name
        firmware_format: "hex", "ehex" or "bin"
        family: Device family value the image was decoded for
        size: Size of the firmware file in bytes
        sha256: Hex digest of the firmware file
        main_blocks / loader_blocks: Decoded block counts per set
        blank_blocks: Decoded blocks that are entirely 0xFF
        blocks_sent / blocks_skipped: Upload counts (None until a transfer ran)
        failed_address: Address of the block that exhausted its retries
    """
    ok: bool
    operation: str
    device: str = ""
    firmware: str = ""
    firmware_format: str = ""
    family: str = ""
    size: int = 0
    sha256: str = ""
    main_blocks: int = 0
    loader_blocks: int = 0
    blank_blocks: int = 0
    blocks_sent: Optional[int] = None
    blocks_skipped: Optional[int] = None
    failed_address: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Record a blocking error; the report becomes a failure."""
        self.errors.append(message)
        self.ok = False

    def record_blocks(self, block_set: BlockSet) -> None:
        counts = block_set.summary()
        self.main_blocks = counts["main_blocks"]
        self.loader_blocks = counts["loader_blocks"]
        self.blank_blocks = counts["main_blank"] + counts["loader_blank"]

    def record_transfer(self, summary: TransferSummary) -> None:
        self.blocks_sent = summary.sent
        self.blocks_skipped = summary.skipped

    def to_summary(self) -> str:
        """Human-readable multi-line summary for the CLI."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.device:
            lines.append(f"  Device: {self.device} ({self.family or 'unknown family'})")
        if self.firmware:
            lines.append(f"  Firmware: {self.firmware} [{self.firmware_format}] {self.size:,} bytes")
        if self.sha256:
            lines.append(f"  sha256: {self.sha256[:16]}...")
        if self.main_blocks or self.loader_blocks:
            text = f"  Blocks: {self.main_blocks} main"
            if self.loader_blocks:
                text += f" + {self.loader_blocks} loader"
            lines.append(f"{text} ({self.blank_blocks} blank)")
        if self.blocks_sent is not None:
            lines.append(
                f"  Uploaded: {self.blocks_sent} sent, {self.blocks_skipped} blank skipped"
            )
        if self.failed_address is not None:
            lines.append(f"  Stopped at: 0x{self.failed_address:08X}")

        for title, messages in (("Warnings", self.warnings), ("Errors", self.errors)):
            if messages:
                lines.append(f"  {title}:")
                lines.extend(f"    - {msg}" for msg in messages)

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view; addresses are rendered as 0x-prefixed hex."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "device": self.device,
            "firmware": self.firmware,
            "format": self.firmware_format,
            "family": self.family,
            "size": self.size,
            "sha256": self.sha256,
            "main_blocks": self.main_blocks,
            "loader_blocks": self.loader_blocks,
            "blank_blocks": self.blank_blocks,
            "blocks_sent": self.blocks_sent,
            "blocks_skipped": self.blocks_skipped,
            "failed_address": (
                None if self.failed_address is None else f"0x{self.failed_address:08X}"
            ),
            "warnings": self.warnings,
            "errors": self.errors,
            "logs": self.logs,
        }
