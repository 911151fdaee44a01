"""
Core module for Teensy Flasher.

This module provides the single source of truth for:
- Baud-rate and device-id parsing (parsing.py)
- Result objects (results.py)
- Load/flash workflows (actions.py)

The CLI should call into this module rather than implementing its own logic.
"""

from .parsing import parse_baudrate, parse_device_id, resolve_device
from .results import FlashReport
from .actions import load_firmware, flash_file

__all__ = [
    # Parsing
    "parse_baudrate",
    "parse_device_id",
    "resolve_device",
    # Results
    "FlashReport",
    # Actions
    "load_firmware",
    "flash_file",
]
