"""
Serial line monitor for Teensy debug output.

Reads text from a USB serial port in a background thread and hands each
newline-terminated line to a consumer callback.
"""

import codecs
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]


class SerialMonitorError(Exception):
    """Serial monitor open/close errors."""


class LineFramer:
    """
    Reassemble a text stream into newline-delimited lines.

    Complete lines are emitted trimmed; the trailing partial segment is kept
    for the next ``feed``. A partial line is never flushed, ``reset`` discards it.
    """

    def __init__(self, on_line: Optional[LineCallback] = None):
        self.on_line = on_line
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> List[str]:
        """Append a chunk and emit every completed line. Returns the lines."""
        parts = (self._pending + chunk).split("\n")
        self._pending = parts.pop()
        lines = [part.strip() for part in parts]
        if self.on_line:
            for line in lines:
                self.on_line(line)
        return lines

    def reset(self) -> None:
        self._pending = ""


@dataclass
class SerialConfig:
    """Serial link parameters."""
    port: str
    baudrate: int = 115200
    bytesize: int = 8
    parity: str = "N"
    stopbits: int = 1
    timeout: float = 0.1
    encoding: str = "utf-8"


class SerialPortManager:
    """
    Owns one serial connection and its reader thread.

    Example:
        manager = SerialPortManager()
        manager.on_line(print)
        manager.open_serial(SerialConfig(port="/dev/ttyACM0"))
        ...
        manager.close_serial()
    """

    def __init__(self, serial_factory: Callable = None):
        self._serial_factory = serial_factory or serial.Serial
        self._ser = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._callback: Optional[LineCallback] = None
        self._framer: Optional[LineFramer] = None

    @property
    def is_open(self) -> bool:
        return self._ser is not None

    def on_line(self, callback: Optional[LineCallback]) -> None:
        """Register the consumer for received lines."""
        self._callback = callback

    def _dispatch(self, line: str, stop: threading.Event) -> None:
        if stop.is_set() or self._callback is None:
            return
        try:
            self._callback(line)
        except Exception:
            logger.exception("Serial line callback failed")

    def open_serial(self, config: SerialConfig) -> None:
        """
        Open the port and start reading.

        Raises:
            SerialMonitorError: If a port is already open or cannot be opened
        """
        if self._ser is not None:
            raise SerialMonitorError("Serial port is already open.")

        try:
            ser = self._serial_factory(
                port=config.port,
                baudrate=config.baudrate,
                bytesize=config.bytesize,
                parity=config.parity,
                stopbits=config.stopbits,
                timeout=config.timeout,
            )
        except serial.SerialException as e:
            raise SerialMonitorError(f"Cannot open port {config.port}: {e}")

        # A reader that outlives close_serial only sees its own session state.
        stop = threading.Event()
        framer = LineFramer(on_line=lambda line: self._dispatch(line, stop))
        decoder = codecs.getincrementaldecoder(config.encoding)(errors="replace")

        self._ser = ser
        self._stop = stop
        self._framer = framer
        self._thread = threading.Thread(
            target=self._read_loop,
            args=(ser, decoder, framer, stop),
            name=f"serial-reader-{config.port}",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Opened {config.port} at {config.baudrate} bps")

    def _read_loop(self, ser, decoder, framer: LineFramer, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                chunk = ser.read(max(1, getattr(ser, "in_waiting", 0) or 0))
            except (serial.SerialException, OSError, TypeError, AttributeError) as e:
                # Closing the port from another thread surfaces here.
                if not stop.is_set():
                    logger.error(f"Serial reading error: {e}")
                break
            if stop.is_set():
                break
            if not chunk:
                continue
            framer.feed(decoder.decode(chunk))
        logger.debug("Serial reader stopped")

    def close_serial(self) -> None:
        """
        Stop the reader and close the port. Buffered partial text is discarded.

        Raises:
            SerialMonitorError: If no port is open
        """
        if self._ser is None:
            raise SerialMonitorError("No serial port is open.")

        ser, self._ser = self._ser, None
        self._stop.set()
        try:
            if hasattr(ser, "cancel_read"):
                ser.cancel_read()
        finally:
            ser.close()
            thread, self._thread = self._thread, None
            framer, self._framer = self._framer, None
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=1.0)
                if thread.is_alive():
                    logger.warning("Serial reader did not stop within 1 s; abandoning it")
                    framer = None
            if framer is not None:
                framer.reset()
            logger.info("Closed serial port")
