"""Tests for the line framer and serial port manager."""

import logging
import queue
import threading
import time

import pytest
import serial

from teensy_flasher.protocol.serial_monitor import (
    LineFramer,
    SerialConfig,
    SerialMonitorError,
    SerialPortManager,
)


class TestLineFramer:
    """Newline framing of a chunked text stream."""

    def test_partial_then_complete(self):
        lines = []
        framer = LineFramer(on_line=lines.append)
        framer.feed("AB")
        assert lines == []
        framer.feed("C\nDEF\n")
        assert lines == ["ABC", "DEF"]
        assert framer.pending == ""

    def test_lines_are_trimmed(self):
        framer = LineFramer()
        assert framer.feed("  hello \r\n\tworld\n") == ["hello", "world"]

    def test_empty_lines_are_emitted(self):
        assert LineFramer().feed("\n\n") == ["", ""]

    def test_trailing_partial_is_kept(self):
        framer = LineFramer()
        assert framer.feed("one\ntw") == ["one"]
        assert framer.pending == "tw"
        assert framer.feed("o\n") == ["two"]

    def test_reset_discards_partial(self):
        lines = []
        framer = LineFramer(on_line=lines.append)
        framer.feed("never finished")
        framer.reset()
        framer.feed("\n")
        assert lines == [""]

    def test_no_line_emitted_twice(self):
        lines = []
        framer = LineFramer(on_line=lines.append)
        framer.feed("a\n")
        framer.feed("")
        framer.feed("b\n")
        assert lines == ["a", "b"]


class FakeSerial:
    """Minimal pyserial stand-in fed from a queue."""

    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.chunks = queue.Queue()
        self.is_open = True
        self.in_waiting = 0
        FakeSerial.instances.append(self)

    def read(self, size=1):
        if not self.is_open:
            raise serial.SerialException("port closed")
        try:
            return self.chunks.get(timeout=0.01)
        except queue.Empty:
            return b""

    def cancel_read(self):
        pass

    def close(self):
        self.is_open = False


@pytest.fixture
def fake_serial():
    FakeSerial.instances = []
    return FakeSerial


def _wait_for(lines, count, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if len(lines) >= count:
            return True
        time.sleep(0.01)
    return len(lines) >= count


class TestSerialPortManager:
    """Open/close lifecycle and line delivery."""

    def test_lines_delivered_in_order(self, fake_serial):
        lines = []
        manager = SerialPortManager(serial_factory=fake_serial)
        manager.on_line(lines.append)
        manager.open_serial(SerialConfig(port="/dev/ttyACM0", baudrate=9600))

        ser = fake_serial.instances[0]
        assert ser.kwargs["baudrate"] == 9600
        assert ser.kwargs["port"] == "/dev/ttyACM0"

        ser.chunks.put(b"boot")
        ser.chunks.put(b" ok\r\nready\n")
        assert _wait_for(lines, 2)
        manager.close_serial()

        assert lines == ["boot ok", "ready"]
        assert not manager.is_open

    def test_multibyte_character_split_across_reads(self, fake_serial):
        lines = []
        manager = SerialPortManager(serial_factory=fake_serial)
        manager.on_line(lines.append)
        manager.open_serial(SerialConfig(port="COM3"))
        ser = fake_serial.instances[0]

        encoded = "temp 25°C\n".encode("utf-8")
        split = encoded.index(b"\xb0")
        ser.chunks.put(encoded[:split])
        ser.chunks.put(encoded[split:])
        assert _wait_for(lines, 1)
        manager.close_serial()

        assert lines == ["temp 25°C"]

    def test_open_twice_fails(self, fake_serial):
        manager = SerialPortManager(serial_factory=fake_serial)
        manager.open_serial(SerialConfig(port="COM3"))
        try:
            with pytest.raises(SerialMonitorError):
                manager.open_serial(SerialConfig(port="COM4"))
        finally:
            manager.close_serial()

    def test_close_when_not_open_fails(self, fake_serial):
        manager = SerialPortManager(serial_factory=fake_serial)
        with pytest.raises(SerialMonitorError):
            manager.close_serial()

    def test_open_error_is_wrapped(self):
        def factory(**kwargs):
            raise serial.SerialException("no such port")

        manager = SerialPortManager(serial_factory=factory)
        with pytest.raises(SerialMonitorError) as ei:
            manager.open_serial(SerialConfig(port="/dev/missing"))
        assert "/dev/missing" in str(ei.value)
        assert not manager.is_open

    def test_partial_line_discarded_on_close(self, fake_serial):
        lines = []
        manager = SerialPortManager(serial_factory=fake_serial)
        manager.on_line(lines.append)
        manager.open_serial(SerialConfig(port="COM3"))
        ser = fake_serial.instances[0]
        ser.chunks.put(b"done\npartial")
        assert _wait_for(lines, 1)
        manager.close_serial()

        manager.open_serial(SerialConfig(port="COM3"))
        ser = fake_serial.instances[1]
        ser.chunks.put(b"\n")
        assert _wait_for(lines, 2)
        manager.close_serial()

        assert lines == ["done", ""]

    def test_callback_errors_do_not_stop_reader(self, fake_serial):
        lines = []

        def callback(line):
            if line == "bad":
                raise ValueError("consumer failure")
            lines.append(line)

        manager = SerialPortManager(serial_factory=fake_serial)
        manager.on_line(callback)
        manager.open_serial(SerialConfig(port="COM3"))
        ser = fake_serial.instances[0]
        ser.chunks.put(b"bad\ngood\n")
        assert _wait_for(lines, 1)
        manager.close_serial()

        assert lines == ["good"]

    def test_no_callbacks_after_close(self, fake_serial):
        lines = []
        manager = SerialPortManager(serial_factory=fake_serial)
        manager.on_line(lines.append)
        manager.open_serial(SerialConfig(port="COM3"))
        ser = fake_serial.instances[0]
        manager.close_serial()

        ser.is_open = True
        ser.chunks.put(b"late\n")
        assert not _wait_for(lines, 1, timeout=0.1)

    def test_stuck_reader_cannot_reach_next_session(self, fake_serial, caplog):
        entered = threading.Event()
        release = threading.Event()

        class StuckSerial(FakeSerial):
            def read(self, size=1):
                entered.set()
                release.wait(timeout=5)
                return b"stale\n"

        lines = []
        factories = iter([StuckSerial, fake_serial])
        manager = SerialPortManager(serial_factory=lambda **kw: next(factories)(**kw))
        manager.on_line(lines.append)
        manager.open_serial(SerialConfig(port="COM3"))
        assert entered.wait(timeout=2)

        with caplog.at_level(logging.WARNING, logger="teensy_flasher"):
            manager.close_serial()
        assert "did not stop" in caplog.text

        manager.open_serial(SerialConfig(port="COM3"))
        release.set()
        ser = fake_serial.instances[-1]
        ser.chunks.put(b"fresh\n")
        assert _wait_for(lines, 1)
        time.sleep(0.05)
        manager.close_serial()

        assert lines == ["fresh"]
