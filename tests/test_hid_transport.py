import pytest

pytest.importorskip("hid")

from teensy_flasher.protocol import hid_transport
from teensy_flasher.protocol.hid_transport import HalfKayTransport, HidTransportError


class FakeDevice:
    def __init__(self, fail_open=False, shortfall=0):
        self.fail_open = fail_open
        self.shortfall = shortfall
        self.opened_with = None
        self.writes = []
        self.closed = False

    def open(self, vendor_id, product_id):
        if self.fail_open:
            raise OSError("open failed")
        self.opened_with = (vendor_id, product_id)

    def open_path(self, path):
        self.opened_with = path

    def set_nonblocking(self, flag):
        pass

    def write(self, data):
        self.writes.append(bytes(data))
        return len(data) - self.shortfall

    def error(self):
        return "io error"

    def close(self):
        self.closed = True


class FakeHid:
    def __init__(self, device, listing=None):
        self._device = device
        self.listing = listing or {}

    def device(self):
        return self._device

    def enumerate(self, vendor_id, product_id):
        return list(self.listing.get((vendor_id, product_id), []))


@pytest.fixture
def fake_device(monkeypatch):
    dev = FakeDevice()
    monkeypatch.setattr(hid_transport, "hid", FakeHid(dev))
    return dev


def test_send_report_prefixes_report_id(fake_device):
    with HalfKayTransport(0x16C0, 0x0478) as transport:
        transport.send_report(b"\x01\x02\x03")
    assert fake_device.opened_with == (0x16C0, 0x0478)
    assert fake_device.writes == [b"\x00\x01\x02\x03"]
    assert fake_device.closed


def test_open_by_path(fake_device):
    transport = HalfKayTransport(0x16C0, 0x0478, path=b"/dev/hidraw3")
    transport.open()
    assert fake_device.opened_with == b"/dev/hidraw3"
    transport.close()


def test_second_open_fails(fake_device):
    transport = HalfKayTransport(0x16C0, 0x0479)
    transport.open()
    with pytest.raises(HidTransportError):
        transport.open()
    transport.close()


def test_close_is_idempotent(fake_device):
    transport = HalfKayTransport(0x16C0, 0x0479)
    transport.open()
    transport.close()
    transport.close()
    assert not transport.is_open


def test_send_without_open_fails(fake_device):
    with pytest.raises(HidTransportError):
        HalfKayTransport(0x16C0, 0x0479).send_report(b"\x00" * 1088)


def test_open_error_is_wrapped(monkeypatch):
    monkeypatch.setattr(hid_transport, "hid", FakeHid(FakeDevice(fail_open=True)))
    transport = HalfKayTransport(0x16C0, 0x0479)
    with pytest.raises(HidTransportError) as ei:
        transport.open()
    assert "16C0:0479" in str(ei.value)
    assert not transport.is_open


@pytest.mark.parametrize("shortfall", [1, 1000])
def test_short_write_raises(monkeypatch, shortfall):
    monkeypatch.setattr(hid_transport, "hid", FakeHid(FakeDevice(shortfall=shortfall)))
    with HalfKayTransport(0x16C0, 0x0479) as transport:
        with pytest.raises(HidTransportError):
            transport.send_report(b"\x00" * 1088)


def test_enumerate_devices_filters_known_boards(monkeypatch):
    info = {"vendor_id": 0x16C0, "product_id": 0x0478, "path": b"/dev/hidraw0"}
    monkeypatch.setattr(
        hid_transport, "hid", FakeHid(FakeDevice(), listing={(0x16C0, 0x0478): [info]})
    )
    assert hid_transport.enumerate_devices() == [info]
