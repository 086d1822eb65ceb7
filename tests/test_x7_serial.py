from __future__ import annotations

import errno
import os

import pytest
import serial

import x7_serial
from x7_errors import ReadTimeoutError, TransientWriteError, TransportError
from x7_serial import PACING_DELAY, RETRY_DELAY, SerialTransport, read_response, write_all


def test_write_all_single_write(make_transport, sleeps):
    t = make_transport()
    assert write_all(t, b"*rm") == 3
    assert t.writes == [b"*rm"]
    assert sleeps == [PACING_DELAY]


def test_write_all_retries_transient_without_duplicates(make_transport, sleeps):
    busy = TransientWriteError("resource temporarily unavailable")
    t = make_transport(write_script=[busy, busy, 3, busy, None])

    write_all(t, b"abcdefgh")

    assert t.sent == b"abcdefgh"
    assert t.writes == [b"abc", b"defgh"]
    assert sleeps == [RETRY_DELAY, RETRY_DELAY, PACING_DELAY, RETRY_DELAY, PACING_DELAY]


def test_write_all_keeps_retrying_transient(make_transport):
    data = bytes(range(256))
    script = []
    for _ in range(64):
        script += [TransientWriteError("busy"), 4]
    t = make_transport(write_script=script)

    write_all(t, data)

    assert t.sent == data


def test_write_all_zero_byte_write_is_retried(make_transport, sleeps):
    t = make_transport(write_script=[0, None])
    write_all(t, b"xy")
    assert t.sent == b"xy"
    assert sleeps[0] == RETRY_DELAY


def test_write_all_fatal_error_propagates(make_transport):
    t = make_transport(write_script=[2, TransportError("cable unplugged")])
    with pytest.raises(TransportError, match="cable unplugged"):
        write_all(t, b"abcdef")
    assert t.sent == b"ab"


@pytest.mark.parametrize(
    "line, token",
    [(b"k\n", "k"), (b"d\r\n", "d"), (b"\n", "")],
)
def test_read_response_strips_terminator(make_transport, line, token):
    assert read_response(make_transport(responses=[line])) == token


@pytest.mark.parametrize("line, token", [(b"k", "k"), (b"d", "d"), (b"k\r", "k")])
def test_read_response_unterminated_token(make_transport, line, token):
    assert read_response(make_transport(responses=[line])) == token


def test_read_response_timeout(make_transport):
    with pytest.raises(ReadTimeoutError):
        read_response(make_transport(responses=[b""]))


class FakeSerial:
    def __init__(self, fd=None):
        self.fd = fd
        self.is_open = True
        self.lines = []

    def fileno(self):
        return self.fd

    def readline(self):
        if isinstance(self.lines, Exception):
            raise self.lines
        return self.lines.pop(0)

    def close(self):
        self.is_open = False


@pytest.mark.skipif(os.name != "posix", reason="posix write path")
def test_serial_transport_partial_write_goes_to_descriptor():
    r, w = os.pipe()
    try:
        t = SerialTransport(FakeSerial(w))
        assert t.write(b"*g\x02") == 3
        assert os.read(r, 16) == b"*g\x02"
    finally:
        os.close(r)
        os.close(w)


@pytest.mark.skipif(os.name != "posix", reason="posix write path")
def test_serial_transport_classifies_eagain_as_transient(monkeypatch):
    def busy(fd, data):
        raise BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable")

    monkeypatch.setattr(x7_serial.os, "write", busy)
    with pytest.raises(TransientWriteError):
        SerialTransport(FakeSerial(3)).write(b"x")


@pytest.mark.skipif(os.name != "posix", reason="posix write path")
def test_serial_transport_other_os_errors_are_fatal(monkeypatch):
    def gone(fd, data):
        raise OSError(errno.EIO, "Input/output error")

    monkeypatch.setattr(x7_serial.os, "write", gone)
    with pytest.raises(TransportError) as excinfo:
        SerialTransport(FakeSerial(3)).write(b"x")
    assert not isinstance(excinfo.value, TransientWriteError)


def test_serial_transport_closed_port():
    ser = FakeSerial(3)
    t = SerialTransport(ser)
    t.close()
    assert not ser.is_open
    with pytest.raises(TransportError):
        t.write(b"x")


def test_serial_transport_readline_errors():
    ser = FakeSerial()
    ser.lines = serial.SerialException("device reports readiness to read but returned no data")
    with pytest.raises(TransportError):
        SerialTransport(ser).readline()


def test_serial_transport_open_uses_config(monkeypatch):
    from x7_protocol import SessionConfig

    opened = {}

    def fake_serial(**kwargs):
        opened.update(kwargs)
        return FakeSerial()

    monkeypatch.setattr(x7_serial.serial, "Serial", fake_serial)
    config = SessionConfig(port="/dev/ttyUSB3", baud_rate=115200, read_timeout_ms=250)

    with SerialTransport.open(config) as t:
        assert isinstance(t.ser, FakeSerial)

    assert opened["port"] == "/dev/ttyUSB3"
    assert opened["baudrate"] == 115200
    assert opened["timeout"] == 0.25
    assert opened["parity"] == serial.PARITY_NONE
    assert opened["stopbits"] == serial.STOPBITS_ONE
    assert not t.ser.is_open


def test_serial_transport_open_failure(monkeypatch):
    from x7_protocol import SessionConfig

    def no_port(**kwargs):
        raise serial.SerialException("could not open port")

    monkeypatch.setattr(x7_serial.serial, "Serial", no_port)
    with pytest.raises(TransportError, match="Cannot open port"):
        SerialTransport.open(SessionConfig(port="/dev/nothing"))
