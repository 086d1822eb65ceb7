"""
Serial transport for the Mega Everdrive X7.

SerialTransport wraps a pyserial port and classifies write failures as
transient (the port buffer is full, try again) or fatal. write_all() and
read_response() build the cartridge's write and response handling on top
of it.
"""

import os
import time

import serial

from x7_errors import ReadTimeoutError, TransientWriteError, TransportError

# Pause before retrying a write the port could not take
RETRY_DELAY = 0.1
# Pause after every successful write so the cartridge can keep up
PACING_DELAY = 0.001


class SerialTransport:
    """Byte channel to the cartridge with partial writes and line reads"""

    def __init__(self, ser):
        self.ser = ser

    @classmethod
    def open(cls, config) -> "SerialTransport":
        """
        Open the serial port described by a session config

        Args:
            config: SessionConfig with port, baud_rate and read_timeout_ms

        Returns:
            Connected SerialTransport
        """
        try:
            ser = serial.Serial(
                port=config.port,
                baudrate=config.baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=config.read_timeout_ms / 1000.0,
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port '{config.port}': {e}") from e
        return cls(ser)

    def write(self, data: bytes) -> int:
        """Issue one write and return how many bytes the port accepted"""
        if not self.ser.is_open:
            raise TransportError("write failed: port is closed")

        if os.name == "posix":
            # pyserial keeps the descriptor non-blocking; a full buffer shows up as EAGAIN
            try:
                return os.write(self.ser.fileno(), data)
            except BlockingIOError as e:
                raise TransientWriteError(f"write failed: {e}") from e
            except OSError as e:
                raise TransportError(f"write failed: {e}") from e

        try:
            return self.ser.write(data) or 0
        except serial.SerialTimeoutException as e:
            raise TransientWriteError(f"write failed: {e}") from e
        except serial.SerialException as e:
            raise TransportError(f"write failed: {e}") from e

    def readline(self) -> bytes:
        try:
            return self.ser.readline()
        except serial.SerialException as e:
            raise TransportError(f"read failed: {e}") from e

    def close(self):
        if self.ser.is_open:
            self.ser.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def write_all(transport, data, verbose=False):
    """
    Write the whole buffer, retrying while the port is temporarily full

    Transient failures are retried forever after RETRY_DELAY. Any other
    TransportError is raised to the caller untouched.

    Args:
        transport: object with a write(data) -> int method
        data: bytes to send
        verbose: print every retry

    Returns:
        Number of bytes written (always len(data))
    """
    view = memoryview(data)
    wrote = 0

    while wrote < len(view):
        try:
            n = transport.write(view[wrote:])
        except TransientWriteError as e:
            if verbose:
                print(f"  trying again: {e}")
            time.sleep(RETRY_DELAY)
            continue

        if not n:
            time.sleep(RETRY_DELAY)
            continue

        wrote += n
        time.sleep(PACING_DELAY)

    return wrote


def read_response(transport) -> str:
    """
    Read one newline terminated response token

    A cart may send a bare "k" without a newline. Whatever arrived before
    the read timeout is returned as the token.

    Returns:
        The token without its line terminator

    Raises:
        ReadTimeoutError: nothing arrived before the port's read timeout
    """
    line = transport.readline()
    if not line:
        raise ReadTimeoutError("No response before timeout")

    return line.rstrip(b"\r\n").decode("ascii", errors="replace")
