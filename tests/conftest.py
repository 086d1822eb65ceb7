from __future__ import annotations

import pytest

import x7_serial


class FakeTransport:
    """
    In-memory stand-in for SerialTransport.

    responses: lines handed out by readline(), b"" once exhausted (timeout).
    write_script: one entry per write() call; an int caps how many bytes
    are accepted, an exception is raised, None accepts everything. Calls
    past the end of the script accept everything.
    """

    def __init__(self, responses=(), write_script=()):
        self.responses = list(responses)
        self.write_script = list(write_script)
        self.writes: list[bytes] = []
        self.closed = False

    def write(self, data) -> int:
        data = bytes(data)
        if self.write_script:
            action = self.write_script.pop(0)
            if isinstance(action, Exception):
                raise action
            if action is not None:
                data = data[:action]
        self.writes.append(data)
        return len(data)

    def readline(self) -> bytes:
        if not self.responses:
            return b""
        line = self.responses.pop(0)
        if isinstance(line, Exception):
            raise line
        return line

    def close(self):
        self.closed = True

    @property
    def sent(self) -> bytes:
        return b"".join(self.writes)


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record write pauses instead of sleeping"""
    calls: list[float] = []
    monkeypatch.setattr(x7_serial.time, "sleep", calls.append)
    return calls
