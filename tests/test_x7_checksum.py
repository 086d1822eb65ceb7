from __future__ import annotations

import hashlib

from x7_checksum import ChecksumTracker


def test_digest_is_md5():
    data = b"SEGA MEGA DRIVE "
    assert ChecksumTracker.of(data).digest() == hashlib.md5(data).digest()
    assert ChecksumTracker.of(data).hexdigest() == hashlib.md5(data).hexdigest()


def test_chunked_updates_match_whole_buffer():
    data = bytes(range(256)) * 64
    t = ChecksumTracker()
    for i in range(0, len(data), 1000):
        t.update(data[i:i + 1000])
    assert t.matches(ChecksumTracker.of(data))
    assert len(t) == len(data)


def test_different_data_does_not_match():
    a = ChecksumTracker.of(b"\x00" * 16)
    b = ChecksumTracker.of(b"\x00" * 15 + b"\x01")
    assert not a.matches(b)


def test_empty_tracker():
    t = ChecksumTracker()
    assert len(t) == 0
    assert t.matches(ChecksumTracker.of(b""))
