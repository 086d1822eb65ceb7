"""
Running MD5 digest over the bytes sent to the cartridge.

The cartridge has no resend command, so the digest is only used to
compare what was sent against the image after the fact.
"""

import hashlib


class ChecksumTracker:
    """Append-only MD5 over a byte stream"""

    def __init__(self, data: bytes = b""):
        self._md5 = hashlib.md5()
        self._count = 0
        if data:
            self.update(data)

    @classmethod
    def of(cls, data: bytes) -> "ChecksumTracker":
        """Digest of a complete buffer"""
        return cls(data)

    def update(self, data: bytes) -> None:
        self._md5.update(data)
        self._count += len(data)

    def digest(self) -> bytes:
        return self._md5.digest()

    def hexdigest(self) -> str:
        return self._md5.hexdigest()

    def matches(self, other: "ChecksumTracker") -> bool:
        """
        Exact comparison of two digests

        Args:
            other: tracker to compare against

        Returns:
            True if both digests are byte for byte equal
        """
        return self.digest() == other.digest()

    def __len__(self):
        return self._count
