"""
Mega Everdrive X7 upload protocol.

Protocol:
1. Host sends "    *T", cart answers "k"
2. Host sends "*g" + 1 byte block count, cart answers "k"
3. Host streams the image in 64KB blocks (no per-block ACK)
4. Cart answers "d" once every block has arrived
5. Host sends a run command ("*rm", "*rs", ...), cart answers "k"

There are no sequence numbers, NAKs or resends. Any unexpected answer
aborts the session.
"""

import enum
import warnings
from dataclasses import dataclass

from x7_checksum import ChecksumTracker
from x7_errors import (
    ConfigurationError,
    IntegrityMismatchWarning,
    LinkVerificationError,
    LoadRejectedError,
    ReadTimeoutError,
    RunRejectedError,
    SessionStateError,
    TransferRejectedError,
    TransportError,
)
from x7_serial import read_response, write_all

# Parameters from the Mega Everdrive X7 design
BLOCK_SIZE = 512 * 128
MAX_GAME_SIZE = 0xF00000
MAX_BLOCK_COUNT = 0xFF

# Cartridge commands and responses
INIT_CMD = b"    *T"
LOAD_GAME_CMD = b"*g"
RESP_OK = "k"
RESP_DATA_OK = "d"

RUN_COMMANDS = {
    "md": b"*rm",   # Mega Drive
    "sms": b"*rs",  # Master System
    "cd": b"*rc",   # Sega CD
    "os": b"*ro",   # OS/menu
    "m10": b"*rM",  # Master System 10-in-1
    "ssf": b"*rS",  # SSF mapper
}

DEFAULT_PORT = "/dev/tty.usbserial-A50543G8"
DEFAULT_BAUD_RATE = 9600
DEFAULT_READ_TIMEOUT_MS = 1000
DEFAULT_RUN_MODE = "md"


class SessionState(enum.Enum):
    IDLE = "idle"
    HANDSHAKE_SENT = "handshake sent"
    HANDSHAKE_ACKED = "handshake acked"
    LOAD_CMD_SENT = "load command sent"
    BLOCK_COUNT_ACKED = "block count acked"
    BLOCKS_STREAMING = "blocks streaming"
    TRANSFER_ACKED = "transfer acked"
    RUN_CMD_SENT = "run command sent"
    RUN_ACKED = "run acked"
    FAILED = "failed"


def check_run_mode(mode):
    """Return the run command for a mode name, or raise ConfigurationError"""
    try:
        return RUN_COMMANDS[mode]
    except KeyError:
        choices = "|".join(RUN_COMMANDS)
        raise ConfigurationError(f"Unsupported run mode '{mode}' (expected {choices})") from None


def check_image(image: bytes) -> int:
    """
    Validate an image before any of it goes on the wire

    Args:
        image: padded game data

    Returns:
        Number of blocks the image will be sent as
    """
    if not image:
        raise ConfigurationError("Game data is empty")
    if len(image) % BLOCK_SIZE:
        raise ConfigurationError(
            f"Game data size {len(image)} is not a multiple of the {BLOCK_SIZE} byte block size"
        )
    block_count = len(image) // BLOCK_SIZE
    if block_count > MAX_BLOCK_COUNT:
        raise ConfigurationError(
            f"Game data needs {block_count} blocks, the cart accepts at most {MAX_BLOCK_COUNT}"
        )
    return block_count


def iter_blocks(image: bytes):
    """Yield the image in BLOCK_SIZE slices, dropping any short tail"""
    view = memoryview(image)
    for offset in range(0, len(image) // BLOCK_SIZE * BLOCK_SIZE, BLOCK_SIZE):
        yield view[offset:offset + BLOCK_SIZE]


@dataclass(frozen=True)
class SessionConfig:
    port: str = DEFAULT_PORT
    baud_rate: int = DEFAULT_BAUD_RATE
    read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS
    run_mode: str = DEFAULT_RUN_MODE
    verbose: bool = False

    def __post_init__(self):
        check_run_mode(self.run_mode)
        if self.baud_rate <= 0:
            raise ConfigurationError(f"Baud rate must be positive, got {self.baud_rate}")
        if self.read_timeout_ms <= 0:
            raise ConfigurationError(f"Read timeout must be positive, got {self.read_timeout_ms}")


@dataclass(frozen=True)
class UploadResult:
    blocks_sent: int
    bytes_sent: int
    expected_digest: bytes
    sent_digest: bytes

    @property
    def integrity_ok(self) -> bool:
        return self.expected_digest == self.sent_digest


class EverdriveX7:
    """
    One upload session with a Mega Everdrive X7

    The session owns the transport for its lifetime and moves through
    SessionState in order: verify_link(), upload_image(), start_game().
    Calling a step out of order raises SessionStateError before anything
    is written. Any error after the session has left IDLE, including a
    rejected image or run mode, leaves it in SessionState.FAILED, and a
    failed session refuses every further step. run() checks the image and
    run mode while still IDLE, so a bad argument there leaves the state
    untouched.
    """

    def __init__(self, transport, config: SessionConfig):
        self.transport = transport
        self.config = config
        self.state = SessionState.IDLE

    def log(self, msg: str):
        if self.config.verbose:
            print(f"  {msg}")

    def _require(self, step, *states):
        if self.state is SessionState.FAILED:
            raise SessionStateError(f"Cannot {step}: session has already failed")
        if self.state not in states:
            raise SessionStateError(f"Cannot {step} in state '{self.state.value}'")

    def _validate(self, check, value):
        try:
            return check(value)
        except ConfigurationError:
            if self.state is not SessionState.IDLE:
                self.state = SessionState.FAILED
            raise

    def _send(self, data, state):
        try:
            write_all(self.transport, data, self.config.verbose)
        except TransportError:
            self.state = SessionState.FAILED
            raise
        self.state = state

    def _expect(self, token, error_cls):
        """Read one response and raise error_cls unless it equals token"""
        try:
            resp = read_response(self.transport)
        except ReadTimeoutError as e:
            self.state = SessionState.FAILED
            raise error_cls(message=f"No response from cart during {error_cls.step}: {e}") from e
        except TransportError:
            self.state = SessionState.FAILED
            raise

        self.log(f"cart replied {resp!r}")
        if resp != token:
            self.state = SessionState.FAILED
            raise error_cls(resp)
        return resp

    def verify_link(self):
        """Send the connection test command and wait for the cart's OK"""
        self._require("test the connection", SessionState.IDLE)
        print("Connection test...", end="", flush=True)
        try:
            self._send(INIT_CMD, SessionState.HANDSHAKE_SENT)
            self._expect(RESP_OK, LinkVerificationError)
        except LinkVerificationError:
            print("ERROR")
            raise
        except TransportError as e:
            print("ERROR")
            raise LinkVerificationError(message=f"Connection test failed: {e}") from e
        self.state = SessionState.HANDSHAKE_ACKED
        print("OK")

    def upload_image(self, image: bytes) -> UploadResult:
        """
        Send the load command and stream the image to the cart

        Args:
            image: game data padded to a multiple of BLOCK_SIZE

        Returns:
            UploadResult with block count and both MD5 digests
        """
        self._require("upload the game", SessionState.HANDSHAKE_ACKED)
        block_count = self._validate(check_image, image)
        expected = ChecksumTracker.of(image)

        self._send(LOAD_GAME_CMD + bytes([block_count]), SessionState.LOAD_CMD_SENT)
        self._expect(RESP_OK, LoadRejectedError)
        self.state = SessionState.BLOCK_COUNT_ACKED

        print(f"Sending game data ({block_count} blocks)", end="", flush=True)
        self.state = SessionState.BLOCKS_STREAMING
        wrote = ChecksumTracker()
        for block in iter_blocks(image):
            self._send(block, SessionState.BLOCKS_STREAMING)
            wrote.update(block)
            print(".", end="", flush=True)

        if not wrote.matches(expected):
            print()
            warnings.warn(
                f"bad md5: {expected.hexdigest()} != {wrote.hexdigest()}",
                IntegrityMismatchWarning,
                stacklevel=2,
            )

        try:
            self._expect(RESP_DATA_OK, TransferRejectedError)
        except TransferRejectedError:
            print("ERROR")
            raise
        self.state = SessionState.TRANSFER_ACKED
        print("OK")

        return UploadResult(
            blocks_sent=block_count,
            bytes_sent=len(wrote),
            expected_digest=expected.digest(),
            sent_digest=wrote.digest(),
        )

    def start_game(self, mode=None):
        """Send the run command for mode (default: the configured run mode)"""
        self._require("start the game", SessionState.TRANSFER_ACKED)
        if mode is None:
            mode = self.config.run_mode
        command = self._validate(check_run_mode, mode)

        print("Starting game...", end="", flush=True)
        self._send(command, SessionState.RUN_CMD_SENT)
        try:
            self._expect(RESP_OK, RunRejectedError)
        except RunRejectedError:
            print("ERROR")
            raise
        self.state = SessionState.RUN_ACKED
        print("OK")

    def run(self, image: bytes) -> UploadResult:
        """Full session: connection test, upload, start game"""
        self._require("run the session", SessionState.IDLE)
        check_image(image)
        check_run_mode(self.config.run_mode)

        self.verify_link()
        result = self.upload_image(image)
        self.start_game()
        return result
