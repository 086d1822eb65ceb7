"""
Errors raised while talking to the Mega Everdrive X7 cartridge.

Configuration mistakes and device/cable faults live in separate branches
so the command line can tell the operator which one happened.
"""


class X7Error(Exception):
    """Base class for all upload errors"""


class ConfigurationError(X7Error, ValueError):
    """Bad run mode, bad setting or an image the cartridge can't take"""


class SessionStateError(X7Error):
    """Protocol step called out of order or after the session failed"""


class TransportError(X7Error):
    """Serial port failed (unplugged cable, closed port, permissions)"""


class TransientWriteError(TransportError):
    """Port is temporarily unable to take more data"""


class ReadTimeoutError(TransportError):
    """No complete response line arrived before the read timeout"""


class ProtocolError(X7Error):
    """Cartridge answered a protocol step with an unexpected token"""

    step = "protocol step"

    def __init__(self, response=None, message=None):
        self.response = response
        if message is None:
            if response is None:
                message = f"No response from cart during {self.step}"
            else:
                message = f"Bad response from cart during {self.step}: {response!r}"
        super().__init__(message)


class LinkVerificationError(ProtocolError):
    step = "connection test"


class LoadRejectedError(ProtocolError):
    step = "load command"


class TransferRejectedError(ProtocolError):
    step = "game data transfer"


class RunRejectedError(ProtocolError):
    step = "start game"


class IntegrityMismatchWarning(UserWarning):
    """MD5 of the transmitted blocks differs from the MD5 of the image"""
