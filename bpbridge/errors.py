"""Exception hierarchy for the Bus Pirate bridge.

Every failure raised by this package derives from :class:`BusPirateError`.
Operation failures (``SpiEntryFailed``, ``TransferFailed`` ...) are raised
``from`` the protocol error that caused them, so ``exc.__cause__`` tells a
caller whether the device answered wrongly or not at all.
"""

from __future__ import annotations

from typing import Optional


class BusPirateError(RuntimeError):
    """Base class for all bridge errors."""


class TransportError(BusPirateError):
    """The serial port itself failed (open, read, write, close)."""


class InvalidArgument(BusPirateError, ValueError):
    """An argument was out of range. Raised before anything is transmitted."""


class UnsupportedPlatform(BusPirateError):
    """The requested feature does not work on this host OS."""


class InvalidState(BusPirateError):
    """A command was issued in a mode that does not accept it."""


class ProtocolMismatch(BusPirateError):
    """The device replied with the wrong bytes."""

    def __init__(self, message: str, expected: Optional[bytes] = None, received: bytes = b"") -> None:
        super().__init__(message)
        self.expected = expected
        self.received = received


class ReplyTimeout(ProtocolMismatch):
    """The device did not send the full reply before the deadline."""

    def __init__(self, message: str, expected_len: int, received: bytes = b"") -> None:
        super().__init__(message, expected=None, received=received)
        self.expected_len = expected_len


class OperationFailed(BusPirateError):
    """A protocol operation failed; see ``__cause__`` for the reason."""

    @property
    def timed_out(self) -> bool:
        return isinstance(self.__cause__, ReplyTimeout)


class BinaryModeEntryFailed(OperationFailed):
    """No BBIO1 banner within the handshake attempt budget."""


class SpiEntryFailed(OperationFailed):
    """The device did not answer SPI1 to the SPI mode request."""


class PowerControlFailed(OperationFailed):
    """Power supply on/off was not acknowledged."""


class PwmConfigFailed(OperationFailed):
    """PWM setup was not acknowledged."""


class SpiConfigFailed(OperationFailed):
    """An SPI configuration command was not acknowledged."""


class TransferFailed(OperationFailed):
    """An SPI data transfer failed."""


class LeaveBinaryModeFailed(OperationFailed):
    """The device did not acknowledge the exit to the text console."""


class NegotiationFailed(OperationFailed):
    """The console baud rate dialog went off script."""

    def __init__(self, step: int, message: str) -> None:
        super().__init__(f"baud negotiation step {step}: {message}")
        self.step = step
