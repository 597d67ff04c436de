"""
Bus Pirate Bridge - binary mode driver

Drives a Bus Pirate over its serial port: console baud negotiation,
binary bit-bang mode, power/PWM control and the SPI sub-mode.
"""

from .interfaces import (
    ConnectionState,
    PortInfo,
    SerialPortInterface,
    ClockInterface,
)
from .errors import (
    BusPirateError,
    TransportError,
    ProtocolMismatch,
    ReplyTimeout,
    InvalidArgument,
    InvalidState,
    UnsupportedPlatform,
    OperationFailed,
    BinaryModeEntryFailed,
    LeaveBinaryModeFailed,
    SpiEntryFailed,
    PowerControlFailed,
    PwmConfigFailed,
    SpiConfigFailed,
    TransferFailed,
    NegotiationFailed,
)
from .codec import BaudRate, SpiSpeed
from .config import DriverConfig
from .buspirate import BusPirate, connect
from .spi import SpiConfig, SpiSession
from .port_lock import PortLock, list_all_locks
from .implementations import RealSerialPort


def list_ports():
    """Serial ports visible to pyserial."""
    return RealSerialPort.list_ports()


__version__ = "0.1.0"

__all__ = [
    "ConnectionState",
    "PortInfo",
    "SerialPortInterface",
    "ClockInterface",
    "BusPirateError",
    "TransportError",
    "ProtocolMismatch",
    "ReplyTimeout",
    "InvalidArgument",
    "InvalidState",
    "UnsupportedPlatform",
    "OperationFailed",
    "BinaryModeEntryFailed",
    "LeaveBinaryModeFailed",
    "SpiEntryFailed",
    "PowerControlFailed",
    "PwmConfigFailed",
    "SpiConfigFailed",
    "TransferFailed",
    "NegotiationFailed",
    "BaudRate",
    "SpiSpeed",
    "DriverConfig",
    "BusPirate",
    "connect",
    "SpiConfig",
    "SpiSession",
    "PortLock",
    "list_all_locks",
    "list_ports",
]
