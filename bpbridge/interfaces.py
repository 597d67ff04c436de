"""
Interfaces for the Bus Pirate bridge.

Abstract base classes for the pieces the protocol layer talks to.
This enables dependency injection and mock-based testing without hardware.
"""

from abc import ABC, abstractmethod
from typing import List
from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    """Protocol mode of a Bus Pirate connection."""
    TEXT_CONSOLE = "text_console"
    BINARY_BITBANG = "binary_bitbang"
    BINARY_SPI = "binary_spi"
    CLOSED = "closed"


@dataclass
class PortInfo:
    """Information about a serial port."""
    device: str
    description: str
    hwid: str


class SerialPortInterface(ABC):
    """
    Abstract interface for serial port operations.

    Implementations:
    - RealSerialPort: Wraps pyserial for actual hardware
    - MockSerialPort: Scripted device for unit testing without hardware

    All I/O failures are raised as TransportError. Reads never raise on
    timeout; they return whatever arrived before the deadline.
    """

    @abstractmethod
    def open(self, port: str, baud: int, timeout: float = 2.0) -> None:
        """Open the port in raw 8-N-1 mode."""

    @abstractmethod
    def close(self) -> None:
        """Close the port."""

    @abstractmethod
    def is_open(self) -> bool:
        """Check if port is currently open."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write data. Returns bytes written."""

    @abstractmethod
    def read(self, size: int, timeout: float) -> bytes:
        """Block until `size` bytes arrive or `timeout` seconds pass."""

    @abstractmethod
    def read_until(self, expected: bytes, timeout: float) -> bytes:
        """Read until `expected` is seen or `timeout` seconds pass."""

    @abstractmethod
    def drain(self) -> None:
        """Wait until all written bytes have left the host."""

    @abstractmethod
    def flush_input(self) -> None:
        """Discard anything waiting in the receive buffer."""

    @abstractmethod
    def set_baud(self, baud: int) -> None:
        """Change the local line rate of an open port."""

    @staticmethod
    @abstractmethod
    def list_ports() -> List[PortInfo]:
        """List available serial ports."""


class ClockInterface(ABC):
    """
    Abstract interface for time operations.

    Enables deterministic testing of retry and settle delays.
    """

    @abstractmethod
    def timestamp(self) -> float:
        """Get current monotonic timestamp in seconds."""

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Sleep for specified duration."""
