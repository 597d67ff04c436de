"""
Real implementations of interfaces for production use.

These classes wrap actual system resources (serial ports, the clock)
and implement the abstract interfaces.
"""

from typing import Optional, List
import logging
import time

import serial
import serial.tools.list_ports

from .errors import TransportError
from .interfaces import SerialPortInterface, ClockInterface, PortInfo

logger = logging.getLogger(__name__)


class RealSerialPort(SerialPortInterface):
    """
    Real serial port implementation using pyserial.

    The port is opened raw, 8-N-1, with all flow control off. pyserial
    errors are re-raised as TransportError.
    """

    def __init__(self):
        self._serial: Optional[serial.Serial] = None

    def _port(self) -> serial.Serial:
        if self._serial is None:
            raise TransportError("serial port is not open")
        return self._serial

    def open(self, port: str, baud: int, timeout: float = 2.0) -> None:
        try:
            self._serial = serial.Serial(
                port,
                baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout,
                write_timeout=timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self._serial = None
            raise TransportError(f"cannot open {port}: {e}") from e
        logger.debug("opened %s at %d baud", port, baud)

    def close(self) -> None:
        if self._serial is None:
            return
        port, self._serial = self._serial, None
        try:
            port.close()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"error closing {port.port}: {e}") from e

    def is_open(self) -> bool:
        if self._serial is None:
            return False
        return bool(self._serial.is_open)

    def write(self, data: bytes) -> int:
        try:
            return self._port().write(data) or 0
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"write failed: {e}") from e

    def read(self, size: int, timeout: float) -> bytes:
        if size <= 0:
            return b""
        port = self._port()
        try:
            port.timeout = timeout
            return bytes(port.read(size))
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"read failed: {e}") from e

    def read_until(self, expected: bytes, timeout: float) -> bytes:
        port = self._port()
        try:
            port.timeout = timeout
            return bytes(port.read_until(expected))
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"read failed: {e}") from e

    def drain(self) -> None:
        try:
            self._port().flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"drain failed: {e}") from e

    def flush_input(self) -> None:
        try:
            self._port().reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"input flush failed: {e}") from e

    def set_baud(self, baud: int) -> None:
        try:
            self._port().baudrate = baud
        except (serial.SerialException, OSError, ValueError) as e:
            raise TransportError(f"cannot switch to {baud} baud: {e}") from e

    @staticmethod
    def list_ports() -> List[PortInfo]:
        ports = []
        for p in serial.tools.list_ports.comports():
            ports.append(PortInfo(
                device=p.device,
                description=p.description or "",
                hwid=p.hwid or "",
            ))
        return ports


class RealClock(ClockInterface):
    """
    Real clock implementation using system time.
    """

    def timestamp(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)
