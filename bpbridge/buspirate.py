"""
Bus Pirate connection and mode state machine.

A BusPirate owns one serial port for its whole life and tracks which
protocol mode the firmware is in:

    TEXT_CONSOLE --enter_binary_mode--> BINARY_BITBANG
    BINARY_BITBANG --enter_spi--> BINARY_SPI  (returns a SpiSession)
    BINARY_SPI --SpiSession.leave--> BINARY_BITBANG
    BINARY_BITBANG --leave_binary_mode--> CLOSED

Every binary command is one blocking round trip: write the request,
drain, then read exactly the reply length. The firmware does not start
answering until the request has fully arrived, and it handles one request
at a time, so nothing is pipelined. Only the BBIO1 handshake is retried;
any other bad reply is raised straight away.

Usage:
    with BusPirate.open("/dev/ttyUSB0", baud=1000000) as bp:
        bp.power_on()
        with bp.enter_spi() as spi:
            spi.set_speed(SpiSpeed.MHZ_1)
            data = spi.write_read(b"\\x9f", 3)
"""

from __future__ import annotations

import logging
from typing import Optional

from . import codec
from .baud import DEFAULT_BAUD, check_baud, finish_switch, negotiate
from .codec import Command
from .config import DriverConfig
from .errors import (
    BinaryModeEntryFailed,
    BusPirateError,
    InvalidState,
    LeaveBinaryModeFailed,
    PowerControlFailed,
    ProtocolMismatch,
    PwmConfigFailed,
    ReplyTimeout,
    SpiEntryFailed,
    TransportError,
)
from .implementations import RealClock, RealSerialPort
from .interfaces import ClockInterface, ConnectionState, SerialPortInterface
from .port_lock import PortLock
from .retry import attempt
from .spi import SpiSession

logger = logging.getLogger(__name__)

CONSOLE_RESET = b"\n" * 10


class BusPirate:
    """
    One connection to a Bus Pirate.

    Most callers use BusPirate.open(). The constructor takes an already
    open port and assumes the device is at its text console; it is the
    seam tests use to inject a MockSerialPort.
    """

    def __init__(
        self,
        port: SerialPortInterface,
        *,
        clock: Optional[ClockInterface] = None,
        config: Optional[DriverConfig] = None,
        device: str = "",
        lock: Optional[PortLock] = None,
    ):
        self._port = port
        self._clock = clock or RealClock()
        self._config = config or DriverConfig()
        self._device = device
        self._lock = lock
        self._spi: Optional[SpiSession] = None
        if port.is_open():
            self._state = ConnectionState.TEXT_CONSOLE
        else:
            self._state = ConnectionState.CLOSED

    @classmethod
    def open(
        cls,
        device: str,
        baud: int = DEFAULT_BAUD,
        *,
        port: Optional[SerialPortInterface] = None,
        clock: Optional[ClockInterface] = None,
        config: Optional[DriverConfig] = None,
        platform: Optional[str] = None,
    ) -> "BusPirate":
        """
        Open `device`, switch it to `baud` and enter binary bit-bang mode.

        The port, and the device lock if enabled, are released again if any
        step fails.
        """
        config = config or DriverConfig.from_env()
        rate = check_baud(baud, platform)
        port = port or RealSerialPort()
        clock = clock or RealClock()

        lock = None
        if config.lock_port:
            lock = PortLock(device)
            if not lock.acquire():
                owner = lock.get_owner()
                holder = f" by PID {owner.pid} ({owner.process_name})" if owner else ""
                raise TransportError(f"{device} is in use{holder}")

        bp = None
        try:
            port.open(device, int(DEFAULT_BAUD), timeout=config.reply_timeout)
            bp = cls(port, clock=clock, config=config, device=device, lock=lock)
            if negotiate(port, rate, platform=platform, timeout=config.console_timeout):
                finish_switch(port, rate, clock, config.baud_settle)
            bp.enter_binary_mode()
        except BaseException:
            if bp is not None:
                bp.close()
            elif lock is not None:
                lock.release()
            raise

        logger.info("Bus Pirate on %s in binary mode at %d baud", device, int(rate))
        return bp

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def device(self) -> str:
        return self._device

    @property
    def config(self) -> DriverConfig:
        return self._config

    @property
    def spi(self) -> Optional[SpiSession]:
        """The active SPI session, if any."""
        return self._spi

    def _require(self, *states: ConnectionState) -> None:
        if self._state not in states:
            allowed = "/".join(s.value for s in states)
            raise InvalidState(f"command needs {allowed} mode, connection is {self._state.value}")

    # ------------------------------------------------------------------
    # Wire primitives (also used by SpiSession)
    # ------------------------------------------------------------------

    def _write(self, data: bytes) -> None:
        logger.debug("tx %s", data.hex(" "))
        self._port.write(data)
        self._port.drain()

    def _read(self, size: int, timeout: float) -> bytes:
        data = self._port.read(size, timeout)
        logger.debug("rx %s", data.hex(" ") if data else "<nothing>")
        return data

    def _exchange(self, command: Command, timeout: Optional[float] = None) -> bytes:
        """Send `command` and return its validated reply."""
        self._write(command.request)
        if command.payload:
            self._write(command.payload)
        if command.reply_len == 0:
            return b""
        wait = self._config.reply_timeout if timeout is None else timeout
        return codec.check_reply(command, self._read(command.reply_len, wait))

    # ------------------------------------------------------------------
    # Mode transitions
    # ------------------------------------------------------------------

    def enter_binary_mode(self) -> None:
        """
        Get the firmware into binary bit-bang mode.

        Works from the text console and from any binary mode (which makes it
        the recovery path after a timeout). Sends ten newlines to finish any
        half-typed console command, then 0x00 until BBIO1 comes back.
        """
        self._require(
            ConnectionState.TEXT_CONSOLE,
            ConnectionState.BINARY_BITBANG,
            ConnectionState.BINARY_SPI,
        )
        if self._spi is not None:
            self._spi._invalidate()
            self._spi = None

        self._write(CONSOLE_RESET)
        self._port.flush_input()

        command = codec.enter_bitbang()

        def send_reset() -> bytes:
            self._write(command.request)
            return self._read(command.reply_len, self._config.entry_read_timeout)

        outcome = attempt(
            send_reset,
            max_attempts=self._config.entry_attempts,
            interval=self._config.entry_interval,
            success=lambda reply: reply == codec.BBIO_BANNER,
            clock=self._clock,
            label="binary mode entry",
        )
        if not outcome.succeeded:
            last = outcome.value or b""
            if len(last) < command.reply_len:
                cause: ProtocolMismatch = ReplyTimeout(
                    "no banner", expected_len=command.reply_len, received=last
                )
            else:
                cause = ProtocolMismatch(
                    f"unexpected banner {last!r}", expected=codec.BBIO_BANNER, received=last
                )
            self._state = ConnectionState.TEXT_CONSOLE
            raise BinaryModeEntryFailed(
                f"no BBIO1 from {self._device or 'device'} after {outcome.attempts} attempts"
            ) from cause

        self._state = ConnectionState.BINARY_BITBANG
        logger.info("entered binary mode after %d attempt(s)", outcome.attempts)

    def leave_binary_mode(self) -> None:
        """
        Return the firmware to its text console and release the port.

        The port is released even if the device does not acknowledge.
        """
        self._require(ConnectionState.BINARY_BITBANG)
        try:
            self._exchange(codec.exit_bitbang())
        except ProtocolMismatch as e:
            raise LeaveBinaryModeFailed("device did not acknowledge exit to console") from e
        finally:
            self._release()
        logger.info("left binary mode")

    def enter_spi(self) -> SpiSession:
        """Switch to the SPI sub-mode and return a session for it."""
        self._require(ConnectionState.BINARY_BITBANG)
        try:
            self._exchange(codec.enter_spi())
        except ProtocolMismatch as e:
            raise SpiEntryFailed("device did not answer SPI1") from e
        self._state = ConnectionState.BINARY_SPI
        self._spi = SpiSession(self)
        logger.info("entered SPI mode")
        return self._spi

    def _leave_spi(self, session: SpiSession) -> None:
        if session is not self._spi:
            raise InvalidState("SPI session is no longer active")
        self._require(ConnectionState.BINARY_SPI)
        # Nothing is read back. Some firmware builds answer BBIO1 here; give
        # it entry_read_timeout to arrive, then drop it so the next reply
        # starts clean. Bytes later than that still reach the next command.
        self._exchange(codec.leave_spi())
        self._clock.sleep(self._config.entry_read_timeout)
        self._port.flush_input()
        session._invalidate()
        self._spi = None
        self._state = ConnectionState.BINARY_BITBANG
        logger.info("left SPI mode")

    # ------------------------------------------------------------------
    # Bit-bang mode commands
    # ------------------------------------------------------------------

    def power_on(self) -> None:
        """Turn on the 5V and 3.3V supplies."""
        self._power(True)

    def power_off(self) -> None:
        """Turn off the 5V and 3.3V supplies."""
        self._power(False)

    def _power(self, on: bool) -> None:
        self._require(ConnectionState.BINARY_BITBANG)
        try:
            self._exchange(codec.power(on))
        except ProtocolMismatch as e:
            raise PowerControlFailed(f"power {'on' if on else 'off'} not acknowledged") from e

    def set_pwm(self, duty: float) -> None:
        """Drive PWM on the AUX pin. `duty` is clamped to [0, 1]."""
        self._require(ConnectionState.BINARY_BITBANG)
        command = codec.pwm(duty)
        try:
            self._exchange(command)
        except ProtocolMismatch as e:
            raise PwmConfigFailed(f"PWM duty {duty} not acknowledged") from e

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _release(self) -> None:
        """Close the port and drop the lock. Errors from either are only logged."""
        if self._spi is not None:
            self._spi._invalidate()
            self._spi = None
        self._state = ConnectionState.CLOSED
        try:
            self._port.close()
        except TransportError as e:
            logger.warning("error closing %s: %s", self._device or "port", e)
        finally:
            if self._lock is not None:
                lock, self._lock = self._lock, None
                try:
                    lock.release()
                except TransportError as e:
                    logger.warning("error releasing lock for %s: %s", self._device or "port", e)

    def close(self) -> None:
        """Release the port without talking to the device. Idempotent."""
        if self._state is ConnectionState.CLOSED and self._lock is None:
            return
        self._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Orderly exit: leave SPI, leave binary mode, close. If we got here
        # through an exception, teardown errors must not replace it.
        try:
            if self._state is ConnectionState.BINARY_SPI and self._spi is not None:
                self._spi.leave()
            if self._state is ConnectionState.BINARY_BITBANG:
                self.leave_binary_mode()
        except BusPirateError as e:
            if exc_type is None:
                raise
            logger.warning("teardown after error failed: %s", e)
        finally:
            self.close()
        return False

    def __repr__(self) -> str:
        return f"BusPirate(device={self._device!r}, state={self._state.value})"


def connect(device: str, baud: int = DEFAULT_BAUD, **kwargs) -> BusPirate:
    """Shorthand for BusPirate.open()."""
    return BusPirate.open(device, baud, **kwargs)
