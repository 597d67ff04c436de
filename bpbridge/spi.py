"""SPI sub-mode of the Bus Pirate binary protocol.

A :class:`SpiSession` is only handed out by ``BusPirate.enter_spi()`` and
stops working the moment the connection leaves SPI mode, so SPI commands
cannot reach the firmware while it is in any other mode.

Reference: http://dangerousprototypes.com/docs/SPI_(binary)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional

from . import codec
from .codec import Command, SpiSpeed
from .errors import (
    BusPirateError,
    InvalidState,
    ProtocolMismatch,
    ReplyTimeout,
    SpiConfigFailed,
    TransferFailed,
)
from .interfaces import ConnectionState

if TYPE_CHECKING:
    from .buspirate import BusPirate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpiConfig:
    """Last acknowledged SPI settings. ``None`` means never set this session."""
    speed: Optional[SpiSpeed] = None
    power: Optional[bool] = None
    pullups: Optional[bool] = None
    aux: Optional[bool] = None
    cs_idle: Optional[bool] = None
    output_3v3: Optional[bool] = None
    idle_high: Optional[bool] = None
    edge_active_to_idle: Optional[bool] = None
    sample_end: Optional[bool] = None


class SpiSession:
    """
    Handle for a Bus Pirate in SPI mode.

    Settings are mirrored locally once the device acknowledges them; the
    device stays the source of truth. Use as a context manager to leave
    SPI mode on exit.
    """

    def __init__(self, bus: "BusPirate"):
        self._bus = bus
        self._active = True
        self._config = SpiConfig()
        self._cs_high: Optional[bool] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def config(self) -> SpiConfig:
        return self._config

    @property
    def cs_high(self) -> Optional[bool]:
        """Last acknowledged chip-select level."""
        return self._cs_high

    def _invalidate(self) -> None:
        self._active = False

    def _check(self) -> None:
        if not self._active or self._bus.state is not ConnectionState.BINARY_SPI:
            raise InvalidState("SPI session is no longer active")

    def _ack(self, command: Command, failure: type) -> None:
        try:
            self._bus._exchange(command)
        except ProtocolMismatch as e:
            raise failure(f"{command.name} rejected") from e

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure_peripherals(self, power: bool, pullups: bool, aux: bool, cs: bool) -> None:
        """Set power supplies, pull-ups, AUX and CS pins (0100wxyz)."""
        self._check()
        self._ack(codec.spi_peripherals(power, pullups, aux, cs), SpiConfigFailed)
        self._config = replace(self._config, power=power, pullups=pullups, aux=aux, cs_idle=cs)

    def set_cs(self, high: bool) -> None:
        """Drive chip select high or low."""
        self._check()
        self._ack(codec.spi_cs(high), SpiConfigFailed)
        self._cs_high = bool(high)

    def set_speed(self, speed: SpiSpeed) -> None:
        self._check()
        command = codec.spi_speed(speed)
        self._ack(command, SpiConfigFailed)
        self._config = replace(self._config, speed=SpiSpeed(speed))
        logger.debug("SPI speed %s", SpiSpeed(speed).name)

    def configure_bus(
        self,
        output_3v3: bool,
        idle_high: bool,
        edge_active_to_idle: bool,
        sample_end: bool,
    ) -> None:
        """
        Set pin output type and clock behaviour (1000wxyz).

        Args:
            output_3v3: True for 3.3V push-pull, False for open drain.
            idle_high: Clock idles high (CKP).
            edge_active_to_idle: Data changes on the active-to-idle edge (CKE).
            sample_end: Sample input at the end of the clock period (SMP).
        """
        self._check()
        self._ack(codec.spi_config(output_3v3, idle_high, edge_active_to_idle, sample_end), SpiConfigFailed)
        self._config = replace(
            self._config,
            output_3v3=output_3v3,
            idle_high=idle_high,
            edge_active_to_idle=edge_active_to_idle,
            sample_end=sample_end,
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(self, data: bytes) -> bytes:
        """
        Clock 1-16 bytes out and return the bytes clocked in.

        The firmware buffers a single byte, so each byte is written and its
        reply read before the next one goes out. Chip select is not touched.
        """
        self._check()
        data = bytes(data)
        command = codec.spi_bulk(len(data))
        self._ack(command, TransferFailed)

        timeout = self._bus.config.reply_timeout
        received = bytearray()
        for i, byte in enumerate(data):
            self._bus._write(bytes([byte]))
            reply = self._bus._read(1, timeout)
            if len(reply) != 1:
                raise TransferFailed(
                    f"no reply for byte {i + 1} of {len(data)}"
                ) from ReplyTimeout("bulk transfer byte", expected_len=1, received=reply)
            received += reply
        return bytes(received)

    def write_read(self, out_data: bytes, in_count: int, *, assert_cs: bool = True) -> bytes:
        """
        Write up to 4096 bytes, then read up to 4096 bytes.

        With `assert_cs` the firmware drives CS low for the whole exchange
        and back high afterwards; otherwise CS is left as it is.
        """
        self._check()
        command = codec.spi_write_read(bytes(out_data), in_count, assert_cs=assert_cs)
        self._ack(command, TransferFailed)
        logger.debug("write/read: %d out, %d in", len(command.payload), in_count)
        if in_count == 0:
            return b""

        data = self._bus._read(in_count, self._bus.config.bulk_timeout)
        if len(data) < in_count:
            raise TransferFailed(
                f"expected {in_count} byte(s), got {len(data)}"
            ) from ReplyTimeout("write/read input", expected_len=in_count, received=data)
        return data

    # ------------------------------------------------------------------
    # Leaving
    # ------------------------------------------------------------------

    def leave(self) -> None:
        """Return to bit-bang mode. No-op if already left."""
        if not self._active:
            return
        self._bus._leave_spi(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._active or self._bus.state is not ConnectionState.BINARY_SPI:
            return False
        try:
            self.leave()
        except BusPirateError as e:
            if exc_type is None:
                raise
            logger.warning("leaving SPI mode after error failed: %s", e)
        return False

    def __repr__(self) -> str:
        return f"SpiSession(active={self._active}, config={self._config})"
