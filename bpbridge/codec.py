"""Command codec for the Bus Pirate binary bit-bang protocol.

Pure functions only: nothing here touches a port. Each builder returns a
:class:`Command` holding the exact request bytes and the one reply shape the
firmware produces for it, and :func:`check_reply` decides whether a reply
read off the wire satisfies that shape.

Reference: http://dangerousprototypes.com/docs/Bitbang and
http://dangerousprototypes.com/docs/SPI_(binary)
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Optional, Tuple

from .errors import InvalidArgument, ProtocolMismatch, ReplyTimeout

OPCODES = MappingProxyType({
    # bit-bang mode
    "reset": 0x00,          # also "leave SPI" while in SPI mode
    "enter_spi": 0x01,
    "exit": 0x0F,
    "pwm": 0x12,
    "power_off": 0x80,
    "power_on": 0xC0,
    # SPI mode
    "spi_cs": 0x02,         # 0000001x
    "spi_write_read": 0x04,
    "spi_write_read_nocs": 0x05,
    "spi_bulk": 0x10,       # 0001xxxx
    "spi_peripherals": 0x40,  # 0100wxyz
    "spi_speed": 0x60,      # 01100xxx
    "spi_config": 0x80,     # 1000wxyz
})

BBIO_BANNER = b"BBIO1"
SPI_BANNER = b"SPI1"
ACK = b"\x01"

BULK_MAX = 16
WRITE_READ_MAX = 4096

PWM_PERIOD = 0x3E7F


class SpiSpeed(IntEnum):
    """SPI clock rates, encoded in the low three bits of the speed opcode."""
    KHZ_30 = 0
    KHZ_125 = 1
    KHZ_250 = 2
    MHZ_1 = 3
    MHZ_2 = 4
    KHZ_2600 = 5
    MHZ_4 = 6
    MHZ_8 = 7


class BaudRate(IntEnum):
    """Line rates the console baud dialog can switch to."""
    B115200 = 115200
    B500000 = 500000
    B1000000 = 1000000
    B2000000 = 2000000


# Raw BRG divisor typed at the "Enter raw value for BRG" prompt.
BRG_TOKENS = MappingProxyType({
    BaudRate.B500000: b"7\n",
    BaudRate.B1000000: b"3\n",
    BaudRate.B2000000: b"1\n",
})

# Bus Pirate v3 console prompts
BAUD_MENU_MARKER = b"10. BRG raw value"
BRG_PROMPT_MARKER = b"Enter raw value for BRG"
BRG_DONE_MARKER = b"Space to continue"


class ReplyKind(Enum):
    NONE = "none"        # device sends nothing
    BANNER = "banner"    # fixed ASCII string
    ACK = "ack"          # one byte, must be 0x01
    STATUS = "status"    # one byte, any value


@dataclass(frozen=True)
class Command:
    """One binary request and the reply it must produce.

    `payload`, when present, is written as a second write right after
    `request` (write/read sends its whole output buffer in one go).
    """
    name: str
    request: bytes
    reply: ReplyKind
    expected: Optional[bytes] = None
    payload: bytes = b""

    @property
    def reply_len(self) -> int:
        if self.reply is ReplyKind.NONE:
            return 0
        if self.reply is ReplyKind.STATUS:
            return 1
        return len(self.expected)


def check_reply(command: Command, reply: bytes) -> bytes:
    """Validate `reply` against the command's expected shape.

    Raises:
        ReplyTimeout: fewer bytes than the shape needs.
        ProtocolMismatch: right length, wrong content.
    """
    want = command.reply_len
    if len(reply) < want:
        raise ReplyTimeout(
            f"{command.name}: expected {want} byte(s), got {len(reply)}",
            expected_len=want,
            received=reply,
        )
    if command.expected is not None and reply != command.expected:
        raise ProtocolMismatch(
            f"{command.name}: expected {command.expected!r}, got {reply!r}",
            expected=command.expected,
            received=reply,
        )
    return reply


def pack_flags(*flags: bool) -> int:
    """Pack booleans MSB-first into the low bits of an opcode."""
    value = 0
    for flag in flags:
        value = (value << 1) | (1 if flag else 0)
    return value


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    if math.isnan(value):
        raise InvalidArgument("value must be a number, got NaN")
    return max(lower, min(upper, value))


def pwm_registers(duty: float) -> Tuple[int, int]:
    """Return (OCR, PRy) for a duty cycle; duty is clamped to [0, 1]."""
    duty = clamp(float(duty))
    return int(round(PWM_PERIOD * duty)), PWM_PERIOD


# ---------------------------------------------------------------------------
# Bit-bang mode
# ---------------------------------------------------------------------------

def enter_bitbang() -> Command:
    return Command("enter_bitbang", bytes([OPCODES["reset"]]), ReplyKind.BANNER, BBIO_BANNER)


def exit_bitbang() -> Command:
    return Command("exit_bitbang", bytes([OPCODES["exit"]]), ReplyKind.ACK, ACK)


def power(on: bool) -> Command:
    opcode = OPCODES["power_on"] if on else OPCODES["power_off"]
    return Command("power_on" if on else "power_off", bytes([opcode]), ReplyKind.STATUS)


def pwm(duty: float) -> Command:
    ocr, period = pwm_registers(duty)
    request = struct.pack(">BBHH", OPCODES["pwm"], 0x00, ocr, period)
    return Command("pwm", request, ReplyKind.STATUS)


def enter_spi() -> Command:
    return Command("enter_spi", bytes([OPCODES["enter_spi"]]), ReplyKind.BANNER, SPI_BANNER)


# ---------------------------------------------------------------------------
# SPI mode
# ---------------------------------------------------------------------------

def leave_spi() -> Command:
    return Command("leave_spi", bytes([OPCODES["reset"]]), ReplyKind.NONE)


def spi_cs(high: bool) -> Command:
    return Command("spi_cs", bytes([OPCODES["spi_cs"] | pack_flags(high)]), ReplyKind.ACK, ACK)


def spi_peripherals(power: bool, pullups: bool, aux: bool, cs: bool) -> Command:
    opcode = OPCODES["spi_peripherals"] | pack_flags(power, pullups, aux, cs)
    return Command("spi_peripherals", bytes([opcode]), ReplyKind.ACK, ACK)


def spi_speed(speed: SpiSpeed) -> Command:
    try:
        speed = SpiSpeed(speed)
    except ValueError:
        raise InvalidArgument(f"unknown SPI speed {speed!r}") from None
    opcode = OPCODES["spi_speed"] | (int(speed) & 0x07)
    return Command("spi_speed", bytes([opcode]), ReplyKind.ACK, ACK)


def spi_config(output_3v3: bool, idle_high: bool, edge_active_to_idle: bool, sample_end: bool) -> Command:
    opcode = OPCODES["spi_config"] | pack_flags(output_3v3, idle_high, edge_active_to_idle, sample_end)
    return Command("spi_config", bytes([opcode]), ReplyKind.ACK, ACK)


def spi_bulk(length: int) -> Command:
    """Header for a 1-16 byte bulk transfer. Data bytes follow one at a time."""
    if not 1 <= length <= BULK_MAX:
        raise InvalidArgument(f"bulk transfer length must be 1..{BULK_MAX}, got {length}")
    return Command("spi_bulk", bytes([OPCODES["spi_bulk"] | (length - 1)]), ReplyKind.ACK, ACK)


def spi_write_read(out_data: bytes, in_count: int, assert_cs: bool = True) -> Command:
    """Full write-then-read request. The status byte must be 0x01."""
    out_count = len(out_data)
    if not 0 <= out_count <= WRITE_READ_MAX:
        raise InvalidArgument(f"write count must be 0..{WRITE_READ_MAX}, got {out_count}")
    if not 0 <= in_count <= WRITE_READ_MAX:
        raise InvalidArgument(f"read count must be 0..{WRITE_READ_MAX}, got {in_count}")
    opcode = OPCODES["spi_write_read"] if assert_cs else OPCODES["spi_write_read_nocs"]
    request = struct.pack(">BHH", opcode, out_count, in_count)
    return Command("spi_write_read", request, ReplyKind.ACK, ACK, payload=bytes(out_data))
