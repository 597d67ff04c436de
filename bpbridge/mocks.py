"""
Mock implementations for testing.

These classes implement the abstract interfaces with in-memory behavior
suitable for unit testing without hardware. MockSerialPort can be fed
canned bytes, or wired to a responder such as FakeBusPirate that answers
every write the way the firmware would.
"""

from typing import Callable, Dict, List, Optional, Tuple

from .errors import TransportError
from .interfaces import SerialPortInterface, ClockInterface, PortInfo

Responder = Callable[[bytes], Optional[bytes]]


class MockSerialPort(SerialPortInterface):
    """
    Mock serial port for testing.

    Reads are served from an in-memory receive buffer. A short buffer
    behaves like a timeout: read() returns what is there and no more.
    Test code injects data with inject_bytes() or a responder, and reads
    sent data back with get_sent().
    """

    def __init__(self, responder: Optional[Responder] = None):
        self._is_open = False
        self._port = ""
        self._baud = 0
        self._rx = bytearray()
        self._tx: List[bytes] = []
        self._reads: List[Tuple[int, float]] = []
        self._bauds: List[int] = []
        self._responder = responder
        self._fail_on_open = False
        self._fail_on_write = False
        self._fail_on_close = False
        self.drain_count = 0
        self.close_count = 0

    def open(self, port: str, baud: int, timeout: float = 2.0) -> None:
        if self._fail_on_open:
            raise TransportError(f"cannot open {port}: mock failure")
        self._port = port
        self._baud = baud
        self._is_open = True

    def close(self) -> None:
        self.close_count += 1
        self._is_open = False
        if self._fail_on_close:
            raise TransportError(f"error closing {self._port}: mock failure")

    def is_open(self) -> bool:
        return self._is_open

    def write(self, data: bytes) -> int:
        if not self._is_open:
            raise TransportError("serial port is not open")
        if self._fail_on_write:
            raise TransportError("write failed: mock failure")
        data = bytes(data)
        self._tx.append(data)
        if self._responder is not None:
            reply = self._responder(data)
            if reply:
                self._rx.extend(reply)
        return len(data)

    def read(self, size: int, timeout: float) -> bytes:
        if not self._is_open:
            raise TransportError("serial port is not open")
        self._reads.append((size, timeout))
        chunk = bytes(self._rx[:size])
        del self._rx[:size]
        return chunk

    def read_until(self, expected: bytes, timeout: float) -> bytes:
        if not self._is_open:
            raise TransportError("serial port is not open")
        self._reads.append((-1, timeout))
        idx = self._rx.find(expected)
        end = len(self._rx) if idx < 0 else idx + len(expected)
        chunk = bytes(self._rx[:end])
        del self._rx[:end]
        return chunk

    def drain(self) -> None:
        self.drain_count += 1

    def flush_input(self) -> None:
        self._rx.clear()

    def set_baud(self, baud: int) -> None:
        self._baud = baud
        self._bauds.append(baud)

    @staticmethod
    def list_ports() -> List[PortInfo]:
        return []

    # Test helper methods

    @property
    def baud(self) -> int:
        return self._baud

    @property
    def port(self) -> str:
        return self._port

    def inject_bytes(self, data: bytes) -> None:
        """Append raw bytes to the receive buffer."""
        self._rx.extend(data)

    def pending(self) -> bytes:
        """Bytes still waiting in the receive buffer."""
        return bytes(self._rx)

    def get_sent(self) -> List[bytes]:
        """Get every write() payload, one entry per call."""
        return self._tx.copy()

    def sent_bytes(self) -> bytes:
        """All written bytes concatenated."""
        return b"".join(self._tx)

    def clear_sent(self) -> None:
        self._tx.clear()

    def get_reads(self) -> List[Tuple[int, float]]:
        """(size, timeout) of every read; size is -1 for read_until()."""
        return self._reads.copy()

    def get_baud_changes(self) -> List[int]:
        return self._bauds.copy()

    def set_responder(self, responder: Optional[Responder]) -> None:
        self._responder = responder

    def set_fail_on_open(self, fail: bool) -> None:
        self._fail_on_open = fail

    def set_fail_on_write(self, fail: bool) -> None:
        self._fail_on_write = fail

    def set_fail_on_close(self, fail: bool) -> None:
        self._fail_on_close = fail


class MockClock(ClockInterface):
    """
    Controllable clock for testing.

    sleep() advances time instantly and records the call.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sleep_calls: List[float] = []

    def timestamp(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        self._sleep_calls.append(seconds)
        self._now += seconds

    # Test helper methods

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def get_sleep_calls(self) -> List[float]:
        return self._sleep_calls.copy()

    def clear_sleep_calls(self) -> None:
        self._sleep_calls.clear()


BAUD_MENU = (
    b"Set serial port speed: (bps)\r\n 1. 300\r\n 2. 1200\r\n 3. 2400\r\n"
    b" 4. 4800\r\n 5. 9600\r\n 6. 19200\r\n 7. 38400\r\n 8. 57600\r\n"
    b" 9. 115200\r\n10. BRG raw value\r\n\r\n(9)>"
)
BRG_PROMPT = b"Enter raw value for BRG\r\n\r\n(34)>"
BRG_DONE = b"Adjust your terminal\r\nSpace to continue\r\n"


class FakeBusPirate:
    """
    Byte-level model of Bus Pirate v3 firmware, used as a MockSerialPort
    responder.

    Understands the console baud dialog, the bit-bang commands and the SPI
    sub-mode. Knobs let a test delay the BBIO1 banner, corrupt replies, or
    transform the MISO stream.

    Args:
        banner_after: number of 0x00 bytes needed before BBIO1 is sent.
        miso: maps each MOSI byte to the MISO byte clocked back.
        read_data: bytes returned for the input half of write/read.
        overrides: opcode -> raw reply, replacing the normal answer.
    """

    def __init__(
        self,
        banner_after: int = 1,
        miso: Callable[[int], int] = lambda b: b,
        read_data: Callable[[int], bytes] = lambda n: bytes(n),
        overrides: Optional[Dict[int, bytes]] = None,
    ):
        self.mode = "console"
        self.banner_after = banner_after
        self.miso = miso
        self.read_data = read_data
        self.overrides = dict(overrides or {})
        self.zeros_seen = 0
        self.line = bytearray()
        self.console_step = "prompt"
        self.baud_change: Optional[bytes] = None
        self.power: Optional[bool] = None
        self.pwm: Optional[Tuple[int, int]] = None
        self.cs_high: Optional[bool] = None
        self.peripherals: Optional[int] = None
        self.speed: Optional[int] = None
        self.spi_config: Optional[int] = None
        self.mosi = bytearray()
        self._need = 0
        self._pending_op: Optional[int] = None
        self._args = bytearray()
        self._streaming = False
        self._in_count = 0

    def __call__(self, data: bytes) -> bytes:
        out = bytearray()
        for b in data:
            out.extend(self._feed(b))
        return bytes(out)

    def _reply(self, opcode: int, normal: bytes) -> bytes:
        return self.overrides.get(opcode, normal)

    def _feed(self, b: int) -> bytes:
        if self.mode == "console":
            return self._console(b)
        if self._need:
            self._args.append(b)
            self._need -= 1
            if self._streaming:
                self.mosi.append(b)
                return bytes([self.miso(b) & 0xFF])
            if self._need == 0:
                return self._complete()
            return b""
        if self.mode == "bbio":
            return self._bitbang(b)
        return self._spi(b)

    # console ------------------------------------------------------------

    def _console(self, b: int) -> bytes:
        if b == 0x00:
            self.zeros_seen += 1
            if self.zeros_seen >= self.banner_after:
                self.mode = "bbio"
                return self._reply(0x00, b"BBIO1")
            return b""
        if b != 0x0A:
            self.line.append(b)
            return b""
        line, self.line = bytes(self.line).strip(), bytearray()
        if line == b"b" and self.console_step == "prompt":
            self.console_step = "menu"
            return BAUD_MENU
        if line == b"10" and self.console_step == "menu":
            self.console_step = "brg"
            return BRG_PROMPT
        if self.console_step == "brg" and line.isdigit():
            self.console_step = "prompt"
            self.baud_change = line
            return BRG_DONE
        if line:
            self.console_step = "prompt"
            return b"Syntax error\r\nHiZ>"
        return b"HiZ>"

    # bit-bang -----------------------------------------------------------

    def _bitbang(self, b: int) -> bytes:
        if b == 0x00:
            return self._reply(b, b"BBIO1")
        if b == 0x01:
            reply = self._reply(b, b"SPI1")
            if reply == b"SPI1":
                self.mode = "spi"
            return reply
        if b == 0x0F:
            self.mode = "console"
            self.zeros_seen = 0
            return self._reply(b, b"\x01")
        if b in (0xC0, 0x80):
            self.power = b == 0xC0
            return self._reply(b, b"\x01")
        if b == 0x12:
            self._start(b, 5)
            return b""
        return b""

    # SPI ----------------------------------------------------------------

    def _spi(self, b: int) -> bytes:
        if b == 0x00:
            self.mode = "bbio"
            return self._reply(b, b"")
        if b & 0xFE == 0x02:
            self.cs_high = bool(b & 0x01)
            return self._reply(b, b"\x01")
        if b & 0xF0 == 0x10:
            self._start(b, (b & 0x0F) + 1, streaming=True)
            return self._reply(b, b"\x01")
        if b in (0x04, 0x05):
            self._start(b, 4)
            return b""
        if b & 0xF0 == 0x40:
            self.peripherals = b & 0x0F
            return self._reply(b, b"\x01")
        if b & 0xF8 == 0x60:
            self.speed = b & 0x07
            return self._reply(b, b"\x01")
        if b & 0xF0 == 0x80:
            self.spi_config = b & 0x0F
            return self._reply(b, b"\x01")
        return b""

    # multi-byte commands ------------------------------------------------

    def _start(self, opcode: int, need: int, streaming: bool = False) -> None:
        self._pending_op = opcode
        self._need = need
        self._args = bytearray()
        self._streaming = streaming

    def _complete(self) -> bytes:
        op, args = self._pending_op, bytes(self._args)
        if op == 0x12:
            self.pwm = (int.from_bytes(args[1:3], "big"), int.from_bytes(args[3:5], "big"))
            return self._reply(op, b"\x01")
        if len(args) == 4:
            out_count = int.from_bytes(args[0:2], "big")
            self._in_count = int.from_bytes(args[2:4], "big")
            if out_count:
                self._need = out_count
                return b""
        self.mosi.extend(args[4:])
        self._pending_op = None
        return self._reply(op, b"\x01") + self.read_data(self._in_count)
