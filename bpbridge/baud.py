"""Console baud rate negotiation.

The Bus Pirate v3 powers up at 115200 baud. Faster rates are set from the
text console with the ``b`` menu, option ``10`` (raw BRG divisor)::

    HiZ> b
    Set serial port speed: (bps)
     ...
    10. BRG raw value
    (9)> 10
    Enter raw value for BRG
    (34)> 3
    Adjust your terminal
    Space to continue

The device switches rate as soon as it prints the last prompt, so the host
must follow with :func:`finish_switch` before anything else is sent.
A failed dialog is not retried: the console is left mid-menu and only a
device reset brings it back.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from .codec import (
    BAUD_MENU_MARKER,
    BRG_DONE_MARKER,
    BRG_PROMPT_MARKER,
    BRG_TOKENS,
    BaudRate,
)
from .errors import (
    InvalidArgument,
    NegotiationFailed,
    ProtocolMismatch,
    ReplyTimeout,
    UnsupportedPlatform,
)
from .interfaces import ClockInterface, SerialPortInterface

logger = logging.getLogger(__name__)

DEFAULT_BAUD = BaudRate.B115200


def check_baud(baud: int, platform: Optional[str] = None) -> BaudRate:
    """Return the BaudRate for `baud` or raise if this host cannot use it."""
    try:
        rate = BaudRate(baud)
    except ValueError:
        supported = ", ".join(str(int(r)) for r in BaudRate)
        raise InvalidArgument(f"unsupported baud rate {baud} (supported: {supported})") from None
    host = sys.platform if platform is None else platform
    if rate is BaudRate.B2000000 and host == "win32":
        raise UnsupportedPlatform("2000000 baud is not supported on Windows")
    return rate


def negotiate(
    port: SerialPortInterface,
    target_baud: int,
    *,
    platform: Optional[str] = None,
    timeout: float = 2.0,
) -> bool:
    """Ask the device to switch to `target_baud`.

    Args:
        port: Open port, still at 115200 and talking to the text console.
        target_baud: One of the BaudRate values.
        platform: Override for ``sys.platform`` (tests).
        timeout: Seconds to wait for each console prompt.

    Returns:
        True if the device was told to change rate, False when the target
        is already the default and nothing was sent.

    Raises:
        InvalidArgument: `target_baud` is not a supported rate.
        UnsupportedPlatform: 2000000 requested on Windows.
        NegotiationFailed: a prompt did not appear; ``step`` says which.
    """
    rate = check_baud(target_baud, platform)
    if rate is DEFAULT_BAUD:
        return False

    dialog = (
        (b"b\n", BAUD_MENU_MARKER),
        (b"10\n", BRG_PROMPT_MARKER),
        (BRG_TOKENS[rate], BRG_DONE_MARKER),
    )
    for step, (line, marker) in enumerate(dialog, start=1):
        _round_trip(port, step, line, marker, timeout)

    logger.info("device switched to %d baud", int(rate))
    return True


def _round_trip(port: SerialPortInterface, step: int, line: bytes, marker: bytes, timeout: float) -> None:
    logger.debug("console step %d tx %r", step, line)
    port.write(line)
    port.drain()
    reply = port.read_until(marker, timeout)
    logger.debug("console step %d rx %r", step, reply)
    if marker in reply:
        return
    if not reply:
        cause: ProtocolMismatch = ReplyTimeout(
            f"no console reply within {timeout}s", expected_len=len(marker)
        )
    else:
        cause = ProtocolMismatch(
            f"console reply lacks {marker!r}", expected=marker, received=reply
        )
    raise NegotiationFailed(step, f"expected {marker.decode()!r}, got {reply!r}") from cause


def finish_switch(
    port: SerialPortInterface,
    baud: int,
    clock: ClockInterface,
    settle: float = 0.010,
) -> None:
    """Move the host side to `baud` and confirm with a space."""
    port.set_baud(int(baud))
    port.write(b" ")
    port.drain()
    clock.sleep(settle)
    logger.debug("host switched to %d baud", int(baud))
