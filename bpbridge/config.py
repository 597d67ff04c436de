"""Driver timing configuration.

Defaults match what the Bus Pirate v3 firmware needs. Every field can be
overridden from the environment (``BPBRIDGE_*``), which is handy when a slow
USB hub or a long bulk read needs more headroom.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

from .errors import InvalidArgument

ENV_PREFIX = "BPBRIDGE_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class DriverConfig:
    """Timeouts and attempt budgets for one connection.

    Attributes:
        reply_timeout: Seconds to wait for a normal command reply.
        bulk_timeout: Seconds to wait for the input half of a write/read.
        console_timeout: Seconds to wait for each text console prompt.
        entry_attempts: 0x00 bytes sent before giving up on BBIO1.
        entry_interval: Pause between failed handshake attempts.
        entry_read_timeout: How long each handshake attempt waits for BBIO1.
        baud_settle: Pause after switching the local baud rate.
        lock_port: Take a cross-process lock on the device path.
    """

    reply_timeout: float = 2.0
    bulk_timeout: float = 60.0
    console_timeout: float = 2.0
    entry_attempts: int = 30
    entry_interval: float = 0.010
    entry_read_timeout: float = 0.010
    baud_settle: float = 0.010
    lock_port: bool = True

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DriverConfig":
        """Build a config from defaults plus any ``BPBRIDGE_*`` overrides."""
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = _parse(f.name, f.type, raw.strip())
        return replace(cls(), **overrides)

    def validate(self) -> None:
        if self.entry_attempts < 1:
            raise InvalidArgument(f"entry_attempts must be >= 1, got {self.entry_attempts}")
        for name in ("reply_timeout", "bulk_timeout", "console_timeout",
                     "entry_interval", "entry_read_timeout", "baud_settle"):
            if getattr(self, name) < 0:
                raise InvalidArgument(f"{name} must not be negative")


def _parse(name: str, type_name, raw: str):
    # Annotations are strings under `from __future__ import annotations`.
    kind = getattr(type_name, "__name__", type_name)
    try:
        if kind == "bool":
            lowered = raw.lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(raw)
        if kind == "int":
            return int(raw, 0)
        return float(raw)
    except ValueError:
        raise InvalidArgument(f"{ENV_PREFIX}{name.upper()}: invalid {kind} value {raw!r}") from None


def run_dir() -> str:
    """Directory for lock files."""
    return os.environ.get(ENV_PREFIX + "RUN_DIR", "/tmp")
