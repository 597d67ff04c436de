"""
Port locking for the Bus Pirate bridge.

Only one process may drive a Bus Pirate at a time: two hosts interleaving
binary commands on the same UART would desynchronize the firmware. A
file lock per device path, held for the lifetime of a connection, keeps
a second process out and tells it who is in the way.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, List

import portalocker

from .config import run_dir
from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class PortOwner:
    """Information about the current port owner."""
    pid: int
    process_name: str
    started: datetime
    port: str
    lock_file: str


class PortLock:
    """
    File-based port lock with contention detection.

    Usage:
        lock = PortLock("/dev/ttyUSB0")
        if lock.acquire():
            # Use the port
            lock.release()
        else:
            print(f"Port in use by: {lock.get_owner()}")
    """

    LOCK_DIR = os.path.join(run_dir(), "bpbridge-locks")

    def __init__(self, port: str):
        self._port = port
        self._lock_fd = None
        self._lock_path = self._get_lock_path(port)
        self._info_path = self._lock_path + ".info"

    @property
    def port(self) -> str:
        return self._port

    @property
    def held(self) -> bool:
        return self._lock_fd is not None

    @staticmethod
    def _get_lock_path(port: str) -> str:
        """Convert port path to lock file path."""
        # /dev/ttyUSB0 -> /tmp/bpbridge-locks/_dev_ttyUSB0.lock, COM3 -> COM3.lock
        safe_name = port.replace("/", "_").replace("\\", "_").replace(":", "_")
        return os.path.join(PortLock.LOCK_DIR, f"{safe_name}.lock")

    def acquire(self) -> bool:
        """
        Acquire the port lock without waiting.

        The OS drops the lock when its holder exits, so a failed attempt
        always means a live holder, whatever the owner file says.

        Returns:
            True if lock acquired, False if another holder has it
        """
        Path(self.LOCK_DIR).mkdir(parents=True, exist_ok=True)
        try:
            self._lock_fd = open(self._lock_path, "a")
            portalocker.lock(self._lock_fd, portalocker.LOCK_EX | portalocker.LOCK_NB)
        except (portalocker.LockException, OSError):
            if self._lock_fd:
                self._lock_fd.close()
                self._lock_fd = None

            owner = self.get_owner()
            if owner:
                logger.warning(
                    "Port %s locked by PID %d (%s) since %s",
                    self._port, owner.pid, owner.process_name, owner.started,
                )
            else:
                logger.warning("Port %s locked by unknown process", self._port)
            return False

        self._write_owner_info()
        logger.debug("Acquired lock for %s", self._port)
        return True

    def release(self) -> None:
        """Release the port lock. Safe to call when not held."""
        if self._lock_fd is None:
            return
        try:
            os.unlink(self._info_path)
        except OSError:
            pass
        try:
            portalocker.unlock(self._lock_fd)
        except (portalocker.LockException, OSError) as e:
            raise TransportError(f"cannot unlock {self._port}: {e}") from e
        finally:
            self._lock_fd.close()
            self._lock_fd = None
        logger.debug("Released lock for %s", self._port)

    def get_owner(self) -> Optional[PortOwner]:
        """Get information about the current lock owner."""
        return _read_owner(Path(self._info_path), self._lock_path)

    def _write_owner_info(self) -> None:
        info = {
            "pid": os.getpid(),
            "process_name": " ".join(sys.argv[:3])[:50] or f"python:{os.getpid()}",
            "started": datetime.now().isoformat(),
            "port": self._port,
        }
        # Atomic write to avoid corrupt JSON on crash.
        tmp_path = f"{self._info_path}.tmp.{os.getpid()}"
        with open(tmp_path, "w") as f:
            json.dump(info, f, indent=2)
        os.replace(tmp_path, self._info_path)

    @staticmethod
    def _is_process_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
            return True
        except PermissionError:
            # Exists but belongs to someone else.
            return True
        except (ProcessLookupError, OSError):
            return False

    def __enter__(self):
        if not self.acquire():
            raise TransportError(f"Could not acquire lock for {self._port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def _read_owner(info_path: Path, lock_file: str) -> Optional[PortOwner]:
    try:
        info = json.loads(info_path.read_text(encoding="utf-8"))
        return PortOwner(
            pid=int(info["pid"]),
            process_name=info["process_name"],
            started=datetime.fromisoformat(info["started"]),
            port=info["port"],
            lock_file=lock_file,
        )
    except (OSError, ValueError, KeyError):
        return None


def list_all_locks() -> List[PortOwner]:
    """List port locks held by live processes."""
    lock_dir = Path(PortLock.LOCK_DIR)
    if not lock_dir.exists():
        return []

    locks = []
    for info_file in sorted(lock_dir.glob("*.lock.info")):
        owner = _read_owner(info_file, str(info_file)[: -len(".info")])
        if owner and PortLock._is_process_alive(owner.pid):
            locks.append(owner)
    return locks
