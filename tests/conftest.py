"""Shared pytest configuration for bpbridge tests."""

import pytest

from bpbridge.buspirate import BusPirate
from bpbridge.config import DriverConfig
from bpbridge.mocks import FakeBusPirate, MockClock, MockSerialPort
from bpbridge.port_lock import PortLock


def pytest_addoption(parser):
    parser.addoption(
        "--hw",
        action="store_true",
        default=False,
        help="Run hardware-in-the-loop tests (requires a Bus Pirate connected)",
    )
    parser.addoption(
        "--bp-device",
        default="/dev/ttyUSB0",
        help="Serial device of the Bus Pirate used by --hw tests",
    )


@pytest.fixture(autouse=True)
def isolate_lock_dir(tmp_path, monkeypatch):
    """Redirect lock dir to tmp_path for every test."""
    lock_dir = str(tmp_path / "bpbridge-locks")
    monkeypatch.setattr(PortLock, "LOCK_DIR", lock_dir)
    return lock_dir


@pytest.fixture
def config():
    return DriverConfig(lock_port=False)


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def fake():
    return FakeBusPirate()


@pytest.fixture
def port(fake):
    p = MockSerialPort(responder=fake)
    p.open("/dev/ttyUSB0", 115200)
    return p


@pytest.fixture
def bp(port, clock, config):
    """BusPirate already in binary bit-bang mode, sent-log cleared."""
    pirate = BusPirate(port, clock=clock, config=config, device="/dev/ttyUSB0")
    pirate.enter_binary_mode()
    port.clear_sent()
    return pirate


@pytest.fixture
def spi(bp, port):
    session = bp.enter_spi()
    port.clear_sent()
    return session
