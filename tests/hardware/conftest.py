"""HIL fixtures for Bus Pirate hardware tests.

Tests skip unless pytest runs with ``--hw``. The device path comes from
``--bp-device``.
"""

from __future__ import annotations

import logging

import pytest

from bpbridge import BusPirate, DriverConfig

logger = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def skip_without_hw(request):
    if not request.config.getoption("--hw", default=False):
        pytest.skip("requires --hw flag and a connected Bus Pirate")


@pytest.fixture
def device(request) -> str:
    return request.config.getoption("--bp-device")


@pytest.fixture
def bus(device):
    """Bus Pirate in binary mode; returned to the text console afterwards."""
    logger.info("opening Bus Pirate on %s", device)
    with BusPirate.open(device, config=DriverConfig(lock_port=False)) as bp:
        yield bp
