"""Tests for bpbridge/buspirate.py: connection lifecycle and bit-bang commands."""

import os

import pytest

from bpbridge.buspirate import BusPirate, connect
from bpbridge.config import DriverConfig
from bpbridge.errors import (
    BinaryModeEntryFailed,
    InvalidArgument,
    InvalidState,
    LeaveBinaryModeFailed,
    NegotiationFailed,
    PowerControlFailed,
    PwmConfigFailed,
    ReplyTimeout,
    SpiEntryFailed,
    TransportError,
    UnsupportedPlatform,
)
from bpbridge.interfaces import ConnectionState
from bpbridge.mocks import FakeBusPirate, MockClock, MockSerialPort
from bpbridge.port_lock import PortLock


def make_bus(fake=None, config=None, clock=None):
    port = MockSerialPort(responder=fake if fake is not None else FakeBusPirate())
    port.open("/dev/ttyUSB0", 115200)
    bus = BusPirate(port, clock=clock or MockClock(), config=config or DriverConfig(lock_port=False),
                    device="/dev/ttyUSB0")
    return bus, port


def zero_writes(port):
    return [w for w in port.get_sent() if w == b"\x00"]


class TestEnterBinaryMode:
    def test_starts_in_console(self):
        bus, _ = make_bus()
        assert bus.state is ConnectionState.TEXT_CONSOLE

    def test_closed_port_means_closed_state(self):
        assert BusPirate(MockSerialPort()).state is ConnectionState.CLOSED

    def test_newline_prefix_then_reset(self):
        bus, port = make_bus()
        bus.enter_binary_mode()
        sent = port.get_sent()
        assert sent[0] == b"\n" * 10
        assert sent[1] == b"\x00"
        assert bus.state is ConnectionState.BINARY_BITBANG

    @pytest.mark.parametrize("k", [1, 2, 7, 30])
    def test_banner_on_kth_attempt(self, k):
        clock = MockClock()
        bus, port = make_bus(FakeBusPirate(banner_after=k), clock=clock)
        bus.enter_binary_mode()
        assert len(zero_writes(port)) == k
        assert clock.get_sleep_calls() == [0.010] * (k - 1)
        assert bus.state is ConnectionState.BINARY_BITBANG

    def test_each_attempt_reads_five_bytes_briefly(self):
        bus, port = make_bus(FakeBusPirate(banner_after=3))
        bus.enter_binary_mode()
        assert port.get_reads() == [(5, 0.010)] * 3

    def test_gives_up_after_thirty(self):
        bus, port = make_bus(FakeBusPirate(banner_after=31))
        with pytest.raises(BinaryModeEntryFailed) as exc_info:
            bus.enter_binary_mode()
        assert len(zero_writes(port)) == 30
        assert exc_info.value.timed_out
        assert bus.state is ConnectionState.TEXT_CONSOLE

    def test_attempt_budget_from_config(self):
        bus, port = make_bus(FakeBusPirate(banner_after=99),
                             config=DriverConfig(lock_port=False, entry_attempts=5))
        with pytest.raises(BinaryModeEntryFailed):
            bus.enter_binary_mode()
        assert len(zero_writes(port)) == 5

    def test_garbled_banner_is_mismatch(self):
        bus, _ = make_bus(FakeBusPirate(overrides={0x00: b"BBIO2"}))
        with pytest.raises(BinaryModeEntryFailed) as exc_info:
            bus.enter_binary_mode()
        assert not exc_info.value.timed_out
        assert exc_info.value.__cause__.received == b"BBIO2"

    def test_reentry_from_bitbang_is_idempotent(self, bp, port):
        bp.enter_binary_mode()
        assert bp.state is ConnectionState.BINARY_BITBANG
        assert len(zero_writes(port)) == 1

    def test_reentry_from_spi_invalidates_session(self, bp, spi):
        bp.enter_binary_mode()
        assert bp.state is ConnectionState.BINARY_BITBANG
        assert not spi.active
        assert bp.spi is None
        with pytest.raises(InvalidState):
            spi.set_cs(True)

    def test_transport_error_propagates(self):
        bus, port = make_bus()
        port.set_fail_on_write(True)
        with pytest.raises(TransportError):
            bus.enter_binary_mode()


class TestPowerAndPwm:
    def test_power_on_off(self, bp, port, fake):
        bp.power_on()
        assert fake.power is True
        bp.power_off()
        assert fake.power is False
        assert port.get_sent() == [b"\xc0", b"\x80"]

    def test_power_accepts_any_status_byte(self, bp, fake):
        fake.overrides[0xC0] = b"\x00"
        bp.power_on()

    def test_power_without_reply(self, bp, fake):
        fake.overrides[0x80] = b""
        with pytest.raises(PowerControlFailed) as exc_info:
            bp.power_off()
        assert exc_info.value.timed_out

    def test_power_each_command_drains(self, bp, port):
        before = port.drain_count
        bp.power_on()
        assert port.drain_count == before + 1

    def test_pwm(self, bp, fake):
        bp.set_pwm(0.5)
        assert fake.pwm == (round(0x3E7F * 0.5), 0x3E7F)

    def test_pwm_clamps(self, bp, fake):
        bp.set_pwm(-1)
        assert fake.pwm == (0, 0x3E7F)
        bp.set_pwm(2)
        assert fake.pwm == (0x3E7F, 0x3E7F)

    def test_pwm_single_write_of_six_bytes(self, bp, port):
        bp.set_pwm(0.25)
        sent = port.get_sent()
        assert len(sent) == 1
        assert len(sent[0]) == 6

    def test_pwm_nan_sends_nothing(self, bp, port):
        with pytest.raises(InvalidArgument):
            bp.set_pwm(float("nan"))
        assert port.get_sent() == []

    def test_pwm_no_ack(self, bp, fake):
        fake.overrides[0x12] = b""
        with pytest.raises(PwmConfigFailed):
            bp.set_pwm(0.1)

    def test_power_needs_bitbang(self, bp, spi):
        with pytest.raises(InvalidState):
            bp.power_on()

    def test_commands_rejected_in_console(self):
        bus, port = make_bus()
        with pytest.raises(InvalidState):
            bus.power_on()
        with pytest.raises(InvalidState):
            bus.enter_spi()
        assert port.get_sent() == []


class TestSpiEntry:
    def test_enter_spi(self, bp, port):
        session = bp.enter_spi()
        assert bp.state is ConnectionState.BINARY_SPI
        assert bp.spi is session
        assert session.active
        assert port.get_sent() == [b"\x01"]
        assert port.get_reads()[-1] == (4, 2.0)

    def test_wrong_banner_stays_in_bitbang(self, bp, fake):
        fake.overrides[0x01] = b"SPI2"
        with pytest.raises(SpiEntryFailed):
            bp.enter_spi()
        assert bp.state is ConnectionState.BINARY_BITBANG
        assert bp.spi is None

    def test_silent_device(self, bp, fake):
        fake.overrides[0x01] = b"SP"
        with pytest.raises(SpiEntryFailed) as exc_info:
            bp.enter_spi()
        assert isinstance(exc_info.value.__cause__, ReplyTimeout)

    def test_leave_spi_reads_nothing(self, bp, spi, port, fake):
        reads = len(port.get_reads())
        spi.leave()
        assert port.get_sent() == [b"\x00"]
        assert len(port.get_reads()) == reads
        assert bp.state is ConnectionState.BINARY_BITBANG
        assert fake.mode == "bbio"
        assert not spi.active

    def test_leave_spi_drops_stray_banner(self, bp, spi, port, fake):
        fake.overrides[0x00] = b"BBIO1"
        spi.leave()
        assert port.pending() == b""
        bp.power_on()

    def test_leave_spi_waits_for_late_banner(self, bp, spi, port, clock):
        # The banner shows up while the driver waits, not during the write.
        def late_banner(seconds):
            port.inject_bytes(b"BBIO1")

        clock.sleep = late_banner
        spi.leave()
        assert port.pending() == b""
        bp.power_on()

    def test_leave_spi_settle_time(self, bp, spi, clock):
        clock.clear_sleep_calls()
        spi.leave()
        assert clock.get_sleep_calls() == [bp.config.entry_read_timeout]

    def test_leave_twice_is_noop(self, bp, spi, port):
        spi.leave()
        spi.leave()
        assert port.get_sent() == [b"\x00"]

    def test_stale_session_cannot_leave_new_one(self, bp, spi):
        spi.leave()
        fresh = bp.enter_spi()
        with pytest.raises(InvalidState):
            bp._leave_spi(spi)
        assert fresh.active


class TestLeaveBinaryMode:
    def test_leave(self, bp, port, fake):
        bp.leave_binary_mode()
        assert port.get_sent() == [b"\x0f"]
        assert bp.state is ConnectionState.CLOSED
        assert not port.is_open()
        assert fake.mode == "console"

    def test_no_ack_still_releases(self, bp, port, fake):
        fake.overrides[0x0F] = b""
        with pytest.raises(LeaveBinaryModeFailed):
            bp.leave_binary_mode()
        assert bp.state is ConnectionState.CLOSED
        assert not port.is_open()

    def test_close_error_is_only_logged(self, bp, port, caplog):
        port.set_fail_on_close(True)
        bp.leave_binary_mode()
        assert bp.state is ConnectionState.CLOSED
        assert "mock failure" in caplog.text

    def test_requires_bitbang(self, bp, spi):
        with pytest.raises(InvalidState):
            bp.leave_binary_mode()

    def test_commands_after_close_rejected(self, bp):
        bp.leave_binary_mode()
        with pytest.raises(InvalidState):
            bp.power_on()
        with pytest.raises(InvalidState):
            bp.enter_binary_mode()


class TestClose:
    def test_close_is_idempotent(self, bp, port):
        bp.close()
        bp.close()
        assert port.close_count == 1
        assert bp.state is ConnectionState.CLOSED

    def test_close_sends_nothing(self, bp, port):
        bp.close()
        assert port.get_sent() == []

    def test_close_invalidates_spi(self, bp, spi):
        bp.close()
        assert not spi.active

    def test_lock_release_error_is_only_logged(self, port, clock, caplog, monkeypatch):
        lock = PortLock("/dev/ttyUSB0")
        assert lock.acquire()

        def broken_release():
            raise TransportError("unlock failed")

        monkeypatch.setattr(lock, "release", broken_release)
        bus = BusPirate(port, clock=clock, config=DriverConfig(lock_port=False),
                        device="/dev/ttyUSB0", lock=lock)
        bus.close()
        assert bus.state is ConnectionState.CLOSED
        assert not port.is_open()
        assert "unlock failed" in caplog.text
        bus.close()
        PortLock.release(lock)

    def test_context_manager_orderly_exit(self, bp, port, fake):
        with bp:
            session = bp.enter_spi()
        assert port.get_sent() == [b"\x01", b"\x00", b"\x0f"]
        assert not session.active
        assert bp.state is ConnectionState.CLOSED
        assert fake.mode == "console"

    def test_context_manager_keeps_original_exception(self, bp, port, fake):
        fake.overrides[0x0F] = b""
        with pytest.raises(KeyError):
            with bp:
                raise KeyError("boom")
        assert not port.is_open()

    def test_context_manager_raises_teardown_error(self, bp, fake):
        fake.overrides[0x0F] = b""
        with pytest.raises(LeaveBinaryModeFailed):
            with bp:
                pass
        assert bp.state is ConnectionState.CLOSED

    def test_repr(self, bp):
        assert repr(bp) == "BusPirate(device='/dev/ttyUSB0', state=binary_bitbang)"


class TestOpen:
    def test_open_default_baud(self, clock, config):
        port = MockSerialPort(responder=FakeBusPirate())
        bus = BusPirate.open("/dev/ttyUSB0", port=port, clock=clock, config=config)
        assert bus.state is ConnectionState.BINARY_BITBANG
        assert port.port == "/dev/ttyUSB0"
        assert port.baud == 115200
        assert port.get_baud_changes() == []
        bus.close()

    def test_open_negotiates_baud(self, clock, config):
        fake = FakeBusPirate()
        port = MockSerialPort(responder=fake)
        bus = BusPirate.open("/dev/ttyUSB0", 1000000, port=port, clock=clock,
                             config=config, platform="linux")
        assert fake.baud_change == b"3"
        assert port.get_baud_changes() == [1000000]
        sent = port.get_sent()
        assert sent[:4] == [b"b\n", b"10\n", b"3\n", b" "]
        assert bus.state is ConnectionState.BINARY_BITBANG
        bus.close()

    def test_open_windows_2m_never_opens(self, clock, config):
        port = MockSerialPort(responder=FakeBusPirate())
        with pytest.raises(UnsupportedPlatform):
            BusPirate.open("COM3", 2000000, port=port, clock=clock, config=config,
                           platform="win32")
        assert not port.is_open()
        assert port.get_sent() == []

    def test_open_rejects_bad_baud(self, clock, config):
        port = MockSerialPort()
        with pytest.raises(InvalidArgument):
            BusPirate.open("/dev/ttyUSB0", 9600, port=port, clock=clock, config=config)
        assert port.get_sent() == []

    def test_open_failure_propagates(self, clock, config):
        port = MockSerialPort()
        port.set_fail_on_open(True)
        with pytest.raises(TransportError):
            BusPirate.open("/dev/ttyUSB0", port=port, clock=clock, config=config)

    def test_entry_failure_closes_port(self, clock, config):
        port = MockSerialPort(responder=FakeBusPirate(banner_after=100))
        with pytest.raises(BinaryModeEntryFailed):
            BusPirate.open("/dev/ttyUSB0", port=port, clock=clock, config=config)
        assert not port.is_open()

    def test_negotiation_failure_closes_port_and_lock(self, clock):
        port = MockSerialPort()
        with pytest.raises(NegotiationFailed):
            BusPirate.open("/dev/ttyUSB0", 500000, port=port, clock=clock,
                           config=DriverConfig(), platform="linux")
        assert not port.is_open()
        lock = PortLock("/dev/ttyUSB0")
        assert lock.acquire()
        lock.release()

    def test_lock_held_for_connection(self, clock):
        port = MockSerialPort(responder=FakeBusPirate())
        bus = BusPirate.open("/dev/ttyUSB0", port=port, clock=clock, config=DriverConfig())
        owner = PortLock("/dev/ttyUSB0").get_owner()
        assert owner is not None
        assert owner.port == "/dev/ttyUSB0"
        bus.close()
        assert PortLock("/dev/ttyUSB0").get_owner() is None

    def test_lock_contention(self, clock):
        holder = PortLock("/dev/ttyUSB0")
        assert holder.acquire()
        port = MockSerialPort(responder=FakeBusPirate())
        with pytest.raises(TransportError, match=f"PID {os.getpid()}"):
            BusPirate.open("/dev/ttyUSB0", port=port, clock=clock, config=DriverConfig())
        assert not port.is_open()
        assert port.get_sent() == []
        assert holder.held
        holder.release()

    def test_second_connection_refused_while_first_open(self, clock):
        first = BusPirate.open("/dev/ttyUSB0", port=MockSerialPort(responder=FakeBusPirate()),
                               clock=clock, config=DriverConfig())
        with pytest.raises(TransportError):
            BusPirate.open("/dev/ttyUSB0", port=MockSerialPort(responder=FakeBusPirate()),
                           clock=clock, config=DriverConfig())
        first.close()
        second = BusPirate.open("/dev/ttyUSB0", port=MockSerialPort(responder=FakeBusPirate()),
                                clock=clock, config=DriverConfig())
        second.close()

    def test_config_from_env(self, clock, monkeypatch):
        monkeypatch.setenv("BPBRIDGE_LOCK_PORT", "0")
        monkeypatch.setenv("BPBRIDGE_REPLY_TIMEOUT", "0.5")
        port = MockSerialPort(responder=FakeBusPirate())
        bus = BusPirate.open("/dev/ttyUSB0", port=port, clock=clock)
        assert bus.config.reply_timeout == 0.5
        assert PortLock("/dev/ttyUSB0").get_owner() is None
        bus.close()

    def test_connect_shorthand(self, clock, config):
        port = MockSerialPort(responder=FakeBusPirate())
        with connect("/dev/ttyUSB0", port=port, clock=clock, config=config) as bus:
            bus.power_on()
        assert not port.is_open()
