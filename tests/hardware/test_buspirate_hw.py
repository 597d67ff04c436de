"""Hardware-in-the-loop tests against a real Bus Pirate v3.

Run with: pytest tests/hardware --hw --bp-device /dev/ttyUSB0

Wire MOSI to MISO so SPI transfers loop back.
"""

from bpbridge import ConnectionState, SpiSpeed


class TestBusPirateHardware:
    def test_binary_mode(self, bus):
        assert bus.state is ConnectionState.BINARY_BITBANG

    def test_power_cycle(self, bus):
        bus.power_on()
        bus.power_off()

    def test_pwm(self, bus):
        bus.set_pwm(0.5)
        bus.set_pwm(0)

    def test_spi_loopback(self, bus):
        with bus.enter_spi() as spi:
            spi.configure_bus(output_3v3=True, idle_high=False, edge_active_to_idle=True, sample_end=False)
            spi.set_speed(SpiSpeed.KHZ_125)
            assert spi.transfer(b"\x5a\xa5") == b"\x5a\xa5"
            assert spi.write_read(b"\x01\x02", 0) == b""

    def test_reenter_binary_mode(self, bus):
        bus.enter_spi()
        bus.enter_binary_mode()
        assert bus.state is ConnectionState.BINARY_BITBANG
