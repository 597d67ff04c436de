#!/usr/bin/env python3
"""
Talk to an Arduino SPI slave through a Bus Pirate.

Wiring:

    Arduino Uno       Bus Pirate
    -----------       ----------
    MOSI pin 11       Gray
    MISO pin 12       Black
    SCK  pin 13       Purple
    SS   pin 10       White

Usage:
    python3 examples/spi_example.py
    python3 examples/spi_example.py --device /dev/ttyUSB1 --baud 1000000
"""

import argparse
import logging
import sys
import time

from bpbridge import BusPirate, BusPirateError, SpiSpeed


def default_baud() -> int:
    if sys.platform.startswith("linux"):
        return 2000000
    if sys.platform == "win32":
        return 1000000
    return 115200


def run(device: str, baud: int, pause: float) -> None:
    print(f"opening Bus Pirate on {device} at {baud} baud...")
    with BusPirate.open(device, baud) as bp:
        with bp.enter_spi() as spi:
            print("entered SPI mode")
            spi.set_cs(True)
            spi.set_speed(SpiSpeed.MHZ_1)
            spi.configure_bus(output_3v3=True, idle_high=False, edge_active_to_idle=False, sample_end=False)

            print("sending 16 bytes...")
            spi.set_cs(False)
            time.sleep(pause)
            reply = spi.transfer(bytes(range(1, 17)))
            spi.set_cs(True)
            time.sleep(pause)
            print(list(reply))

            print("sending block mode command...")
            spi.set_cs(False)
            time.sleep(pause)
            reply = spi.transfer(b"\xff")
            spi.set_cs(True)
            time.sleep(pause)
            print(list(reply))

            print("writing/reading a 100 byte block...")
            block = spi.write_read(bytes(range(1, 101)), 100)
            print(list(block))
    print("bye...")


def main():
    parser = argparse.ArgumentParser(description="Bus Pirate SPI master demo")
    parser.add_argument("--device", default="/dev/ttyUSB0", help="Serial device of the Bus Pirate")
    parser.add_argument("--baud", type=int, default=default_baud(), help="Line rate after negotiation")
    parser.add_argument("--pause", type=float, default=1.0, help="Seconds to wait around CS edges")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every byte on the wire")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        run(args.device, args.baud, args.pause)
    except BusPirateError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
