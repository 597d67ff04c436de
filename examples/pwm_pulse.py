#!/usr/bin/env python3
"""
Pulse an LED connected to the Bus Pirate AUX pin until interrupted.

Usage:
    python3 examples/pwm_pulse.py --device /dev/ttyACM0
"""

import argparse
import sys
import time

from bpbridge import BusPirate, BusPirateError


def pulse(bp: BusPirate, step: float = 0.1, period: float = 0.05) -> None:
    duty, delta = step, step
    while True:
        bp.set_pwm(duty)
        time.sleep(period)
        duty += delta
        if duty > 1.0:
            duty, delta = 1.0, -delta
        elif duty < 0.0:
            duty, delta = 0.0, -delta


def main():
    parser = argparse.ArgumentParser(description="Fade a LED on the AUX pin")
    parser.add_argument("--device", default="/dev/ttyACM0")
    parser.add_argument("--step", type=float, default=0.1, help="Duty change per tick")
    args = parser.parse_args()

    try:
        with BusPirate.open(args.device) as bp:
            try:
                pulse(bp, args.step)
            except KeyboardInterrupt:
                bp.set_pwm(0)
    except BusPirateError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
