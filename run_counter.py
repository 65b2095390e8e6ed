#!/usr/bin/env python3
"""
Console demo: stream counter readings until Enter is pressed or the
measurement loop finishes (with --samples).

Prints "<seconds since start>  <value>" for every sample, "Timeout" when a
read produced no value and "Loop ready" when the measurement loop exits.
"""

import argparse
import logging
import math
import os
import sys
import threading

from hp_counter_lib import CounterController, CounterEvent, MeasurementMode


def on_updated(counter: CounterController) -> None:
    elapsed = (counter.sample_time - counter.init_time).total_seconds()
    if counter.measurement_mode == MeasurementMode.TOTALIZE:
        counter.convert_totalize_to_frequency()
    value = counter.last_value
    text = "nan" if math.isnan(value) else f"{value:.10g}"
    print(f"{elapsed:10.3f}  {text} {counter.unit.value}")


def on_timeout(counter: CounterController) -> None:
    print("Timeout")


def on_ready(counter: CounterController) -> None:
    print("Loop ready")


def wait_for_enter(done: threading.Event) -> None:
    try:
        input()
    except EOFError:
        pass
    done.set()


def main() -> int:
    parser = argparse.ArgumentParser(description="Stream readings from a 5313x counter")
    parser.add_argument("--port", default=os.getenv("COUNTER_PORT", "COM1"), help="Serial port")
    parser.add_argument("--baud", type=int, default=9600, help="Baud rate")
    parser.add_argument("--samples", type=int, default=None, help="Stop after N valid samples")
    parser.add_argument("--estimate", action="store_true", help="Estimate gate time before streaming")
    parser.add_argument("--totalize", action="store_true", help="Convert totalize counts to Hz")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"))
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print("=" * 70)
    print("Counter stream")
    print("=" * 70)

    counter = CounterController(args.port, baud=args.baud)
    if not counter.connect():
        print(f"Could not open {args.port}")
        return 1
    print(f"Instrument: {counter.instrument_id}")

    try:
        if args.totalize:
            counter.force_totalize_mode()
        if args.estimate:
            print("Estimating gate time...")
            gate_time = counter.estimate_gate_time()
            print(f"Gate time: {gate_time.value} ({counter.gate_time_s}s)")

        counter.events.subscribe(CounterEvent.UPDATED, on_updated)
        counter.events.subscribe(CounterEvent.TIMEOUT, on_timeout)
        counter.events.subscribe(CounterEvent.READY, on_ready)

        done = threading.Event()
        counter.events.subscribe(CounterEvent.READY, lambda c: done.set())
        if counter.run_background(args.samples):
            print("Press Enter to stop (may take up to one gate period).")
            threading.Thread(target=wait_for_enter, args=(done,), daemon=True).start()
            try:
                while not done.wait(timeout=0.2):
                    pass
            except KeyboardInterrupt:
                pass

        counter.request_stop()
        counter.join()
    finally:
        counter.disconnect()
        print("Disconnected.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
