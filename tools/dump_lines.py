"""Show raw counter output and how each line is parsed."""

import sys
import time

from hp_counter_lib import parsing
from hp_counter_lib.errors import InvalidResponse, ReadTimeout, SerialIOError
from hp_counter_lib.transport import Transport


def dump_lines(port="COM1", count=10, timeout_s=20.0):
    """Print ``count`` lines with their decoded value, unit and mode."""

    print(f"\n=== Opening {port} ===")
    try:
        transport = Transport.open(port, timeout_s=timeout_s)
    except SerialIOError as e:
        print(f"Could not open port: {e}")
        return

    try:
        transport.flush_input()
        print(f"\n=== Reading {count} lines (timeout {timeout_s}s each) ===")

        last = time.time()
        for _ in range(count):
            try:
                line = transport.read_line()
            except ReadTimeout:
                print("RX: <timeout>")
                continue

            now = time.time()
            record = parsing.parse_response_line(line)
            try:
                value = parsing.require_value(record)
                decoded = f"{value!r} {record.unit.value} ({record.mode.value})"
            except InvalidResponse:
                decoded = f"no value, unit={record.unit.value} mode={record.mode.value}"
            print(f"RX: {line!r:32} -> {decoded}  dt={now - last:.3f}s")
            last = now
    finally:
        transport.close()
        print("\nPort closed")


if __name__ == "__main__":
    port = sys.argv[1] if len(sys.argv) > 1 else "COM1"
    count = int(sys.argv[2]) if len(sys.argv) > 2 else 10
    dump_lines(port, count)
