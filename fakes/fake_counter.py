"""Fake serial port that simulates a counter in talk-only mode.

The simulated counter produces lines on demand: each readline() waits one
gate period and returns the next scripted line, so no input is ever pending
and reset_input_buffer() discards nothing. Script entries of None simulate a
read timeout.
"""

import logging
import random
import threading
import time
from collections import deque
from typing import Callable, Deque, Iterable, Optional

from hp_counter_lib import protocol

logger = logging.getLogger(__name__)

LineFactory = Callable[[], str]


class FakeCounterSerial:
    """Deterministic simulator of an HP 5313x counter on a serial port.

    Implements:
    - Scripted response lines, optionally repeated
    - Endless generated lines once the script is exhausted (line_factory)
    - Read timeouts (None entries, or exhausted script without factory)
    - A hold/release gate to keep readline() blocked, like a long gate time
    - Exact line terminator (CRLF)
    """

    def __init__(
        self,
        lines: Optional[Iterable[Optional[str]]] = None,
        period_s: float = 0.0,
        timeout: float = 0.2,
        repeat: bool = False,
        line_factory: Optional[LineFactory] = None,
    ) -> None:
        """Initialize fake counter.

        Args:
            lines: Scripted lines without terminator. None entries time out.
            period_s: Simulated gate period, slept before each line
            timeout: Simulated port read timeout
            repeat: Cycle through the script forever
            line_factory: Produces lines after the script is exhausted
        """
        self._script: Deque[Optional[str]] = deque(lines or [])
        self._script_lock = threading.Lock()
        self.period_s = period_s
        self.timeout = timeout
        self.repeat = repeat
        self.line_factory = line_factory

        # Port state
        self.is_open = True
        self.read_count = 0
        self.flush_count = 0

        # Hold gate: readline() blocks while cleared
        self._released = threading.Event()
        self._released.set()
        self._blocked = threading.Event()

    @classmethod
    def frequency_stream(
        cls,
        frequency_hz: float = 10.0e6,
        jitter_hz: float = 0.5,
        period_s: float = 0.05,
    ) -> "FakeCounterSerial":
        """Counter in frequency mode printing e.g. "+1.000000000E+07 Hz"."""

        def make_line() -> str:
            value = frequency_hz + random.uniform(-jitter_hz, jitter_hz)
            return f"{value:+.9E} Hz"

        return cls(period_s=period_s, line_factory=make_line)

    @classmethod
    def totalize_stream(
        cls,
        counts_per_gate: int = 1_000_000,
        period_s: float = 0.05,
    ) -> "FakeCounterSerial":
        """Counter in totalize mode printing grouped bare counts, e.g. "1,000,000"."""

        def make_line() -> str:
            return f"{counts_per_gate:,d}"

        return cls(period_s=period_s, line_factory=make_line)

    def push_line(self, text: Optional[str]) -> None:
        """Append a line (or a timeout, for None) to the script."""
        with self._script_lock:
            self._script.append(text)

    def hold(self) -> None:
        """Block subsequent readline() calls until release()."""
        self._released.clear()

    def release(self) -> None:
        """Let a held readline() produce its line."""
        self._released.set()

    def wait_until_blocked(self, timeout: float = 2.0) -> bool:
        """Wait until a readline() call is stuck in hold."""
        return self._blocked.wait(timeout=timeout)

    def close(self) -> None:
        """Close the fake serial port."""
        self.is_open = False
        logger.debug("FakeCounterSerial closed")

    def readline(self) -> bytes:
        """Read one line from the counter.

        Returns:
            Line as bytes with CRLF terminator, or b"" on timeout
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")

        self.read_count += 1

        if not self._released.is_set():
            self._blocked.set()
            try:
                while not self._released.wait(timeout=0.05):
                    if not self.is_open:
                        raise RuntimeError("Port closed during read")
            finally:
                self._blocked.clear()

        line = self._next_line()
        if line is None:
            time.sleep(self.timeout)
            return b""

        if self.period_s > 0:
            time.sleep(self.period_s)

        logger.debug(f"FakeCounterSerial sending line: {line!r}")
        return line.encode("ascii") + protocol.OUTPUT_TERMINATOR

    def reset_input_buffer(self) -> None:
        """Flush input buffer (lines are generated on demand, nothing pending)."""
        self.flush_count += 1
        logger.debug("FakeCounterSerial input buffer flushed")

    def _next_line(self) -> Optional[str]:
        with self._script_lock:
            if self._script:
                line = self._script.popleft()
                if self.repeat:
                    self._script.append(line)
                return line

        if self.line_factory is not None:
            return self.line_factory()
        return None
