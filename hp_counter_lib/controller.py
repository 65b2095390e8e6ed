"""High-level controller for a serial counter with state management."""

import logging
import math
import sys
import threading
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Tuple

from hp_counter_lib import parsing, protocol
from hp_counter_lib.errors import SerialIOError
from hp_counter_lib.events import EventChannel
from hp_counter_lib.gate_time import GateTimeEstimator, classify_interval, gate_time_seconds
from hp_counter_lib.models import (
    ConnectionState,
    CounterEvent,
    GateTime,
    InstrumentIdentity,
    MeasureMode,
    MeasurementMode,
    MeasurementRecord,
    UnitSymbol,
)
from hp_counter_lib.transport import SerialLike, Transport
from hp_counter_lib.worker import LoopWorker

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Max seconds disconnect() waits for the worker to notice the closed port
DISCONNECT_JOIN_TIMEOUT_S = 2.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CounterController:
    """High-level controller orchestrating counter sampling.

    Owns the transport, the most recent record, the mode and gate time
    configuration, and the measurement loop (foreground or one background
    worker). Subscribers on ``events`` are notified with the controller as
    argument:

    - ``UPDATED`` after every get_value() call, successful or not
    - ``TIMEOUT`` when a sample yields NaN
    - ``READY`` once when a measurement loop exits

    Handlers run synchronously on the thread raising the event. For
    run_background() that is the worker thread; a blocking handler stalls
    the loop. A ``READY`` handler may call run_background() to start the
    next loop.

    Stopping is cooperative. request_stop() is observed between samples; a
    read already blocked in the transport finishes first (by data or by the
    port read timeout).
    """

    def __init__(
        self,
        port: str,
        baud: int = protocol.DEFAULT_BAUD,
        read_timeout_s: float = protocol.DEFAULT_READ_TIMEOUT_S,
        identities: Optional[Mapping[str, InstrumentIdentity]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize controller (does not connect).

        Args:
            port: Serial port name (e.g., "/dev/ttyUSB0" or "COM1")
            baud: Baud rate. Default 9600.
            read_timeout_s: Port read timeout in seconds. Default 20s.
            identities: Port name -> instrument identity. Defaults to
                        protocol.KNOWN_INSTRUMENTS. Keys match case-insensitively.
            clock: Returns the timestamp for new records. Defaults to UTC now.
        """
        self._port_name = port.strip()
        self._baud = baud
        self._read_timeout_s = read_timeout_s
        if identities is None:
            identities = protocol.KNOWN_INSTRUMENTS
        self._identities = {name.upper(): ident for name, ident in identities.items()}
        self._clock: Clock = clock or _utc_now

        self._transport: Optional[Transport] = None
        self._state = ConnectionState.DISCONNECTED
        self._identity = protocol.UNKNOWN_INSTRUMENT

        # Guards everything below; never held across a transport read
        self._lock = threading.RLock()
        # Serializes port reads between the caller thread and the worker.
        # Taken before _lock, never while holding it.
        self._read_lock = threading.Lock()

        self._init_time = self._clock()
        self._record = MeasurementRecord(timestamp=self._init_time)
        self._last_interval_s: Optional[float] = None
        self._mode = MeasureMode.UNKNOWN
        self._measurement_mode = MeasurementMode.UNKNOWN
        self._gate_time = GateTime.UNKNOWN
        self._gate_time_s = 0.0
        self._loop_running = False

        self._worker = LoopWorker(name="CounterLoop")
        self._estimator = GateTimeEstimator(self._sample_interval)
        self.events = EventChannel()

    # ========================================================================
    # Connection Management
    # ========================================================================

    def connect(self, serial_port: Optional[SerialLike] = None) -> bool:
        """Open the serial port and discard stale input.

        Any open failure leaves the controller DISCONNECTED; no exception
        escapes. The previous record is kept either way.

        Args:
            serial_port: Pre-configured serial port object (for testing). If
                        provided, the configured port name is only used for
                        identification.

        Returns:
            True if connected
        """
        self.disconnect()

        transport: Optional[Transport] = None
        try:
            if serial_port is not None:
                transport = Transport(serial_port)
            else:
                transport = Transport.open(
                    self._port_name, self._baud, self._read_timeout_s
                )
            transport.flush_input()
        except SerialIOError as e:
            logger.warning(f"Could not connect to counter on {self._port_name}: {e}")
            if transport is not None:
                transport.close()
            transport = None

        with self._lock:
            self._transport = transport
            self._state = (
                ConnectionState.CONNECTED
                if transport is not None
                else ConnectionState.DISCONNECTED
            )
            self._identity = self._identities.get(
                self._port_name.upper(), protocol.UNKNOWN_INSTRUMENT
            )

        if transport is not None:
            logger.info(f"Connected to {self.instrument_id}")
        return transport is not None

    def disconnect(self) -> None:
        """Close the serial port. Idempotent.

        A running loop is asked to stop; closing the port makes a pending
        read fail so the worker can observe the request.
        """
        with self._lock:
            if self._state == ConnectionState.DISCONNECTED:
                return

            logger.info(f"Disconnecting from {self._port_name}...")
            self._worker.request_stop()
            transport = self._transport
            self._transport = None
            self._state = ConnectionState.DISCONNECTED

        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.warning(f"Error closing serial port: {e}")

        self._worker.join(timeout=DISCONNECT_JOIN_TIMEOUT_S)
        logger.info("Disconnected")

    # ========================================================================
    # Sampling
    # ========================================================================

    def sample_once(self) -> MeasurementRecord:
        """Read and parse one line, replacing the current record.

        When disconnected, or when the read fails or times out, the current
        record is replaced by an empty one (NaN value).

        Returns:
            The new current record
        """
        record, _ = self._read_record()
        return record

    def get_value(self) -> float:
        """Take one sample and notify subscribers.

        Raises TIMEOUT if the sample is NaN, then UPDATED unconditionally.

        Returns:
            Sample value, NaN if none was obtained
        """
        record = self.sample_once()
        if not record.is_valid:
            self.events.emit(CounterEvent.TIMEOUT, self)
        self.events.emit(CounterEvent.UPDATED, self)
        return record.value

    def convert_totalize_to_frequency(self) -> float:
        """Turn the current totalize count into a frequency using the gate time.

        Records of another mode are left as they are. The record is replaced,
        so a concurrent reader never sees a half-converted record.

        Returns:
            Value of the current record afterwards
        """
        with self._lock:
            self._record = parsing.convert_totalize_to_frequency(
                self._record, self._gate_time_s
            )
            return self._record.value

    # ========================================================================
    # Measurement Loop
    # ========================================================================

    def run_foreground(self, sample_limit: Optional[int] = None) -> int:
        """Sample on the calling thread until done or stopped.

        Loops get_value() until ``sample_limit`` non-NaN samples were taken,
        a stop was requested, or the connection was lost, then raises READY.
        Returns at once, without READY, if not connected or if another loop
        is already running.

        Args:
            sample_limit: Number of valid samples to take. None for no limit.

        Returns:
            Number of valid samples taken
        """
        return self._measurement_loop(sample_limit, clear_stop=True)

    def run_background(self, sample_limit: Optional[int] = None) -> bool:
        """Start the measurement loop on the background worker.

        Silently ignored while a loop is running or when not connected.

        Returns:
            True if a worker was started
        """
        with self._lock:
            if self._state != ConnectionState.CONNECTED:
                logger.warning("Cannot start measurement loop: not connected")
                return False
            if self._loop_running:
                logger.debug("Measurement loop already running")
                return False

        started = self._worker.start(lambda: self._measurement_loop(sample_limit))
        if started:
            logger.info(
                "Started background measurement loop"
                + (f" for {sample_limit} samples" if sample_limit is not None else "")
            )
        return started

    def request_stop(self) -> None:
        """Ask the measurement loop to exit after the sample in progress."""
        logger.info("Stop of measurement loop requested")
        self._worker.request_stop()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the background worker to finish.

        Returns:
            True if no worker is running afterwards
        """
        return self._worker.join(timeout=timeout)

    @property
    def is_looping(self) -> bool:
        """True while a foreground or background loop is active."""
        with self._lock:
            running = self._loop_running
        return running or self._worker.is_running()

    # ========================================================================
    # Mode and Gate Time
    # ========================================================================

    def setup_measurement_mode(
        self, measurement_mode: MeasurementMode, gate_time: GateTime
    ) -> None:
        """Configure the coarse mode and gate time explicitly."""
        with self._lock:
            self._measurement_mode = measurement_mode
            self._set_gate_time(gate_time)
        logger.info(
            f"Measurement mode set to {measurement_mode.value}, gate time {gate_time.value}"
        )

    def estimate_gate_time(
        self, sample_count: int = protocol.DEFAULT_ESTIMATE_SAMPLES
    ) -> GateTime:
        """Estimate the gate time by timing live records.

        Blocks for roughly ``sample_count + 1`` gate periods. Does not raise
        events. Counts below 2 are raised to 2.

        Returns:
            Estimated gate time (UNKNOWN if no record was received)
        """
        gate_time = self._estimator.estimate(sample_count)
        with self._lock:
            self._set_gate_time(gate_time)
        return gate_time

    def force_gate_time(self, duration_s: float, exact: bool = False) -> GateTime:
        """Set the gate time from a known duration instead of sampling.

        Args:
            duration_s: Gate duration in seconds. Non-positive values are
                        raised to the shortest gate (0.1 s).
            exact: Use ``duration_s`` itself as gate seconds instead of the
                   nominal value of its class.

        Returns:
            Resulting gate time class
        """
        if math.isnan(duration_s):
            logger.warning("Forced gate time is NaN, gate time unknown")
            exact = False
        elif duration_s <= 0:
            logger.warning(
                f"Forced gate time {duration_s}s not positive, using {protocol.MIN_GATE_TIME_S}s"
            )
            duration_s = protocol.MIN_GATE_TIME_S

        gate_time = classify_interval(duration_s)
        with self._lock:
            self._set_gate_time(gate_time)
            if exact:
                self._gate_time_s = duration_s
        logger.info(f"Gate time forced to {gate_time.value} ({self.gate_time_s}s)")
        return gate_time

    def force_totalize_mode(self) -> None:
        """Switch to totalize mode unless a mode was already determined."""
        with self._lock:
            if self._mode == MeasureMode.UNKNOWN:
                self._set_mode(MeasureMode.TOTALIZE)
                logger.info("Forced totalize mode")

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def port(self) -> str:
        """Configured serial port name."""
        return self._port_name

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the serial port is open."""
        return self.state == ConnectionState.CONNECTED

    @property
    def identity(self) -> InstrumentIdentity:
        """Identity looked up for the port at connect time."""
        with self._lock:
            return self._identity

    @property
    def instrument_id(self) -> str:
        """Human-readable instrument id including the port."""
        return self.identity.describe(self._port_name)

    @property
    def current_record(self) -> MeasurementRecord:
        """Most recent record (fully constructed, never mutated)."""
        with self._lock:
            return self._record

    @property
    def last_value(self) -> float:
        return self.current_record.value

    @property
    def unit(self) -> UnitSymbol:
        return self.current_record.unit

    @property
    def sample_time(self) -> datetime:
        return self.current_record.timestamp

    @property
    def init_time(self) -> datetime:
        return self._init_time

    @property
    def last_interval_s(self) -> Optional[float]:
        """Seconds between the last two records read, None after a failed read."""
        with self._lock:
            return self._last_interval_s

    @property
    def mode(self) -> MeasureMode:
        with self._lock:
            return self._mode

    @property
    def measurement_mode(self) -> MeasurementMode:
        with self._lock:
            return self._measurement_mode

    @property
    def gate_time(self) -> GateTime:
        with self._lock:
            return self._gate_time

    @property
    def gate_time_s(self) -> float:
        with self._lock:
            return self._gate_time_s

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _set_mode(self, mode: MeasureMode) -> None:
        """Update the instrument mode and recompute the coarse mode (lock held)."""
        self._mode = mode
        self._measurement_mode = MeasurementMode.from_measure_mode(mode)

    def _set_gate_time(self, gate_time: GateTime) -> None:
        """Update gate time class and its nominal seconds (lock held)."""
        self._gate_time = gate_time
        self._gate_time_s = gate_time_seconds(gate_time)

    def _clear_record(self) -> MeasurementRecord:
        with self._lock:
            self._record = MeasurementRecord(timestamp=self._clock())
            self._last_interval_s = None
            return self._record

    def _read_record(self) -> Tuple[MeasurementRecord, Optional[float]]:
        """Read one line into a new current record.

        Reads from the caller thread and the worker are serialized, so each
        line goes to exactly one reader and the interval always spans two
        consecutive lines.

        Returns:
            Tuple of (record, seconds since previous record). The interval is
            None when no line could be read.
        """
        with self._read_lock:
            with self._lock:
                transport = (
                    self._transport if self._state == ConnectionState.CONNECTED else None
                )

            if transport is None:
                return self._clear_record(), None

            # Can block up to the port read timeout
            try:
                line = transport.read_line()
            except SerialIOError as e:
                logger.warning(f"No sample from counter: {e}")
                return self._clear_record(), None

            record = parsing.parse_response_line(line, timestamp=self._clock())

            with self._lock:
                interval = (record.timestamp - self._record.timestamp).total_seconds()
                self._record = record
                self._last_interval_s = interval
                if record.mode != MeasureMode.UNKNOWN:
                    self._set_mode(record.mode)

        logger.debug(
            f"Sample {record.value} {record.unit.value} ({record.mode.value}), "
            f"interval {interval:.3f}s"
        )
        return record, interval

    def _sample_interval(self) -> Optional[float]:
        _, interval = self._read_record()
        return interval

    def _measurement_loop(
        self, sample_limit: Optional[int], clear_stop: bool = False
    ) -> int:
        """Loop body shared by run_foreground() and the background worker.

        The background worker clears the stop flag when it is started, so a
        stop requested right after run_background() is not lost.
        """
        with self._lock:
            if self._loop_running:
                logger.debug("Measurement loop already running")
                return 0
            if self._state != ConnectionState.CONNECTED or self._transport is None:
                logger.warning("Cannot run measurement loop: not connected")
                return 0
            self._loop_running = True
            transport = self._transport
            if clear_stop:
                self._worker.clear_stop()

        limit = sys.maxsize if sample_limit is None else sample_limit
        count = 0
        logger.info(f"Measurement loop started (thread {threading.get_ident()})")

        try:
            try:
                transport.flush_input()
            except SerialIOError as e:
                logger.warning(f"Could not discard pending input: {e}")

            while (
                not self._worker.stop_requested
                and count < limit
                and self.is_connected
            ):
                value = self.get_value()
                if not math.isnan(value):
                    count += 1
        finally:
            with self._lock:
                self._loop_running = False

        logger.info(f"Measurement loop stopped after {count} samples")
        self.events.emit(CounterEvent.READY, self)
        return count
