"""Serial transport layer for counter communication."""

import logging
from typing import Protocol

from hp_counter_lib import protocol
from hp_counter_lib.errors import ReadTimeout, SerialIOError

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def readline(self) -> bytes:
        """Read a line from serial port, b"" on timeout."""
        ...

    def reset_input_buffer(self) -> None:
        """Flush input buffer."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


class Transport:
    """Wrapper around pyserial reading counter output lines.

    The counter only talks, so the transport is read-only: one line per
    call, with the read timeout fixed when the port is opened.
    """

    def __init__(self, serial_port: SerialLike) -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeCounterSerial for testing)
        """
        self._port = serial_port

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = protocol.DEFAULT_BAUD,
        timeout_s: float = protocol.DEFAULT_READ_TIMEOUT_S,
    ) -> "Transport":
        """Open a real serial port (requires pyserial).

        Args:
            port: Serial port device name (e.g., "/dev/ttyUSB0" or "COM1")
            baud: Baud rate. Default 9600 matches the counter's RS-232 setup.
            timeout_s: Read timeout in seconds. Must exceed the longest gate.

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            SerialIOError: If port cannot be opened
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise SerialIOError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False
            )
            logger.info(f"Opened serial port {port} at {baud} baud, timeout={timeout_s}s")
            return cls(ser)
        except Exception as e:
            raise SerialIOError(f"Failed to open {port} at {baud} baud: {e}") from e

    def close(self) -> None:
        """Close the serial port."""
        if self._port.is_open:
            self._port.close()
            logger.info("Closed serial port")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def read_line(self) -> str:
        """Read one line from the counter.

        Blocks until a full line arrives or the port read timeout expires.

        Returns:
            Line as string with CRLF stripped

        Raises:
            ReadTimeout: If no line arrived within the read timeout
            SerialIOError: If port is closed or read fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            line_bytes = self._port.readline()
        except Exception as e:
            raise SerialIOError(f"Failed to read line: {e}") from e

        # pyserial returns a partial line or nothing on timeout
        if not line_bytes.endswith(b"\n"):
            raise ReadTimeout(f"No complete line within read timeout (got {line_bytes!r})")

        line = line_bytes.decode("ascii", errors="replace").rstrip("\r\n")
        logger.debug(f"Received line: {line!r}")
        return line

    def flush_input(self) -> None:
        """Discard all pending input from device.

        Used after opening and before a measurement loop so that stale lines
        are not mistaken for fresh samples.

        Raises:
            SerialIOError: If port is closed
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            self._port.reset_input_buffer()
            logger.debug("Flushed input buffer")
        except Exception as e:
            raise SerialIOError(f"Failed to flush input: {e}") from e
