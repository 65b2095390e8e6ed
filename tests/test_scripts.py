"""Tests for the console demo and the line dump tool using FakeCounterSerial."""

import builtins
import threading

import pytest

import run_counter
from fakes.fake_counter import FakeCounterSerial
from hp_counter_lib.errors import SerialIOError
from hp_counter_lib.transport import Transport
from tools.dump_lines import dump_lines


class FailingAfterFirstLineSerial(FakeCounterSerial):
    """Delivers one line, then fails like an unplugged adapter."""

    def readline(self) -> bytes:
        if self.read_count >= 1:
            raise OSError("Input/output error")
        return super().readline()


@pytest.fixture
def fake_serial():
    return FakeCounterSerial(lines=["1.0E+03 Hz"], repeat=True, period_s=0.01)


@pytest.fixture
def monkeypatch_transport(monkeypatch, fake_serial):
    """Monkeypatch Transport.open to use FakeCounterSerial."""
    def mock_open(port: str, baud: int = 9600, timeout_s: float = 20.0):
        return Transport(fake_serial)

    monkeypatch.setattr(Transport, "open", mock_open)


# =============================================================================
# run_counter.py
# =============================================================================

def test_demo_exits_after_sample_limit(monkeypatch, capsys, monkeypatch_transport, fake_serial):
    """Test that the demo returns once the limited loop is ready, without Enter."""
    never = threading.Event()
    monkeypatch.setattr(builtins, "input", lambda *args: never.wait(timeout=5.0))
    monkeypatch.setattr("sys.argv", ["run_counter.py", "--port", "COM1", "--samples", "3"])

    assert run_counter.main() == 0

    out = capsys.readouterr().out
    assert out.count("Loop ready") == 1
    assert out.count("1000 Hz") == 3
    assert "Disconnected." in out
    assert not fake_serial.is_open


def test_demo_stops_on_enter(monkeypatch, capsys, monkeypatch_transport, fake_serial):
    """Test that Enter ends an unlimited loop."""
    monkeypatch.setattr(builtins, "input", lambda *args: "")
    monkeypatch.setattr("sys.argv", ["run_counter.py", "--port", "COM1"])

    assert run_counter.main() == 0

    out = capsys.readouterr().out
    assert out.count("Loop ready") == 1
    assert not fake_serial.is_open


def test_demo_port_unavailable(monkeypatch, capsys):
    """Test that an unopenable port gives exit code 1."""
    monkeypatch.setattr(
        "sys.argv", ["run_counter.py", "--port", "/dev/does-not-exist-counter"]
    )

    assert run_counter.main() == 1
    assert "Could not open" in capsys.readouterr().out


# =============================================================================
# tools/dump_lines.py
# =============================================================================

def test_dump_lines_prints_decoded_lines(capsys, monkeypatch_transport, fake_serial):
    """Test that each line is shown with value, unit and mode."""
    dump_lines("COM1", count=2)

    out = capsys.readouterr().out
    assert out.count("1000.0 Hz (frequency)") == 2
    assert "Port closed" in out
    assert not fake_serial.is_open


def test_dump_lines_closes_port_on_read_error(monkeypatch, capsys):
    """Test that a failing read still closes the port."""
    fake = FailingAfterFirstLineSerial(lines=["1 Hz", "2 Hz"])
    monkeypatch.setattr(Transport, "open", lambda port, timeout_s: Transport(fake))

    with pytest.raises(SerialIOError):
        dump_lines("COM1", count=2)

    assert not fake.is_open
    assert "Port closed" in capsys.readouterr().out
