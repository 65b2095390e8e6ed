"""FastAPI REST interface for a serial counter.

Single-process, single-instrument lifecycle with thread-safe access to one
CounterController. The measurement loop runs on the controller's background
worker; the endpoints only start/stop it and read the latest record.

Error mapping:
- Not connected → 503
- Already connected → 400
- SerialIOError → 503
- Other exceptions → 500
"""

import logging
import os
from threading import Lock, RLock
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from hp_counter_lib import CounterController, CounterEvent
from hp_counter_lib.errors import SerialIOError
from hp_counter_lib.models import GateTime, MeasurementMode

# =============================================================================
# Environment Configuration
# =============================================================================

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "9160"))
DEFAULT_COUNTER_PORT = os.getenv("COUNTER_PORT", "/dev/ttyUSB0")
DEFAULT_COUNTER_BAUD = int(os.getenv("COUNTER_BAUD", "9600"))
DEFAULT_READ_TIMEOUT_S = float(os.getenv("COUNTER_READ_TIMEOUT_S", "20.0"))
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
).split(",")

API_VERSION = "0.1.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_controller: Optional[CounterController] = None
_timeouts = 0  # TIMEOUT events since connect
_lock = RLock()  # Protects state-changing operations
_timeouts_lock = Lock()  # Taken by TIMEOUT handlers on the worker thread

# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Counter API",
    description="REST interface for HP/Agilent 5313x frequency counters on RS-232",
    version=API_VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Request/Response Models
# =============================================================================

class RecordResponse(BaseModel):
    """Response for GET /latest and POST /sample."""
    raw_text: str
    value: Optional[float]
    unit: str
    mode: str
    timestamp: str
    converted: bool


class StatusResponse(BaseModel):
    """Response for GET /status."""
    connected: bool
    looping: bool
    port: Optional[str]
    instrument_id: Optional[str]
    mode: str
    measurement_mode: str
    gate_time: str
    gate_time_s: float
    timeouts: int


class ConnectResponse(BaseModel):
    """Response for POST /connect."""
    status: str
    instrument_id: str


class LoopResponse(BaseModel):
    """Response for POST /loop/start and /loop/stop."""
    looping: bool
    started: bool = False


class GateTimeResponse(BaseModel):
    """Response for gate time endpoints."""
    gate_time: str
    gate_time_s: float


class ForceGateTimeRequest(BaseModel):
    """Request body for POST /gate-time/force."""
    duration_s: float
    exact: bool = False


class SetupModeRequest(BaseModel):
    """Request body for POST /mode/setup."""
    measurement_mode: MeasurementMode
    gate_time: GateTime


class ModeResponse(BaseModel):
    """Response for mode endpoints."""
    mode: str
    measurement_mode: str


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(SerialIOError)
async def serial_io_error_handler(request, exc: SerialIOError):
    """Map SerialIOError to 503 Service Unavailable."""
    logger.error(f"SerialIOError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# =============================================================================
# Helpers
# =============================================================================

def _require_controller() -> CounterController:
    """Return the connected controller or fail with 503."""
    if _controller is None or not _controller.is_connected:
        raise HTTPException(status_code=503, detail="Not connected")
    return _controller


def _count_timeout(controller: CounterController) -> None:
    global _timeouts
    with _timeouts_lock:
        _timeouts += 1


def _mode_response(controller: CounterController) -> ModeResponse:
    return ModeResponse(
        mode=controller.mode.value,
        measurement_mode=controller.measurement_mode.value,
    )


def _gate_time_response(controller: CounterController) -> GateTimeResponse:
    return GateTimeResponse(
        gate_time=controller.gate_time.value,
        gate_time_s=controller.gate_time_s,
    )


# =============================================================================
# Read-Only Endpoints
# =============================================================================

@app.get("/")
async def root():
    """Service info for health checks."""
    return {"service": "Counter API", "status": "online", "version": API_VERSION}


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get connection, loop and mode/gate-time state."""
    controller = _controller

    if controller is None:
        return StatusResponse(
            connected=False,
            looping=False,
            port=None,
            instrument_id=None,
            mode="unknown",
            measurement_mode="unknown",
            gate_time="unknown",
            gate_time_s=0.0,
            timeouts=_timeouts,
        )

    return StatusResponse(
        connected=controller.is_connected,
        looping=controller.is_looping,
        port=controller.port,
        instrument_id=controller.instrument_id,
        mode=controller.mode.value,
        measurement_mode=controller.measurement_mode.value,
        gate_time=controller.gate_time.value,
        gate_time_s=controller.gate_time_s,
        timeouts=_timeouts,
    )


@app.get("/latest")
async def get_latest():
    """Get the most recent record, or {} if not connected yet.

    NaN values are returned as null.
    """
    if _controller is None:
        return {}
    return _controller.current_record.to_dict()


# =============================================================================
# Lifecycle Endpoints
# =============================================================================

@app.post("/connect", response_model=ConnectResponse)
def connect(
    port: str = Query(DEFAULT_COUNTER_PORT, description="Serial port (e.g., /dev/ttyUSB0)"),
    baud: int = Query(DEFAULT_COUNTER_BAUD, description="Baud rate")
):
    """Open the counter's serial port.

    Raises:
        400: If already connected
        503: If port cannot be opened
    """
    global _controller, _timeouts

    with _lock:
        if _controller is not None:
            raise HTTPException(
                status_code=400,
                detail="Already connected. Disconnect first."
            )

        logger.info(f"Connecting to {port} at {baud} baud...")
        controller = CounterController(
            port, baud=baud, read_timeout_s=DEFAULT_READ_TIMEOUT_S
        )
        if not controller.connect():
            raise HTTPException(status_code=503, detail=f"Could not open {port}")

        controller.events.subscribe(CounterEvent.TIMEOUT, _count_timeout)
        _controller = controller
        with _timeouts_lock:
            _timeouts = 0

        return ConnectResponse(status="connected", instrument_id=controller.instrument_id)


@app.post("/disconnect")
def disconnect():
    """Stop any running loop and close the port."""
    global _controller

    with _lock:
        if _controller is not None:
            _controller.request_stop()
            _controller.disconnect()
            _controller.events.clear()
            _controller = None
            logger.info("Disconnected")

    return {"status": "disconnected"}


# =============================================================================
# Sampling Endpoints (blocking, run in the threadpool)
# =============================================================================

@app.post("/sample", response_model=RecordResponse)
def sample():
    """Take one sample. Blocks up to the port read timeout.

    Raises:
        409: If the measurement loop is running
        503: If not connected
    """
    with _lock:
        controller = _require_controller()
        if controller.is_looping:
            raise HTTPException(status_code=409, detail="Measurement loop running")
        controller.get_value()
        return RecordResponse(**controller.current_record.to_dict())


@app.post("/loop/start", response_model=LoopResponse)
def start_loop(samples: Optional[int] = Query(None, ge=1, description="Valid samples to take")):
    """Start the background measurement loop (no-op if already running)."""
    with _lock:
        controller = _require_controller()
        started = controller.run_background(samples)
        return LoopResponse(looping=controller.is_looping, started=started)


@app.post("/loop/stop", response_model=LoopResponse)
def stop_loop(wait_s: float = Query(0.0, ge=0.0, le=60.0, description="Seconds to wait for exit")):
    """Request the loop to stop after the sample in progress."""
    with _lock:
        controller = _require_controller()
        controller.request_stop()
        if wait_s > 0:
            controller.join(timeout=wait_s)
        return LoopResponse(looping=controller.is_looping)


@app.post("/gate-time/estimate", response_model=GateTimeResponse)
def estimate_gate_time(samples: int = Query(3, ge=1, le=20)):
    """Estimate the gate time from live record spacing (blocks for ~samples+1 gates).

    Raises:
        409: If the measurement loop is running
    """
    with _lock:
        controller = _require_controller()
        if controller.is_looping:
            raise HTTPException(status_code=409, detail="Measurement loop running")
        controller.estimate_gate_time(samples)
        return _gate_time_response(controller)


@app.post("/gate-time/force", response_model=GateTimeResponse)
def force_gate_time(request: ForceGateTimeRequest):
    """Set the gate time from a known duration."""
    with _lock:
        controller = _require_controller()
        controller.force_gate_time(request.duration_s, exact=request.exact)
        return _gate_time_response(controller)


@app.post("/mode/setup", response_model=ModeResponse)
def setup_mode(request: SetupModeRequest):
    """Configure measurement mode and gate time explicitly."""
    with _lock:
        controller = _require_controller()
        controller.setup_measurement_mode(request.measurement_mode, request.gate_time)
        return _mode_response(controller)


@app.post("/mode/totalize", response_model=ModeResponse)
def force_totalize():
    """Switch to totalize unless a mode was already determined."""
    with _lock:
        controller = _require_controller()
        controller.force_totalize_mode()
        return _mode_response(controller)


@app.post("/convert", response_model=RecordResponse)
def convert():
    """Convert the current totalize count into a frequency."""
    with _lock:
        controller = _require_controller()
        controller.convert_totalize_to_frequency()
        return RecordResponse(**controller.current_record.to_dict())


@app.on_event("startup")
async def startup_event():
    """Log startup configuration."""
    logger.info("=" * 60)
    logger.info("Counter API started")
    logger.info(f"Version: {API_VERSION}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Default Counter Port: {DEFAULT_COUNTER_PORT}")
    logger.info(f"Default Counter Baud: {DEFAULT_COUNTER_BAUD}")
    logger.info(f"Read Timeout: {DEFAULT_READ_TIMEOUT_S}s")
    logger.info(f"CORS Origins: {CORS_ORIGINS}")
    logger.info(f"Log Level: {LOG_LEVEL}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up resources on shutdown."""
    global _controller

    logger.info("Shutting down Counter API...")
    if _controller is not None:
        _controller.request_stop()
        _controller.disconnect()
        _controller = None
    logger.info("Shutdown complete")
