"""
main.py – FastAPI host for the measurement pipeline.

Accepts raw RGBA frames, runs one frame at a time through measure.process()
and returns the detected object + stabilized measurement. Frames that
arrive while another is in flight are dropped, never queued.
"""

import os
import time
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, UploadFile, File, Form
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import cv_detector
import measure
import state
from models import CalibrationProfile, Frame, InvalidFrame
from precision import FilterStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("dimscan")

# ---------------------------------------------------------------------------
# Config from env
# ---------------------------------------------------------------------------

DATA_DIR = os.environ.get("DIMSCAN_DATA_DIR", "/data")
DETECTOR = os.environ.get("DIMSCAN_DETECTOR", "native").lower()
FALLBACK_ENABLED = os.environ.get("DIMSCAN_FALLBACK", "false").lower() in ("true", "1", "yes")
EDGE_STRIDE = int(os.environ.get("DIMSCAN_EDGE_STRIDE", "1"))
IDLE_TIMEOUT_S = float(os.environ.get("DIMSCAN_IDLE_TIMEOUT_S", "30"))
SWEEP_INTERVAL_S = float(os.environ.get("DIMSCAN_SWEEP_INTERVAL_S", "5"))

# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------

store = FilterStore(idle_timeout=IDLE_TIMEOUT_S)
calibration = CalibrationProfile()
_frame_lock = asyncio.Lock()
_frames = {"processed": 0, "dropped": 0, "invalid": 0}


def _detector():
    if DETECTOR == "opencv":
        return cv_detector.detect_object
    if EDGE_STRIDE > 1:
        return lambda frame: measure.detect_object(frame, edge_stride=EDGE_STRIDE)
    return measure.detect_object


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    global calibration
    log.info("Starting dimscan service …")

    state.init(DATA_DIR)
    log.info("State initialised at %s", DATA_DIR)

    calibration = state.load_calibration()
    log.info("Calibration: %.3f px/mm (calibrated=%s), detector=%s",
             calibration.pixels_per_mm, calibration.is_calibrated, DETECTOR)

    task = asyncio.create_task(_sweep_worker())

    yield

    task.cancel()
    log.info("dimscan shutdown.")


app = FastAPI(title="dimscan", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Idle filter sweep
# ---------------------------------------------------------------------------

async def _sweep_worker():
    """Periodically evict filters with no update for IDLE_TIMEOUT_S."""
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_S)
        try:
            # Skip while a frame is in flight; the store has a single writer
            if _frame_lock.locked():
                continue
            async with _frame_lock:
                store.evict_idle()
        except asyncio.CancelledError:
            break
        except Exception as e:
            log.error("Sweep worker error: %s", e)


# ---------------------------------------------------------------------------
# API: Measure
# ---------------------------------------------------------------------------

@app.post("/api/measure")
async def api_measure(
    frame: UploadFile = File(...),
    width: int = Form(...),
    height: int = Form(...),
    include_points: bool = Form(False),
):
    """Raw RGBA frame → predominant object + measurement."""
    if _frame_lock.locked():
        _frames["dropped"] += 1
        log.warning("Frame dropped: previous frame still processing")
        return JSONResponse({"dropped": True}, status_code=429)

    async with _frame_lock:
        data = await frame.read()
        rgba = Frame(width, height, data)
        try:
            detected, measurement = await asyncio.to_thread(
                measure.process,
                rgba,
                calibration,
                store,
                time.monotonic(),
                _detector(),
                FALLBACK_ENABLED,
            )
        except InvalidFrame as e:
            _frames["invalid"] += 1
            log.warning("Invalid frame %s: %s", state.compute_frame_hash(data)[:12], e)
            return JSONResponse({"error": str(e)}, status_code=400)
        _frames["processed"] += 1

    return {
        "detected": detected.to_dict(include_points=include_points) if detected else None,
        "measurement": measurement.to_dict() if measurement else None,
    }


# ---------------------------------------------------------------------------
# API: Calibration
# ---------------------------------------------------------------------------

class CalibrationBody(BaseModel):
    pixels_per_mm: float = Field(..., gt=0)
    is_calibrated: bool = True
    focal_length_mm: float = Field(1000.0, gt=0)
    sensor_width_mm: float = Field(6.17, gt=0)


@app.get("/api/calibration")
async def api_get_calibration():
    return calibration.to_dict()


@app.put("/api/calibration")
async def api_put_calibration(body: CalibrationBody):
    """Replace the calibration profile. Existing filters are reset (units may change)."""
    global calibration
    profile = CalibrationProfile(
        pixels_per_mm=body.pixels_per_mm,
        is_calibrated=body.is_calibrated,
        focal_length_mm=body.focal_length_mm,
        sensor_width_mm=body.sensor_width_mm,
    )
    async with _frame_lock:
        state.save_calibration(profile)
        calibration = profile
        store.reset()
    return calibration.to_dict()


# ---------------------------------------------------------------------------
# API: Filters, Stats & Health
# ---------------------------------------------------------------------------

@app.get("/api/filters")
async def api_filters():
    return store.stats()


@app.post("/api/filters/reset")
async def api_filters_reset():
    async with _frame_lock:
        cleared = len(store)
        store.reset()
    state.log_event("FILTERS_RESET", f"cleared={cleared}")
    return {"cleared": cleared}


@app.get("/api/stats")
async def api_stats():
    return dict(_frames)


@app.get("/api/health")
async def api_health():
    return {
        "status": "ok",
        "detector": DETECTOR,
        "calibrated": calibration.is_calibrated,
        "filters": len(store),
    }
