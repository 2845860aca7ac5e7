"""
state.py – Persistent calibration profile + event log.

One JSON file for the calibration profile and an append-only event log.
All writes are atomic (write-to-tmp, then os.replace) under a file lock.
Filter state is NOT persisted; it lives in the caller's FilterStore.
"""

import os
import json
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

from filelock import FileLock

from models import CalibrationProfile

log = logging.getLogger("dimscan.state")

# ---------------------------------------------------------------------------
# Paths (set via init())
# ---------------------------------------------------------------------------
DATA_DIR: str = "/data"

CALIBRATION_FILE = ""
EVENTS_LOG_FILE = ""

CURRENT_SCHEMA_VERSION = 1

_global_lock: Optional[FileLock] = None


def _path(name: str) -> str:
    return os.path.join(DATA_DIR, name)


def init(data_dir: str = "/data") -> None:
    """Initialise paths and ensure data directory exists."""
    global DATA_DIR, CALIBRATION_FILE, EVENTS_LOG_FILE, _global_lock

    DATA_DIR = data_dir
    os.makedirs(DATA_DIR, exist_ok=True)

    CALIBRATION_FILE = _path("calibration.json")
    EVENTS_LOG_FILE = _path("events.log")

    _global_lock = FileLock(_path(".state.lock"))

    _ensure_file(CALIBRATION_FILE, _calibration_doc(CalibrationProfile()))


# ---------------------------------------------------------------------------
# Atomic I/O
# ---------------------------------------------------------------------------

def _write_json_atomic(path: str, data: dict) -> None:
    """Write JSON atomically: write to .tmp, then os.replace."""
    lock = FileLock(f"{path}.lock")
    with lock:
        tmp = f"{path}.tmp"
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)


def _read_json(path: str) -> dict:
    lock = FileLock(f"{path}.lock")
    with lock:
        with open(path, "r") as f:
            return json.load(f)


def _ensure_file(path: str, default: dict) -> None:
    if not os.path.exists(path):
        _write_json_atomic(path, default)


def _check_schema(data: dict, file_label: str) -> dict:
    v = data.get("schema_version", 0)
    if v < CURRENT_SCHEMA_VERSION:
        log.warning("Migrating %s from schema v%d → v%d", file_label, v, CURRENT_SCHEMA_VERSION)
        data["schema_version"] = CURRENT_SCHEMA_VERSION
    elif v > CURRENT_SCHEMA_VERSION:
        raise RuntimeError(
            f"{file_label}: schema_version {v} is newer than supported {CURRENT_SCHEMA_VERSION}. "
            "Please update the dimscan service."
        )
    return data


# ---------------------------------------------------------------------------
# Calibration profile
# ---------------------------------------------------------------------------

def _calibration_doc(profile: CalibrationProfile) -> dict:
    return {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "profile": profile.to_dict(),
        "updated_at": _now_iso(),
    }


def load_calibration() -> CalibrationProfile:
    """Persisted profile, or defaults (uncalibrated) if none was saved."""
    if not CALIBRATION_FILE or not os.path.exists(CALIBRATION_FILE):
        return CalibrationProfile()
    with _global_lock:
        data = _check_schema(_read_json(CALIBRATION_FILE), "calibration.json")
    return CalibrationProfile.from_dict(data.get("profile", {}))


def save_calibration(profile: CalibrationProfile) -> None:
    with _global_lock:
        _write_json_atomic(CALIBRATION_FILE, _calibration_doc(profile))
    log_event(
        "CALIBRATION_SAVED",
        f"px_per_mm={profile.pixels_per_mm:.4f} calibrated={profile.is_calibrated}",
    )


# ---------------------------------------------------------------------------
# Event log (append-only)
# ---------------------------------------------------------------------------

def log_event(event_type: str, detail: str) -> None:
    ts = _now_iso()
    line = f"[{ts}] {event_type} {detail}\n"
    lock = FileLock(f"{EVENTS_LOG_FILE}.lock")
    with lock:
        with open(EVENTS_LOG_FILE, "a") as f:
            f.write(line)
    log.info("EVENT: %s %s", event_type, detail)


def compute_frame_hash(frame_bytes: bytes) -> str:
    return hashlib.sha256(frame_bytes).hexdigest()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
