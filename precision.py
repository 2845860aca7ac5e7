"""
precision.py – Temporal stabilization of per-object measurements.

Each (object_id, dimension) key owns a scalar Kalman state and a bounded
history of (value, timestamp, confidence). Keys move through
uninitialized → warming (< 3 samples) → stable and stay there until the
caller evicts them after IDLE_TIMEOUT_S without updates.

The FilterStore is owned by the caller and passed into every pipeline
call; only PrecisionFilter writes to it (evict_idle/reset excepted).
"""

import logging
import math
import time
from collections import deque
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

from depth import prism_surface_area, prism_volume
from models import Measurement, clamp, safe_div

log = logging.getLogger("dimscan.precision")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

HISTORY_WINDOW = 10
IDLE_TIMEOUT_S = 30.0

# Initial Kalman state: P (error covariance), Q (process), R (measurement)
KALMAN_P0 = 1.0
KALMAN_Q = 0.1
KALMAN_R = 0.5

# Outlier rule: |z - mean| > OUTLIER_SIGMA * std AND confidence < OUTLIER_CONFIDENCE
MIN_STATS_SAMPLES = 3
OUTLIER_SIGMA = 2.0
OUTLIER_CONFIDENCE = 0.7

# History weight = exp(-age_ms / SMOOTHING_TAU_MS) * confidence
SMOOTHING_TAU_MS = 1000.0

# stability = 1 - STABILITY_CV_GAIN * mean coefficient of variation
STABILITY_CV_GAIN = 5.0
DEFAULT_STABILITY = 0.5

UNINITIALIZED = "uninitialized"
WARMING = "warming"
STABLE = "stable"

Key = Tuple[str, str]


class FilterState:
    def __init__(
        self,
        value: float,
        timestamp: float,
        window: int = HISTORY_WINDOW,
        p0: float = KALMAN_P0,
        q: float = KALMAN_Q,
        r: float = KALMAN_R,
    ):
        self.x = value
        self.P = p0
        self.Q = q
        self.R = r
        self.p0 = p0
        self.values: deque = deque(maxlen=window)
        self.timestamps: deque = deque(maxlen=window)
        self.confidences: deque = deque(maxlen=window)
        self.last_update = timestamp

    @property
    def phase(self) -> str:
        return WARMING if len(self.values) < MIN_STATS_SAMPLES else STABLE

    def kalman_update(self, z: float) -> float:
        p_pred = self.P + self.Q
        gain = p_pred / (p_pred + self.R)
        self.x = self.x + gain * (z - self.x)
        self.P = (1 - gain) * p_pred
        return self.x

    def reset(self, value: float) -> None:
        self.x = value
        self.P = self.p0

    def push(self, value: float, timestamp: float, confidence: float) -> None:
        self.values.append(value)
        self.timestamps.append(timestamp)
        self.confidences.append(confidence)
        self.last_update = timestamp


class FilterStore:
    """Map of (object_id, dimension) → FilterState."""

    def __init__(self, window: int = HISTORY_WINDOW, idle_timeout: float = IDLE_TIMEOUT_S):
        self.window = window
        self.idle_timeout = idle_timeout
        self._states: Dict[Key, FilterState] = {}

    def get(self, object_id: str, dimension: str) -> Optional[FilterState]:
        return self._states.get((object_id, dimension))

    def create(self, object_id: str, dimension: str, value: float, timestamp: float) -> FilterState:
        state = FilterState(value, timestamp, window=self.window)
        self._states[(object_id, dimension)] = state
        return state

    def phase(self, object_id: str, dimension: str) -> str:
        state = self.get(object_id, dimension)
        return UNINITIALIZED if state is None else state.phase

    def object_ids(self) -> set:
        return {oid for oid, _ in self._states}

    def evict_idle(self, now: Optional[float] = None) -> int:
        """Drop every key not updated for more than idle_timeout seconds."""
        now = time.monotonic() if now is None else now
        stale = [k for k, s in self._states.items() if now - s.last_update > self.idle_timeout]
        for key in stale:
            del self._states[key]
        if stale:
            log.info("Evicted %d idle filter(s), %d remaining", len(stale), len(self._states))
        return len(stale)

    def reset(self) -> None:
        self._states.clear()

    def stats(self) -> dict:
        object_ids = sorted(self.object_ids())
        stabilities = [history_stability(self, oid) for oid in object_ids]
        return {
            "filters": len(self._states),
            "objects": object_ids,
            "stable_filters": sum(1 for s in self._states.values() if s.phase == STABLE),
            "avg_stability": round(float(np.mean(stabilities)), 4) if stabilities else 0.0,
        }

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, key: Key) -> bool:
        return key in self._states

    def __iter__(self) -> Iterator[Key]:
        return iter(list(self._states))


def _coefficient_of_variation(values) -> float:
    arr = np.asarray(values, dtype=np.float64)
    mean = float(arr.mean())
    if mean <= 0:
        return 1.0
    return float(arr.std()) / mean


def history_stability(store: FilterStore, object_id: str) -> float:
    """
    1.0 for perfectly steady width/height histories, falling with their
    coefficient of variation. DEFAULT_STABILITY until 3 samples exist.
    """
    width = store.get(object_id, "width")
    height = store.get(object_id, "height")
    if width is None or height is None or len(width.values) < MIN_STATS_SAMPLES \
            or len(height.values) < MIN_STATS_SAMPLES:
        return DEFAULT_STABILITY

    avg_cv = (_coefficient_of_variation(width.values) + _coefficient_of_variation(height.values)) / 2
    return clamp(1.0 - avg_cv * STABILITY_CV_GAIN, 0.0, 1.0)


class PrecisionFilter:
    def __init__(
        self,
        store: FilterStore,
        outlier_sigma: float = OUTLIER_SIGMA,
        outlier_confidence: float = OUTLIER_CONFIDENCE,
        smoothing_tau_ms: float = SMOOTHING_TAU_MS,
    ):
        self.store = store
        self.outlier_sigma = outlier_sigma
        self.outlier_confidence = outlier_confidence
        self.smoothing_tau_ms = smoothing_tau_ms

    def filter_value(
        self,
        object_id: str,
        dimension: str,
        value: float,
        confidence: float,
        timestamp: Optional[float] = None,
        smooth: bool = False,
    ) -> float:
        """
        Feed one observation for (object_id, dimension), return the filtered value.

        First observation initializes the key and is returned unchanged.
        """
        now = time.monotonic() if timestamp is None else timestamp
        state = self.store.get(object_id, dimension)

        if not math.isfinite(value):
            log.warning("Ignoring non-finite %s for %s: %r", dimension, object_id, value)
            return state.x if state is not None else 0.0

        if state is None:
            state = self.store.create(object_id, dimension, value, now)
            state.push(value, now, confidence)
            return value

        z = self._reject_outlier(state, value, confidence)

        estimate = state.kalman_update(z)
        if not (math.isfinite(estimate) and math.isfinite(state.P)):
            log.warning("Kalman filter diverged for %s/%s, resetting to %.3f", object_id, dimension, value)
            state.reset(value)
            estimate = value

        if smooth:
            estimate = self._temporal_smooth(state, estimate, confidence, now)

        # History holds the raw observation, z only feeds the Kalman step
        state.push(value, now, confidence)
        return estimate

    def _reject_outlier(self, state: FilterState, value: float, confidence: float) -> float:
        if len(state.values) < MIN_STATS_SAMPLES:
            return value

        history = np.asarray(state.values, dtype=np.float64)
        mean = float(history.mean())
        std = float(history.std())

        if abs(value - mean) > self.outlier_sigma * std and confidence < self.outlier_confidence:
            weights = np.asarray(state.confidences, dtype=np.float64)
            replacement = safe_div(float((history * weights).sum()), float(weights.sum()), default=mean)
            log.debug("Outlier %.3f (mean=%.3f std=%.3f conf=%.2f) → %.3f",
                      value, mean, std, confidence, replacement)
            return replacement
        return value

    def _temporal_smooth(self, state: FilterState, current: float, confidence: float, now: float) -> float:
        if not state.values:
            return current

        weighted = current * confidence
        total = confidence
        for value, ts, conf in zip(state.values, state.timestamps, state.confidences):
            age_ms = max(0.0, (now - ts) * 1000.0)
            w = math.exp(-age_ms / self.smoothing_tau_ms) * conf
            weighted += value * w
            total += w

        return safe_div(weighted, total, default=current)

    def apply(self, object_id: str, measurement: Measurement, timestamp: Optional[float] = None) -> Measurement:
        """Stabilize a fresh measurement in place and return it."""
        now = time.monotonic() if timestamp is None else timestamp
        conf = measurement.confidence
        m = measurement

        m.width = self.filter_value(object_id, "width", m.width, conf, now, smooth=True)
        m.height = self.filter_value(object_id, "height", m.height, conf, now, smooth=True)
        m.area = m.width * m.height
        m.perimeter = 2 * (m.width + m.height)

        if m.depth > 0:
            m.depth = self.filter_value(object_id, "depth", m.depth, conf, now)
            m.volume = prism_volume(m.width, m.height, m.depth)
            m.surface_area = prism_surface_area(m.width, m.height, m.depth)

        return m

    def stability(self, object_id: str) -> float:
        return history_stability(self.store, object_id)
