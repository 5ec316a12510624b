"""
Numeric helpers shared by the node kinds.

Every helper maps degenerate input (None, NaN, inf, wrong type) to a
neutral value so no node ever emits NaN downstream.
"""

import math
from typing import Any, Optional

import numpy as np

from chromagraph.core.frame import FrequencyAnalysis, SpectralFrame

EPS = 1e-6


def finite(value: Any, default: float = 0.0) -> float:
    """*value* as a finite float, else *default*."""
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    return f if math.isfinite(f) else default


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def byte_array(data: Any) -> np.ndarray:
    """Coerce a band/waveform input to uint8; anything unusable becomes empty."""
    if isinstance(data, np.ndarray):
        return data if data.dtype == np.uint8 else np.clip(data, 0, 255).astype(np.uint8)
    if isinstance(data, (bytes, bytearray, list, tuple)):
        return np.clip(np.asarray(data, dtype=np.float64), 0, 255).astype(np.uint8)
    return np.zeros(0, dtype=np.uint8)


def usable_analysis(analysis: Any) -> Optional[FrequencyAnalysis]:
    if not isinstance(analysis, FrequencyAnalysis) or analysis.is_empty:
        return None
    return analysis


def frame_time(frame: SpectralFrame) -> float:
    return finite(frame.time, 0.0)


def elapsed(state: dict, now: float) -> float:
    """Seconds since this node last ran (0 on the first call); records *now*."""
    prev = state.get("prev_time")
    state["prev_time"] = now
    if prev is None:
        return 0.0
    return max(0.0, now - prev)


def smoothing_alpha(dt: float, time_constant_ms: float, floor_ms: float = 1.0) -> float:
    """One-pole coefficient ``1 - exp(-dt / tau)`` for a time constant in ms."""
    tau = max(floor_ms, finite(time_constant_ms, floor_ms)) / 1000.0
    return 1.0 - math.exp(-dt / tau)


def spectral_flatness(values: np.ndarray) -> float:
    """Wiener flatness (geometric / arithmetic mean) of non-negative values."""
    x = values.astype(np.float64) + EPS
    gm = math.exp(float(np.mean(np.log(x))))
    am = float(np.mean(x))
    return clamp(gm / am, 0.0, 1.0)


def state_dict(state: Optional[dict]) -> dict:
    """Scratch state for compute functions called outside a network."""
    return state if state is not None else {}
