"""
Time-aware dynamics nodes: smoothing, adaptive scaling, gating, triggers.

Every node here keeps per-instance state and measures elapsed time against
the frame's playback clock (``frame.time``), never against frame counts or
the host's wall clock, so live playback and offline export agree.
"""

from collections import deque
import math

import numpy as np

from chromagraph.core.registry import REGISTRY
from chromagraph.core.types import HandleType, Port
from chromagraph.nodes.common import (
    byte_array,
    clamp,
    elapsed,
    finite,
    frame_time,
    smoothing_alpha,
    state_dict,
)

NUMBER = HandleType.NUMBER

# Range below which an adaptive window counts as constant
ZERO_RANGE = 1e-9


@REGISTRY.kind(
    "Envelope Follower",
    description="Rectifies and smooths a signal with separate attack/release using time-aware coefficients.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("attackMs", "Attack (ms)", NUMBER, 10),
        Port("releaseMs", "Release (ms)", NUMBER, 150),
    ],
    outputs=[Port("env", "Envelope", NUMBER)],
    stateful=True,
)
def envelope_follower(inputs, frame, state):
    """
    One-pole attack/release follower.

    The first call seeds the envelope with the rectified input.  After that
    the envelope moves toward the input by ``alpha = 1 - exp(-dt / tau)``
    where ``tau`` is the attack constant when rising and the release
    constant when falling.  Output never goes negative.
    """
    state = state_dict(state)
    v = abs(finite(inputs["value"]))
    dt = elapsed(state, frame_time(frame))

    prev_env = state.get("prev_env")
    if prev_env is None or not math.isfinite(prev_env):
        prev_env = v

    tau_ms = inputs["attackMs"] if v > prev_env else inputs["releaseMs"]
    alpha = smoothing_alpha(dt, tau_ms)
    env = max(0.0, prev_env + alpha * (v - prev_env))

    state["prev_env"] = env
    return {"env": env}


@REGISTRY.kind(
    "Adaptive Normalize (Quantile)",
    description=(
        "Continuously normalizes a signal using rolling quantiles over a time "
        "window. Freeze-below stops adapting during breaks."
    ),
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("windowMs", "Window (ms)", NUMBER, 4000),
        Port("qLow", "Low Quantile (0..1)", NUMBER, 0.5),
        Port("qHigh", "High Quantile (0..1)", NUMBER, 0.95),
        Port("freezeBelow", "Freeze Below", NUMBER, 0),
    ],
    outputs=[
        Port("result", "Result", NUMBER),
        Port("low", "Low", NUMBER),
        Port("high", "High", NUMBER),
    ],
    stateful=True,
)
def adaptive_normalize(inputs, frame, state):
    """
    Map the input into [0, 1] against rolling quantiles of recent input.

    Samples older than ``windowMs`` drop out of the window.  While the input
    is at or under a positive ``freezeBelow`` no samples are recorded, so the
    range is held; a frozen node with an empty window repeats its previous
    output.  When the quantile range is (numerically) zero, an input equal to
    that level maps to 0.5 and inputs below or above it map to 0 or 1.
    """
    state = state_dict(state)
    v = finite(inputs["value"])
    t = frame_time(frame)
    window_s = max(0.001, finite(inputs["windowMs"], 4000) / 1000.0)
    q_low = clamp(finite(inputs["qLow"], 0.5), 0.0, 1.0)
    q_high = max(q_low, clamp(finite(inputs["qHigh"], 0.95), 0.0, 1.0))
    freeze = max(0.0, finite(inputs["freezeBelow"]))

    samples = state.setdefault("samples", deque())
    if not (freeze > 0 and v <= freeze):
        samples.append((t, v))
        while samples and t - samples[0][0] > window_s:
            samples.popleft()

    if not samples:
        return {
            "result": state.get("prev_result", 0.0),
            "low": state.get("prev_low", 0.0),
            "high": state.get("prev_high", 1.0),
        }

    values = sorted(s[1] for s in samples)
    n = len(values)
    low = values[int(math.floor(q_low * (n - 1)))]
    high = values[int(math.floor(q_high * (n - 1)))]
    spread = high - low
    if spread > ZERO_RANGE:
        result = clamp((v - low) / spread, 0.0, 1.0)
    elif v < low - ZERO_RANGE:
        result = 0.0
    elif v > high + ZERO_RANGE:
        result = 1.0
    else:
        result = 0.5

    state["prev_low"] = low
    state["prev_high"] = high
    state["prev_result"] = result
    return {"result": result, "low": low, "high": high}


@REGISTRY.kind(
    "Hysteresis Gate",
    description="Binary gate with separate open/close thresholds (high/low) to avoid chatter.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("low", "Low", NUMBER, 0.02),
        Port("high", "High", NUMBER, 0.08),
    ],
    outputs=[
        Port("gated", "Gated", NUMBER),
        Port("state", "State (0/1)", NUMBER),
    ],
    stateful=True,
)
def hysteresis_gate(inputs, frame, state):
    state = state_dict(state)
    value = finite(inputs["value"])
    is_open = bool(state.get("open", False))

    if is_open and value < finite(inputs["low"]):
        is_open = False
    elif not is_open and value > finite(inputs["high"]):
        is_open = True

    state["open"] = is_open
    return {"gated": value if is_open else 0.0, "state": 1 if is_open else 0}


@REGISTRY.kind(
    "Spike",
    description="Detect transient spikes over a threshold with attack/release shaping.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("threshold", "Threshold", NUMBER, 50),
        Port("attack", "Attack (ms)", NUMBER, 10),
        Port("release", "Release (ms)", NUMBER, 250),
    ],
    outputs=[Port("result", "Result", NUMBER)],
    stateful=True,
)
def spike(inputs, frame, state):
    state = state_dict(state)
    value = finite(inputs["value"])
    attack = max(1.0, finite(inputs["attack"], 10))
    release = max(1.0, finite(inputs["release"], 250))

    since = state.get("time_since_peak", math.inf) + elapsed(state, frame_time(frame)) * 1000.0
    peak = state.get("peak", 0.0)

    if since >= attack + release and value > finite(inputs["threshold"], 50):
        since = 0.0
        peak = value

    if since < attack:
        peak = max(peak, value)
        result = (since / attack) * peak
    elif since < attack + release:
        result = (1.0 - (since - attack) / release) * peak
    else:
        result = 0.0
        peak = 0.0

    state["time_since_peak"] = since
    state["peak"] = peak
    return {"result": max(0.0, result)}


@REGISTRY.kind(
    "Ducker",
    description="Attenuates a value briefly after a trigger using exponential decay.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("duckTrigger", "Duck Trigger", NUMBER, 0),
        Port("threshold", "Trigger Threshold", NUMBER, 0.6),
        Port("depth", "Depth (0..1)", NUMBER, 0.5),
        Port("duckMs", "Duck Time (ms)", NUMBER, 120),
    ],
    outputs=[Port("out", "Out", NUMBER)],
    stateful=True,
)
def ducker(inputs, frame, state):
    state = state_dict(state)
    dt = elapsed(state, frame_time(frame))
    decay = 1.0 - smoothing_alpha(dt, inputs["duckMs"])

    level = state.get("duck_level", 0.0)
    if finite(inputs["duckTrigger"]) > finite(inputs["threshold"], 0.6):
        level = 1.0
    level *= decay
    state["duck_level"] = level

    depth = clamp(finite(inputs["depth"], 0.5), 0.0, 1.0)
    return {"out": finite(inputs["value"]) * (1.0 - depth * clamp(level, 0.0, 1.0))}


@REGISTRY.kind(
    "Refractory Gate",
    description="Passes a pulse only if a minimum interval since the last pulse has passed.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("minIntervalMs", "Min Interval (ms)", NUMBER, 120),
    ],
    outputs=[Port("gated", "Gated", NUMBER)],
    stateful=True,
)
def refractory_gate(inputs, frame, state):
    state = state_dict(state)
    value = finite(inputs["value"])
    t = frame_time(frame)
    interval = max(1.0, finite(inputs["minIntervalMs"], 120)) / 1000.0

    if value > 0 and t - state.get("last_fire", -math.inf) >= interval:
        state["last_fire"] = t
        return {"gated": value}
    return {"gated": 0.0}


@REGISTRY.kind(
    "Rate Limiter",
    description="Holds the output until a minimum interval has passed since its last change.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("minIntervalMs", "Min Interval (ms)", NUMBER, 250),
    ],
    outputs=[Port("limited", "Limited", NUMBER)],
    stateful=True,
)
def rate_limiter(inputs, frame, state):
    state = state_dict(state)
    value = finite(inputs["value"])
    now_ms = frame_time(frame) * 1000.0
    min_interval = max(0.0, finite(inputs["minIntervalMs"], 250))

    last_value = state.get("last_value")
    since = now_ms - state.get("last_change_time", now_ms)

    # First call, or the playhead jumped backwards (looping)
    if last_value is None or since < 0 or (value != last_value and since >= min_interval):
        state["last_value"] = value
        state["last_change_time"] = now_ms
        return {"limited": value}
    return {"limited": last_value}


@REGISTRY.kind(
    "Threshold Counter",
    description=(
        "Counts rising crossings of a threshold, wrapping at maxValue. "
        "Useful for cycling modes on audio triggers."
    ),
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("threshold", "Threshold", NUMBER, 0.5),
        Port("maxValue", "Max Value", NUMBER, 5),
    ],
    outputs=[Port("count", "Count", NUMBER)],
    stateful=True,
)
def threshold_counter(inputs, frame, state):
    state = state_dict(state)
    above = finite(inputs["value"]) >= finite(inputs["threshold"], 0.5)
    max_value = max(1, int(math.floor(finite(inputs["maxValue"], 5))))

    counter = state.get("counter", 0)
    if above and not state.get("was_above", False):
        counter = (counter + 1) % max_value

    state["counter"] = counter
    state["was_above"] = above
    return {"count": counter}


@REGISTRY.kind(
    "Section Change Detector",
    description=(
        "Triggers once when the input jumps by at least the threshold between "
        "frames, then ignores further changes for the cooldown."
    ),
    inputs=[
        Port("flux", "Value", NUMBER, 0),
        Port("threshold", "Threshold", NUMBER, 0.5),
        Port("cooldownMs", "Cooldown (ms)", NUMBER, 2000),
        Port("holdMs", "Hold Time (ms)", NUMBER, 100),
    ],
    outputs=[
        Port("trigger", "Trigger", NUMBER),
        Port("cooldownActive", "Cooldown Active", NUMBER),
        Port("change", "Change", NUMBER),
    ],
    stateful=True,
)
def section_change_detector(inputs, frame, state):
    state = state_dict(state)
    current = finite(inputs["flux"])
    threshold = finite(inputs["threshold"], 0.5)
    cooldown = max(100.0, finite(inputs["cooldownMs"], 2000))
    hold = max(10.0, finite(inputs["holdMs"], 100))
    now_ms = frame_time(frame) * 1000.0

    change = abs(current - state.get("prev_value", current))
    state["prev_value"] = current

    last_trigger = state.get("last_trigger_time", -math.inf)
    since_trigger = now_ms - last_trigger
    if since_trigger < 0:
        # Playhead moved backwards; forget the old trigger
        state["last_trigger_time"] = -math.inf
        since_trigger = math.inf

    trigger, cooldown_active = 0, 0
    if since_trigger < cooldown:
        cooldown_active = 1
        if since_trigger < hold:
            trigger = 1
    elif change >= threshold:
        state["last_trigger_time"] = now_ms
        trigger, cooldown_active = 1, 1

    return {"trigger": trigger, "cooldownActive": cooldown_active, "change": change}


# Length of each of the two energy windows compared by the section detector
ENERGY_WINDOW_S = 0.15
# Difference history needed before the adaptive threshold is used
MIN_HISTORY_S = 0.5
# Thresholds at or below this are background jitter, not a section change
MIN_SECTION_THRESHOLD = 0.1


def _rms_energy(data: np.ndarray) -> float:
    """RMS of waveform bytes around the 128 midpoint, scaled to 0..100."""
    x = (data.astype(np.float64) - 128.0) / 128.0
    return float(np.sqrt(np.mean(x * x))) * 100.0


@REGISTRY.kind(
    "Adaptive Section Detector",
    description=(
        "Detects section changes from the waveform. Compares short-term energy "
        "of consecutive windows against a percentile of recent differences, "
        "so the threshold calibrates to each song."
    ),
    inputs=[
        Port("audioSignal", "Audio Signal", HandleType.DATA),
        Port("percentile", "Percentile", NUMBER, 0.95),
        Port("windowMs", "Window (ms)", NUMBER, 4000),
        Port("cooldownMs", "Cooldown (ms)", NUMBER, 2000),
        Port("holdMs", "Hold Time (ms)", NUMBER, 100),
    ],
    outputs=[
        Port("trigger", "Trigger", NUMBER),
        Port("difference", "Difference", NUMBER),
        Port("threshold", "Threshold", NUMBER),
    ],
    stateful=True,
)
def adaptive_section_detector(inputs, frame, state):
    """
    Trigger on statistically large jumps in waveform energy.

    Each frame's RMS energy is kept for two ``ENERGY_WINDOW_S`` windows; the
    difference is the absolute change between the mean of the latest window
    and the one before it.  The threshold is the ``percentile`` of the
    differences seen over ``windowMs`` and stays 0 until ``MIN_HISTORY_S``
    of history exists.  A trigger needs a difference above a threshold that
    itself exceeds background jitter; it then holds for ``holdMs`` and
    blocks re-triggering for ``cooldownMs``.
    """
    state = state_dict(state)
    data = byte_array(inputs["audioSignal"])
    if len(data) == 0:
        return {"trigger": 0, "difference": 0.0, "threshold": 0.0}

    p = clamp(finite(inputs["percentile"], 0.95), 0.5, 0.999)
    window_s = max(1000.0, finite(inputs["windowMs"], 4000)) / 1000.0
    cooldown = max(100.0, finite(inputs["cooldownMs"], 2000))
    hold = max(10.0, finite(inputs["holdMs"], 100))
    t = frame_time(frame)
    now_ms = t * 1000.0

    energies = state.setdefault("energies", deque())
    history = state.setdefault("differences", deque())
    if energies and t < energies[-1][0]:
        # Playhead moved backwards; start calibrating again
        energies.clear()
        history.clear()
        state["last_trigger_time"] = -math.inf

    energies.append((t, _rms_energy(data)))
    while t - energies[0][0] >= 2 * ENERGY_WINDOW_S:
        energies.popleft()

    current = [e for ts, e in energies if t - ts < ENERGY_WINDOW_S]
    previous = [e for ts, e in energies if t - ts >= ENERGY_WINDOW_S]
    difference = 0.0
    if previous:
        difference = abs(sum(current) / len(current) - sum(previous) / len(previous))

    history.append((t, difference))
    while t - history[0][0] > window_s:
        history.popleft()

    threshold = 0.0
    if t - history[0][0] >= MIN_HISTORY_S:
        ordered = sorted(d for _, d in history)
        threshold = ordered[int(math.floor(len(ordered) * p))]

    since_trigger = now_ms - state.get("last_trigger_time", -math.inf)
    trigger = 0
    if since_trigger < cooldown:
        if since_trigger < hold:
            trigger = 1
    elif difference > threshold > MIN_SECTION_THRESHOLD:
        state["last_trigger_time"] = now_ms
        trigger = 1

    return {"trigger": trigger, "difference": difference, "threshold": threshold}
