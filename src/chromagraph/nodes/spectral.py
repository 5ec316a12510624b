"""
Spectrum-domain nodes (band selection, band statistics, pitched-content
detectors) and time-domain pitch detection.

All inputs are analyzer bytes (0-255).  Bin ``i`` of a spectrum covers
``i * frequencyPerBin`` Hz where ``frequencyPerBin = (sr / 2) / (fft / 2)``.
"""

import math

import librosa
import numpy as np
from scipy import signal

from chromagraph.core.registry import REGISTRY
from chromagraph.core.types import HandleType, Port
from chromagraph.nodes.common import (
    EPS,
    byte_array,
    clamp,
    elapsed,
    finite,
    frame_time,
    smoothing_alpha,
    spectral_flatness,
    state_dict,
    usable_analysis,
)

NUMBER = HandleType.NUMBER
DATA = HandleType.DATA
FREQ = HandleType.FREQUENCY_ANALYSIS

# Candidate fundamentals examined by Harmonic Presence
MAX_CANDIDATE_PEAKS = 8


def _empty_band(start_bin: int = 0, frequency_per_bin: float = 0.0) -> dict:
    return {
        "bandData": np.zeros(0, dtype=np.uint8),
        "bandStartBin": start_bin,
        "frequencyPerBin": frequency_per_bin,
    }


@REGISTRY.kind(
    "Frequency Band",
    description="Select a frequency range from FrequencyAnalysis and output just that band's bytes.",
    inputs=[
        Port("frequencyAnalysis", "Frequency Analysis", FREQ),
        Port("startFrequency", "Start Frequency (Hz)", NUMBER, 0),
        Port("endFrequency", "End Frequency (Hz)", NUMBER, 200),
    ],
    outputs=[
        Port("bandData", "Band Data", DATA),
        Port("bandStartBin", "Band Start Bin", NUMBER),
        Port("frequencyPerBin", "Frequency/Bin (Hz)", NUMBER),
    ],
)
def frequency_band(inputs, frame, state):
    analysis = usable_analysis(inputs["frequencyAnalysis"])
    if analysis is None:
        return _empty_band()

    data = analysis.frequency_data
    fpb = analysis.frequency_per_bin
    start_bin = max(0, int(math.floor(finite(inputs["startFrequency"]) / fpb)))
    end_bin = min(len(data) - 1, int(math.ceil(finite(inputs["endFrequency"]) / fpb)))

    if start_bin > end_bin:
        return _empty_band(start_bin, fpb)

    return {
        "bandData": data[start_bin:end_bin + 1],
        "bandStartBin": start_bin,
        "frequencyPerBin": fpb,
    }


@REGISTRY.kind(
    "Band Info",
    description="Statistics of a band's bytes: average, peak, flatness, and flux.",
    inputs=[Port("data", "Data", DATA)],
    outputs=[
        Port("average", "Average", NUMBER),
        Port("peak", "Peak", NUMBER),
        Port("flatness", "Flatness", NUMBER),
        Port("flux", "Flux", NUMBER),
    ],
    stateful=True,
)
def band_info(inputs, frame, state):
    data = byte_array(inputs["data"])
    if len(data) == 0:
        return {"average": 0.0, "peak": 0.0, "flatness": 1.0, "flux": 0.0}

    state = state_dict(state)
    values = data.astype(np.int64)

    # Flux: summed positive change against the previous frame of equal length
    flux = 0.0
    prev = state.get("prev_data")
    if prev is not None and len(prev) == len(values):
        flux = float(np.clip(values - prev, 0, None).sum())
    state["prev_data"] = values.copy()

    return {
        "average": float(values.mean()),
        "peak": float(values.max()),
        "flatness": spectral_flatness(values / 255.0),
        "flux": flux,
    }


@REGISTRY.kind(
    "Average Volume",
    description="Mean byte value of a band or waveform.",
    inputs=[Port("data", "Data", DATA)],
    outputs=[Port("average", "Average", NUMBER)],
)
def average_volume(inputs, frame, state):
    data = byte_array(inputs["data"])
    if len(data) == 0:
        return {"average": 0.0}
    return {"average": float(data.mean())}


def perceptual_weight(freq: float) -> float:
    """Loudness weight per frequency, compensating for FFT bin density."""
    if freq < 20:
        return 0.0
    if freq < 60:
        return 5.0
    if freq < 150:
        return 4.0
    if freq < 300:
        return 3.0
    if freq < 600:
        return 2.0
    if freq < 1500:
        return 1.2
    if freq < 4000:
        return 0.8
    if freq < 8000:
        return 0.4
    if freq < 12000:
        return 0.2
    return 0.1


@REGISTRY.kind(
    "Multi-Band Analysis",
    description="Perceptually weighted Bass/Mids/Highs energy and share of the total.",
    inputs=[
        Port("frequencyAnalysis", "Frequency Analysis", FREQ),
        Port("bassMax", "Bass Max (Hz)", NUMBER, 250),
        Port("midMax", "Mid Max (Hz)", NUMBER, 4000),
    ],
    outputs=[
        Port("bassEnergy", "Bass Energy", NUMBER),
        Port("midEnergy", "Mid Energy", NUMBER),
        Port("highEnergy", "High Energy", NUMBER),
        Port("bassPercent", "Bass %", NUMBER),
        Port("midPercent", "Mid %", NUMBER),
        Port("highPercent", "High %", NUMBER),
    ],
)
def multi_band_analysis(inputs, frame, state):
    bands = {"bass": 0.0, "mid": 0.0, "high": 0.0}
    analysis = usable_analysis(inputs["frequencyAnalysis"])

    if analysis is not None:
        bass_max = finite(inputs["bassMax"], 250.0)
        mid_max = finite(inputs["midMax"], 4000.0)
        fpb = analysis.frequency_per_bin
        for i, magnitude in enumerate(analysis.frequency_data.tolist()):
            freq = i * fpb
            weighted = magnitude * perceptual_weight(freq)
            if freq <= bass_max:
                bands["bass"] += weighted
            elif freq <= mid_max:
                bands["mid"] += weighted
            else:
                bands["high"] += weighted

    total = sum(bands.values())
    out = {}
    for name, energy in bands.items():
        out[f"{name}Energy"] = energy
        out[f"{name}Percent"] = energy / total if total > 0 else 0.0
    return out


@REGISTRY.kind(
    "Spectral Centroid",
    description="Smoothed centre of mass of the spectrum in Hz, plus a 200-4000 Hz normalized view.",
    inputs=[
        Port("frequencyAnalysis", "Frequency Analysis", FREQ),
        Port("smoothMs", "Smooth (ms)", NUMBER, 50),
    ],
    outputs=[
        Port("centroid", "Centroid (Hz)", NUMBER),
        Port("normalized", "Normalized", NUMBER),
    ],
    stateful=True,
)
def spectral_centroid(inputs, frame, state):
    analysis = usable_analysis(inputs["frequencyAnalysis"])
    if analysis is None:
        return {"centroid": 0.0, "normalized": 0.0}

    state = state_dict(state)
    magnitudes = analysis.frequency_data.astype(np.float64)
    freqs = np.arange(len(magnitudes)) * analysis.frequency_per_bin
    total = magnitudes.sum()
    raw = float((freqs * magnitudes).sum() / total) if total > 0 else 0.0

    alpha = smoothing_alpha(elapsed(state, frame_time(frame)), inputs["smoothMs"])
    prev = state.get("prev_centroid", raw)
    centroid = prev + alpha * (raw - prev)
    state["prev_centroid"] = centroid

    return {
        "centroid": centroid,
        "normalized": clamp((centroid - 200.0) / 3800.0, 0.0, 1.0),
    }


@REGISTRY.kind(
    "Spectral Flux",
    description="Smoothed frame-to-frame positive spectral change across the full spectrum.",
    inputs=[
        Port("frequencyAnalysis", "Frequency Analysis", FREQ),
        Port("smoothMs", "Smooth (ms)", NUMBER, 50),
    ],
    outputs=[Port("flux", "Flux", NUMBER)],
    stateful=True,
)
def spectral_flux(inputs, frame, state):
    analysis = inputs["frequencyAnalysis"]
    data = byte_array(getattr(analysis, "frequency_data", None))
    if len(data) == 0:
        return {"flux": 0.0}

    state = state_dict(state)
    values = data.astype(np.int64)
    prev = state.get("prev_spectrum")
    raw = 0.0
    if prev is not None and len(prev) == len(values):
        raw = float(np.clip(values - prev, 0, None).sum()) / 255.0
    state["prev_spectrum"] = values.copy()

    alpha = smoothing_alpha(elapsed(state, frame_time(frame)), inputs["smoothMs"])
    prev_flux = state.get("prev_flux", raw)
    flux = prev_flux + alpha * (raw - prev_flux)
    state["prev_flux"] = flux
    return {"flux": flux}


@REGISTRY.kind(
    "Tonal Presence",
    description="Voiced/synth presence heuristic from a band's peak level and spectral flatness.",
    inputs=[
        Port("data", "Data", DATA),
        Port("flatnessCutoff", "Flatness Cutoff", NUMBER, 0.6),
        Port("peakScale", "Peak Scale", NUMBER, 255),
    ],
    outputs=[
        Port("presence", "Presence", NUMBER),
        Port("peak", "Peak", NUMBER),
        Port("flatness", "Flatness", NUMBER),
    ],
)
def tonal_presence(inputs, frame, state):
    data = byte_array(inputs["data"])
    if len(data) == 0:
        return {"presence": 0.0, "peak": 0.0, "flatness": 1.0}

    scale = abs(finite(inputs["peakScale"], 255.0)) or 255.0
    peak = clamp(float(data.max()) / scale, 0.0, 1.0)
    flatness = spectral_flatness(data / scale)

    cutoff = clamp(finite(inputs["flatnessCutoff"], 0.6), EPS, 1.0)
    tonal_boost = max(0.0, (cutoff - flatness) / cutoff)
    return {
        "presence": clamp(peak * tonal_boost, 0.0, 1.0),
        "peak": peak,
        "flatness": flatness,
    }


# ---------------------------------------------------------------------------
# Harmonic Presence
# ---------------------------------------------------------------------------

def _local_peaks(values: np.ndarray) -> np.ndarray:
    """Indices of interior local maxima, strongest first (ties keep bin order)."""
    inner = values[1:-1]
    mask = (inner > values[:-2]) & (inner >= values[2:])
    idx = np.nonzero(mask)[0] + 1
    order = np.argsort(-values[idx], kind="stable")
    return idx[order][:MAX_CANDIDATE_PEAKS]


def harmonic_score(
    values: np.ndarray,
    base_idx: int,
    max_harmonics: int,
    tol_ratio: float,
    min_rel: float,
) -> float:
    """
    Score how well the harmonic series of bin *base_idx* is present.

    Each harmonic ``k`` is probed in a window whose width scales with its
    centre bin.  A harmonic counts when its mean elevation above the band
    mean exceeds ``min_rel`` times the candidate peak's elevation; counted
    harmonics contribute their elevated energy weighted by ``1/k``.

    Returns:
        Score in [0, 1]: ``sqrt(energy_ratio) * (0.6 + 0.4 * coverage)``.
    """
    n = len(values)
    band_avg = float(values.mean())
    elevated = np.clip(values - band_avg, 0, None)
    band_elev_sum = float(elevated.sum())
    peak_elev = max(0.0, float(values[base_idx]) - band_avg)

    harmonic_energy = 0.0
    coverage = 0
    for k in range(1, max_harmonics + 1):
        center = int(round(base_idx * k))
        if center <= 0 or center >= n:
            break
        half_bins = max(1, int(math.ceil(center * tol_ratio)))
        lo = max(0, center - half_bins)
        hi = min(n - 1, center + half_bins)
        window = elevated[lo:hi + 1]
        avg_elev = float(window.sum()) / max(1, len(window))
        if avg_elev > min_rel * (peak_elev + EPS):
            coverage += 1
            harmonic_energy += float(window.sum()) / k

    possible = max(1, min(max_harmonics, (n - 1) // max(1, base_idx)))
    energy_ratio = harmonic_energy / max(EPS, band_elev_sum)
    return clamp(math.sqrt(energy_ratio) * (0.6 + 0.4 * coverage / possible), 0.0, 1.0)


@REGISTRY.kind(
    "Harmonic Presence",
    description="Detects melodic/voiced content by scoring harmonic series in a band-limited spectrum.",
    inputs=[
        Port("data", "Data", DATA),
        Port("bandStartBin", "Band Start Bin", NUMBER, 0),
        Port("frequencyPerBin", "Frequency/Bin (Hz)", NUMBER, 0),
        Port("maxHarmonics", "Max Harmonics", NUMBER, 8),
        Port("toleranceCents", "Tolerance (cents)", NUMBER, 35),
        Port("smoothMs", "Smooth (ms)", NUMBER, 120),
        Port("minSNR", "Min Peak Rel. (0..1)", NUMBER, 0.05),
    ],
    outputs=[
        Port("presence", "Presence", NUMBER),
        Port("fundamentalHz", "Fundamental (Hz)", NUMBER),
        Port("midi", "MIDI", NUMBER),
        Port("confidence", "Confidence", NUMBER),
    ],
    stateful=True,
)
def harmonic_presence(inputs, frame, state):
    silent = {"presence": 0.0, "fundamentalHz": 0.0, "midi": 0.0, "confidence": 0.0}
    data = byte_array(inputs["data"])
    if len(data) < 4:
        return silent

    values = data.astype(np.float64)
    peaks = _local_peaks(values)
    if len(peaks) == 0:
        return silent

    max_h = max(1, int(math.floor(finite(inputs["maxHarmonics"], 8))))
    tol_cents = clamp(finite(inputs["toleranceCents"], 35), 5.0, 100.0)
    tol_ratio = 2 ** (tol_cents / 1200.0) - 1
    min_rel = clamp(finite(inputs["minSNR"], 0.05), 0.0, 1.0)
    start_bin = max(0.0, finite(inputs["bandStartBin"]))
    hz_per_bin = max(0.0, finite(inputs["frequencyPerBin"]))

    # Candidates whose prominence over the band mean is below minSNR are noise
    band_avg = float(values.mean())
    best_score, best_hz = 0.0, 0.0
    for base_idx in peaks.tolist():
        if (values[base_idx] - band_avg) / 255.0 < min_rel:
            continue
        score = harmonic_score(values, base_idx, max_h, tol_ratio, min_rel)
        if score > best_score:
            best_score = score
            best_hz = (start_bin + base_idx) * hz_per_bin if hz_per_bin > 0 else 0.0

    state = state_dict(state)
    alpha = smoothing_alpha(elapsed(state, frame_time(frame)), inputs["smoothMs"])
    prev_presence = state.get("prev_presence", 0.0)
    presence = prev_presence + alpha * (best_score - prev_presence)

    # Lock onto the previous f0 while the new estimate stays within tolerance
    prev_f0 = state.get("prev_f0", best_hz)
    f0 = best_hz
    if prev_f0 > 0 and best_hz > 0:
        cents = 1200.0 * math.log2(best_hz / prev_f0)
        if abs(cents) < tol_cents * 1.5:
            f0 = prev_f0 + alpha * (best_hz - prev_f0)

    state["prev_presence"] = presence
    state["prev_f0"] = f0

    midi = 69.0 + 12.0 * math.log2(f0 / 440.0) if f0 > 0 else 0.0
    return {"presence": presence, "fundamentalHz": f0, "midi": midi, "confidence": presence}


# ---------------------------------------------------------------------------
# Pitch Detection
# ---------------------------------------------------------------------------

# Waveform RMS below which a frame is treated as silence (one byte step)
MIN_PITCH_RMS = 1.0 / 128.0


def cmndf(x: np.ndarray, tau_max: int) -> np.ndarray:
    """
    YIN cumulative mean normalized difference for lags ``0..tau_max``.

    The difference function ``d(tau) = sum (x[i] - x[i + tau])**2`` is
    expanded into two energy terms and the autocorrelation, so the whole
    curve comes from one FFT correlation.
    """
    n = len(x)
    energy = np.concatenate(([0.0], np.cumsum(x * x)))
    taus = np.arange(tau_max + 1)
    autocorr = signal.correlate(x, x, mode="full", method="fft")[n - 1:n + tau_max]
    d = np.maximum(energy[n - taus] + (energy[n] - energy[taus]) - 2.0 * autocorr, 0.0)

    out = np.ones(tau_max + 1)
    running = np.cumsum(d[1:])
    out[1:] = d[1:] * taus[1:] / np.maximum(running, 1e-12)
    return out


def _yin_period(curve: np.ndarray, tau_min: int, threshold: float) -> float:
    """
    Sub-sample period from a CMNDF curve, or 0 when no dip reaches *threshold*.

    Takes the first lag at or past *tau_min* whose value drops under the
    threshold, follows that dip down to its local minimum and refines it
    by parabolic interpolation.
    """
    tau_max = len(curve) - 1
    below = np.nonzero(curve[tau_min:] < threshold)[0]
    if len(below) == 0:
        return 0.0
    tau = tau_min + int(below[0])
    while tau < tau_max and curve[tau + 1] < curve[tau]:
        tau += 1

    offset = 0.0
    if tau < tau_max:
        prev, nxt = curve[tau - 1], curve[tau + 1]
        denom = prev - 2.0 * curve[tau] + nxt
        if abs(denom) > 1e-12:
            offset = 0.5 * (prev - nxt) / denom
        if not math.isfinite(offset) or abs(offset) >= 1:
            offset = 0.0
    period = tau + offset

    # Octave guard: twice the period wins only if clearly deeper
    doubled = int(round(period * 2))
    if tau_min <= doubled <= tau_max and curve[doubled] + 0.05 < curve[int(round(period))]:
        period = float(doubled)
    return period


@REGISTRY.kind(
    "Pitch Detection",
    description=(
        "Time-domain pitch detection using YIN/CMNDF. Stable for monophonic "
        "sources (piano, voice) with low latency."
    ),
    inputs=[
        Port("audioSignal", "Audio Signal", DATA),
        Port("sampleRate", "Sample Rate (Hz)", NUMBER, 0),
        Port("minHz", "Min Hz", NUMBER, 60),
        Port("maxHz", "Max Hz", NUMBER, 1500),
        Port("threshold", "CMNDF Threshold", NUMBER, 0.1),
        Port("smoothMs", "Smooth (ms)", NUMBER, 30),
        Port("stabilityCents", "Stability (cents)", NUMBER, 50),
    ],
    outputs=[
        Port("note", "Note", HandleType.STRING),
        Port("frequency", "Frequency (Hz)", NUMBER),
        Port("midi", "MIDI", NUMBER),
        Port("octave", "Octave", NUMBER),
        Port("confidence", "Confidence", NUMBER),
    ],
    stateful=True,
)
def pitch_detection(inputs, frame, state):
    """
    Track the fundamental of the waveform bytes.

    A ``sampleRate`` of 0 means the frame's own sample rate.  Frames that are
    silent, too short for the lag range or without a dip under the CMNDF
    threshold report no pitch and leave the smoothing state untouched.
    Accepted estimates are smoothed with ``1 - exp(-dt / smoothMs)``: lightly
    while within ``stabilityCents`` of the previous pitch, faster on jumps.
    """
    unpitched = {"note": "", "frequency": 0.0, "midi": 0, "octave": 0, "confidence": 0.0}
    data = byte_array(inputs["audioSignal"])
    if len(data) < 64:
        return unpitched

    sr = finite(inputs["sampleRate"])
    if sr <= 0:
        sr = finite(getattr(frame, "sample_rate", 0.0))
    if sr <= 0:
        return unpitched
    min_hz = max(20.0, finite(inputs["minHz"], 60))
    max_hz = max(min_hz + 1.0, finite(inputs["maxHz"], 1500))
    tau_min = max(2, int(math.floor(sr / max_hz)))
    tau_max = min(len(data) - 2, int(math.ceil(sr / min_hz)))
    if tau_max <= tau_min + 2:
        return unpitched

    x = (data.astype(np.float64) - 128.0) / 128.0
    x -= x.mean()
    if math.sqrt(float(np.mean(x * x))) < MIN_PITCH_RMS:
        return unpitched

    curve = cmndf(x, tau_max)
    threshold = clamp(finite(inputs["threshold"], 0.1), 0.02, 0.5)
    period = _yin_period(curve, tau_min, threshold)
    if period <= 0:
        return unpitched

    raw_hz = sr / period
    raw_confidence = clamp(1.0 - float(curve[int(round(period))]), 0.0, 1.0)

    state = state_dict(state)
    alpha = smoothing_alpha(elapsed(state, frame_time(frame)), inputs["smoothMs"])
    prev_hz = state.get("prev_freq", raw_hz)
    stability = max(5.0, finite(inputs["stabilityCents"], 50))
    cents = abs(1200.0 * math.log2(raw_hz / prev_hz))
    gain = 0.6 if cents < stability else 0.9
    hz = prev_hz + alpha * gain * (raw_hz - prev_hz)

    prev_confidence = state.get("prev_conf", raw_confidence)
    confidence = prev_confidence + alpha * 0.7 * (raw_confidence - prev_confidence)

    state["prev_freq"] = hz
    state["prev_conf"] = confidence

    midi = int(round(float(librosa.hz_to_midi(hz))))
    return {
        "note": librosa.midi_to_note(midi, unicode=False),
        "frequency": hz,
        "midi": midi,
        "octave": midi // 12 - 1,
        "confidence": confidence,
    }
