"""Shared fixtures: synthetic audio, spectral frames, and engine objects."""

import numpy as np
import pytest

from chromagraph.core.evaluator import NetworkEvaluator
from chromagraph.core.frame import SpectralFrame
from chromagraph.core.registry import default_registry

SAMPLE_RATE = 44100
FFT_SIZE = 2048


@pytest.fixture
def sample_rate():
    return SAMPLE_RATE


@pytest.fixture
def make_sine():
    """Factory for mono sine waves: make_sine(freq, duration, sr, amplitude)."""

    def _make(freq=440.0, duration=1.0, sr=SAMPLE_RATE, amplitude=0.5):
        t = np.arange(int(duration * sr)) / sr
        return amplitude * np.sin(2 * np.pi * freq * t)

    return _make


@pytest.fixture
def pure_sine(make_sine):
    """One second of a 440 Hz sine at 44.1 kHz, as (samples, sr)."""
    return make_sine(440.0, 1.0), SAMPLE_RATE


@pytest.fixture
def make_frame():
    """
    Factory for frames with a flat or explicit spectrum.

    ``make_frame(level=0, time=0.0)`` fills every bin with *level*;
    pass ``spectrum=`` to set the bins directly.
    """

    def _make(level=0, time=0.0, spectrum=None, sr=SAMPLE_RATE, fft_size=FFT_SIZE):
        if spectrum is None:
            spectrum = np.full(fft_size // 2, level, dtype=np.uint8)
        return SpectralFrame.from_bytes(
            spectrum,
            np.full(fft_size, 128, dtype=np.uint8),
            sample_rate=sr,
            fft_size=fft_size,
            time=time,
        )

    return _make


@pytest.fixture
def silent_frame():
    return SpectralFrame.silent(SAMPLE_RATE, FFT_SIZE, time=0.0)


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def evaluator(registry):
    return NetworkEvaluator(registry)
