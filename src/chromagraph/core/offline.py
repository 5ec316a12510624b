"""
Offline spectral analysis for frame-accurate export.

Reproduces, frame by frame, what a live analyzer would have reported at the
same playback position: one Hanning-windowed radix-2 FFT per output frame,
converted to decibels and rescaled to bytes.  Identical inputs always give
byte-identical frames, so a live preview and an offline export of the same
audio agree.
"""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

import librosa
import numpy as np
from scipy.signal import windows

from chromagraph.core.frame import SpectralFrame
from chromagraph.errors import AnalysisCancelledError, InvalidConfigurationError

logger = logging.getLogger(__name__)

# Absorbs float error when a frame time is mapped back to its index
FRAME_TIME_EPSILON = 1e-9


@dataclass
class AnalyzerConfig:
    """Frame rate, FFT size and decibel range of the offline analyzer."""

    fps: int = 60
    fft_size: int = 2048
    min_decibels: float = -90.0
    max_decibels: float = -10.0

    def validate(self) -> None:
        n = self.fft_size
        if not isinstance(n, (int, np.integer)) or n < 2 or (n & (n - 1)) != 0:
            raise InvalidConfigurationError(
                f"FFT size must be a power of 2, got {self.fft_size!r}"
            )
        if self.fps <= 0:
            raise InvalidConfigurationError(f"fps must be positive, got {self.fps!r}")
        if self.max_decibels <= self.min_decibels:
            raise InvalidConfigurationError(
                "max_decibels must be greater than min_decibels"
            )


@dataclass
class OfflineAudioData:
    """All frames for an export window plus the analysis settings used."""

    frames: list[SpectralFrame]
    duration: float
    sample_rate: float
    fft_size: int
    fps: int
    start_time: float = 0.0
    metadata: dict = field(default_factory=dict)

    @property
    def n_frames(self) -> int:
        return len(self.frames)

    def frame_at(self, time: float) -> SpectralFrame:
        """Frame covering playback position *time* (clamped to the window)."""
        if not self.frames:
            return SpectralFrame.silent(self.sample_rate, self.fft_size, time)
        index = int(math.floor((time - self.start_time) * self.fps + FRAME_TIME_EPSILON))
        index = max(0, min(len(self.frames) - 1, index))
        return self.frames[index]


# ---------------------------------------------------------------------------
# FFT helpers
# ---------------------------------------------------------------------------

@functools.lru_cache(maxsize=16)
def _bit_reversal_indices(n: int) -> np.ndarray:
    """Permutation that reorders an input of length *n* for in-place FFT."""
    bits = n.bit_length() - 1
    idx = np.arange(n, dtype=np.int64)
    rev = np.zeros(n, dtype=np.int64)
    for _ in range(bits):
        rev = (rev << 1) | (idx & 1)
        idx >>= 1
    rev.setflags(write=False)
    return rev


@functools.lru_cache(maxsize=16)
def _hanning(n: int) -> np.ndarray:
    """Symmetric Hann window, 0.5 * (1 - cos(2*pi*i / (n - 1)))."""
    w = windows.hann(n, sym=True)
    w.setflags(write=False)
    return w


def fft_radix2(x: np.ndarray) -> np.ndarray:
    """
    Iterative radix-2 Cooley-Tukey FFT.

    Applies the bit-reversal permutation, then log2(N) butterfly stages with
    twiddle factors ``exp(-2j*pi*k/N)``.  Each stage is vectorised across all
    butterflies of that stage.

    Args:
        x: Real or complex input whose length is a power of two.

    Returns:
        Complex spectrum of the same length.
    """
    n = len(x)
    if n == 0 or (n & (n - 1)) != 0:
        raise InvalidConfigurationError("FFT size must be a power of 2")

    out = np.asarray(x, dtype=np.complex128)[_bit_reversal_indices(n)]

    size = 2
    while size <= n:
        half = size // 2
        k = np.arange(half) * (n // size)
        twiddle = np.exp(-2j * np.pi * k / n)

        blocks = out.reshape(-1, size)
        even = blocks[:, :half].copy()
        odd = blocks[:, half:] * twiddle
        blocks[:, :half] = even + odd
        blocks[:, half:] = even - odd
        size *= 2

    return out


def _frame_slice(mono: np.ndarray, start: int, end: int) -> np.ndarray:
    """Samples [start, end) of *mono*; positions before the buffer read as silence."""
    if start >= end:
        return mono[:0]
    if start >= 0:
        return mono[start:end]
    lead = np.zeros(min(end, 0) - start, dtype=mono.dtype)
    return np.concatenate([lead, mono[:max(end, 0)]])


def to_mono(samples: np.ndarray) -> np.ndarray:
    """Average channels of a ``(channels, n)`` buffer; 1-D input passes through."""
    arr = np.asarray(samples, dtype=np.float64)
    if arr.ndim == 1:
        return arr
    if arr.ndim == 2:
        return arr.mean(axis=0)
    raise ValueError(f"Expected 1-D or (channels, samples) audio, got shape {arr.shape}")


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class OfflineSpectralAnalyzer:
    """
    Precomputes one :class:`SpectralFrame` per output frame of an export.

    The analysis is a blocking bulk computation.  Callers may pass a
    ``should_cancel`` callable, checked between frames, and a
    ``progress_callback(percent, message)`` for reporting.
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        """
        Initialize the analyzer.

        Args:
            config: Analysis settings (default: 60 fps, 2048-point FFT,
                    -90..-10 dB).

        Raises:
            InvalidConfigurationError: If ``fft_size`` is not a power of two.
        """
        self.config = config or AnalyzerConfig()
        self.config.validate()

    @property
    def fft_size(self) -> int:
        return self.config.fft_size

    def samples_per_frame(self, sample_rate: float) -> float:
        return sample_rate / self.config.fps

    def load_audio(
        self,
        audio_path: Union[str, Path],
        sr: Optional[int] = None,
    ) -> tuple[np.ndarray, int]:
        """
        Decode an audio file to mono float samples.

        Args:
            audio_path: Path to audio file (wav, mp3, flac).
            sr: Target sample rate. None preserves original.

        Returns:
            Tuple of (samples, sample_rate).
        """
        y, sr_out = librosa.load(audio_path, sr=sr, mono=True)
        return y, int(sr_out)

    def analyze_chunk(self, chunk: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Turn one frame's samples into analyzer-style byte arrays.

        Args:
            chunk: Mono samples in [-1, 1] for this frame.

        Returns:
            Tuple of (frequency_data, time_domain_data) as uint8 arrays.
        """
        n = self.config.fft_size
        buf = np.zeros(n, dtype=np.float64)
        m = min(n, len(chunk))
        buf[:m] = chunk[:m]
        buf *= _hanning(n)

        spectrum = fft_radix2(buf)[: n // 2]
        magnitude = np.abs(spectrum) / n

        min_db = self.config.min_decibels
        max_db = self.config.max_decibels
        decibels = np.full(magnitude.shape, min_db, dtype=np.float64)
        positive = magnitude > 0
        decibels[positive] = 20.0 * np.log10(magnitude[positive])

        scaled = (decibels - min_db) / (max_db - min_db)
        frequency_data = np.clip(np.floor(scaled * 255.0), 0, 255).astype(np.uint8)

        time_domain = np.floor(((buf + 1.0) / 2.0) * 255.0)
        time_domain_data = np.clip(time_domain, 0, 255).astype(np.uint8)

        return frequency_data, time_domain_data

    def analyze(
        self,
        samples: np.ndarray,
        sample_rate: float,
        start_time: float = 0.0,
        duration: Optional[float] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        progress_callback: Optional[Callable[[int, str], None]] = None,
    ) -> OfflineAudioData:
        """
        Analyze a decoded buffer for every output frame of an export window.

        Args:
            samples: Mono samples, or a ``(channels, n)`` buffer mixed to mono.
            sample_rate: Sample rate of *samples* in Hz.
            start_time: Start of the export window in seconds.
            duration: Window length in seconds (default: rest of the buffer).
            should_cancel: Polled between frames; returning True aborts.
            progress_callback: Called with (percent, message) as frames finish.

        Returns:
            OfflineAudioData with ``ceil(duration * fps)`` frames.

        Raises:
            AnalysisCancelledError: If *should_cancel* returned True.
        """
        mono = to_mono(samples)
        fps = self.config.fps
        fft_size = self.config.fft_size

        if duration is None:
            duration = max(0.0, len(mono) / sample_rate - start_time)
        total_frames = int(math.ceil(duration * fps))
        samples_per_frame = self.samples_per_frame(sample_rate)
        offset = int(math.floor(start_time * sample_rate))

        logger.debug(
            "Offline analysis: %d frames, fft_size=%d, sr=%s, start=%.3fs",
            total_frames, fft_size, sample_rate, start_time,
        )

        frames: list[SpectralFrame] = []
        report_every = max(1, total_frames // 100)

        for i in range(total_frames):
            if should_cancel is not None and should_cancel():
                raise AnalysisCancelledError(i, total_frames)

            start = int(math.floor(i * samples_per_frame)) + offset
            end = min(int(math.floor((i + 1) * samples_per_frame)) + offset, len(mono))
            chunk = _frame_slice(mono, start, end)

            frequency_data, time_domain_data = self.analyze_chunk(chunk)
            frames.append(
                SpectralFrame(
                    frequency_data=frequency_data,
                    time_domain_data=time_domain_data,
                    sample_rate=float(sample_rate),
                    fft_size=fft_size,
                    time=start_time + i / fps,
                )
            )

            if progress_callback is not None and (
                (i + 1) % report_every == 0 or i + 1 == total_frames
            ):
                pct = int(100 * (i + 1) / total_frames)
                progress_callback(pct, f"Analyzed frame {i + 1}/{total_frames}")

        return OfflineAudioData(
            frames=frames,
            duration=float(duration),
            sample_rate=float(sample_rate),
            fft_size=fft_size,
            fps=fps,
            start_time=float(start_time),
        )

    def analyze_file(
        self,
        audio_path: Union[str, Path],
        start_time: float = 0.0,
        duration: Optional[float] = None,
        sr: Optional[int] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        progress_callback: Optional[Callable[[int, str], None]] = None,
    ) -> OfflineAudioData:
        """Load and analyze an audio file in one step."""
        y, sr_out = self.load_audio(audio_path, sr=sr)
        return self.analyze(
            y,
            sr_out,
            start_time=start_time,
            duration=duration,
            should_cancel=should_cancel,
            progress_callback=progress_callback,
        )
