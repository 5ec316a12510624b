"""
Spectral frames and the sources that produce them.

One :class:`SpectralFrame` drives a single evaluation pass of every animated
parameter.  Frames come either from a live analyzer (bytes pushed in by the
host's audio collaborator once per render tick) or from precomputed offline
analysis used for frame-accurate export.

Architecture Overview
---------------------
::

    Live analyzer bytes ──► LiveFrameSource.push(...) ─┐
                                                       ├─► SpectralFrame ─► evaluator
    OfflineAudioData ─────► OfflineFrameSource.at(t) ──┘
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence

import numpy as np

if TYPE_CHECKING:
    from chromagraph.core.offline import OfflineAudioData

# Port ids that, when left unconnected and without a stored value, are
# filled from the current frame by name.
FRAME_BINDINGS = ("audioSignal", "frequencyAnalysis")


def _as_bytes(data: Any) -> np.ndarray:
    """Coerce analyzer output to a uint8 array without copying uint8 input."""
    if data is None:
        return np.zeros(0, dtype=np.uint8)
    arr = np.asarray(data)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return arr


@dataclass(frozen=True)
class FrequencyAnalysis:
    """Spectrum bytes plus the metadata needed to map bins to Hz."""

    frequency_data: np.ndarray
    sample_rate: float
    fft_size: int

    @property
    def frequency_per_bin(self) -> float:
        """Hz covered by one bin, or 0 when metadata is missing."""
        if not self.sample_rate or not self.fft_size:
            return 0.0
        return (self.sample_rate / 2) / (self.fft_size / 2)

    @property
    def is_empty(self) -> bool:
        return (
            len(self.frequency_data) == 0
            or not self.sample_rate
            or not self.fft_size
        )


EMPTY_FREQUENCY_ANALYSIS = FrequencyAnalysis(
    frequency_data=np.zeros(0, dtype=np.uint8),
    sample_rate=0.0,
    fft_size=0,
)


@dataclass(frozen=True)
class SpectralFrame:
    """
    One sampled instant of audio analysis.

    ``frequency_data`` holds ``fft_size / 2`` bytes and ``time_domain_data``
    holds ``fft_size`` bytes, both scaled to 0-255 the way conventional
    analyzers report them.  ``time`` is the playback position in seconds and
    is the clock every time-aware node measures elapsed time against.
    """

    frequency_data: np.ndarray
    time_domain_data: np.ndarray
    sample_rate: float
    fft_size: int
    time: float = 0.0

    @classmethod
    def from_bytes(
        cls,
        frequency_data: Sequence[int],
        time_domain_data: Sequence[int],
        sample_rate: float,
        fft_size: int,
        time: float = 0.0,
    ) -> "SpectralFrame":
        """Build a frame from any byte-like sequences."""
        return cls(
            frequency_data=_as_bytes(frequency_data),
            time_domain_data=_as_bytes(time_domain_data),
            sample_rate=float(sample_rate),
            fft_size=int(fft_size),
            time=float(time),
        )

    @classmethod
    def silent(
        cls,
        sample_rate: float = 44100.0,
        fft_size: int = 2048,
        time: float = 0.0,
    ) -> "SpectralFrame":
        """A frame with an all-zero spectrum and a centred waveform."""
        return cls(
            frequency_data=np.zeros(fft_size // 2, dtype=np.uint8),
            time_domain_data=np.full(fft_size, 128, dtype=np.uint8),
            sample_rate=float(sample_rate),
            fft_size=int(fft_size),
            time=float(time),
        )

    @property
    def frequency_analysis(self) -> FrequencyAnalysis:
        return FrequencyAnalysis(
            frequency_data=self.frequency_data,
            sample_rate=self.sample_rate,
            fft_size=self.fft_size,
        )

    def as_inputs(self) -> dict[str, Any]:
        """The Input sentinel's outputs: named frame fields."""
        time = self.time if math.isfinite(self.time) else 0.0
        return {
            "audioSignal": self.time_domain_data,
            "frequencyAnalysis": self.frequency_analysis,
            "time": time,
        }

    def binding(self, port_id: str) -> Any:
        """Frame value injected for an unconnected reserved port, else None."""
        if port_id == "audioSignal":
            return self.time_domain_data
        if port_id == "frequencyAnalysis":
            return self.frequency_analysis
        return None


class LiveFrameSource:
    """
    Frame source fed by a live hardware analyzer.

    The host's audio collaborator calls :meth:`push` once per render tick
    with whatever its analyzer reported; :meth:`current` returns the latest
    frame, or a silent frame before anything has arrived.

    Parameters
    ----------
    sample_rate:
        Analyzer sample rate in Hz (default: 44 100).
    fft_size:
        Analyzer FFT size (default: 2 048).
    """

    def __init__(self, sample_rate: float = 44100.0, fft_size: int = 2048):
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self._frame: Optional[SpectralFrame] = None
        self._frame_index: int = 0

    @property
    def frame_index(self) -> int:
        return self._frame_index

    def push(
        self,
        frequency_data: Sequence[int],
        time_domain_data: Sequence[int],
        time: float,
    ) -> SpectralFrame:
        """Record the analyzer's output for this tick and return the frame."""
        self._frame = SpectralFrame.from_bytes(
            frequency_data,
            time_domain_data,
            sample_rate=self.sample_rate,
            fft_size=self.fft_size,
            time=time,
        )
        self._frame_index += 1
        return self._frame

    def current(self) -> SpectralFrame:
        if self._frame is None:
            return SpectralFrame.silent(self.sample_rate, self.fft_size)
        return self._frame


class OfflineFrameSource:
    """
    Frame source backed by precomputed offline analysis.

    Looks frames up by playback time so the render loop can drive export and
    preview through the same call.
    """

    def __init__(self, data: OfflineAudioData):
        self.data = data

    def __len__(self) -> int:
        return len(self.data.frames)

    def at_index(self, index: int) -> SpectralFrame:
        return self.data.frames[index]

    def at(self, time: float) -> SpectralFrame:
        return self.data.frame_at(time)
