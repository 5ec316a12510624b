"""
Parameter manifest export.

Drives a :class:`NetworkStore` through precomputed offline frames and writes
one value per animated parameter per frame to a JSON manifest that a
renderer can consume without re-running the graphs.
"""

import json
import logging
import math
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

from chromagraph.core.offline import OfflineAudioData
from chromagraph.core.store import AnimatedParameter, NetworkStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"


@dataclass
class ManifestMetadata:
    """Metadata header for the parameter manifest."""

    fps: int
    n_frames: int
    duration: float
    start_time: float
    sample_rate: float
    fft_size: int
    schema_version: str = SCHEMA_VERSION


class ParameterManifestExporter:
    """
    Evaluates animated parameters over offline frames and exports them.

    Frames are fed in order, so stateful nodes see the same sequence of
    playback times they would during live preview.
    """

    def __init__(self, precision: int = 4):
        """
        Initialize the exporter.

        Args:
            precision: Decimal places for floating point values.
        """
        self.precision = precision

    def _round(self, value: Any) -> Any:
        """Round numbers to configured precision; non-finite numbers become None."""
        if isinstance(value, bool):
            return value
        if isinstance(value, numbers.Real):
            f = float(value)
            if not math.isfinite(f):
                return None
            return round(f, self.precision)
        return value

    def build_manifest(
        self,
        store: NetworkStore,
        parameters: list[AnimatedParameter],
        audio: OfflineAudioData,
        progress_callback: Optional[Callable[[int, str], None]] = None,
    ) -> dict[str, Any]:
        """
        Build the complete manifest dictionary.

        Args:
            store: Networks driving the parameters.
            parameters: Parameters to resolve on every frame.
            audio: Offline analysis providing one frame per output frame.
            progress_callback: Optional callback(percent, message).

        Returns:
            Manifest dictionary ready for serialization.
        """
        metadata = ManifestMetadata(
            fps=audio.fps,
            n_frames=audio.n_frames,
            duration=self._round(audio.duration),
            start_time=self._round(audio.start_time),
            sample_rate=audio.sample_rate,
            fft_size=audio.fft_size,
        )

        frames = []
        total = audio.n_frames
        report_every = max(1, total // 100)
        for index, frame in enumerate(audio.frames):
            values = {p.id: self._round(p.resolve(store, frame)) for p in parameters}
            frames.append({
                "frame_index": index,
                "time": self._round(frame.time),
                "values": values,
            })
            if progress_callback is not None and ((index + 1) % report_every == 0 or index + 1 == total):
                progress_callback(int(100 * (index + 1) / total), f"Evaluated frame {index + 1}/{total}")

        logger.debug("Built manifest: %d frames x %d parameters", total, len(parameters))

        return {
            "metadata": {
                "fps": metadata.fps,
                "n_frames": metadata.n_frames,
                "duration": metadata.duration,
                "start_time": metadata.start_time,
                "sample_rate": metadata.sample_rate,
                "fft_size": metadata.fft_size,
                "schema_version": metadata.schema_version,
            },
            "frames": frames,
        }

    def export_json(
        self,
        store: NetworkStore,
        parameters: list[AnimatedParameter],
        audio: OfflineAudioData,
        output_path: Union[str, Path],
        indent: int = 2,
        progress_callback: Optional[Callable[[int, str], None]] = None,
    ) -> Path:
        """
        Export manifest to JSON file.

        Returns:
            Path to written file.
        """
        manifest = self.build_manifest(store, parameters, audio, progress_callback)
        output_path = Path(output_path)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=indent)

        return output_path
