"""
Offline parameter export.

Analyzes an audio file frame by frame, evaluates every animated parameter's
network against each frame, and writes the per-frame values to a JSON
manifest.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from chromagraph.core.offline import AnalyzerConfig, OfflineSpectralAnalyzer
from chromagraph.core.store import AnimatedParameter, NetworkStore
from chromagraph.core.types import type_fallback
from chromagraph.errors import ChromagraphError
from chromagraph.io import serializer
from chromagraph.io.exporter import ParameterManifestExporter

logger = logging.getLogger(__name__)


def make_progress_reporter(
    progress_callback: Optional[Callable[[int, str], None]] = None,
) -> Callable[[int, str], None]:
    """Progress printer for the CLI; every update is also forwarded to *progress_callback*."""
    interactive = sys.stdout.isatty()

    def report_progress(pct: int, msg: str):
        pct = max(0, min(100, int(pct)))
        if interactive:
            # Rewrite the same terminal line until done
            print(f"\r{pct:3d}%  {msg:60.60}", end="\n" if pct >= 100 else "", flush=True)
        else:
            print(f"{pct:3d}% {msg}", flush=True)

        if progress_callback:
            progress_callback(pct, msg)

    return report_progress


def export_parameters(
    audio_path: Path,
    output_path: Path,
    store: NetworkStore,
    fps: int = 60,
    fft_size: int = 2048,
    start_time: float = 0.0,
    duration: Optional[float] = None,
    progress_callback: Optional[Callable[[int, str], None]] = None,
) -> Path:
    """
    Analyze *audio_path* and export every network's value per frame.

    Args:
        audio_path: Input audio file.
        output_path: Destination JSON manifest.
        store: Networks to evaluate, keyed by parameter id.
        fps: Output frame rate.
        fft_size: Analyzer FFT size (power of two).
        start_time: Start of the export window in seconds.
        duration: Window length in seconds (None for the rest of the file).
        progress_callback: Optional callback(progress, message).

    Returns:
        Path to the written manifest.
    """
    report_progress = make_progress_reporter(progress_callback)

    report_progress(0, f"Loading audio: {audio_path}")
    analyzer = OfflineSpectralAnalyzer(AnalyzerConfig(fps=fps, fft_size=fft_size))

    def analysis_progress(pct: int, msg: str):
        report_progress(int(pct * 0.5), msg)

    audio = analyzer.analyze_file(
        audio_path,
        start_time=start_time,
        duration=duration,
        progress_callback=analysis_progress,
    )
    report_progress(50, f"Analyzed {audio.n_frames} frames ({audio.duration:.2f}s)")

    parameters = [
        AnimatedParameter(pid, type_fallback(network.output_type), network.output_type)
        for pid, network in store.networks.items()
    ]

    def evaluation_progress(pct: int, msg: str):
        report_progress(50 + int(pct * 0.5), msg)

    exporter = ParameterManifestExporter()
    path = exporter.export_json(
        store, parameters, audio, output_path, progress_callback=evaluation_progress,
    )
    report_progress(100, f"Complete! Wrote {path}")
    return path


def _parse_preset_binding(text: str) -> tuple[str, str]:
    parameter_id, sep, preset_id = text.partition("=")
    if not sep or not parameter_id or not preset_id:
        raise argparse.ArgumentTypeError(f"Expected PARAMETER=PRESET, got {text!r}")
    return parameter_id, preset_id


def main(argv: Optional[list[str]] = None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Export audio-reactive parameter values for every frame"
    )

    parser.add_argument(
        "audio",
        type=Path,
        help="Path to audio file (wav, mp3, flac)",
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output manifest path (default: <audio>_parameters.json)",
    )
    parser.add_argument(
        "-n", "--networks",
        type=Path,
        default=None,
        help="JSON file of saved networks keyed by parameter id",
    )
    parser.add_argument(
        "-p", "--preset",
        type=_parse_preset_binding,
        action="append",
        default=[],
        metavar="PARAMETER=PRESET",
        help="Animate PARAMETER with a built-in preset (repeatable)",
    )
    parser.add_argument(
        "-f", "--fps",
        type=int,
        default=60,
        help="Frames per second (default: 60)",
    )
    parser.add_argument(
        "--fft-size",
        type=int,
        default=2048,
        help="FFT size, a power of two (default: 2048)",
    )
    parser.add_argument(
        "--start",
        type=float,
        default=0.0,
        help="Start time in seconds (default: 0)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Duration in seconds (default: to end of file)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if not args.audio.exists():
        print(f"Error: Audio file not found: {args.audio}", file=sys.stderr)
        sys.exit(1)

    store = NetworkStore()
    if args.networks is not None:
        try:
            for pid, network in serializer.load(args.networks, store.registry).items():
                store.set_network(pid, network)
        except (OSError, ValueError, KeyError, ChromagraphError) as e:
            print(f"Error: Could not load networks from {args.networks}: {e}", file=sys.stderr)
            sys.exit(1)

    for parameter_id, preset_id in args.preset:
        if store.apply_preset(parameter_id, preset_id) is None:
            print(f"Error: Unknown preset: {preset_id}", file=sys.stderr)
            sys.exit(1)

    if len(store) == 0:
        print("Error: No networks to export (use --networks or --preset)", file=sys.stderr)
        sys.exit(1)

    output = args.output
    if output is None:
        output = args.audio.with_name(f"{args.audio.stem}_parameters.json")

    try:
        export_parameters(
            audio_path=args.audio,
            output_path=output,
            store=store,
            fps=args.fps,
            fft_size=args.fft_size,
            start_time=args.start,
            duration=args.duration,
        )
    except ChromagraphError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
