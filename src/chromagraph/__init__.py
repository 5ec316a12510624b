"""Audio-reactive node-graph engine for animating visual parameters."""

from chromagraph.core.evaluator import LiveValueStore, NetworkEvaluator
from chromagraph.core.frame import LiveFrameSource, OfflineFrameSource, SpectralFrame
from chromagraph.core.offline import AnalyzerConfig, OfflineSpectralAnalyzer
from chromagraph.core.presets import PRESETS, instantiate_preset
from chromagraph.core.store import AnimatedParameter, NetworkStore
from chromagraph.io.exporter import ParameterManifestExporter

__version__ = "0.1.0"
__all__ = [
    "AnalyzerConfig",
    "AnimatedParameter",
    "LiveFrameSource",
    "LiveValueStore",
    "NetworkEvaluator",
    "NetworkStore",
    "OfflineFrameSource",
    "OfflineSpectralAnalyzer",
    "ParameterManifestExporter",
    "PRESETS",
    "SpectralFrame",
    "instantiate_preset",
]
