"""Frame sources, offline analysis, and the node-graph engine."""

from chromagraph.core.evaluator import NetworkEvaluator
from chromagraph.core.graph import Edge, Network, Node
from chromagraph.core.offline import OfflineSpectralAnalyzer
from chromagraph.core.registry import NodeRegistry

__all__ = ["Edge", "Network", "NetworkEvaluator", "Node", "NodeRegistry", "OfflineSpectralAnalyzer"]
