"""
Per-parameter network store and parameter resolution.

The store owns one :class:`Network` per animated parameter id.  Parameter
resolution sits on top of it and never lets an evaluation failure reach the
render loop: a broken network holds its parameter at the last good value
(or the static value) and logs the reason.
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import Any, Optional

from chromagraph.core.evaluator import EvaluationObserver, NetworkEvaluator
from chromagraph.core.frame import SpectralFrame
from chromagraph.core.graph import Network, create_scaffold_network
from chromagraph.core.presets import PRESETS, PresetRegistry, instantiate_preset
from chromagraph.core.registry import NodeRegistry, default_registry
from chromagraph.core.types import HandleType
from chromagraph.errors import ChromagraphError, NetworkNotFoundError

logger = logging.getLogger(__name__)


class NetworkStore:
    """
    Networks keyed by parameter id.

    Args:
        registry: Node kinds (default: built-in library).
        presets: Preset registry used by :meth:`apply_preset`.
        observer: Side channel handed to the evaluator.
    """

    def __init__(
        self,
        registry: Optional[NodeRegistry] = None,
        presets: Optional[PresetRegistry] = None,
        observer: Optional[EvaluationObserver] = None,
    ):
        self.registry = registry or default_registry()
        self.presets = presets if presets is not None else PRESETS
        self.evaluator = NetworkEvaluator(self.registry, observer)
        self.networks: dict[str, Network] = {}

    def __contains__(self, parameter_id: str) -> bool:
        return parameter_id in self.networks

    def __len__(self) -> int:
        return len(self.networks)

    def get(self, parameter_id: str) -> Optional[Network]:
        return self.networks.get(parameter_id)

    def set_network(self, parameter_id: str, network: Network) -> None:
        self.networks[parameter_id] = network

    def create_network(self, parameter_id: str, value_type: Any = HandleType.NUMBER) -> Network:
        """Start animating a parameter with an Input -> Output scaffold."""
        network = create_scaffold_network(parameter_id, value_type)
        self.networks[parameter_id] = network
        return network

    def apply_preset(
        self,
        parameter_id: str,
        preset_id: str,
        output_type: Any = None,
    ) -> Optional[Network]:
        """Replace the parameter's network with a fresh copy of a preset."""
        preset = self.presets.get(preset_id)
        if preset is None:
            logger.warning("Unknown preset '%s' for parameter '%s'", preset_id, parameter_id)
            return None
        network = instantiate_preset(preset, parameter_id, output_type, self.registry)
        self.networks[parameter_id] = network
        return network

    def remove_network(self, parameter_id: str) -> None:
        self.networks.pop(parameter_id, None)

    def set_enabled(
        self,
        parameter_id: str,
        enabled: bool,
        value_type: Any = HandleType.NUMBER,
    ) -> Network:
        """Toggle animation; enabling an unknown parameter creates its scaffold."""
        network = self.networks.get(parameter_id)
        if network is None:
            network = self.create_network(parameter_id, value_type)
        network.is_enabled = enabled
        return network

    def update_node_input_value(
        self,
        parameter_id: str,
        node_id: str,
        input_id: str,
        value: Any,
    ) -> None:
        network = self.networks.get(parameter_id)
        if network is None:
            raise NetworkNotFoundError(parameter_id)
        node = network.node(node_id)
        if node is None:
            logger.warning("Node '%s' not found in network '%s'", node_id, parameter_id)
            return
        node.input_values[input_id] = value

    def duplicate_network(self, source_id: str, target_id: str) -> Network:
        """Copy a network to another parameter; node state starts fresh."""
        source = self.networks.get(source_id)
        if source is None:
            raise NetworkNotFoundError(source_id)
        copy = source.duplicate(target_id)
        self.networks[target_id] = copy
        return copy

    def compute_network_output(self, parameter_id: str, frame: SpectralFrame) -> Any:
        """
        Evaluate one parameter's network.

        Raises the evaluator's configuration errors unchanged.
        """
        return self.evaluator.evaluate(self.networks.get(parameter_id), frame, parameter_id)

    def evaluate_all(self, frame: SpectralFrame) -> dict[str, Any]:
        """
        Evaluate every enabled network once for *frame*.

        A failing network is logged and left out of the result; its
        siblings are unaffected.
        """
        values: dict[str, Any] = {}
        for parameter_id, network in list(self.networks.items()):
            if not network.is_enabled:
                continue
            try:
                values[parameter_id] = self.evaluator.evaluate(network, frame, parameter_id)
            except ChromagraphError as e:
                logger.error("Network '%s' failed: %s", parameter_id, e)
            except Exception:
                logger.exception("Unexpected error evaluating network '%s'", parameter_id)
        return values


def _is_valid(value: Any, value_type: HandleType) -> bool:
    if value is None:
        return False
    if value_type == HandleType.NUMBER:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            return False
        return math.isfinite(value)
    return True


class AnimatedParameter:
    """
    A layer parameter whose value may be driven by a network.

    ``value`` is the static value used while the parameter is not animated.
    When animated, :meth:`resolve` returns the network's output, or on any
    failure the last valid output (falling back to ``value``).
    """

    def __init__(self, id: str, default: Any, value_type: Any = HandleType.NUMBER):
        self.id = id
        self.default = default
        self.value = default
        self.value_type = HandleType.parse(value_type)
        self.last_valid: Any = None

    def is_animated(self, store: NetworkStore) -> bool:
        network = store.get(self.id)
        return network is not None and network.is_enabled

    def resolve(self, store: NetworkStore, frame: SpectralFrame) -> Any:
        if not self.is_animated(store):
            return self.value

        try:
            result = store.compute_network_output(self.id, frame)
        except Exception:
            logger.exception("Error computing network output for '%s'", self.id)
            return self._fallback()

        is_number = isinstance(result, numbers.Real) and not isinstance(result, bool)
        if self.value_type == HandleType.NUMBER and is_number:
            result = float(result)
        if not _is_valid(result, self.value_type):
            logger.warning("Network for '%s' produced an invalid value: %r", self.id, result)
            return self._fallback()

        self.last_valid = result
        return result

    def _fallback(self) -> Any:
        return self.last_valid if self.last_valid is not None else self.value
