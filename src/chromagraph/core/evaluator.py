"""
Graph evaluation.

Computes a network's value for one frame by memoized recursion from the
Output sentinel.  The memo table lives for a single :meth:`evaluate` call;
node state is the only thing that survives between frames.

Resolution of one input port
----------------------------
1. An edge feeds the port: evaluate the source node and read the named
   output handle (no handle: first value of the source's output dict).
2. No edge: use ``node.input_values[port]``.
3. Still nothing and the port id is a frame binding (``audioSignal`` or
   ``frequencyAnalysis``): inject that field from the frame.
4. Number ports parse strings as floats (unparseable strings become 0);
   string ports stringify.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from chromagraph.core.frame import FRAME_BINDINGS, SpectralFrame
from chromagraph.core.graph import Network, Node
from chromagraph.core.registry import NodeRegistry, default_registry
from chromagraph.core.types import HandleType, Port
from chromagraph.errors import (
    GraphCycleError,
    NetworkDisabledError,
    NetworkNotFoundError,
    OutputNodeMissingError,
)

logger = logging.getLogger(__name__)


class EvaluationObserver:
    """
    Write-only side channel receiving every node's inputs and outputs.

    The evaluator calls into an observer but never reads from it.  The base
    class ignores everything.
    """

    def on_node_inputs(self, network_name: str, node_id: str, inputs: dict[str, Any]) -> None:
        pass

    def on_node_output(self, network_name: str, node_id: str, outputs: Any) -> None:
        pass


class LiveValueStore(EvaluationObserver):
    """Keeps the last inputs/outputs of each node for an inspection UI."""

    def __init__(self):
        self._inputs: dict[tuple[str, str], dict[str, Any]] = {}
        self._outputs: dict[tuple[str, str], Any] = {}

    def on_node_inputs(self, network_name, node_id, inputs):
        self._inputs[(network_name, node_id)] = dict(inputs)

    def on_node_output(self, network_name, node_id, outputs):
        self._outputs[(network_name, node_id)] = outputs

    def inputs(self, network_name: str, node_id: str) -> Optional[dict[str, Any]]:
        return self._inputs.get((network_name, node_id))

    def output(self, network_name: str, node_id: str) -> Any:
        return self._outputs.get((network_name, node_id))

    def clear(self, network_name: Optional[str] = None) -> None:
        if network_name is None:
            self._inputs.clear()
            self._outputs.clear()
            return
        for table in (self._inputs, self._outputs):
            for key in [k for k in table if k[0] == network_name]:
                del table[key]


def coerce_input(value: Any, port: Port) -> Any:
    """Apply the port type's coercion to a resolved input value."""
    if value is None:
        return None
    if port.type == HandleType.NUMBER and isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return 0.0
        return parsed if math.isfinite(parsed) else 0.0
    if port.type == HandleType.STRING and not isinstance(value, str):
        return str(value)
    return value


def read_handle(outputs: Any, handle: Optional[str]) -> Any:
    """Value of *handle* in a node's outputs; no handle means the first value."""
    if isinstance(outputs, dict):
        if handle is None:
            return next(iter(outputs.values()), None)
        return outputs.get(handle)
    return outputs if handle is None else None


class NetworkEvaluator:
    """
    Evaluates networks against frames.

    Parameters
    ----------
    registry:
        Node kinds to resolve labels against (default: built-in library).
    observer:
        Optional :class:`EvaluationObserver` receiving per-node values.
    """

    def __init__(
        self,
        registry: Optional[NodeRegistry] = None,
        observer: Optional[EvaluationObserver] = None,
    ):
        self.registry = registry or default_registry()
        self.observer = observer or EvaluationObserver()

    def evaluate(
        self,
        network: Optional[Network],
        frame: SpectralFrame,
        parameter_id: Optional[str] = None,
    ) -> Any:
        """
        Compute the network's output value for *frame*.

        Raises:
            NetworkNotFoundError: If *network* is None.
            NetworkDisabledError: If the network is switched off.
            OutputNodeMissingError: If the network has no Output sentinel.
            UnknownNodeKindError: If a reachable node's kind is unknown.
            GraphCycleError: If the nodes feeding the output form a cycle.
        """
        if network is None:
            raise NetworkNotFoundError(parameter_id or "<unknown>")
        if not network.is_enabled:
            raise NetworkDisabledError(network.name)
        output = network.output_node
        if output is None:
            raise OutputNodeMissingError(network.name)

        memo: dict[str, Any] = {}
        return self._compute(network, output, frame, memo, set())

    def _compute(
        self,
        network: Network,
        node: Node,
        frame: SpectralFrame,
        memo: dict[str, Any],
        active: set[str],
    ) -> Any:
        if node.id in memo:
            return memo[node.id]
        if node.id in active:
            raise GraphCycleError(node.id)

        kind = node.resolve(self.registry)

        if node.is_input:
            outputs = frame.as_inputs()
        else:
            active.add(node.id)
            inputs = {
                port.id: self._resolve_input(network, node, port, frame, memo, active)
                for port in kind.inputs
            }
            active.discard(node.id)
            self.observer.on_node_inputs(network.name, node.id, inputs)
            outputs = kind.run(inputs, frame, node.state)

        memo[node.id] = outputs
        self.observer.on_node_output(network.name, node.id, outputs)
        return outputs

    def _resolve_input(
        self,
        network: Network,
        node: Node,
        port: Port,
        frame: SpectralFrame,
        memo: dict[str, Any],
        active: set[str],
    ) -> Any:
        edge = network.edge_into(node.id, port.id)
        if edge is not None:
            source = network.node(edge.source)
            if source is None:
                logger.debug("Edge %s references missing node %s", edge.id, edge.source)
                value = None
            else:
                value = read_handle(
                    self._compute(network, source, frame, memo, active),
                    edge.source_handle,
                )
        else:
            value = node.input_values.get(port.id)
            # TODO: replace the name-matched frame bindings with an explicit frame-binding port type
            if value is None and port.id in FRAME_BINDINGS:
                value = frame.binding(port.id)
        return coerce_input(value, port)
