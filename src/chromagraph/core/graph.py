"""
Per-parameter node graphs.

A :class:`Network` owns its nodes and edges.  Nodes refer to their kind by
label only; the registry supplies ports and compute functions.  Edge port
types are checked here, at edit time, and never again during evaluation.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from chromagraph.core.registry import INPUT_LABEL, OUTPUT_LABEL, NodeRegistry, default_registry
from chromagraph.core.types import HandleType, NodeKind, can_connect_types
from chromagraph.errors import IncompatiblePortsError, UnknownNodeKindError


def input_node_id(parameter_id: str) -> str:
    return f"{parameter_id}-input-node"


def output_node_id(parameter_id: str) -> str:
    return f"{parameter_id}-output-node"


@dataclass
class Node:
    """One node instance inside a network."""

    id: str
    kind: str
    input_values: dict[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    position: dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0})
    output_type: Optional[HandleType] = None

    @property
    def is_input(self) -> bool:
        return self.kind == INPUT_LABEL

    @property
    def is_output(self) -> bool:
        return self.kind == OUTPUT_LABEL

    def resolve(self, registry: NodeRegistry) -> NodeKind:
        return registry.get(self.kind, self.output_type)

    def fresh_copy(self, new_id: Optional[str] = None) -> "Node":
        """Deep copy of configuration with empty runtime state."""
        return Node(
            id=new_id or self.id,
            kind=self.kind,
            input_values=copy.deepcopy(self.input_values),
            state={},
            position=dict(self.position),
            output_type=self.output_type,
        )


@dataclass
class Edge:
    """Connection from a source output handle to a target input handle."""

    source: str
    target: str
    target_handle: str
    source_handle: Optional[str] = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"{self.source}:{self.source_handle or ''}->{self.target}:{self.target_handle}"


@dataclass
class Network:
    """
    Node graph bound to one animated parameter.

    Holds exactly one Input sentinel and one Output sentinel once built via
    :func:`create_scaffold_network` or preset instantiation.
    """

    name: str
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    is_enabled: bool = True
    is_minimized: bool = False

    def node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def input_node(self) -> Optional[Node]:
        return next((n for n in self.nodes if n.is_input), None)

    @property
    def output_node(self) -> Optional[Node]:
        return next((n for n in self.nodes if n.is_output), None)

    @property
    def output_type(self) -> Optional[HandleType]:
        out = self.output_node
        return out.output_type if out is not None else None

    def edge_into(self, target: str, target_handle: str) -> Optional[Edge]:
        for edge in self.edges:
            if edge.target == target and edge.target_handle == target_handle:
                return edge
        return None

    def add_node(self, node: Node) -> Node:
        if self.node(node.id) is not None:
            raise ValueError(f"Node id '{node.id}' already exists in network '{self.name}'")
        self.nodes.append(node)
        return node

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge touching it."""
        self.nodes = [n for n in self.nodes if n.id != node_id]
        self.edges = [e for e in self.edges if e.source != node_id and e.target != node_id]

    def connect(
        self,
        source: str,
        source_handle: Optional[str],
        target: str,
        target_handle: str,
        registry: Optional[NodeRegistry] = None,
    ) -> Edge:
        """
        Add an edge after checking port compatibility.

        An input port accepts one edge; connecting to an occupied port
        replaces its edge.

        Raises:
            IncompatiblePortsError: If either port is missing or the types
                cannot connect.
        """
        if not validate_connection(self, source, source_handle, target, target_handle, registry):
            raise IncompatiblePortsError(
                f"Cannot connect {source}.{source_handle} -> {target}.{target_handle}"
            )
        self.edges = [
            e for e in self.edges
            if not (e.target == target and e.target_handle == target_handle)
        ]
        edge = Edge(source=source, source_handle=source_handle, target=target, target_handle=target_handle)
        self.edges.append(edge)
        return edge

    def disconnect(self, edge_id: str) -> None:
        self.edges = [e for e in self.edges if e.id != edge_id]

    def duplicate(self, name: str) -> "Network":
        """
        Copy this network for another parameter.

        Node ids namespaced under the old name are re-namespaced under
        *name*; every node starts with fresh state.
        """
        prefix = f"{self.name}-"

        def rename(node_id: str) -> str:
            if node_id.startswith(prefix):
                return f"{name}-{node_id[len(prefix):]}"
            return node_id

        return Network(
            name=name,
            nodes=[n.fresh_copy(rename(n.id)) for n in self.nodes],
            edges=[
                Edge(
                    source=rename(e.source),
                    source_handle=e.source_handle,
                    target=rename(e.target),
                    target_handle=e.target_handle,
                )
                for e in self.edges
            ],
            is_enabled=self.is_enabled,
            is_minimized=self.is_minimized,
        )

    def reset_state(self) -> None:
        for node in self.nodes:
            node.state.clear()


def validate_connection(
    network: Network,
    source: str,
    source_handle: Optional[str],
    target: str,
    target_handle: str,
    registry: Optional[NodeRegistry] = None,
) -> bool:
    """True when the source output may feed the target input."""
    registry = registry or default_registry()
    source_node = network.node(source)
    target_node = network.node(target)
    if source_node is None or target_node is None or source_handle is None:
        return False
    try:
        out_port = source_node.resolve(registry).output_port(source_handle)
        in_port = target_node.resolve(registry).input_port(target_handle)
    except UnknownNodeKindError:
        return False
    if out_port is None or in_port is None:
        return False
    return can_connect_types(out_port.type, in_port.type)


def create_scaffold_network(parameter_id: str, output_type: Any = HandleType.NUMBER) -> Network:
    """Minimal Input -> Output network for a newly animated parameter."""
    return Network(
        name=parameter_id,
        nodes=[
            Node(id=input_node_id(parameter_id), kind=INPUT_LABEL, position={"x": 0.0, "y": 0.0}),
            Node(
                id=output_node_id(parameter_id),
                kind=OUTPUT_LABEL,
                position={"x": 300.0, "y": 0.0},
                output_type=HandleType.parse(output_type),
            ),
        ],
    )
