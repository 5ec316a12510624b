"""
Persisted network shape.

Networks serialize as::

    {name, isEnabled, isMinimized,
     nodes: [{id, position, data: {definition, inputValues}}],
     edges: [{id, source, sourceHandle, target, targetHandle}]}

``definition`` is the kind label, or ``{"label": "Output", "type": ...}``
for the Output sentinel.  Runtime node state is never written.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from chromagraph.core.graph import Edge, Network, Node
from chromagraph.core.registry import OUTPUT_LABEL, NodeRegistry, default_registry
from chromagraph.core.types import HandleType

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    """Encode numpy values that can appear in input values."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def node_to_dict(node: Node) -> dict[str, Any]:
    if node.is_output:
        definition: Any = {
            "label": OUTPUT_LABEL,
            "type": HandleType.parse(node.output_type).value,
        }
    else:
        definition = node.kind
    return {
        "id": node.id,
        "position": dict(node.position),
        "data": {"definition": definition, "inputValues": dict(node.input_values)},
    }


def edge_to_dict(edge: Edge) -> dict[str, Any]:
    return {
        "id": edge.id,
        "source": edge.source,
        "sourceHandle": edge.source_handle,
        "target": edge.target,
        "targetHandle": edge.target_handle,
    }


def network_to_dict(network: Network) -> dict[str, Any]:
    return {
        "name": network.name,
        "isEnabled": network.is_enabled,
        "isMinimized": network.is_minimized,
        "nodes": [node_to_dict(n) for n in network.nodes],
        "edges": [edge_to_dict(e) for e in network.edges],
    }


def node_from_dict(data: dict[str, Any], registry: NodeRegistry) -> Node:
    """
    Rebuild a node, re-resolving its kind by label.

    Raises:
        UnknownNodeKindError: If the label is not registered.
    """
    payload = data.get("data", {})
    definition = payload.get("definition", payload.get("kindRef"))
    output_type = None

    if isinstance(definition, dict):
        label = definition.get("label")
        if label == OUTPUT_LABEL:
            raw_type = definition.get("type")
            output_type = HandleType.parse(raw_type)
            if output_type.value != raw_type:
                logger.warning(
                    "Invalid output type %r on node '%s', using '%s'",
                    raw_type, data.get("id"), output_type.value,
                )
    else:
        label = definition

    registry.get(label, output_type)

    return Node(
        id=data["id"],
        kind=label,
        input_values=dict(payload.get("inputValues") or {}),
        position=dict(data.get("position") or {"x": 0.0, "y": 0.0}),
        output_type=output_type,
    )


def network_from_dict(data: dict[str, Any], registry: Optional[NodeRegistry] = None) -> Network:
    registry = registry or default_registry()
    return Network(
        name=data["name"],
        is_enabled=bool(data.get("isEnabled", True)),
        is_minimized=bool(data.get("isMinimized", False)),
        nodes=[node_from_dict(n, registry) for n in data.get("nodes", [])],
        edges=[
            Edge(
                id=e.get("id", ""),
                source=e["source"],
                source_handle=e.get("sourceHandle"),
                target=e["target"],
                target_handle=e["targetHandle"],
            )
            for e in data.get("edges", [])
        ],
    )


def dumps(networks: dict[str, Network], indent: Optional[int] = 2) -> str:
    """Serialize networks keyed by parameter id to JSON text."""
    payload = {pid: network_to_dict(n) for pid, n in networks.items()}
    return json.dumps(payload, indent=indent, default=_json_default)


def loads(text: str, registry: Optional[NodeRegistry] = None) -> dict[str, Network]:
    registry = registry or default_registry()
    return {pid: network_from_dict(d, registry) for pid, d in json.loads(text).items()}


def save(networks: dict[str, Network], path: Union[str, Path]) -> Path:
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(dumps(networks))
    return path


def load(path: Union[str, Path], registry: Optional[NodeRegistry] = None) -> dict[str, Network]:
    with open(path, encoding="utf-8") as f:
        return loads(f.read(), registry)
