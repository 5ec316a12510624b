"""
Preset templates and their instantiation into concrete networks.

A preset is a static template graph.  Its edges name the network's
sentinels through the reserved aliases ``INPUT`` and ``OUTPUT``.
Instantiating it for a parameter namespaces every node id under the
parameter id, so one preset can back many parameters without collisions.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from chromagraph.core.graph import Edge, Network, Node, input_node_id, output_node_id
from chromagraph.core.registry import INPUT_LABEL, OUTPUT_LABEL, NodeRegistry, default_registry
from chromagraph.core.types import HandleType

logger = logging.getLogger(__name__)

INPUT_ALIAS = "INPUT"
OUTPUT_ALIAS = "OUTPUT"


@dataclass
class PresetNode:
    id: str
    label: str
    input_values: dict[str, Any] = field(default_factory=dict)
    position: Optional[dict[str, float]] = None


@dataclass
class PresetEdge:
    source: str
    target: str
    target_handle: str
    source_handle: Optional[str] = None


@dataclass
class NetworkPreset:
    """A named template graph for one output type."""

    id: str
    name: str
    output_type: HandleType
    nodes: list[PresetNode]
    edges: list[PresetEdge]
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NetworkPreset":
        """Build a preset from its template mapping (camelCase keys)."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            output_type=HandleType.parse(data.get("outputType")),
            nodes=[
                PresetNode(
                    id=n["id"],
                    label=n["label"],
                    input_values=dict(n.get("inputValues") or {}),
                    position=n.get("position"),
                )
                for n in data.get("nodes", [])
            ],
            edges=[
                PresetEdge(
                    source=e["source"],
                    source_handle=e.get("sourceHandle"),
                    target=e["target"],
                    target_handle=e["targetHandle"],
                )
                for e in data.get("edges", [])
            ],
        )


class PresetRegistry:
    """Presets grouped by output type; ids are unique across types."""

    def __init__(self, presets: Iterable[NetworkPreset] = ()):
        self._presets: dict[str, NetworkPreset] = {}
        for preset in presets:
            self.register(preset)

    def __iter__(self) -> Iterator[NetworkPreset]:
        return iter(self._presets.values())

    def __len__(self) -> int:
        return len(self._presets)

    def register(self, preset: NetworkPreset) -> None:
        if preset.id in self._presets:
            logger.warning("Replacing preset '%s'", preset.id)
        self._presets[preset.id] = preset

    def get(self, preset_id: str) -> Optional[NetworkPreset]:
        return self._presets.get(preset_id)

    def for_type(self, output_type: Any) -> list[NetworkPreset]:
        wanted = HandleType.parse(output_type)
        return [p for p in self._presets.values() if p.output_type == wanted]


def instantiate_preset(
    preset: NetworkPreset,
    parameter_id: str,
    output_type: Any = None,
    registry: Optional[NodeRegistry] = None,
) -> Network:
    """
    Clone *preset* into a fresh network for *parameter_id*.

    Template node ``x`` becomes ``"{parameter_id}-x"`` and the aliases map
    to ``"{parameter_id}-input-node"`` / ``"{parameter_id}-output-node"``.
    The Output sentinel takes *output_type* (default: the preset's type).

    Raises:
        UnknownNodeKindError: If a template node names an unknown kind.
    """
    registry = registry or default_registry()
    out_type = preset.output_type
    if output_type is not None:
        out_type = HandleType.parse(output_type, preset.output_type)

    id_map = {
        INPUT_ALIAS: input_node_id(parameter_id),
        OUTPUT_ALIAS: output_node_id(parameter_id),
    }
    nodes = [Node(id=id_map[INPUT_ALIAS], kind=INPUT_LABEL, position={"x": -300.0, "y": 0.0})]

    for index, template in enumerate(preset.nodes):
        registry.get(template.label)
        node_id = f"{parameter_id}-{template.id}"
        id_map[template.id] = node_id
        nodes.append(
            Node(
                id=node_id,
                kind=template.label,
                input_values=copy.deepcopy(template.input_values),
                position=dict(template.position) if template.position else {"x": 200.0 * index, "y": 0.0},
            )
        )

    nodes.append(
        Node(
            id=id_map[OUTPUT_ALIAS],
            kind=OUTPUT_LABEL,
            position={"x": 200.0 * len(preset.nodes) + 100.0, "y": 0.0},
            output_type=out_type,
        )
    )

    edges = [
        Edge(
            id=f"{parameter_id}-edge-{i}",
            source=id_map.get(e.source, e.source),
            source_handle=e.source_handle,
            target=id_map.get(e.target, e.target),
            target_handle=e.target_handle,
        )
        for i, e in enumerate(preset.edges)
    ]

    return Network(name=parameter_id, nodes=nodes, edges=edges)


# ---------------------------------------------------------------------------
# Built-in presets
# ---------------------------------------------------------------------------

def _adaptive_gate_preset(
    preset_id: str,
    name: str,
    band: tuple[float, float],
    envelope: tuple[float, float],
    q_high: float,
    gate: tuple[float, float],
) -> dict:
    return {
        "id": preset_id,
        "name": name,
        "description": (
            f"Frequency Band({band[0]:g}-{band[1]:g}Hz) -> Average Volume -> Envelope Follower "
            "-> Adaptive Normalize (Quantile) -> Hysteresis Gate -> Output"
        ),
        "outputType": "number",
        "nodes": [
            {"id": "band", "label": "Frequency Band",
             "inputValues": {"startFrequency": band[0], "endFrequency": band[1]}},
            {"id": "avg", "label": "Average Volume"},
            {"id": "env", "label": "Envelope Follower",
             "inputValues": {"attackMs": envelope[0], "releaseMs": envelope[1]}},
            {"id": "adapt", "label": "Adaptive Normalize (Quantile)",
             "inputValues": {"windowMs": 4000, "qLow": 0.5, "qHigh": q_high}},
            {"id": "gate", "label": "Hysteresis Gate",
             "inputValues": {"low": gate[0], "high": gate[1]}},
        ],
        "edges": [
            {"source": INPUT_ALIAS, "sourceHandle": "frequencyAnalysis",
             "target": "band", "targetHandle": "frequencyAnalysis"},
            {"source": "band", "sourceHandle": "bandData", "target": "avg", "targetHandle": "data"},
            {"source": "avg", "sourceHandle": "average", "target": "env", "targetHandle": "value"},
            {"source": "env", "sourceHandle": "env", "target": "adapt", "targetHandle": "value"},
            {"source": "adapt", "sourceHandle": "result", "target": "gate", "targetHandle": "value"},
            {"source": "gate", "sourceHandle": "gated", "target": OUTPUT_ALIAS, "targetHandle": "output"},
        ],
    }


BUILTIN_PRESET_TEMPLATES = [
    {
        "id": "number-sine-osc",
        "name": "Sine Oscillator (time)",
        "description": "Input.time -> Sine -> Output",
        "outputType": "number",
        "nodes": [
            {"id": "sine", "label": "Sine", "inputValues": {"frequency": 1, "phase": 0, "amplitude": 1}},
        ],
        "edges": [
            {"source": INPUT_ALIAS, "sourceHandle": "time", "target": "sine", "targetHandle": "time"},
            {"source": "sine", "sourceHandle": "value", "target": OUTPUT_ALIAS, "targetHandle": "output"},
        ],
    },
    {
        "id": "number-average-volume",
        "name": "Average Volume -> Normalize",
        "description": "Input.audioSignal -> Average Volume -> Normalize(0..1) -> Output",
        "outputType": "number",
        "nodes": [
            {"id": "avg", "label": "Average Volume"},
            {"id": "norm", "label": "Normalize",
             "inputValues": {"inputMin": 0, "inputMax": 255, "outputMin": 0, "outputMax": 1}},
        ],
        "edges": [
            {"source": INPUT_ALIAS, "sourceHandle": "audioSignal", "target": "avg", "targetHandle": "data"},
            {"source": "avg", "sourceHandle": "average", "target": "norm", "targetHandle": "value"},
            {"source": "norm", "sourceHandle": "result", "target": OUTPUT_ALIAS, "targetHandle": "output"},
        ],
    },
    {
        "id": "number-kick-band-smoothed",
        "name": "Kick Band (40-120Hz) -> Avg -> Normalize -> Envelope",
        "description": (
            "Input.frequencyAnalysis -> Frequency Band (40-120Hz) -> Average -> "
            "Normalize(30..200 -> 0..4) -> Envelope Follower -> Output"
        ),
        "outputType": "number",
        "nodes": [
            {"id": "band", "label": "Frequency Band", "inputValues": {"startFrequency": 40, "endFrequency": 120}},
            {"id": "avg", "label": "Average Volume"},
            {"id": "norm", "label": "Normalize",
             "inputValues": {"inputMin": 30, "inputMax": 200, "outputMin": 0, "outputMax": 4}},
            {"id": "env", "label": "Envelope Follower", "inputValues": {"attackMs": 5, "releaseMs": 120}},
        ],
        "edges": [
            {"source": INPUT_ALIAS, "sourceHandle": "frequencyAnalysis",
             "target": "band", "targetHandle": "frequencyAnalysis"},
            {"source": "band", "sourceHandle": "bandData", "target": "avg", "targetHandle": "data"},
            {"source": "avg", "sourceHandle": "average", "target": "norm", "targetHandle": "value"},
            {"source": "norm", "sourceHandle": "result", "target": "env", "targetHandle": "value"},
            {"source": "env", "sourceHandle": "env", "target": OUTPUT_ALIAS, "targetHandle": "output"},
        ],
    },
    _adaptive_gate_preset(
        "bars-kick-adaptive", "Kick (Band -> Avg -> Env -> Adaptive Normalize -> Gate)",
        band=(80, 150), envelope=(6, 120), q_high=0.98, gate=(0.33, 0.45),
    ),
    _adaptive_gate_preset(
        "bars-snare-adaptive", "Snare (Band -> Avg -> Env -> Adaptive Normalize -> Gate)",
        band=(180, 4000), envelope=(4, 140), q_high=0.95, gate=(0.06, 0.14),
    ),
    {
        "id": "number-melody-presence",
        "name": "Melody (Band -> Harmonic Presence)",
        "description": "Input.frequencyAnalysis -> Frequency Band (200-2000Hz) -> Harmonic Presence -> Output",
        "outputType": "number",
        "nodes": [
            {"id": "band", "label": "Frequency Band", "inputValues": {"startFrequency": 200, "endFrequency": 2000}},
            {"id": "harm", "label": "Harmonic Presence",
             "inputValues": {"maxHarmonics": 6, "toleranceCents": 35, "smoothMs": 120, "minSNR": 0.05}},
        ],
        "edges": [
            {"source": INPUT_ALIAS, "sourceHandle": "frequencyAnalysis",
             "target": "band", "targetHandle": "frequencyAnalysis"},
            {"source": "band", "sourceHandle": "bandData", "target": "harm", "targetHandle": "data"},
            {"source": "band", "sourceHandle": "bandStartBin", "target": "harm", "targetHandle": "bandStartBin"},
            {"source": "band", "sourceHandle": "frequencyPerBin",
             "target": "harm", "targetHandle": "frequencyPerBin"},
            {"source": "harm", "sourceHandle": "presence", "target": OUTPUT_ALIAS, "targetHandle": "output"},
        ],
    },
]

PRESETS = PresetRegistry(NetworkPreset.from_dict(t) for t in BUILTIN_PRESET_TEMPLATES)
