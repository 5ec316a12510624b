"""Tests for preset templates and instantiation."""

import pytest

from chromagraph.core.graph import validate_connection
from chromagraph.core.presets import (
    BUILTIN_PRESET_TEMPLATES,
    PRESETS,
    NetworkPreset,
    PresetRegistry,
    instantiate_preset,
)
from chromagraph.core.types import HandleType
from chromagraph.errors import UnknownNodeKindError


@pytest.fixture
def kick_preset():
    return PRESETS.get("bars-kick-adaptive")


class TestBuiltinPresets:
    """Shipped preset templates."""

    def test_ids_are_unique(self):
        ids = [t["id"] for t in BUILTIN_PRESET_TEMPLATES]
        assert len(ids) == len(set(ids)) == len(PRESETS)

    @pytest.mark.parametrize("preset_id", [t["id"] for t in BUILTIN_PRESET_TEMPLATES])
    def test_every_edge_is_type_valid(self, preset_id, registry):
        net = instantiate_preset(PRESETS.get(preset_id), "p", registry=registry)
        for edge in net.edges:
            assert validate_connection(
                net, edge.source, edge.source_handle, edge.target, edge.target_handle, registry,
            ), edge.id

    @pytest.mark.parametrize("preset_id", [t["id"] for t in BUILTIN_PRESET_TEMPLATES])
    def test_every_preset_evaluates(self, preset_id, evaluator, make_frame):
        net = instantiate_preset(PRESETS.get(preset_id), "p")
        for i in range(10):
            value = evaluator.evaluate(net, make_frame(level=120, time=i / 60))
            assert isinstance(value, float)

    def test_for_type(self):
        assert len(PRESETS.for_type("number")) == len(PRESETS)
        assert PRESETS.for_type(HandleType.STRING) == []

    def test_sine_preset(self, evaluator, make_frame):
        net = instantiate_preset(PRESETS.get("number-sine-osc"), "p")
        assert evaluator.evaluate(net, make_frame(time=0.25)) == pytest.approx(1.0)

    def test_kick_preset_stays_in_unit_range(self, evaluator, kick_preset, make_frame):
        net = instantiate_preset(kick_preset, "p")
        for i in range(120):
            level = 220 if i % 20 < 3 else 40
            value = evaluator.evaluate(net, make_frame(level=level, time=i / 60))
            assert 0.0 <= value <= 1.0


class TestInstantiation:
    """Turning a template into a network."""

    def test_node_ids_namespaced(self, kick_preset):
        net = instantiate_preset(kick_preset, "glow")
        ids = {n.id for n in net.nodes}
        assert ids == {
            "glow-input-node", "glow-output-node",
            "glow-band", "glow-avg", "glow-env", "glow-adapt", "glow-gate",
        }
        assert net.name == "glow"

    def test_aliases_resolve_to_sentinels(self, kick_preset):
        net = instantiate_preset(kick_preset, "glow")
        sources = {e.source for e in net.edges}
        targets = {e.target for e in net.edges}
        assert "glow-input-node" in sources
        assert "glow-output-node" in targets
        assert "INPUT" not in sources and "OUTPUT" not in targets

    def test_edge_ids(self, kick_preset):
        net = instantiate_preset(kick_preset, "glow")
        assert [e.id for e in net.edges] == [f"glow-edge-{i}" for i in range(len(net.edges))]

    def test_two_parameters_do_not_collide(self, kick_preset, evaluator, make_frame):
        a = instantiate_preset(kick_preset, "a")
        b = instantiate_preset(kick_preset, "b")
        assert not {n.id for n in a.nodes} & {n.id for n in b.nodes}

        evaluator.evaluate(a, make_frame(level=200))
        assert all(n.state == {} for n in b.nodes)

    def test_input_values_are_copied(self, kick_preset):
        net = instantiate_preset(kick_preset, "glow")
        net.node("glow-band").input_values["startFrequency"] = 1
        assert kick_preset.nodes[0].input_values["startFrequency"] == 80

    def test_output_type_override(self, kick_preset):
        assert instantiate_preset(kick_preset, "p").output_type == HandleType.NUMBER
        assert instantiate_preset(kick_preset, "p", "string").output_type == HandleType.STRING
        assert instantiate_preset(kick_preset, "p", "bogus").output_type == HandleType.NUMBER

    def test_unknown_kind_raises(self):
        preset = NetworkPreset.from_dict({
            "id": "broken",
            "outputType": "number",
            "nodes": [{"id": "x", "label": "Does Not Exist"}],
            "edges": [],
        })
        with pytest.raises(UnknownNodeKindError):
            instantiate_preset(preset, "p")


class TestPresetRegistry:
    """Custom preset collections."""

    def test_register_and_replace(self, caplog):
        registry = PresetRegistry()
        first = NetworkPreset.from_dict({"id": "x", "outputType": "number"})
        second = NetworkPreset.from_dict({"id": "x", "name": "Second", "outputType": "string"})
        registry.register(first)
        registry.register(second)

        assert len(registry) == 1
        assert registry.get("x").name == "Second"
        assert registry.for_type("string") == [second]
        assert "Replacing preset" in caplog.text

    def test_from_dict_defaults(self):
        preset = NetworkPreset.from_dict({"id": "bare"})
        assert preset.name == "bare"
        assert preset.output_type == HandleType.NUMBER
        assert preset.nodes == [] and preset.edges == []
