"""Tests for the node kind registry."""

import pytest

from chromagraph.core.registry import INPUT_LABEL, OUTPUT_LABEL, NodeRegistry, output_kind
from chromagraph.core.types import HandleType, NodeKind, Port
from chromagraph.errors import UnknownNodeKindError

BUILTIN_LABELS = [
    "Sine", "Multiply", "Math", "Normalize", "Value Mapper",
    "Frequency Band", "Band Info", "Average Volume", "Multi-Band Analysis",
    "Spectral Centroid", "Spectral Flux", "Tonal Presence", "Harmonic Presence",
    "Pitch Detection", "Adaptive Section Detector",
    "Envelope Follower", "Adaptive Normalize (Quantile)", "Hysteresis Gate",
    "Spike", "Ducker", "Refractory Gate", "Rate Limiter", "Threshold Counter",
    "Section Change Detector",
]


class TestNodeRegistry:
    """Lookup by label."""

    @pytest.mark.parametrize("label", BUILTIN_LABELS)
    def test_builtin_registered(self, registry, label):
        kind = registry.get(label)
        assert kind.label == label
        assert kind.outputs

    def test_sentinels(self, registry):
        assert INPUT_LABEL in registry
        assert OUTPUT_LABEL in registry
        assert [p.id for p in registry.get(INPUT_LABEL).outputs] == [
            "audioSignal", "frequencyAnalysis", "time",
        ]

    def test_output_kind_per_type(self, registry):
        number = registry.get(OUTPUT_LABEL, HandleType.NUMBER)
        string = registry.get(OUTPUT_LABEL, "string")
        assert number.inputs[0].type == HandleType.NUMBER
        assert string.inputs[0].type == HandleType.STRING
        assert output_kind(HandleType.STRING) is string

    def test_unknown_label(self, registry):
        with pytest.raises(UnknownNodeKindError):
            registry.get("Flux Capacitor")

    def test_output_cannot_be_registered(self):
        kind = NodeKind(OUTPUT_LABEL, (), (), compute=lambda i, f, s: None)
        with pytest.raises(ValueError):
            NodeRegistry().register(kind)

    def test_fresh_registry_only_has_input(self):
        registry = NodeRegistry()
        assert len(registry) == 1
        assert registry.labels() == [INPUT_LABEL]

    def test_decorator_registers(self):
        registry = NodeRegistry()

        @registry.kind("Double", inputs=[Port("x", "X", HandleType.NUMBER, 1)],
                       outputs=[Port("y", "Y", HandleType.NUMBER)])
        def double(inputs, frame, state):
            """Doubles its input."""
            return {"y": inputs["x"] * 2}

        kind = registry.get("Double")
        assert kind.description == "Doubles its input."
        assert kind.run({}, None) == {"y": 2}

    def test_search(self, registry):
        labels = {k.label for k in registry.search("gate")}
        assert {"Hysteresis Gate", "Refractory Gate"} <= labels
        assert registry.search("zzz-no-match") == []

    def test_stateful_flags(self, registry):
        assert registry.get("Envelope Follower").stateful
        assert not registry.get("Normalize").stateful
