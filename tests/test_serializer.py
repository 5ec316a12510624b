"""Tests for network persistence."""

import json

import numpy as np
import pytest

from chromagraph.core.presets import PRESETS, instantiate_preset
from chromagraph.core.types import HandleType
from chromagraph.errors import UnknownNodeKindError
from chromagraph.io import serializer


@pytest.fixture
def kick_network():
    return instantiate_preset(PRESETS.get("bars-kick-adaptive"), "glow")


class TestNetworkToDict:
    """Persisted shape."""

    def test_top_level_keys(self, kick_network):
        data = serializer.network_to_dict(kick_network)
        assert set(data) == {"name", "isEnabled", "isMinimized", "nodes", "edges"}
        assert data["name"] == "glow"
        assert data["isEnabled"] is True

    def test_node_shape(self, kick_network):
        data = serializer.network_to_dict(kick_network)
        band = next(n for n in data["nodes"] if n["id"] == "glow-band")
        assert set(band) == {"id", "position", "data"}
        assert band["data"]["definition"] == "Frequency Band"
        assert band["data"]["inputValues"] == {"startFrequency": 80, "endFrequency": 150}

    def test_output_definition_carries_type(self, kick_network):
        data = serializer.network_to_dict(kick_network)
        out = next(n for n in data["nodes"] if n["id"] == "glow-output-node")
        assert out["data"]["definition"] == {"label": "Output", "type": "number"}

    def test_runtime_state_not_written(self, kick_network, evaluator, make_frame):
        evaluator.evaluate(kick_network, make_frame(level=100))
        text = serializer.dumps({"glow": kick_network})
        assert "prev_env" not in text
        assert "state" not in text

    def test_edge_shape(self, kick_network):
        edge = serializer.network_to_dict(kick_network)["edges"][0]
        assert edge == {
            "id": "glow-edge-0",
            "source": "glow-input-node",
            "sourceHandle": "frequencyAnalysis",
            "target": "glow-band",
            "targetHandle": "frequencyAnalysis",
        }

    def test_numpy_input_values_encode(self, kick_network):
        kick_network.node("glow-band").input_values["startFrequency"] = np.float32(90.0)
        kick_network.node("glow-band").input_values["extra"] = np.arange(3)
        data = json.loads(serializer.dumps({"glow": kick_network}))
        band = next(n for n in data["glow"]["nodes"] if n["id"] == "glow-band")
        assert band["data"]["inputValues"]["startFrequency"] == 90.0
        assert band["data"]["inputValues"]["extra"] == [0, 1, 2]


class TestNetworkFromDict:
    """Loading re-resolves kinds by label."""

    def test_roundtrip_evaluates_identically(self, kick_network, evaluator, make_frame):
        restored = serializer.loads(serializer.dumps({"glow": kick_network}))["glow"]

        assert [n.id for n in restored.nodes] == [n.id for n in kick_network.nodes]
        assert restored.output_type == HandleType.NUMBER
        for i in range(60):
            frame = make_frame(level=40 + (i * 37) % 200, time=i / 60)
            assert evaluator.evaluate(restored, frame) == evaluator.evaluate(kick_network, frame)

    def test_unknown_kind_raises(self, registry):
        data = {
            "name": "p",
            "nodes": [{"id": "x", "data": {"definition": "Gone Node", "inputValues": {}}}],
            "edges": [],
        }
        with pytest.raises(UnknownNodeKindError):
            serializer.network_from_dict(data, registry)

    def test_invalid_output_type_falls_back(self, registry, caplog):
        data = {
            "name": "p",
            "nodes": [{
                "id": "p-output-node",
                "data": {"definition": {"label": "Output", "type": "hologram"}},
            }],
        }
        net = serializer.network_from_dict(data, registry)
        assert net.output_type == HandleType.NUMBER
        assert "hologram" in caplog.text

    def test_kind_ref_accepted(self, registry):
        data = {"name": "p", "nodes": [{"id": "s", "data": {"kindRef": "Sine"}}]}
        net = serializer.network_from_dict(data, registry)
        assert net.node("s").kind == "Sine"
        assert net.node("s").position == {"x": 0.0, "y": 0.0}
        assert net.is_enabled and not net.is_minimized

    def test_save_and_load(self, kick_network, tmp_path):
        path = serializer.save({"glow": kick_network}, tmp_path / "networks.json")
        loaded = serializer.load(path)
        assert list(loaded) == ["glow"]
        assert len(loaded["glow"].edges) == len(kick_network.edges)
