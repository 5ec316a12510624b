"""Tests for the network store and animated parameter resolution."""

import math

import pytest

from chromagraph.core.graph import Edge, Node
from chromagraph.core.registry import NodeRegistry, default_registry
from chromagraph.core.store import AnimatedParameter, NetworkStore
from chromagraph.core.types import HandleType, Port
from chromagraph.errors import NetworkNotFoundError


@pytest.fixture
def custom_registry():
    """Built-in kinds plus a passthrough and a kind that always raises."""
    registry = NodeRegistry(default_registry())

    @registry.kind(
        "Passthrough",
        inputs=[Port("value", "Value", HandleType.OBJECT)],
        outputs=[Port("value", "Value", HandleType.NUMBER)],
    )
    def passthrough(inputs, frame, state):
        return {"value": inputs["value"]}

    @registry.kind(
        "Explode",
        inputs=[],
        outputs=[Port("value", "Value", HandleType.NUMBER)],
    )
    def explode(inputs, frame, state):
        raise RuntimeError("boom")

    return registry


@pytest.fixture
def store(custom_registry):
    return NetworkStore(registry=custom_registry)


def wire(store, parameter_id, kind, input_values=None, output_type=HandleType.NUMBER, handle="value"):
    """Scaffold *parameter_id* with one *kind* node feeding the Output."""
    net = store.create_network(parameter_id, output_type)
    node_id = f"{parameter_id}-node"
    net.add_node(Node(id=node_id, kind=kind, input_values=dict(input_values or {})))
    net.edges.append(Edge(source=node_id, source_handle=handle,
                          target=net.output_node.id, target_handle="output"))
    return net


class TestNetworkStore:
    """Creating and editing per-parameter networks."""

    def test_create_network(self, store):
        net = store.create_network("opacity")
        assert "opacity" in store
        assert len(store) == 1
        assert store.get("opacity") is net
        assert net.output_type == HandleType.NUMBER

    def test_apply_preset(self, store, make_frame):
        net = store.apply_preset("scale", "number-sine-osc")
        assert store.get("scale") is net
        assert net.node("scale-sine") is not None
        assert store.compute_network_output("scale", make_frame(time=0.25)) == pytest.approx(1.0)

    def test_apply_unknown_preset(self, store, caplog):
        assert store.apply_preset("scale", "no-such-preset") is None
        assert "scale" not in store
        assert "Unknown preset" in caplog.text

    def test_set_enabled_creates_scaffold(self, store):
        net = store.set_enabled("hue", True, "string")
        assert net.is_enabled
        assert net.output_type == HandleType.STRING

        store.set_enabled("hue", False)
        assert store.get("hue") is net
        assert not net.is_enabled

    def test_remove_network(self, store):
        store.create_network("p")
        store.remove_network("p")
        store.remove_network("never-existed")
        assert "p" not in store

    def test_update_node_input_value(self, store, silent_frame):
        wire(store, "p", "Sine", {"time": 0.0})
        store.update_node_input_value("p", "p-node", "time", 0.25)
        assert store.compute_network_output("p", silent_frame) == pytest.approx(1.0)

    def test_update_missing_network_raises(self, store):
        with pytest.raises(NetworkNotFoundError):
            store.update_node_input_value("nope", "n", "value", 1)

    def test_update_missing_node_warns(self, store, caplog):
        store.create_network("p")
        store.update_node_input_value("p", "ghost", "value", 1)
        assert "ghost" in caplog.text

    def test_duplicate_network(self, store, make_frame):
        source = store.apply_preset("a", "bars-kick-adaptive")
        store.compute_network_output("a", make_frame(level=100))
        assert source.node("a-env").state

        copy = store.duplicate_network("a", "b")
        assert store.get("b") is copy
        assert copy.node("b-env").state == {}
        assert copy.node("b-band").input_values == source.node("a-band").input_values

    def test_duplicate_missing_raises(self, store):
        with pytest.raises(NetworkNotFoundError):
            store.duplicate_network("nope", "b")

    def test_compute_missing_raises(self, store, silent_frame):
        with pytest.raises(NetworkNotFoundError):
            store.compute_network_output("nope", silent_frame)


class TestEvaluateAll:
    """Evaluating every network for one frame."""

    def test_failures_are_isolated(self, store, make_frame, caplog):
        store.apply_preset("good", "number-sine-osc")
        wire(store, "unknown", "Not A Kind")
        wire(store, "explodes", "Explode")
        missing = store.create_network("no-output")
        missing.nodes = [n for n in missing.nodes if not n.is_output]

        values = store.evaluate_all(make_frame(time=0.25))

        assert values == {"good": pytest.approx(1.0)}
        assert "unknown" in caplog.text
        assert "explodes" in caplog.text

    def test_disabled_networks_are_skipped(self, store, silent_frame):
        store.apply_preset("a", "number-sine-osc")
        store.set_enabled("a", False)
        assert store.evaluate_all(silent_frame) == {}


class TestAnimatedParameter:
    """Resolution with fallback to the last valid value."""

    def test_static_value_when_not_animated(self, store, silent_frame):
        param = AnimatedParameter("p", 0.25)
        assert not param.is_animated(store)
        assert param.resolve(store, silent_frame) == 0.25

        store.set_enabled("p", False)
        assert param.resolve(store, silent_frame) == 0.25

    def test_animated_value(self, store, silent_frame):
        wire(store, "p", "Passthrough", {"value": 3})
        param = AnimatedParameter("p", 0.0)
        result = param.resolve(store, silent_frame)
        assert result == 3.0
        assert isinstance(result, float)
        assert param.last_valid == 3.0

    def test_nan_holds_last_valid(self, store, silent_frame, caplog):
        wire(store, "p", "Passthrough", {"value": 0.8})
        param = AnimatedParameter("p", 0.1)
        assert param.resolve(store, silent_frame) == 0.8

        store.update_node_input_value("p", "p-node", "value", math.nan)
        assert param.resolve(store, silent_frame) == 0.8
        assert "invalid value" in caplog.text

    def test_invalid_first_value_falls_back_to_static(self, store, silent_frame):
        wire(store, "p", "Passthrough", {"value": math.inf})
        param = AnimatedParameter("p", 0.1)
        assert param.resolve(store, silent_frame) == 0.1
        assert param.last_valid is None

    @pytest.mark.parametrize("bad", [True, None, [1, 2]])
    def test_non_numbers_rejected_for_number_parameters(self, store, silent_frame, bad):
        wire(store, "p", "Passthrough", {"value": bad})
        param = AnimatedParameter("p", 0.5)
        assert param.resolve(store, silent_frame) == 0.5

    def test_exception_falls_back(self, store, silent_frame, caplog):
        wire(store, "p", "Passthrough", {"value": 0.3})
        param = AnimatedParameter("p", 0.0)
        param.resolve(store, silent_frame)

        wire(store, "p", "Explode")
        assert param.resolve(store, silent_frame) == 0.3
        assert "boom" in caplog.text

    def test_string_parameter(self, store, silent_frame):
        wire(store, "mode", "Value Mapper", {"input": 1, "mapping": {"1": "wild"}},
             output_type=HandleType.STRING, handle="output")
        param = AnimatedParameter("mode", "calm", "string")
        assert param.resolve(store, silent_frame) == "wild"
