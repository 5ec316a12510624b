"""
Port handle types, node kind definitions, and the connection table.

A node kind is a tagged definition: a label, its input/output port
signature and a compute function.  Kinds are looked up by label in the
registry; no class hierarchy is involved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from chromagraph.core.frame import EMPTY_FREQUENCY_ANALYSIS, SpectralFrame


class HandleType(str, Enum):
    """Value type carried by a port."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    COLOR = "color"
    FILE = "file"
    VECTOR3 = "vector3"
    DATA = "Uint8Array"
    FREQUENCY_ANALYSIS = "FrequencyAnalysis"
    OBJECT = "object"
    MATH_OP = "math-op"

    @classmethod
    def parse(cls, value: Any, default: Optional["HandleType"] = None) -> "HandleType":
        """Parse a persisted type string, falling back to *default* or NUMBER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return default or cls.NUMBER


# Which target types each source type may feed.
CAN_CONNECT_TO: dict[HandleType, tuple[HandleType, ...]] = {
    HandleType.NUMBER: (HandleType.NUMBER,),
    HandleType.STRING: (HandleType.STRING, HandleType.COLOR),
    HandleType.BOOLEAN: (HandleType.NUMBER, HandleType.BOOLEAN),
    HandleType.COLOR: (HandleType.STRING, HandleType.COLOR),
    HandleType.FILE: (HandleType.FILE, HandleType.STRING),
    HandleType.VECTOR3: (HandleType.VECTOR3,),
    HandleType.DATA: (HandleType.DATA,),
    HandleType.FREQUENCY_ANALYSIS: (HandleType.FREQUENCY_ANALYSIS,),
    HandleType.OBJECT: (HandleType.OBJECT,),
    HandleType.MATH_OP: (),
}


def can_connect_types(source: HandleType, target: HandleType) -> bool:
    """True when a *source*-typed output may feed a *target*-typed input."""
    return HandleType(target) in CAN_CONNECT_TO.get(HandleType(source), ())


def type_fallback(handle_type: HandleType) -> Any:
    """Neutral value used when a port has neither a value nor a default."""
    if handle_type == HandleType.NUMBER:
        return 0
    if handle_type in (HandleType.STRING, HandleType.COLOR):
        return ""
    if handle_type == HandleType.BOOLEAN:
        return False
    if handle_type == HandleType.DATA:
        return np.zeros(0, dtype=np.uint8)
    if handle_type == HandleType.FREQUENCY_ANALYSIS:
        return EMPTY_FREQUENCY_ANALYSIS
    if handle_type == HandleType.OBJECT:
        return {}
    if handle_type == HandleType.VECTOR3:
        return {"x": 0, "y": 0, "z": 0}
    return None


@dataclass(frozen=True)
class Port:
    """One named, typed input or output of a node kind."""

    id: str
    label: str
    type: HandleType
    default: Any = None


ComputeFn = Callable[[dict[str, Any], SpectralFrame, Optional[dict]], Any]


@dataclass(frozen=True)
class NodeKind:
    """
    Definition of a node kind.

    ``compute(inputs, frame, state)`` must be a pure function of its inputs
    and the frame, plus the node's own ``state`` dict for stateful kinds.
    It returns a dict keyed by output port id (the Output sentinel returns
    the bare value).
    """

    label: str
    inputs: tuple[Port, ...]
    outputs: tuple[Port, ...]
    compute: ComputeFn
    description: str = ""
    stateful: bool = False
    tags: tuple[str, ...] = field(default=())

    def input_port(self, port_id: str) -> Optional[Port]:
        for port in self.inputs:
            if port.id == port_id:
                return port
        return None

    def output_port(self, port_id: str) -> Optional[Port]:
        for port in self.outputs:
            if port.id == port_id:
                return port
        return None

    def with_defaults(self, inputs: dict[str, Any]) -> dict[str, Any]:
        """Fill missing inputs from port defaults, then from type fallbacks."""
        filled = dict(inputs)
        for port in self.inputs:
            if filled.get(port.id) is None:
                if port.default is not None:
                    filled[port.id] = port.default
                else:
                    filled[port.id] = type_fallback(port.type)
        return filled

    def run(
        self,
        inputs: dict[str, Any],
        frame: SpectralFrame,
        state: Optional[dict] = None,
    ) -> Any:
        return self.compute(self.with_defaults(inputs), frame, state)
