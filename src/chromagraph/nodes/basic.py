"""
Stateless math and mapping nodes.
"""

import math

from chromagraph.core.registry import REGISTRY
from chromagraph.core.types import HandleType, Port
from chromagraph.nodes.common import clamp, finite

NUMBER = HandleType.NUMBER

MATH_OPERATIONS = ("add", "subtract", "multiply", "divide", "power", "max", "min", "modulo")


@REGISTRY.kind(
    "Sine",
    description="Sine oscillator controlled by time with frequency, phase, amplitude. Outputs raw -A..+A.",
    inputs=[
        Port("time", "Time (s)", NUMBER, 0),
        Port("frequency", "Frequency (Hz)", NUMBER, 1),
        Port("phase", "Phase (rad)", NUMBER, 0),
        Port("amplitude", "Amplitude", NUMBER, 1),
    ],
    outputs=[Port("value", "Value", NUMBER)],
)
def sine(inputs, frame, state):
    t = finite(inputs["time"])
    value = math.sin(2 * math.pi * finite(inputs["frequency"]) * t + finite(inputs["phase"]))
    return {"value": value * finite(inputs["amplitude"])}


@REGISTRY.kind(
    "Multiply",
    description="Multiplies A by B.",
    inputs=[Port("a", "A", NUMBER, 1), Port("b", "B", NUMBER, 1)],
    outputs=[Port("result", "Result", NUMBER)],
)
def multiply(inputs, frame, state):
    return {"result": finite(finite(inputs["a"]) * finite(inputs["b"]))}


def apply_operation(a: float, b: float, operation: str) -> float:
    """
    Combine two numbers with a named operation.

    Unknown operations multiply.  Division by zero divides by 1 and a zero
    modulus returns 0; anything non-finite collapses to 0.
    """
    if operation == "add":
        result = a + b
    elif operation == "subtract":
        result = a - b
    elif operation == "divide":
        result = a / (b if b != 0 else 1)
    elif operation == "power":
        try:
            result = math.pow(a, b)
        except (OverflowError, ValueError):
            result = 0.0
    elif operation == "max":
        result = max(a, b)
    elif operation == "min":
        result = min(a, b)
    elif operation == "modulo":
        # JavaScript-style remainder: sign follows the dividend
        result = math.fmod(a, b) if b != 0 else 0.0
    else:
        result = a * b
    return finite(result)


@REGISTRY.kind(
    "Math",
    description="Performs a math operation on A and B. Change operation via its input.",
    inputs=[
        Port("a", "A", NUMBER, 1),
        Port("b", "B", NUMBER, 1),
        Port("operation", "Operation", HandleType.MATH_OP, "multiply"),
    ],
    outputs=[Port("result", "Result", NUMBER)],
)
def math_node(inputs, frame, state):
    op = str(inputs["operation"]).lower()
    return {"result": apply_operation(finite(inputs["a"]), finite(inputs["b"]), op)}


@REGISTRY.kind(
    "Normalize",
    description="Maps value from [inputMin..inputMax] to [outputMin..outputMax] with clamping.",
    inputs=[
        Port("value", "Value", NUMBER, 0),
        Port("inputMin", "Input Min", NUMBER, 0),
        Port("inputMax", "Input Max", NUMBER, 255),
        Port("outputMin", "Output Min", NUMBER, 0),
        Port("outputMax", "Output Max", NUMBER, 1),
    ],
    outputs=[Port("result", "Result", NUMBER)],
)
def normalize(inputs, frame, state):
    value = finite(inputs["value"])
    in_min, in_max = finite(inputs["inputMin"]), finite(inputs["inputMax"])
    out_min, out_max = finite(inputs["outputMin"]), finite(inputs["outputMax"])

    if in_max - in_min == 0:
        return {"result": out_min}

    norm = (value - in_min) / (in_max - in_min)
    result = out_min + (out_max - out_min) * norm
    return {"result": clamp(result, min(out_min, out_max), max(out_min, out_max))}


@REGISTRY.kind(
    "Value Mapper",
    description=(
        "Map number inputs to other values (colors, strings, numbers). "
        "Useful for mapping beat counts to mode names."
    ),
    inputs=[
        Port("input", "Input", NUMBER, 0),
        Port("mode", "Mode", HandleType.STRING, "number"),
        Port("mapping", "Mapping", HandleType.OBJECT),
        Port("default", "Default", HandleType.STRING, "0"),
    ],
    outputs=[Port("output", "Output", HandleType.STRING)],
)
def value_mapper(inputs, frame, state):
    mapping = inputs["mapping"]
    key = str(int(math.floor(finite(inputs["input"]))))
    if isinstance(mapping, dict) and key in mapping:
        return {"output": mapping[key]}
    return {"output": inputs["default"]}
