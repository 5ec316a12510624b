"""
Static node type registry.

Maps a node kind label to its port signature and compute function.  Node
instances (and persisted networks) store only the label; the definition is
re-resolved here whenever a network is loaded or evaluated.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence

from chromagraph.core.frame import EMPTY_FREQUENCY_ANALYSIS, SpectralFrame
from chromagraph.core.types import ComputeFn, HandleType, NodeKind, Port
from chromagraph.errors import UnknownNodeKindError

INPUT_LABEL = "Input"
OUTPUT_LABEL = "Output"
OUTPUT_PORT = "output"


def _compute_input(inputs: dict, frame: SpectralFrame, state: Optional[dict]) -> dict:
    return frame.as_inputs()


INPUT_KIND = NodeKind(
    label=INPUT_LABEL,
    description=(
        "Graph inputs: audioSignal (waveform bytes), frequencyAnalysis "
        "(spectrum + metadata), and time (seconds)."
    ),
    inputs=(),
    outputs=(
        Port("audioSignal", "Audio Signal", HandleType.DATA),
        Port("frequencyAnalysis", "Frequency Analysis", HandleType.FREQUENCY_ANALYSIS),
        Port("time", "Time", HandleType.NUMBER),
    ),
    compute=_compute_input,
)


def _compute_output(inputs: dict, frame: SpectralFrame, state: Optional[dict]) -> Any:
    return inputs.get(OUTPUT_PORT)


@functools.lru_cache(maxsize=None)
def output_kind(handle_type: HandleType) -> NodeKind:
    """Output sentinel whose single input has the bound parameter's type."""
    handle_type = HandleType(handle_type)
    return NodeKind(
        label=OUTPUT_LABEL,
        description="Graph output. Its input type defines the network's output type.",
        inputs=(Port(OUTPUT_PORT, "Output Value", handle_type),),
        outputs=(),
        compute=_compute_output,
    )


class NodeRegistry:
    """Table from kind label to :class:`NodeKind`."""

    def __init__(self, kinds: Iterable[NodeKind] = ()):
        self._kinds: dict[str, NodeKind] = {}
        self.register(INPUT_KIND)
        for kind in kinds:
            self.register(kind)

    def __contains__(self, label: str) -> bool:
        return label in self._kinds or label == OUTPUT_LABEL

    def __iter__(self) -> Iterator[NodeKind]:
        return iter(self._kinds.values())

    def __len__(self) -> int:
        return len(self._kinds)

    def register(self, kind: NodeKind) -> NodeKind:
        if kind.label == OUTPUT_LABEL:
            raise ValueError("The Output sentinel is created per type via output_kind()")
        self._kinds[kind.label] = kind
        return kind

    def kind(
        self,
        label: str,
        inputs: Sequence[Port],
        outputs: Sequence[Port],
        description: str = "",
        stateful: bool = False,
    ) -> Callable[[ComputeFn], ComputeFn]:
        """Decorator registering a compute function under *label*."""

        def decorator(fn: ComputeFn) -> ComputeFn:
            self.register(
                NodeKind(
                    label=label,
                    inputs=tuple(inputs),
                    outputs=tuple(outputs),
                    compute=fn,
                    description=description or (fn.__doc__ or "").strip(),
                    stateful=stateful,
                )
            )
            return fn

        return decorator

    def get(self, label: str, output_type: Optional[HandleType] = None) -> NodeKind:
        """
        Resolve a kind by label.

        Raises:
            UnknownNodeKindError: If no kind is registered under *label*.
        """
        if label == OUTPUT_LABEL:
            return output_kind(HandleType.parse(output_type))
        try:
            return self._kinds[label]
        except KeyError:
            raise UnknownNodeKindError(label) from None

    def labels(self) -> list[str]:
        return sorted(self._kinds)

    def search(self, text: str) -> list[NodeKind]:
        """Kinds whose label or description mentions *text* (case-insensitive)."""
        needle = text.lower()
        return [
            k for k in self._kinds.values()
            if needle in k.label.lower() or needle in k.description.lower()
        ]


REGISTRY = NodeRegistry()


def default_registry() -> NodeRegistry:
    """The process-wide registry with the built-in node library loaded."""
    import chromagraph.nodes  # noqa: F401  (registers built-in kinds)

    return REGISTRY


__all__ = [
    "EMPTY_FREQUENCY_ANALYSIS",
    "INPUT_KIND",
    "INPUT_LABEL",
    "NodeRegistry",
    "OUTPUT_LABEL",
    "OUTPUT_PORT",
    "REGISTRY",
    "default_registry",
    "output_kind",
]
