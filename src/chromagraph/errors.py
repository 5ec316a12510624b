"""
Exception types raised by the graph engine and the offline analyzer.

Configuration errors are fatal to the single evaluation or analysis call
that raised them.  Callers driving many networks per frame catch them at
the call site so one broken network never blocks its siblings.
"""


class ChromagraphError(Exception):
    """Base class for every error raised by this package."""


class InvalidConfigurationError(ChromagraphError):
    """A network, node or analyzer is configured in a way that cannot run."""


class NetworkNotFoundError(InvalidConfigurationError):
    """No network is registered for the requested parameter."""

    def __init__(self, parameter_id: str):
        super().__init__(f"No network found for parameter '{parameter_id}'")
        self.parameter_id = parameter_id


class NetworkDisabledError(InvalidConfigurationError):
    """The network exists but animation is switched off."""

    def __init__(self, name: str):
        super().__init__(f"Network '{name}' is not enabled")
        self.name = name


class OutputNodeMissingError(InvalidConfigurationError):
    """The network has no Output sentinel to evaluate from."""

    def __init__(self, name: str):
        super().__init__(f"Output node not found in network '{name}'")
        self.name = name


class UnknownNodeKindError(InvalidConfigurationError):
    """A node references a kind label the registry does not know."""

    def __init__(self, kind: str):
        super().__init__(f"Node definition not found for: {kind!r}")
        self.kind = kind


class GraphCycleError(InvalidConfigurationError):
    """Evaluation reached a node that is already being computed."""

    def __init__(self, node_id: str):
        super().__init__(f"Cycle detected at node '{node_id}'")
        self.node_id = node_id


class IncompatiblePortsError(ChromagraphError):
    """An edge was proposed between ports whose types cannot connect."""


class AnalysisCancelledError(ChromagraphError):
    """Offline analysis was cancelled by the caller between frames."""

    def __init__(self, frames_done: int, total_frames: int):
        super().__init__(
            f"Offline analysis cancelled after {frames_done}/{total_frames} frames"
        )
        self.frames_done = frames_done
        self.total_frames = total_frames
