"""
Exceptions raised by the tensor core.

Contract violations (bad shapes, ranks, index ranges) and backward-pass
consistency violations are programmer errors: they are raised synchronously
at the call that triggered them and are never retried. A missing gradient is
not an error; gradient queries return ``None`` instead.
"""


class ShapeError(ValueError):
    """
    Raised when an operation's shape or rank contract is violated.

    Examples are a reshape that changes the element count, a repeat along a
    dimension whose size is not 1, or an index range outside the tensor.
    It is always raised before any graph node is created.

    Attributes
    ----------
    op : str
        Name of the operation whose contract was violated.
    """

    def __init__(self, op: str, message: str) -> None:
        super().__init__(f"{op}: {message}")
        self.op = op


class BackwardError(RuntimeError):
    """
    Raised when the backward pass finds the graph internally inconsistent.

    This signals a bug in graph construction (e.g. a gradient whose shape
    does not match the node it is delivered to), not a runtime condition.

    Attributes
    ----------
    node_id : int or None
        Identity of the node being processed when the violation was found.
    """

    def __init__(self, message: str, node_id: int = None) -> None:
        if node_id is not None:
            message = f"node {node_id}: {message}"
        super().__init__(message)
        self.node_id = node_id


class DeviceNotSupportedError(RuntimeError):
    """
    Raised when a backend is asked to place a tensor on a device it cannot serve.

    Attributes
    ----------
    backend : str
        Name of the backend.
    device : str
        The requested device.
    """

    def __init__(self, backend: str, device: str, reason: str = "") -> None:
        message = f"Device '{device}' is not supported by backend '{backend}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.backend = backend
        self.device = device
