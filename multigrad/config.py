import os
from typing import Literal, Optional, Union

_DeviceStr = Literal["cpu", "cuda"]


def normalize_device(device: Optional[Union[str, _DeviceStr]]) -> Optional[_DeviceStr]:
    """
    Normalize a device specifier to 'cpu', 'cuda', or None.

    Parameters
    ----------
    device : {None, 'cpu', 'cuda', str}
        Device specifier. If a string starts with 'cuda' (e.g. 'cuda', 'cuda:0'),
        it is normalized to 'cuda'. 'cpu' is preserved. None is returned as None.

    Returns
    -------
    {'cpu', 'cuda', None}
        Normalized device identifier.

    Raises
    ------
    ValueError
        If ``device`` is a string that is neither 'cpu' nor startswith 'cuda'.

    Examples
    --------
    >>> normalize_device('cuda:1')
    'cuda'
    >>> normalize_device('gpu')
    Traceback (most recent call last):
        ...
    ValueError: Unknown device spec: 'gpu'
    """
    if device is None:
        return None
    if isinstance(device, str):
        dev = device.lower()
        if dev.startswith("cuda"):
            return "cuda"
        if dev == "cpu":
            return "cpu"
    raise ValueError(f"Unknown device spec: {device!r}")


DEFAULT_DEVICE: _DeviceStr = normalize_device(os.getenv("MULTIGRAD_DEVICE", "cpu"))
"""str: Device used when a constructor is not given one (``MULTIGRAD_DEVICE``)."""

DEFAULT_DTYPE: str = os.getenv("MULTIGRAD_DTYPE", "float32")
"""str: Element type of the default backend (``MULTIGRAD_DTYPE``)."""

_default_backend = None


def get_default_backend():
    """
    Return the process-wide default backend.

    Unless replaced with :func:`set_default_backend`, this is a differentiable
    decorator around an ``NdArrayBackend`` of ``DEFAULT_DTYPE``.
    """
    global _default_backend
    if _default_backend is None:
        from multigrad.autodiff.backend import ADBackend
        from multigrad.backends.ndarray import NdArrayBackend

        _default_backend = ADBackend(NdArrayBackend(DEFAULT_DTYPE))
    return _default_backend


def set_default_backend(backend) -> None:
    """Replace the default backend used by ``Tensor`` constructors."""
    global _default_backend
    _default_backend = backend
