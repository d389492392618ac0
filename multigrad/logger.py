import logging
import os

_ROOT = "multigrad"


def get_logger(name: str = _ROOT) -> logging.Logger:
    """
    Return a logger under the ``multigrad`` namespace.

    The ``multigrad`` root logger gets a single stream handler on first use.
    Its level comes from the ``MULTIGRAD_LOG_LEVEL`` environment variable
    (default ``WARNING``).

    Parameters
    ----------
    name : str, default="multigrad"
        Logger name. Names outside the ``multigrad`` namespace are prefixed.
    """
    root = logging.getLogger(_ROOT)
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("[%(asctime)s][%(levelname)s][%(name)s] %(message)s")
        handler.setFormatter(formatter)
        root.addHandler(handler)
        level_name = os.getenv("MULTIGRAD_LOG_LEVEL", "WARNING").upper()
        root.setLevel(getattr(logging, level_name, logging.WARNING))

    if name != _ROOT and not name.startswith(_ROOT + "."):
        name = f"{_ROOT}.{name}"
    return logging.getLogger(name)
