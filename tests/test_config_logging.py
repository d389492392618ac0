import logging

import pytest

from multigrad import config
from multigrad.autodiff.backend import ADBackend
from multigrad.backends.ndarray import NdArrayBackend
from multigrad.logger import get_logger
from multigrad.tensor import Tensor


@pytest.mark.parametrize("spec,expected", [(None, None), ("cpu", "cpu"), ("CUDA:1", "cuda"), ("cuda", "cuda")])
def test_normalize_device(spec, expected):
    assert config.normalize_device(spec) == expected


def test_normalize_device_rejects_unknown():
    with pytest.raises(ValueError):
        config.normalize_device("gpu")


def test_default_backend_is_differentiable_ndarray():
    backend = config.get_default_backend()
    assert isinstance(backend, ADBackend)
    assert backend.inner == NdArrayBackend(config.DEFAULT_DTYPE)


def test_set_default_backend_is_used_by_constructors():
    previous = config.get_default_backend()
    plain = NdArrayBackend("float64")
    try:
        config.set_default_backend(plain)
        assert Tensor.zeros((2,)).backend == plain
    finally:
        config.set_default_backend(previous)


def test_loggers_live_under_package_namespace():
    assert get_logger("multigrad.tensor").name == "multigrad.tensor"
    assert get_logger("custom").name == "multigrad.custom"
    assert len(logging.getLogger("multigrad").handlers) == 1


def test_detach_is_logged_at_debug(caplog, backend):
    x = Tensor.ones((2,), backend)
    with caplog.at_level(logging.DEBUG, logger="multigrad"):
        d = x.detach()
    assert f"as leaf {d.id}" in caplog.text
