import importlib.util

import numpy as np
import pytest

from multigrad.autodiff.backend import ADBackend
from multigrad.backends.ndarray import NdArrayBackend, _HAS_CUPY
from multigrad.errors import DeviceNotSupportedError, ShapeError
from multigrad.shape import Data
from multigrad.tensor import Tensor
from tests.utils import assert_close, make_tensor, to_numpy


def test_factories_shapes_dtypes(backend, device):
    z = Tensor.zeros((2, 3, 4), backend, device)
    o = Tensor.ones((2, 3, 4), backend, device)
    e = Tensor.empty((2, 3, 4), backend, device)
    r = Tensor.random((2, 3, 4), -1.0, 1.0, backend, device, rng=np.random.default_rng(0))

    for t in (z, o, e, r):
        assert t.shape == (2, 3, 4)
        assert t.dtype == "float32"
        assert t.device == device
        assert t.id is not None

    assert_close(z, np.zeros((2, 3, 4), dtype=np.float32))
    assert_close(o, np.ones((2, 3, 4), dtype=np.float32))
    assert np.all(np.abs(to_numpy(r)) <= 1.0)


def test_arange_lives_on_integer_backend(backend, device):
    x = Tensor.arange(2, 7, backend, device)

    assert x.shape == (5,)
    assert x.backend == backend.integer_backend()
    assert x.dtype == "int64"
    np.testing.assert_array_equal(to_numpy(x), np.arange(2, 7))


def test_arange_rejects_reversed_bounds(backend):
    with pytest.raises(ShapeError):
        Tensor.arange(3, 1, backend)


def test_to_data_is_idempotent(rng, backend, device):
    x = make_tensor(rng.normal(size=(2, 3)), backend, device)
    y = (x * 2.0).exp()

    first = y.to_data()
    second = y.to_data()

    assert first == second
    assert first.shape == (2, 3)
    first.assert_approx_eq(second, precision=6)


def test_from_data_casts_to_backend_dtype(backend, device):
    data = Data.from_array(np.array([[1, 2], [3, 4]], dtype=np.int64))
    x = Tensor.from_data(data, backend, device)

    assert x.to_data().dtype == np.float32
    assert x.to_data().tolist() == [[1.0, 2.0], [3.0, 4.0]]


def test_to_cpu_is_identity(rng, backend, device):
    x = make_tensor(rng.normal(size=(2, 3, 4)), backend, device)
    y = x.to_device("cpu")

    assert y.device == "cpu"
    assert_close(y, to_numpy(x))


@pytest.mark.skipif(importlib.util.find_spec("cupy") is not None, reason="cupy installed")
def test_cuda_without_cupy_raises():
    backend = NdArrayBackend()
    assert not _HAS_CUPY
    with pytest.raises(DeviceNotSupportedError):
        backend.zeros((2, 2), "cuda")


@pytest.mark.skipif(importlib.util.find_spec("cupy") is None, reason="cupy not installed")
def test_to_cuda_roundtrip_carries_gradient(rng):
    backend = ADBackend(NdArrayBackend())
    x_np = rng.normal(size=(2, 3)).astype(np.float32)
    x = make_tensor(x_np, backend, "cpu")

    xc = x.to_device("cuda:0")
    assert xc.device == "cuda"

    back = (xc * 3.0).to_device("cpu")
    assert back.device == "cpu"
    assert_close(back, 3.0 * x_np, atol=1e-6, rtol=1e-5)

    grads = back.sum().backward()
    g = x.grad(grads)
    assert g.device == "cpu"
    assert_close(g, np.full((2, 3), 3.0, dtype=np.float32))


def test_unknown_device_spec(backend):
    with pytest.raises(ValueError):
        Tensor.zeros((2,), backend, "gpu")


def test_repr_mentions_backend(backend):
    x = make_tensor([[1.0, 2.0]], backend)
    assert "autodiff<" in repr(x)
    assert "[[1.0, 2.0]]" in repr(x)
