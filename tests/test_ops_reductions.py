import numpy as np
import pytest

from multigrad.errors import ShapeError
from multigrad.tensor import Tensor
from tests.utils import make_tensor, make_torch, tdata, assert_close, assert_grad_close


@pytest.mark.parametrize("op", ["sum", "mean"])
def test_full_reduction_forward_backward(rng, op, backend, device):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)
    w_np = rng.normal(size=(1,)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    yt = getattr(xt, op)().reshape(1)
    y = getattr(x, op)()

    (yt * make_torch(w_np, requires_grad=False)).sum().backward()
    grads = y.backward(make_tensor(w_np, backend.inner, device))

    assert y.shape == (1,)
    assert_close(tdata(y), yt, atol=1e-5, rtol=1e-5)
    assert_grad_close(x, grads, xt)


@pytest.mark.parametrize("op", ["sum_dim", "mean_dim"])
@pytest.mark.parametrize("dim", [0, 1, 2])
def test_dim_reduction_keeps_reduced_dim(rng, op, dim, backend, device):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    if op == "sum_dim":
        yt = xt.sum(dim=dim, keepdim=True)
    else:
        yt = xt.mean(dim=dim, keepdim=True)
    y = getattr(x, op)(dim)

    w_np = rng.normal(size=tuple(yt.shape)).astype(np.float32)
    (yt * make_torch(w_np, requires_grad=False)).sum().backward()
    grads = (y * make_tensor(w_np, backend, device)).sum().backward()

    assert y.shape == tuple(yt.shape)
    assert y.shape[dim] == 1
    assert_close(tdata(y), yt, atol=1e-5, rtol=1e-5)
    assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-5)


@pytest.mark.parametrize("op", ["argmax", "argmin"])
def test_arg_reductions_keep_dim_on_integer_backend(rng, op, backend, device):
    x_np = rng.normal(size=(3, 5)).astype(np.float32)
    x = make_tensor(x_np, backend, device)

    y = getattr(x, op)(1)
    expected = getattr(np, op)(x_np, axis=1).reshape(3, 1)

    assert y.shape == (3, 1)
    assert y.backend == backend.integer_backend()
    assert y.id is None
    np.testing.assert_array_equal(tdata(y), expected)


def test_reduction_dim_out_of_range(rng, backend):
    x = make_tensor(rng.normal(size=(2, 3)), backend)
    with pytest.raises(ShapeError):
        x.sum_dim(2)
    with pytest.raises(ShapeError):
        x.argmax(-1)


def test_full_precision_round_trip_backward(rng, backend, device):
    x_np = rng.normal(size=(2, 3)).astype(np.float32)
    x = make_tensor(x_np, backend, device)

    full = x.to_full_precision()
    assert full.dtype == "float64"
    assert full.backend == backend.full_precision_backend()

    y = Tensor.from_full_precision(full * 2.0, backend)
    assert y.dtype == "float32"

    grads = y.sum().backward()
    assert_close(x.grad(grads), np.full((2, 3), 2.0, dtype=np.float32))
    assert x.grad(grads).dtype == "float32"
