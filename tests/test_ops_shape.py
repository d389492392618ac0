import numpy as np
import pytest
import torch

from multigrad.errors import ShapeError
from multigrad.tensor import Tensor
from tests.utils import make_tensor, make_torch, tdata, assert_close, assert_grad_close


def weighted_sum(y, w_np, backend, device):
    return (y * make_tensor(w_np, backend, device)).sum()


def test_reshape_forward_backward(rng, backend, device):
    x_np = rng.normal(size=(2, 3, 4, 5)).astype(np.float32)
    w_np = rng.normal(size=(6, 20)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    yt = xt.reshape(6, 20)
    y = x.reshape((6, 20))

    (yt * make_torch(w_np, requires_grad=False)).sum().backward()
    grads = weighted_sum(y, w_np, backend, device).backward()

    assert y.rank == 2
    assert_close(tdata(y), yt)
    assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-5)


def test_reshape_element_count_mismatch(rng, backend):
    x = make_tensor(rng.normal(size=(2, 3)), backend)
    with pytest.raises(ShapeError):
        x.reshape((4, 2))


def test_swap_dims_forward_backward(rng, backend, device):
    x_np = rng.normal(size=(2, 3, 4, 5)).astype(np.float32)
    w_np = rng.normal(size=(2, 5, 4, 3)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    yt = xt.transpose(1, 3)
    y = x.swap_dims(1, 3)

    (yt * make_torch(w_np, requires_grad=False)).sum().backward()
    grads = weighted_sum(y, w_np, backend, device).backward()

    assert_close(tdata(y), yt)
    assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-5)


def test_transpose_swaps_last_two_dims(rng, backend, device):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)
    x = make_tensor(x_np, backend, device)

    y = x.transpose()

    assert y.shape == (2, 4, 3)
    assert_close(tdata(y), np.swapaxes(x_np, 1, 2))


def test_repeat_size_one_dim(rng, backend, device):
    x_np = rng.normal(size=(2, 1, 3)).astype(np.float32)
    x = make_tensor(x_np, backend, device)

    y = x.repeat(1, 4)

    assert y.shape == (2, 4, 3)
    assert_close(tdata(y), np.repeat(x_np, 4, axis=1))

    grads = y.sum().backward()
    assert_close(x.grad(grads), np.full((2, 1, 3), 4.0, dtype=np.float32))


def test_repeat_requires_size_one(rng, backend):
    x = make_tensor(rng.normal(size=(2, 3)), backend)
    with pytest.raises(ShapeError):
        x.repeat(1, 2)


def test_repeat_default_composite_on_plain_backend(rng, inner, device):
    x_np = rng.normal(size=(1, 3)).astype(np.float32)
    x = make_tensor(x_np, inner, device)

    y = x.repeat(0, 3)

    assert y.shape == (3, 3)
    assert_close(tdata(y), np.tile(x_np, (3, 1)))
    with pytest.raises(ShapeError):
        inner.repeat(y.primitive, 0, 2)


def test_cat_forward_backward(rng, backend, device):
    a_np = rng.normal(size=(2, 3)).astype(np.float32)
    b_np = rng.normal(size=(2, 5)).astype(np.float32)
    w_np = rng.normal(size=(2, 8)).astype(np.float32)

    at = make_torch(a_np, requires_grad=True)
    bt = make_torch(b_np, requires_grad=True)
    a = make_tensor(a_np, backend, device)
    b = make_tensor(b_np, backend, device)

    yt = torch.cat([at, bt], dim=1)
    y = Tensor.cat([a, b], 1)

    (yt * make_torch(w_np, requires_grad=False)).sum().backward()
    grads = weighted_sum(y, w_np, backend, device).backward()

    assert_close(tdata(y), yt)
    assert_grad_close(a, grads, at)
    assert_grad_close(b, grads, bt)


def test_cat_shape_mismatch(rng, backend):
    a = make_tensor(rng.normal(size=(2, 3)), backend)
    b = make_tensor(rng.normal(size=(3, 3)), backend)
    with pytest.raises(ShapeError):
        Tensor.cat([a, b], 1)
