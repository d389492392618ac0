import numpy as np
import pytest
import torch

from tests.utils import make_tensor, make_torch, tdata, assert_close, assert_grad_close


@pytest.mark.parametrize("op", ["exp", "erf", "neg"])
def test_unary_ops_forward_backward(rng, op, backend, device):
    shape = tuple(int(x) for x in rng.integers(1, 6, size=int(rng.integers(1, 5))))
    x_np = rng.normal(size=shape).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    if op == "exp":
        yt = xt.exp()
        y = x.exp()
    elif op == "erf":
        yt = torch.erf(xt)
        y = x.erf()
    elif op == "neg":
        yt = -xt
        y = -x
    else:
        raise RuntimeError(op)

    yt.sum().backward()
    grads = y.sum().backward()

    assert_close(tdata(y), yt, atol=1e-5, rtol=1e-5)
    assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-5)


def test_log_forward_backward_positive(rng, backend, device):
    shape = tuple(int(x) for x in rng.integers(1, 6, size=int(rng.integers(1, 5))))
    x_np = (rng.random(size=shape).astype(np.float32) + 0.1)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    yt = xt.log()
    y = x.log()

    yt.sum().backward()
    grads = y.sum().backward()

    assert_close(tdata(y), yt)
    assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-5)


def test_powf_integer_exponent_forward_backward(rng, backend, device):
    for p in (2, 3):
        x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)

        xt = make_torch(x_np, requires_grad=True)
        x = make_tensor(x_np, backend, device)

        yt = xt ** p
        y = x.powf(p)

        yt.sum().backward()
        grads = y.sum().backward()

        assert_close(tdata(y), yt, atol=1e-5, rtol=1e-5)
        assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-5)


def test_composite_gelu_forward_backward(rng, backend, device):
    """x * 0.5 * (1 + erf(x / sqrt(2))) composed from primitives."""
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, backend, device)

    yt = torch.nn.functional.gelu(xt)
    y = x * ((x / 2.0 ** 0.5).erf() + 1.0) * 0.5

    yt.sum().backward()
    grads = y.sum().backward()

    assert_close(tdata(y), yt, atol=1e-5, rtol=1e-4)
    assert_grad_close(x, grads, xt, atol=1e-5, rtol=1e-4)
