import numpy as np
import pytest
import torch

from multigrad.nn import Param
from multigrad.optim import SGD
from tests.utils import make_tensor, to_numpy, assert_close


def backward_with_grad(param, g_np, backend):
    """Backward pass whose gradient w.r.t. ``param`` is exactly ``g_np``."""
    return (param.value * make_tensor(g_np, backend)).sum().backward()


def run_one_step_sgd(x_np, g_np, backend, *, lr, momentum=0.0, dampening=0.0, weight_decay=0.0, nesterov=False):
    xt = torch.tensor(x_np, dtype=torch.float32, requires_grad=True)
    xt.grad = torch.tensor(g_np, dtype=torch.float32)

    opt_t = torch.optim.SGD(
        [xt],
        lr=lr,
        momentum=momentum,
        dampening=dampening,
        weight_decay=weight_decay,
        nesterov=nesterov,
    )
    opt_t.step()

    x = Param(make_tensor(x_np, backend))
    opt = SGD([x], lr=lr, momentum=momentum, dampening=dampening, weight_decay=weight_decay, nesterov=nesterov)
    opt.step(backward_with_grad(x, g_np, backend))

    return xt.detach().cpu().numpy(), to_numpy(x.value)


@pytest.mark.parametrize("cfg", [
    dict(lr=1e-2, momentum=0.0, dampening=0.0, weight_decay=0.0, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.0, weight_decay=0.0, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.1, weight_decay=0.0, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.0, weight_decay=1e-3, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.0, weight_decay=1e-3, nesterov=True),
])
def test_sgd_single_step_matches_torch(rng, backend, cfg):
    x_np = rng.normal(size=(2, 3, 4)).astype(np.float32)
    g_np = rng.normal(size=(2, 3, 4)).astype(np.float32)

    a, b = run_one_step_sgd(x_np, g_np, backend, **cfg)
    assert_close(b, a, atol=1e-6, rtol=1e-5)


def test_sgd_multi_step_matches_torch(rng, backend):
    lr = 1e-2
    momentum = 0.9
    dampening = 0.0
    weight_decay = 1e-3
    nesterov = True

    x0 = rng.normal(size=(3, 4, 5)).astype(np.float32)

    xt = torch.tensor(x0, dtype=torch.float32, requires_grad=True)
    opt_t = torch.optim.SGD([xt], lr=lr, momentum=momentum, dampening=dampening, weight_decay=weight_decay, nesterov=nesterov)

    x = Param(make_tensor(x0, backend))
    opt = SGD([x], lr=lr, momentum=momentum, dampening=dampening, weight_decay=weight_decay, nesterov=nesterov)

    for _ in range(5):
        g = rng.normal(size=x0.shape).astype(np.float32)

        xt.grad = torch.tensor(g, dtype=torch.float32)
        opt_t.step()

        opt.step(backward_with_grad(x, g, backend))

    assert_close(to_numpy(x.value), xt.detach().cpu().numpy(), atol=2e-6, rtol=2e-5)


def test_step_writes_fresh_leaf_and_keeps_param_id(rng, backend):
    x = Param(make_tensor(rng.normal(size=(2, 2)), backend))
    pid, old_node = x.id, x.value.id

    opt = SGD([x], lr=0.1, momentum=0.9)
    opt.step(backward_with_grad(x, np.ones((2, 2)), backend))

    assert x.id == pid
    assert x.value.id != old_node
    assert x.value.primitive.node.is_leaf
    assert pid in opt.state


def test_step_skips_params_without_gradient(rng, backend):
    used = Param(make_tensor(rng.normal(size=(2,)), backend))
    unused = Param(make_tensor(rng.normal(size=(2,)), backend))
    before = to_numpy(unused.value)

    opt = SGD([used, unused], lr=0.1)
    opt.step(backward_with_grad(used, np.ones(2), backend))

    assert_close(unused.value, before)
    assert unused.id not in opt.state


def test_nesterov_requires_momentum(backend):
    with pytest.raises(ValueError):
        SGD([], lr=0.1, nesterov=True)
