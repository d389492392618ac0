import numpy as np
import pytest

from multigrad.nn import Embedding, Module, Param
from tests.utils import make_index, make_tensor, to_numpy, assert_close


class TwoTables(Module):
    def __init__(self, backend, rng):
        super().__init__()
        self.tokens = Embedding(7, 4, backend=backend, rng=rng)
        self.positions = Embedding(3, 4, backend=backend, rng=rng)
        self.scale = Param(make_tensor(np.ones((1, 1, 4)), backend))

    def forward(self, tokens, positions):
        return (self.tokens(tokens) + self.positions(positions)) * self.scale.value


def test_parameters_are_registered_in_order(rng, backend):
    model = TwoTables(backend, rng)

    params = model.parameters()

    assert params == [model.scale, model.tokens.weight, model.positions.weight]
    assert model.num_params() == 4 + 7 * 4 + 3 * 4
    assert len({p.id for p in params}) == 3


def test_module_backward_reaches_every_param(rng, backend):
    model = TwoTables(backend, rng)
    tokens = make_index([[1, 2, 1]], backend)
    positions = make_index([[0, 1, 2]], backend)

    grads = model(tokens, positions).sum().backward()

    for p in model.parameters():
        assert p.grad(grads) is not None
    assert_close(p.grad(grads), np.full((3, 4), 1.0))


def test_detach_cuts_history_but_keeps_values(rng, backend):
    model = TwoTables(backend, rng)
    model.scale.update(model.scale.value * 2.0)
    before = to_numpy(model.scale.value)

    assert not model.scale.value.primitive.node.is_leaf
    model.detach()

    assert model.scale.value.primitive.node.is_leaf
    assert_close(model.scale.value, before)


def test_param_update_checks_shape(rng, backend):
    p = Param(make_tensor(rng.normal(size=(2, 3)), backend))
    with pytest.raises(ValueError):
        p.update(make_tensor(rng.normal(size=(3, 2)), backend))


def test_to_cpu_keeps_param_ids(rng, backend):
    model = TwoTables(backend, rng)
    ids = [p.id for p in model.parameters()]

    model.to("cpu")

    assert [p.id for p in model.parameters()] == ids
    assert all(p.value.device == "cpu" for p in model.parameters())


def test_repr_lists_submodules(rng, backend):
    text = repr(TwoTables(backend, rng))
    assert "(tokens): Embedding(7, 4)" in text
