from typing import Any, Dict, Iterable

from multigrad.autodiff.backend import no_grad
from multigrad.autodiff.gradients import Gradients
from multigrad.nn import Param
from multigrad.tensor import Tensor


class Optimizer:
    """
    Base class for all optimizers.

    An optimizer maps the gradients of one backward pass to new parameter
    values. Parameters are never mutated in place: each step writes a fresh
    leaf through :meth:`Param.update`.

    Parameters
    ----------
    params : Iterable[Param]
        Parameters to optimize, iterated in the given order.

    Notes
    -----
    - Per-parameter state is keyed by ``Param.id``, which survives updates.
    """
    def __init__(self, params: Iterable[Param]) -> None:
        self.params = list(params)
        self.state: Dict[str, Any] = {}

    def step(self, grads: Gradients) -> None:
        """
        Perform a single optimization step from ``grads``.

        Parameters without a gradient in ``grads`` are skipped.
        """
        with no_grad():
            for p in self.params:
                grad = p.grad(grads)
                if grad is None:
                    continue
                value = self._update(p, p.value.inner(), grad)
                p.update(Tensor.from_inner(value, p.value.backend))

    def _update(self, p: Param, value: Tensor, grad: Tensor) -> Tensor:
        """Return the new value of ``p``; ``value`` and ``grad`` are non-recording tensors."""
        raise NotImplementedError


class SGD(Optimizer):
    """
    Stochastic Gradient Descent (SGD) optimizer with optional momentum, dampening,
    weight decay, and Nesterov momentum.

    Parameters
    ----------
    params : Iterable[Param]
        Parameters to optimize.
    lr : float, default=0.001
        Learning rate.
    momentum : float, default=0.0
        Momentum factor.
    dampening : float, default=0.0
        Dampening for momentum.
    weight_decay : float, default=0.0
        L2 penalty (added to the gradient).
    nesterov : bool, default=False
        If True, enables Nesterov momentum (requires ``momentum > 0``).

    Notes
    -----
    - This implementation follows the common PyTorch-style update:
      weight decay is applied by adding ``weight_decay * p`` to the gradient.
    - Per-parameter momentum buffers are stored in ``self.state[p.id]``.
    """
    def __init__(
        self,
        params: Iterable[Param],
        lr: float = 0.001,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
    ) -> None:
        if nesterov and momentum <= 0:
            raise ValueError("Nesterov momentum requires a momentum > 0")
        super().__init__(params)
        self.lr = lr
        self.momentum = momentum
        self.dampening = dampening
        self.weight_decay = weight_decay
        self.nesterov = nesterov

    def _update(self, p: Param, value: Tensor, grad: Tensor) -> Tensor:
        d_p = grad

        if self.weight_decay > 0:
            d_p = d_p + value * self.weight_decay

        if self.momentum > 0:
            buf = self.state.get(p.id)
            if buf is None:
                buf = d_p
            else:
                buf = buf * self.momentum + d_p * (1 - self.dampening)
            self.state[p.id] = buf

            if self.nesterov:
                d_p = d_p + buf * self.momentum
            else:
                d_p = buf

        return value - d_p * self.lr
