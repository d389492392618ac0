import math
import uuid
from typing import Any, List, Optional

import numpy as np

from multigrad import functional as F
from multigrad.autodiff.gradients import Gradients
from multigrad.backend import Backend
from multigrad.config import get_default_backend
from multigrad.logger import get_logger
from multigrad.tensor import Tensor

logger = get_logger(__name__)


class Param:
    """
    A trainable tensor with a stable identity.

    The wrapped value is replaced (never mutated) on every update, so the
    graph node behind it changes; ``id`` stays the same and is what
    optimizers key their state on.

    Parameters
    ----------
    value : Tensor
        Initial value, normally a leaf of a differentiable backend.
    """
    def __init__(self, value: Tensor) -> None:
        self.id = uuid.uuid4().hex
        self.value = value

    @property
    def shape(self):
        return self.value.shape

    def grad(self, grads: Gradients) -> Optional[Tensor]:
        """Return the gradient of the current value, or ``None`` if it has none."""
        return self.value.grad(grads)

    def update(self, value: Tensor) -> None:
        """Replace the value, keeping ``id``."""
        if value.shape != self.value.shape:
            raise ValueError(f"Param {self.id}: new shape {value.shape.dims} != {self.value.shape.dims}")
        self.value = value

    def detach(self) -> None:
        self.value = self.value.detach()

    def __repr__(self) -> str:
        return f"Param(id={self.id[:8]}, shape={self.value.shape.dims})"


class Module:
    """
    Base class for all neural network modules.

    Modules can contain:
    - submodules (instances of :class:`Module`)
    - parameters (instances of :class:`Param`)

    Submodules and parameters assigned as attributes are registered
    automatically via :meth:`__setattr__`.
    """
    def __init__(self) -> None:
        self._modules = {}
        self._parameters = {}

    def parameters(self) -> List[Param]:
        """
        Return a flat list of all parameters in this module and its submodules.

        Returns
        -------
        list[Param]
            Parameters in a deterministic traversal order: local parameters first,
            then parameters of children in insertion order.
        """
        params = list(self._parameters.values())
        for module in self._modules.values():
            params.extend(module.parameters())
        return params

    def num_params(self) -> int:
        """Total number of scalar elements across all parameters."""
        return sum(p.shape.num_elements() for p in self.parameters())

    def detach(self) -> "Module":
        """
        Replace every parameter value with a detached leaf.

        Gradients of a later backward pass then stop at the parameters instead
        of flowing into whatever produced their current values (e.g. an
        optimizer update that ran with recording enabled).

        Returns
        -------
        Module
            ``self``.
        """
        for param in self.parameters():
            param.detach()
        return self

    def to(self, device: str) -> "Module":
        """
        Move all parameters (and submodules) to the specified device.

        Parameters
        ----------
        device : str
            Target device, e.g. ``"cpu"`` or ``"cuda"`` (and variants like ``"cuda:0"``).

        Returns
        -------
        Module
            ``self``.
        """
        for param in self.parameters():
            param.update(param.value.to_device(device).detach())
        logger.debug("moved %s to %s", self.__class__.__name__, device)
        return self

    def __setattr__(self, name: str, value: Any) -> None:
        if isinstance(value, Module):
            self._modules[name] = value
        elif isinstance(value, Param):
            self._parameters[name] = value
        super().__setattr__(name, value)

    def __repr__(self):
        lines = [f"{self.__class__.__name__}("]
        for name, module in self._modules.items():
            mod_repr = "\n    ".join(repr(module).splitlines())
            lines.append(f"  ({name}): {mod_repr}")
        lines.append(")")
        return "\n".join(lines)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.forward(*args, **kwargs)

    def forward(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError


class Embedding(Module):
    """
    Lookup table that maps integer indices to dense vectors.

    Parameters
    ----------
    n_embedding : int
        Size of the vocabulary.
    d_model : int
        Dimension of each embedding vector.
    backend : Backend, optional
        Backend of the weight. Defaults to the configured default backend.
    device : str, optional
        Device of the weight.
    rng : numpy.random.Generator, optional
        Source of the initial weights.

    Notes
    -----
    The weight is initialized uniformly in ``[-1/sqrt(d_model), 1/sqrt(d_model)]``.
    """
    def __init__(
        self,
        n_embedding: int,
        d_model: int,
        backend: Optional[Backend] = None,
        device: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__()
        self.n_embedding = n_embedding
        self.d_model = d_model
        backend = backend or get_default_backend()
        bound = 1.0 / math.sqrt(d_model)
        self.weight = Param(Tensor.random((n_embedding, d_model), -bound, bound, backend, device, rng))

    def __repr__(self):
        return f"{self.__class__.__name__}({self.n_embedding}, {self.d_model})"

    def forward(self, indexes: Tensor) -> Tensor:
        """
        Parameters
        ----------
        indexes : Tensor
            Integer tensor of shape ``(batch, seq)`` with values in
            ``[0, n_embedding)``.

        Returns
        -------
        Tensor
            Embedded tensor of shape ``(batch, seq, d_model)``.
        """
        return F.embedding(self.weight.value, indexes)
