from typing import Any, List, Optional

from multigrad.autodiff import ops
from multigrad.autodiff.engine import backward as run_backward
from multigrad.autodiff.gradients import Gradients
from multigrad.autodiff.graph import Node
from multigrad.backend import Backend, Ranges, Scalar
from multigrad.errors import ShapeError
from multigrad.logger import get_logger
from multigrad.shape import Data, Shape, ShapeLike, as_shape

logger = get_logger(__name__)

_grad_enabled = True
"""bool: Global flag indicating whether graph recording is enabled.

This flag is toggled by the :class:``no_grad`` context manager.
When ``_grad_enabled`` is ``False``, decorated operations still compute
their values but produce leaf nodes instead of recording their inputs.
"""


class no_grad:
    """
    Context manager that temporarily disables graph recording.

    Inside the context, every ``ADBackend`` operation returns a fresh leaf,
    so nothing computed there can carry gradients back to its inputs.

    Examples
    --------
    >>> with no_grad():
    ...     y = model(x)   # y is a leaf
    >>> # Outside the context, recording resumes.

    Notes
    -----
    - It is safe to nest ``no_grad`` contexts; the previous state of
      ``_grad_enabled`` is restored upon exit.
    """
    def __enter__(self):
        global _grad_enabled
        self.prev = _grad_enabled
        _grad_enabled = False

    def __exit__(self, *args):
        global _grad_enabled
        _grad_enabled = self.prev


def is_grad_enabled() -> bool:
    return _grad_enabled


class ADTensor:
    """
    Primitive of :class:`ADBackend`: an inner primitive plus its graph node.

    Every ``ADTensor`` gets its own node, so its identity (``node.id``) is
    unique even when its value equals an earlier tensor's.
    """
    __slots__ = ("value", "node")

    def __init__(self, value: Any, node: Node) -> None:
        self.value = value
        self.node = node

    @property
    def shape(self) -> Shape:
        return self.node.shape

    def __repr__(self) -> str:
        return f"ADTensor(id={self.node.id}, op={self.node.op!r}, shape={self.node.shape.dims})"


class ADBackend(Backend):
    """
    Differentiable decorator around another backend.

    Every operation delegates to the wrapped backend to compute the real
    output, then creates a graph node recording the operation kind, the
    input nodes and a backward variant from :mod:`multigrad.autodiff.ops`.
    Bool outputs (comparisons) and integer outputs (``argmax``, ``arange``)
    are returned as plain inner primitives.

    Parameters
    ----------
    inner : Backend
        The backend doing the actual computation. Gradients are primitives
        of this backend.
    """
    def __init__(self, inner: Backend) -> None:
        if isinstance(inner, ADBackend):
            raise TypeError("ADBackend cannot wrap another ADBackend")
        self.inner = inner
        self.name = f"autodiff<{inner.name}>"
        self.dtype = inner.dtype
        self.default_device = inner.default_device

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ADBackend) and other.inner == self.inner

    def __hash__(self) -> int:
        return hash(("autodiff", self.inner))

    def __repr__(self) -> str:
        return f"ADBackend({self.inner!r})"

    def integer_backend(self) -> Backend:
        return self.inner.integer_backend()

    def full_precision_backend(self) -> "ADBackend":
        return ADBackend(self.inner.full_precision_backend())

    # graph bookkeeping
    def _leaf(self, value: Any, backend: Optional[Backend] = None) -> ADTensor:
        backend = backend or self.inner
        return ADTensor(value, Node("leaf", (), backend.shape(value), backend))

    def _record(
        self,
        value: Any,
        parents: List[ADTensor],
        backward: ops.BackwardOp,
        backend: Optional[Backend] = None,
    ) -> ADTensor:
        backend = backend or self.inner
        if not _grad_enabled:
            return self._leaf(value, backend)
        node = Node(backward.op, tuple(p.node for p in parents), backend.shape(value), backend, backward)
        return ADTensor(value, node)

    def from_inner(self, value: Any) -> ADTensor:
        """Wrap an inner primitive as a new leaf."""
        return self._leaf(value)

    # accessors and placement
    def to_data(self, tensor: ADTensor) -> Data:
        return self.inner.to_data(tensor.value)

    def from_data(self, data: Data, device: Optional[str] = None) -> ADTensor:
        return self._leaf(self.inner.from_data(data, device))

    def bool_shape(self, tensor: Any) -> Shape:
        return self.inner.bool_shape(tensor)

    def bool_to_data(self, tensor: Any) -> Data:
        return self.inner.bool_to_data(tensor)

    def device(self, tensor: ADTensor) -> str:
        return self.inner.device(tensor.value)

    def to_device(self, tensor: ADTensor, device: str) -> ADTensor:
        source = self.inner.device(tensor.value)
        value = self.inner.to_device(tensor.value, device)
        return self._record(value, [tensor], ops.ToDevice(self.inner, source))

    # construction
    def empty(self, shape: ShapeLike, device: Optional[str] = None) -> ADTensor:
        return self._leaf(self.inner.empty(shape, device))

    def zeros(self, shape: ShapeLike, device: Optional[str] = None) -> ADTensor:
        return self._leaf(self.inner.zeros(shape, device))

    def ones(self, shape: ShapeLike, device: Optional[str] = None) -> ADTensor:
        return self._leaf(self.inner.ones(shape, device))

    def random_uniform(self, shape, low, high, device=None, rng=None) -> ADTensor:
        return self._leaf(self.inner.random_uniform(shape, low, high, device, rng))

    # arithmetic
    def add(self, lhs: ADTensor, rhs: ADTensor) -> ADTensor:
        value = self.inner.add(lhs.value, rhs.value)
        return self._record(value, [lhs, rhs], ops.Add(self.inner, lhs.shape, rhs.shape))

    def add_scalar(self, lhs: ADTensor, rhs: Scalar) -> ADTensor:
        value = self.inner.add_scalar(lhs.value, rhs)
        return self._record(value, [lhs], ops.AddScalar(self.inner))

    def sub(self, lhs: ADTensor, rhs: ADTensor) -> ADTensor:
        value = self.inner.sub(lhs.value, rhs.value)
        return self._record(value, [lhs, rhs], ops.Sub(self.inner, lhs.shape, rhs.shape))

    def sub_scalar(self, lhs: ADTensor, rhs: Scalar) -> ADTensor:
        value = self.inner.sub_scalar(lhs.value, rhs)
        return self._record(value, [lhs], ops.SubScalar(self.inner))

    def mul(self, lhs: ADTensor, rhs: ADTensor) -> ADTensor:
        value = self.inner.mul(lhs.value, rhs.value)
        return self._record(value, [lhs, rhs], ops.Mul(self.inner, lhs.value, rhs.value))

    def mul_scalar(self, lhs: ADTensor, rhs: Scalar) -> ADTensor:
        value = self.inner.mul_scalar(lhs.value, rhs)
        return self._record(value, [lhs], ops.MulScalar(self.inner, rhs))

    def div(self, lhs: ADTensor, rhs: ADTensor) -> ADTensor:
        value = self.inner.div(lhs.value, rhs.value)
        return self._record(value, [lhs, rhs], ops.Div(self.inner, lhs.value, rhs.value))

    def div_scalar(self, lhs: ADTensor, rhs: Scalar) -> ADTensor:
        value = self.inner.div_scalar(lhs.value, rhs)
        return self._record(value, [lhs], ops.DivScalar(self.inner, rhs))

    def matmul(self, lhs: ADTensor, rhs: ADTensor) -> ADTensor:
        value = self.inner.matmul(lhs.value, rhs.value)
        return self._record(value, [lhs, rhs], ops.Matmul(self.inner, lhs.value, rhs.value))

    def neg(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.neg(tensor.value)
        return self._record(value, [tensor], ops.Neg(self.inner))

    # shape manipulation and indexing
    def swap_dims(self, tensor: ADTensor, dim1: int, dim2: int) -> ADTensor:
        value = self.inner.swap_dims(tensor.value, dim1, dim2)
        return self._record(value, [tensor], ops.SwapDims(self.inner, dim1, dim2))

    def reshape(self, tensor: ADTensor, shape: ShapeLike) -> ADTensor:
        value = self.inner.reshape(tensor.value, as_shape(shape))
        return self._record(value, [tensor], ops.Reshape(self.inner, tensor.shape))

    def index(self, tensor: ADTensor, ranges: Ranges) -> ADTensor:
        value = self.inner.index(tensor.value, ranges)
        return self._record(value, [tensor], ops.Index(self.inner, tensor.shape, ranges))

    def index_assign(self, tensor: ADTensor, ranges: Ranges, value: ADTensor) -> ADTensor:
        out = self.inner.index_assign(tensor.value, ranges, value.value)
        return self._record(out, [tensor, value], ops.IndexAssign(self.inner, ranges, value.shape))

    def mask_fill(self, tensor: ADTensor, mask: Any, value: Scalar) -> ADTensor:
        out = self.inner.mask_fill(tensor.value, mask, value)
        return self._record(out, [tensor], ops.MaskFill(self.inner, mask))

    # comparisons
    def equal(self, lhs, rhs):
        return self.inner.equal(lhs.value, rhs.value)

    def equal_scalar(self, lhs, rhs):
        return self.inner.equal_scalar(lhs.value, rhs)

    def greater(self, lhs, rhs):
        return self.inner.greater(lhs.value, rhs.value)

    def greater_scalar(self, lhs, rhs):
        return self.inner.greater_scalar(lhs.value, rhs)

    def greater_equal(self, lhs, rhs):
        return self.inner.greater_equal(lhs.value, rhs.value)

    def greater_equal_scalar(self, lhs, rhs):
        return self.inner.greater_equal_scalar(lhs.value, rhs)

    def lower(self, lhs, rhs):
        return self.inner.lower(lhs.value, rhs.value)

    def lower_scalar(self, lhs, rhs):
        return self.inner.lower_scalar(lhs.value, rhs)

    def lower_equal(self, lhs, rhs):
        return self.inner.lower_equal(lhs.value, rhs.value)

    def lower_equal_scalar(self, lhs, rhs):
        return self.inner.lower_equal_scalar(lhs.value, rhs)

    # aggregation
    def sum(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.sum(tensor.value)
        return self._record(value, [tensor], ops.Sum(self.inner, tensor.shape))

    def mean(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.mean(tensor.value)
        return self._record(value, [tensor], ops.Mean(self.inner, tensor.shape))

    def sum_dim(self, tensor: ADTensor, dim: int) -> ADTensor:
        value = self.inner.sum_dim(tensor.value, dim)
        return self._record(value, [tensor], ops.SumDim(self.inner, tensor.shape, dim))

    def mean_dim(self, tensor: ADTensor, dim: int) -> ADTensor:
        value = self.inner.mean_dim(tensor.value, dim)
        return self._record(value, [tensor], ops.MeanDim(self.inner, tensor.shape, dim))

    # precision
    def to_full_precision(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.to_full_precision(tensor.value)
        full = self.inner.full_precision_backend()
        return self._record(value, [tensor], ops.ToFullPrecision(self.inner), backend=full)

    def from_full_precision(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.from_full_precision(tensor.value)
        return self._record(value, [tensor], ops.FromFullPrecision(self.inner))

    # arg-reduction
    def argmax(self, tensor: ADTensor, dim: int) -> Any:
        return self.inner.argmax(tensor.value, dim)

    def argmin(self, tensor: ADTensor, dim: int) -> Any:
        return self.inner.argmin(tensor.value, dim)

    # elementwise
    def exp(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.exp(tensor.value)
        return self._record(value, [tensor], ops.Exp(self.inner, value))

    def log(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.log(tensor.value)
        return self._record(value, [tensor], ops.Log(self.inner, tensor.value))

    def erf(self, tensor: ADTensor) -> ADTensor:
        value = self.inner.erf(tensor.value)
        return self._record(value, [tensor], ops.Erf(self.inner, tensor.value))

    def powf(self, tensor: ADTensor, value: float) -> ADTensor:
        out = self.inner.powf(tensor.value, value)
        return self._record(out, [tensor], ops.Powf(self.inner, tensor.value, value))

    def cat(self, tensors: List[ADTensor], dim: int) -> ADTensor:
        value = self.inner.cat([t.value for t in tensors], dim)
        return self._record(value, list(tensors), ops.Cat(self.inner, dim, [t.shape for t in tensors]))

    def detach(self, tensor: ADTensor) -> ADTensor:
        """Return a brand-new leaf carrying the same value; no path leads back through it."""
        detached = self._leaf(tensor.value, tensor.node.backend)
        logger.debug("detached node %d as leaf %d", tensor.node.id, detached.node.id)
        return detached

    # module ops
    def embedding(self, weights: ADTensor, indexes: Any) -> ADTensor:
        value = self.inner.embedding(weights.value, indexes)
        return self._record(value, [weights], ops.Embedding(self.inner, weights.value, indexes))

    def embedding_backward(self, weights: ADTensor, output: ADTensor, indexes: Any) -> ADTensor:
        value = self.inner.embedding_backward(weights.value, output.value, indexes)
        return self._leaf(value)

    # gradients
    def backward(self, tensor: ADTensor, seed: Optional[Any] = None) -> Gradients:
        """
        Differentiate ``tensor`` with respect to every leaf it depends on.

        Parameters
        ----------
        tensor : ADTensor
            Root of the backward pass (typically a scalar loss).
        seed : inner primitive, optional
            Upstream gradient of the root. Defaults to ones shaped like the root.

        Raises
        ------
        ShapeError
            If ``seed`` is not shaped like ``tensor``.
        """
        node = tensor.node
        if seed is None:
            seed = node.backend.ones(node.shape, node.backend.device(tensor.value))
        elif node.backend.shape(seed) != node.shape:
            raise ShapeError(
                "backward",
                f"seed shape {node.backend.shape(seed).dims} does not match root shape {node.shape.dims}",
            )
        return run_backward(node, seed)

    def grad(self, tensor: ADTensor, grads: Gradients) -> Optional[Any]:
        """Return the inner gradient primitive of ``tensor`` or ``None`` if it has none."""
        return grads.get(tensor.node.id)
