import math
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from multigrad.autodiff.backend import ADBackend
from multigrad.autodiff.gradients import Gradients
from multigrad.backend import Backend
from multigrad.config import get_default_backend
from multigrad.errors import ShapeError
from multigrad.shape import Data, Shape, ShapeLike, as_shape

RangeLike = Union[range, slice, Tuple[int, int]]


def _check_backends(op: str, lhs: "Tensor", rhs: "Tensor") -> None:
    if lhs.backend != rhs.backend:
        raise ShapeError(op, f"operands live on different backends ({lhs.backend!r} vs {rhs.backend!r})")


def _check_same_rank(op: str, lhs: Shape, rhs: Shape) -> None:
    if lhs.rank != rhs.rank:
        raise ShapeError(op, f"rank mismatch: {lhs.rank} vs {rhs.rank}")


def _check_broadcast(op: str, lhs: Shape, rhs: Shape) -> None:
    _check_same_rank(op, lhs, rhs)
    for dim, (a, b) in enumerate(zip(lhs, rhs)):
        if a != b and a != 1 and b != 1:
            raise ShapeError(op, f"shapes {lhs.dims} and {rhs.dims} are not broadcastable at dim {dim}")


def _check_dim(op: str, shape: Shape, dim: int) -> None:
    if not 0 <= dim < shape.rank:
        raise ShapeError(op, f"dim {dim} out of range for rank {shape.rank}")


def _normalize_ranges(op: str, shape: Shape, ranges: Sequence[RangeLike]) -> list:
    """Turn slices / ``(start, end)`` pairs into half-open ``range`` objects and bound-check them."""
    if len(ranges) > shape.rank:
        raise ShapeError(op, f"{len(ranges)} ranges given for rank {shape.rank}")
    out = []
    for dim, r in enumerate(ranges):
        if isinstance(r, slice):
            if r.step not in (None, 1):
                raise ShapeError(op, f"only contiguous ranges are supported, got step {r.step}")
            start = 0 if r.start is None else r.start
            stop = shape[dim] if r.stop is None else r.stop
        elif isinstance(r, range):
            if r.step != 1:
                raise ShapeError(op, f"only contiguous ranges are supported, got step {r.step}")
            start, stop = r.start, r.stop
        else:
            start, stop = r
        if not 0 <= start <= stop <= shape[dim]:
            raise ShapeError(op, f"range {start}..{stop} out of bounds for dim {dim} of size {shape[dim]}")
        out.append(range(start, stop))
    return out


def _region_shape(shape: Shape, ranges: Sequence[range]) -> Shape:
    dims = list(shape)
    for dim, r in enumerate(ranges):
        dims[dim] = r.stop - r.start
    return Shape(dims)


class BoolTensor:
    """
    Result of a comparison: a bool primitive on the engine that produced it.

    Used as the mask argument of :meth:`Tensor.mask_fill`.
    """
    def __init__(self, primitive: Any, backend: Backend) -> None:
        self.primitive = primitive
        self.backend = backend

    @property
    def shape(self) -> Shape:
        return self.backend.bool_shape(self.primitive)

    def to_data(self) -> Data:
        return self.backend.bool_to_data(self.primitive)

    def __repr__(self) -> str:
        return f"bool_tensor({self.to_data().tolist()})"


class Tensor:
    """
    A backend-agnostic tensor handle.

    A ``Tensor`` pairs an opaque primitive with the backend that owns it and
    routes every operation to that backend. When the backend is an
    :class:`~multigrad.autodiff.backend.ADBackend`, each operation also
    records a graph node and :meth:`backward` becomes available.

    Notes
    -----
    - The rank is carried by :attr:`shape`; rank, dimension and bound checks
      happen here, before the backend (and therefore the graph) is touched.
    - Tensor-tensor arithmetic requires equal rank and broadcasts size-1 dims.
    - Handles are immutable: every operation returns a new ``Tensor``.
    """
    def __init__(self, primitive: Any, backend: Backend) -> None:
        """
        Wrap a primitive owned by ``backend``.

        Parameters
        ----------
        primitive : Any
            Backend-owned handle (e.g. ``NdArrayTensor``, ``ADTensor``).
        backend : Backend
            The backend that created ``primitive``.
        """
        self.primitive = primitive
        self.backend = backend

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def shape(self) -> Shape:
        """Shape: The tensor's shape."""
        return self.backend.shape(self.primitive)

    @property
    def rank(self) -> int:
        """int: The number of dimensions of the tensor."""
        return self.shape.rank

    @property
    def dtype(self) -> str:
        """str: The element type of the owning backend."""
        return self.backend.dtype

    @property
    def device(self) -> str:
        """str: The device holding the storage (``"cpu"`` or ``"cuda"``)."""
        return self.backend.device(self.primitive)

    @property
    def id(self) -> Optional[int]:
        """int or None: Graph node identity for differentiable tensors, else ``None``."""
        if self.is_differentiable:
            return self.primitive.node.id
        return None

    @property
    def is_differentiable(self) -> bool:
        """bool: Whether operations on this tensor record graph nodes."""
        return isinstance(self.backend, ADBackend)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @staticmethod
    def from_data(
        data: Data,
        backend: Optional[Backend] = None,
        device: Optional[str] = None,
    ) -> "Tensor":
        """
        Create a tensor from a host :class:`Data` buffer.

        Parameters
        ----------
        data : Data
            Values and shape. Elements are cast to the backend's dtype.
        backend : Backend, optional
            Target backend. Defaults to :func:`multigrad.config.get_default_backend`.
        device : {'cpu', 'cuda', 'cuda:0', ...} or None, optional
            Target device. Defaults to the backend's default device.

        Examples
        --------
        >>> Tensor.from_data(Data.from_array([[1.0, 7.0], [2.0, 3.0]])).shape
        Shape(2, 2)
        """
        backend = backend or get_default_backend()
        return Tensor(backend.from_data(data, device), backend)

    @staticmethod
    def from_array(
        array: Any,
        backend: Optional[Backend] = None,
        device: Optional[str] = None,
    ) -> "Tensor":
        """Create a tensor from a nested sequence or ``numpy.ndarray``."""
        return Tensor.from_data(Data.from_array(array), backend, device)

    @staticmethod
    def zeros(shape: ShapeLike, backend: Optional[Backend] = None, device: Optional[str] = None) -> "Tensor":
        backend = backend or get_default_backend()
        return Tensor(backend.zeros(as_shape(shape), device), backend)

    @staticmethod
    def ones(shape: ShapeLike, backend: Optional[Backend] = None, device: Optional[str] = None) -> "Tensor":
        backend = backend or get_default_backend()
        return Tensor(backend.ones(as_shape(shape), device), backend)

    @staticmethod
    def empty(shape: ShapeLike, backend: Optional[Backend] = None, device: Optional[str] = None) -> "Tensor":
        """Allocate a tensor whose contents are unspecified."""
        backend = backend or get_default_backend()
        return Tensor(backend.empty(as_shape(shape), device), backend)

    @staticmethod
    def arange(
        start: int,
        end: int,
        backend: Optional[Backend] = None,
        device: Optional[str] = None,
    ) -> "Tensor":
        """
        Return ``start .. end-1`` as a rank-1 tensor of the integer backend.

        Raises
        ------
        ShapeError
            If ``end < start``.
        """
        if end < start:
            raise ShapeError("arange", f"end {end} is smaller than start {start}")
        backend = backend or get_default_backend()
        return Tensor(backend.arange(start, end, device), backend.integer_backend())

    @staticmethod
    def random(
        shape: ShapeLike,
        low: float = 0.0,
        high: float = 1.0,
        backend: Optional[Backend] = None,
        device: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "Tensor":
        """Sample each element from ``U(low, high)``."""
        backend = backend or get_default_backend()
        return Tensor(backend.random_uniform(as_shape(shape), low, high, device, rng), backend)

    def _new(self, primitive: Any) -> "Tensor":
        return Tensor(primitive, self.backend)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def _binary(self, op: str, other: Union["Tensor", Any]) -> "Tensor":
        if isinstance(other, Tensor):
            _check_backends(op, self, other)
            _check_broadcast(op, self.shape, other.shape)
            return self._new(getattr(self.backend, op)(self.primitive, other.primitive))
        return self._new(getattr(self.backend, f"{op}_scalar")(self.primitive, other))

    def add(self, other: Union["Tensor", Any]) -> "Tensor":
        """
        Elementwise addition with a tensor or a scalar.

        Parameters
        ----------
        other : Tensor or scalar
            Tensor of the same rank (size-1 dims broadcast) or a Python number.

        Returns
        -------
        Tensor
            ``self + other``.

        Notes
        -----
        - Gradients pass through unchanged to both operands, summed over the
          broadcast dimensions.
        """
        return self._binary("add", other)

    def sub(self, other: Union["Tensor", Any]) -> "Tensor":
        """Elementwise subtraction; see :meth:`add`."""
        return self._binary("sub", other)

    def mul(self, other: Union["Tensor", Any]) -> "Tensor":
        """
        Elementwise multiplication with a tensor or a scalar.

        Notes
        -----
        - Gradients: ``dL/dself = g * other`` and ``dL/dother = g * self``,
          reduced over broadcast dimensions.
        """
        return self._binary("mul", other)

    def div(self, other: Union["Tensor", Any]) -> "Tensor":
        """Elementwise division; integer backends use floor division."""
        return self._binary("div", other)

    def matmul(self, other: "Tensor") -> "Tensor":
        """
        Matrix multiply over the last two dims, batched over leading dims.

        ``(..., m, k) @ (..., k, n) -> (..., m, n)``; batch dims broadcast
        when one side has size 1.

        Raises
        ------
        ShapeError
            If the ranks differ, are below 2, or the inner dimensions disagree.

        Notes
        -----
        - Gradients:
            - ``dL/dself = g @ swap_last_two(other)``
            - ``dL/dother = swap_last_two(self) @ g``
        """
        _check_backends("matmul", self, other)
        lhs, rhs = self.shape, other.shape
        _check_same_rank("matmul", lhs, rhs)
        if lhs.rank < 2:
            raise ShapeError("matmul", f"rank must be at least 2, got {lhs.rank}")
        if lhs[-1] != rhs[-2]:
            raise ShapeError("matmul", f"inner dimensions differ: {lhs.dims} @ {rhs.dims}")
        _check_broadcast("matmul", Shape(lhs[:-2]), Shape(rhs[:-2]))
        return self._new(self.backend.matmul(self.primitive, other.primitive))

    def neg(self) -> "Tensor":
        return self._new(self.backend.neg(self.primitive))

    def __add__(self, other: Union["Tensor", Any]) -> "Tensor":
        return self.add(other)

    def __radd__(self, other: Any) -> "Tensor":
        """Right-hand addition: ``other + self``."""
        return self.add(other)

    def __sub__(self, other: Union["Tensor", Any]) -> "Tensor":
        return self.sub(other)

    def __rsub__(self, other: Any) -> "Tensor":
        """Right-hand subtraction: ``other - self``."""
        return self.neg().add(other)

    def __mul__(self, other: Union["Tensor", Any]) -> "Tensor":
        return self.mul(other)

    def __rmul__(self, other: Any) -> "Tensor":
        """Right-hand multiplication: ``other * self``."""
        return self.mul(other)

    def __truediv__(self, other: Union["Tensor", Any]) -> "Tensor":
        return self.div(other)

    def __rtruediv__(self, other: Any) -> "Tensor":
        """Right-hand division: ``other / self``."""
        return self.powf(-1.0).mul(other)

    def __matmul__(self, other: "Tensor") -> "Tensor":
        return self.matmul(other)

    def __neg__(self) -> "Tensor":
        """Elementwise negation (returns ``-self``)."""
        return self.neg()

    def __pow__(self, value: float) -> "Tensor":
        return self.powf(value)

    def __rpow__(self, other: float) -> "Tensor":
        """
        Right-hand power: ``other ** self`` for a positive scalar base.

        Computed as ``exp(self * log(other))``.
        """
        if other <= 0:
            raise ValueError(f"scalar base of a tensor power must be positive, got {other}")
        return self.mul(math.log(other)).exp()

    # ------------------------------------------------------------------
    # Shape manipulation and indexing
    # ------------------------------------------------------------------
    def swap_dims(self, dim1: int, dim2: int) -> "Tensor":
        _check_dim("swap_dims", self.shape, dim1)
        _check_dim("swap_dims", self.shape, dim2)
        return self._new(self.backend.swap_dims(self.primitive, dim1, dim2))

    def transpose(self) -> "Tensor":
        """Swap the last two dimensions."""
        if self.rank < 2:
            raise ShapeError("transpose", f"rank must be at least 2, got {self.rank}")
        return self._new(self.backend.transpose(self.primitive))

    def reshape(self, shape: ShapeLike) -> "Tensor":
        """
        Reshape to ``shape``; the rank may change.

        Raises
        ------
        ShapeError
            If ``shape`` holds a different number of elements.
        """
        shape = as_shape(shape)
        if shape.num_elements() != self.shape.num_elements():
            raise ShapeError(
                "reshape",
                f"cannot reshape {self.shape.dims} ({self.shape.num_elements()} elements) "
                f"into {shape.dims} ({shape.num_elements()} elements)",
            )
        return self._new(self.backend.reshape(self.primitive, shape))

    def index(self, ranges: Sequence[RangeLike]) -> "Tensor":
        """
        Read a rectangular sub-region.

        Parameters
        ----------
        ranges : sequence of range, slice or (start, end)
            One half-open range per leading dimension; trailing dims not
            covered are taken whole.

        Raises
        ------
        ShapeError
            If a range falls outside the tensor or more ranges than dims are given.

        Notes
        -----
        During backpropagation, the region gradient is scattered back into a
        zero tensor shaped like ``self``.

        Examples
        --------
        >>> x = Tensor.from_array([[1, 2, 3], [4, 5, 6]])
        >>> x.index([range(0, 1), range(1, 3)]).to_data().tolist()
        [[2.0, 3.0]]
        """
        ranges = _normalize_ranges("index", self.shape, ranges)
        return self._new(self.backend.index(self.primitive, ranges))

    def index_assign(self, ranges: Sequence[RangeLike], value: "Tensor") -> "Tensor":
        """
        Return a copy of ``self`` whose region ``ranges`` holds ``value``.

        ``self`` is left untouched; other holders of it see no change.

        Raises
        ------
        ShapeError
            If a range is out of bounds or ``value`` does not match the region shape.
        """
        _check_backends("index_assign", self, value)
        ranges = _normalize_ranges("index_assign", self.shape, ranges)
        region = _region_shape(self.shape, ranges)
        if value.shape != region:
            raise ShapeError("index_assign", f"value shape {value.shape.dims} does not match region {region.dims}")
        return self._new(self.backend.index_assign(self.primitive, ranges, value.primitive))

    def mask_fill(self, mask: BoolTensor, value: Any) -> "Tensor":
        """Replace the elements where ``mask`` is true with the scalar ``value``."""
        if mask.backend != self._bool_backend():
            raise ShapeError("mask_fill", f"mask lives on {mask.backend!r}, expected {self._bool_backend()!r}")
        if mask.shape != self.shape:
            raise ShapeError("mask_fill", f"mask shape {mask.shape.dims} does not match {self.shape.dims}")
        return self._new(self.backend.mask_fill(self.primitive, mask.primitive, value))

    def repeat(self, dim: int, times: int) -> "Tensor":
        """
        Repeat a size-1 dimension ``times`` times.

        Raises
        ------
        ShapeError
            If ``dim`` is out of range or its size is not 1.
        """
        _check_dim("repeat", self.shape, dim)
        if self.shape[dim] != 1:
            raise ShapeError("repeat", f"can only repeat a dimension of size 1, dim {dim} has size {self.shape[dim]}")
        return self._new(self.backend.repeat(self.primitive, dim, times))

    @staticmethod
    def cat(tensors: Sequence["Tensor"], dim: int) -> "Tensor":
        """
        Concatenate tensors along ``dim``.

        All tensors must share backend and rank, and match on every dim
        except ``dim``. The backward pass splits the gradient along ``dim``.
        """
        if not tensors:
            raise ShapeError("cat", "needs at least one tensor")
        first = tensors[0]
        _check_dim("cat", first.shape, dim)
        for t in tensors[1:]:
            _check_backends("cat", first, t)
            _check_same_rank("cat", first.shape, t.shape)
            for d, (a, b) in enumerate(zip(first.shape, t.shape)):
                if d != dim and a != b:
                    raise ShapeError("cat", f"shapes {first.shape.dims} and {t.shape.dims} differ at dim {d}")
        return first._new(first.backend.cat([t.primitive for t in tensors], dim))

    # ------------------------------------------------------------------
    # Comparisons
    # ------------------------------------------------------------------
    def _compare(self, op: str, other: Union["Tensor", Any]) -> BoolTensor:
        if isinstance(other, Tensor):
            _check_backends(op, self, other)
            _check_broadcast(op, self.shape, other.shape)
            out = getattr(self.backend, op)(self.primitive, other.primitive)
        else:
            out = getattr(self.backend, f"{op}_scalar")(self.primitive, other)
        return BoolTensor(out, self._bool_backend())

    def _bool_backend(self) -> Backend:
        return self.backend.inner if self.is_differentiable else self.backend

    def equal(self, other: Union["Tensor", Any]) -> BoolTensor:
        return self._compare("equal", other)

    def greater(self, other: Union["Tensor", Any]) -> BoolTensor:
        return self._compare("greater", other)

    def greater_equal(self, other: Union["Tensor", Any]) -> BoolTensor:
        return self._compare("greater_equal", other)

    def lower(self, other: Union["Tensor", Any]) -> BoolTensor:
        return self._compare("lower", other)

    def lower_equal(self, other: Union["Tensor", Any]) -> BoolTensor:
        return self._compare("lower_equal", other)

    # ------------------------------------------------------------------
    # Aggregation and arg-reduction
    # ------------------------------------------------------------------
    def sum(self) -> "Tensor":
        """Sum of all elements as a tensor of shape ``(1,)``."""
        return self._new(self.backend.sum(self.primitive))

    def mean(self) -> "Tensor":
        """Mean of all elements as a tensor of shape ``(1,)``."""
        return self._new(self.backend.mean(self.primitive))

    def sum_dim(self, dim: int) -> "Tensor":
        """Sum along ``dim``; the reduced dimension is kept with size 1."""
        _check_dim("sum_dim", self.shape, dim)
        return self._new(self.backend.sum_dim(self.primitive, dim))

    def mean_dim(self, dim: int) -> "Tensor":
        """Mean along ``dim``; the reduced dimension is kept with size 1."""
        _check_dim("mean_dim", self.shape, dim)
        return self._new(self.backend.mean_dim(self.primitive, dim))

    def argmax(self, dim: int) -> "Tensor":
        """Indices of the maxima along ``dim`` (kept with size 1), on the integer backend."""
        _check_dim("argmax", self.shape, dim)
        return Tensor(self.backend.argmax(self.primitive, dim), self.backend.integer_backend())

    def argmin(self, dim: int) -> "Tensor":
        """Indices of the minima along ``dim`` (kept with size 1), on the integer backend."""
        _check_dim("argmin", self.shape, dim)
        return Tensor(self.backend.argmin(self.primitive, dim), self.backend.integer_backend())

    # ------------------------------------------------------------------
    # Precision and elementwise
    # ------------------------------------------------------------------
    def to_full_precision(self) -> "Tensor":
        """Cast to the backend's designated full-precision element type."""
        return Tensor(self.backend.to_full_precision(self.primitive), self.backend.full_precision_backend())

    @staticmethod
    def from_full_precision(tensor: "Tensor", backend: Backend) -> "Tensor":
        """Cast a full-precision ``tensor`` back to ``backend``'s element type."""
        if tensor.backend != backend.full_precision_backend():
            raise ShapeError("from_full_precision", f"{tensor.backend!r} is not the full-precision backend of {backend!r}")
        return Tensor(backend.from_full_precision(tensor.primitive), backend)

    def exp(self) -> "Tensor":
        return self._new(self.backend.exp(self.primitive))

    def log(self) -> "Tensor":
        return self._new(self.backend.log(self.primitive))

    def erf(self) -> "Tensor":
        return self._new(self.backend.erf(self.primitive))

    def powf(self, value: float) -> "Tensor":
        return self._new(self.backend.powf(self.primitive, value))

    # ------------------------------------------------------------------
    # Data, placement and autodiff
    # ------------------------------------------------------------------
    def to_data(self) -> Data:
        """Materialize the tensor on the host. Repeated calls yield equal buffers."""
        return self.backend.to_data(self.primitive)

    def to_device(self, device: str) -> "Tensor":
        """Return a copy of the tensor on ``device``; gradients flow back across the transfer."""
        return self._new(self.backend.to_device(self.primitive, device))

    def detach(self) -> "Tensor":
        """Return a fresh leaf with the same value; gradients never flow past it."""
        return self._new(self.backend.detach(self.primitive))

    def inner(self) -> "Tensor":
        """Return the value on the non-recording backend (``self`` for plain backends)."""
        if self.is_differentiable:
            return Tensor(self.primitive.value, self.backend.inner)
        return self

    @staticmethod
    def from_inner(tensor: "Tensor", backend: Backend) -> "Tensor":
        """Lift a tensor of ``backend.inner`` into ``backend`` as a new leaf."""
        if isinstance(backend, ADBackend):
            if tensor.backend != backend.inner:
                raise ShapeError("from_inner", f"{tensor.backend!r} is not the inner backend of {backend!r}")
            return Tensor(backend.from_inner(tensor.primitive), backend)
        return tensor

    def backward(self, seed: Optional["Tensor"] = None) -> Gradients:
        """
        Run a backward pass from this tensor.

        Parameters
        ----------
        seed : Tensor, optional
            Upstream gradient on the inner backend, shaped like ``self``.
            Defaults to ones (this allows calling ``backward()`` on
            non-scalar tensors).

        Returns
        -------
        Gradients
            Gradients of every leaf this tensor depends on, keyed by node id.

        Raises
        ------
        TypeError
            If the tensor's backend is not differentiable.

        Examples
        --------
        >>> x = Tensor.from_array([2.0, 3.0])
        >>> grads = (x * x).sum().backward()
        >>> x.grad(grads).to_data().tolist()
        [4.0, 6.0]
        """
        if not self.is_differentiable:
            raise TypeError(f"backward requires a differentiable backend, got {self.backend!r}")
        seed_primitive = None
        if seed is not None:
            seed_primitive = seed.inner().primitive
        return self.backend.backward(self.primitive, seed_primitive)

    def grad(self, grads: Gradients) -> Optional["Tensor"]:
        """
        Return this tensor's gradient from ``grads``, or ``None``.

        ``None`` means the tensor did not take part in the differentiated
        expression (or only reached it through a detached copy).
        """
        if not self.is_differentiable:
            return None
        grad = self.backend.grad(self.primitive, grads)
        if grad is None:
            return None
        return Tensor(grad, self.primitive.node.backend)

    def __repr__(self) -> str:
        """
        Returns a readable string representation of the tensor.

        Examples
        --------
        >>> print(Tensor.from_array([[1, 2], [3, 4]]))
        tensor([[1.0, 2.0], [3.0, 4.0]], dtype=float32, backend=autodiff<ndarray>, device='cpu')
        """
        data = self.to_data().tolist()
        return f"tensor({data}, dtype={self.dtype}, backend={self.backend.name}, device='{self.device}')"
