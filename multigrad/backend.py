"""
Backend capability interface.

A backend is a concrete compute engine bound to one element type. It owns
the storage of the tensor primitives it creates; callers treat primitives as
opaque, read-only handles and only pass them back to the backend that made
them. Every primitive exposes a ``shape`` attribute (a :class:`Shape`).

Operations that look like writes (``index_assign``, ``mask_fill``,
``repeat``) always return a new primitive and never touch storage reachable
from an existing one.

The abstract methods are the primitives each engine must implement. The
concrete methods on :class:`Backend` are default composites built only from
those primitives; backends may override them with faster kernels.
"""
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import numpy as np

from multigrad.config import DEFAULT_DEVICE
from multigrad.errors import ShapeError
from multigrad.shape import Data, Shape, ShapeLike, as_shape

Scalar = Any
Primitive = Any
Ranges = Sequence[range]


class Backend(ABC):
    """
    Abstract tensor engine.

    Attributes
    ----------
    name : str
        Human readable engine name (e.g. ``"ndarray"``).
    dtype : str
        Element type of float/int primitives produced by this backend.
    default_device : str
        Device used when a constructor is called without one.
    """
    name: str = "backend"
    dtype: str = "float32"
    default_device: str = DEFAULT_DEVICE

    # ------------------------------------------------------------------
    # Related backends
    # ------------------------------------------------------------------
    @abstractmethod
    def integer_backend(self) -> "Backend":
        """Backend used for index tensors (``arange``, ``argmax``, embedding indexes)."""

    @abstractmethod
    def full_precision_backend(self) -> "Backend":
        """Backend of the designated full-precision element type."""

    # ------------------------------------------------------------------
    # Accessors and placement
    # ------------------------------------------------------------------
    def shape(self, tensor: Primitive) -> Shape:
        return tensor.shape

    @abstractmethod
    def to_data(self, tensor: Primitive) -> Data:
        """Copy a primitive into a host-side :class:`Data` buffer."""

    @abstractmethod
    def from_data(self, data: Data, device: Optional[str] = None) -> Primitive:
        """Create a primitive holding ``data`` on ``device``."""

    def bool_shape(self, tensor: Primitive) -> Shape:
        return tensor.shape

    @abstractmethod
    def bool_to_data(self, tensor: Primitive) -> Data:
        """Copy a bool primitive into a host-side :class:`Data` buffer."""

    @abstractmethod
    def device(self, tensor: Primitive) -> str:
        """Return the device a primitive lives on."""

    @abstractmethod
    def to_device(self, tensor: Primitive, device: str) -> Primitive:
        """Return a copy of ``tensor`` placed on ``device``."""

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @abstractmethod
    def empty(self, shape: ShapeLike, device: Optional[str] = None) -> Primitive:
        """Allocate a primitive whose contents are unspecified."""

    def zeros(self, shape: ShapeLike, device: Optional[str] = None) -> Primitive:
        return self.from_data(Data.zeros(shape, dtype=self.dtype), device)

    def ones(self, shape: ShapeLike, device: Optional[str] = None) -> Primitive:
        return self.from_data(Data.ones(shape, dtype=self.dtype), device)

    def arange(self, start: int, end: int, device: Optional[str] = None) -> Primitive:
        """
        Return the integers ``start .. end-1`` as a rank-1 primitive.

        The result belongs to :meth:`integer_backend`, not to ``self``.
        """
        data = Data(np.arange(start, end, dtype=np.int64), (end - start,))
        return self.integer_backend().from_data(data, device)

    def random_uniform(
        self,
        shape: ShapeLike,
        low: float,
        high: float,
        device: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> Primitive:
        """Sample ``U(low, high)`` on the host and upload it."""
        shape = as_shape(shape)
        rng = rng if rng is not None else np.random.default_rng()
        values = rng.uniform(low, high, size=shape.num_elements())
        return self.from_data(Data(values.astype(self.dtype), shape), device)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    @abstractmethod
    def add(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def add_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def sub(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def sub_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def mul(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def mul_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def div(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def div_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def matmul(self, lhs: Primitive, rhs: Primitive) -> Primitive:
        """Matrix product over the last two dims, batched over the leading ones."""

    @abstractmethod
    def neg(self, tensor: Primitive) -> Primitive: ...

    # ------------------------------------------------------------------
    # Shape manipulation and indexing
    # ------------------------------------------------------------------
    @abstractmethod
    def swap_dims(self, tensor: Primitive, dim1: int, dim2: int) -> Primitive: ...

    def transpose(self, tensor: Primitive) -> Primitive:
        """Swap the last two dimensions."""
        rank = self.shape(tensor).rank
        return self.swap_dims(tensor, rank - 2, rank - 1)

    @abstractmethod
    def reshape(self, tensor: Primitive, shape: Shape) -> Primitive:
        """Reshape to ``shape``; the element count is checked by the caller."""

    @abstractmethod
    def index(self, tensor: Primitive, ranges: Ranges) -> Primitive:
        """Read the rectangular region given by one half-open range per leading dim."""

    @abstractmethod
    def index_assign(self, tensor: Primitive, ranges: Ranges, value: Primitive) -> Primitive:
        """Return a copy of ``tensor`` whose region ``ranges`` is overwritten by ``value``."""

    @abstractmethod
    def mask_fill(self, tensor: Primitive, mask: Primitive, value: Scalar) -> Primitive:
        """Replace elements where the bool ``mask`` is true with ``value``."""

    def repeat(self, tensor: Primitive, dim: int, times: int) -> Primitive:
        """
        Repeat a size-1 dimension ``times`` times.

        Built from :meth:`empty` and :meth:`index_assign`: the single slice
        along ``dim`` is copied into every position of the output.

        Raises
        ------
        ShapeError
            If ``tensor`` does not have size 1 along ``dim``.
        """
        shape = self.shape(tensor)
        if shape[dim] != 1:
            raise ShapeError("repeat", f"can only repeat a dimension of size 1, dim {dim} has size {shape[dim]}")
        shape = shape.with_dim(dim, times)

        select_all = [range(0, size) for size in shape]
        output = self.empty(shape, self.device(tensor))
        for i in range(times):
            ranges = list(select_all)
            ranges[dim] = range(i, i + 1)
            output = self.index_assign(output, ranges, tensor)
        return output

    # ------------------------------------------------------------------
    # Comparisons (bool primitives out)
    # ------------------------------------------------------------------
    @abstractmethod
    def equal(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def equal_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def greater(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def greater_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def greater_equal(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def greater_equal_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def lower(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def lower_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    @abstractmethod
    def lower_equal(self, lhs: Primitive, rhs: Primitive) -> Primitive: ...

    @abstractmethod
    def lower_equal_scalar(self, lhs: Primitive, rhs: Scalar) -> Primitive: ...

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------
    @abstractmethod
    def sum(self, tensor: Primitive) -> Primitive:
        """Sum of all elements as a primitive of shape ``(1,)``."""

    @abstractmethod
    def mean(self, tensor: Primitive) -> Primitive:
        """Mean of all elements as a primitive of shape ``(1,)``."""

    @abstractmethod
    def sum_dim(self, tensor: Primitive, dim: int) -> Primitive:
        """Sum along ``dim``; the reduced dimension is kept with size 1."""

    @abstractmethod
    def mean_dim(self, tensor: Primitive, dim: int) -> Primitive:
        """Mean along ``dim``; the reduced dimension is kept with size 1."""

    # ------------------------------------------------------------------
    # Precision, arg-reduction, elementwise
    # ------------------------------------------------------------------
    @abstractmethod
    def to_full_precision(self, tensor: Primitive) -> Primitive:
        """Cast to a primitive of :meth:`full_precision_backend`."""

    @abstractmethod
    def from_full_precision(self, tensor: Primitive) -> Primitive:
        """Cast a :meth:`full_precision_backend` primitive back to this backend."""

    @abstractmethod
    def argmax(self, tensor: Primitive, dim: int) -> Primitive:
        """Index of the max along ``dim`` (kept with size 1), in the integer backend."""

    @abstractmethod
    def argmin(self, tensor: Primitive, dim: int) -> Primitive:
        """Index of the min along ``dim`` (kept with size 1), in the integer backend."""

    @abstractmethod
    def exp(self, tensor: Primitive) -> Primitive: ...

    @abstractmethod
    def log(self, tensor: Primitive) -> Primitive: ...

    @abstractmethod
    def erf(self, tensor: Primitive) -> Primitive: ...

    @abstractmethod
    def powf(self, tensor: Primitive, value: float) -> Primitive: ...

    @abstractmethod
    def cat(self, tensors: List[Primitive], dim: int) -> Primitive: ...

    def detach(self, tensor: Primitive) -> Primitive:
        """Sever gradient history. Plain engines keep none, so this is the identity."""
        return tensor

    # ------------------------------------------------------------------
    # Module ops
    # ------------------------------------------------------------------
    @abstractmethod
    def embedding(self, weights: Primitive, indexes: Primitive) -> Primitive:
        """
        Gather rows of a 2-D ``weights`` primitive.

        ``indexes`` is a 2-D primitive of :meth:`integer_backend`; the output
        has shape ``indexes.shape + (weights.shape[1],)``.
        """

    @abstractmethod
    def embedding_backward(self, weights: Primitive, output: Primitive, indexes: Primitive) -> Primitive:
        """
        Scatter-add an embedding output gradient back into a weights-shaped gradient.

        Every occurrence of an index adds its gradient row; duplicates accumulate.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(dtype={self.dtype})"
