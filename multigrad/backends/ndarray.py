from typing import Any, List, Optional

import numpy as np
from scipy import special
try:
    import cupy as cp
    _HAS_CUPY = True
except Exception:
    cp = None
    _HAS_CUPY = False

from multigrad.backend import Backend, Ranges, Scalar
from multigrad.config import normalize_device
from multigrad.errors import DeviceNotSupportedError
from multigrad.logger import get_logger
from multigrad.shape import Data, Shape, ShapeLike, as_shape

logger = get_logger(__name__)

_FULL_PRECISION = "float64"
_INTEGER = "int64"


def _is_cupy_array(x: Any) -> bool:
    """
    Return whether ``x`` is a CuPy ndarray.

    This is safe when CuPy is not installed: it short-circuits on ``_HAS_CUPY``.
    """
    return _HAS_CUPY and hasattr(cp, "ndarray") and isinstance(x, cp.ndarray)


class NdArrayTensor:
    """
    Primitive of :class:`NdArrayBackend`: a NumPy (CPU) or CuPy (CUDA) array.

    The array may be a view shared with other primitives; it is never written
    to after the primitive is created.
    """
    __slots__ = ("array", "shape")

    def __init__(self, array: Any) -> None:
        self.array = array
        self.shape = Shape(array.shape)

    def __repr__(self) -> str:
        return f"NdArrayTensor(shape={self.shape.dims}, dtype={self.array.dtype})"


class NdArrayBackend(Backend):
    """
    Array backend on NumPy (``"cpu"``) and CuPy (``"cuda"``).

    The array module is picked per primitive from where its array lives, so
    the same backend instance serves both devices. CuPy is optional; asking
    for ``"cuda"`` without it raises :class:`DeviceNotSupportedError`.

    Parameters
    ----------
    dtype : str, default="float32"
        Element type of produced primitives (e.g. ``"float32"``,
        ``"float64"``, ``"int64"``).
    """
    name = "ndarray"

    def __init__(self, dtype: str = "float32") -> None:
        self.dtype = np.dtype(dtype).name
        self._is_integer = np.issubdtype(np.dtype(self.dtype), np.integer)
        logger.debug("created ndarray backend dtype=%s", self.dtype)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, NdArrayBackend) and other.dtype == self.dtype

    def __hash__(self) -> int:
        return hash((self.name, self.dtype))

    def integer_backend(self) -> "NdArrayBackend":
        return self if self.dtype == _INTEGER else NdArrayBackend(_INTEGER)

    def full_precision_backend(self) -> "NdArrayBackend":
        return self if self.dtype == _FULL_PRECISION else NdArrayBackend(_FULL_PRECISION)

    def _module(self, device: Optional[str]) -> Any:
        dev = normalize_device(device) or self.default_device
        if dev == "cuda":
            if not _HAS_CUPY:
                raise DeviceNotSupportedError(self.name, dev, "CuPy is not installed/available")
            return cp
        return np

    @staticmethod
    def _xp(tensor: NdArrayTensor) -> Any:
        return cp if _is_cupy_array(tensor.array) else np

    def _wrap(self, array: Any) -> NdArrayTensor:
        return NdArrayTensor(array.astype(self.dtype, copy=False))

    # accessors and placement
    def to_data(self, tensor: NdArrayTensor) -> Data:
        array = cp.asnumpy(tensor.array) if _is_cupy_array(tensor.array) else np.asarray(tensor.array)
        return Data(array.reshape(-1).copy(), tensor.shape)

    def from_data(self, data: Data, device: Optional[str] = None) -> NdArrayTensor:
        xp = self._module(device)
        array = xp.asarray(data.value.astype(self.dtype)).reshape(data.shape.dims)
        return NdArrayTensor(array)

    def bool_to_data(self, tensor: NdArrayTensor) -> Data:
        return self.to_data(tensor)

    def device(self, tensor: NdArrayTensor) -> str:
        return "cuda" if _is_cupy_array(tensor.array) else "cpu"

    def to_device(self, tensor: NdArrayTensor, device: str) -> NdArrayTensor:
        dev = normalize_device(device)
        if dev == self.device(tensor):
            return tensor
        logger.debug("moving %s to %s", tensor, dev)
        if dev == "cpu":
            return NdArrayTensor(cp.asnumpy(tensor.array))
        return NdArrayTensor(self._module(dev).asarray(tensor.array))

    # construction
    def empty(self, shape: ShapeLike, device: Optional[str] = None) -> NdArrayTensor:
        xp = self._module(device)
        return NdArrayTensor(xp.zeros(as_shape(shape).dims, dtype=self.dtype))

    def zeros(self, shape: ShapeLike, device: Optional[str] = None) -> NdArrayTensor:
        xp = self._module(device)
        return NdArrayTensor(xp.zeros(as_shape(shape).dims, dtype=self.dtype))

    def ones(self, shape: ShapeLike, device: Optional[str] = None) -> NdArrayTensor:
        xp = self._module(device)
        return NdArrayTensor(xp.ones(as_shape(shape).dims, dtype=self.dtype))

    # arithmetic
    def add(self, lhs: NdArrayTensor, rhs: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(lhs.array + rhs.array)

    def add_scalar(self, lhs: NdArrayTensor, rhs: Scalar) -> NdArrayTensor:
        return self._wrap(lhs.array + rhs)

    def sub(self, lhs: NdArrayTensor, rhs: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(lhs.array - rhs.array)

    def sub_scalar(self, lhs: NdArrayTensor, rhs: Scalar) -> NdArrayTensor:
        return self._wrap(lhs.array - rhs)

    def mul(self, lhs: NdArrayTensor, rhs: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(lhs.array * rhs.array)

    def mul_scalar(self, lhs: NdArrayTensor, rhs: Scalar) -> NdArrayTensor:
        return self._wrap(lhs.array * rhs)

    def div(self, lhs: NdArrayTensor, rhs: NdArrayTensor) -> NdArrayTensor:
        if self._is_integer:
            return self._wrap(lhs.array // rhs.array)
        return self._wrap(lhs.array / rhs.array)

    def div_scalar(self, lhs: NdArrayTensor, rhs: Scalar) -> NdArrayTensor:
        if self._is_integer:
            return self._wrap(lhs.array // rhs)
        return self._wrap(lhs.array / rhs)

    def matmul(self, lhs: NdArrayTensor, rhs: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(self._xp(lhs).matmul(lhs.array, rhs.array))

    def neg(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(-tensor.array)

    # shape manipulation and indexing
    def swap_dims(self, tensor: NdArrayTensor, dim1: int, dim2: int) -> NdArrayTensor:
        return NdArrayTensor(self._xp(tensor).swapaxes(tensor.array, dim1, dim2))

    def reshape(self, tensor: NdArrayTensor, shape: Shape) -> NdArrayTensor:
        return NdArrayTensor(tensor.array.reshape(as_shape(shape).dims))

    @staticmethod
    def _slices(ranges: Ranges) -> tuple:
        return tuple(slice(r.start, r.stop) for r in ranges)

    def index(self, tensor: NdArrayTensor, ranges: Ranges) -> NdArrayTensor:
        return NdArrayTensor(tensor.array[self._slices(ranges)])

    def index_assign(self, tensor: NdArrayTensor, ranges: Ranges, value: NdArrayTensor) -> NdArrayTensor:
        array = tensor.array.copy()
        array[self._slices(ranges)] = value.array
        return NdArrayTensor(array)

    def mask_fill(self, tensor: NdArrayTensor, mask: NdArrayTensor, value: Scalar) -> NdArrayTensor:
        return self._wrap(self._xp(tensor).where(mask.array, value, tensor.array))

    # comparisons
    def equal(self, lhs, rhs):
        return NdArrayTensor(lhs.array == rhs.array)

    def equal_scalar(self, lhs, rhs):
        return NdArrayTensor(lhs.array == rhs)

    def greater(self, lhs, rhs):
        return NdArrayTensor(lhs.array > rhs.array)

    def greater_scalar(self, lhs, rhs):
        return NdArrayTensor(lhs.array > rhs)

    def greater_equal(self, lhs, rhs):
        return NdArrayTensor(lhs.array >= rhs.array)

    def greater_equal_scalar(self, lhs, rhs):
        return NdArrayTensor(lhs.array >= rhs)

    def lower(self, lhs, rhs):
        return NdArrayTensor(lhs.array < rhs.array)

    def lower_scalar(self, lhs, rhs):
        return NdArrayTensor(lhs.array < rhs)

    def lower_equal(self, lhs, rhs):
        return NdArrayTensor(lhs.array <= rhs.array)

    def lower_equal_scalar(self, lhs, rhs):
        return NdArrayTensor(lhs.array <= rhs)

    # aggregation
    def sum(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(self._xp(tensor).asarray(tensor.array.sum()).reshape(1))

    def mean(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(self._xp(tensor).asarray(tensor.array.mean()).reshape(1))

    def sum_dim(self, tensor: NdArrayTensor, dim: int) -> NdArrayTensor:
        return self._wrap(tensor.array.sum(axis=dim, keepdims=True))

    def mean_dim(self, tensor: NdArrayTensor, dim: int) -> NdArrayTensor:
        return self._wrap(tensor.array.mean(axis=dim, keepdims=True))

    # precision
    def to_full_precision(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return NdArrayTensor(tensor.array.astype(_FULL_PRECISION))

    def from_full_precision(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return NdArrayTensor(tensor.array.astype(self.dtype))

    # arg-reduction
    def argmax(self, tensor: NdArrayTensor, dim: int) -> NdArrayTensor:
        xp = self._xp(tensor)
        return NdArrayTensor(xp.expand_dims(tensor.array.argmax(axis=dim), dim).astype(_INTEGER))

    def argmin(self, tensor: NdArrayTensor, dim: int) -> NdArrayTensor:
        xp = self._xp(tensor)
        return NdArrayTensor(xp.expand_dims(tensor.array.argmin(axis=dim), dim).astype(_INTEGER))

    # elementwise
    def exp(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(self._xp(tensor).exp(tensor.array))

    def log(self, tensor: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(self._xp(tensor).log(tensor.array))

    def erf(self, tensor: NdArrayTensor) -> NdArrayTensor:
        if _is_cupy_array(tensor.array):
            from cupyx.scipy.special import erf as cupy_erf

            return self._wrap(cupy_erf(tensor.array))
        return self._wrap(special.erf(tensor.array))

    def powf(self, tensor: NdArrayTensor, value: float) -> NdArrayTensor:
        return self._wrap(tensor.array ** value)

    def cat(self, tensors: List[NdArrayTensor], dim: int) -> NdArrayTensor:
        xp = self._xp(tensors[0])
        return self._wrap(xp.concatenate([t.array for t in tensors], axis=dim))

    # module ops
    def embedding(self, weights: NdArrayTensor, indexes: NdArrayTensor) -> NdArrayTensor:
        return self._wrap(weights.array[indexes.array.astype(_INTEGER)])

    def embedding_backward(
        self,
        weights: NdArrayTensor,
        output: NdArrayTensor,
        indexes: NdArrayTensor,
    ) -> NdArrayTensor:
        xp = self._xp(weights)
        d_model = weights.shape[1]
        flat_indices = indexes.array.reshape(-1).astype(_INTEGER)
        flat_grads = output.array.reshape(-1, d_model)
        grad_weight = xp.zeros_like(weights.array)
        xp.add.at(grad_weight, flat_indices, flat_grads)
        return NdArrayTensor(grad_weight)
