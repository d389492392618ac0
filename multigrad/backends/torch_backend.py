from typing import Any, List, Optional

import numpy as np
import torch

from multigrad.backend import Backend, Ranges, Scalar
from multigrad.config import normalize_device
from multigrad.errors import DeviceNotSupportedError
from multigrad.logger import get_logger
from multigrad.shape import Data, Shape, ShapeLike, as_shape

logger = get_logger(__name__)

_DTYPES = {
    "float32": torch.float32,
    "float64": torch.float64,
    "int64": torch.int64,
}
_FULL_PRECISION = "float64"
_INTEGER = "int64"


class TorchTensor:
    """Primitive of :class:`TorchBackend`: a ``torch.Tensor`` that never records autograd history."""
    __slots__ = ("tensor", "shape")

    def __init__(self, tensor: torch.Tensor) -> None:
        self.tensor = tensor
        self.shape = Shape(tensor.shape)

    def __repr__(self) -> str:
        return f"TorchTensor(shape={self.shape.dims}, dtype={self.tensor.dtype}, device={self.tensor.device})"


class TorchBackend(Backend):
    """
    Backend on PyTorch kernels.

    PyTorch is used purely as a kernel library: its own autograd is never
    involved, gradients come from wrapping this backend in ``ADBackend``.

    Parameters
    ----------
    dtype : {"float32", "float64", "int64"}, default="float32"
        Element type of produced primitives.
    """
    name = "torch"

    def __init__(self, dtype: str = "float32") -> None:
        if dtype not in _DTYPES:
            raise ValueError(f"Unsupported dtype for torch backend: {dtype!r}")
        self.dtype = dtype
        self._torch_dtype = _DTYPES[dtype]
        self._is_integer = not self._torch_dtype.is_floating_point
        logger.debug("created torch backend dtype=%s", self.dtype)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TorchBackend) and other.dtype == self.dtype

    def __hash__(self) -> int:
        return hash((self.name, self.dtype))

    def integer_backend(self) -> "TorchBackend":
        return self if self.dtype == _INTEGER else TorchBackend(_INTEGER)

    def full_precision_backend(self) -> "TorchBackend":
        return self if self.dtype == _FULL_PRECISION else TorchBackend(_FULL_PRECISION)

    def _torch_device(self, device: Optional[str]) -> torch.device:
        dev = normalize_device(device) or self.default_device
        if dev == "cuda" and not torch.cuda.is_available():
            raise DeviceNotSupportedError(self.name, dev, "torch reports no CUDA device")
        return torch.device(dev)

    def _wrap(self, tensor: torch.Tensor) -> TorchTensor:
        return TorchTensor(tensor.to(self._torch_dtype))

    # accessors and placement
    def to_data(self, tensor: TorchTensor) -> Data:
        array = tensor.tensor.detach().cpu().numpy()
        return Data(array.reshape(-1).copy(), tensor.shape)

    def from_data(self, data: Data, device: Optional[str] = None) -> TorchTensor:
        array = np.ascontiguousarray(data.value.astype(self.dtype)).reshape(data.shape.dims)
        tensor = torch.from_numpy(array).to(self._torch_device(device))
        return TorchTensor(tensor)

    def bool_to_data(self, tensor: TorchTensor) -> Data:
        return self.to_data(tensor)

    def device(self, tensor: TorchTensor) -> str:
        return normalize_device(tensor.tensor.device.type)

    def to_device(self, tensor: TorchTensor, device: str) -> TorchTensor:
        dev = normalize_device(device)
        if dev == self.device(tensor):
            return tensor
        logger.debug("moving %s to %s", tensor, dev)
        return TorchTensor(tensor.tensor.to(self._torch_device(dev)))

    # construction
    def empty(self, shape: ShapeLike, device: Optional[str] = None) -> TorchTensor:
        return self.zeros(shape, device)

    def zeros(self, shape: ShapeLike, device: Optional[str] = None) -> TorchTensor:
        dims = as_shape(shape).dims
        return TorchTensor(torch.zeros(dims, dtype=self._torch_dtype, device=self._torch_device(device)))

    def ones(self, shape: ShapeLike, device: Optional[str] = None) -> TorchTensor:
        dims = as_shape(shape).dims
        return TorchTensor(torch.ones(dims, dtype=self._torch_dtype, device=self._torch_device(device)))

    # arithmetic
    def add(self, lhs: TorchTensor, rhs: TorchTensor) -> TorchTensor:
        return self._wrap(lhs.tensor + rhs.tensor)

    def add_scalar(self, lhs: TorchTensor, rhs: Scalar) -> TorchTensor:
        return self._wrap(lhs.tensor + rhs)

    def sub(self, lhs: TorchTensor, rhs: TorchTensor) -> TorchTensor:
        return self._wrap(lhs.tensor - rhs.tensor)

    def sub_scalar(self, lhs: TorchTensor, rhs: Scalar) -> TorchTensor:
        return self._wrap(lhs.tensor - rhs)

    def mul(self, lhs: TorchTensor, rhs: TorchTensor) -> TorchTensor:
        return self._wrap(lhs.tensor * rhs.tensor)

    def mul_scalar(self, lhs: TorchTensor, rhs: Scalar) -> TorchTensor:
        return self._wrap(lhs.tensor * rhs)

    def div(self, lhs: TorchTensor, rhs: TorchTensor) -> TorchTensor:
        if self._is_integer:
            return self._wrap(torch.div(lhs.tensor, rhs.tensor, rounding_mode="floor"))
        return self._wrap(lhs.tensor / rhs.tensor)

    def div_scalar(self, lhs: TorchTensor, rhs: Scalar) -> TorchTensor:
        if self._is_integer:
            return self._wrap(torch.div(lhs.tensor, rhs, rounding_mode="floor"))
        return self._wrap(lhs.tensor / rhs)

    def matmul(self, lhs: TorchTensor, rhs: TorchTensor) -> TorchTensor:
        return self._wrap(torch.matmul(lhs.tensor, rhs.tensor))

    def neg(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(-tensor.tensor)

    # shape manipulation and indexing
    def swap_dims(self, tensor: TorchTensor, dim1: int, dim2: int) -> TorchTensor:
        return TorchTensor(tensor.tensor.transpose(dim1, dim2))

    def reshape(self, tensor: TorchTensor, shape: Shape) -> TorchTensor:
        return TorchTensor(tensor.tensor.reshape(as_shape(shape).dims))

    @staticmethod
    def _slices(ranges: Ranges) -> tuple:
        return tuple(slice(r.start, r.stop) for r in ranges)

    def index(self, tensor: TorchTensor, ranges: Ranges) -> TorchTensor:
        return TorchTensor(tensor.tensor[self._slices(ranges)])

    def index_assign(self, tensor: TorchTensor, ranges: Ranges, value: TorchTensor) -> TorchTensor:
        out = tensor.tensor.clone()
        out[self._slices(ranges)] = value.tensor
        return TorchTensor(out)

    def mask_fill(self, tensor: TorchTensor, mask: TorchTensor, value: Scalar) -> TorchTensor:
        return TorchTensor(tensor.tensor.masked_fill(mask.tensor, value))

    # comparisons
    def equal(self, lhs, rhs):
        return TorchTensor(torch.eq(lhs.tensor, rhs.tensor))

    def equal_scalar(self, lhs, rhs):
        return TorchTensor(torch.eq(lhs.tensor, rhs))

    def greater(self, lhs, rhs):
        return TorchTensor(torch.gt(lhs.tensor, rhs.tensor))

    def greater_scalar(self, lhs, rhs):
        return TorchTensor(torch.gt(lhs.tensor, rhs))

    def greater_equal(self, lhs, rhs):
        return TorchTensor(torch.ge(lhs.tensor, rhs.tensor))

    def greater_equal_scalar(self, lhs, rhs):
        return TorchTensor(torch.ge(lhs.tensor, rhs))

    def lower(self, lhs, rhs):
        return TorchTensor(torch.lt(lhs.tensor, rhs.tensor))

    def lower_scalar(self, lhs, rhs):
        return TorchTensor(torch.lt(lhs.tensor, rhs))

    def lower_equal(self, lhs, rhs):
        return TorchTensor(torch.le(lhs.tensor, rhs.tensor))

    def lower_equal_scalar(self, lhs, rhs):
        return TorchTensor(torch.le(lhs.tensor, rhs))

    # aggregation
    def sum(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(tensor.tensor.sum().reshape(1))

    def mean(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(tensor.tensor.to(torch.float64).mean().reshape(1))

    def sum_dim(self, tensor: TorchTensor, dim: int) -> TorchTensor:
        return self._wrap(tensor.tensor.sum(dim=dim, keepdim=True))

    def mean_dim(self, tensor: TorchTensor, dim: int) -> TorchTensor:
        return self._wrap(tensor.tensor.to(torch.float64).mean(dim=dim, keepdim=True))

    # precision
    def to_full_precision(self, tensor: TorchTensor) -> TorchTensor:
        return TorchTensor(tensor.tensor.to(_DTYPES[_FULL_PRECISION]))

    def from_full_precision(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(tensor.tensor)

    # arg-reduction
    def argmax(self, tensor: TorchTensor, dim: int) -> TorchTensor:
        return TorchTensor(tensor.tensor.argmax(dim=dim, keepdim=True))

    def argmin(self, tensor: TorchTensor, dim: int) -> TorchTensor:
        return TorchTensor(tensor.tensor.argmin(dim=dim, keepdim=True))

    # elementwise
    def exp(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(torch.exp(tensor.tensor))

    def log(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(torch.log(tensor.tensor))

    def erf(self, tensor: TorchTensor) -> TorchTensor:
        return self._wrap(torch.erf(tensor.tensor))

    def powf(self, tensor: TorchTensor, value: float) -> TorchTensor:
        return self._wrap(torch.pow(tensor.tensor, value))

    def cat(self, tensors: List[TorchTensor], dim: int) -> TorchTensor:
        return self._wrap(torch.cat([t.tensor for t in tensors], dim=dim))

    # module ops
    def embedding(self, weights: TorchTensor, indexes: TorchTensor) -> TorchTensor:
        return self._wrap(weights.tensor[indexes.tensor.to(torch.int64)])

    def embedding_backward(
        self,
        weights: TorchTensor,
        output: TorchTensor,
        indexes: TorchTensor,
    ) -> TorchTensor:
        d_model = weights.shape[1]
        flat_indices = indexes.tensor.reshape(-1).to(torch.int64)
        flat_grads = output.tensor.reshape(-1, d_model).to(self._torch_dtype)
        grad_weight = torch.zeros_like(weights.tensor)
        grad_weight.index_add_(0, flat_indices, flat_grads)
        return TorchTensor(grad_weight)
