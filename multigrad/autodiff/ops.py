"""
Backward variants, one per differentiable operation kind.

Each variant is a small record holding only the forward-pass data its
gradient rule needs (input values, input shapes, dims, scalars) plus the
non-recording backend to compute with. ``apply(grad)`` maps the summed
upstream gradient to one gradient per parent node, in parent order.

All computations here run on the inner backend, so a backward pass never
records new graph nodes.
"""
import math
from typing import Any, List, Sequence, Tuple

from multigrad.shape import Shape

Grads = Tuple[Any, ...]


def unbroadcast(backend: Any, grad: Any, shape: Shape) -> Any:
    """
    Reduce a broadcast gradient back to ``shape``.

    Operands of tensor-tensor ops have equal rank; a dimension of size 1 in
    ``shape`` that is larger in ``grad`` was broadcast and is summed back
    (``sum_dim`` keeps it at size 1).
    """
    for dim, (g, s) in enumerate(zip(backend.shape(grad), shape)):
        if g != s:
            grad = backend.sum_dim(grad, dim)
    return grad


class BackwardOp:
    """Base class of the backward variants."""
    op = "op"

    def __init__(self, backend: Any) -> None:
        self.backend = backend

    def apply(self, grad: Any) -> Grads:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Add(BackwardOp):
    op = "add"

    def __init__(self, backend: Any, lhs_shape: Shape, rhs_shape: Shape) -> None:
        super().__init__(backend)
        self.lhs_shape = lhs_shape
        self.rhs_shape = rhs_shape

    def apply(self, grad):
        b = self.backend
        return unbroadcast(b, grad, self.lhs_shape), unbroadcast(b, grad, self.rhs_shape)


class AddScalar(BackwardOp):
    op = "add_scalar"

    def apply(self, grad):
        return (grad,)


class Sub(Add):
    op = "sub"

    def apply(self, grad):
        b = self.backend
        return unbroadcast(b, grad, self.lhs_shape), unbroadcast(b, b.neg(grad), self.rhs_shape)


class SubScalar(AddScalar):
    op = "sub_scalar"


class Mul(BackwardOp):
    op = "mul"

    def __init__(self, backend: Any, lhs: Any, rhs: Any) -> None:
        super().__init__(backend)
        self.lhs = lhs
        self.rhs = rhs

    def apply(self, grad):
        b = self.backend
        return (
            unbroadcast(b, b.mul(grad, self.rhs), self.lhs.shape),
            unbroadcast(b, b.mul(grad, self.lhs), self.rhs.shape),
        )


class MulScalar(BackwardOp):
    op = "mul_scalar"

    def __init__(self, backend: Any, scalar: Any) -> None:
        super().__init__(backend)
        self.scalar = scalar

    def apply(self, grad):
        return (self.backend.mul_scalar(grad, self.scalar),)


class Div(Mul):
    op = "div"

    def apply(self, grad):
        b = self.backend
        grad_lhs = b.div(grad, self.rhs)
        grad_rhs = b.neg(b.div(b.mul(grad, self.lhs), b.mul(self.rhs, self.rhs)))
        return unbroadcast(b, grad_lhs, self.lhs.shape), unbroadcast(b, grad_rhs, self.rhs.shape)


class DivScalar(MulScalar):
    op = "div_scalar"

    def apply(self, grad):
        return (self.backend.div_scalar(grad, self.scalar),)


class Matmul(Mul):
    """``dL/dlhs = g @ rhs^T`` and ``dL/drhs = lhs^T @ g``, batch dims reduced."""
    op = "matmul"

    def apply(self, grad):
        b = self.backend
        grad_lhs = b.matmul(grad, b.transpose(self.rhs))
        grad_rhs = b.matmul(b.transpose(self.lhs), grad)
        return unbroadcast(b, grad_lhs, self.lhs.shape), unbroadcast(b, grad_rhs, self.rhs.shape)


class Neg(BackwardOp):
    op = "neg"

    def apply(self, grad):
        return (self.backend.neg(grad),)


class SwapDims(BackwardOp):
    op = "swap_dims"

    def __init__(self, backend: Any, dim1: int, dim2: int) -> None:
        super().__init__(backend)
        self.dim1 = dim1
        self.dim2 = dim2

    def apply(self, grad):
        return (self.backend.swap_dims(grad, self.dim1, self.dim2),)


class Reshape(BackwardOp):
    op = "reshape"

    def __init__(self, backend: Any, input_shape: Shape) -> None:
        super().__init__(backend)
        self.input_shape = input_shape

    def apply(self, grad):
        return (self.backend.reshape(grad, self.input_shape),)


class Index(BackwardOp):
    """Scatter the region gradient into zeros shaped like the input."""
    op = "index"

    def __init__(self, backend: Any, input_shape: Shape, ranges: Sequence[range]) -> None:
        super().__init__(backend)
        self.input_shape = input_shape
        self.ranges = list(ranges)

    def apply(self, grad):
        b = self.backend
        zeros = b.zeros(self.input_shape, b.device(grad))
        return (b.index_assign(zeros, self.ranges, grad),)


class IndexAssign(BackwardOp):
    """The receiver gets ``grad`` with the overwritten region zeroed; ``value`` gets the region."""
    op = "index_assign"

    def __init__(self, backend: Any, ranges: Sequence[range], value_shape: Shape) -> None:
        super().__init__(backend)
        self.ranges = list(ranges)
        self.value_shape = value_shape

    def apply(self, grad):
        b = self.backend
        zeros = b.zeros(self.value_shape, b.device(grad))
        return b.index_assign(grad, self.ranges, zeros), b.index(grad, self.ranges)


class MaskFill(BackwardOp):
    op = "mask_fill"

    def __init__(self, backend: Any, mask: Any) -> None:
        super().__init__(backend)
        self.mask = mask

    def apply(self, grad):
        return (self.backend.mask_fill(grad, self.mask, 0),)


class Sum(BackwardOp):
    op = "sum"

    def __init__(self, backend: Any, input_shape: Shape) -> None:
        super().__init__(backend)
        self.input_shape = input_shape

    def _spread(self, grad):
        b = self.backend
        scalar = b.reshape(grad, Shape([1] * self.input_shape.rank))
        return b.mul(b.ones(self.input_shape, b.device(grad)), scalar)

    def apply(self, grad):
        return (self._spread(grad),)


class Mean(Sum):
    op = "mean"

    def apply(self, grad):
        n = self.input_shape.num_elements()
        return (self.backend.div_scalar(self._spread(grad), n),)


class SumDim(BackwardOp):
    op = "sum_dim"

    def __init__(self, backend: Any, input_shape: Shape, dim: int) -> None:
        super().__init__(backend)
        self.input_shape = input_shape
        self.dim = dim

    def apply(self, grad):
        b = self.backend
        return (b.mul(b.ones(self.input_shape, b.device(grad)), grad),)


class MeanDim(SumDim):
    op = "mean_dim"

    def apply(self, grad):
        (spread,) = super().apply(grad)
        return (self.backend.div_scalar(spread, self.input_shape[self.dim]),)


class Exp(BackwardOp):
    op = "exp"

    def __init__(self, backend: Any, output: Any) -> None:
        super().__init__(backend)
        self.output = output

    def apply(self, grad):
        return (self.backend.mul(grad, self.output),)


class Log(BackwardOp):
    op = "log"

    def __init__(self, backend: Any, input: Any) -> None:
        super().__init__(backend)
        self.input = input

    def apply(self, grad):
        return (self.backend.div(grad, self.input),)


class Erf(Log):
    """``d/dx erf(x) = 2/sqrt(pi) * exp(-x^2)``."""
    op = "erf"

    def apply(self, grad):
        b = self.backend
        x = self.input
        local = b.mul_scalar(b.exp(b.neg(b.mul(x, x))), 2.0 / math.sqrt(math.pi))
        return (b.mul(grad, local),)


class Powf(BackwardOp):
    op = "powf"

    def __init__(self, backend: Any, input: Any, value: float) -> None:
        super().__init__(backend)
        self.input = input
        self.value = value

    def apply(self, grad):
        b = self.backend
        local = b.mul_scalar(b.powf(self.input, self.value - 1.0), self.value)
        return (b.mul(grad, local),)


class Cat(BackwardOp):
    """Split the gradient along ``dim`` back into the concatenated pieces."""
    op = "cat"

    def __init__(self, backend: Any, dim: int, shapes: List[Shape]) -> None:
        super().__init__(backend)
        self.dim = dim
        self.shapes = list(shapes)

    def apply(self, grad):
        b = self.backend
        full = [range(0, size) for size in b.shape(grad)]
        grads = []
        start = 0
        for shape in self.shapes:
            ranges = list(full)
            ranges[self.dim] = range(start, start + shape[self.dim])
            grads.append(b.index(grad, ranges))
            start += shape[self.dim]
        return tuple(grads)


class ToDevice(BackwardOp):
    op = "to_device"

    def __init__(self, backend: Any, source_device: str) -> None:
        super().__init__(backend)
        self.source_device = source_device

    def apply(self, grad):
        return (self.backend.to_device(grad, self.source_device),)


class ToFullPrecision(BackwardOp):
    """``backend`` is the lower-precision backend the input came from."""
    op = "to_full_precision"

    def apply(self, grad):
        return (self.backend.from_full_precision(grad),)


class FromFullPrecision(BackwardOp):
    """``backend`` is the lower-precision backend the output lives on."""
    op = "from_full_precision"

    def apply(self, grad):
        return (self.backend.to_full_precision(grad),)


class Embedding(BackwardOp):
    op = "embedding"

    def __init__(self, backend: Any, weights: Any, indexes: Any) -> None:
        super().__init__(backend)
        self.weights = weights
        self.indexes = indexes

    def apply(self, grad):
        return (self.backend.embedding_backward(self.weights, grad, self.indexes),)
