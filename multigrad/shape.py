from typing import Any, Iterable, Iterator, Tuple, Union

import numpy as np


class Shape:
    """
    Fixed-rank dimension metadata.

    A ``Shape`` is an immutable, ordered sequence of dimension sizes. Its
    length (the rank) is fixed at construction and acts as the runtime rank
    tag that every tensor operation is checked against.

    Parameters
    ----------
    dims : iterable of int
        Dimension sizes. Each size must be a non-negative integer.

    Examples
    --------
    >>> s = Shape((2, 3))
    >>> s.rank
    2
    >>> s.num_elements()
    6
    >>> s.with_dim(0, 5)
    Shape(5, 3)
    """
    __slots__ = ("_dims",)

    def __init__(self, dims: Iterable[int]) -> None:
        dims = tuple(int(d) for d in dims)
        if any(d < 0 for d in dims):
            raise ValueError(f"Shape dimensions must be non-negative, got {dims}")
        object.__setattr__(self, "_dims", dims)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Shape is immutable")

    @property
    def dims(self) -> Tuple[int, ...]:
        """tuple of int: The dimension sizes."""
        return self._dims

    @property
    def rank(self) -> int:
        """int: Number of dimensions."""
        return len(self._dims)

    def num_elements(self) -> int:
        """Return the total number of elements described by this shape."""
        n = 1
        for d in self._dims:
            n *= d
        return n

    def with_dim(self, dim: int, size: int) -> "Shape":
        """Return a copy of this shape with ``dim`` replaced by ``size``."""
        dims = list(self._dims)
        dims[dim] = size
        return Shape(dims)

    def __len__(self) -> int:
        return len(self._dims)

    def __iter__(self) -> Iterator[int]:
        return iter(self._dims)

    def __getitem__(self, idx: int) -> int:
        return self._dims[idx]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Shape):
            return self._dims == other._dims
        if isinstance(other, tuple):
            return self._dims == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        return f"Shape({', '.join(str(d) for d in self._dims)})"


ShapeLike = Union[Shape, Iterable[int]]


def as_shape(shape: ShapeLike) -> Shape:
    """Coerce a tuple/list of ints (or a ``Shape``) into a ``Shape``."""
    if isinstance(shape, Shape):
        return shape
    return Shape(shape)


class Data:
    """
    Host-side materialization of a tensor.

    ``Data`` pairs a flattened, row-major buffer of one element type with the
    ``Shape`` it describes. It is produced on demand by ``to_data`` and is
    never kept in sync with backend-resident storage.

    Parameters
    ----------
    value : array-like
        Flat sequence of elements. Converted to a 1-D NumPy array.
    shape : Shape or tuple of int
        Logical shape. ``shape.num_elements()`` must equal ``len(value)``.
    dtype : str or numpy.dtype, optional
        Element type. Inferred from ``value`` when omitted.

    Raises
    ------
    ValueError
        If the number of elements does not match the shape.
    """
    def __init__(self, value: Any, shape: ShapeLike, dtype: Any = None) -> None:
        shape = as_shape(shape)
        value = np.asarray(value, dtype=dtype).reshape(-1)
        if value.size != shape.num_elements():
            raise ValueError(
                f"Data has {value.size} elements but shape {shape} expects {shape.num_elements()}"
            )
        self.value = value
        self.shape = shape

    @classmethod
    def from_array(cls, array: Any, dtype: Any = None) -> "Data":
        """
        Build ``Data`` from a nested Python sequence or an ndarray.

        Examples
        --------
        >>> Data.from_array([[1.0, 7.0], [2.0, 3.0]]).shape
        Shape(2, 2)
        """
        array = np.asarray(array, dtype=dtype)
        return cls(array.reshape(-1), array.shape)

    @classmethod
    def zeros(cls, shape: ShapeLike, dtype: Any = "float32") -> "Data":
        shape = as_shape(shape)
        return cls(np.zeros(shape.num_elements(), dtype=dtype), shape)

    @classmethod
    def ones(cls, shape: ShapeLike, dtype: Any = "float32") -> "Data":
        shape = as_shape(shape)
        return cls(np.ones(shape.num_elements(), dtype=dtype), shape)

    @property
    def dtype(self) -> np.dtype:
        """numpy.dtype: Element type of the buffer."""
        return self.value.dtype

    def to_array(self) -> np.ndarray:
        """Return the buffer reshaped to ``self.shape`` (a copy)."""
        return self.value.reshape(self.shape.dims).copy()

    def tolist(self) -> Any:
        return self.to_array().tolist()

    def convert(self, dtype: Any) -> "Data":
        """Return a copy of this data with elements cast to ``dtype``."""
        return Data(self.value.astype(dtype), self.shape)

    def assert_approx_eq(self, other: "Data", precision: int = 3) -> None:
        """
        Assert that two buffers are equal after rounding to ``precision`` decimals.

        Raises
        ------
        AssertionError
            If the shapes differ or any rounded element differs; the message
            names the first mismatching flat position.
        """
        if self.shape != other.shape:
            raise AssertionError(f"Shape mismatch: {self.shape} != {other.shape}")
        lhs = np.round(self.value.astype(np.float64), precision)
        rhs = np.round(other.value.astype(np.float64), precision)
        diff = np.nonzero(lhs != rhs)[0]
        if diff.size:
            i = int(diff[0])
            raise AssertionError(
                f"Data differ at position {i}: {self.value[i]} != {other.value[i]}"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Data):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self.value, other.value))

    __hash__ = None

    def __repr__(self) -> str:
        return f"Data({self.to_array().tolist()}, shape={self.shape.dims}, dtype={self.value.dtype})"
