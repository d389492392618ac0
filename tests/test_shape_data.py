import numpy as np
import pytest

from multigrad.shape import Data, Shape, as_shape


def test_shape_basics():
    s = Shape((2, 3, 4))

    assert s.rank == 3
    assert s.num_elements() == 24
    assert s == (2, 3, 4)
    assert s.with_dim(1, 1) == Shape([2, 1, 4])
    assert s[1:] == (3, 4)
    assert hash(s) == hash(Shape([2, 3, 4]))
    assert as_shape(s) is s


def test_shape_is_immutable():
    s = Shape((2,))
    with pytest.raises(AttributeError):
        s.rank = 3


def test_shape_rejects_negative_dims():
    with pytest.raises(ValueError):
        Shape((2, -1))


def test_data_from_array_round_trip():
    data = Data.from_array([[1.0, 7.0], [2.0, 3.0]])

    assert data.shape == (2, 2)
    assert data.value.ndim == 1
    assert data.tolist() == [[1.0, 7.0], [2.0, 3.0]]


def test_data_element_count_must_match_shape():
    with pytest.raises(ValueError):
        Data([1.0, 2.0, 3.0], (2, 2))


def test_data_convert_and_equality():
    data = Data.from_array(np.arange(6).reshape(2, 3))
    converted = data.convert("float32")

    assert converted.dtype == np.float32
    assert converted == Data.from_array(np.arange(6, dtype=np.float32).reshape(2, 3))
    assert converted != Data.from_array(np.arange(6, dtype=np.float32).reshape(3, 2))


def test_assert_approx_eq():
    a = Data.from_array([1.0, 2.0])

    a.assert_approx_eq(Data.from_array([1.0001, 2.0]), precision=3)
    with pytest.raises(AssertionError):
        a.assert_approx_eq(Data.from_array([1.1, 2.0]), precision=3)
    with pytest.raises(AssertionError):
        a.assert_approx_eq(Data.from_array([[1.0, 2.0]]))
