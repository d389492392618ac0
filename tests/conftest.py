import importlib.util

import numpy as np
import pytest

from multigrad.autodiff.backend import ADBackend
from multigrad.backends.ndarray import NdArrayBackend

@pytest.fixture
def rng():
    return np.random.default_rng(0)

def _has_cupy():
    return importlib.util.find_spec("cupy") is not None

@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    if request.param == "cuda" and not _has_cupy():
        pytest.skip("cupy not installed")
    return request.param

@pytest.fixture(params=["ndarray", "torch"])
def inner(request, device):
    if request.param == "torch":
        torch = pytest.importorskip("torch")
        from multigrad.backends.torch_backend import TorchBackend
        if device == "cuda" and not torch.cuda.is_available():
            pytest.skip("torch has no cuda device")
        return TorchBackend("float32")
    return NdArrayBackend("float32")

@pytest.fixture
def backend(inner):
    return ADBackend(inner)
