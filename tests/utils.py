import numpy as np
import torch

from multigrad.shape import Data
from multigrad.tensor import BoolTensor, Tensor

ATOL = 1e-6
RTOL = 1e-5

def to_numpy(x):
    if isinstance(x, (Tensor, BoolTensor)):
        x = x.to_data()
    if isinstance(x, Data):
        return x.to_array()
    if isinstance(x, torch.Tensor):
        return x.detach().cpu().numpy()
    return np.asarray(x)

def tdata(t: Tensor):
    return to_numpy(t)

def tgrad(t: Tensor, grads):
    g = t.grad(grads)
    return None if g is None else to_numpy(g)

def make_tensor(x_np: np.ndarray, backend, device: str = "cpu") -> Tensor:
    return Tensor.from_data(Data.from_array(np.asarray(x_np, dtype=np.float32)), backend, device)

def make_index(x_np: np.ndarray, backend, device: str = "cpu") -> Tensor:
    data = Data.from_array(np.asarray(x_np, dtype=np.int64))
    return Tensor.from_data(data, backend.integer_backend(), device)

def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = to_numpy(a)
    b = to_numpy(b)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"

def assert_grad_close(t: Tensor, grads, tt: torch.Tensor, atol=ATOL, rtol=RTOL):
    g = tgrad(t, grads)
    assert g is not None, "Tensor.grad(grads) is None"
    assert tt.grad is not None, "Torch grad is None"
    assert_close(g, tt.grad.detach().cpu().numpy(), atol=atol, rtol=rtol)
