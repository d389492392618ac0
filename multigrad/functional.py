from multigrad.errors import ShapeError
from multigrad.tensor import Tensor


def _check_rank(op: str, name: str, tensor: Tensor, rank: int) -> None:
    if tensor.rank != rank:
        raise ShapeError(op, f"{name} must have rank {rank}, got shape {tensor.shape.dims}")


def embedding(weights: Tensor, indexes: Tensor) -> Tensor:
    """
    Look up rows of ``weights`` for every entry of ``indexes``.

    Parameters
    ----------
    weights : Tensor
        Embedding table of shape ``(n_embedding, d_model)``.
    indexes : Tensor
        Integer tensor of shape ``(batch, seq)`` with values in
        ``[0, n_embedding)``, on ``weights.backend.integer_backend()``.

    Returns
    -------
    Tensor
        Tensor of shape ``(batch, seq, d_model)``.

    Raises
    ------
    ShapeError
        If an index falls outside ``[0, n_embedding)`` or an input has the
        wrong rank or backend.

    Notes
    -----
    During backpropagation the output gradient is scatter-added into the
    rows of ``weights``; an index used ``k`` times receives ``k``
    contributions.
    """
    _check_rank("embedding", "weights", weights, 2)
    _check_rank("embedding", "indexes", indexes, 2)
    if indexes.backend != weights.backend.integer_backend():
        raise ShapeError("embedding", f"indexes must live on {weights.backend.integer_backend()!r}")
    values = indexes.to_data().value
    if values.size and (values.min() < 0 or values.max() >= weights.shape[0]):
        raise ShapeError(
            "embedding",
            f"indexes must be in [0, {weights.shape[0]}), got range [{values.min()}, {values.max()}]",
        )
    return Tensor(weights.backend.embedding(weights.primitive, indexes.primitive), weights.backend)


def embedding_backward(weights: Tensor, output_grad: Tensor, indexes: Tensor) -> Tensor:
    """
    Gradient of :func:`embedding` with respect to ``weights``.

    ``output_grad`` has shape ``(batch, seq, d_model)``; the result has the
    shape of ``weights``.
    """
    _check_rank("embedding_backward", "weights", weights, 2)
    _check_rank("embedding_backward", "output", output_grad, 3)
    _check_rank("embedding_backward", "indexes", indexes, 2)
    expected = (indexes.shape[0], indexes.shape[1], weights.shape[1])
    if output_grad.shape != expected:
        raise ShapeError("embedding_backward", f"output shape {output_grad.shape.dims} != {expected}")
    out = weights.backend.embedding_backward(weights.primitive, output_grad.primitive, indexes.primitive)
    return Tensor(out, weights.backend)
