from typing import Any, Dict, Iterator, Optional


class Gradients:
    """
    Gradients produced by one backward pass, keyed by node identity.

    Values are primitives of the non-recording backend the node lives on.
    A container is created fresh by every backward pass; querying an id that
    did not take part in the differentiated expression returns ``None``.
    """
    def __init__(self) -> None:
        self._grads: Dict[int, Any] = {}

    def register(self, node_id: int, grad: Any) -> None:
        self._grads[node_id] = grad

    def get(self, node_id: int) -> Optional[Any]:
        return self._grads.get(node_id)

    def remove(self, node_id: int) -> Optional[Any]:
        """Pop and return the gradient for ``node_id`` (``None`` if absent)."""
        return self._grads.pop(node_id, None)

    def ids(self) -> Iterator[int]:
        return iter(self._grads)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._grads

    def __len__(self) -> int:
        return len(self._grads)

    def __repr__(self) -> str:
        return f"Gradients(ids={sorted(self._grads)})"
