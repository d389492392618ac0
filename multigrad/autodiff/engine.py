"""
Reverse-mode backward engine.

Every node reachable from the root goes through three states during one
pass:

- ``PENDING``: waiting for gradient contributions from its consumers;
- ``READY``: every consumer edge has delivered (the root starts here);
- ``DONE``: contributions summed, backward variant invoked exactly once and
  its outputs delivered to the parents.

A node only becomes ``READY`` after all of its consumers are ``DONE``, so the
traversal visits nodes in reverse topological order. Leaves store their
accumulated gradient in the returned :class:`Gradients` and the traversal
does not continue past them.
"""
from collections import deque
from enum import Enum
from typing import Any, Dict, List

from multigrad.autodiff.gradients import Gradients
from multigrad.autodiff.graph import Graph, Node
from multigrad.errors import BackwardError
from multigrad.logger import get_logger

logger = get_logger(__name__)


class NodeState(Enum):
    PENDING = "pending"
    READY = "ready"
    DONE = "done"


def _accumulate(node: Node, contributions: List[Any]) -> Any:
    """Sum the contributions delivered to ``node`` after checking their shapes."""
    backend = node.backend
    total = None
    for grad in contributions:
        shape = backend.shape(grad)
        if shape != node.shape:
            raise BackwardError(
                f"gradient of shape {shape.dims} delivered to {node.op!r} output of shape {node.shape.dims}",
                node.id,
            )
        total = grad if total is None else backend.add(total, grad)
    return total


def backward(root: Node, seed: Any) -> Gradients:
    """
    Run a backward pass from ``root`` with the upstream gradient ``seed``.

    Parameters
    ----------
    root : Node
        Node of the tensor being differentiated.
    seed : primitive
        Gradient of the root, on ``root.backend`` and shaped like the root.

    Returns
    -------
    Gradients
        Accumulated gradients of every leaf reachable from ``root``.

    Raises
    ------
    BackwardError
        If a gradient shape does not match its node, a non-leaf node has no
        backward variant, or a variant returns the wrong number of gradients.
    """
    graph = Graph.from_root(root)
    logger.debug("backward from node %d over %d nodes", root.id, len(graph))

    remaining = {node_id: graph.consumers(node_id) for node_id in graph}
    state = {node_id: NodeState.PENDING for node_id in graph}
    contributions: Dict[int, List[Any]] = {root.id: [seed]}
    grads = Gradients()

    ready = deque([root.id])
    state[root.id] = NodeState.READY

    while ready:
        node = graph[ready.popleft()]
        grad = _accumulate(node, contributions.pop(node.id))
        state[node.id] = NodeState.DONE

        if node.backward is None:
            if node.parents:
                raise BackwardError(f"{node.op!r} has inputs but no backward function", node.id)
            grads.register(node.id, grad)
            continue

        parent_grads = node.backward.apply(grad)
        if len(parent_grads) != len(node.parents):
            raise BackwardError(
                f"{node.op!r} produced {len(parent_grads)} gradients for {len(node.parents)} inputs",
                node.id,
            )

        for parent, parent_grad in zip(node.parents, parent_grads):
            if state[parent.id] is not NodeState.PENDING:
                raise BackwardError("gradient delivered to a node that already ran", parent.id)
            contributions.setdefault(parent.id, []).append(parent_grad)
            remaining[parent.id] -= 1
            if remaining[parent.id] == 0:
                state[parent.id] = NodeState.READY
                ready.append(parent.id)

    logger.debug("backward from node %d wrote %d leaf gradients", root.id, len(grads))
    return grads
