import itertools
from typing import Any, Dict, Iterator, Optional, Tuple

from multigrad.shape import Shape

_node_ids = itertools.count()


class Node:
    """
    One recorded operation in the computation graph.

    Nodes are created once per differentiable operation call and never
    mutated afterwards. A node references its parents directly; since the
    graph is acyclic, dropping the last tensor that refers to a node frees the
    whole sub-graph only it kept alive.

    Parameters
    ----------
    op : str
        Operation kind (e.g. ``"matmul"``), ``"leaf"`` for inputs.
    parents : tuple of Node
        Input nodes, aligned with the gradients returned by ``backward``.
    shape : Shape
        Shape of the output (and therefore of this node's gradient).
    backend : Backend
        Non-recording backend the output value and its gradient live on.
    backward : BackwardOp or None
        Tagged backward variant; ``None`` for leaves.

    Attributes
    ----------
    id : int
        Process-wide unique, monotonically increasing identity.
    """
    __slots__ = ("id", "op", "parents", "shape", "backend", "backward")

    def __init__(
        self,
        op: str,
        parents: Tuple["Node", ...],
        shape: Shape,
        backend: Any,
        backward: Optional[Any] = None,
    ) -> None:
        self.id = next(_node_ids)
        self.op = op
        self.parents = tuple(parents)
        self.shape = shape
        self.backend = backend
        self.backward = backward

    @property
    def is_leaf(self) -> bool:
        return self.backward is None

    def __repr__(self) -> str:
        parents = ", ".join(str(p.id) for p in self.parents)
        return f"Node(id={self.id}, op={self.op!r}, parents=[{parents}], shape={self.shape.dims})"


class Graph:
    """
    Arena of the nodes reachable from one root, indexed by node identity.

    Built fresh for each backward pass. Besides the id → node mapping it
    records, for every node, how many edges from consumers inside the arena
    point at it. An operation that uses the same input twice counts twice.
    """
    def __init__(self, nodes: Dict[int, Node], consumers: Dict[int, int]) -> None:
        self._nodes = nodes
        self._consumers = consumers

    @classmethod
    def from_root(cls, root: Node) -> "Graph":
        nodes: Dict[int, Node] = {}
        stack = [root]
        while stack:
            node = stack.pop()
            if node.id in nodes:
                continue
            nodes[node.id] = node
            stack.extend(node.parents)

        consumers = {node_id: 0 for node_id in nodes}
        for node in nodes.values():
            for parent in node.parents:
                consumers[parent.id] += 1
        return cls(nodes, consumers)

    def consumers(self, node_id: int) -> int:
        """Number of consumer edges pointing at ``node_id``."""
        return self._consumers[node_id]

    def leaves(self) -> Iterator[Node]:
        return (node for node in self._nodes.values() if node.is_leaf)

    def __getitem__(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[int]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)
