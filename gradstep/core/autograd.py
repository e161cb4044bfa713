import weakref
from typing import Any, Dict, List, Optional, Set

import numpy as np
from numpy.typing import NDArray

from .tensor import Tensor


class Edge:
    """
    Represents a directed edge in the computational graph.

    Each edge connects a source node (input tensor) to a destination node
    (output tensor).
    """

    def __init__(self, src: "Node", dst: "Node"):
        self.src = src
        self.dst = dst


class Node:
    """
    Represents a node in the computational graph.

    Each node corresponds to a tensor and maintains connections to the
    tensors it was computed from and the tensors computed from it. The node
    only holds a weak reference to its tensor.
    """

    def __init__(self, tensor: "Tensor"):
        self._tensor = weakref.ref(tensor)
        self.in_edges: List[Edge] = []
        self.out_edges: List[Edge] = []
        self.finalizer: Optional[weakref.finalize] = None

    @property
    def tensor(self) -> Optional["Tensor"]:
        """The tensor of this node, or None once it has been collected."""
        return self._tensor()


class AutogradEngine:
    """
    Engine for managing automatic differentiation computations.

    This class handles the creation and execution of the computational graph
    and manages gradient computation and accumulation.

    Only tensors that take part in an operation needing gradients are
    registered. Nodes hold their tensors weakly, and a node is removed
    together with its edges as soon as its tensor is collected, so the graph
    of a finished iteration does not outlive its loss tensor.

    Gradients reaching a leaf are accumulated into the leaf's existing
    gradient array in place, so a gradient buffer keeps its identity across
    backward passes. A leaf without a gradient gets a fresh, writable array
    in its own precision.
    """

    def __init__(self) -> None:
        self._nodes: Dict[int, Node] = {}
        self._edges: Set[Edge] = set()
        self._currently_computing_gradients = False

    def register_tensor(self, tensor: "Tensor") -> None:
        """
        Registers a tensor with the autograd engine.

        Args:
            tensor: Tensor to register
        """
        if tensor.uid not in self._nodes:
            node = Node(tensor)
            node.finalizer = weakref.finalize(tensor, self._release, tensor.uid)
            self._nodes[tensor.uid] = node

    def _release(self, uid: int) -> None:
        """Drops the node of a collected tensor and every edge touching it."""
        node = self._nodes.pop(uid, None)
        if node is None:
            return
        for edge in node.in_edges:
            edge.src.out_edges.remove(edge)
            self._edges.discard(edge)
        for edge in node.out_edges:
            edge.dst.in_edges.remove(edge)
            self._edges.discard(edge)

    def add_edge(self, src: "Tensor", dst: "Tensor") -> None:
        """
        Adds a directed edge between two tensors in the computational graph.

        Args:
            src: Source tensor
            dst: Destination tensor
        """
        self.register_tensor(src)
        self.register_tensor(dst)
        src_node = self._nodes[src.uid]
        dst_node = self._nodes[dst.uid]

        edge = Edge(src_node, dst_node)
        src_node.out_edges.append(edge)
        dst_node.in_edges.append(edge)
        self._edges.add(edge)

    def backward(self, tensor: "Tensor", gradient: Optional[NDArray[Any]] = None) -> None:
        """Executes backward pass starting from the given tensor."""
        if self._currently_computing_gradients:
            raise RuntimeError("Nested gradient computation detected")

        self._currently_computing_gradients = True
        try:
            grad_dict: Dict[int, NDArray[Any]] = {}

            # If no gradient is provided, assume it's 1 (for scalar outputs)
            if gradient is None:
                grad_dict[id(tensor)] = np.ones_like(tensor.data, dtype=np.float64)
            else:
                grad_dict[id(tensor)] = gradient

            sorted_nodes = self._topological_sort(tensor)

            # Traverse nodes in reverse topological order
            for node in reversed(sorted_nodes):
                current = node.tensor
                if current is None or id(current) not in grad_dict or not current.requires_grad:
                    continue  # No gradient to propagate

                current_grad = grad_dict[id(current)]

                if current._backward_fn is not None:
                    current._backward_fn(current_grad, grad_dict)

                if current.is_leaf and current.requires_grad:
                    self._accumulate(current, current_grad)
        finally:
            self._currently_computing_gradients = False

    @staticmethod
    def _accumulate(leaf: "Tensor", grad: NDArray[Any]) -> None:
        if leaf.grad is None:
            leaf.zero_grad()
        if grad.shape != leaf.grad.shape:
            grad = np.reshape(grad, leaf.grad.shape)
        leaf.grad += grad

    def _topological_sort(self, start_tensor: "Tensor") -> List[Node]:
        """
        Performs topological sort on the computation graph.

        Args:
            start_tensor: Tensor to start the sort from

        Returns:
            List of nodes in topological order

        Raises:
            RuntimeError: If graph contains cycles
        """
        result: List[Node] = []
        visited: Set[Node] = set()
        temp_visited: Set[Node] = set()

        def visit(node: Node) -> None:
            if node in temp_visited:
                raise RuntimeError("Cycle detected in computation graph")

            if node not in visited:
                temp_visited.add(node)
                tensor = node.tensor
                for edge in node.in_edges:
                    # Detached tensors no longer take part in the graph
                    if tensor is None or tensor.is_leaf:
                        break
                    visit(edge.src)
                temp_visited.remove(node)
                visited.add(node)
                result.append(node)

        self.register_tensor(start_tensor)
        visit(self._nodes[start_tensor.uid])
        return result

    def clear(self) -> None:
        """Clears the computational graph."""
        for node in self._nodes.values():
            if node.finalizer is not None:
                node.finalizer.detach()
        self._nodes.clear()
        self._edges.clear()


# Global autograd engine instance
_autograd_engine = AutogradEngine()


def get_autograd_engine() -> AutogradEngine:
    """Returns the global autograd engine instance."""
    return _autograd_engine
