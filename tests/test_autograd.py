import gc

import pytest
import numpy as np
from gradstep.core import (
    Tensor,
    get_autograd_engine
)
from gradstep.core.autograd import Edge
from gradstep.optim import SGD

class TestAutogradEngine:
    """Tests for the autograd engine's core functionality."""

    def setup_method(self):
        """Setup method run before each test."""
        self.engine = get_autograd_engine()
        self.engine.clear()

    def test_register_tensor(self):
        """Test registering a tensor with the autograd engine."""
        tensor = Tensor([1.0], requires_grad=True)
        self.engine.register_tensor(tensor)
        assert tensor.uid in self.engine._nodes

    def test_add_edge(self):
        """Test adding edges between tensors in the computational graph."""
        t1 = Tensor([1.0], requires_grad=True)
        t2 = Tensor([2.0], requires_grad=True)

        self.engine.add_edge(t1, t2)

        node1 = self.engine._nodes[t1.uid]
        node2 = self.engine._nodes[t2.uid]

        assert len(node1.out_edges) == 1
        assert len(node2.in_edges) == 1
        assert isinstance(node1.out_edges[0], Edge)
        assert node1.out_edges[0].dst == node2

    def test_plain_tensors_are_not_registered(self):
        Tensor([1.0, 2.0], requires_grad=True)
        Tensor([3.0])
        assert len(self.engine._nodes) == 0

    def test_graph_is_released_with_its_output(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        y = x * 2.0
        assert y.uid in self.engine._nodes

        uid = y.uid
        del y
        gc.collect()
        assert uid not in self.engine._nodes
        assert self.engine._nodes[x.uid].out_edges == []
        assert len(self.engine._edges) == 0

    def test_node_count_stays_flat_across_steps(self):
        param = Tensor([1.0, -2.0, 3.0], requires_grad=True)
        target = Tensor([0.0, 0.0, 0.0])
        optimizer = SGD([param], lr=0.01)

        def train_step():
            optimizer.zero_grad()
            diff = param - target
            loss = (diff * diff).sum()
            loss.backward()
            optimizer.step()

        train_step()
        gc.collect()
        baseline = len(self.engine._nodes)

        for _ in range(100):
            train_step()
        gc.collect()

        assert len(self.engine._nodes) == baseline
        assert len(self.engine._edges) == 0

class TestGradientComputation:
    """Tests for gradient computation in different graph structures."""

    def setup_method(self):
        self.engine = get_autograd_engine()
        self.engine.clear()

    def test_linear_graph(self):
        """Test gradient computation in a linear graph."""
        # z = 2x + y
        x = Tensor([2.0], requires_grad=True)
        y = Tensor([3.0], requires_grad=True)
        z = x * 2.0 + y
        z.backward(np.array([1.0]))

        assert np.allclose(x.grad, [2.0])
        assert np.allclose(y.grad, [1.0])

    def test_shared_input(self):
        """A tensor used twice receives both contributions."""
        x = Tensor([3.0], requires_grad=True)
        z = x * x
        z.backward(np.array([1.0]))
        assert np.allclose(x.grad, [6.0])

    def test_scalar_loss(self):
        """Test backward from a scalar reduction."""
        x = Tensor([1.0, 2.0, 3.0], requires_grad=True)
        loss = (x * x).sum()
        loss.backward()
        assert np.allclose(x.grad, [2.0, 4.0, 6.0])

    def test_subtraction_and_mean(self):
        x = Tensor([1.0, 3.0], requires_grad=True)
        target = Tensor([0.0, 1.0])
        loss = ((x - target) ** 2).mean()
        loss.backward()
        assert np.allclose(x.grad, [1.0, 2.0])
        assert target.grad is None

    def test_matmul(self):
        w = Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True)
        x = Tensor([[1.0], [1.0]])
        out = (w @ x).sum()
        out.backward()
        assert np.allclose(w.grad, [[1.0, 1.0], [1.0, 1.0]])

    def test_broadcast_gradient_is_reduced(self):
        x = Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True)
        b = Tensor([1.0, 1.0], requires_grad=True)
        (x + b).sum().backward()
        assert b.grad.shape == (2,)
        assert np.allclose(b.grad, [2.0, 2.0])

    def test_gradients_accumulate_in_place(self):
        """Repeated backward passes accumulate into the same gradient array."""
        x = Tensor([1.0, 2.0], requires_grad=True)
        grad = x.grad

        (x * 2.0).sum().backward()
        (x * 2.0).sum().backward()

        assert x.grad is grad
        assert np.allclose(x.grad, [4.0, 4.0])

    def test_detached_tensor_stops_gradient(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        y = (x * 2.0).detach()
        y.requires_grad_()
        (y * 3.0).sum().backward()
        assert np.allclose(y.grad, [3.0, 3.0])
        assert np.allclose(x.grad, [0.0, 0.0])

    def test_implicit_gradient_requires_scalar(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        with pytest.raises(RuntimeError):
            (x * 2.0).backward()

    def test_division_by_zero(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        with pytest.raises(ValueError):
            _ = x / 0.0
