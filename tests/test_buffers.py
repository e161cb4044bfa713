import pytest
import numpy as np
from gradstep.core import Tensor
from gradstep.optim import BufferTable, OutOfRangeError, Optimizer, TensorBufferTable


class BufferedOptimizer(Optimizer):
    def step(self):
        pass


class TestBufferTable:
    """Tests for scalar buffer tables."""

    def test_growth_fills_every_new_slot(self):
        buffers = BufferTable(zero=0)
        assert buffers.at(3) == 0
        assert len(buffers) == 4
        assert list(buffers) == [0, 0, 0, 0]

    def test_array_zero_is_not_shared_between_slots(self):
        buffers = BufferTable(zero=np.zeros(2))
        buffers.at(2)
        buffers.at(0)[0] = 5.0

        assert np.array_equal(buffers.at(1), [0.0, 0.0])
        assert np.array_equal(buffers.at(2), [0.0, 0.0])
        assert np.array_equal(buffers.zero, [0.0, 0.0])
        assert buffers.at(0) is not buffers.at(1)

    def test_existing_slot_is_returned(self):
        buffers = BufferTable(zero=0.0)
        buffers.at(1)
        buffers[1] = 2.5
        assert buffers.at(1) == 2.5
        assert len(buffers) == 2

    def test_negative_index(self):
        with pytest.raises(OutOfRangeError):
            BufferTable().at(-1)

    def test_out_of_range_is_an_index_error(self):
        with pytest.raises(IndexError):
            BufferTable().at(-2)

    def test_clear_and_load(self):
        buffers = BufferTable(zero=0)
        buffers.at(2)
        buffers.clear()
        assert len(buffers) == 0
        buffers.load([1, 2])
        assert list(buffers) == [1, 2]


class TestTensorBufferTable:
    """Tests for per-parameter tensor buffers."""

    def setup_method(self):
        self.params = [
            Tensor([1.0, 2.0], requires_grad=True),
            Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True),
            Tensor(np.array([1.0], dtype=np.float32), requires_grad=True),
            Tensor([1.0, 2.0, 3.0], requires_grad=True),
        ]
        self.optimizer = BufferedOptimizer(self.params)
        self.buffers = TensorBufferTable()

    def test_growth_allocates_all_slots_up_to_index(self):
        buffer = self.optimizer.buffer_at(self.buffers, 3)

        assert len(self.buffers) == 4
        assert buffer.shape == (3,)
        for slot, param in zip(self.buffers, self.params):
            assert slot.shape == param.shape
            assert slot.dtype == param.dtype
            assert np.all(slot.data == 0)

    def test_access_is_idempotent(self):
        first = self.optimizer.buffer_at(self.buffers, 1)
        second = self.optimizer.buffer_at(self.buffers, 1)
        assert first is second
        assert first.data is second.data

    def test_buffer_is_writable_in_place(self):
        buffer = self.optimizer.buffer_at(self.buffers, 0)
        buffer.data += 1.5
        assert np.array_equal(self.optimizer.buffer_at(self.buffers, 0).data, [1.5, 1.5])

    def test_buffer_follows_parameter_device(self):
        buffer = self.optimizer.buffer_at(self.buffers, 0)
        buffer.data[:] = [3.0, 4.0]

        self.params[0].to_("cpu:1")
        moved = self.optimizer.buffer_at(self.buffers, 0)

        assert moved.device == "cpu:1"
        assert np.array_equal(moved.data, [3.0, 4.0])
        # Converted once, then stable
        assert self.optimizer.buffer_at(self.buffers, 0) is moved

    def test_buffer_follows_parameter_dtype(self):
        buffer = self.optimizer.buffer_at(self.buffers, 1)
        buffer.data[:] = [[0.5, 1.5], [2.5, 3.5]]

        self.params[1].to_(dtype=np.float32)
        converted = self.optimizer.buffer_at(self.buffers, 1)

        assert converted.dtype == np.float32
        assert np.allclose(converted.data, [[0.5, 1.5], [2.5, 3.5]])

    def test_index_past_parameters(self):
        with pytest.raises(OutOfRangeError):
            self.optimizer.buffer_at(self.buffers, 4)
        assert len(self.buffers) == 0

    def test_negative_index(self):
        with pytest.raises(OutOfRangeError):
            self.optimizer.buffer_at(self.buffers, -1)

    def test_scalar_table_through_optimizer(self):
        steps = BufferTable(zero=0)
        assert self.optimizer.buffer_at(steps, 2) == 0
        assert len(steps) == 3

    def test_load_wraps_arrays(self):
        self.buffers.load([np.zeros(2), Tensor([1.0])])
        assert all(isinstance(slot, Tensor) for slot in self.buffers)
