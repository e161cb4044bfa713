import copy

import pytest
import numpy as np
from gradstep.core import Device, Tensor, zeros_like


class TestDevice:
    """Tests for logical device placement."""

    def test_default_device(self):
        device = Device()
        assert device.type == "cpu"
        assert device.index is None
        assert str(device) == "cpu"

    def test_parse_index(self):
        device = Device("cpu:1")
        assert device.type == "cpu"
        assert device.index == 1
        assert repr(device) == "Device('cpu:1')"

    def test_equality(self):
        """cpu and cpu:0 name the same placement"""
        assert Device("cpu") == Device("cpu:0")
        assert Device("cpu:1") != Device("cpu")
        assert Device("cpu:1") == "cpu:1"
        assert hash(Device("cpu")) == hash(Device("cpu:0"))

    def test_invalid_devices(self):
        with pytest.raises(ValueError):
            Device("cuda")
        with pytest.raises(ValueError):
            Device("cpu:x")
        with pytest.raises(ValueError):
            Device("cpu", index=-1)
        with pytest.raises(ValueError):
            Device("cpu:1", index=2)


class TestTensorBasics:
    """Tests for tensor identity, leaves and gradients."""

    def test_creation(self):
        t = Tensor([1.0, 2.0, 3.0])
        assert t.shape == (3,)
        assert t.dtype == np.float64
        assert t.device == Device()
        assert t.is_leaf
        assert t.grad is None

    def test_dtype_is_kept(self):
        t = Tensor(np.array([1.0, 2.0], dtype=np.float32), requires_grad=True)
        assert t.dtype == np.float32
        assert t.grad.dtype == np.float32

    def test_integer_tensor_gets_float_grad(self):
        t = Tensor([1, 2, 3])
        t.zero_grad()
        assert t.grad.dtype == np.float64

    def test_unique_uids(self):
        a = Tensor([1.0])
        b = Tensor([1.0])
        assert a.uid != b.uid

    def test_tensors_hash_by_identity(self):
        a = Tensor([1.0])
        b = Tensor([1.0])
        assert len({a, b}) == 2
        assert [a, b].index(b) == 1

    def test_requires_grad_allocates_grad(self):
        t = Tensor([1.0, 2.0])
        assert t.grad is None
        t.requires_grad_()
        assert t.requires_grad
        assert np.array_equal(t.grad, [0.0, 0.0])

    def test_result_of_op_is_not_leaf(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        y = x * 2.0
        assert not y.is_leaf
        assert y.requires_grad

    def test_result_without_grad_is_leaf(self):
        x = Tensor([1.0, 2.0])
        y = x * 2.0
        assert y.is_leaf
        assert not y.requires_grad

    def test_detach(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        y = x * 2.0
        z = y.detach()
        assert z.is_leaf
        assert not z.requires_grad
        # Shares storage with the original
        assert z.data is y.data

    def test_detach_in_place(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        y = x * 2.0
        assert y.detach_() is y
        assert y.is_leaf
        assert not y.requires_grad

    def test_zero_(self):
        t = Tensor([1.0, 2.0])
        data = t.data
        t.zero_()
        assert t.data is data
        assert np.all(t.data == 0)

    def test_deepcopy_is_new_tensor(self):
        t = Tensor([1.0, 2.0], requires_grad=True)
        t.grad = np.array([0.5, 0.5])
        c = copy.deepcopy(t)
        assert c is not t
        assert c.uid != t.uid
        assert np.array_equal(c.data, t.data)
        assert np.array_equal(c.grad, t.grad)
        c.data[0] = 9.0
        assert t.data[0] == 1.0

    def test_zeros_like(self):
        t = Tensor(np.ones((2, 3), dtype=np.float32), device="cpu:1")
        z = zeros_like(t)
        assert z.shape == (2, 3)
        assert z.dtype == np.float32
        assert z.device == "cpu:1"
        assert np.all(z.data == 0)


class TestTensorConversion:
    """Tests for moving tensors between devices and dtypes."""

    def test_to_without_change_returns_self(self):
        t = Tensor([1.0, 2.0])
        assert t.to() is t
        assert t.to("cpu") is t

    def test_to_copy_forces_new_tensor(self):
        t = Tensor([1.0, 2.0])
        c = t.to(copy=True)
        assert c is not t
        assert c.data is not t.data

    def test_to_device(self):
        t = Tensor([1.0, 2.0])
        moved = t.to("cpu:1")
        assert moved.device == "cpu:1"
        assert t.device == "cpu"
        assert np.array_equal(moved.data, t.data)

    def test_to_dtype(self):
        t = Tensor([1.5, 2.5])
        converted = t.to(dtype=np.float32)
        assert converted.dtype == np.float32
        assert t.dtype == np.float64

    def test_to_in_place_keeps_identity(self):
        t = Tensor([1.0, 2.0], requires_grad=True)
        uid = t.uid
        assert t.to_("cpu:2", np.float32) is t
        assert t.uid == uid
        assert t.device == "cpu:2"
        assert t.dtype == np.float32
        assert t.grad.dtype == np.float32

    def test_ops_reject_mixed_devices(self):
        a = Tensor([1.0, 2.0])
        b = Tensor([1.0, 2.0], device="cpu:1")
        with pytest.raises(RuntimeError):
            _ = a + b

    def test_scalars_mix_with_any_device(self):
        a = Tensor([1.0, 2.0], device="cpu:1")
        result = a * 3.0
        assert result.device == "cpu:1"
        assert np.array_equal(result.data, [3.0, 6.0])

    def test_repr_mentions_non_default_device(self):
        assert "device" not in repr(Tensor([1.0]))
        assert "cpu:1" in repr(Tensor([1.0], device="cpu:1"))
