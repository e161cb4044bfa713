import itertools
from numbers import Number
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

import numpy as np
from numpy.typing import DTypeLike, NDArray

from .device import Device, DeviceLike, as_device

_uids = itertools.count()


class Tensor:
    """
    A multidimensional array with autograd capabilities.

    The Tensor class wraps numpy arrays and adds automatic differentiation
    capabilities. It tracks the computational graph and enables gradient
    computation through backpropagation.

    Every tensor also carries a logical device and a process-unique ``uid``.
    The uid is assigned once at construction and never reused, so code that
    needs a stable handle on a tensor (an optimizer's state map, for example)
    can key on it without relying on memory addresses or tensor values.

    Attributes:
        data: The underlying numpy array holding the tensor's values
        grad: Gradient of the loss with respect to this tensor
        device: Logical placement of the tensor's storage
        requires_grad: Whether to compute gradients for this tensor
        _prev: Set of immediate predecessor nodes in computational graph
        _backward_fn: Function to compute gradients during backpropagation
        _is_leaf: Whether this tensor is a leaf node (created by user)
    """

    def __init__(
        self,
        data: Union[NDArray[Any], List[Any], Number, "Tensor"],
        requires_grad: bool = False,
        dtype: Optional[DTypeLike] = None,
        device: Optional[DeviceLike] = None,
    ):
        if isinstance(data, Tensor):
            if device is None:
                device = data.device
            data = data.data

        if isinstance(data, np.ndarray):
            self.data = data.astype(dtype, copy=False) if dtype else data
        else:
            self.data = np.array(data, dtype=dtype)

        self.device: Device = as_device(device)
        self.uid = next(_uids)

        self.grad: Optional[NDArray[Any]] = None
        self._requires_grad = requires_grad
        self._backward_fn: Optional[Callable[[NDArray[Any], Dict[int, NDArray[Any]]], None]] = None

        self._prev: Set["Tensor"] = set()
        self._is_leaf = True

        if requires_grad:
            self.zero_grad()

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(int(x) for x in self.data.shape)

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def ndim(self) -> int:
        return self.data.ndim

    @property
    def requires_grad(self) -> bool:
        """Returns whether the tensor requires gradient computation."""
        return self._requires_grad

    @property
    def is_leaf(self) -> bool:
        """
        Whether this tensor has no tracked upstream computation.

        Tensors created directly by the user are leaves. Results of a
        differentiable operation whose inputs require gradients are not.
        """
        return self._is_leaf

    def __getitem__(self, index: Union[int, slice, Tuple[Union[int, slice], ...]]) -> "Tensor":
        """Enable indexing for tensors."""
        return Tensor(self.data[index], requires_grad=self.requires_grad, device=self.device)

    def __len__(self) -> int:
        """Return length of first dimension."""
        return self.data.shape[0] if self.data.shape else 1

    def requires_grad_(self, requires_grad: bool = True) -> "Tensor":
        """Sets gradient computation requirement and returns self."""
        self._requires_grad = requires_grad
        if requires_grad and self.grad is None:
            self.zero_grad()
        return self

    def zero_grad(self) -> None:
        """Allocates a fresh all-zero gradient matching this tensor's precision."""
        grad_dtype = self.data.dtype if np.issubdtype(self.data.dtype, np.floating) else np.float64
        self.grad = np.zeros(self.data.shape, dtype=grad_dtype)

    def zero_(self) -> "Tensor":
        """Fills the tensor with zeros in place and returns self."""
        self.data.fill(0)
        return self

    def detach(self) -> "Tensor":
        """Returns a new leaf tensor sharing this tensor's data, cut from the graph."""
        return Tensor(self.data, device=self.device)

    def detach_(self) -> "Tensor":
        """Cuts this tensor from the graph in place, turning it into a leaf that no longer requires grad."""
        self._backward_fn = None
        self._prev = set()
        self._is_leaf = True
        self._requires_grad = False
        return self

    def to(
        self,
        device: Optional[DeviceLike] = None,
        dtype: Optional[DTypeLike] = None,
        copy: bool = False,
    ) -> "Tensor":
        """
        Returns this tensor converted to the given device and/or dtype.

        The conversion copies values into new storage. When neither the device
        nor the dtype changes and ``copy`` is False the tensor itself is
        returned. The result is not tracked by autograd.

        Args:
            device: Target device (defaults to the current one)
            dtype: Target numpy dtype (defaults to the current one)
            copy: Force a copy even when nothing changes
        """
        target_device = self.device if device is None else as_device(device)
        target_dtype = self.dtype if dtype is None else np.dtype(dtype)

        if not copy and target_device == self.device and target_dtype == self.dtype:
            return self

        return Tensor(
            self.data.astype(target_dtype, copy=True),
            requires_grad=self.requires_grad,
            device=target_device,
        )

    def to_(self, device: Optional[DeviceLike] = None, dtype: Optional[DTypeLike] = None) -> "Tensor":
        """
        Moves this tensor to the given device and/or dtype in place.

        The tensor keeps its identity (and uid); only its storage is replaced.
        An existing gradient is converted alongside the data.
        """
        target_device = self.device if device is None else as_device(device)
        target_dtype = self.dtype if dtype is None else np.dtype(dtype)

        if target_dtype != self.dtype:
            self.data = self.data.astype(target_dtype)
            if self.grad is not None and np.issubdtype(target_dtype, np.floating):
                self.grad = self.grad.astype(target_dtype)
        self.device = target_device
        return self

    def backward(self, gradient: Optional[NDArray[Any]] = None) -> None:
        """
        Computes gradients of the loss with respect to this tensor.
        """
        if not self.requires_grad:
            return

        # Handle default gradient for scalar tensors
        if gradient is None:
            if np.prod(self.shape) == 1:
                if self.shape == ():  # scalar tensor
                    gradient = np.array(1.0)
                else:
                    gradient = np.ones(self.shape)
            else:
                raise RuntimeError("grad can be implicitly created only for scalar outputs")

        if isinstance(gradient, (int, float)):
            gradient = np.array(gradient)

        # Ensure matching shapes for scalar case
        if self.shape == () and gradient.shape != ():
            gradient = gradient.sum()
        elif self.shape != () and gradient.shape == ():
            gradient = np.full(self.shape, gradient)

        from .autograd import get_autograd_engine

        engine = get_autograd_engine()
        engine.backward(self, gradient)

    def item(self) -> Any:
        """Returns the value of a one-element tensor as a Python scalar."""
        return self.data.item()

    def __float__(self) -> float:
        return float(self.data.item())

    def __repr__(self) -> str:
        if self.device == Device():
            return f"Tensor({self.data}, requires_grad={self.requires_grad})"
        return f"Tensor({self.data}, requires_grad={self.requires_grad}, device='{self.device}')"

    # Basic arithmetic operations that will be connected to Function implementations
    def __add__(self, other: Union["Tensor", Number]) -> "Tensor":
        from ..ops.basic import Add

        return Add.apply(self, other)

    def __radd__(self, other: Number) -> "Tensor":
        return self + other

    def __mul__(self, other: Union["Tensor", Number]) -> "Tensor":
        from ..ops.basic import Multiply

        return Multiply.apply(self, other)

    def __rmul__(self, other: Number) -> "Tensor":
        return self * other

    def __matmul__(self, other: "Tensor") -> "Tensor":
        from ..ops.basic import MatMul

        return MatMul.apply(self, other)

    def __neg__(self) -> "Tensor":
        from ..ops.basic import Multiply

        return Multiply.apply(self, Tensor(-1.0))

    def __sub__(self, other: Union["Tensor", Number]) -> "Tensor":
        if isinstance(other, (int, float)):
            return self + Tensor(-other)
        elif isinstance(other, complex):
            raise TypeError("Cannot convert complex number to tensor")
        elif isinstance(other, Tensor):
            return self + (-other)
        else:
            raise TypeError(f"Cannot subtract {type(other).__name__} from Tensor")

    def numpy(self) -> NDArray[Any]:
        """Returns the underlying numpy array."""
        return self.data

    @classmethod
    def from_numpy(cls, array: NDArray[Any], requires_grad: bool = False) -> "Tensor":
        """Creates a Tensor from a numpy array."""
        return cls(array.copy(), requires_grad=requires_grad)

    def pow(self, exponent: Union["Tensor", float]) -> "Tensor":
        """Returns tensor raised to the power of exponent."""
        from ..ops import Power

        return Power.apply(self, exponent)

    def div(self, other: Union["Tensor", float]) -> "Tensor":
        """Returns self divided by other."""
        from ..ops import Divide

        return Divide.apply(self, other)

    def sum(
        self, axis: Optional[Union[int, Tuple[int, ...]]] = None, keepdims: bool = False
    ) -> "Tensor":
        """Returns the sum of all elements in the tensor."""
        from ..ops import Sum

        return Sum.apply(self, axis, keepdims)

    def mean(
        self, axis: Optional[Union[int, Tuple[int, ...]]] = None, keepdims: bool = False
    ) -> "Tensor":
        """Returns the mean of all elements in the tensor."""
        from ..ops import Mean

        return Mean.apply(self, axis, keepdims)

    def __truediv__(self, other: Union["Tensor", float]) -> "Tensor":
        """Implements division using the / operator."""
        from ..ops import Divide

        return Divide.apply(self, other)

    def __pow__(self, exponent: Union["Tensor", float]) -> "Tensor":
        """Implements power using the ** operator."""
        from ..ops import Power

        return Power.apply(self, exponent)

    def copy(self) -> "Tensor":
        """Creates a deep copy of the tensor."""
        new_tensor = Tensor(
            self.data.copy(),
            requires_grad=self.requires_grad,
            dtype=self.dtype,
            device=self.device,
        )
        if self.grad is not None:
            new_tensor.grad = self.grad.copy()
        return new_tensor

    def __deepcopy__(self, memo: Dict[int, Any]) -> "Tensor":
        # A copied tensor is a new tensor, with its own uid and graph node
        return self.copy()


def zeros_like(tensor: Tensor, requires_grad: bool = False) -> Tensor:
    """Returns a zero-filled tensor with the shape, dtype and device of ``tensor``."""
    return Tensor(
        np.zeros_like(tensor.data),
        requires_grad=requires_grad,
        device=tensor.device,
    )
