from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence, Tuple

import numpy as np

from .device import Device
from .tensor import Tensor


class Context:
    """
    Carries what a Function's forward pass leaves behind for its backward pass.

    Tensors go through ``save_for_backward``; anything else (axes, exponents,
    input shapes) through ``save_arguments``.
    """

    def __init__(self) -> None:
        self._saved_tensors: Tuple[Any, ...] = ()
        self._arguments: Dict[str, Any] = {}

    def save_for_backward(self, *args: Any) -> None:
        self._saved_tensors = args

    def save_arguments(self, **kwargs: Any) -> None:
        self._arguments.update(kwargs)

    @property
    def saved_tensors(self) -> Tuple[Any, ...]:
        return self._saved_tensors

    @property
    def saved_arguments(self) -> Dict[str, Any]:
        return dict(self._arguments)


class Function(ABC):
    """
    Base class for all autograd operations.

    This class defines the interface for creating differentiable operations.
    Each operation should implement both a forward pass (computing the result)
    and a backward pass (computing gradients).

    The Function class follows a similar design pattern to PyTorch's autograd.Function,
    but with some simplifications. Results are placed on the device shared by
    the tensor inputs, and a result computed from inputs that require
    gradients is a non-leaf tensor.
    """

    requires_grad: bool = True

    @staticmethod
    @abstractmethod
    def forward(ctx: Context, *args: Any, **kwargs: Any) -> Tensor:
        """
        Performs the forward computation.

        Args:
            ctx: Context object for saving information needed in backward pass
            *args: Input tensors and other arguments
            **kwargs: Additional keyword arguments for the operation

        Returns:
            Result of the computation as a Tensor
        """
        raise NotImplementedError

    @staticmethod
    @abstractmethod
    def backward(ctx: Context, grad_output: np.ndarray, grad_dict: Dict[int, np.ndarray]) -> None:
        """
        Computes gradients of the operation with respect to its inputs.

        Args:
            ctx: Context object containing saved tensors from forward pass
            grad_output: Gradient of the loss with respect to the output
            grad_dict: Dictionary mapping tensor IDs to their gradients
        """
        raise NotImplementedError

    @classmethod
    def apply(cls, *args: Any, **kwargs: Any) -> Tensor:
        """
        Applies the function to the given inputs.

        This method:
        1. Checks that the tensor inputs share a device
        2. Runs the forward pass
        3. Sets up the computational graph for gradient computation
        4. Returns the result on the inputs' device
        """
        device = cls._common_device([arg for arg in args if isinstance(arg, Tensor)])

        ctx = Context()
        result = cls.forward(ctx, *args, **kwargs)
        result.device = device

        needs_grad = cls.requires_grad and any(
            isinstance(arg, Tensor) and arg.requires_grad for arg in args
        )

        if needs_grad:

            def backward_fn(grad_output: np.ndarray, grad_dict: Dict[int, np.ndarray]) -> None:
                cls.backward(ctx, grad_output, grad_dict)

            result._backward_fn = backward_fn
            result._requires_grad = True
            result._is_leaf = False
            result._prev = {arg for arg in args if isinstance(arg, Tensor)}

            from .autograd import get_autograd_engine

            engine = get_autograd_engine()
            for arg in args:
                if isinstance(arg, Tensor):
                    engine.add_edge(arg, result)

        return result

    @staticmethod
    def _common_device(tensors: Sequence[Tensor]) -> Device:
        # Zero-dimensional tensors act as scalars and may mix with any device
        placed = [t for t in tensors if t.ndim > 0] or list(tensors)
        if not placed:
            return Device()

        device = placed[0].device
        for tensor in placed[1:]:
            if tensor.device != device:
                raise RuntimeError(
                    "Expected all tensors to be on the same device, "
                    f"but found at least two devices, {device} and {tensor.device}"
                )
        return device
