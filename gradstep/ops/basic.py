from typing import Any, Dict, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.function import Function
from ..core.tensor import Tensor


def _as_tensor(value: Any) -> Tensor:
    return value if isinstance(value, Tensor) else Tensor(value)


def reduce_grad(grad: NDArray[Any], target_shape: Tuple[int, ...]) -> NDArray[Any]:
    """
    Reduces the gradient to match the target shape by summing over broadcasted dimensions.
    """
    target_shape = tuple(target_shape)

    # Leading dimensions added by broadcasting are summed away entirely
    extra = grad.ndim - len(target_shape)
    if extra > 0:
        grad = grad.sum(axis=tuple(range(extra)))

    for axis, (grad_dim, target_dim) in enumerate(zip(grad.shape, target_shape)):
        if target_dim == 1 and grad_dim != 1:
            grad = grad.sum(axis=axis, keepdims=True)
    return grad.reshape(target_shape)


def accumulate_grad(grad_dict: Dict[int, NDArray[Any]], tensor: Tensor, grad: NDArray[Any]) -> None:
    """Adds ``grad`` to the pending gradient of ``tensor`` without touching shared arrays."""
    key = id(tensor)
    if key in grad_dict and grad_dict[key] is not None:
        grad_dict[key] = grad_dict[key] + grad
    else:
        grad_dict[key] = grad


class Add(Function):
    @staticmethod
    def forward(ctx, a, b):
        a, b = _as_tensor(a), _as_tensor(b)

        try:
            result = a.data + b.data
        except ValueError:
            raise ValueError(f"Cannot broadcast shape {a.data.shape} with {b.data.shape}")

        ctx.save_for_backward(a, b)
        return Tensor(result)

    @staticmethod
    def backward(ctx, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]) -> None:
        a, b = ctx.saved_tensors

        if a.requires_grad:
            accumulate_grad(grad_dict, a, reduce_grad(grad_output, a.data.shape))
        if b.requires_grad:
            accumulate_grad(grad_dict, b, reduce_grad(grad_output, b.data.shape))


class Multiply(Function):
    @staticmethod
    def forward(ctx, a, b):
        a, b = _as_tensor(a), _as_tensor(b)

        try:
            np.broadcast_shapes(a.data.shape, b.data.shape)
        except ValueError:
            raise ValueError(f"Cannot broadcast shape {a.data.shape} with {b.data.shape}")

        ctx.save_for_backward(a, b)
        return Tensor(a.data * b.data)

    @staticmethod
    def backward(ctx, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]) -> None:
        a, b = ctx.saved_tensors

        if a.requires_grad:
            accumulate_grad(grad_dict, a, reduce_grad(grad_output * b.data, a.data.shape))
        if b.requires_grad:
            accumulate_grad(grad_dict, b, reduce_grad(grad_output * a.data, b.data.shape))


class MatMul(Function):
    """Matrix product of two tensors with at least two dimensions each."""

    @staticmethod
    def forward(ctx, a, b):
        a, b = _as_tensor(a), _as_tensor(b)
        if a.ndim < 2 or b.ndim < 2:
            raise ValueError(f"MatMul expects at least 2-D operands, got {a.shape} and {b.shape}")

        ctx.save_for_backward(a, b)
        return Tensor(np.matmul(a.data, b.data))

    @staticmethod
    def backward(ctx, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]) -> None:
        a, b = ctx.saved_tensors

        if a.requires_grad:
            grad_a = np.matmul(grad_output, b.data.swapaxes(-1, -2))
            accumulate_grad(grad_dict, a, reduce_grad(grad_a, a.data.shape))
        if b.requires_grad:
            grad_b = np.matmul(a.data.swapaxes(-1, -2), grad_output)
            accumulate_grad(grad_dict, b, reduce_grad(grad_b, b.data.shape))
