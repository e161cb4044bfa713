from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from ..core import Context, Function, Tensor
from .basic import accumulate_grad

Axis = Optional[Union[int, Tuple[int, ...]]]


def _expand_to_input(
    grad_output: NDArray[Any], axis: Axis, keepdims: bool, input_shape: Tuple[int, ...]
) -> NDArray[Any]:
    # Without keepdims the reduced axes must be reinserted before broadcasting
    if not keepdims and axis is not None:
        grad_output = np.expand_dims(grad_output, axis=axis)
    return np.broadcast_to(grad_output, input_shape)


class Sum(Function):
    @staticmethod
    def forward(
        ctx: Context,
        x: Union[Tensor, NDArray[Any]],
        axis: Axis = None,
        keepdims: bool = False,
    ) -> Tensor:
        if not isinstance(x, Tensor):
            x = Tensor(x)

        ctx.save_for_backward(x)
        ctx.save_arguments(axis=axis, keepdims=keepdims)
        return Tensor(np.sum(x.data, axis=axis, keepdims=keepdims))

    @staticmethod
    def backward(
        ctx: Context, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]
    ) -> None:
        (x,) = ctx.saved_tensors
        args = ctx.saved_arguments

        if x.requires_grad:
            grad = _expand_to_input(grad_output, args["axis"], args["keepdims"], x.data.shape)
            accumulate_grad(grad_dict, x, grad)


class Mean(Function):
    @staticmethod
    def forward(
        ctx: Context,
        x: Union[Tensor, NDArray[Any]],
        axis: Axis = None,
        keepdims: bool = False,
    ) -> Tensor:
        if not isinstance(x, Tensor):
            x = Tensor(x)

        ctx.save_for_backward(x)
        ctx.save_arguments(axis=axis, keepdims=keepdims)
        return Tensor(np.mean(x.data, axis=axis, keepdims=keepdims))

    @staticmethod
    def backward(
        ctx: Context, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]
    ) -> None:
        (x,) = ctx.saved_tensors
        args = ctx.saved_arguments
        axis = args["axis"]

        if x.requires_grad:
            if axis is None:
                n = x.data.size
            else:
                axes = axis if isinstance(axis, tuple) else (axis,)
                n = int(np.prod([x.data.shape[i] for i in axes]))

            grad = _expand_to_input(grad_output, axis, args["keepdims"], x.data.shape) / n
            accumulate_grad(grad_dict, x, grad)
