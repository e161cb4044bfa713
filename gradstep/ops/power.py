from typing import Any, Dict, Union

import numpy as np
from numpy.typing import NDArray

from ..core import Context, Function, Tensor
from .basic import accumulate_grad, reduce_grad


class Power(Function):
    @staticmethod
    def forward(
        ctx: Context,
        base: Union[Tensor, NDArray[Any], float, int],
        exponent: Union[Tensor, float, int],
    ) -> Tensor:
        """
        Computes element-wise power operation: base ^ exponent.

        Raises:
            TypeError: If exponent is not a Tensor, int, or float
            ValueError: If exponent is a non-scalar tensor
        """
        if not isinstance(base, Tensor):
            base = Tensor(base)
        if not isinstance(exponent, (Tensor, int, float)):
            raise TypeError("Exponent must be a Tensor, int, or float")

        if isinstance(exponent, Tensor):
            if exponent.data.size != 1:
                raise ValueError("Only scalar exponents are supported")
            exponent = exponent.item()

        ctx.save_for_backward(base)
        ctx.save_arguments(exponent=exponent)
        return Tensor(np.power(base.data, exponent))

    @staticmethod
    def backward(
        ctx: Context, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]
    ) -> None:
        # d/dx x^n = n x^(n-1)
        (base,) = ctx.saved_tensors
        exponent = ctx.saved_arguments["exponent"]

        if base.requires_grad:
            grad = grad_output * exponent * np.power(base.data, exponent - 1)
            accumulate_grad(grad_dict, base, grad)


class Divide(Function):
    @staticmethod
    def forward(
        ctx: Context,
        numerator: Union[Tensor, NDArray[Any], float, int],
        denominator: Union[Tensor, NDArray[Any], float, int],
    ) -> Tensor:
        """
        Computes element-wise division: numerator / denominator.

        Raises:
            ValueError: If any element in denominator is zero
        """
        if not isinstance(numerator, Tensor):
            numerator = Tensor(numerator)
        if not isinstance(denominator, Tensor):
            denominator = Tensor(denominator)

        if np.any(denominator.data == 0):
            raise ValueError("Division by zero encountered")

        ctx.save_for_backward(numerator, denominator)
        return Tensor(numerator.data / denominator.data)

    @staticmethod
    def backward(
        ctx: Context, grad_output: NDArray[Any], grad_dict: Dict[int, NDArray[Any]]
    ) -> None:
        numerator, denominator = ctx.saved_tensors

        if numerator.requires_grad:
            grad = reduce_grad(grad_output / denominator.data, numerator.data.shape)
            accumulate_grad(grad_dict, numerator, grad)

        if denominator.requires_grad:
            grad = -grad_output * numerator.data / (denominator.data**2)
            accumulate_grad(grad_dict, denominator, reduce_grad(grad, denominator.data.shape))
