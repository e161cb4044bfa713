from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from . import serialize
from .optimizer import Optimizer, ParamsLike
from .options import OptimizerOptions, ParamState


@dataclass
class RMSpropOptions(OptimizerOptions):
    lr: float = 0.01
    alpha: float = 0.99
    eps: float = 1e-8
    weight_decay: float = 0.0
    momentum: float = 0.0
    centered: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.lr:
            raise ValueError(f"Invalid learning rate: {self.lr}")
        if not 0.0 <= self.eps:
            raise ValueError(f"Invalid epsilon value: {self.eps}")
        if not 0.0 <= self.momentum:
            raise ValueError(f"Invalid momentum value: {self.momentum}")
        if not 0.0 <= self.alpha:
            raise ValueError(f"Invalid alpha value: {self.alpha}")
        if not 0.0 <= self.weight_decay:
            raise ValueError(f"Invalid weight_decay value: {self.weight_decay}")


@dataclass
class RMSpropParamState(ParamState):
    step: int = 0
    square_avg: Optional[NDArray[Any]] = None
    momentum_buffer: Optional[NDArray[Any]] = None
    grad_avg: Optional[NDArray[Any]] = None


class RMSprop(Optimizer[RMSpropOptions, RMSpropParamState]):
    """
    Implements RMSprop algorithm.

    Args:
        params: Parameters or parameter groups to optimize
        lr: Learning rate (default: 0.01)
        alpha: Smoothing constant (default: 0.99)
        eps: Term added to denominator for numerical stability (default: 1e-8)
        weight_decay: Weight decay (L2 penalty) (default: 0)
        momentum: Momentum factor (default: 0)
        centered: If True, compute centered RMSprop with variance-normalized gradients
    """

    def __init__(
        self,
        params: ParamsLike,
        lr: float = 0.01,
        alpha: float = 0.99,
        eps: float = 1e-8,
        weight_decay: float = 0,
        momentum: float = 0,
        centered: bool = False,
    ) -> None:
        defaults = RMSpropOptions(
            lr=lr,
            alpha=alpha,
            eps=eps,
            weight_decay=weight_decay,
            momentum=momentum,
            centered=centered,
        )
        super().__init__(params, defaults)

    def step(self) -> None:
        """Performs a single optimization step."""
        for group, handle, p in self._iter_params():
            if p.grad is None:
                continue

            options = group.options
            grad = p.grad

            state = self.state.get(handle)
            if state is None:
                state = self.state[handle] = RMSpropParamState(square_avg=np.zeros_like(p.data))

            alpha = options.alpha
            state.step += 1

            if options.weight_decay != 0:
                grad = grad + options.weight_decay * p.data

            state.square_avg = alpha * state.square_avg + (1 - alpha) * grad * grad

            if options.centered:
                if state.grad_avg is None:
                    state.grad_avg = np.zeros_like(p.data)
                state.grad_avg = alpha * state.grad_avg + (1 - alpha) * grad
                avg = state.square_avg - state.grad_avg * state.grad_avg
            else:
                avg = state.square_avg

            if options.momentum > 0:
                if state.momentum_buffer is None:
                    state.momentum_buffer = np.zeros_like(p.data)
                state.momentum_buffer = options.momentum * state.momentum_buffer + grad / (
                    np.sqrt(avg) + options.eps
                )
                p.data -= options.lr * state.momentum_buffer
            else:
                p.data -= options.lr * grad / (np.sqrt(avg) + options.eps)

    def save(self, archive: serialize.OutputArchive) -> None:
        serialize.write_state(archive, "state", self.state)

    def load(self, archive: serialize.InputArchive) -> None:
        self.state = serialize.read_state(archive, "state", RMSpropParamState)
