from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from . import serialize
from .optimizer import Optimizer, ParamsLike
from .options import OptimizerOptions, ParamState


@dataclass
class SGDOptions(OptimizerOptions):
    lr: float = 0.1
    momentum: float = 0.0
    dampening: float = 0.0
    weight_decay: float = 0.0
    nesterov: bool = False

    def __post_init__(self) -> None:
        if self.lr < 0.0:
            raise ValueError(f"Invalid learning rate: {self.lr}")
        if self.momentum < 0.0:
            raise ValueError(f"Invalid momentum value: {self.momentum}")
        if self.weight_decay < 0.0:
            raise ValueError(f"Invalid weight_decay value: {self.weight_decay}")
        if self.nesterov and (self.momentum <= 0 or self.dampening != 0):
            raise ValueError("Nesterov momentum requires a momentum and zero dampening")


@dataclass
class SGDParamState(ParamState):
    momentum_buffer: Optional[NDArray[Any]] = None


class SGD(Optimizer[SGDOptions, SGDParamState]):
    """
    Implements stochastic gradient descent with momentum.

    Args:
        params: Parameters or parameter groups to optimize
        lr: Learning rate (default: 0.1)
        momentum: Momentum factor (default: 0)
        dampening: Dampening for momentum (default: 0)
        weight_decay: Weight decay (L2 penalty) (default: 0)
        nesterov: Enables Nesterov momentum (default: False)
    """

    def __init__(
        self,
        params: ParamsLike,
        lr: float = 0.1,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
    ) -> None:
        defaults = SGDOptions(
            lr=lr,
            momentum=momentum,
            dampening=dampening,
            weight_decay=weight_decay,
            nesterov=nesterov,
        )
        super().__init__(params, defaults)

    def step(self) -> None:
        """Performs a single optimization step."""
        for group, handle, p in self._iter_params():
            if p.grad is None:
                continue

            options = group.options
            grad = p.grad

            if options.weight_decay != 0:
                grad = grad + options.weight_decay * p.data

            if options.momentum != 0:
                state = self.state.get(handle)
                if state is None:
                    state = self.state[handle] = SGDParamState()

                if state.momentum_buffer is None:
                    # First step: the buffer starts as the gradient itself
                    buf = state.momentum_buffer = np.array(grad, dtype=p.data.dtype)
                else:
                    buf = state.momentum_buffer
                    buf *= options.momentum
                    buf += (1 - options.dampening) * grad

                if options.nesterov:
                    grad = grad + options.momentum * buf
                else:
                    grad = buf

            p.data -= options.lr * grad

    def save(self, archive: serialize.OutputArchive) -> None:
        serialize.write_state(archive, "state", self.state)

    def load(self, archive: serialize.InputArchive) -> None:
        self.state = serialize.read_state(archive, "state", SGDParamState)
