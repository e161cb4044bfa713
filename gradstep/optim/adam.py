from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from . import serialize
from .optimizer import Optimizer, ParamsLike
from .options import OptimizerOptions, ParamState


@dataclass
class AdamOptions(OptimizerOptions):
    lr: float = 0.001
    betas: Tuple[float, float] = (0.9, 0.999)
    eps: float = 1e-8
    weight_decay: float = 0.0
    amsgrad: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.lr:
            raise ValueError(f"Invalid learning rate: {self.lr}")
        if not 0.0 <= self.eps:
            raise ValueError(f"Invalid epsilon value: {self.eps}")
        if not 0.0 <= self.betas[0] < 1.0:
            raise ValueError(f"Invalid beta parameter at index 0: {self.betas[0]}")
        if not 0.0 <= self.betas[1] < 1.0:
            raise ValueError(f"Invalid beta parameter at index 1: {self.betas[1]}")
        if not 0.0 <= self.weight_decay:
            raise ValueError(f"Invalid weight_decay value: {self.weight_decay}")


@dataclass
class AdamParamState(ParamState):
    step: int = 0
    exp_avg: Optional[NDArray[Any]] = None
    exp_avg_sq: Optional[NDArray[Any]] = None
    max_exp_avg_sq: Optional[NDArray[Any]] = None


class Adam(Optimizer[AdamOptions, AdamParamState]):
    """
    Implements Adam algorithm.

    The Adam optimizer combines ideas from RMSprop and momentum optimization:
    - It uses exponential moving averages of gradients (like momentum)
    - It uses exponential moving averages of squared gradients (like RMSprop)
    - It includes bias correction for more accurate initial steps

    Args:
        params: Parameters or parameter groups to optimize
        lr: Learning rate (default: 0.001)
        betas: Coefficients for computing running averages of gradient and its square
            (default: (0.9, 0.999))
        eps: Term added to denominator to improve numerical stability (default: 1e-8)
        weight_decay: Weight decay (L2 penalty) (default: 0)
        amsgrad: Whether to use the AMSGrad variant (default: False)
    """

    def __init__(
        self,
        params: ParamsLike,
        lr: float = 0.001,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0,
        amsgrad: bool = False,
    ) -> None:
        defaults = AdamOptions(
            lr=lr, betas=tuple(betas), eps=eps, weight_decay=weight_decay, amsgrad=amsgrad
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
                state = self.state[handle] = AdamParamState(
                    exp_avg=np.zeros_like(p.data),
                    exp_avg_sq=np.zeros_like(p.data),
                    max_exp_avg_sq=np.zeros_like(p.data) if options.amsgrad else None,
                )

            beta1, beta2 = options.betas
            state.step += 1
            bias_correction1 = 1 - beta1**state.step
            bias_correction2 = 1 - beta2**state.step

            if options.weight_decay != 0:
                grad = grad + options.weight_decay * p.data

            # Decay the first and second moment running average coefficient
            state.exp_avg = beta1 * state.exp_avg + (1 - beta1) * grad
            state.exp_avg_sq = beta2 * state.exp_avg_sq + (1 - beta2) * grad * grad

            if options.amsgrad:
                if state.max_exp_avg_sq is None:
                    state.max_exp_avg_sq = np.zeros_like(p.data)
                # Normalize by the largest second moment seen so far
                state.max_exp_avg_sq = np.maximum(state.max_exp_avg_sq, state.exp_avg_sq)
                denom = np.sqrt(state.max_exp_avg_sq) / np.sqrt(bias_correction2) + options.eps
            else:
                denom = np.sqrt(state.exp_avg_sq) / np.sqrt(bias_correction2) + options.eps

            step_size = options.lr / bias_correction1
            p.data -= step_size * state.exp_avg / denom

    def save(self, archive: serialize.OutputArchive) -> None:
        serialize.write_state(archive, "state", self.state)

    def load(self, archive: serialize.InputArchive) -> None:
        self.state = serialize.read_state(archive, "state", AdamParamState)
