import copy
from dataclasses import dataclass

import numpy as np

from .buffers import BufferTable, TensorBufferTable
from .optimizer import Optimizer, ParamsLike, StateDict
from .options import OptimizerOptions, ParamState
from .serialize import InputArchive, OutputArchive


@dataclass
class AdaGradOptions(OptimizerOptions):
    lr: float = 1e-2
    lr_decay: float = 0.0
    weight_decay: float = 0.0
    initial_accumulator_value: float = 0.0
    eps: float = 1e-10

    def __post_init__(self) -> None:
        if not 0.0 <= self.lr:
            raise ValueError(f"Invalid learning rate: {self.lr}")
        if not 0.0 <= self.lr_decay:
            raise ValueError(f"Invalid lr_decay value: {self.lr_decay}")
        if not 0.0 <= self.weight_decay:
            raise ValueError(f"Invalid weight_decay value: {self.weight_decay}")
        if not 0.0 <= self.initial_accumulator_value:
            raise ValueError(
                f"Invalid initial_accumulator_value value: {self.initial_accumulator_value}"
            )
        if not 0.0 <= self.eps:
            raise ValueError(f"Invalid epsilon value: {self.eps}")


class AdaGrad(Optimizer[AdaGradOptions, ParamState]):
    """
    Implements AdaGrad algorithm.

    AdaGrad is an optimizer with parameter-specific learning rates,
    which are adapted based on historical gradient information. It performs
    smaller updates for frequently occurring features and larger updates
    for infrequent ones.

    Unlike the other optimizers, AdaGrad keeps its accumulators in buffer
    tables indexed by parameter handle rather than in ``state``: the squared
    gradient sums live in a :class:`TensorBufferTable` (so they follow their
    parameter across devices and dtypes) and the step counts in a plain
    :class:`BufferTable`.

    Args:
        params: Parameters or parameter groups to optimize
        lr: Learning rate (default: 1e-2)
        lr_decay: Learning rate decay (default: 0)
        weight_decay: Weight decay (L2 penalty) (default: 0)
        initial_accumulator_value: Initial value for accumulator (default: 0)
        eps: Term added to denominator to improve numerical stability (default: 1e-10)
    """

    def __init__(
        self,
        params: ParamsLike,
        lr: float = 1e-2,
        lr_decay: float = 0,
        weight_decay: float = 0,
        initial_accumulator_value: float = 0,
        eps: float = 1e-10,
    ) -> None:
        self.sum_buffers = TensorBufferTable()
        self.step_buffers: BufferTable[int] = BufferTable(zero=0)
        defaults = AdaGradOptions(
            lr=lr,
            lr_decay=lr_decay,
            weight_decay=weight_decay,
            initial_accumulator_value=initial_accumulator_value,
            eps=eps,
        )
        super().__init__(params, defaults)

    def step(self) -> None:
        """
        Performs a single optimization step.

        For each parameter p, accumulates the square of the gradient and then
        updates the parameter using the formula:
        p = p - lr * g / (sqrt(accumulator) + eps)
        where g is the gradient.
        """
        for group, handle, p in self._iter_params():
            if p.grad is None:
                continue

            options = group.options
            grad = p.grad
            accumulator = self.buffer_at(self.sum_buffers, handle)
            step = self.buffer_at(self.step_buffers, handle)

            if step == 0 and options.initial_accumulator_value != 0:
                accumulator.data.fill(options.initial_accumulator_value)

            step += 1
            self.step_buffers[handle] = step

            if options.weight_decay != 0:
                grad = grad + options.weight_decay * p.data

            accumulator.data += grad * grad
            denom = np.sqrt(accumulator.data) + options.eps

            lr = options.lr
            if options.lr_decay != 0:
                lr = lr / (1 + (step - 1) * options.lr_decay)

            p.data -= lr * grad / denom

    def reset_state(self) -> None:
        """
        Resets the accumulators and step counts of every parameter.

        The next step starts over as if the optimizer had just been created.
        """
        self.sum_buffers.clear()
        self.step_buffers.clear()

    def save(self, archive: OutputArchive) -> None:
        archive.write("sum_buffers", list(self.sum_buffers))
        archive.write("step_buffers", list(self.step_buffers))

    def load(self, archive: InputArchive) -> None:
        self.sum_buffers.load(archive.read("sum_buffers"))
        self.step_buffers.load(archive.read("step_buffers"))

    def state_dict(self) -> StateDict:
        """Returns the optimizer state, including the accumulator and step buffers."""
        state = super().state_dict()
        state["sum_buffers"] = copy.deepcopy(list(self.sum_buffers))
        state["step_buffers"] = list(self.step_buffers)
        return state

    def load_state_dict(self, state_dict: StateDict) -> None:
        super().load_state_dict(state_dict)
        # Buffer slots are indexed by handle, which matches across equal group layouts
        self.sum_buffers.load(copy.deepcopy(state_dict.get("sum_buffers", [])))
        self.step_buffers.load(state_dict.get("step_buffers", []))
