import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

import numpy as np
from numpy.typing import NDArray

from ..core import Tensor
from . import serialize
from .errors import InvalidArgumentError
from .optimizer import GroupLike, LossClosure, LossClosureOptimizer, ParamsLike
from .options import OptimizerOptions, ParamState

logger = logging.getLogger(__name__)


@dataclass
class LBFGSOptions(OptimizerOptions):
    lr: float = 1.0
    max_iter: int = 20
    max_eval: Optional[int] = None
    tolerance_grad: float = 1e-5
    tolerance_change: float = 1e-9
    history_size: int = 100

    def __post_init__(self) -> None:
        if not 0.0 <= self.lr:
            raise ValueError(f"Invalid learning rate: {self.lr}")
        if self.max_iter < 1:
            raise ValueError(f"Invalid max_iter value: {self.max_iter}")
        if self.max_eval is None:
            self.max_eval = self.max_iter * 5 // 4
        if self.max_eval < 1:
            raise ValueError(f"Invalid max_eval value: {self.max_eval}")
        if self.history_size < 1:
            raise ValueError(f"Invalid history_size value: {self.history_size}")


@dataclass
class LBFGSParamState(ParamState):
    func_evals: int = 0
    n_iter: int = 0
    d: Optional[NDArray[Any]] = None
    t: Optional[float] = None
    old_dirs: List[NDArray[Any]] = field(default_factory=list)
    old_stps: List[NDArray[Any]] = field(default_factory=list)
    ro: List[float] = field(default_factory=list)
    H_diag: float = 1.0
    prev_flat_grad: Optional[NDArray[Any]] = None
    prev_loss: Optional[float] = None


class LBFGS(LossClosureOptimizer[LBFGSOptions, LBFGSParamState]):
    """
    Implements the L-BFGS algorithm with a fixed step size.

    L-BFGS approximates the inverse Hessian from the last ``history_size``
    pairs of parameter and gradient differences and steps along the
    resulting quasi-Newton direction. Each ``step()`` runs up to
    ``max_iter`` iterations and re-evaluates the loss through the closure
    after every update.

    All parameters are treated as a single flat vector, so only one
    parameter group is supported. The whole algorithm state is stored under
    the handle of the first parameter.

    Args:
        params: Parameters to optimize
        lr: Step size (default: 1)
        max_iter: Maximal number of iterations per step (default: 20)
        max_eval: Maximal number of closure evaluations per step
            (default: max_iter * 1.25)
        tolerance_grad: Termination tolerance on first order optimality
            (default: 1e-5)
        tolerance_change: Termination tolerance on loss and parameter
            changes (default: 1e-9)
        history_size: Update history size (default: 100)
    """

    def __init__(
        self,
        params: ParamsLike,
        lr: float = 1,
        max_iter: int = 20,
        max_eval: Optional[int] = None,
        tolerance_grad: float = 1e-5,
        tolerance_change: float = 1e-9,
        history_size: int = 100,
    ) -> None:
        defaults = LBFGSOptions(
            lr=lr,
            max_iter=max_iter,
            max_eval=max_eval,
            tolerance_grad=tolerance_grad,
            tolerance_change=tolerance_change,
            history_size=history_size,
        )
        super().__init__(params, defaults)

    def add_param_group(self, param_group: GroupLike) -> None:
        if self.param_groups:
            raise InvalidArgumentError("LBFGS doesn't support per-parameter options (parameter groups)")
        super().add_param_group(param_group)

    @property
    def _group_params(self) -> List[Tensor]:
        return self.param_groups[0].params if self.param_groups else []

    def _gather_flat_grad(self) -> NDArray[Any]:
        views = []
        for p in self._group_params:
            if p.grad is None:
                views.append(np.zeros(p.data.size))
            else:
                views.append(np.asarray(p.grad, dtype=np.float64).ravel())
        if not views:
            return np.zeros(0)
        return np.concatenate(views)

    def _add_grad(self, step_size: float, direction: NDArray[Any]) -> None:
        offset = 0
        for p in self._group_params:
            numel = p.data.size
            update = direction[offset : offset + numel].reshape(p.shape)
            p.data += (step_size * update).astype(p.dtype, copy=False)
            offset += numel

    def step(self, closure: LossClosure) -> Union[Tensor, float]:
        """
        Performs a single optimization step.

        Args:
            closure: Re-evaluates the model, repopulates the gradients and
                returns the loss

        Returns:
            The loss returned by the closure evaluation whose gradients
            determined the last parameter update (the first evaluation when
            no update was made)
        """
        options = self.param_groups[0].options
        lr = options.lr
        max_iter = options.max_iter
        max_eval = options.max_eval
        tolerance_grad = options.tolerance_grad
        tolerance_change = options.tolerance_change
        history_size = options.history_size

        state = self.state.get(0)
        if state is None:
            state = self.state[0] = LBFGSParamState()

        # Evaluate initial loss and gradient
        loss_value = closure()
        result = loss_value
        loss = float(loss_value)
        current_evals = 1
        state.func_evals += 1

        flat_grad = self._gather_flat_grad()
        if flat_grad.size == 0 or np.abs(flat_grad).max() <= tolerance_grad:
            logger.debug("LBFGS: initial gradient already below tolerance_grad")
            return result

        d = state.d
        t = state.t
        old_dirs = state.old_dirs
        old_stps = state.old_stps
        ro = state.ro
        H_diag = state.H_diag
        prev_flat_grad = state.prev_flat_grad
        prev_loss = state.prev_loss

        n_iter = 0
        while n_iter < max_iter:
            n_iter += 1
            state.n_iter += 1

            # Compute the descent direction
            if state.n_iter == 1:
                d = -flat_grad
                old_dirs = []
                old_stps = []
                ro = []
                H_diag = 1.0
            else:
                y = flat_grad - prev_flat_grad
                s = d * t
                ys = float(y.dot(s))
                if ys > 1e-10:
                    if len(old_dirs) == history_size:
                        old_dirs.pop(0)
                        old_stps.pop(0)
                        ro.pop(0)
                    old_dirs.append(y)
                    old_stps.append(s)
                    ro.append(1.0 / ys)
                    H_diag = ys / float(y.dot(y))

                # Two-loop recursion for the approximate inverse Hessian product
                num_old = len(old_dirs)
                al = [0.0] * num_old
                q = -flat_grad
                for i in range(num_old - 1, -1, -1):
                    al[i] = float(old_stps[i].dot(q)) * ro[i]
                    q = q - al[i] * old_dirs[i]

                d = r = q * H_diag
                for i in range(num_old):
                    be_i = float(old_dirs[i].dot(r)) * ro[i]
                    r += old_stps[i] * (al[i] - be_i)

            prev_flat_grad = flat_grad.copy()
            prev_loss = loss

            # The first step is scaled down to the gradient's magnitude
            if state.n_iter == 1:
                t = min(1.0, 1.0 / float(np.abs(flat_grad).sum())) * lr
            else:
                t = lr

            gtd = float(flat_grad.dot(d))
            if gtd > -tolerance_change:
                logger.debug("LBFGS: stopped after %d iterations, not a descent direction", n_iter)
                break

            result = loss_value
            self._add_grad(t, d)

            if n_iter != max_iter:
                loss_value = closure()
                loss = float(loss_value)
                flat_grad = self._gather_flat_grad()
                current_evals += 1
                state.func_evals += 1
                opt_cond = np.abs(flat_grad).max() <= tolerance_grad
            else:
                opt_cond = False

            if n_iter == max_iter:
                logger.debug("LBFGS: reached max_iter (%d)", max_iter)
                break
            if current_evals >= max_eval:
                logger.debug("LBFGS: reached max_eval (%d)", max_eval)
                break
            if opt_cond:
                logger.debug("LBFGS: gradient below tolerance_grad after %d iterations", n_iter)
                break
            if np.abs(d * t).max() <= tolerance_change:
                logger.debug("LBFGS: parameter change below tolerance_change after %d iterations", n_iter)
                break
            if abs(loss - prev_loss) < tolerance_change:
                logger.debug("LBFGS: loss change below tolerance_change after %d iterations", n_iter)
                break

        state.d = d
        state.t = t
        state.old_dirs = old_dirs
        state.old_stps = old_stps
        state.ro = ro
        state.H_diag = H_diag
        state.prev_flat_grad = prev_flat_grad
        state.prev_loss = prev_loss

        return result

    def save(self, archive: serialize.OutputArchive) -> None:
        serialize.write_state(archive, "state", self.state)

    def load(self, archive: serialize.InputArchive) -> None:
        self.state = serialize.read_state(archive, "state", LBFGSParamState)
