import copy
import logging
from abc import ABC, abstractmethod
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from ..core import Tensor
from .buffers import BufferTable, TensorBufferTable
from .errors import InvalidArgumentError
from .options import OptimizerOptions, ParamGroup, ParamState, check_ordered

logger = logging.getLogger(__name__)

OptionsT = TypeVar("OptionsT", bound=OptimizerOptions)
StateT = TypeVar("StateT", bound=ParamState)

GroupLike = Union[ParamGroup, Dict[str, Any]]
ParamsLike = Union[Iterable[Tensor], Iterable[GroupLike]]
LossClosure = Callable[[], Union[Tensor, float]]
# Top level has "state" (handle -> state blob) and "param_groups"
StateDict = Dict[str, Any]


class OptimizerBase(ABC, Generic[OptionsT, StateT]):
    """
    Base class for all optimizers, without a ``step()`` mechanism.

    This class is the registry every optimizer builds on. It holds the
    parameter groups, the optimizer-wide default options, a stable integer
    handle for every registered parameter and the per-parameter state map
    keyed by those handles. It knows nothing about how parameters are
    updated; see :class:`Optimizer` and :class:`LossClosureOptimizer` for the
    two step contracts.

    Handles are assigned in registration order and equal a parameter's
    position in :meth:`parameters`. They index both ``state`` and tensor
    buffer tables.

    Args:
        params: An iterable of parameters, or of parameter groups
            (:class:`ParamGroup` instances or ``{"params": ..., **overrides}``
            dicts)
        defaults: Options applied to every group that carries none. When
            omitted, ``params`` must be tensors and they form one implicit
            group without options.

    Raises:
        InvalidArgumentError: If a parameter is not a leaf tensor or appears
            more than once
    """

    _step_contract: Optional[str] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        contracts = {
            vars(klass)["_step_contract"]
            for klass in cls.__mro__
            if vars(klass).get("_step_contract") is not None
        }
        if len(contracts) > 1:
            raise TypeError(
                f"{cls.__name__} cannot implement both the step() and the step(closure) contract"
            )

    def __init__(self, params: ParamsLike, defaults: Optional[OptionsT] = None) -> None:
        if isinstance(params, Tensor):
            raise TypeError(
                "params argument given to the optimizer should be an iterable of "
                "Tensors or parameter groups, but got a Tensor"
            )

        self._defaults: Optional[OptionsT] = defaults
        self.param_groups: List[ParamGroup] = []
        self.state: Dict[int, StateT] = {}
        self._params: List[Tensor] = []
        self._handles: Dict[int, int] = {}
        self._implicit_group: Optional[ParamGroup] = None

        check_ordered(params)
        entries = list(params)
        is_group = [isinstance(entry, (ParamGroup, dict)) for entry in entries]

        if any(is_group):
            if not all(is_group):
                raise TypeError("params must be either all tensors or all parameter groups")
            for group in entries:
                self.add_param_group(group)
        elif defaults is None:
            self.add_parameters(entries)
        else:
            self.add_param_group(ParamGroup(entries))

    @property
    def defaults(self) -> Optional[OptionsT]:
        """The options given to groups registered without their own."""
        return self._defaults

    @defaults.setter
    def defaults(self, options: OptionsT) -> None:
        self._defaults = options

    def add_param_group(self, param_group: GroupLike) -> None:
        """
        Registers a group of parameters.

        A group without options receives a copy of the current defaults;
        changing the defaults later does not affect it. Registration is
        atomic: if any check fails nothing is added.

        Args:
            param_group: A :class:`ParamGroup`, or a dict with a ``"params"``
                entry plus any options to override on top of the defaults

        Raises:
            InvalidArgumentError: If a parameter is not a leaf tensor, is
                already registered, or the group has no options while the
                optimizer has no defaults
        """
        if isinstance(param_group, dict):
            param_group = ParamGroup.from_dict(param_group, self._defaults)
        elif not isinstance(param_group, ParamGroup):
            raise TypeError(f"Expected a ParamGroup or dict, got {type(param_group).__name__}")

        self._check_new_params(param_group.params)

        options = param_group.options
        if options is None:
            if self._defaults is None:
                raise InvalidArgumentError(
                    "parameter group has no options and the optimizer has no defaults"
                )
            options = self._defaults.clone()

        group = ParamGroup(param_group.params, options)
        self.param_groups.append(group)
        self._register(group.params)
        logger.debug(
            "Registered parameter group %d with %d parameters (%s options)",
            len(self.param_groups) - 1,
            len(group.params),
            "own" if param_group.has_options() else "default",
        )

    def add_parameters(self, parameters: Iterable[Tensor]) -> None:
        """
        Appends parameters to the implicit, option-less group.

        This is the flat registration path of optimizers constructed from
        bare parameters. It cannot be combined with :meth:`add_param_group`
        on the same optimizer.

        Raises:
            InvalidArgumentError: If explicit groups have been registered, or
                a parameter is not a leaf tensor or is already registered
        """
        if isinstance(parameters, Tensor):
            raise TypeError("add_parameters() expects an iterable of Tensors, got a Tensor")
        if any(group is not self._implicit_group for group in self.param_groups):
            raise InvalidArgumentError(
                "add_parameters() cannot be mixed with parameter groups, use add_param_group()"
            )

        check_ordered(parameters)
        parameters = list(parameters)
        self._check_new_params(parameters)

        if self._implicit_group is None:
            self._implicit_group = ParamGroup([])
            self.param_groups.append(self._implicit_group)
        self._implicit_group.params.extend(parameters)
        self._register(parameters)
        logger.debug("Appended %d parameters to the implicit group", len(parameters))

    def _check_new_params(self, params: List[Tensor]) -> None:
        seen = set()
        for param in params:
            if not isinstance(param, Tensor):
                raise InvalidArgumentError(
                    f"optimizer can only optimize Tensors, but one of the params is {type(param).__name__}"
                )
            if not param.is_leaf:
                raise InvalidArgumentError("can't optimize a non-leaf Tensor")
            if param.uid in self._handles or param.uid in seen:
                raise InvalidArgumentError("some parameters appear in more than one parameter group")
            seen.add(param.uid)

    def _register(self, params: List[Tensor]) -> None:
        for param in params:
            self._handles[param.uid] = len(self._params)
            self._params.append(param)

    def zero_grad(self) -> None:
        """
        Clears the gradients of all optimized parameters.

        Gradients are zeroed in place, so every gradient array keeps its
        identity and storage. Parameters without a gradient are left alone.
        """
        for group in self.param_groups:
            for p in group.params:
                if p.grad is not None:
                    p.grad.fill(0)

    def parameters(self) -> List[Tensor]:
        """Returns the registered parameters in registration (handle) order."""
        return list(self._params)

    def size(self) -> int:
        """Returns the number of registered parameters."""
        return len(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def handle_of(self, param: Tensor) -> int:
        """
        Returns the handle assigned to ``param`` at registration.

        Raises:
            KeyError: If ``param`` is not registered with this optimizer
        """
        try:
            return self._handles[param.uid]
        except KeyError:
            raise KeyError("Tensor is not registered with this optimizer") from None

    def state_of(self, param: Tensor) -> Optional[StateT]:
        """Returns the state blob of ``param``, or None if it has none yet."""
        return self.state.get(self.handle_of(param))

    def _iter_params(self) -> Iterator[Tuple[ParamGroup, int, Tensor]]:
        """Yields ``(group, handle, param)`` for every registered parameter."""
        for group in self.param_groups:
            for p in group.params:
                yield group, self._handles[p.uid], p

    def buffer_at(self, buffers: BufferTable, index: int) -> Any:
        """
        Accesses a buffer at the given index.

        For a :class:`TensorBufferTable`, missing slots up to ``index`` are
        filled with zero tensors shaped like their parameters, and the slot is
        converted to the device and dtype of parameter ``index`` if the
        parameter has moved since the buffer was created. Other tables grow
        with their zero value.

        Raises:
            OutOfRangeError: If ``index`` is negative, or is not a registered
                parameter for a tensor table
        """
        if isinstance(buffers, TensorBufferTable):
            return buffers.at(index, self._params)
        return buffers.at(index)

    def save(self, archive: Any) -> None:
        """
        Serializes the optimizer state into the given archive.

        The base implementation writes nothing; optimizers with state
        override it.
        """

    def load(self, archive: Any) -> None:
        """
        Restores the optimizer state from the given archive.

        The base implementation reads nothing; optimizers with state override
        it.
        """

    def state_dict(self) -> StateDict:
        """
        Returns the state of the optimizer as a dictionary.

        The state dictionary has two main components:
        - 'state': Maps parameter handles to their state blobs
        - 'param_groups': One entry per group with its parameter handles and
          options

        Returns:
            A deep copy of the optimizer state
        """
        return {
            "state": copy.deepcopy(self.state),
            "param_groups": [
                {
                    "params": [self._handles[p.uid] for p in group.params],
                    "options": copy.deepcopy(group.options),
                }
                for group in self.param_groups
            ],
        }

    def load_state_dict(self, state_dict: StateDict) -> None:
        """
        Loads the optimizer state from a dictionary.

        Groups are matched by position and must have the same sizes as the
        groups of this optimizer. Saved handles are translated to the handles
        of the parameters at the same positions.

        Raises:
            ValueError: If the group layout does not match
        """
        saved_groups = state_dict["param_groups"]
        if len(saved_groups) != len(self.param_groups):
            raise ValueError("loaded state dict has a different number of parameter groups")
        for saved, group in zip(saved_groups, self.param_groups):
            if len(saved["params"]) != len(group.params):
                raise ValueError(
                    "loaded state dict contains a parameter group that doesn't match "
                    "the size of optimizer's group"
                )

        handle_map = {}
        for saved, group in zip(saved_groups, self.param_groups):
            for old_handle, p in zip(saved["params"], group.params):
                handle_map[old_handle] = self._handles[p.uid]

        state: Dict[int, StateT] = {}
        for old_handle, blob in state_dict["state"].items():
            if old_handle not in handle_map:
                logger.warning("Dropping state for unknown parameter handle %s", old_handle)
                continue
            state[handle_map[old_handle]] = copy.deepcopy(blob)

        for saved, group in zip(saved_groups, self.param_groups):
            if saved["options"] is not None:
                group.options = copy.deepcopy(saved["options"])
        self.state = state


class Optimizer(OptimizerBase[OptionsT, StateT]):
    """
    Optimizer with a ``step()`` that takes no arguments and returns nothing.

    The only effect of a step is the in-place update of parameters (and of
    the optimizer's own state). Gradients must already be populated by a
    backward pass; ``step()`` never computes them.
    """

    _step_contract = "step"

    @abstractmethod
    def step(self) -> None:
        """Performs a single optimization step."""
        raise NotImplementedError


class LossClosureOptimizer(OptimizerBase[OptionsT, StateT]):
    """
    Optimizer that needs the loss function supplied to ``step()``.

    Algorithms such as conjugate gradient and LBFGS evaluate the loss several
    times per step. The closure recomputes the loss, repopulates the
    gradients and returns the loss; ``step()`` returns the loss of the
    evaluation its final parameter update was based on.
    """

    _step_contract = "closure"

    @abstractmethod
    def step(self, closure: LossClosure) -> Union[Tensor, float]:
        """
        Performs a single optimization step.

        Args:
            closure: Re-evaluates the model and returns the loss
        """
        raise NotImplementedError
