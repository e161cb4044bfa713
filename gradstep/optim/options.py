import copy
import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, TypeVar, Union

from ..core import Tensor
from .errors import InvalidArgumentError

O = TypeVar("O", bound="OptimizerOptions")


def check_ordered(params: Any) -> None:
    """Rejects unordered parameter collections."""
    if isinstance(params, (set, frozenset)):
        raise InvalidArgumentError(
            "optimizer parameters need to be organized in ordered collections, "
            "but the ordering of tensors in sets will change between runs"
        )


@dataclass
class OptimizerOptions:
    """
    Base class for an algorithm's hyperparameters.

    Concrete optimizers subclass this as a dataclass and validate their fields
    in ``__post_init__``. One instance serves as the optimizer-wide defaults;
    parameter groups may carry their own instance.
    """

    def clone(self: O) -> O:
        """Returns an independent copy of these options."""
        return copy.deepcopy(self)

    def replace(self: O, **overrides: Any) -> O:
        """
        Returns a copy with some fields overridden.

        Raises:
            InvalidArgumentError: If an override names an unknown option
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise InvalidArgumentError(
                f"Unknown option(s) for {type(self).__name__}: {', '.join(unknown)}"
            )
        return dataclasses.replace(self.clone(), **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class ParamState:
    """Base class for an algorithm's per-parameter state blob."""

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}


class ParamGroup:
    """
    An ordered collection of parameters sharing one options record.

    A group created without options receives a snapshot of the optimizer's
    defaults when it is registered.

    Args:
        params: Parameters of the group, in order
        options: Options overriding the optimizer defaults for this group
    """

    def __init__(
        self,
        params: Union[Tensor, Iterable[Tensor]],
        options: Optional[OptimizerOptions] = None,
    ) -> None:
        if isinstance(params, Tensor):
            params = [params]
        else:
            check_ordered(params)
        self.params: List[Tensor] = list(params)
        self.options = options

    def has_options(self) -> bool:
        return self.options is not None

    def set_options(self, options: OptimizerOptions) -> None:
        self.options = options

    def __len__(self) -> int:
        return len(self.params)

    def __iter__(self):
        return iter(self.params)

    def __repr__(self) -> str:
        return f"ParamGroup(params={len(self.params)}, options={self.options!r})"

    @classmethod
    def from_dict(
        cls, entry: Dict[str, Any], defaults: Optional[OptimizerOptions]
    ) -> "ParamGroup":
        """
        Builds a group from ``{"params": ..., **overrides}``.

        Overrides are applied on top of ``defaults``, so a group only has to
        name the options it changes.
        """
        if "params" not in entry:
            raise InvalidArgumentError("parameter group didn't specify a value of required 'params'")

        overrides = {key: value for key, value in entry.items() if key != "params"}
        if not overrides:
            return cls(entry["params"])
        if defaults is None:
            raise InvalidArgumentError(
                "parameter group overrides options but the optimizer has no defaults to override"
            )
        return cls(entry["params"], defaults.replace(**overrides))
