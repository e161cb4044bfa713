import copy
import logging
from typing import Any, Generic, Iterator, List, Sequence, TypeVar

from ..core import Tensor, zeros_like
from .errors import OutOfRangeError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BufferTable(Generic[T]):
    """
    A lazily grown, indexed collection of auxiliary values.

    Slot ``i`` belongs to the parameter with handle ``i``. Accessing an index
    past the end grows the table and fills every new slot with its own copy
    of ``zero``.

    Args:
        zero: Value new slots start with (e.g. ``0`` for step counters)
    """

    def __init__(self, zero: T = 0) -> None:
        self.zero = zero
        self._slots: List[T] = []

    def at(self, index: int) -> T:
        """Returns slot ``index``, growing the table first if needed."""
        if index < 0:
            raise OutOfRangeError(f"Buffer index must be non-negative, got {index}")
        if index >= len(self._slots):
            logger.debug("Growing %s from %d to %d slots", type(self).__name__, len(self._slots), index + 1)
            # One copy of zero per slot
            self._slots.extend(copy.copy(self.zero) for _ in range(index + 1 - len(self._slots)))
        return self._slots[index]

    def __getitem__(self, index: int) -> T:
        return self._slots[index]

    def __setitem__(self, index: int, value: T) -> None:
        self._slots[index] = value

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[T]:
        return iter(self._slots)

    def clear(self) -> None:
        self._slots.clear()

    def load(self, values: Sequence[Any]) -> None:
        """Replaces the whole table, e.g. with values read back from an archive."""
        self._slots = list(values)


class TensorBufferTable(BufferTable[Tensor]):
    """
    A buffer table holding one tensor per parameter.

    New slots are zero tensors shaped like their parameter. Every access also
    checks the slot against the parameter's current device and dtype and
    replaces it with a converted copy when the parameter has moved, so a
    buffer allocated before ``param.to_(...)`` keeps its values but follows
    the parameter.
    """

    def __init__(self) -> None:
        super().__init__(zero=None)

    def at(self, index: int, parameters: Sequence[Tensor] = ()) -> Tensor:  # type: ignore[override]
        """
        Returns the buffer for parameter ``index``.

        Args:
            index: Parameter handle
            parameters: The optimizer's registered parameters, by handle

        Raises:
            OutOfRangeError: If ``index`` is not a registered parameter
        """
        if index < 0 or index >= len(parameters):
            raise OutOfRangeError(
                f"Buffer index {index} out of range for {len(parameters)} registered parameters"
            )

        if index >= len(self._slots):
            logger.debug("Growing %s from %d to %d slots", type(self).__name__, len(self._slots), index + 1)
            for i in range(len(self._slots), index + 1):
                self._slots.append(zeros_like(parameters[i]))

        parameter = parameters[index]
        buffer = self._slots[index]
        if buffer.device != parameter.device or buffer.dtype != parameter.dtype:
            logger.debug(
                "Converting buffer %d from %s/%s to %s/%s",
                index,
                buffer.device,
                buffer.dtype,
                parameter.device,
                parameter.dtype,
            )
            self._slots[index] = buffer.to(parameter.device, parameter.dtype)
        return self._slots[index]

    def load(self, values: Sequence[Any]) -> None:
        self._slots = [v if isinstance(v, Tensor) else Tensor(v) for v in values]
