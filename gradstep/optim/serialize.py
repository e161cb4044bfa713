"""
Archives for persisting optimizer state.

An :class:`OutputArchive` collects named values (scalars, arrays, tensors,
lists and nested archives); :func:`save` hands one to an optimizer's
``save()`` hook and writes it to disk. :func:`load` reads the file back into
an :class:`InputArchive` and hands it to the optimizer's ``load()`` hook.

Files are pickled, like the library's model checkpoints. Tensors are stored
as their data plus device, so they come back as fresh leaf tensors.
"""

import logging
import pickle
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Type, TypeVar, Union

import numpy as np

from ..core import Tensor
from .options import ParamState

logger = logging.getLogger(__name__)

_FORMAT = "gradstep.archive"
_VERSION = 1

S = TypeVar("S", bound=ParamState)
PathLike = Union[str, Path]


def _encode(value: Any) -> Any:
    if isinstance(value, OutputArchive):
        return ("archive", value._entries)
    if isinstance(value, Tensor):
        return ("tensor", value.data.copy(), str(value.device), value.requires_grad)
    if isinstance(value, np.ndarray):
        return ("array", value.copy())
    if isinstance(value, (list, tuple)):
        kind = "list" if isinstance(value, list) else "tuple"
        return (kind, [_encode(item) for item in value])
    if value is None or isinstance(value, (bool, int, float, str, np.generic)):
        return ("value", value)
    raise TypeError(f"Cannot write value of type {type(value).__name__} to an archive")


def _decode(entry: Any) -> Any:
    kind = entry[0]
    if kind == "archive":
        return InputArchive(entry[1])
    if kind == "tensor":
        _, data, device, requires_grad = entry
        return Tensor(data, requires_grad=requires_grad, device=device)
    if kind == "array":
        return entry[1]
    if kind == "list":
        return [_decode(item) for item in entry[1]]
    if kind == "tuple":
        return tuple(_decode(item) for item in entry[1])
    return entry[1]


class OutputArchive:
    """A write-only collection of named values."""

    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}

    def write(self, key: str, value: Any) -> None:
        """
        Writes ``value`` under ``key``.

        Raises:
            KeyError: If ``key`` was already written
            TypeError: If the value cannot be archived
        """
        if key in self._entries:
            raise KeyError(f"Key {key!r} already written to archive")
        self._entries[key] = _encode(value)

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def save_to(self, path: PathLike) -> None:
        """Writes the archive to ``path``."""
        path = Path(path)
        payload = {"format": _FORMAT, "version": _VERSION, "entries": self._entries}
        with open(path, "wb") as f:
            pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)
        logger.info("Wrote archive with %d entries to %s", len(self._entries), path)


class InputArchive:
    """A read-only collection of named values, as written by an OutputArchive."""

    def __init__(self, entries: Mapping[str, Any] = None) -> None:
        self._entries: Dict[str, Any] = dict(entries or {})

    @classmethod
    def load_from(cls, path: PathLike) -> "InputArchive":
        """
        Reads an archive from ``path``.

        Raises:
            ValueError: If the file does not hold an archive
        """
        path = Path(path)
        with open(path, "rb") as f:
            payload = pickle.load(f)

        if not isinstance(payload, dict) or payload.get("format") != _FORMAT:
            raise ValueError(f"{path} does not contain an optimizer archive")
        if payload.get("version") != _VERSION:
            raise ValueError(f"Unsupported archive version: {payload.get('version')}")

        logger.info("Read archive with %d entries from %s", len(payload["entries"]), path)
        return cls(payload["entries"])

    def read(self, key: str) -> Any:
        """
        Reads the value stored under ``key``.

        Raises:
            KeyError: If the archive has no such key
        """
        if key not in self._entries:
            raise KeyError(f"Key {key!r} not found in archive")
        return _decode(self._entries[key])

    def try_read(self, key: str, default: Any = None) -> Any:
        if key not in self._entries:
            return default
        return _decode(self._entries[key])

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def write_state(archive: OutputArchive, key: str, state: Mapping[int, ParamState]) -> None:
    """Writes a handle -> state blob map as a nested archive under ``key``."""
    states = OutputArchive()
    for handle in sorted(state):
        entry = OutputArchive()
        for name, value in state[handle].to_dict().items():
            entry.write(name, value)
        states.write(str(handle), entry)
    archive.write(key, states)


def read_state(archive: InputArchive, key: str, state_type: Type[S]) -> Dict[int, S]:
    """Reads back a state map written by :func:`write_state`."""
    states = archive.read(key)
    result: Dict[int, S] = {}
    for handle in states.keys():
        entry = states.read(handle)
        result[int(handle)] = state_type(**{name: entry.read(name) for name in entry.keys()})
    return result


def save(optimizer: Any, path: PathLike) -> None:
    """Serializes ``optimizer`` through its ``save()`` hook into the file at ``path``."""
    archive = OutputArchive()
    optimizer.save(archive)
    archive.save_to(path)


def load(optimizer: Any, path: PathLike) -> None:
    """Restores ``optimizer`` through its ``load()`` hook from the file at ``path``."""
    archive = InputArchive.load_from(path)
    optimizer.load(archive)
