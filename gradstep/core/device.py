from typing import Optional, Union


class Device:
    """
    A logical placement for tensor storage.

    All storage is host memory backed by numpy, so the only device type is
    ``cpu``. The optional index distinguishes placements the way accelerator
    ordinals would, which lets code that has to follow a tensor across moves
    (optimizer buffers, for example) be exercised without special hardware.

    Args:
        spec: A device string such as ``"cpu"`` or ``"cpu:1"``, or another Device
        index: Optional device index, only allowed when ``spec`` has none
    """

    TYPES = ("cpu",)

    def __init__(self, spec: Union[str, "Device"] = "cpu", index: Optional[int] = None):
        if isinstance(spec, Device):
            if index is not None and spec.index is not None:
                raise ValueError(f"Device {spec} already has an index")
            self.type = spec.type
            self.index = spec.index if index is None else index
            return

        device_type, _, raw_index = spec.partition(":")
        if device_type not in self.TYPES:
            raise ValueError(f"Unknown device type: {device_type!r}")
        if raw_index:
            if index is not None:
                raise ValueError(f"Device {spec!r} already has an index")
            if not raw_index.isdigit():
                raise ValueError(f"Invalid device index: {raw_index!r}")
            index = int(raw_index)
        if index is not None and index < 0:
            raise ValueError(f"Device index must be non-negative, got {index}")

        self.type = device_type
        self.index = index

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            other = Device(other)
        if not isinstance(other, Device):
            return NotImplemented
        # "cpu" and "cpu:0" name the same placement
        return self.type == other.type and (self.index or 0) == (other.index or 0)

    def __hash__(self) -> int:
        return hash((self.type, self.index or 0))

    def __str__(self) -> str:
        return self.type if self.index is None else f"{self.type}:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"


DeviceLike = Union[str, Device]


def as_device(device: Optional[DeviceLike]) -> Device:
    """Normalizes a device string (or None, meaning cpu) into a Device."""
    if device is None:
        return Device()
    if isinstance(device, Device):
        return device
    return Device(device)
