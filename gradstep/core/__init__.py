"""
Core tensor runtime for gradstep.

Tensors, devices and the autograd machinery the optimizers are built on.
"""

from .autograd import AutogradEngine, get_autograd_engine
from .device import Device, as_device
from .function import Context, Function
from .tensor import Tensor, zeros_like

__all__ = [
    "Tensor",
    "Device",
    "Function",
    "Context",
    "AutogradEngine",
    "as_device",
    "get_autograd_engine",
    "zeros_like",
]
