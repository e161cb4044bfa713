"""
Differentiable operations for gradstep tensors.

Only the arithmetic needed to express losses and models over parameters
lives here: elementwise add/multiply/divide/power, matrix products and
reductions.
"""

from .basic import Add, MatMul, Multiply
from .power import Divide, Power
from .reduction import Mean, Sum

__all__ = [
    "Add",
    "Multiply",
    "MatMul",
    "Power",
    "Divide",
    "Sum",
    "Mean",
]
