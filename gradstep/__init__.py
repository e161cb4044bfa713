"""
gradstep: Optimizer parameter and state management on a numpy tensor runtime

This library provides the bookkeeping gradient-based optimizers are built on
(parameter groups, per-parameter state, lazily allocated buffers and the
step contracts) together with a small autograd runtime to drive it.
"""

from .core import Device, Function, Context, Tensor
from .ops import Add, Multiply, MatMul

__version__ = "0.1.0"

__all__ = [
    'Tensor',
    'Device',
    'Function',
    'Context',
    'Add',
    'Multiply',
    'MatMul',
]
