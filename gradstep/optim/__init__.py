"""
Optimization for gradstep.

The optimizer core (parameter registration, parameter groups, per-parameter
state, buffer tables and the two step contracts) plus the algorithms built
on it.
"""

from . import serialize
from .adagrad import AdaGrad, AdaGradOptions
from .adam import Adam, AdamOptions, AdamParamState
from .buffers import BufferTable, TensorBufferTable
from .errors import InvalidArgumentError, OptimizerError, OutOfRangeError
from .lbfgs import LBFGS, LBFGSOptions, LBFGSParamState
from .optimizer import LossClosureOptimizer, Optimizer, OptimizerBase
from .options import OptimizerOptions, ParamGroup, ParamState
from .rmsprop import RMSprop, RMSpropOptions, RMSpropParamState
from .sgd import SGD, SGDOptions, SGDParamState

__all__ = [
    "OptimizerBase",
    "Optimizer",
    "LossClosureOptimizer",
    "OptimizerOptions",
    "ParamGroup",
    "ParamState",
    "BufferTable",
    "TensorBufferTable",
    "OptimizerError",
    "InvalidArgumentError",
    "OutOfRangeError",
    "SGD",
    "SGDOptions",
    "SGDParamState",
    "Adam",
    "AdamOptions",
    "AdamParamState",
    "RMSprop",
    "RMSpropOptions",
    "RMSpropParamState",
    "AdaGrad",
    "AdaGradOptions",
    "LBFGS",
    "LBFGSOptions",
    "LBFGSParamState",
    "serialize",
]
