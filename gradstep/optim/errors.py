class OptimizerError(Exception):
    """Base class for errors raised by the optimizer layer."""


class InvalidArgumentError(OptimizerError, ValueError):
    """A parameter, group or option was rejected at registration time."""


class OutOfRangeError(OptimizerError, IndexError):
    """A buffer or parameter index lies outside what has been registered."""
