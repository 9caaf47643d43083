"""
Exception types raised by compass-mcmc.

Shape, parameter and active-set errors are precondition violations: they are
raised before any sampling starts and a chain never tries to recover from
them. Numerical underflow inside a Dirichlet draw is not an error; it is
clamped and renormalized where it happens.
"""


class CompassError(Exception):
    """Base class for all compass-mcmc errors."""
    pass


class ShapeMismatchError(CompassError, ValueError):
    """Raised when count matrices or parameter vectors disagree with I/K."""
    pass


class InvalidParameterError(CompassError, ValueError):
    """Raised for non-positive or non-finite rates, variances or concentrations."""
    pass


class InvalidActiveSetError(CompassError, ValueError):
    """Raised when an active category set is internally inconsistent."""
    pass


class CellCountError(CompassError, ValueError):
    """Raised when cell tables or category definitions cannot be counted."""
    pass
