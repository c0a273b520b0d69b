"""
Exception hierarchy for immersed FEM simulations.

All errors derive from ``IFEMError`` and from the builtin exception that best
matches their nature, so callers may catch either.
"""


class IFEMError(Exception):
    """Base class for all fem-immersed errors."""


class ConfigurationError(IFEMError, ValueError):
    """Invalid or inconsistent simulation configuration."""


class PointLocationError(IFEMError, ValueError):
    """A physical point could not be located in the mesh."""


class NewtonConvergenceError(IFEMError, RuntimeError):
    """The nonlinear solver exhausted its iteration budget."""

    def __init__(self, message: str, iterations: int = 0, residual_norm: float = float("nan")):
        super().__init__(message)
        self.iterations = iterations
        self.residual_norm = residual_norm


class SingularJacobianError(IFEMError, RuntimeError):
    """The Jacobian matrix could not be factored."""
