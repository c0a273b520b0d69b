"""
Core module for fem-immersed.

Provides mesh handling, materials, boundary conditions, configuration and the
global system accumulator.
"""

from .assembler import SparseSystem
from .bc import BoundaryConditionManager, BoundaryValues, DirichletCondition, ParsedFunction
from .config import IFEMConfig
from .errors import (
    ConfigurationError,
    IFEMError,
    NewtonConvergenceError,
    PointLocationError,
    SingularJacobianError,
)
from .material import FluidMaterial, SolidMaterial

__all__ = [
    "IFEMConfig",
    "SparseSystem",
    "BoundaryConditionManager",
    "BoundaryValues",
    "DirichletCondition",
    "ParsedFunction",
    "FluidMaterial",
    "SolidMaterial",
    "IFEMError",
    "ConfigurationError",
    "PointLocationError",
    "NewtonConvergenceError",
    "SingularJacobianError",
]
