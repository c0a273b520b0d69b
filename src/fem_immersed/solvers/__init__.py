from .constraints import ConstraintEnforcer
from .coupling import CouplingAssembler, CouplingGraph
from .domain import DomainAssembler, PressureAverage
from .ifem import ImmersedFEMSolver, build_mesh
from .newton import LinearSolver, NewtonReport, NewtonSolver, NewtonState
from .runner import IFEMRunner, run_from_yaml

__all__ = [
    "ConstraintEnforcer",
    "CouplingAssembler",
    "CouplingGraph",
    "DomainAssembler",
    "PressureAverage",
    "ImmersedFEMSolver",
    "build_mesh",
    "LinearSolver",
    "NewtonReport",
    "NewtonSolver",
    "NewtonState",
    "IFEMRunner",
    "run_from_yaml",
]
