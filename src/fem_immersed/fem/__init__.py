"""
Finite element machinery shared by the fluid and solid discretizations.

- DoFHandler: global dof numbering and boundary dof queries
- CellValues / FaceValues: shape functions mapped to physical cells
- FieldEvaluator: point location and field evaluation at arbitrary points
- DeformedMapping: current configuration of the immersed solid
"""

from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues, FaceValues
from fem_immersed.fem.field import FieldEvaluator, PointLocations
from fem_immersed.fem.mapping import DeformedMapping

__all__ = [
    "DoFHandler",
    "CellValues",
    "FaceValues",
    "FieldEvaluator",
    "PointLocations",
    "DeformedMapping",
]
