"""Global quantities logged at every time step."""

from typing import Tuple

import numpy as np

from fem_immersed.elements.quadrature import QuadratureRule
from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues, FaceValues
from fem_immersed.fem.mapping import DeformedMapping


class BoundaryFlux:
    """
    Net flux ∫∂Ω u·n ds of the fluid velocity through the control volume boundary.

    Parameters
    ----------
    dof_handler : DoFHandler
        Fluid dof layout.
    rule : QuadratureRule
        Face quadrature of dimension ``dim - 1``.
    """

    def __init__(self, dof_handler: DoFHandler, rule: QuadratureRule):
        self.dof_handler = dof_handler
        facets = dof_handler.boundary_facets
        self.cells = facets.cells
        self.values = FaceValues(
            dof_handler.fe.base, dof_handler.mesh.cell_coords[facets.cells], facets.faces, rule
        )

    def __call__(self, xi: np.ndarray) -> float:
        dh = self.dof_handler
        local = dh.local_vector_values(xi)[self.cells]
        u = self.values.vector_field(local)
        return float(np.einsum("fqk,fqk,fq->", u, self.values.normals, self.values.JxW))


def solid_area_and_centre(
    mapping: DeformedMapping, values: CellValues
) -> Tuple[float, np.ndarray]:
    """
    Area (volume) and centre of mass of the deformed solid.

    Parameters
    ----------
    mapping : DeformedMapping
        Current configuration of the solid.
    values : CellValues
        Solid quadrature in the reference configuration, matching ``mapping``.

    Returns
    -------
    area : float
        ∫ det F dX.
    centre : np.ndarray
        ∫ x det F dX / area.
    """
    dV = np.linalg.det(mapping.deformation_gradient) * values.JxW
    area = float(np.sum(dV))
    centre = np.einsum("cqi,cq->i", mapping.points, dV) / area
    return area, centre
