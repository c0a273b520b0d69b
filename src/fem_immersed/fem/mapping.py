"""Deformed configuration of the immersed solid."""

from dataclasses import dataclass

import numpy as np

from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues


def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=float)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class DeformedMapping:
    """
    Map x(X) = X + w(X) from the reference solid to the current configuration.

    Built once per residual evaluation from a given displacement and never
    modified afterwards; all arrays are read-only.

    Attributes
    ----------
    displacement : np.ndarray
        Copy of the solid displacement dofs the mapping was built from.
    reference_points : np.ndarray
        Quadrature points X in the reference configuration (n_cells x nq x dim).
    points : np.ndarray
        Mapped quadrature points x = X + w(X).
    displacement_values : np.ndarray
        w at the quadrature points.
    deformation_gradient : np.ndarray
        F = I + ∇w at the quadrature points (n_cells x nq x dim x dim).
    """

    displacement: np.ndarray
    reference_points: np.ndarray
    points: np.ndarray
    displacement_values: np.ndarray
    deformation_gradient: np.ndarray

    @classmethod
    def build(
        cls, dof_handler: DoFHandler, values: CellValues, displacement: np.ndarray
    ) -> "DeformedMapping":
        """
        Evaluate the mapping at the quadrature points of ``values``.

        Parameters
        ----------
        dof_handler : DoFHandler
            Dof layout of the solid displacement.
        values : CellValues
            Solid shape functions at the quadrature points.
        displacement : np.ndarray
            Solid displacement dofs.
        """
        displacement = _frozen(displacement)
        local = dof_handler.local_vector_values(displacement)
        w = values.vector_field(local)
        grad_w = values.vector_gradient(local)
        F = grad_w + np.eye(dof_handler.dim)
        return cls(
            displacement=displacement,
            reference_points=_frozen(values.points),
            points=_frozen(values.points + w),
            displacement_values=_frozen(w),
            deformation_gradient=_frozen(F),
        )

    @property
    def flat_points(self) -> np.ndarray:
        """Mapped quadrature points as a (n_cells * nq) x dim array."""
        return self.points.reshape(-1, self.points.shape[-1])

    def deformed_vertices(self, dof_handler: DoFHandler) -> np.ndarray:
        """Current position of every mesh vertex."""
        return dof_handler.mesh.coords_array + self.vertex_displacements(dof_handler)

    def vertex_displacements(self, dof_handler: DoFHandler) -> np.ndarray:
        nc = dof_handler.fe.n_components
        nodal = self.displacement[: dof_handler.n_vector_dofs].reshape(-1, nc)
        return nodal[dof_handler.vertex_nodes]
