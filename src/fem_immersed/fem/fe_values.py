"""Shape functions, gradients and Hessians mapped to physical cells

The geometry of every cell is described by the bilinear (trilinear) map of its
vertices, x(ξ) = Σ_v X_v N_v(ξ), and the derivatives transform as

    ∇_x N = J⁻ᵀ ∇_ξ N
    ∇²_x N = J⁻ᵀ (∇²_ξ N − Σ_k ∂N/∂x_k ∇²_ξ x_k) J⁻¹

with J = ∂x/∂ξ. Everything is evaluated for all cells at once; arrays are
indexed as [cell, quadrature point, basis function, ...].
"""

from functools import lru_cache
from typing import Optional

import numpy as np

from fem_immersed.elements.lagrange import FE_Q, ScalarElement
from fem_immersed.elements.quadrature import QuadratureRule


@lru_cache(maxsize=None)
def geometry_element(dim: int) -> FE_Q:
    """Q1 element describing the cell geometry."""
    return FE_Q(1, dim)


class CellValues:
    """
    Element values at quadrature (or arbitrary reference) points of many cells.

    Parameters
    ----------
    element : ScalarElement
        Element whose shape functions are evaluated.
    cell_coords : np.ndarray
        Vertex coordinates in lexicographic order (n_cells x 2**dim x dim).
    ref_points : np.ndarray
        Reference points, either shared by every cell (nq x dim) or given per
        cell (n_cells x nq x dim).
    weights : np.ndarray, optional
        Quadrature weights (nq,). Without weights ``JxW`` is unavailable.
    hessians : bool, optional
        Also compute physical second derivatives. Default is False.

    Attributes
    ----------
    points : np.ndarray
        Physical coordinates (n_cells x nq x dim).
    values : np.ndarray
        Shape function values (n_cells x nq x n_dofs).
    gradients : np.ndarray
        Physical gradients (n_cells x nq x n_dofs x dim).
    hessians : np.ndarray or None
        Physical Hessians (n_cells x nq x n_dofs x dim x dim).
    JxW : np.ndarray or None
        |det J| times the quadrature weight (n_cells x nq).
    """

    def __init__(
        self,
        element: ScalarElement,
        cell_coords: np.ndarray,
        ref_points: np.ndarray,
        weights: Optional[np.ndarray] = None,
        hessians: bool = False,
    ):
        cell_coords = np.asarray(cell_coords, dtype=float)
        ref_points = np.asarray(ref_points, dtype=float)
        n_cells, _, dim = cell_coords.shape
        if ref_points.ndim == 2:
            ref_points = np.broadcast_to(ref_points, (n_cells,) + ref_points.shape)

        self.element = element
        self.dim = dim
        self.n_cells = n_cells
        self.ref_points = ref_points
        self.n_points = ref_points.shape[1]

        geometry = geometry_element(dim)
        geo_values = geometry.values(ref_points)
        geo_grads = geometry.gradients(ref_points)

        self.points = np.einsum("cqv,cvi->cqi", geo_values, cell_coords)
        self.jacobians = np.einsum("cvi,cqvj->cqij", cell_coords, geo_grads)
        self.determinants = np.linalg.det(self.jacobians)
        if np.any(self.determinants <= 0.0):
            bad = np.unique(np.nonzero(self.determinants <= 0.0)[0])
            raise ValueError(f"Non-positive Jacobian determinant in cells {bad.tolist()}")
        inverse = np.linalg.inv(self.jacobians)
        self.inverse_jacobians = inverse

        self.values = element.values(ref_points)
        self.gradients = np.einsum("cqbj,cqji->cqbi", element.gradients(ref_points), inverse)

        self.hessians = None
        if hessians:
            geo_hess = geometry.hessians(ref_points)
            # ∂²x_k/∂ξ_j∂ξ_l
            d2x = np.einsum("cvk,cqvjl->cqkjl", cell_coords, geo_hess)
            corrected = element.hessians(ref_points) - np.einsum(
                "cqbk,cqkjl->cqbjl", self.gradients, d2x
            )
            self.hessians = np.einsum("cqji,cqbjl,cqlm->cqbim", inverse, corrected, inverse)

        self.JxW = None
        if weights is not None:
            self.JxW = self.determinants * np.asarray(weights, dtype=float)

    @classmethod
    def from_rule(
        cls,
        element: ScalarElement,
        cell_coords: np.ndarray,
        rule: QuadratureRule,
        hessians: bool = False,
    ) -> "CellValues":
        return cls(element, cell_coords, rule.points, rule.weights, hessians)

    def scalar_field(self, local: np.ndarray) -> np.ndarray:
        """Values of a scalar field with local coefficients (n_cells x n_dofs)."""
        return np.einsum("cqb,cb->cq", self.values, local)

    def vector_field(self, local: np.ndarray) -> np.ndarray:
        """Values of a vector field with coefficients (n_cells x n_dofs x nc)."""
        return np.einsum("cqb,cbk->cqk", self.values, local)

    def vector_gradient(self, local: np.ndarray) -> np.ndarray:
        """Gradient ∂u_k/∂x_d of a vector field, shape (n_cells x nq x nc x dim)."""
        return np.einsum("cqbd,cbk->cqkd", self.gradients, local)


class FaceValues(CellValues):
    """
    Element values on cell faces.

    Face ``f`` of the reference cell is the one with coordinate ``f // 2``
    equal to ``f % 2``. The surface element follows Nanson's formula,
    n da = |det J| J⁻ᵀ N dA.

    Parameters
    ----------
    element : ScalarElement
        Element whose shape functions are evaluated.
    cell_coords : np.ndarray
        Vertex coordinates of the owning cells (n_faces x 2**dim x dim).
    faces : np.ndarray
        Local face number of each face (n_faces,).
    rule : QuadratureRule
        Quadrature rule of dimension ``dim - 1``.

    Attributes
    ----------
    normals : np.ndarray
        Outward unit normals (n_faces x nq x dim).
    JxW : np.ndarray
        Surface element times quadrature weight (n_faces x nq).
    """

    def __init__(
        self,
        element: ScalarElement,
        cell_coords: np.ndarray,
        faces: np.ndarray,
        rule: QuadratureRule,
    ):
        faces = np.asarray(faces, dtype=int)
        dim = np.asarray(cell_coords).shape[2]
        axes, sides = np.divmod(faces, 2)

        ref_points = np.empty((len(faces), rule.size, dim))
        for i, (axis, side) in enumerate(zip(axes, sides)):
            ref_points[i] = np.insert(rule.points, axis, float(side), axis=1)

        super().__init__(element, cell_coords, ref_points)

        sign = 2.0 * sides - 1.0
        rows = self.inverse_jacobians[np.arange(len(faces)), :, axes, :]
        area_normal = (sign[:, None, None] * self.determinants[:, :, None]) * rows
        area = np.linalg.norm(area_normal, axis=-1)
        self.normals = area_normal / area[:, :, None]
        self.JxW = area * rule.weights
