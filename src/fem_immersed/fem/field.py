"""
Evaluation of finite element fields at arbitrary physical points.

Points are located with a k-d tree over the cell centres followed by the
inversion of the cell map with Newton's method; cells that are not among the
nearest candidates are searched exhaustively before giving up.
"""

import logging
from typing import List, NamedTuple, Tuple

import numpy as np
from scipy.spatial import cKDTree

from fem_immersed.core.errors import PointLocationError
from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues, geometry_element

logger = logging.getLogger(__name__)


class PointLocations(NamedTuple):
    """Points grouped by the cell that contains them.

    Attributes
    ----------
    cells : np.ndarray
        Owning cell ids, in ascending order.
    ref_points : list of np.ndarray
        Reference coordinates of the points found in each cell.
    maps : list of np.ndarray
        Index of each of those points in the original query array.
    """

    cells: np.ndarray
    ref_points: List[np.ndarray]
    maps: List[np.ndarray]


class FieldEvaluator:
    """
    Locates points in a mesh and evaluates fields defined by a DoFHandler.

    Parameters
    ----------
    dof_handler : DoFHandler
        Dof layout of the fields to evaluate.
    tolerance : float, optional
        Reference coordinates within ``[-tolerance, 1 + tolerance]`` count as
        inside a cell. Default is 1e-10.
    n_candidates : int, optional
        Number of nearest cell centres tried before the exhaustive search.
    """

    max_newton_iterations = 25

    def __init__(self, dof_handler: DoFHandler, tolerance: float = 1e-10, n_candidates: int = 8):
        self.dof_handler = dof_handler
        self.fe = dof_handler.fe
        self.dim = dof_handler.dim
        self.tolerance = tolerance
        self.cell_coords = dof_handler.mesh.cell_coords
        self.n_cells = len(self.cell_coords)
        self.n_candidates = min(n_candidates, self.n_cells)
        self.cell_sizes = dof_handler.mesh.cell_diameters()
        self._tree = cKDTree(self.cell_coords.mean(axis=1))

    # =========================================================================
    # Point location
    # =========================================================================

    def _invert(self, cells: np.ndarray, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Reference coordinates of ``points`` under the maps of ``cells``.

        Returns the coordinates and a mask of the points for which Newton's
        method converged.
        """
        geometry = geometry_element(self.dim)
        x = self.cell_coords[cells]
        ref = np.full((len(cells), self.dim), 0.5)
        identity = np.eye(self.dim)

        volume = self.cell_sizes[cells] ** self.dim

        with np.errstate(over="ignore", invalid="ignore"):
            for _ in range(self.max_newton_iterations):
                active = np.all(np.isfinite(ref), axis=1)
                safe = np.where(active[:, None], ref, 0.5)
                residual = points - np.einsum("nv,nvi->ni", geometry.values(safe), x)
                jac = np.einsum("nvi,nvj->nij", x, geometry.gradients(safe))
                singular = ~active | (np.abs(np.linalg.det(jac)) <= 1e-14 * volume)
                jac[singular] = identity
                residual[singular] = 0.0
                step = np.linalg.solve(jac, residual[..., None])[..., 0]
                # Points with a degenerate map are dropped
                step[singular] = np.nan
                ref = ref + step
                if not np.any(np.abs(step[active & ~singular]) > 1e-15):
                    break

        converged = np.all(np.isfinite(ref), axis=1)
        mapped = np.einsum(
            "nv,nvi->ni", geometry.values(np.where(converged[:, None], ref, 0.5)), x
        )
        error = np.linalg.norm(points - mapped, axis=1)
        converged &= error <= 1e-9 * self.cell_sizes[cells]
        return ref, converged

    def _inside(self, ref: np.ndarray, converged: np.ndarray) -> np.ndarray:
        with np.errstate(invalid="ignore"):
            inside = np.all((ref >= -self.tolerance) & (ref <= 1.0 + self.tolerance), axis=1)
        return inside & converged

    def find_cells(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Owning cell and reference coordinates of each point.

        Parameters
        ----------
        points : np.ndarray
            Physical points (n x dim).

        Returns
        -------
        cells : np.ndarray
            Cell id of each point (n,).
        ref_points : np.ndarray
            Reference coordinates clipped to the unit cell (n x dim).

        Raises
        ------
        PointLocationError
            If some point lies outside the mesh.
        """
        points = np.asarray(points, dtype=float).reshape(-1, self.dim)
        n = len(points)
        cells = np.full(n, -1, dtype=int)
        ref_points = np.zeros((n, self.dim))
        if n == 0:
            return cells, ref_points

        _, candidates = self._tree.query(points, k=self.n_candidates)
        candidates = np.asarray(candidates).reshape(n, -1)

        for column in range(candidates.shape[1]):
            pending = np.flatnonzero(cells < 0)
            if pending.size == 0:
                break
            trial = candidates[pending, column]
            ref, converged = self._invert(trial, points[pending])
            found = self._inside(ref, converged)
            cells[pending[found]] = trial[found]
            ref_points[pending[found]] = ref[found]

        pending = np.flatnonzero(cells < 0)
        if pending.size:
            logger.debug("Exhaustive search for %d points", pending.size)
            for cell in range(self.n_cells):
                if pending.size == 0:
                    break
                ref, converged = self._invert(np.full(pending.size, cell), points[pending])
                found = self._inside(ref, converged)
                cells[pending[found]] = cell
                ref_points[pending[found]] = ref[found]
                pending = pending[~found]

        if np.any(cells < 0):
            missing = np.flatnonzero(cells < 0)
            raise PointLocationError(
                f"{missing.size} point(s) outside the mesh, first at {points[missing[0]].tolist()}"
            )
        return cells, np.clip(ref_points, 0.0, 1.0)

    def locate(self, points: np.ndarray) -> PointLocations:
        """Group ``points`` by owning cell (ascending cell id)."""
        cells, ref = self.find_cells(points)
        order = np.argsort(cells, kind="stable")
        unique, starts = np.unique(cells[order], return_index=True)
        groups = np.split(order, starts[1:])
        return PointLocations(
            cells=unique,
            ref_points=[ref[group] for group in groups],
            maps=groups,
        )

    # =========================================================================
    # Evaluation
    # =========================================================================

    def point_values(
        self, cells: np.ndarray, ref_points: np.ndarray, hessians: bool = False, scalar: bool = False
    ) -> CellValues:
        """Values of the base (or scalar) element at one reference point per entry."""
        element = self.fe.scalar if scalar else self.fe.base
        return CellValues(
            element, self.cell_coords[cells], ref_points[:, None, :], hessians=hessians
        )

    def evaluate(self, dof_vector: np.ndarray, points: np.ndarray) -> np.ndarray:
        """
        Field values at physical points.

        Returns
        -------
        np.ndarray
            One row per point with the vector components followed by the
            scalar component, if any.
        """
        cells, ref = self.find_cells(points)
        dh = self.dof_handler
        local = dof_vector[dh.cell_dofs[cells]]
        nb, nc = self.fe.base.n_dofs, self.fe.n_components
        vector = local[:, : self.fe.n_vector_dofs].reshape(-1, nb, nc)
        values = [np.einsum("nb,nbk->nk", self.fe.base.values(ref), vector)]
        if self.fe.scalar is not None:
            scalar = local[:, self.fe.n_vector_dofs :]
            values.append(np.einsum("nb,nb->n", self.fe.scalar.values(ref), scalar)[:, None])
        return np.hstack(values)

    def evaluate_gradients(self, dof_vector: np.ndarray, points: np.ndarray) -> np.ndarray:
        """Field gradients at physical points, shape (n, n_components, dim)."""
        cells, ref = self.find_cells(points)
        dh = self.dof_handler
        local = dof_vector[dh.cell_dofs[cells]]
        nb, nc = self.fe.base.n_dofs, self.fe.n_components
        vector = local[:, : self.fe.n_vector_dofs].reshape(-1, nb, nc)
        base = self.point_values(cells, ref)
        gradients = [np.einsum("nbd,nbk->nkd", base.gradients[:, 0], vector)]
        if self.fe.scalar is not None:
            scalar_values = self.point_values(cells, ref, scalar=True)
            scalar = local[:, self.fe.n_vector_dofs :]
            gradients.append(
                np.einsum("nbd,nb->nd", scalar_values.gradients[:, 0], scalar)[:, None, :]
            )
        return np.concatenate(gradients, axis=1)
