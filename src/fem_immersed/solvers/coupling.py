"""
Fluid-structure coupling over non-matching meshes.

The solid quadrature points are pushed to the current configuration,
x_q = s_q + w(s_q), and located in the fluid mesh. Fluid fields and test
functions are then evaluated at x_q, so every solid quadrature point acts as
a one-point quadrature of the fluid cell that contains it.

Fluid velocity rows receive the elastic stress of the solid, either

    direct:   PeFᵀ : ∇v(x_q) JxW_q
    spread:   Φ_B v(x_q)·(M⁻¹A_γ)(s_q) JxW_q,   A_γ(k) = Σ_q Pe : ∇N_k JxW_q

and solid rows receive the velocity constraint −Φ_B u(x_q)·y JxW_q.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, Mapping, Tuple

import numpy as np
from scipy.sparse.linalg import splu

from fem_immersed.constitutive.elastic import ElasticLaw, shape_gradient_variations
from fem_immersed.core.assembler import SparseSystem
from fem_immersed.core.errors import SingularJacobianError
from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues
from fem_immersed.fem.field import FieldEvaluator
from fem_immersed.fem.mapping import DeformedMapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouplingGraph:
    """
    Fluid cells overlapped by the solid and the solid dofs acting on them.

    Attributes
    ----------
    adjacency : Mapping[int, FrozenSet[int]]
        Read-only map from fluid cell id to global solid dof indices.
    """

    adjacency: Mapping[int, FrozenSet[int]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "adjacency", MappingProxyType(dict(self.adjacency)))

    @property
    def fluid_cells(self) -> np.ndarray:
        return np.array(sorted(self.adjacency), dtype=int)

    def __len__(self) -> int:
        return len(self.adjacency)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self.adjacency))

    def __getitem__(self, cell: int) -> FrozenSet[int]:
        return self.adjacency[cell]

    def sparsity(self, fluid_cell_dofs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Coupled (fluid dof, solid dof) pairs, one row per pair."""
        rows, cols = [], []
        for cell in self:
            solid = np.fromiter(sorted(self.adjacency[cell]), dtype=int)
            fluid = fluid_cell_dofs[cell]
            rows.append(np.repeat(fluid, len(solid)))
            cols.append(np.tile(solid, len(fluid)))
        if not rows:
            return np.array([], dtype=int), np.array([], dtype=int)
        return np.concatenate(rows), np.concatenate(cols)


class CouplingAssembler:
    """
    Coupling terms between the fluid velocity and the solid displacement.

    Parameters
    ----------
    fluid_dofs : DoFHandler
        Velocity-pressure layout of the control volume.
    solid_dofs : DoFHandler
        Displacement layout of the solid.
    evaluator : FieldEvaluator
        Point location and evaluation on the fluid mesh.
    law : ElasticLaw
        Elastic response of the solid.
    Phi_B : float
        Weight of the solid equation.
    solid_values : CellValues
        Solid shape functions at the solid quadrature points.
    use_spread : bool, optional
        Use the spread form of the elastic force instead of the direct one.
    semi_implicit : bool, optional
        Locate the solid at the previous time step.
    """

    #: Solid points per block of Jacobian contributions
    block_size = 16384

    def __init__(
        self,
        fluid_dofs: DoFHandler,
        solid_dofs: DoFHandler,
        evaluator: FieldEvaluator,
        law: ElasticLaw,
        Phi_B: float,
        solid_values: CellValues,
        use_spread: bool = False,
        semi_implicit: bool = False,
    ):
        self.fluid_dofs = fluid_dofs
        self.solid_dofs = solid_dofs
        self.evaluator = evaluator
        self.law = law
        self.Phi_B = Phi_B
        self.values = solid_values
        self.use_spread = use_spread
        self.semi_implicit = semi_implicit
        self.offset = fluid_dofs.n_dofs

        nc = solid_dofs.fe.n_components
        self._n_base = solid_dofs.fe.base.n_dofs
        self._dF = shape_gradient_variations(solid_values.gradients, nc)
        k = np.arange(self._n_base * nc)
        self._base_of = k // nc
        self._component_of = k % nc

        self._mass_lu = self._factor_mass() if use_spread else None
        self.graph = CouplingGraph()

    def _factor_mass(self):
        """LU factors of the Φ_B-weighted vector mass matrix of the solid."""
        dh, sv = self.solid_dofs, self.values
        nc = dh.fe.n_components
        mass = self.Phi_B * np.einsum("cqa,cqb,cq->cab", sv.values, sv.values, sv.JxW)
        mass = np.einsum("cab,kl->cakbl", mass, np.eye(nc))
        mass = mass.reshape(dh.n_cells, dh.fe.dofs_per_cell, dh.fe.dofs_per_cell)
        system = SparseSystem(dh.n_dofs)
        system.add_local_matrices(dh.cell_dofs, dh.cell_dofs, mass)
        try:
            lu = splu(system.jacobian().tocsc())
        except RuntimeError as exc:
            raise SingularJacobianError(f"Singular solid mass matrix: {exc}") from exc
        logger.debug("Factored solid mass matrix (%d dofs)", dh.n_dofs)
        return lu

    # =========================================================================
    # Evaluation
    # =========================================================================

    def mapping(self, xi: np.ndarray, xi_prev: np.ndarray) -> DeformedMapping:
        """Deformed configuration used to locate the solid quadrature points."""
        source = xi_prev if self.semi_implicit else xi
        return DeformedMapping.build(self.solid_dofs, self.values, source[self.offset :])

    def elastic_operator(self, stress: np.ndarray) -> np.ndarray:
        """A_γ(k) = Σ_q Pe : ∇N_k JxW in the reference configuration."""
        dh, sv = self.solid_dofs, self.values
        local = np.einsum("cqid,cqad,cq->cai", stress, sv.gradients, sv.JxW)
        weights = local.reshape(dh.n_cells, -1).ravel()
        return np.bincount(dh.cell_dofs.ravel(), weights=weights, minlength=dh.n_dofs)

    def assemble(
        self, system: SparseSystem, xi: np.ndarray, xi_prev: np.ndarray
    ) -> CouplingGraph:
        """
        Add the coupling terms at state ``xi`` to ``system``.

        Parameters
        ----------
        system : SparseSystem
            Global accumulator.
        xi : np.ndarray
            Current global state.
        xi_prev : np.ndarray
            State at the previous time step.

        Returns
        -------
        CouplingGraph
            Fluid cells touched by the solid in this evaluation.

        Raises
        ------
        PointLocationError
            If a deformed solid point lies outside the fluid mesh.
        """
        jacobian = system.with_jacobian
        hessian_terms = jacobian and not self.semi_implicit
        sv = self.values
        n_points = sv.n_points
        fluid, solid = self.fluid_dofs, self.solid_dofs
        nc = fluid.fe.n_components
        nv = fluid.fe.n_vector_dofs

        located = self.mapping(xi, xi_prev)
        if self.semi_implicit:
            current = DeformedMapping.build(solid, sv, xi[self.offset :])
        else:
            current = located

        F = current.deformation_gradient
        X = current.reference_points
        Pe = self.law.stress(F, X)
        PeFT = Pe @ np.swapaxes(F, -1, -2)

        locations = self.evaluator.locate(located.flat_points)
        order = np.concatenate(locations.maps)
        cells = np.repeat(locations.cells, [len(m) for m in locations.maps])
        ref = np.concatenate(locations.ref_points)
        s_cell, s_point = np.divmod(order, n_points)

        # Points sharing a (solid cell, fluid cell) pair share all their dofs
        key = s_cell * fluid.n_cells + cells
        sort = np.argsort(key, kind="stable")
        cells, ref, key = cells[sort], ref[sort], key[sort]
        s_cell, s_point = s_cell[sort], s_point[sort]
        starts = np.flatnonzero(np.diff(key, prepend=-1))

        fv = self.evaluator.point_values(cells, ref, hessians=hessian_terms)
        Nf = fv.values[:, 0]
        Gf = fv.gradients[:, 0]
        Ns = sv.values[s_cell, s_point]
        JxW = sv.JxW[s_cell, s_point]

        fluid_rows = fluid.cell_dofs[cells[starts], :nv]
        solid_rows = solid.cell_dofs[s_cell[starts]] + self.offset
        n = len(order)

        # Fluid velocity rows
        if self.use_spread:
            spread = self._mass_lu.solve(self.elastic_operator(Pe))
            local = spread[solid.cell_dofs[s_cell]].reshape(n, self._n_base, nc)
            force = np.einsum("pb,pbk->pk", Ns, local)
            res_f = self.Phi_B * np.einsum("pk,pa,p->pak", force, Nf, JxW)
        else:
            res_f = np.einsum("pid,pad,p->pai", PeFT[s_cell, s_point], Gf, JxW)
        system.add_residual(fluid_rows, np.add.reduceat(res_f.reshape(n, nv), starts))

        # Solid rows
        local_u = xi[fluid.cell_dofs[cells, :nv]].reshape(n, -1, nc)
        u = np.einsum("pa,pak->pk", Nf, local_u)
        res_s = -self.Phi_B * np.einsum("pk,pb,p->pbk", u, Ns, JxW)
        system.add_residual(solid_rows, np.add.reduceat(res_s.reshape(n, -1), starts))

        if jacobian:
            eye = np.eye(nc)
            for points, pairs, runs in _pair_blocks(starts, n, self.block_size):
                p_cell, p_point = s_cell[points], s_point[points]
                m = len(p_cell)
                w, N_s, N_f, G_f = JxW[points], Ns[points], Nf[points], Gf[points]

                dPeFT = self.law.stress_FT_derivative(
                    F[p_cell, p_point], self._dF[p_cell, p_point], X[p_cell, p_point]
                )
                K_fs = np.einsum("pkid,pad,p->paik", dPeFT, G_f, w)
                if hessian_terms:
                    Hf = fv.hessians[points, 0]
                    moved = np.einsum("pid,pade->paie", PeFT[p_cell, p_point], Hf)
                    K_fs += (
                        moved[:, :, :, self._component_of]
                        * N_s[:, None, None, self._base_of]
                        * w[:, None, None, None]
                    )
                K_fs = np.add.reduceat(K_fs.reshape(m, nv, -1), runs)
                system.add_local_matrices(fluid_rows[pairs], solid_rows[pairs], K_fs)

                K_sf = -self.Phi_B * np.einsum("pb,pa,p,kl->pbkal", N_s, N_f, w, eye)
                K_sf = np.add.reduceat(K_sf.reshape(m, -1, nv), runs)
                system.add_local_matrices(solid_rows[pairs], fluid_rows[pairs], K_sf)

                if hessian_terms:
                    grad_u = np.einsum("pad,pak->pkd", G_f, local_u[points])
                    K_ss = (
                        -self.Phi_B
                        * w[:, None, None, None]
                        * N_s[:, :, None, None]
                        * N_s[:, None, None, self._base_of]
                        * grad_u[:, None, :, self._component_of]
                    )
                    K_ss = np.add.reduceat(K_ss.reshape(m, -1, K_ss.shape[-1]), runs)
                    system.add_local_matrices(solid_rows[pairs], solid_rows[pairs], K_ss)

        self.graph = self._graph(locations)
        logger.debug(
            "Coupling: %d solid points in %d cell pairs over %d fluid cells",
            n,
            len(starts),
            len(locations.cells),
        )
        return self.graph

    def _graph(self, locations) -> CouplingGraph:
        n_points = self.values.n_points
        adjacency: Dict[int, FrozenSet[int]] = {}
        for cell, group in zip(locations.cells, locations.maps):
            touching = np.unique(group // n_points)
            dofs = self.solid_dofs.cell_dofs[touching] + self.offset
            adjacency[int(cell)] = frozenset(dofs.ravel().tolist())
        return CouplingGraph(adjacency)


def _pair_blocks(starts: np.ndarray, n: int, max_points: int):
    """
    Split sorted point runs into blocks of whole runs.

    Yields the point slice of each block, the slice of runs it covers and the
    run offsets local to the block. A block holds at most ``max_points``
    points unless a single run is longer.
    """
    bounds = np.append(starts, n)
    first = 0
    while first < len(starts):
        last = np.searchsorted(bounds, bounds[first] + max_points, side="right") - 1
        last = max(last, first + 1)
        runs = starts[first:last] - bounds[first]
        yield slice(bounds[first], bounds[last]), slice(first, last), runs
        first = last
