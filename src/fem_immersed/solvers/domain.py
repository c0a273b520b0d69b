"""
Single-domain contributions of the immersed system.

Fluid (velocity v, pressure q test functions), integrated over the control
volume with a Gauss rule:

    ρ(u_t − b)·v − p ∇·v + η(∇u + ∇uᵀ):∇v + ρ(∇u u)·v  and  −q ∇·u

Solid (displacement test functions y), integrated over the reference solid:

    Φ_B w_t·y

The Jacobian is the exact derivative with respect to ξ plus α times the
derivative with respect to ξ'.
"""

import logging
from typing import NamedTuple, Optional

import numpy as np

from fem_immersed.core.assembler import SparseSystem
from fem_immersed.core.bc import ParsedFunction
from fem_immersed.core.material import FluidMaterial
from fem_immersed.elements.quadrature import QuadratureRule
from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues

logger = logging.getLogger(__name__)


class PressureAverage(NamedTuple):
    """Integral of the pressure over the control volume and its gradient.

    Attributes
    ----------
    value : float
        Σ_c ∫ p dx (only the constant mode of a discontinuous pressure).
    dofs : np.ndarray
        Global pressure dofs.
    coefficients : np.ndarray
        ∂value/∂p_j for each of ``dofs``.
    """

    value: float
    dofs: np.ndarray
    coefficients: np.ndarray


class DomainAssembler:
    """
    Navier-Stokes and solid inertia terms of the residual and Jacobian.

    Parameters
    ----------
    fluid_dofs : DoFHandler
        Velocity-pressure layout of the control volume.
    solid_dofs : DoFHandler
        Displacement layout of the immersed solid.
    fluid : FluidMaterial
        Density and viscosity.
    Phi_B : float
        Weight of the solid equation.
    fluid_rule : QuadratureRule
        Cell quadrature of the fluid mesh.
    solid_values : CellValues
        Solid shape functions at the solid quadrature points.
    body_force : ParsedFunction, optional
        Body force b(x, t) per unit mass. Zero when omitted.
    """

    def __init__(
        self,
        fluid_dofs: DoFHandler,
        solid_dofs: DoFHandler,
        fluid: FluidMaterial,
        Phi_B: float,
        fluid_rule: QuadratureRule,
        solid_values: CellValues,
        body_force: Optional[ParsedFunction] = None,
    ):
        self.fluid_dofs = fluid_dofs
        self.solid_dofs = solid_dofs
        self.fluid = fluid
        self.Phi_B = Phi_B
        self.offset = fluid_dofs.n_dofs
        self.body_force = None if body_force is None or body_force.is_zero else body_force

        fe = fluid_dofs.fe
        coords = fluid_dofs.mesh.cell_coords
        self.velocity = CellValues.from_rule(fe.base, coords, fluid_rule)
        self.pressure = CellValues.from_rule(fe.scalar, coords, fluid_rule)
        self.solid = solid_values
        self.area = float(np.sum(self.velocity.JxW))

        N, G, Np, JxW = (
            self.velocity.values,
            self.velocity.gradients,
            self.pressure.values,
            self.velocity.JxW,
        )
        n_cells, nb, nc = len(coords), fe.base.n_dofs, fe.n_components
        self._nv = nb * nc
        eye = np.eye(nc)

        # Velocity-independent blocks, local dof order a * nc + k
        mass = np.einsum("cqa,cqb,cq->cab", N, N, JxW)
        laplace = np.einsum("cqad,cqbd,cq->cab", G, G, JxW)
        transposed = np.einsum("cqal,cqbk,cq->cakbl", G, G, JxW)
        self._mass = np.einsum("cab,kl->cakbl", mass, eye).reshape(n_cells, self._nv, self._nv)
        self._viscous = fluid.eta * (
            np.einsum("cab,kl->cakbl", laplace, eye) + transposed
        ).reshape(n_cells, self._nv, self._nv)
        self._Kvp = -np.einsum("cqak,cqj,cq->cakj", G, Np, JxW).reshape(n_cells, self._nv, -1)
        self._Kpv = -np.einsum("cqj,cqbl,cq->cjbl", Np, G, JxW).reshape(n_cells, -1, self._nv)

        # ∫ N_j over each cell; a discontinuous pressure keeps only its constant mode
        self._pressure_weights = np.einsum("cqj,cq->cj", Np, JxW)
        if not fe.scalar.is_continuous:
            self._pressure_weights[:, 1:] = 0.0

        sv = solid_values
        s_nc = solid_dofs.fe.n_components
        s_mass = np.einsum("cqa,cqb,cq->cab", sv.values, sv.values, sv.JxW)
        n_solid = s_mass.shape[0]
        self._solid_mass = Phi_B * np.einsum("cab,kl->cakbl", s_mass, np.eye(s_nc)).reshape(
            n_solid, s_mass.shape[1] * s_nc, -1
        )

        logger.debug(
            "Domain assembler: %d fluid cells x %d points, %d solid cells x %d points, area %g",
            n_cells,
            self.velocity.n_points,
            n_solid,
            sv.n_points,
            self.area,
        )

    def assemble(
        self,
        system: SparseSystem,
        xi: np.ndarray,
        xi_t: np.ndarray,
        alpha: float,
        t: float,
        average_pressure: bool = False,
    ) -> Optional[PressureAverage]:
        """
        Add the fluid and solid inertia terms to ``system``.

        Parameters
        ----------
        system : SparseSystem
            Global accumulator; the Jacobian is assembled only if it records one.
        xi, xi_t : np.ndarray
            Global state and its time derivative.
        alpha : float
            Weight of the ξ' derivative in the Jacobian.
        t : float
            Current time, for the body force.
        average_pressure : bool, optional
            Also return the pressure average used to fix the pressure level.

        Returns
        -------
        PressureAverage or None
        """
        self._assemble_fluid(system, xi, xi_t, alpha, t)
        self._assemble_solid(system, xi_t, alpha)
        if not average_pressure:
            return None
        return self.pressure_average(xi)

    def _assemble_fluid(self, system, xi, xi_t, alpha, t):
        dh = self.fluid_dofs
        rho, eta = self.fluid.rho, self.fluid.eta
        N, G, Np, JxW = (
            self.velocity.values,
            self.velocity.gradients,
            self.pressure.values,
            self.velocity.JxW,
        )
        n_cells = dh.n_cells

        local_u = dh.local_vector_values(xi)
        u = self.velocity.vector_field(local_u)
        grad_u = self.velocity.vector_gradient(local_u)
        u_t = self.velocity.vector_field(dh.local_vector_values(xi_t))
        p = self.pressure.scalar_field(dh.local_scalar_values(xi))
        div_u = np.trace(grad_u, axis1=-2, axis2=-1)

        force = u_t + np.einsum("cqkd,cqd->cqk", grad_u, u)
        if self.body_force is not None:
            points = self.velocity.points.reshape(-1, dh.dim)
            force = force - self.body_force(points, t).reshape(force.shape)

        sym_grad = grad_u + np.swapaxes(grad_u, -1, -2)
        res_v = (
            rho * np.einsum("cqk,cqa,cq->cak", force, N, JxW)
            - np.einsum("cq,cqak,cq->cak", p, G, JxW)
            + eta * np.einsum("cqkd,cqad,cq->cak", sym_grad, G, JxW)
        )
        res_p = -np.einsum("cq,cqj,cq->cj", div_u, Np, JxW)

        nv = self._nv
        velocity_dofs = dh.cell_dofs[:, :nv]
        pressure_dofs = dh.cell_dofs[:, nv:]
        system.add_residual(velocity_dofs, res_v.reshape(n_cells, nv))
        system.add_residual(pressure_dofs, res_p)

        if not system.with_jacobian:
            return

        nc = dh.fe.n_components
        advection = np.einsum("cqa,cqd,cqbd,cq->cab", N, u, G, JxW)
        reaction = np.einsum("cqkl,cqa,cqb,cq->cakbl", grad_u, N, N, JxW)
        Kvv = (
            rho * alpha * self._mass
            + self._viscous
            + rho * np.einsum("cab,kl->cakbl", advection, np.eye(nc)).reshape(n_cells, nv, nv)
            + rho * reaction.reshape(n_cells, nv, nv)
        )
        system.add_local_matrices(velocity_dofs, velocity_dofs, Kvv)
        system.add_local_matrices(velocity_dofs, pressure_dofs, self._Kvp)
        system.add_local_matrices(pressure_dofs, velocity_dofs, self._Kpv)

    def _assemble_solid(self, system, xi_t, alpha):
        dh = self.solid_dofs
        w_t = self.solid.vector_field(dh.local_vector_values(xi_t[self.offset :]))
        res = self.Phi_B * np.einsum("cqk,cqa,cq->cak", w_t, self.solid.values, self.solid.JxW)
        dofs = dh.cell_dofs + self.offset
        system.add_residual(dofs, res.reshape(dh.n_cells, -1))
        if system.with_jacobian and alpha != 0.0:
            system.add_local_matrices(dofs, dofs, alpha * self._solid_mass)

    def pressure_average(self, xi: np.ndarray) -> PressureAverage:
        """Pressure integral over the control volume at state ``xi``."""
        dh = self.fluid_dofs
        p_local = dh.local_scalar_values(xi)
        dofs = dh.cell_dofs[:, self._nv :]
        coefficients = np.bincount(
            (dofs - dh.first_scalar_dof).ravel(),
            weights=self._pressure_weights.ravel(),
            minlength=dh.n_scalar_dofs,
        )
        value = float(np.sum(self._pressure_weights * p_local))
        return PressureAverage(
            value=value,
            dofs=np.arange(dh.first_scalar_dof, dh.n_dofs),
            coefficients=coefficients,
        )
