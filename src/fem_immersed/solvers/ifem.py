"""
Immersed finite element solver.

The fluid occupies a fixed control volume discretized with an inf-sup pair
(Q_k velocity, Q_{k-1} or P_{k-1} discontinuous pressure); the solid carries
its own Q_k displacement on an independent mesh. The global state is

    ξ = [velocity | pressure | displacement]

and every implicit Euler step solves f(ξ', ξ, t) = 0 with Newton's method,
where f gathers the single-domain terms, the coupling through the solid
quadrature points and the constraints.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
from scipy.sparse import csr_matrix

from fem_immersed.constitutive.elastic import create_law
from fem_immersed.core.assembler import SparseSystem
from fem_immersed.core.bc import BoundaryConditionManager, BoundaryValues, ParsedFunction
from fem_immersed.core.config import IFEMConfig, MeshConfig, MeshGeneratorType, MeshSource
from fem_immersed.core.material import FluidMaterial, SolidMaterial
from fem_immersed.core.mesh import HyperCubeMesh, HyperShellMesh, MeshModel, RectangleMesh
from fem_immersed.core.mesh.io import load_mesh
from fem_immersed.elements import ElementFactory, FE_Q, FESystem, gauss, iterated_trapezoid
from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues
from fem_immersed.fem.field import FieldEvaluator
from fem_immersed.fem.mapping import DeformedMapping
from fem_immersed.postprocess.diagnostics import BoundaryFlux, solid_area_and_centre
from fem_immersed.postprocess.exact import (
    ErrorNorms,
    RingExactSolution,
    append_error_row,
    compute_errors,
)
from fem_immersed.postprocess.output import GlobalLogWriter, SnapshotWriter
from fem_immersed.solvers.constraints import ConstraintEnforcer
from fem_immersed.solvers.coupling import CouplingAssembler, CouplingGraph
from fem_immersed.solvers.domain import DomainAssembler
from fem_immersed.solvers.newton import NewtonReport, NewtonSolver

logger = logging.getLogger(__name__)

UNSTABLE_PAIR_WARNING = "The chosen pair of finite element spaces is not stable."


def build_mesh(mesh_config: MeshConfig, dim: int) -> MeshModel:
    """
    Load or generate a mesh and refine it.

    Parameters
    ----------
    mesh_config : MeshConfig
        Source, refinements and renumbering of the mesh.
    dim : int
        Spatial dimension of the problem.
    """
    if mesh_config.source == MeshSource.FILE.value:
        mesh = load_mesh(mesh_config.file.path, mesh_config.file.format)
        logger.info("Loaded mesh from %s", mesh_config.file.path)
    else:
        params = dict(mesh_config.generator.params)
        gen_type = mesh_config.generator.type
        if gen_type == MeshGeneratorType.HYPER_CUBE.value:
            params.setdefault("dim", dim)
            mesh = HyperCubeMesh(**params).generate()
        elif gen_type == MeshGeneratorType.RECTANGLE.value:
            mesh = RectangleMesh(**params).generate()
        else:
            mesh = HyperShellMesh(**params).generate()
        logger.info("Generated %s mesh", gen_type)

    if mesh.dim != dim:
        raise ValueError(f"Mesh dimension {mesh.dim} does not match problem dimension {dim}")
    return mesh.refine_global(mesh_config.refinements)


class ImmersedFEMSolver:
    """
    Time integration of an elastic body immersed in an incompressible fluid.

    Parameters
    ----------
    config : IFEMConfig
        Simulation configuration.
    fluid_mesh, solid_mesh : MeshModel, optional
        Prebuilt meshes; built from the configuration when omitted.
    working_dir : str or Path, optional
        Directory against which a relative output folder is resolved.

    Attributes
    ----------
    fluid_dofs, solid_dofs : DoFHandler
        Layouts of the two domains.
    xi, xi_prev : np.ndarray
        Current and previous global state.
    t : float
        Current time.
    """

    def __init__(
        self,
        config: IFEMConfig,
        fluid_mesh: Optional[MeshModel] = None,
        solid_mesh: Optional[MeshModel] = None,
        working_dir: Optional[Union[str, Path]] = None,
    ):
        self.config = config
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.fluid_mesh = fluid_mesh
        self.solid_mesh = solid_mesh
        self.t = 0.0
        self.step = 0
        self.reports: List[NewtonReport] = []
        self._is_setup = False

    # =========================================================================
    # Setup
    # =========================================================================

    @property
    def output_folder(self) -> str:
        folder = Path(self.config.output.folder)
        if not folder.is_absolute():
            folder = self.working_dir / folder
        return str(folder)

    @property
    def n_up(self) -> int:
        """Number of fluid dofs, offset of the solid block in ξ."""
        return self.fluid_dofs.n_dofs

    def _default_meshes(self) -> Tuple[MeshModel, MeshModel]:
        ring = self.config.solid.ring
        fluid = HyperCubeMesh(0.0, ring.l, dim=2).generate()
        solid = HyperShellMesh(ring.center, ring.R, ring.R + ring.w).generate()
        return fluid, solid

    def setup_meshes(self) -> None:
        cfg = self.config
        if self.fluid_mesh is None or self.solid_mesh is None:
            default_fluid, default_solid = (
                self._default_meshes() if cfg.is_ring_benchmark else (None, None)
            )
            if self.fluid_mesh is None:
                self.fluid_mesh = (
                    build_mesh(cfg.mesh.fluid, cfg.dim) if cfg.mesh.fluid else default_fluid
                )
            if self.solid_mesh is None:
                self.solid_mesh = (
                    build_mesh(cfg.mesh.solid, cfg.dim) if cfg.mesh.solid else default_solid
                )

    def setup(self) -> "ImmersedFEMSolver":
        """Build spaces, quadratures, assemblers and outputs. Returns self."""
        cfg = self.config
        dim, degree = cfg.dim, cfg.degree
        if degree <= 1:
            logger.warning(UNSTABLE_PAIR_WARNING)

        self.setup_meshes()

        # Finite element spaces
        velocity = FE_Q(degree, dim)
        pressure = ElementFactory.get_element(cfg.fe.pressure_element, degree - 1, dim)
        self.fluid_fe = FESystem(velocity, dim, pressure)
        self.solid_fe = FESystem(FE_Q(degree, dim), dim)
        fluid_renumber = cfg.mesh.fluid.renumber if cfg.mesh.fluid else "simple"
        solid_renumber = cfg.mesh.solid.renumber if cfg.mesh.solid else "simple"
        self.fluid_dofs = DoFHandler(self.fluid_mesh, self.fluid_fe, fluid_renumber)
        self.solid_dofs = DoFHandler(self.solid_mesh, self.solid_fe, solid_renumber)
        self.n_dofs = self.fluid_dofs.n_dofs + self.solid_dofs.n_dofs

        # Quadratures
        self.fluid_rule = gauss(cfg.fluid_quadrature, dim)
        self.solid_rule = iterated_trapezoid(cfg.solid_quadrature_copies, dim)
        self.solid_values = CellValues.from_rule(
            self.solid_fe.base, self.solid_mesh.cell_coords, self.solid_rule
        )

        # Boundary conditions and constraints
        self.bc_manager = BoundaryConditionManager.from_config(
            self.fluid_dofs, cfg.boundary_conditions.dirichlet, cfg.solver.fix_pressure
        )
        self.average_pressure = self.bc_manager.all_dirichlet and not cfg.solver.fix_pressure

        self.solid_material = SolidMaterial(
            cfg.solid.material_model, cfg.solid.mu, cfg.solid.Phi_B, tuple(cfg.solid.ring.center)
        )
        solid = self.solid_material
        body_force = ParsedFunction(cfg.body_force, dim) if cfg.body_force else None
        self.domain = DomainAssembler(
            self.fluid_dofs,
            self.solid_dofs,
            FluidMaterial(cfg.fluid.rho, cfg.fluid.eta),
            solid.Phi_B,
            self.fluid_rule,
            self.solid_values,
            body_force,
        )
        self.evaluator = FieldEvaluator(self.fluid_dofs)
        self.law = create_law(solid.model, solid.mu, dim, solid.center)
        self.coupling = CouplingAssembler(
            self.fluid_dofs,
            self.solid_dofs,
            self.evaluator,
            self.law,
            solid.Phi_B,
            self.solid_values,
            use_spread=cfg.solver.use_spread,
            semi_implicit=cfg.solver.semi_implicit,
        )
        self.constraints = ConstraintEnforcer(
            scale=self.fluid_mesh.minimal_cell_diameter(),
            pin_dof=self.fluid_dofs.first_scalar_dof,
            area=self.domain.area,
        )
        self.newton = NewtonSolver.from_config(self.evaluate, cfg.solver)

        self.flux = BoundaryFlux(self.fluid_dofs, gauss(degree + 2, dim - 1))
        self.xi = np.zeros(self.n_dofs)
        self.xi_prev = np.zeros(self.n_dofs)
        self.overlay = self.bc_manager.boundary_values(0.0)
        self._is_setup = True

        self._log_summary()
        return self

    def _log_summary(self) -> None:
        fluid, solid = self.fluid_dofs, self.solid_dofs
        logger.info(
            "Fluid: %d cells, %d dofs (%d velocity + %d pressure), %r",
            fluid.n_cells,
            fluid.n_dofs,
            fluid.n_vector_dofs,
            fluid.n_scalar_dofs,
            self.fluid_fe,
        )
        logger.info("Solid: %d cells, %d dofs, %r", solid.n_cells, solid.n_dofs, self.solid_fe)
        logger.info(
            "Total dofs: %d; %s form, %s; all boundaries essential: %s",
            self.n_dofs,
            "spread" if self.config.solver.use_spread else "direct",
            "semi-implicit" if self.config.solver.semi_implicit else "fully implicit",
            self.bc_manager.all_dirichlet,
        )

    def _require_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError("Solver not set up. Call setup() first.")

    # =========================================================================
    # State
    # =========================================================================

    def interpolate_initial_conditions(self) -> np.ndarray:
        """Initial ξ from the configured velocity and displacement expressions."""
        self._require_setup()
        cfg = self.config
        dim = cfg.dim
        xi = np.zeros(self.n_dofs)
        ic = cfg.initial_conditions
        if ic.velocity:
            values = ParsedFunction(ic.velocity, dim)(self.fluid_dofs.node_points, 0.0)
            xi[self.fluid_dofs.vector_dofs] = values.ravel()
        if ic.displacement:
            values = ParsedFunction(ic.displacement, dim)(self.solid_dofs.node_points, 0.0)
            xi[self.n_up : self.n_up + self.solid_dofs.n_vector_dofs] = values.ravel()
        self.overlay = self.bc_manager.apply(xi, 0.0)
        return xi

    @property
    def fluid_state(self) -> np.ndarray:
        return self.xi[: self.n_up]

    @property
    def solid_displacement(self) -> np.ndarray:
        return self.xi[self.n_up :]

    def current_mapping(self, xi: Optional[np.ndarray] = None) -> DeformedMapping:
        xi = self.xi if xi is None else xi
        return DeformedMapping.build(self.solid_dofs, self.solid_values, xi[self.n_up :])

    # =========================================================================
    # Residual and Jacobian
    # =========================================================================

    def assemble(
        self,
        xi: np.ndarray,
        xi_t: np.ndarray,
        alpha: float,
        t: float,
        jacobian: bool = True,
        overlay: Optional[BoundaryValues] = None,
        xi_prev: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, Optional[csr_matrix], CouplingGraph]:
        """
        Constrained residual f(ξ', ξ, t) and Jacobian ∂f/∂ξ + α ∂f/∂ξ'.

        Parameters
        ----------
        xi, xi_t : np.ndarray
            State and time derivative.
        alpha : float
            Weight of the ξ' derivative.
        t : float
            Time of the evaluation.
        jacobian : bool, optional
            Also assemble the Jacobian.
        overlay : BoundaryValues, optional
            Prescribed values; those of time ``t`` by default.
        xi_prev : np.ndarray, optional
            Previous state (semi-implicit mapping); the stored one by default.

        Returns
        -------
        residual : np.ndarray
        jacobian : csr_matrix or None
        graph : CouplingGraph
        """
        self._require_setup()
        overlay = self.bc_manager.boundary_values(t) if overlay is None else overlay
        xi_prev = self.xi_prev if xi_prev is None else xi_prev

        system = SparseSystem(self.n_dofs, with_jacobian=jacobian)
        pressure = self.domain.assemble(system, xi, xi_t, alpha, t, self.average_pressure)
        graph = self.coupling.assemble(system, xi, xi_prev)
        residual = self.constraints.apply(system, xi, overlay, pressure)
        return residual, system.jacobian(), graph

    def evaluate(
        self, xi: np.ndarray, xi_t: np.ndarray, alpha: float, with_jacobian: bool
    ) -> Tuple[np.ndarray, Optional[csr_matrix]]:
        """Residual callback of the Newton driver at the current step."""
        residual, jacobian, _ = self.assemble(
            xi, xi_t, alpha, self.t, with_jacobian, self.overlay, self.xi_prev
        )
        return residual, jacobian

    # =========================================================================
    # Time stepping
    # =========================================================================

    def run(self) -> List[NewtonReport]:
        """
        Integrate from t = 0 to the final time.

        Returns
        -------
        list of NewtonReport
            One report per time step.

        Raises
        ------
        NewtonConvergenceError
            If a step does not converge.
        SingularJacobianError
            If a Jacobian cannot be factored.
        PointLocationError
            If the solid leaves the control volume.
        """
        if not self._is_setup:
            self.setup()

        cfg = self.config
        dt = cfg.solver.time_step
        out = cfg.output
        os.makedirs(self.output_folder, exist_ok=True)

        self.xi_prev = self.interpolate_initial_conditions()
        self.xi = self.xi_prev.copy()
        self.t = 0.0
        self.step = 0
        self.reports = []

        snapshots = None
        if out.write_vtu:
            snapshots = SnapshotWriter(
                self.output_folder, out.name, self.fluid_dofs, self.solid_dofs, out.interval
            )
        log_path = os.path.join(self.output_folder, f"{out.name}_global.gpl")

        with GlobalLogWriter(log_path) as global_log:
            self.output_step(0, 0.0, self.xi_prev, global_log, snapshots)

            n_steps = cfg.solver.n_steps
            for step in range(1, n_steps + 1):
                self.step = step
                self.t = step * dt
                self.overlay = self.bc_manager.apply(self.xi, self.t)

                report = self.newton.solve(self.xi, self.xi_prev, dt)
                self.reports.append(report)
                logger.info(
                    "Step %03d, t = %g, residual %.3e (converged in %d iterations)",
                    step,
                    self.t,
                    report.residual_norm,
                    report.iterations,
                )

                self.xi_prev = self.xi.copy()
                self.output_step(step, self.t, self.xi, global_log, snapshots)

        if cfg.is_ring_benchmark:
            self.calculate_error()
        return self.reports

    def output_step(
        self,
        step: int,
        t: float,
        xi: np.ndarray,
        global_log: GlobalLogWriter,
        snapshots: Optional[SnapshotWriter] = None,
    ) -> None:
        """Write the global log line and, when due, the snapshots of ``step``."""
        logger.info("Time %g, Step %d, dt = %g", t, step, self.config.solver.time_step)
        if snapshots is not None and snapshots.should_write(step):
            snapshots.write(step, t, xi)
        area, centre = solid_area_and_centre(self.current_mapping(xi), self.solid_values)
        global_log.write(t, self.flux(xi), area, centre)

    # =========================================================================
    # Benchmark errors
    # =========================================================================

    def error_file(self) -> str:
        suffix = "pFEDGP" if not self.fluid_fe.scalar.is_continuous else "pFEQ"
        name = f"{self.config.output.name}_error_norm_{suffix}.dat"
        return os.path.join(self.output_folder, name)

    def calculate_error(self) -> ErrorNorms:
        """Errors of the ring benchmark at the current state, appended to the error file."""
        self._require_setup()
        exact = RingExactSolution.from_config(self.config)
        errors = compute_errors(self.fluid_dofs, self.xi, exact, self.config.degree)
        append_error_row(
            self.error_file(),
            errors,
            self.solid_dofs.n_cells,
            self.solid_dofs.n_dofs,
            self.fluid_dofs.n_cells,
            self.fluid_dofs.n_dofs,
        )
        return errors

    def __repr__(self) -> str:
        if not self._is_setup:
            return f"<ImmersedFEMSolver {self.config.solid.material_model} (not set up)>"
        return (
            f"<ImmersedFEMSolver {self.config.solid.material_model}: "
            f"{self.fluid_dofs.n_dofs} fluid + {self.solid_dofs.n_dofs} solid dofs>"
        )
