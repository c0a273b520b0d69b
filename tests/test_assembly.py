import numpy as np
import pytest

from fem_immersed.constitutive import CircumferentialFiber, NeoHookeanINH0
from fem_immersed.core.assembler import SparseSystem
from fem_immersed.core.bc import BoundaryValues, ParsedFunction
from fem_immersed.core.material import FluidMaterial
from fem_immersed.core.mesh import HyperCubeMesh, HyperShellMesh
from fem_immersed.elements import FE_Q, FESystem, gauss, iterated_trapezoid
from fem_immersed.fem import CellValues, DoFHandler, FieldEvaluator
from fem_immersed.solvers.constraints import ConstraintEnforcer
from fem_immersed.solvers.coupling import CouplingAssembler
from fem_immersed.solvers.domain import DomainAssembler, PressureAverage

RHO, ETA, PHI_B = 2.0, 0.5, 1.5


@pytest.fixture(scope="module")
def spaces():
    fluid_mesh = HyperCubeMesh(0.0, 1.0).generate().refine_global(2)
    solid_mesh = HyperShellMesh([0.47, 0.52], 0.2, 0.3, n_cells=12).generate()
    fluid = DoFHandler(fluid_mesh, FESystem(FE_Q(2, 2), 2, FE_Q(1, 2)))
    solid = DoFHandler(solid_mesh, FESystem(FE_Q(2, 2), 2))
    values = CellValues.from_rule(FE_Q(2, 2), solid_mesh.cell_coords, iterated_trapezoid(3, 2))
    return fluid, solid, values


@pytest.fixture(scope="module")
def domain(spaces):
    fluid, solid, values = spaces
    return DomainAssembler(fluid, solid, FluidMaterial(RHO, ETA), PHI_B, gauss(4, 2), values)


def coupling_for(spaces, law, **kwargs):
    fluid, solid, values = spaces
    return CouplingAssembler(fluid, solid, FieldEvaluator(fluid), law, PHI_B, values, **kwargs)


def total_dofs(spaces):
    fluid, solid, _ = spaces
    return fluid.n_dofs + solid.n_dofs


class TestSparseSystem:
    def test_residual_and_jacobian(self):
        system = SparseSystem(4)
        system.add_residual(np.array([[0, 1], [1, 3]]), np.array([[1.0, 2.0], [3.0, 4.0]]))
        system.add_local_matrices(
            np.array([[0, 1]]), np.array([[1, 2]]), np.array([[[1.0, 2.0], [3.0, 4.0]]])
        )
        system.add_entries([3], [3], [5.0])
        assert np.allclose(system.residual(), [1.0, 5.0, 0.0, 4.0])
        J = system.jacobian().toarray()
        assert np.allclose(J[0, 1:3], [1.0, 2.0])
        assert np.allclose(J[1, 1:3], [3.0, 4.0])
        assert J[3, 3] == 5.0

    def test_drop_rows(self):
        system = SparseSystem(3)
        system.add_entries([0, 1, 1, 2], [0, 0, 1, 2], [1.0, 2.0, 3.0, 4.0])
        system.drop_rows(np.array([1]))
        J = system.jacobian().toarray()
        assert np.allclose(J, np.diag([1.0, 0.0, 4.0]))

    def test_residual_only(self):
        system = SparseSystem(2, with_jacobian=False)
        system.add_entries([0], [0], [1.0])
        assert system.jacobian() is None
        assert np.allclose(system.residual(), 0.0)


class TestDomainAssembler:
    def test_rest_state(self, spaces, domain):
        fluid, _, _ = spaces
        n = total_dofs(spaces)
        system = SparseSystem(n)
        domain.assemble(system, np.zeros(n), np.zeros(n), 0.0, 0.0)
        assert np.allclose(system.residual(), 0.0)

        J = system.jacobian().toarray()
        nv, n_up = fluid.n_vector_dofs, fluid.n_dofs
        Kvv = J[:nv, :nv]
        assert np.allclose(Kvv, Kvv.T)
        assert np.linalg.eigvalsh(Kvv).min() > -1e-12 * np.abs(Kvv).max()
        assert np.allclose(J[:nv, nv:n_up], J[nv:n_up, :nv].T)

    def test_mass_blocks(self, spaces, domain):
        fluid, _, values = spaces
        n = total_dofs(spaces)
        jacobians = []
        for alpha in (0.0, 1.0):
            system = SparseSystem(n)
            domain.assemble(system, np.zeros(n), np.zeros(n), alpha, 0.0)
            jacobians.append(system.jacobian().toarray())
        mass = jacobians[1] - jacobians[0]
        n_up = fluid.n_dofs
        assert np.sum(mass[: fluid.n_vector_dofs]) == pytest.approx(2 * RHO * domain.area)
        assert np.sum(mass[n_up:, n_up:]) == pytest.approx(2 * PHI_B * np.sum(values.JxW))
        assert domain.area == pytest.approx(1.0)

    def test_jacobian_matches_finite_differences(self, spaces, domain):
        n = total_dofs(spaces)
        rng = np.random.default_rng(5)
        xi, xi_t, delta = rng.standard_normal((3, n))
        alpha, h = 3.0, 1e-6

        system = SparseSystem(n)
        domain.assemble(system, xi, xi_t, alpha, 0.0)
        J = system.jacobian()

        def residual(eps):
            s = SparseSystem(n, with_jacobian=False)
            domain.assemble(s, xi + eps * delta, xi_t + alpha * eps * delta, alpha, 0.0)
            return s.residual()

        fd = (residual(h) - residual(-h)) / (2 * h)
        assert np.allclose(J @ delta, fd, rtol=1e-6, atol=1e-6 * np.abs(fd).max())

    def test_body_force(self, spaces):
        fluid, solid, values = spaces
        gravity = ParsedFunction(["0", "-1"], 2)
        domain = DomainAssembler(
            fluid, solid, FluidMaterial(RHO, ETA), PHI_B, gauss(4, 2), values, gravity
        )
        n = total_dofs(spaces)
        system = SparseSystem(n, with_jacobian=False)
        domain.assemble(system, np.zeros(n), np.zeros(n), 0.0, 0.0)
        per_component = system.residual()[: fluid.n_vector_dofs].reshape(-1, 2).sum(axis=0)
        assert np.allclose(per_component, [0.0, RHO])

    def test_pressure_average(self, spaces, domain):
        fluid, _, _ = spaces
        xi = np.zeros(total_dofs(spaces))
        xi[fluid.scalar_dofs] = 1.0
        average = domain.pressure_average(xi)
        assert average.value == pytest.approx(1.0)
        assert np.sum(average.coefficients) == pytest.approx(1.0)
        assert np.array_equal(average.dofs, np.arange(fluid.first_scalar_dof, fluid.n_dofs))

        system = SparseSystem(len(xi), with_jacobian=False)
        returned = domain.assemble(system, xi, xi, 0.0, 0.0, average_pressure=True)
        assert returned.value == pytest.approx(1.0)


class TestConstraintEnforcer:
    def test_constrained_rows(self):
        system = SparseSystem(7)
        system.add_entries([0, 0, 4], [0, 1, 4], [9.0, 7.0, 2.0])
        system.add_residual([0, 4], [5.0, 6.0])
        enforcer = ConstraintEnforcer(scale=0.5, pin_dof=5, area=2.0)
        overlay = BoundaryValues(np.array([0, 3]), np.array([1.0, 2.0]))
        pressure = PressureAverage(4.0, np.array([5, 6]), np.array([1.0, 3.0]))

        residual = enforcer.apply(system, np.zeros(7), overlay, pressure)
        assert np.allclose(residual, [-0.5, 0.0, 0.0, -1.0, 6.0, 1.0, 0.0])

        J = system.jacobian().toarray()
        assert np.allclose(J[0], [0.5, 0, 0, 0, 0, 0, 0])
        assert np.allclose(J[3], [0, 0, 0, 0.5, 0, 0, 0])
        assert J[4, 4] == 2.0
        assert np.allclose(J[5], [0, 0, 0, 0, 0, 0.25, 0.75])

    def test_satisfied_constraints_vanish(self):
        system = SparseSystem(3)
        enforcer = ConstraintEnforcer(scale=0.1, pin_dof=2, area=1.0)
        overlay = BoundaryValues(np.array([1]), np.array([4.0]))
        residual = enforcer.apply(system, np.array([0.0, 4.0, 0.0]), overlay)
        assert np.allclose(residual, 0.0)

    def test_invalid_scale(self):
        with pytest.raises(ValueError):
            ConstraintEnforcer(scale=0.0, pin_dof=0, area=1.0)


class TestCouplingAssembler:
    @pytest.mark.parametrize("use_spread", [False, True])
    def test_elastic_forces_have_zero_resultant(self, spaces, use_spread):
        fluid, _, _ = spaces
        law = CircumferentialFiber(1.0, 2, center=(0.47, 0.52))
        coupling = coupling_for(spaces, law, use_spread=use_spread)
        n = total_dofs(spaces)
        xi = np.zeros(n)
        system = SparseSystem(n, with_jacobian=False)
        coupling.assemble(system, xi, xi)
        residual = system.residual()

        forces = residual[: fluid.n_vector_dofs].reshape(-1, 2)
        assert np.linalg.norm(forces) > 1e-3
        assert np.allclose(forces.sum(axis=0), 0.0, atol=1e-10)
        # The solid does not move at rest
        assert np.allclose(residual[fluid.n_dofs :], 0.0)

    def test_velocity_constraint(self, spaces):
        fluid, solid, values = spaces
        coupling = coupling_for(spaces, NeoHookeanINH0(1.0, 2))
        n = total_dofs(spaces)
        xi = np.zeros(n)
        xi[: fluid.n_vector_dofs : 2] = 1.0
        system = SparseSystem(n, with_jacobian=False)
        coupling.assemble(system, xi, xi)
        solid_rows = system.residual()[fluid.n_dofs :].reshape(-1, 2)
        assert solid_rows[:, 0].sum() == pytest.approx(-PHI_B * np.sum(values.JxW))
        assert np.allclose(solid_rows[:, 1], 0.0)

    def test_graph(self, spaces):
        fluid, solid, _ = spaces
        coupling = coupling_for(spaces, NeoHookeanINH0(1.0, 2))
        n = total_dofs(spaces)
        xi = np.zeros(n)
        graph = coupling.assemble(SparseSystem(n, with_jacobian=False), xi, xi)
        assert 0 < len(graph) <= fluid.n_cells
        assert graph is coupling.graph
        assert np.array_equal(graph.fluid_cells, sorted(graph.adjacency))
        for cell in graph:
            assert min(graph[cell]) >= fluid.n_dofs
        rows, cols = graph.sparsity(fluid.cell_dofs)
        assert len(rows) == len(cols) > 0
        with pytest.raises(TypeError):
            graph.adjacency[0] = frozenset()

    def test_jacobian_matches_finite_differences(self, spaces):
        fluid, solid, _ = spaces
        coupling = coupling_for(spaces, NeoHookeanINH0(1.0, 2))
        n = total_dofs(spaces)
        rng = np.random.default_rng(17)
        xi = np.zeros(n)
        xi[: fluid.n_dofs] = rng.standard_normal(fluid.n_dofs)
        xi[fluid.n_dofs :] = 1e-3 * rng.standard_normal(solid.n_dofs)
        delta = rng.standard_normal(n)
        h = 1e-7

        system = SparseSystem(n)
        coupling.assemble(system, xi, xi)
        J = system.jacobian()

        def residual(x):
            s = SparseSystem(n, with_jacobian=False)
            coupling.assemble(s, x, x)
            return s.residual()

        fd = (residual(xi + h * delta) - residual(xi - h * delta)) / (2 * h)
        assert np.allclose(J @ delta, fd, rtol=1e-5, atol=1e-5 * np.abs(fd).max())

    def test_assembly_is_deterministic(self, spaces):
        coupling = coupling_for(spaces, NeoHookeanINH0(1.0, 2), use_spread=True)
        n = total_dofs(spaces)
        xi = 1e-3 * np.random.default_rng(2).standard_normal(n)
        results = []
        for _ in range(2):
            system = SparseSystem(n)
            coupling.assemble(system, xi, xi)
            results.append((system.residual(), system.jacobian()))
        assert np.array_equal(results[0][0], results[1][0])
        assert (results[0][1] != results[1][1]).nnz == 0

    def test_spread_and_direct_forms_are_comparable(self, spaces):
        fluid, _, _ = spaces
        n = total_dofs(spaces)
        xi = np.zeros(n)
        norms = []
        for use_spread in (False, True):
            law = CircumferentialFiber(1.0, 2, center=(0.47, 0.52))
            coupling = coupling_for(
                spaces, law, use_spread=use_spread, semi_implicit=use_spread
            )
            system = SparseSystem(n, with_jacobian=False)
            coupling.assemble(system, xi, xi)
            norms.append(np.linalg.norm(system.residual()[: fluid.n_vector_dofs]))
        assert 0.1 < norms[1] / norms[0] < 10.0

    def test_jacobian_entries_follow_cell_pairs(self, spaces):
        fluid, solid, values = spaces
        coupling = coupling_for(spaces, NeoHookeanINH0(1.0, 2))
        n = total_dofs(spaces)
        xi = np.zeros(n)
        system = SparseSystem(n)
        coupling.assemble(system, xi, xi)

        locations = coupling.evaluator.locate(coupling.mapping(xi, xi).flat_points)
        pairs = {
            (int(point) // values.n_points, int(cell))
            for cell, group in zip(locations.cells, locations.maps)
            for point in group
        }
        nv = fluid.fe.n_vector_dofs
        ns = solid.fe.dofs_per_cell
        # K_fs, K_sf and K_ss once per (solid cell, fluid cell) pair
        expected = len(pairs) * (2 * nv * ns + ns * ns)
        assert len(system.triplets()[0]) == expected
        assert len(pairs) < len(np.concatenate(locations.maps))

    def test_blocked_assembly_matches_single_block(self, spaces):
        law = CircumferentialFiber(1.0, 2, center=(0.47, 0.52))
        n = total_dofs(spaces)
        xi = 1e-3 * np.random.default_rng(5).standard_normal(n)
        results = []
        for block_size in (7, 10**6):
            coupling = coupling_for(spaces, law)
            coupling.block_size = block_size
            system = SparseSystem(n)
            coupling.assemble(system, xi, xi)
            results.append((system.residual(), system.jacobian()))
        assert np.allclose(results[0][0], results[1][0], rtol=0.0, atol=1e-14)
        difference = abs(results[0][1] - results[1][1]).max()
        assert difference <= 1e-12 * abs(results[1][1]).max()
