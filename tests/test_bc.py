import numpy as np
import pytest

from fem_immersed.core.bc import (
    BoundaryConditionManager,
    DirichletCondition,
    ParsedFunction,
)
from fem_immersed.core.config import DirichletBCConfig
from fem_immersed.core.errors import ConfigurationError
from fem_immersed.core.mesh import HyperCubeMesh
from fem_immersed.elements import FE_Q, FESystem
from fem_immersed.fem import DoFHandler


@pytest.fixture
def fluid_dofs():
    mesh = HyperCubeMesh(0.0, 1.0).generate().refine_global(1)
    return DoFHandler(mesh, FESystem(FE_Q(2, 2), 2, FE_Q(1, 2)))


class TestParsedFunction:
    def test_evaluation(self):
        f = ParsedFunction(["sin(pi*x)*t", "y + z"], 2)
        values = f(np.array([[0.5, 0.0], [0.0, 3.0]]), t=2.0)
        assert np.allclose(values, [[2.0, 0.0], [0.0, 3.0]])
        assert f.is_time_dependent
        assert not f.is_zero

    def test_single_expression_broadcast(self):
        f = ParsedFunction(["0"], 3)
        assert f.is_zero
        assert f(np.zeros((4, 3))).shape == (4, 3)

    def test_numeric_values(self):
        f = ParsedFunction([1.5, 2], 2)
        assert np.allclose(f(np.zeros((2, 2))), [[1.5, 2.0], [1.5, 2.0]])

    def test_errors(self):
        with pytest.raises(ConfigurationError):
            ParsedFunction(["speed * x"], 1)
        with pytest.raises(ConfigurationError):
            ParsedFunction(["x +* 2"], 1)
        with pytest.raises(ConfigurationError):
            ParsedFunction(["0", "0", "0"], 2)


class TestBoundaryConditionManager:
    def test_partial_conditions(self, fluid_dofs):
        mesh = fluid_dofs.mesh
        lid = DirichletCondition("top", mesh.node_set_indices("top"), ParsedFunction(["1", "0"], 2))
        manager = BoundaryConditionManager(fluid_dofs, [lid])
        assert not manager.all_dirichlet

        overlay = manager.boundary_values(0.0)
        assert len(overlay.dofs) == 10
        assert np.allclose(overlay.values[overlay.dofs % 2 == 0], 1.0)
        assert np.allclose(overlay.values[overlay.dofs % 2 == 1], 0.0)

    def test_later_conditions_override(self, fluid_dofs):
        mesh = fluid_dofs.mesh
        walls = DirichletCondition(
            "boundary", mesh.node_set_indices("boundary"), ParsedFunction(["0"], 2)
        )
        lid = DirichletCondition(
            "top", mesh.node_set_indices("top"), ParsedFunction(["t"], 1), components=[0]
        )
        manager = BoundaryConditionManager(fluid_dofs, [walls, lid], fix_pressure=True)
        assert manager.all_dirichlet

        values = manager.boundary_values(3.0).as_dict()
        assert len(values) == 33
        assert values[manager.pressure_dof] == 0.0
        top_nodes = fluid_dofs.boundary_nodes(mesh.node_set_indices("top"))
        assert all(values[2 * n] == 3.0 for n in top_nodes)
        assert all(values[2 * n + 1] == 0.0 for n in top_nodes)

    def test_apply(self, fluid_dofs):
        mesh = fluid_dofs.mesh
        condition = DirichletCondition(
            "left", mesh.node_set_indices("left"), ParsedFunction(["y", "-y"], 2)
        )
        manager = BoundaryConditionManager(fluid_dofs, [condition])
        xi = np.full(fluid_dofs.n_dofs, 7.0)
        overlay = manager.apply(xi, 0.0)
        points = fluid_dofs.node_points[overlay.dofs // 2]
        expected = np.where(overlay.dofs % 2 == 0, points[:, 1], -points[:, 1])
        assert np.allclose(xi[overlay.dofs], expected)
        untouched = np.setdiff1d(np.arange(fluid_dofs.n_dofs), overlay.dofs)
        assert np.all(xi[untouched] == 7.0)

    def test_from_config(self, fluid_dofs):
        configs = [
            DirichletBCConfig(nodeset="boundary", value=("0", "0")),
            DirichletBCConfig(nodeset="bottom", value=("x",), components=(1,)),
        ]
        manager = BoundaryConditionManager.from_config(fluid_dofs, configs)
        assert len(manager.conditions) == 2
        assert manager.all_dirichlet
        assert manager.conditions[1].components == (1,)

    def test_unknown_nodeset(self, fluid_dofs):
        configs = [DirichletBCConfig(nodeset="inlet", value=("1",))]
        with pytest.raises(ConfigurationError):
            BoundaryConditionManager.from_config(fluid_dofs, configs)

    def test_component_count_mismatch(self, fluid_dofs):
        mesh = fluid_dofs.mesh
        condition = DirichletCondition(
            "top", mesh.node_set_indices("top"), ParsedFunction(["1"], 1)
        )
        with pytest.raises(ConfigurationError):
            BoundaryConditionManager(fluid_dofs, [condition])
