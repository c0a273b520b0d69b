import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from fem_immersed.core.mesh import HyperCubeMesh, HyperShellMesh
from fem_immersed.elements import FE_Q, FESystem, gauss
from fem_immersed.fem import DoFHandler
from fem_immersed.postprocess.diagnostics import BoundaryFlux
from fem_immersed.postprocess.exact import (
    ErrorNorms,
    RingExactSolution,
    append_error_row,
    compute_errors,
)
from fem_immersed.postprocess.output import GlobalLogWriter, SnapshotWriter
from fem_immersed.postprocess.plots import GlobalLogVisualizer


@pytest.fixture(scope="module")
def fluid():
    mesh = HyperCubeMesh(0.0, 1.0).generate().refine_global(2)
    return DoFHandler(mesh, FESystem(FE_Q(2, 2), 2, FE_Q(1, 2)))


@pytest.fixture(scope="module")
def solid():
    mesh = HyperShellMesh([0.5, 0.5], 0.25, 0.3125).generate()
    return DoFHandler(mesh, FESystem(FE_Q(2, 2), 2))


class TestGlobalLogWriter:
    def test_lines(self, tmp_path):
        path = tmp_path / "case_global.gpl"
        with GlobalLogWriter(str(path)) as log:
            assert log.enabled
            log.write(0.0, 0.0, 0.5, [0.5, 0.5])
            log.write(0.1, 1e-12, 0.49, [0.5, 0.51])
        lines = path.read_text().splitlines()
        assert lines == ["0 0 0.5 0.5 0.5", "0.1 1e-12 0.49 0.5 0.51"]

    def test_unopenable_path(self, tmp_path):
        log = GlobalLogWriter(str(tmp_path / "missing" / "case_global.gpl"))
        assert not log.enabled
        log.write(0.0, 0.0, 1.0, [0.0, 0.0])
        log.close()


class TestSnapshotWriter:
    def test_schedule(self, tmp_path, fluid, solid):
        writer = SnapshotWriter(str(tmp_path), "case", fluid, solid, interval=5)
        assert [s for s in range(12) if writer.should_write(s)] == [0, 1, 5, 10]

    def test_write(self, tmp_path, fluid, solid):
        writer = SnapshotWriter(str(tmp_path), "case", fluid, solid)
        xi = np.zeros(fluid.n_dofs + solid.n_dofs)
        xi[fluid.n_dofs :] = 0.01
        writer.write(0, 0.0, xi)
        writer.write(1, 0.1, xi)

        for name in ("case-fluid-00000.vtu", "case-solid-00001.vtu"):
            assert (tmp_path / name).exists()
        pvd = (tmp_path / "case.pvd").read_text()
        assert pvd.count("<DataSet") == 4
        assert 'timestep="0.1" part="1" file="case-solid-00001.vtu"' in pvd


class TestDiagnostics:
    def test_boundary_flux(self, fluid):
        flux = BoundaryFlux(fluid, gauss(4, 1))
        xi = np.zeros(fluid.n_dofs)
        velocity = np.zeros((fluid.n_nodes, 2))
        velocity[:, 0] = fluid.node_points[:, 0]
        xi[fluid.vector_dofs] = velocity.ravel()
        assert flux(xi) == pytest.approx(1.0)

        # Divergence-free field
        velocity = np.column_stack([fluid.node_points[:, 1], -fluid.node_points[:, 0]])
        xi[fluid.vector_dofs] = velocity.ravel()
        assert flux(xi) == pytest.approx(0.0, abs=1e-12)


class TestRingExactSolution:
    @pytest.fixture
    def exact(self):
        return RingExactSolution(mu=1.0, center=[0.5, 0.5], R=0.25, w=0.0625, l=1.0)

    def test_pressure(self, exact):
        p = exact.pressure(np.array([[0.5, 0.5], [0.5, 0.8125], [0.0, 0.0]]))
        assert p[0] == pytest.approx(np.log(1.25) + exact.shift)
        assert p[1] == pytest.approx(exact.shift)
        assert p[2] == pytest.approx(exact.shift)
        assert exact.shift < 0.0
        assert np.allclose(exact.velocity(np.zeros((3, 2))), 0.0)

    def test_errors_of_rest_state(self, exact, fluid):
        errors = compute_errors(fluid, np.zeros(fluid.n_dofs), exact, 2)
        assert errors.velocity_l2 == 0.0
        assert errors.velocity_h1 == 0.0
        assert errors.pressure_l2 > 0.0

    def test_error_rows(self, tmp_path):
        path = tmp_path / "results" / "ring_error_norm_pFEDGP.dat"
        errors = ErrorNorms(1e-3, 2e-2, 3.5e-1)
        append_error_row(str(path), errors, 116, 1392, 256, 2882)
        append_error_row(str(path), errors, 464, 5568, 1024, 11522)
        rows = path.read_text().splitlines()
        assert len(rows) == 2
        assert rows[0].startswith("- &  116 &   1392 &  256 &   2882")
        assert "1.00000e-03 &-& 2.00000e-02 &-& 3.50000e-01" in rows[0]
        assert rows[1].endswith("&- \\\\ \\hline")


def test_global_log_plot(tmp_path):
    path = tmp_path / "case_global.gpl"
    with GlobalLogWriter(str(path)) as log:
        for step in range(4):
            log.write(0.1 * step, 0.0, 0.11 - 1e-4 * step, [0.5, 0.5 + 1e-3 * step])

    visualizer = GlobalLogVisualizer(str(path))
    assert visualizer.dimensions == 2
    assert visualizer.df.columns == ["Time", "Flux", "Area", "Center0", "Center1"]
    assert visualizer.df.height == 4

    figure_path = tmp_path / "case_global.png"
    visualizer.plot(save_path=str(figure_path))
    assert figure_path.exists()
