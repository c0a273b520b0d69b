import numpy as np
import pytest

from fem_immersed.core.errors import PointLocationError
from fem_immersed.core.mesh import HyperCubeMesh, HyperShellMesh, RectangleMesh
from fem_immersed.elements import FE_DGP, FE_Q, FESystem, gauss, iterated_trapezoid
from fem_immersed.fem import CellValues, DeformedMapping, DoFHandler, FaceValues, FieldEvaluator


@pytest.fixture
def unit_square():
    return HyperCubeMesh(0.0, 1.0).generate().refine_global(1)


@pytest.fixture
def taylor_hood(unit_square):
    return DoFHandler(unit_square, FESystem(FE_Q(2, 2), 2, FE_Q(1, 2)))


@pytest.fixture
def skewed_mesh():
    mesh = RectangleMesh([0.0, 0.0], [1.0, 1.0], [3, 3]).generate()
    # Move the interior nodes to get non-affine cells
    for node in mesh.nodes:
        if 0.0 < node.x < 1.0 and 0.0 < node.y < 1.0:
            node.coords[0] += 0.05 * np.sin(7 * node.y)
            node.coords[1] += 0.04 * np.cos(5 * node.x)
    return mesh


class TestDoFHandler:
    def test_counts(self, taylor_hood):
        assert taylor_hood.n_nodes == 25
        assert taylor_hood.n_vector_dofs == 50
        assert taylor_hood.n_scalar_dofs == 9
        assert taylor_hood.n_dofs == 59
        assert taylor_hood.first_scalar_dof == 50
        assert taylor_hood.cell_dofs.shape == (4, 22)

    def test_discontinuous_pressure(self, unit_square):
        dh = DoFHandler(unit_square, FESystem(FE_Q(2, 2), 2, FE_DGP(1, 2)))
        assert dh.n_scalar_dofs == 12
        assert dh.scalar_points is None
        assert np.array_equal(np.sort(dh.cell_dofs[:, 18:].ravel()), np.arange(50, 62))

    def test_shared_nodes_have_one_position(self, taylor_hood):
        nodes = np.unique(np.round(taylor_hood.node_points, 12), axis=0)
        assert len(nodes) == taylor_hood.n_nodes

    def test_vertex_nodes(self, taylor_hood):
        mesh = taylor_hood.mesh
        assert np.allclose(taylor_hood.node_points[taylor_hood.vertex_nodes], mesh.coords_array)

    def test_boundary_dofs(self, taylor_hood):
        mesh = taylor_hood.mesh
        dofs, nodes = taylor_hood.boundary_dofs(mesh.node_set_indices("boundary"))
        assert len(dofs) == 32
        assert np.array_equal(dofs % 2, np.tile([0, 1], 16))

        dofs, nodes = taylor_hood.boundary_dofs(mesh.node_set_indices("top"), components=[0])
        assert len(dofs) == 5
        assert np.allclose(taylor_hood.node_points[nodes, 1], 1.0)

        with pytest.raises(ValueError):
            taylor_hood.boundary_dofs(mesh.node_set_indices("top"), components=[2])

    def test_rcm_numbering(self, unit_square):
        fe = FESystem(FE_Q(2, 2), 2, FE_Q(1, 2))
        simple = DoFHandler(unit_square, fe)
        rcm = DoFHandler(unit_square, fe, renumber="rcm")
        assert rcm.n_dofs == simple.n_dofs
        assert np.allclose(
            np.sort(rcm.node_points, axis=0), np.sort(simple.node_points, axis=0)
        )
        assert np.allclose(rcm.node_points[rcm.vertex_nodes], unit_square.coords_array)

    def test_local_values(self, taylor_hood):
        vector = np.arange(taylor_hood.n_dofs, dtype=float)
        local = taylor_hood.local_vector_values(vector)
        assert local.shape == (4, 9, 2)
        assert np.all(local[..., 1] - local[..., 0] == 1.0)
        assert taylor_hood.local_scalar_values(vector).shape == (4, 4)


class TestCellValues:
    def test_area(self, skewed_mesh):
        values = CellValues.from_rule(FE_Q(1, 2), skewed_mesh.cell_coords, gauss(2, 2))
        assert np.sum(values.JxW) == pytest.approx(1.0)

    def test_linear_field_gradient(self, skewed_mesh):
        fe = FE_Q(2, 2)
        coords = skewed_mesh.cell_coords
        values = CellValues.from_rule(fe, coords, gauss(3, 2), hessians=True)
        # Interpolate f(x, y) = 2x - 3y through the support points of each cell
        support = CellValues(fe, coords, fe.support_points).points
        local = 2 * support[..., 0] - 3 * support[..., 1]
        grads = np.einsum("cqbd,cb->cqd", values.gradients, local)
        assert np.allclose(grads, [2.0, -3.0])
        hess = np.einsum("cqbij,cb->cqij", values.hessians, local)
        assert np.allclose(hess, 0.0, atol=1e-10)

    def test_inverted_cell(self):
        coords = np.array([[[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]]])
        with pytest.raises(ValueError):
            CellValues(FE_Q(1, 2), coords, gauss(1, 2).points)


class TestFaceValues:
    def test_perimeter_and_normals(self, unit_square):
        facets = unit_square.boundary_facets()
        faces = FaceValues(
            FE_Q(1, 2), unit_square.cell_coords[facets.cells], facets.faces, gauss(2, 1)
        )
        assert np.sum(faces.JxW) == pytest.approx(4.0)
        # Outward normals point away from the centre of the square
        outward = np.einsum("fqd,fqd->fq", faces.normals, faces.points - 0.5)
        assert np.all(outward > 0)
        # Divergence theorem for u = (x, 0)
        flux = np.einsum("fq,fq,fq->", faces.points[..., 0], faces.normals[..., 0], faces.JxW)
        assert flux == pytest.approx(1.0)


class TestFieldEvaluator:
    @pytest.fixture
    def evaluator(self, skewed_mesh):
        dh = DoFHandler(skewed_mesh, FESystem(FE_Q(2, 2), 2, FE_Q(1, 2)))
        return FieldEvaluator(dh)

    @pytest.fixture
    def state(self, evaluator):
        dh = evaluator.dof_handler
        xi = np.zeros(dh.n_dofs)
        x, y = dh.node_points[:, 0], dh.node_points[:, 1]
        velocity = np.column_stack([x**2 + y, 3 * x - y * x])
        xi[dh.vector_dofs] = velocity.ravel()
        # Pressure coefficients of the linear field 1 + x + 2y
        p_points = dh.scalar_points
        xi[dh.scalar_dofs] = 1 + p_points[:, 0] + 2 * p_points[:, 1]
        return xi

    def test_locate_round_trip(self, evaluator):
        rng = np.random.default_rng(3)
        points = rng.random((200, 2))
        locations = evaluator.locate(points)
        order = np.concatenate(locations.maps)
        assert np.array_equal(np.sort(order), np.arange(200))
        assert np.all(np.diff(locations.cells) > 0)

        for cell, ref, group in zip(locations.cells, locations.ref_points, locations.maps):
            mapped = CellValues(FE_Q(1, 2), evaluator.cell_coords[[cell]], ref).points[0]
            assert np.allclose(mapped, points[group])

    def test_evaluate_interpolated_fields(self, evaluator, state):
        points = np.array([[0.1, 0.2], [0.55, 0.45], [0.9, 0.99], [1.0, 1.0]])
        values = evaluator.evaluate(state, points)
        x, y = points[:, 0], points[:, 1]
        expected = np.column_stack([x**2 + y, 3 * x - y * x, 1 + x + 2 * y])
        # Products of the bilinear cell maps are still in Q2
        assert np.allclose(values, expected)

    def test_evaluate_gradients(self, evaluator, state):
        points = np.array([[0.3, 0.7]])
        gradients = evaluator.evaluate_gradients(state, points)
        assert gradients.shape == (1, 3, 2)
        assert np.allclose(gradients[0, 2], [1.0, 2.0])

    def test_point_outside(self, evaluator):
        with pytest.raises(PointLocationError):
            evaluator.find_cells(np.array([[0.5, 0.5], [1.5, 0.5]]))


class TestDeformedMapping:
    @pytest.fixture
    def solid(self):
        mesh = HyperShellMesh([0.0, 0.0], 1.0, 2.0, n_cells=12).generate()
        dh = DoFHandler(mesh, FESystem(FE_Q(2, 2), 2))
        values = CellValues.from_rule(FE_Q(2, 2), mesh.cell_coords, iterated_trapezoid(3, 2))
        return dh, values

    def test_translation(self, solid):
        dh, values = solid
        displacement = np.tile([0.1, -0.2], dh.n_nodes)
        mapping = DeformedMapping.build(dh, values, displacement)
        assert np.allclose(mapping.deformation_gradient, np.eye(2))
        assert np.allclose(mapping.points - mapping.reference_points, [0.1, -0.2])
        assert mapping.flat_points.shape == (12 * 16, 2)
        vertices = mapping.deformed_vertices(dh)
        assert np.allclose(vertices, dh.mesh.coords_array + [0.1, -0.2])
        assert np.allclose(mapping.vertex_displacements(dh), [0.1, -0.2])

    def test_dilation(self, solid):
        dh, values = solid
        displacement = 0.5 * dh.node_points.ravel()
        mapping = DeformedMapping.build(dh, values, displacement)
        assert np.allclose(mapping.deformation_gradient, 1.5 * np.eye(2))

    def test_read_only(self, solid):
        dh, values = solid
        displacement = np.zeros(dh.n_dofs)
        mapping = DeformedMapping.build(dh, values, displacement)
        displacement[0] = 1.0
        assert mapping.displacement[0] == 0.0
        with pytest.raises(ValueError):
            mapping.points[0, 0, 0] = 1.0
