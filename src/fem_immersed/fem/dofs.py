"""
Degree-of-freedom numbering.

Global numbering is block-wise: all vector (velocity or displacement) dofs
come first, ordered node-major with the component running fastest, followed
by the scalar (pressure) dofs. Nodes of continuous elements are shared between
neighbouring cells; discontinuous scalar dofs belong to a single cell.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from fem_immersed.core.mesh.model import MeshModel
from fem_immersed.elements.elements import FESystem
from fem_immersed.elements.lagrange import FE_Q, ScalarElement

logger = logging.getLogger(__name__)


class DoFHandler:
    """
    Distributes the dofs of a vector-valued element over a mesh.

    Parameters
    ----------
    mesh : MeshModel
        Mesh of quadrilaterals or hexahedra.
    fe : FESystem
        Element describing the local dof layout.
    renumber : str, optional
        "simple" keeps the order in which nodes are met while looping over
        cells, "rcm" applies reverse Cuthill-McKee to each block of nodes.

    Attributes
    ----------
    cell_nodes : np.ndarray
        Global node index of each vector base function (n_cells x n_base).
    node_points : np.ndarray
        Physical coordinates of the vector support nodes (n_nodes x dim).
    cell_dofs : np.ndarray
        Global dof indices of each cell in local (FESystem) order.
    vertex_nodes : np.ndarray
        Node index of each mesh vertex.
    """

    def __init__(self, mesh: MeshModel, fe: FESystem, renumber: str = "simple"):
        if renumber not in ("simple", "rcm"):
            raise ValueError(f"Unknown dof renumbering '{renumber}'. Available: ['simple', 'rcm']")
        self.mesh = mesh
        self.fe = fe
        self.dim = mesh.dim
        self.n_cells = mesh.elements_count

        self.cell_nodes, self.node_points, self.vertex_nodes = self._enumerate_nodes(
            fe.base, renumber
        )
        self.n_nodes = len(self.node_points)
        self.n_vector_dofs = self.n_nodes * fe.n_components

        if fe.scalar is None:
            self.scalar_cell_dofs = np.zeros((self.n_cells, 0), dtype=int)
            self.n_scalar_dofs = 0
            self.scalar_points = None
        elif fe.scalar.is_continuous:
            self.scalar_cell_dofs, self.scalar_points, _ = self._enumerate_nodes(
                fe.scalar, renumber
            )
            self.n_scalar_dofs = len(self.scalar_points)
        else:
            self.scalar_cell_dofs = np.arange(self.n_cells * fe.n_scalar_dofs).reshape(
                self.n_cells, fe.n_scalar_dofs
            )
            self.n_scalar_dofs = self.n_cells * fe.n_scalar_dofs
            self.scalar_points = None

        self.n_dofs = self.n_vector_dofs + self.n_scalar_dofs

        nc = fe.n_components
        vector = self.cell_nodes[:, :, None] * nc + np.arange(nc)
        self.cell_dofs = np.hstack(
            [vector.reshape(self.n_cells, -1), self.scalar_cell_dofs + self.n_vector_dofs]
        )

        self.component = np.concatenate(
            [
                np.tile(np.arange(nc), self.n_nodes),
                np.full(self.n_scalar_dofs, nc, dtype=int),
            ]
        )
        self._boundary_facets = None

        logger.debug(
            "%r on %d cells: %d vector dofs, %d scalar dofs",
            fe,
            self.n_cells,
            self.n_vector_dofs,
            self.n_scalar_dofs,
        )

    # =========================================================================
    # Node enumeration
    # =========================================================================

    def _enumerate_nodes(
        self, element: ScalarElement, renumber: str
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Number the support nodes of a continuous element.

        Nodes are identified by the vertices of the entity they lie on and
        their integer multilinear weights, which every neighbouring cell
        computes identically.
        """
        if not isinstance(element, FE_Q):
            raise TypeError(f"Continuous element expected, got {element!r}")

        vertices = self.mesh.cell_vertex_array
        cell_coords = self.mesh.cell_coords
        weights = element.entity_weights()
        scale = float(element.degree**self.dim)

        keys: Dict[frozenset, int] = {}
        points: List[np.ndarray] = []
        vertex_nodes = np.full(self.mesh.node_count, -1, dtype=int)
        cell_nodes = np.empty((self.n_cells, element.n_dofs), dtype=int)

        for c in range(self.n_cells):
            for b, w in enumerate(weights):
                support = np.flatnonzero(w)
                key = frozenset((int(vertices[c, v]), int(w[v])) for v in support)
                index = keys.get(key)
                if index is None:
                    index = len(points)
                    keys[key] = index
                    points.append(w @ cell_coords[c] / scale)
                    if len(support) == 1:
                        vertex_nodes[vertices[c, support[0]]] = index
                cell_nodes[c, b] = index

        node_points = np.array(points).reshape(-1, self.dim)

        if renumber == "rcm":
            permutation = self._rcm_order(cell_nodes, len(node_points))
            new_index = np.empty_like(permutation)
            new_index[permutation] = np.arange(len(permutation))
            cell_nodes = new_index[cell_nodes]
            node_points = node_points[permutation]
            valid = vertex_nodes >= 0
            vertex_nodes[valid] = new_index[vertex_nodes[valid]]

        return cell_nodes, node_points, vertex_nodes

    @staticmethod
    def _rcm_order(cell_nodes: np.ndarray, n_nodes: int) -> np.ndarray:
        from scipy.sparse import csr_matrix
        from scipy.sparse.csgraph import reverse_cuthill_mckee

        nb = cell_nodes.shape[1]
        rows = np.repeat(cell_nodes, nb, axis=1).ravel()
        cols = np.tile(cell_nodes, (1, nb)).ravel()
        graph = csr_matrix((np.ones(rows.size, dtype=np.int8), (rows, cols)), shape=(n_nodes, n_nodes))
        return np.asarray(reverse_cuthill_mckee(graph, symmetric_mode=True), dtype=int)

    # =========================================================================
    # Dof queries
    # =========================================================================

    @property
    def vector_dofs(self) -> slice:
        return slice(0, self.n_vector_dofs)

    @property
    def scalar_dofs(self) -> slice:
        return slice(self.n_vector_dofs, self.n_dofs)

    @property
    def first_scalar_dof(self) -> int:
        """Global index of the first pressure dof."""
        return self.n_vector_dofs

    def vector_dof(self, node: int, component: int) -> int:
        return node * self.fe.n_components + component

    @property
    def boundary_facets(self):
        if self._boundary_facets is None:
            self._boundary_facets = self.mesh.boundary_facets()
        return self._boundary_facets

    def facets_on(self, vertex_indices: Iterable[int]) -> np.ndarray:
        """Mask of the boundary facets whose vertices all belong to ``vertex_indices``."""
        members = np.zeros(self.mesh.node_count, dtype=bool)
        members[np.fromiter(vertex_indices, dtype=int)] = True
        return np.all(members[self.boundary_facets.vertices], axis=1)

    def boundary_nodes(self, vertex_indices: Iterable[int]) -> np.ndarray:
        """Sorted vector nodes lying on the boundary facets spanned by ``vertex_indices``."""
        facets = self.boundary_facets
        mask = self.facets_on(vertex_indices)
        nodes = [
            self.cell_nodes[cell, self.fe.base.face_dofs(face)]
            for cell, face in zip(facets.cells[mask], facets.faces[mask])
        ]
        if not nodes:
            return np.array([], dtype=int)
        return np.unique(np.concatenate(nodes))

    def boundary_dofs(
        self, vertex_indices: Iterable[int], components: Optional[Sequence[int]] = None
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Vector dofs on the boundary facets spanned by ``vertex_indices``.

        Returns
        -------
        dofs : np.ndarray
            Global dof indices.
        nodes : np.ndarray
            Support node of each dof.
        """
        nc = self.fe.n_components
        components = list(range(nc)) if components is None else list(components)
        for component in components:
            if not 0 <= component < nc:
                raise ValueError(f"Component {component} out of range [0, {nc})")
        nodes = self.boundary_nodes(vertex_indices)
        dofs = (nodes[:, None] * nc + np.array(components, dtype=int)).ravel()
        return dofs, np.repeat(nodes, len(components))

    def local_vector_values(self, vector: np.ndarray) -> np.ndarray:
        """Gather the vector block per cell, shape (n_cells, n_base, n_components)."""
        nc = self.fe.n_components
        local = vector[self.cell_dofs[:, : self.fe.n_vector_dofs]]
        return local.reshape(self.n_cells, self.fe.base.n_dofs, nc)

    def local_scalar_values(self, vector: np.ndarray) -> np.ndarray:
        """Gather the scalar block per cell, shape (n_cells, n_scalar)."""
        return vector[self.cell_dofs[:, self.fe.n_vector_dofs :]]

    def __repr__(self) -> str:
        return f"<DoFHandler {self.fe!r}: {self.n_dofs} dofs on {self.n_cells} cells>"
