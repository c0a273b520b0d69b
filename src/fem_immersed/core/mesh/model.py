"""
MeshModel class module.

This module contains the main MeshModel class that represents a complete
quadrilateral (2D) or hexahedral (3D) mesh with nodes, elements and node sets.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Set

import numpy as np

from fem_immersed.core.mesh.entities import (
    CELL_TYPE_BY_DIM,
    VTK_TO_LEXICOGRAPHIC,
    MeshElement,
    Node,
    NodeSet,
)

logger = logging.getLogger(__name__)

# Projects a newly created boundary point given the coordinates of its parents
BoundaryProjection = Callable[[np.ndarray, np.ndarray], np.ndarray]


def lexicographic_multi_indices(n: int, dim: int) -> List[tuple]:
    """Multi-indices of an ``n**dim`` tensor grid, first axis running fastest."""
    indices = []
    for flat in range(n**dim):
        indices.append(tuple((flat // n**axis) % n for axis in range(dim)))
    return indices


def reference_face_vertices(dim: int) -> List[tuple]:
    """Lexicographic vertex positions of each face of the reference cell.

    Face ``2 * axis + side`` holds the vertices whose ``axis`` coordinate
    equals ``side``.
    """
    faces = []
    for axis in range(dim):
        for side in (0, 1):
            faces.append(tuple(v for v in range(2**dim) if (v >> axis) & 1 == side))
    return faces


class BoundaryFacets(NamedTuple):
    """Facets lying on the mesh boundary.

    Attributes
    ----------
    cells : np.ndarray
        Index of the cell owning each facet.
    faces : np.ndarray
        Local face number of each facet (``2 * axis + side``).
    vertices : np.ndarray
        Node indices of each facet, in lexicographic order.
    """

    cells: np.ndarray
    faces: np.ndarray
    vertices: np.ndarray


class MeshModel:
    """
    Represents a mesh composed of nodes and connectivity elements.

    This class caches nodes and elements for fast lookup and supports node
    sets for applying boundary conditions.

    Attributes
    ----------
    nodes : list of Node
        List of nodes in the mesh.
    elements : list of MeshElement
        List of connectivity elements in the mesh.
    node_map : dict
        Dictionary mapping node IDs to Node instances.
    element_map : dict
        Dictionary mapping element IDs to MeshElement instances.
    node_sets : dict
        Dictionary mapping node set names to NodeSet instances.
    dim : int
        Spatial dimension of the cells (2 for quads, 3 for hexahedra).
    boundary_projection : callable, optional
        Applied to new boundary points during refinement, e.g. to keep
        curved boundaries on their exact geometry.
    """

    def __init__(
        self,
        nodes: Iterable[Node] | None = None,
        elements: Optional[List[MeshElement]] = None,
        dim: int = 2,
    ):
        if dim not in (2, 3):
            raise ValueError(f"Mesh dimension must be 2 or 3, got {dim}")

        self.dim = dim
        self.nodes = list(nodes) if nodes is not None else []
        self.elements = list(elements) if elements is not None else []

        self.node_map: Dict[int, Node] = {}
        self.element_map: Dict[int, MeshElement] = {}
        self.node_sets: Dict[str, NodeSet] = {}
        self.boundary_projection: Optional[BoundaryProjection] = None

        for node in self.nodes:
            if node.id in self.node_map:
                raise ValueError(f"Duplicate node ID {node.id} in initial nodes list.")
            self.node_map[node.id] = node

        for element in self.elements:
            if element.id in self.element_map:
                raise ValueError(f"Duplicate element ID {element.id} in initial elements list.")
            self.element_map[element.id] = element

        self._node_id_to_index_cache: Optional[Dict[int, int]] = None
        self._cell_vertex_cache: Optional[np.ndarray] = None

    # =========================================================================
    # ID-to-Index Mapping
    # =========================================================================

    @property
    def node_id_to_index(self) -> Dict[int, int]:
        """Mapping from node IDs to consecutive array indices (0-based)."""
        if self._node_id_to_index_cache is None:
            self._node_id_to_index_cache = {node.id: idx for idx, node in enumerate(self.nodes)}
        return self._node_id_to_index_cache

    def _invalidate_caches(self) -> None:
        self._node_id_to_index_cache = None
        self._cell_vertex_cache = None

    # =========================================================================
    # Renumbering
    # =========================================================================

    @property
    def needs_renumbering(self) -> bool:
        """True if node or element IDs don't match their array indices."""
        for idx, node in enumerate(self.nodes):
            if node.id != idx:
                return True
        return any(element.id != idx for idx, element in enumerate(self.elements))

    def renumber_mesh(self, algorithm: str = "simple") -> "MeshModel":
        """
        Renumber node and element IDs to match their array indices.

        Parameters
        ----------
        algorithm : str, optional
            - "simple": Direct index assignment (default)
            - "rcm": Reverse Cuthill-McKee for bandwidth reduction

        Returns
        -------
        MeshModel
            Self, for method chaining.
        """
        algorithms = {
            "simple": self._renumber_simple,
            "rcm": self._renumber_rcm,
        }

        if algorithm not in algorithms:
            raise ValueError(
                f"Unknown renumbering algorithm: {algorithm}. Available: {list(algorithms.keys())}"
            )

        algorithms[algorithm]()
        return self

    def _renumber_simple(self) -> None:
        """Simple renumbering: assign IDs equal to array indices."""
        if not self.needs_renumbering:
            return

        for new_id, node in enumerate(self.nodes):
            node.id = new_id

        for new_id, element in enumerate(self.elements):
            element.id = new_id

        self._finalize_renumbering()

    def _renumber_rcm(self) -> None:
        """Reverse Cuthill-McKee renumbering for bandwidth reduction."""
        from scipy.sparse import csr_matrix
        from scipy.sparse.csgraph import reverse_cuthill_mckee

        if not self.nodes or not self.elements:
            self._renumber_simple()
            return

        n_nodes = len(self.nodes)
        cells = self.cell_vertex_array
        nv = cells.shape[1]
        rows = np.repeat(cells, nv, axis=1).ravel()
        cols = np.tile(cells, (1, nv)).ravel()
        adjacency = csr_matrix(
            (np.ones(rows.size, dtype=np.int8), (rows, cols)), shape=(n_nodes, n_nodes)
        )

        def bandwidth(new_index: np.ndarray) -> int:
            return int(np.max(np.abs(new_index[rows] - new_index[cols])))

        bandwidth_before = bandwidth(np.arange(n_nodes))
        rcm_order = reverse_cuthill_mckee(adjacency, symmetric_mode=True)
        new_index = np.empty(n_nodes, dtype=int)
        new_index[rcm_order] = np.arange(n_nodes)

        element_sort_key = [(int(new_index[cells[i]].min()), i) for i in range(len(self.elements))]
        element_sort_key.sort()

        old_nodes = self.nodes
        self.nodes = [old_nodes[i] for i in rcm_order]
        for new_id, node in enumerate(self.nodes):
            node.id = new_id

        old_elements = self.elements
        self.elements = [old_elements[i] for _, i in element_sort_key]
        for new_id, element in enumerate(self.elements):
            element.id = new_id

        self._finalize_renumbering()
        logger.debug(
            "RCM renumbering: bandwidth %d -> %d (%d nodes)",
            bandwidth_before,
            bandwidth(new_index),
            n_nodes,
        )

    def _finalize_renumbering(self) -> None:
        """Common finalization steps after renumbering."""
        self.node_map = {node.id: node for node in self.nodes}
        self.element_map = {element.id: element for element in self.elements}

        for node_set in self.node_sets.values():
            node_set.nodes = {node.id: node for node in node_set.nodes.values()}

        self._invalidate_caches()

        Node._id_counter = max(Node._id_counter, len(self.nodes))
        MeshElement._id_counter = max(MeshElement._id_counter, len(self.elements))

    # =========================================================================
    # Add/Get Methods
    # =========================================================================

    def add_node(self, node: Node):
        """Add a node to the mesh and update the cache."""
        if node.id in self.node_map:
            raise ValueError(f"Node with id {node.id} already exists.")
        self.nodes.append(node)
        self.node_map[node.id] = node
        self._invalidate_caches()

    def add_node_set(self, node_set: NodeSet):
        """Add a node set to the mesh."""
        if node_set.name in self.node_sets:
            raise ValueError(f"NodeSet '{node_set.name}' already exists.")
        self.node_sets[node_set.name] = node_set

    def get_node_set(self, name: str) -> NodeSet:
        """Retrieve a node set by its name."""
        try:
            return self.node_sets[name]
        except KeyError:
            raise ValueError(f"NodeSet '{name}' not found.")

    def node_set_indices(self, name: str) -> np.ndarray:
        """Sorted node indices of a node set."""
        index = self.node_id_to_index
        return np.array(sorted(index[nid] for nid in self.get_node_set(name).node_ids), dtype=int)

    # =========================================================================
    # Geometry
    # =========================================================================

    @property
    def node_sets_names(self) -> List[str]:
        """List of node set names."""
        return list(self.node_sets.keys())

    @property
    def node_count(self) -> int:
        """Number of nodes in the mesh."""
        return len(self.nodes)

    @property
    def elements_count(self) -> int:
        """Number of elements in the mesh."""
        return len(self.elements)

    @property
    def coords_array(self) -> np.ndarray:
        """Nodal coordinates restricted to the mesh dimension, shape (N, dim)."""
        return np.array([node.coords[: self.dim] for node in self.nodes]).reshape(-1, self.dim)

    @property
    def cell_vertex_array(self) -> np.ndarray:
        """Node indices of every cell in lexicographic order, shape (n_cells, 2**dim)."""
        if self._cell_vertex_cache is None:
            index = self.node_id_to_index
            self._cell_vertex_cache = np.array(
                [[index[nid] for nid in element.lexicographic_node_ids] for element in self.elements],
                dtype=int,
            ).reshape(-1, 2**self.dim)
        return self._cell_vertex_cache

    @property
    def cell_coords(self) -> np.ndarray:
        """Vertex coordinates of every cell, shape (n_cells, 2**dim, dim)."""
        return self.coords_array[self.cell_vertex_array]

    def cell_diameters(self) -> np.ndarray:
        """Largest vertex-to-opposite-vertex distance of each cell."""
        coords = self.cell_coords
        nv = coords.shape[1]
        diagonals = [
            np.linalg.norm(coords[:, v] - coords[:, nv - 1 - v], axis=1) for v in range(nv // 2)
        ]
        return np.max(diagonals, axis=0)

    def minimal_cell_diameter(self) -> float:
        """Smallest cell diameter of the mesh."""
        return float(np.min(self.cell_diameters()))

    def boundary_facets(self) -> BoundaryFacets:
        """Facets that belong to exactly one cell."""
        face_vertices = reference_face_vertices(self.dim)
        cells = self.cell_vertex_array
        counts: Dict[frozenset, int] = {}
        for cell in cells:
            for local in face_vertices:
                key = frozenset(cell[list(local)].tolist())
                counts[key] = counts.get(key, 0) + 1

        owners, faces, vertices = [], [], []
        for c, cell in enumerate(cells):
            for f, local in enumerate(face_vertices):
                facet = cell[list(local)]
                if counts[frozenset(facet.tolist())] == 1:
                    owners.append(c)
                    faces.append(f)
                    vertices.append(facet)

        return BoundaryFacets(
            cells=np.array(owners, dtype=int),
            faces=np.array(faces, dtype=int),
            vertices=np.array(vertices, dtype=int).reshape(-1, 2 ** (self.dim - 1)),
        )

    def boundary_node_indices(self) -> np.ndarray:
        """Sorted indices of all nodes on the boundary."""
        return np.unique(self.boundary_facets().vertices)

    def add_boundary_node_set(self, name: str = "boundary") -> NodeSet:
        """Create (or replace) a node set with every boundary node."""
        node_set = NodeSet(name, {self.nodes[i] for i in self.boundary_node_indices()})
        self.node_sets[name] = node_set
        return node_set

    # =========================================================================
    # Refinement
    # =========================================================================

    def _boundary_entities(self) -> Set[frozenset]:
        """Node-id sets of every boundary facet and, in 3D, of its edges."""
        entities = set()
        for facet in self.boundary_facets().vertices:
            ids = [self.nodes[i].id for i in facet]
            entities.add(frozenset(ids))
            if self.dim == 3:
                for a, b in ((0, 1), (2, 3), (0, 2), (1, 3)):
                    entities.add(frozenset((ids[a], ids[b])))
        return entities

    def refine_global(self, levels: int = 1) -> "MeshModel":
        """
        Uniformly refine every cell ``levels`` times.

        Each quadrilateral is split into 4 children and each hexahedron into 8.
        New points on boundary entities inherit the node sets that contain all
        of their parent vertices and are passed through ``boundary_projection``
        when one is set.

        Returns
        -------
        MeshModel
            Self, for method chaining.
        """
        for _ in range(levels):
            self._refine_once()
        return self

    def _refine_once(self) -> None:
        dim = self.dim
        nv = 2**dim
        cell_type = CELL_TYPE_BY_DIM[dim]
        vtk_order = VTK_TO_LEXICOGRAPHIC[cell_type]
        boundary_entities = self._boundary_entities()
        set_members = {name: node_set.node_ids for name, node_set in self.node_sets.items()}

        next_id = max(self.node_map) + 1 if self.node_map else 0
        new_nodes = list(self.nodes)
        entity_nodes: Dict[frozenset, Node] = {}
        new_elements = []
        grid = lexicographic_multi_indices(3, dim)
        children = lexicographic_multi_indices(2, dim)

        for element in self.elements:
            lex_nodes = [element.nodes[vtk_order[i]] for i in range(nv)]
            points: Dict[tuple, Node] = {}
            for m in grid:
                parents = [
                    lex_nodes[v]
                    for v in range(nv)
                    if all(m[i] == 1 or (v >> i) & 1 == m[i] // 2 for i in range(dim))
                ]
                if len(parents) == 1:
                    points[m] = parents[0]
                    continue

                key = frozenset(node.id for node in parents)
                node = entity_nodes.get(key)
                if node is None:
                    parent_coords = np.array([p.coords for p in parents])
                    coords = parent_coords.mean(axis=0)
                    on_boundary = key in boundary_entities
                    if on_boundary and self.boundary_projection is not None:
                        coords = self.boundary_projection(coords, parent_coords)
                    node = Node(coords)
                    node.id = next_id
                    next_id += 1
                    entity_nodes[key] = node
                    new_nodes.append(node)
                    if on_boundary:
                        for name, members in set_members.items():
                            if key <= members:
                                self.node_sets[name].add_node(node)
                points[m] = node

            for c in children:
                child_lex = [
                    points[tuple(c[i] + ((b >> i) & 1) for i in range(dim))] for b in range(nv)
                ]
                vtk_nodes = [None] * nv
                for lex_pos, vtk_pos in enumerate(vtk_order):
                    vtk_nodes[vtk_pos] = child_lex[lex_pos]
                new_elements.append(MeshElement(vtk_nodes, cell_type))

        self.nodes = new_nodes
        self.elements = new_elements
        for new_id, element in enumerate(self.elements):
            element.id = new_id
        self._finalize_renumbering()
        self._renumber_simple()

    def __repr__(self) -> str:
        return (
            f"<MeshModel: dim={self.dim}, {self.node_count} nodes, {self.elements_count} elements, "
            f"{len(self.node_sets_names)} node sets>"
        )
