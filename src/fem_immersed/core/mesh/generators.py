"""
Structured mesh generators.

Each generator builds a coarse quadrilateral (2D) or hexahedral (3D) mesh and
returns a :class:`MeshModel` with named boundary node sets. Finer meshes are
obtained with :meth:`MeshModel.refine_global`.
"""

from typing import Optional, Sequence

import numpy as np

from fem_immersed.core.mesh.entities import (
    CELL_TYPE_BY_DIM,
    VTK_TO_LEXICOGRAPHIC,
    MeshElement,
    Node,
    NodeSet,
)
from fem_immersed.core.mesh.model import MeshModel, lexicographic_multi_indices

SIDE_NAMES = (("left", "right"), ("bottom", "top"), ("back", "front"))


class RectangleMesh:
    """
    Generates a structured mesh of an axis-aligned box.

    Attributes
    ----------
    lower : sequence of float
        Lower corner of the box.
    upper : sequence of float
        Upper corner of the box.
    subdivisions : sequence of int
        Number of cells along each axis.

    Node sets ``left``/``right`` (x), ``bottom``/``top`` (y),
    ``back``/``front`` (z, 3D only) and ``boundary`` are created.
    """

    def __init__(
        self,
        lower: Sequence[float],
        upper: Sequence[float],
        subdivisions: Optional[Sequence[int]] = None,
    ):
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        self.dim = self.lower.size
        if self.dim not in (2, 3) or self.upper.size != self.dim:
            raise ValueError("Box corners must both have 2 or 3 coordinates")
        if np.any(self.upper <= self.lower):
            raise ValueError(f"Invalid box: lower={self.lower}, upper={self.upper}")
        self.subdivisions = (
            tuple(int(n) for n in subdivisions) if subdivisions is not None else (1,) * self.dim
        )
        if len(self.subdivisions) != self.dim or min(self.subdivisions) < 1:
            raise ValueError(f"Invalid subdivisions: {subdivisions}")

    def generate(self) -> MeshModel:
        """Generates and returns a MeshModel with the structured mesh"""
        dim = self.dim
        counts = [n + 1 for n in self.subdivisions]
        axes = [np.linspace(self.lower[i], self.upper[i], counts[i]) for i in range(dim)]

        grid_nodes = {}
        nodes = []
        for m in _grid_indices(counts):
            node = Node([axes[i][m[i]] for i in range(dim)])
            grid_nodes[m] = node
            nodes.append(node)

        cell_type = CELL_TYPE_BY_DIM[dim]
        vtk_order = VTK_TO_LEXICOGRAPHIC[cell_type]
        elements = []
        corners = lexicographic_multi_indices(2, dim)
        for c in _grid_indices(self.subdivisions):
            lex = [grid_nodes[tuple(c[i] + b[i] for i in range(dim))] for b in corners]
            vtk_nodes = [None] * len(lex)
            for lex_pos, vtk_pos in enumerate(vtk_order):
                vtk_nodes[vtk_pos] = lex[lex_pos]
            elements.append(MeshElement(vtk_nodes, cell_type))

        mesh = MeshModel(nodes=nodes, elements=elements, dim=dim)
        for axis in range(dim):
            for side, name in enumerate(SIDE_NAMES[axis]):
                target = 0 if side == 0 else counts[axis] - 1
                members = {node for m, node in grid_nodes.items() if m[axis] == target}
                mesh.add_node_set(NodeSet(name, members))
        mesh.add_boundary_node_set()
        return mesh.renumber_mesh("simple")


class HyperCubeMesh(RectangleMesh):
    """
    Single-cell mesh of the cube ``[left, right]^dim``.

    Parameters
    ----------
    left, right : float
        Bounds of the cube along every axis.
    dim : int
        Spatial dimension (2 or 3).
    """

    def __init__(self, left: float = 0.0, right: float = 1.0, dim: int = 2):
        super().__init__([left] * dim, [right] * dim, [1] * dim)


class HyperShellMesh:
    """
    Generates a 2D annulus of quadrilaterals.

    The ring is one cell thick with ``n_cells`` cells around the circumference.
    When ``n_cells`` is not given it is chosen so that the cells are roughly
    square: ``ceil(pi * (outer + inner) / (outer - inner))``.

    The returned mesh carries a boundary projection that moves new boundary
    points onto the inner or outer circle during refinement. Node sets
    ``inner``, ``outer`` and ``boundary`` are created.
    """

    def __init__(
        self,
        center: Sequence[float],
        inner_radius: float,
        outer_radius: float,
        n_cells: int = 0,
    ):
        self.center = np.asarray(center, dtype=float)
        if self.center.size != 2:
            raise ValueError("HyperShellMesh is only available in 2D")
        if not 0 < inner_radius < outer_radius:
            raise ValueError(
                f"Radii must satisfy 0 < inner < outer, got {inner_radius}, {outer_radius}"
            )
        self.inner_radius = float(inner_radius)
        self.outer_radius = float(outer_radius)
        if n_cells <= 0:
            n_cells = int(
                np.ceil(np.pi * (outer_radius + inner_radius) / (outer_radius - inner_radius))
            )
        self.n_cells = int(n_cells)

    def generate(self) -> MeshModel:
        """Generates and returns a MeshModel with the annulus mesh"""
        angles = 2 * np.pi * np.arange(self.n_cells) / self.n_cells
        directions = np.column_stack([np.cos(angles), np.sin(angles)])
        inner = [Node(self.center + self.inner_radius * d) for d in directions]
        outer = [Node(self.center + self.outer_radius * d) for d in directions]

        elements = []
        for k in range(self.n_cells):
            k1 = (k + 1) % self.n_cells
            # Counter-clockwise: inner_k, outer_k, outer_k1, inner_k1
            elements.append(
                MeshElement([inner[k], outer[k], outer[k1], inner[k1]], CELL_TYPE_BY_DIM[2])
            )

        mesh = MeshModel(nodes=inner + outer, elements=elements, dim=2)
        mesh.add_node_set(NodeSet("inner", set(inner)))
        mesh.add_node_set(NodeSet("outer", set(outer)))
        mesh.add_boundary_node_set()
        mesh.boundary_projection = self.project
        return mesh.renumber_mesh("simple")

    def project(self, point: np.ndarray, parents: np.ndarray) -> np.ndarray:
        """Move ``point`` radially onto the circle through its parent points."""
        radius = np.mean(np.linalg.norm(parents[:, :2] - self.center, axis=1))
        offset = point[:2] - self.center
        projected = point.copy()
        projected[:2] = self.center + radius * offset / np.linalg.norm(offset)
        return projected


def _grid_indices(counts: Sequence[int]):
    """Multi-indices of a tensor grid with the first axis running fastest."""
    total = int(np.prod(counts))
    for flat in range(total):
        index = []
        rest = flat
        for n in counts:
            index.append(rest % n)
            rest //= n
        yield tuple(index)
