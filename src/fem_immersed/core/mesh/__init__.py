"""
Mesh package for fem_immersed.

This package provides mesh handling for the fluid control volume and the
immersed solid:
- Mesh entities (Node, MeshElement, NodeSet)
- Mesh model (MeshModel) with global refinement and boundary queries
- Mesh generators (RectangleMesh, HyperCubeMesh, HyperShellMesh)
- I/O functions based on meshio

Usage
-----
>>> from fem_immersed.core.mesh import HyperCubeMesh, HyperShellMesh
>>> fluid = HyperCubeMesh(0.0, 1.0).generate().refine_global(3)
>>> solid = HyperShellMesh([0.5, 0.5], 0.25, 0.3125).generate().refine_global(2)
"""

from fem_immersed.core.mesh.entities import (
    ElementType,
    MeshElement,
    Node,
    NodeSet,
)
from fem_immersed.core.mesh.generators import HyperCubeMesh, HyperShellMesh, RectangleMesh
from fem_immersed.core.mesh.io import load_mesh, to_meshio, write_mesh
from fem_immersed.core.mesh.model import BoundaryFacets, MeshModel

__all__ = [
    # Entities
    "Node",
    "MeshElement",
    "NodeSet",
    "ElementType",
    # Model
    "MeshModel",
    "BoundaryFacets",
    # Generators
    "RectangleMesh",
    "HyperCubeMesh",
    "HyperShellMesh",
    # I/O
    "load_mesh",
    "write_mesh",
    "to_meshio",
]
