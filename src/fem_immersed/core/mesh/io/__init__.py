"""
Mesh I/O subpackage.

This package provides functions for reading and writing meshes through meshio.
"""

from fem_immersed.core.mesh.io.readers import load_mesh, load_meshio
from fem_immersed.core.mesh.io.writers import to_meshio, write_mesh

__all__ = [
    # Writers
    "write_mesh",
    "to_meshio",
    # Readers
    "load_mesh",
    "load_meshio",
]
