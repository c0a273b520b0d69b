"""
Mesh I/O writers module.

Meshes and nodal/cell fields are exported with meshio; the format is inferred
from the file extension (``.vtu``, ``.vtk``, ``.msh``, ...).
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional

import meshio
import numpy as np

if TYPE_CHECKING:
    from fem_immersed.core.mesh.model import MeshModel

MESHIO_CELL_NAMES = {2: "quad", 3: "hexahedron"}


def to_meshio(
    mesh: "MeshModel",
    points: Optional[np.ndarray] = None,
    point_data: Optional[Dict[str, np.ndarray]] = None,
    cell_data: Optional[Dict[str, np.ndarray]] = None,
) -> meshio.Mesh:
    """
    Convert a MeshModel to a meshio.Mesh.

    Parameters
    ----------
    mesh : MeshModel
        Mesh to convert.
    points : np.ndarray, optional
        Replacement nodal coordinates (e.g. deformed positions).
    point_data : dict, optional
        Nodal fields. Two-component vectors are padded to three components.
    cell_data : dict, optional
        One value (or vector) per cell.
    """
    coords = mesh.coords_array if points is None else np.asarray(points, dtype=float)
    coords = _pad_to_3d(coords)

    index = mesh.node_id_to_index
    connectivity = np.array(
        [[index[nid] for nid in element.node_ids] for element in mesh.elements], dtype=int
    )
    cells = [(MESHIO_CELL_NAMES[mesh.dim], connectivity)]

    padded_point_data = {}
    for name, values in (point_data or {}).items():
        values = np.asarray(values, dtype=float)
        padded_point_data[name] = _pad_to_3d(values) if values.ndim == 2 else values

    return meshio.Mesh(
        points=coords,
        cells=cells,
        point_data=padded_point_data,
        cell_data={name: [np.asarray(values)] for name, values in (cell_data or {}).items()},
    )


def write_mesh(
    mesh: "MeshModel",
    filename: str,
    points: Optional[np.ndarray] = None,
    point_data: Optional[Dict[str, np.ndarray]] = None,
    cell_data: Optional[Dict[str, np.ndarray]] = None,
) -> Path:
    """Write the mesh (and optional fields) to ``filename``."""
    path = Path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    to_meshio(mesh, points, point_data, cell_data).write(str(path))
    return path


def _pad_to_3d(values: np.ndarray) -> np.ndarray:
    if values.ndim == 2 and values.shape[1] < 3:
        return np.hstack([values, np.zeros((values.shape[0], 3 - values.shape[1]))])
    return values
