"""
Mesh I/O readers module.

Meshes are read with meshio. Only linear quadrilaterals (2D) and hexahedra
(3D) are accepted as cells; lower-dimensional cells carrying integer tags
(e.g. boundary ids of a deal.II UCD file) become node sets named after the
tag value.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Set

import numpy as np

from fem_immersed.core.mesh.entities import ElementType, MeshElement, Node, NodeSet

if TYPE_CHECKING:
    from fem_immersed.core.mesh.model import MeshModel

logger = logging.getLogger(__name__)

MESHIO_TYPE_MAP = {
    "quad": ElementType.quad,
    "hexahedron": ElementType.hexahedron,
}

# Boundary cell types for each mesh dimension
MESHIO_FACET_TYPES = {
    2: ("line",),
    3: ("quad",),
}

# File extensions whose meshio reader name differs from the default guess
FORMAT_ALIASES = {
    "ucd": "avsucd",
    ".inp": "avsucd",
    ".ucd": "avsucd",
}


def load_mesh(filepath: str, format: str = "auto") -> "MeshModel":
    """
    Load a mesh from disk.

    Parameters
    ----------
    filepath : str
        Path to the mesh file.
    format : str, optional
        meshio file format name, "ucd" for deal.II UCD files, or "auto" to
        infer it from the extension. Default is "auto".

    Returns
    -------
    MeshModel
        The loaded mesh with IDs matching array indices.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file contains no supported cells.
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Mesh file not found: {filepath}")

    if format == "auto":
        file_format = FORMAT_ALIASES.get(path.suffix.lower())
    else:
        file_format = FORMAT_ALIASES.get(format, format)

    return load_meshio(str(path), file_format)


def load_meshio(filepath: str, file_format: str | None = None) -> "MeshModel":
    """Load a mesh using the meshio library."""
    import meshio

    # Import here to avoid circular imports
    from fem_immersed.core.mesh.model import MeshModel

    mio = meshio.read(filepath, file_format=file_format)

    cell_blocks = [block for block in mio.cells if block.type in MESHIO_TYPE_MAP]
    if not cell_blocks:
        raise ValueError(f"No quadrilateral or hexahedral cells found in {filepath}")
    dim = 3 if any(block.type == "hexahedron" for block in cell_blocks) else 2

    nodes = [Node(coords[:dim]) for coords in np.asarray(mio.points, dtype=float)]

    elements = []
    for cell_block in mio.cells:
        if MESHIO_TYPE_MAP.get(cell_block.type) is None:
            continue
        element_type = MESHIO_TYPE_MAP[cell_block.type]
        if (element_type == ElementType.hexahedron) != (dim == 3):
            continue
        for connectivity in cell_block.data:
            elements.append(MeshElement([nodes[int(i)] for i in connectivity], element_type))

    mesh = MeshModel(nodes=nodes, elements=elements, dim=dim)

    for name, point_ids in (mio.point_sets or {}).items():
        mesh.add_node_set(NodeSet(str(name), {nodes[int(i)] for i in point_ids}))

    for tag, members in _tagged_facet_nodes(mio, dim).items():
        name = str(tag)
        if name in mesh.node_sets:
            continue
        mesh.add_node_set(NodeSet(name, {nodes[i] for i in members}))

    if "boundary" not in mesh.node_sets:
        mesh.add_boundary_node_set()

    mesh.renumber_mesh("simple")
    logger.info("Mesh loaded from %s: %s", filepath, mesh)
    return mesh


def _tagged_facet_nodes(mio, dim: int) -> Dict[int, Set[int]]:
    """Group the nodes of tagged boundary cells by their integer tag."""
    tagged: Dict[int, Set[int]] = {}
    facet_types = MESHIO_FACET_TYPES[dim]
    for data_name, per_block in (mio.cell_data or {}).items():
        for cell_block, values in zip(mio.cells, per_block):
            if cell_block.type not in facet_types:
                continue
            values = np.asarray(values)
            if not np.issubdtype(values.dtype, np.integer):
                if not np.all(np.mod(values, 1) == 0):
                    continue
                values = values.astype(int)
            tags = values.reshape(len(cell_block.data), -1)[:, 0]
            for connectivity, tag in zip(cell_block.data, tags):
                tagged.setdefault(int(tag), set()).update(int(i) for i in connectivity)
        if tagged:
            logger.debug("Boundary tags read from cell data '%s'", data_name)
            break
    return tagged
