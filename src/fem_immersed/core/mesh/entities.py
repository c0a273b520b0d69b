"""
Mesh entities module.

This module contains the fundamental building blocks for mesh representation:
- Node: A point in 3D space
- MeshElement: A connectivity element defined by nodes
- NodeSet: A collection of nodes

Elements store their nodes in VTK order. The tensor-product (lexicographic)
vertex order used by the finite element layer is obtained through
``VTK_TO_LEXICOGRAPHIC``.
"""

from enum import IntEnum
from typing import Iterable, Sequence, Set, Tuple, Union

import numpy as np


class ElementType(IntEnum):
    """Enumeration of supported element types.

    Values correspond to VTK cell type constants.
    """

    line = 3
    quad = 9
    hexahedron = 12


# Element type of the cells of a mesh of given dimension
CELL_TYPE_BY_DIM = {
    1: ElementType.line,
    2: ElementType.quad,
    3: ElementType.hexahedron,
}

# Position in VTK connectivity of the i-th lexicographic vertex
VTK_TO_LEXICOGRAPHIC = {
    ElementType.line: (0, 1),
    ElementType.quad: (0, 1, 3, 2),
    ElementType.hexahedron: (0, 1, 3, 2, 4, 5, 7, 6),
}


class Node:
    """
    Represents a node with 3D coordinates.

    This class ensures that coordinates always include a z-value.
    If fewer than 3 coordinates are provided, zeros are appended.

    Attributes
    ----------
    coords : np.ndarray
        Array of coordinates in the form [x, y, z].
    id : int
        Unique identifier for the node.
    """

    _id_counter = 0

    def __init__(self, coords: Union[Iterable[float], np.ndarray]):
        coords_arr = np.array(coords, dtype=float)
        if coords_arr.size < 3:
            coords_arr = np.concatenate((coords_arr, np.zeros(3 - coords_arr.size)))
        self.coords = coords_arr
        self.id = Node._id_counter
        Node._id_counter += 1

    @property
    def x(self) -> float:
        return self.coords[0]

    @property
    def y(self) -> float:
        return self.coords[1]

    @property
    def z(self) -> float:
        return self.coords[2]

    def __repr__(self):
        return f"<Node id={self.id} coords={self.coords.tolist()}>"


class MeshElement:
    """
    Represents a mesh element defined solely by node connectivity.

    Attributes
    ----------
    nodes : list of Node
        Nodes that form the element, in VTK order.
    id : int
        Unique identifier for the element.
    element_type : ElementType
        Type of the element.
    """

    _id_counter = 0

    def __init__(self, nodes: Sequence[Node], element_type: ElementType):
        self.id = MeshElement._id_counter
        self.nodes = list(nodes)
        self.element_type = element_type
        MeshElement._id_counter += 1

    @property
    def node_ids(self) -> Tuple:
        """Get tuple of node IDs for this element."""
        return tuple([node.id for node in self.nodes])

    @property
    def lexicographic_node_ids(self) -> Tuple:
        """Node IDs in tensor-product order."""
        order = VTK_TO_LEXICOGRAPHIC[self.element_type]
        return tuple(self.nodes[i].id for i in order)

    @property
    def node_count(self) -> int:
        """Get the number of nodes in this element."""
        return len(self.nodes)

    def __repr__(self):
        return f"<MeshElement id={self.id} type={self.element_type.name} node_ids={self.node_ids}>"


class NodeSet:
    """
    Represents a set of nodes within the mesh.

    This is used to group nodes for applying boundary conditions.

    Attributes
    ----------
    name : str
        Name of the node set.
    nodes : dict
        Dictionary mapping node IDs to Node instances.
    """

    def __init__(self, name: str, nodes: Set[Node] | None = None):
        self.name = name
        self.nodes = {node.id: node for node in nodes} if nodes is not None else {}

    def add_node(self, node: Node):
        """Add a node to the set if it is not already included."""
        self.nodes[node.id] = node

    @property
    def node_ids(self) -> Set[int]:
        """Set of node IDs in this set."""
        return set(self.nodes.keys())

    @property
    def node_count(self) -> int:
        """Number of nodes in the set."""
        return len(self.nodes)

    def __repr__(self):
        return f"<NodeSet '{self.name}': {self.node_count} nodes>"
