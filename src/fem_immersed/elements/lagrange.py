"""Scalar tensor-product finite elements on the reference cell [0, 1]^dim

Elements supported:
- FE_Q: continuous Lagrange element of degree k on equispaced nodes
- FE_DGP: discontinuous element spanning the complete polynomials of total
  degree <= k (orthonormal shifted Legendre products)

Both are described by a family of one-dimensional polynomials and a list of
multi-indices: basis function ``b`` is

    N_b(ξ) = Π_axis p[m_b[axis]](ξ_axis)

so values, gradients and Hessians all reduce to products of one-dimensional
derivative tables. Basis functions are ordered with the first axis running
fastest.
"""

from typing import List, Optional, Sequence

import numpy as np
from numpy.polynomial import Legendre, Polynomial

from fem_immersed.core.mesh.model import lexicographic_multi_indices


class ScalarElement:
    """Base class for scalar tensor-product elements

    Parameters
    ----------
    degree : int
        Polynomial degree
    dim : int
        Spatial dimension of the reference cell
    polynomials : sequence
        One-dimensional numpy polynomials ``p[i]``
    multi_indices : np.ndarray
        Multi-index of each basis function (n_dofs x dim)
    """

    name = "FE"
    is_continuous = True

    def __init__(
        self,
        degree: int,
        dim: int,
        polynomials: Sequence,
        multi_indices: np.ndarray,
    ):
        self.degree = degree
        self.dim = dim
        self.multi_indices = np.asarray(multi_indices, dtype=int).reshape(-1, dim)
        self.n_dofs = len(self.multi_indices)
        # derivatives[order][i] is the order-th derivative of p[i]
        self._derivatives = [list(polynomials)]
        for order in (1, 2):
            self._derivatives.append([p.deriv(order) for p in polynomials])

    @property
    def support_points(self) -> Optional[np.ndarray]:
        """Reference coordinates of the nodal points, or None for modal bases."""
        return None

    def _evaluate(self, points: np.ndarray, orders: Sequence[int]) -> np.ndarray:
        result = np.ones(points.shape[:-1] + (self.n_dofs,))
        for axis in range(self.dim):
            polys = self._derivatives[orders[axis]]
            table = np.stack([p(points[..., axis]) for p in polys], axis=-1)
            result = result * table[..., self.multi_indices[:, axis]]
        return result

    def values(self, points: np.ndarray) -> np.ndarray:
        """Shape function values, shape (..., n_dofs)"""
        points = np.asarray(points, dtype=float)
        return self._evaluate(points, (0,) * self.dim)

    def gradients(self, points: np.ndarray) -> np.ndarray:
        """Reference gradients, shape (..., n_dofs, dim)"""
        points = np.asarray(points, dtype=float)
        columns = []
        for d in range(self.dim):
            orders = [0] * self.dim
            orders[d] = 1
            columns.append(self._evaluate(points, orders))
        return np.stack(columns, axis=-1)

    def hessians(self, points: np.ndarray) -> np.ndarray:
        """Reference second derivatives, shape (..., n_dofs, dim, dim)"""
        points = np.asarray(points, dtype=float)
        result = np.empty(points.shape[:-1] + (self.n_dofs, self.dim, self.dim))
        for d in range(self.dim):
            for e in range(d, self.dim):
                orders = [0] * self.dim
                orders[d] += 1
                orders[e] += 1
                block = self._evaluate(points, orders)
                result[..., d, e] = block
                result[..., e, d] = block
        return result

    def face_dofs(self, face: int) -> np.ndarray:
        """Local dofs whose support point lies on reference face ``face``."""
        return np.array([], dtype=int)

    def __repr__(self) -> str:
        return f"{self.name}({self.degree})"


class FE_Q(ScalarElement):
    """Continuous Lagrange element on equispaced nodes

    Node layout for degree 2 in 2D (first axis fastest)::

        6---7---8
        |   |   |
        3---4---5
        |   |   |
        0---1---2
    """

    name = "FE_Q"
    is_continuous = True

    def __init__(self, degree: int, dim: int):
        if degree < 1:
            raise ValueError(f"FE_Q requires degree >= 1, got {degree}")
        self.nodes_1d = np.linspace(0.0, 1.0, degree + 1)
        polynomials = []
        for i, xi in enumerate(self.nodes_1d):
            others = np.delete(self.nodes_1d, i)
            polynomials.append(Polynomial.fromroots(others) / np.prod(xi - others))
        super().__init__(
            degree, dim, polynomials, lexicographic_multi_indices(degree + 1, dim)
        )

    @property
    def support_points(self) -> np.ndarray:
        return self.nodes_1d[self.multi_indices]

    def face_dofs(self, face: int) -> np.ndarray:
        axis, side = divmod(face, 2)
        return np.flatnonzero(self.multi_indices[:, axis] == side * self.degree)

    def entity_weights(self) -> List[np.ndarray]:
        """Integer multilinear weights of each node with respect to the cell vertices.

        Entry ``b`` has one value per (lexicographic) vertex; it is non-zero only
        for the vertices of the lowest-dimensional entity holding node ``b``.
        The weights are exact integers scaled by ``degree**dim`` so that nodes
        seen from neighbouring cells produce identical keys.
        """
        k = self.degree
        weights = []
        for m in self.multi_indices:
            w = np.ones(2**self.dim, dtype=np.int64)
            for v in range(2**self.dim):
                for axis in range(self.dim):
                    bit = (v >> axis) & 1
                    w[v] *= m[axis] if bit else k - m[axis]
            weights.append(w)
        return weights


class FE_DGP(ScalarElement):
    """Discontinuous complete polynomials of total degree <= k

    The basis consists of products of orthonormal shifted Legendre
    polynomials; basis function 0 is the constant 1.
    """

    name = "FE_DGP"
    is_continuous = False

    def __init__(self, degree: int, dim: int):
        if degree < 0:
            raise ValueError(f"FE_DGP requires degree >= 0, got {degree}")
        polynomials = [
            np.sqrt(2 * n + 1) * Legendre.basis(n, domain=[0.0, 1.0]) for n in range(degree + 1)
        ]
        multi = [m for m in lexicographic_multi_indices(degree + 1, dim) if sum(m) <= degree]
        super().__init__(degree, dim, polynomials, multi)
