"""Quadrature rules on the reference cell [0, 1]^dim.

Points are stored in tensor-product order with the first coordinate running
fastest, matching the ordering of the element bases.

Rules supported:
- gauss: Gauss-Legendre rule with ``n`` points per direction
- iterated_trapezoid: composite trapezoidal rule with coinciding points merged
"""

from typing import NamedTuple

import numpy as np

from fem_immersed.core.mesh.model import lexicographic_multi_indices


class QuadratureRule(NamedTuple):
    """Points and weights of a quadrature rule

    Attributes
    ----------
    points : np.ndarray
        Reference coordinates (n_points x dim)
    weights : np.ndarray
        Integration weights (n_points,), summing to 1
    """

    points: np.ndarray
    weights: np.ndarray

    @property
    def size(self) -> int:
        return len(self.weights)

    @property
    def dim(self) -> int:
        return self.points.shape[1]


def tensor_product(points_1d: np.ndarray, weights_1d: np.ndarray, dim: int) -> QuadratureRule:
    """Build a ``dim``-dimensional rule from a one-dimensional one."""
    multi = np.array(lexicographic_multi_indices(len(points_1d), dim), dtype=int)
    points = points_1d[multi]
    weights = np.prod(weights_1d[multi], axis=1)
    return QuadratureRule(points.reshape(-1, dim), weights)


def gauss(n: int, dim: int) -> QuadratureRule:
    """Gauss-Legendre rule, exact for polynomials of degree 2n - 1 per direction.

    Parameters
    ----------
    n : int
        Number of points per direction
    dim : int
        Spatial dimension
    """
    if n < 1:
        raise ValueError(f"Number of Gauss points must be positive, got {n}")
    x, w = np.polynomial.legendre.leggauss(n)
    # Map from [-1, 1] to [0, 1]
    return tensor_product(0.5 * (x + 1.0), 0.5 * w, dim)


def iterated_trapezoid(copies: int, dim: int) -> QuadratureRule:
    """Trapezoidal rule repeated on ``copies`` equal sub-intervals.

    Points shared by neighbouring sub-intervals are merged, so the rule has
    ``(copies + 1)**dim`` points including the cell vertices.
    """
    if copies < 1:
        raise ValueError(f"Number of copies must be positive, got {copies}")
    h = 1.0 / copies
    x = np.linspace(0.0, 1.0, copies + 1)
    w = np.full(copies + 1, h)
    w[[0, -1]] = 0.5 * h
    return tensor_product(x, w, dim)
