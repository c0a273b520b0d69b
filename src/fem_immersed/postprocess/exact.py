"""
Equilibrium solution of the ring with circumferential fibers.

A ring of inner radius R and thickness w, centred in a square box of side l,
is made of fibers running along circles. At equilibrium the fluid is at rest
and the fiber tension is balanced by a pressure jump across the ring:

    p(r) = μ ln((R + w)/R)    r < R
    p(r) = μ ln((R + w)/r)    R ≤ r ≤ R + w
    p(r) = 0                  r > R + w

shifted by −μπ((R + w)² − R²)/(2l²) so that its mean over the box is zero.
"""

import logging
import os
from typing import NamedTuple, Sequence

import numpy as np

from fem_immersed.elements.quadrature import iterated_trapezoid
from fem_immersed.fem.dofs import DoFHandler
from fem_immersed.fem.fe_values import CellValues

logger = logging.getLogger(__name__)


class RingExactSolution:
    """
    Exact velocity and pressure of the fiber ring benchmark.

    Parameters
    ----------
    mu : float
        Fiber stiffness.
    center : sequence of float
        Centre of the ring.
    R : float
        Inner radius.
    w : float
        Thickness.
    l : float
        Side of the control volume.
    """

    def __init__(self, mu: float, center: Sequence[float], R: float, w: float, l: float):
        self.mu = mu
        self.center = np.asarray(center, dtype=float)
        self.R = R
        self.w = w
        self.l = l

    @classmethod
    def from_config(cls, config) -> "RingExactSolution":
        ring = config.solid.ring
        return cls(config.solid.mu, ring.center, ring.R, ring.w, ring.l)

    @property
    def shift(self) -> float:
        R, w = self.R, self.w
        return -self.mu * np.pi * ((R + w) ** 2 - R**2) / (2.0 * self.l**2)

    def velocity(self, points: np.ndarray) -> np.ndarray:
        return np.zeros_like(np.asarray(points, dtype=float))

    def pressure(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=float)
        r = np.linalg.norm(points[..., :2] - self.center[:2], axis=-1)
        outer = self.R + self.w
        inside = self.mu * np.log(outer / self.R)
        with np.errstate(divide="ignore"):
            ring = self.mu * np.log(outer / np.where(r > 0.0, r, 1.0))
        p = np.where(r < self.R, inside, np.where(r <= outer, ring, 0.0))
        return p + self.shift


class ErrorNorms(NamedTuple):
    velocity_l2: float
    velocity_h1: float
    pressure_l2: float


def compute_errors(
    dof_handler: DoFHandler, xi: np.ndarray, exact: RingExactSolution, degree: int
) -> ErrorNorms:
    """
    Distance between the fluid solution and the exact one.

    Integrals use an iterated trapezoidal rule with ``degree + 1`` copies, so
    that the pressure jumps across the ring are sampled uniformly.
    """
    dh = dof_handler
    rule = iterated_trapezoid(degree + 1, dh.dim)
    coords = dh.mesh.cell_coords
    velocity = CellValues.from_rule(dh.fe.base, coords, rule)
    pressure = CellValues.from_rule(dh.fe.scalar, coords, rule)
    JxW = velocity.JxW

    local_u = dh.local_vector_values(xi)
    u_error = velocity.vector_field(local_u) - exact.velocity(velocity.points)
    grad_u = velocity.vector_gradient(local_u)
    p_error = pressure.scalar_field(dh.local_scalar_values(xi)) - exact.pressure(velocity.points)

    return ErrorNorms(
        velocity_l2=float(np.sqrt(np.einsum("cqk,cqk,cq->", u_error, u_error, JxW))),
        velocity_h1=float(np.sqrt(np.einsum("cqkd,cqkd,cq->", grad_u, grad_u, JxW))),
        pressure_l2=float(np.sqrt(np.einsum("cq,cq,cq->", p_error, p_error, JxW))),
    )


def append_error_row(
    path: str,
    errors: ErrorNorms,
    n_solid_cells: int,
    n_solid_dofs: int,
    n_fluid_cells: int,
    n_fluid_dofs: int,
) -> None:
    """Append one LaTeX table row with the mesh sizes and error norms."""
    row = (
        f"- & {n_solid_cells:4d} & {n_solid_dofs:6d} & {n_fluid_cells:4d} & {n_fluid_dofs:6d}"
        f" & {errors.velocity_l2:8.5e} &-& {errors.velocity_h1:8.5e}"
        f" &-& {errors.pressure_l2:8.5e} &- \\\\ \\hline\n"
    )
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    with open(path, "a") as f:
        f.write(row)
    logger.info(
        "Ring errors: |u|_L2 = %.5e, |u|_H1 = %.5e, |p - p_ex|_L2 = %.5e",
        errors.velocity_l2,
        errors.velocity_h1,
        errors.pressure_l2,
    )
