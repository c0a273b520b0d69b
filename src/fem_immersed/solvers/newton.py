"""
Newton iteration for one implicit Euler step.

The residual f(ξ', ξ, t) is solved for ξ with ξ' = (ξ − ξ_prev)/Δt. The
Jacobian ∂f/∂ξ + (1/Δt) ∂f/∂ξ' is factored with a sparse LU decomposition and
reused until a refresh is requested, so the driver keeps its factorization
and update policy from one time step to the next.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import splu

from fem_immersed.core.errors import NewtonConvergenceError, SingularJacobianError

logger = logging.getLogger(__name__)

# evaluate(xi, xi_t, alpha, with_jacobian) -> (residual, jacobian or None)
Evaluator = Callable[
    [np.ndarray, np.ndarray, float, bool], Tuple[np.ndarray, Optional[csr_matrix]]
]


class NewtonState(str, Enum):
    """States of the nonlinear driver."""

    NEED_JACOBIAN = "NeedJacobian"
    RESIDUAL_ONLY = "ResidualOnly"
    CONVERGED = "Converged"
    STALLED = "Stalled"


@dataclass
class NewtonReport:
    """Outcome of one nonlinear solve."""

    iterations: int = 0
    outer_cycles: int = 0
    residual_norm: float = float("nan")
    factorizations: int = 0
    evaluations: int = 0
    converged: bool = False


class LinearSolver:
    """Sparse direct solver built on ``scipy.sparse.linalg.splu``."""

    def __init__(self):
        self._lu = None

    @property
    def is_factored(self) -> bool:
        return self._lu is not None

    def factor(self, matrix: csr_matrix) -> None:
        """
        Compute the LU factors of ``matrix``.

        Raises
        ------
        SingularJacobianError
            If the matrix is singular.
        """
        self._lu = None
        try:
            lu = splu(matrix.tocsc())
        except RuntimeError as exc:
            raise SingularJacobianError(f"Jacobian factorization failed: {exc}") from exc
        diagonal = np.abs(lu.U.diagonal())
        if diagonal.size and (not np.all(np.isfinite(diagonal)) or diagonal.min() == 0.0):
            raise SingularJacobianError("Jacobian factorization failed: zero pivot")
        self._lu = lu

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        if self._lu is None:
            raise RuntimeError("solve() called before factor()")
        return self._lu.solve(rhs)


class NewtonSolver:
    """
    Modified Newton driver with a bounded number of Jacobian refreshes.

    Parameters
    ----------
    evaluate : Evaluator
        Residual (and Jacobian) of the constrained global system.
    tolerance : float, optional
        Convergence threshold on ‖residual‖₂.
    max_inner_iterations : int, optional
        Iterations before a cycle is declared stalled.
    max_outer_iterations : int, optional
        Stalled cycles tolerated before giving up.
    jacobian_refresh_threshold : float, optional
        Residual norm above which the Jacobian is recomputed at the next
        iteration.
    update_jacobian_continuously : bool, optional
        Recompute the Jacobian at every iteration.
    update_jacobian_at_step_beginning : bool, optional
        Recompute the Jacobian at the first iteration of every step.
    """

    def __init__(
        self,
        evaluate: Evaluator,
        tolerance: float = 1e-10,
        max_inner_iterations: int = 15,
        max_outer_iterations: int = 3,
        jacobian_refresh_threshold: float = 1e-2,
        update_jacobian_continuously: bool = True,
        update_jacobian_at_step_beginning: bool = False,
    ):
        self.evaluate = evaluate
        self.tolerance = tolerance
        self.max_inner_iterations = max_inner_iterations
        self.max_outer_iterations = max_outer_iterations
        self.jacobian_refresh_threshold = jacobian_refresh_threshold
        self.update_jacobian_continuously = update_jacobian_continuously
        self.update_jacobian_at_step_beginning = update_jacobian_at_step_beginning
        self.linear_solver = LinearSolver()
        self.update_jacobian = True
        self.state = NewtonState.NEED_JACOBIAN

    @classmethod
    def from_config(cls, evaluate: Evaluator, solver_config) -> "NewtonSolver":
        return cls(
            evaluate,
            tolerance=solver_config.tolerance,
            max_inner_iterations=solver_config.max_inner_iterations,
            max_outer_iterations=solver_config.max_outer_iterations,
            jacobian_refresh_threshold=solver_config.jacobian_refresh_threshold,
            update_jacobian_continuously=solver_config.update_jacobian_continuously,
            update_jacobian_at_step_beginning=solver_config.update_jacobian_at_step_beginning,
        )

    def solve(self, xi: np.ndarray, xi_prev: np.ndarray, dt: float) -> NewtonReport:
        """
        Iterate on ``xi`` (in place) until the residual vanishes.

        Parameters
        ----------
        xi : np.ndarray
            Initial guess with the boundary values of the step already set;
            overwritten with the solution.
        xi_prev : np.ndarray
            Solution at the previous step.
        dt : float
            Time step.

        Returns
        -------
        NewtonReport

        Raises
        ------
        NewtonConvergenceError
            After more than ``max_outer_iterations`` stalled cycles.
        SingularJacobianError
            If the Jacobian cannot be factored.
        """
        report = NewtonReport()
        inner = 0
        if self.update_jacobian or not self.linear_solver.is_factored:
            self.state = NewtonState.NEED_JACOBIAN
        else:
            self.state = NewtonState.RESIDUAL_ONLY

        while True:
            xi_t = (xi - xi_prev) / dt
            if self.state is NewtonState.NEED_JACOBIAN:
                residual, jacobian = self.evaluate(xi, xi_t, 1.0 / dt, True)
                self.linear_solver.factor(jacobian)
                report.factorizations += 1
                self.update_jacobian = self.update_jacobian_continuously
            else:
                residual, _ = self.evaluate(xi, xi_t, 0.0, False)
            report.evaluations += 1

            res_norm = float(np.linalg.norm(residual))
            report.residual_norm = res_norm

            if res_norm < self.tolerance:
                self.state = NewtonState.CONVERGED
                report.converged = True
                logger.info(
                    "Converged in %d iterations, residual %.3e", report.iterations, res_norm
                )
                break

            logger.info("%d: %e", inner, res_norm)
            xi += self.linear_solver.solve(-residual)
            report.iterations += 1
            if res_norm > self.jacobian_refresh_threshold:
                self.update_jacobian = True

            inner += 1
            if inner == self.max_inner_iterations:
                self.state = NewtonState.STALLED
                self.update_jacobian = True
                inner = 0
                report.outer_cycles += 1
                logger.warning(
                    "Residual %.3e not converged in %d iterations (cycle %d)",
                    res_norm,
                    self.max_inner_iterations,
                    report.outer_cycles,
                )
                if report.outer_cycles > self.max_outer_iterations:
                    raise NewtonConvergenceError(
                        "No convergence in nonlinear solver",
                        iterations=report.iterations,
                        residual_norm=res_norm,
                    )

            if self.update_jacobian:
                self.state = NewtonState.NEED_JACOBIAN
            else:
                self.state = NewtonState.RESIDUAL_ONLY

        self.update_jacobian = (
            self.update_jacobian_continuously or self.update_jacobian_at_step_beginning
        )
        return report
