"""
Elastic constitutive laws for the immersed solid.

Each law gives the elastic part of the first Piola-Kirchhoff stress, Pe(F),
and its directional derivative dPe = ∂Pe/∂F : dF. All functions operate on
stacks of tensors: F has shape (..., dim, dim) and the directions dF carry an
extra axis for the local dofs, (..., n_dofs, dim, dim).

Laws available:
- INH_0: compressible neo-Hookean, Pe = μ(F − F⁻ᵀ)
- INH_1: compressible neo-Hookean, Pe = μF
- CircumferentialFiberModel: fibers along circles, Pe = μ F (e_θ ⊗ e_θ)

References
----------
- Heltai, L. and Costanzo, F. (2012). "Variational implementation of immersed
  finite element methods." Computer Methods in Applied Mechanics and
  Engineering, 229-232, 110-127.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Type

import numpy as np

from fem_immersed.core.errors import ConfigurationError


def transpose(A: np.ndarray) -> np.ndarray:
    return np.swapaxes(A, -1, -2)


def shape_gradient_variations(gradients: np.ndarray, n_components: int) -> np.ndarray:
    """
    Variations dF_k = e_{c_k} ⊗ ∇N_{a_k} of the displacement gradient.

    Parameters
    ----------
    gradients : np.ndarray
        Physical shape gradients (n_cells x nq x n_base x dim).
    n_components : int
        Number of displacement components.

    Returns
    -------
    np.ndarray
        One tensor per local dof k = a * n_components + c,
        shape (n_cells x nq x n_base * n_components x n_components x dim).
    """
    n_cells, nq, nb, dim = gradients.shape
    nk = nb * n_components
    dF = np.zeros((n_cells, nq, nk, n_components, dim))
    k = np.arange(nk)
    dF[:, :, k, k % n_components, :] = gradients[:, :, k // n_components, :]
    return dF


class ElasticLaw(ABC):
    """
    Base class for elastic laws.

    Parameters
    ----------
    mu : float
        Elastic shear modulus.
    dim : int
        Spatial dimension.
    """

    name = ""

    def __init__(self, mu: float, dim: int):
        if mu < 0:
            raise ConfigurationError(f"Shear modulus must be non-negative: {mu}")
        self.mu = mu
        self.dim = dim

    @abstractmethod
    def stress(self, F: np.ndarray, X: np.ndarray) -> np.ndarray:
        """Pe at deformation gradients ``F`` and reference points ``X``."""

    @abstractmethod
    def stress_derivative(self, F: np.ndarray, dF: np.ndarray, X: np.ndarray) -> np.ndarray:
        """dPe along each direction in ``dF`` (extra axis before the tensor axes)."""

    def stress_FT(self, F: np.ndarray, X: np.ndarray) -> np.ndarray:
        """Pe Fᵀ, the elastic Cauchy-like stress pulled to the current frame."""
        return self.stress(F, X) @ transpose(F)

    def stress_FT_derivative(self, F: np.ndarray, dF: np.ndarray, X: np.ndarray) -> np.ndarray:
        """d(Pe Fᵀ) = dPe Fᵀ + Pe dFᵀ along each direction in ``dF``."""
        Pe = self.stress(F, X)[..., None, :, :]
        dPe = self.stress_derivative(F, dF, X)
        return dPe @ transpose(F)[..., None, :, :] + Pe @ transpose(dF)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name} mu={self.mu}>"


class NeoHookeanINH0(ElasticLaw):
    """Pe = μ(F − F⁻ᵀ); stress free in the reference configuration."""

    name = "INH_0"

    def stress(self, F, X):
        return self.mu * (F - transpose(np.linalg.inv(F)))

    def stress_derivative(self, F, dF, X):
        FinvT = transpose(np.linalg.inv(F))[..., None, :, :]
        return self.mu * (dF + FinvT @ transpose(dF) @ FinvT)


class NeoHookeanINH1(ElasticLaw):
    """Pe = μF."""

    name = "INH_1"

    def stress(self, F, X):
        return self.mu * F

    def stress_derivative(self, F, dF, X):
        return self.mu * dF


class CircumferentialFiber(ElasticLaw):
    """
    Fibers running along circles centred at ``center``.

    Pe = μ F (e_θ ⊗ e_θ) with e_θ = (−p_y, p_x)/|p| and p = X − center.
    Only available in 2D.

    Parameters
    ----------
    mu : float
        Fiber stiffness.
    dim : int
        Spatial dimension, must be 2.
    center : sequence of float
        Centre of the fiber circles.
    """

    name = "CircumferentialFiberModel"

    def __init__(self, mu: float, dim: int, center: Sequence[float] = (0.0, 0.0)):
        if dim != 2:
            raise ConfigurationError(
                f"CircumferentialFiberModel is only available in 2D, got dim={dim}"
            )
        super().__init__(mu, dim)
        self.center = np.asarray(center, dtype=float)[:2]

    def fiber_tensor(self, X: np.ndarray) -> np.ndarray:
        """e_θ ⊗ e_θ at reference points ``X``; zero at the centre itself."""
        p = X - self.center
        radius = np.linalg.norm(p, axis=-1)
        e = np.stack([-p[..., 1], p[..., 0]], axis=-1)
        safe = np.where(radius > 0.0, radius, 1.0)
        e = np.where((radius > 0.0)[..., None], e / safe[..., None], 0.0)
        return e[..., :, None] * e[..., None, :]

    def stress(self, F, X):
        return self.mu * F @ self.fiber_tensor(X)

    def stress_derivative(self, F, dF, X):
        return self.mu * dF @ self.fiber_tensor(X)[..., None, :, :]


LAW_MAP: Dict[str, Type[ElasticLaw]] = {
    NeoHookeanINH0.name: NeoHookeanINH0,
    NeoHookeanINH1.name: NeoHookeanINH1,
    CircumferentialFiber.name: CircumferentialFiber,
}


def create_law(
    model: str, mu: float, dim: int, center: Optional[Sequence[float]] = None
) -> ElasticLaw:
    """
    Create an elastic law by name.

    Raises
    ------
    ConfigurationError
        For unknown names or a fiber law outside 2D.
    """
    try:
        law = LAW_MAP[model]
    except KeyError:
        raise ConfigurationError(
            f"Unknown material model '{model}'. Available: {list(LAW_MAP.keys())}"
        )
    if law is CircumferentialFiber:
        return law(mu, dim, center if center is not None else (0.0, 0.0))
    return law(mu, dim)
