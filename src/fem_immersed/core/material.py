from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class FluidMaterial:
    """
    Incompressible Newtonian fluid.

    Parameters
    ----------
    rho : float
        Density, shared by fluid and solid.
    eta : float
        Dynamic viscosity.
    """

    rho: float = 1.0
    eta: float = 1.0


@dataclass(frozen=True)
class SolidMaterial:
    """
    Visco-elastic immersed solid.

    Parameters
    ----------
    model : str
        Elastic law name (``INH_0``, ``INH_1`` or ``CircumferentialFiberModel``).
    mu : float
        Elastic shear modulus.
    Phi_B : float
        Weight of the displacement-velocity equation of the solid.
    center : Tuple[float, ...]
        Centre of the fiber circles (fiber law only).
    """

    model: str = "INH_0"
    mu: float = 1.0
    Phi_B: float = 1.0
    center: Tuple[float, ...] = (0.0, 0.0)
