"""Essential conditions and pressure level folded into the global system."""

import logging
from typing import Optional

import numpy as np

from fem_immersed.core.assembler import SparseSystem
from fem_immersed.core.bc import BoundaryValues
from fem_immersed.solvers.domain import PressureAverage

logger = logging.getLogger(__name__)


class ConstraintEnforcer:
    """
    Overwrites the residual and Jacobian rows of constrained dofs.

    Each constrained dof i gets the equation scale·(ξ_i − g_i) = 0. When the
    pressure is only defined up to a constant, the row of the first pressure
    dof is replaced by the scaled pressure average, ∫p dx · scale / area = 0.

    Parameters
    ----------
    scale : float
        Row scaling, usually the smallest fluid cell diameter.
    pin_dof : int
        First pressure dof.
    area : float
        Area (volume) of the control volume.
    """

    def __init__(self, scale: float, pin_dof: int, area: float):
        if scale <= 0.0:
            raise ValueError(f"Constraint scale must be positive: {scale}")
        self.scale = scale
        self.pin_dof = pin_dof
        self.area = area

    def apply(
        self,
        system: SparseSystem,
        xi: np.ndarray,
        overlay: BoundaryValues,
        pressure: Optional[PressureAverage] = None,
    ) -> np.ndarray:
        """
        Constrain ``system`` and return the final residual.

        Parameters
        ----------
        system : SparseSystem
            Assembled domain and coupling contributions. Jacobian rows of
            constrained dofs are replaced in place.
        xi : np.ndarray
            Current state.
        overlay : BoundaryValues
            Prescribed values of the constrained dofs.
        pressure : PressureAverage, optional
            Pressure average; pins the pressure level when given.
        """
        residual = system.residual()
        dofs = overlay.dofs
        rows = dofs if pressure is None else np.append(dofs, self.pin_dof)
        system.drop_rows(rows)

        residual[dofs] = self.scale * (xi[dofs] - overlay.values)
        system.add_entries(dofs, dofs, np.full(len(dofs), self.scale))

        if pressure is not None:
            factor = self.scale / self.area
            residual[self.pin_dof] = pressure.value * factor
            system.add_entries(
                np.full(len(pressure.dofs), self.pin_dof),
                pressure.dofs,
                pressure.coefficients * factor,
            )
        return residual
