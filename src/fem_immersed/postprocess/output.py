"""
Result files of an immersed simulation.

- ``<name>-fluid-NNNNN.vtu`` / ``<name>-solid-NNNNN.vtu``: snapshots of the
  velocity and pressure on the fluid mesh and of the displacement on the
  deformed solid mesh, collected in ``<name>.pvd``.
- ``<name>_global.gpl``: one line per time step with the time, the net
  boundary flux, the solid area and its centre of mass.
"""

import logging
import os
from typing import List, Optional, Sequence, TextIO, Tuple

import numpy as np

from fem_immersed.core.mesh.io.writers import write_mesh
from fem_immersed.fem.dofs import DoFHandler

logger = logging.getLogger(__name__)


class GlobalLogWriter:
    """
    Appends the global quantities of each step to a text file.

    The file is truncated when the writer is created. If it cannot be opened,
    a warning is logged and every write becomes a no-op.

    Parameters
    ----------
    path : str
        Path of the ``.gpl`` file.
    """

    def __init__(self, path: str):
        self.path = path
        self._file: Optional[TextIO] = None
        try:
            self._file = open(path, "w")
        except OSError as exc:
            logger.warning("Cannot open global log '%s': %s", path, exc)

    @property
    def enabled(self) -> bool:
        return self._file is not None

    def write(self, t: float, flux: float, area: float, centre: Sequence[float]) -> None:
        if self._file is None:
            return
        values = [t, flux, area, *centre]
        self._file.write(" ".join(f"{v:.12g}" for v in values) + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "GlobalLogWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SnapshotWriter:
    """
    Writes VTU snapshots of both domains and keeps the PVD collection current.

    Parameters
    ----------
    output_folder : str
        Directory of the result files.
    name : str
        Base name of every file.
    fluid_dofs : DoFHandler
        Velocity-pressure layout.
    solid_dofs : DoFHandler
        Displacement layout.
    interval : int, optional
        Write at step 0, step 1 and every multiple of ``interval``.
    """

    def __init__(
        self,
        output_folder: str,
        name: str,
        fluid_dofs: DoFHandler,
        solid_dofs: DoFHandler,
        interval: int = 1,
    ):
        self.output_folder = output_folder
        self.name = name
        self.fluid_dofs = fluid_dofs
        self.solid_dofs = solid_dofs
        self.interval = interval
        self._written: List[Tuple[float, str, str]] = []
        os.makedirs(output_folder, exist_ok=True)

        # Pressure is exported per cell, evaluated at the cell centre
        scalar = fluid_dofs.fe.scalar
        centre = np.full((1, fluid_dofs.dim), 0.5)
        self._pressure_at_centre = scalar.values(centre)[0]

    def should_write(self, step: int) -> bool:
        return step == 1 or step % self.interval == 0

    def write(self, step: int, t: float, xi: np.ndarray) -> None:
        """Write the snapshots of ``xi`` for ``step`` and update the PVD file."""
        fluid, solid = self.fluid_dofs, self.solid_dofs
        nc = fluid.fe.n_components

        velocity = xi[: fluid.n_vector_dofs].reshape(-1, nc)[fluid.vertex_nodes]
        pressure = fluid.local_scalar_values(xi) @ self._pressure_at_centre
        fluid_file = f"{self.name}-fluid-{step:05d}.vtu"
        write_mesh(
            fluid.mesh,
            os.path.join(self.output_folder, fluid_file),
            point_data={"velocity": velocity},
            cell_data={"pressure": pressure},
        )

        w = xi[fluid.n_dofs : fluid.n_dofs + solid.n_vector_dofs].reshape(-1, nc)
        displacement = w[solid.vertex_nodes]
        solid_file = f"{self.name}-solid-{step:05d}.vtu"
        write_mesh(
            solid.mesh,
            os.path.join(self.output_folder, solid_file),
            points=solid.mesh.coords_array + displacement,
            point_data={"displacement": displacement},
        )

        self._written.append((t, fluid_file, solid_file))
        self._update_pvd()
        logger.debug("Snapshot %d written (t=%g)", step, t)

    def _update_pvd(self) -> None:
        """Rewrite the PVD collection with every snapshot written so far."""
        pvd_path = os.path.join(self.output_folder, f"{self.name}.pvd")

        with open(pvd_path, "w") as f:
            f.write('<?xml version="1.0"?>\n')
            f.write('<VTKFile type="Collection" version="1.0">\n')
            f.write("  <Collection>\n")

            for t, fluid_file, solid_file in self._written:
                f.write(f'    <DataSet timestep="{t}" part="0" file="{fluid_file}"/>\n')
                f.write(f'    <DataSet timestep="{t}" part="1" file="{solid_file}"/>\n')

            f.write("  </Collection>\n")
            f.write("</VTKFile>\n")
