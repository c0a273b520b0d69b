"""
Immersed FEM Simulation Runner.

This module provides a runner that executes immersed simulations based on
YAML configuration files, without requiring any Python code editing.

Example usage:
    from fem_immersed.solvers.runner import IFEMRunner

    runner = IFEMRunner("simulation.yaml")
    runner.run()

Or from command line:
    python -m fem_immersed.cli.run_ifem simulation.yaml
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from fem_immersed.core.config import IFEMConfig
from fem_immersed.solvers.ifem import ImmersedFEMSolver

logger = logging.getLogger(__name__)


class IFEMRunner:
    """
    Simulation runner that executes immersed simulations from YAML configuration.

    This class handles:
    - Loading meshes from files or generating them
    - Building the finite element spaces and boundary conditions
    - Running the time integration
    - Post-processing results

    Parameters
    ----------
    config : IFEMConfig or str or Path
        Configuration object or path to YAML configuration file.
    working_dir : str or Path, optional
        Working directory for the simulation. If None, uses current directory.

    Attributes
    ----------
    config : IFEMConfig
        The validated simulation configuration.
    solver : ImmersedFEMSolver
        The solver instance after setup.

    Examples
    --------
    >>> runner = IFEMRunner("ring.yaml")
    >>> runner.run()
    """

    def __init__(
        self,
        config: Union[IFEMConfig, str, Path],
        working_dir: Optional[Union[str, Path]] = None,
    ):
        if isinstance(config, (str, Path)):
            self.config_path = Path(config)
            self.config = IFEMConfig.from_yaml(config)
        else:
            self.config_path = None
            self.config = config

        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.solver: Optional[ImmersedFEMSolver] = None

    def run(self) -> ImmersedFEMSolver:
        """
        Execute the complete simulation pipeline.

        Returns
        -------
        ImmersedFEMSolver
            The solver after running (for accessing results).
        """
        self._print_header()
        self._validate_config()

        logger.info("Starting immersed FEM simulation...")

        # Step 1: Load or generate meshes
        self.solver = ImmersedFEMSolver(self.config, working_dir=self.working_dir)
        self._setup_meshes()

        # Step 2: Spaces, assemblers and boundary conditions
        self._setup_solver()

        # Step 3: Report boundary conditions
        self._report_boundary_conditions()

        # Step 4: Time integration
        print("\n[4/5] Running time integration...", flush=True)
        reports = self.solver.run()
        iterations = sum(r.iterations for r in reports)
        print(f"      Steps: {len(reports)}, Newton iterations: {iterations}")

        # Step 5: Post-processing
        self._run_postprocessing()

        logger.info("Simulation completed successfully!")
        return self.solver

    def _print_header(self) -> None:
        """Print simulation header."""
        print("\n" + "=" * 70)
        print("  FEM-IMMERSED SIMULATION RUNNER")
        print("=" * 70)
        print(f"  Configuration: {self.config_path or 'Provided object'}")
        print(f"  Material model: {self.config.solid.material_model}")
        print(f"  Dimension: {self.config.dim}, degree: {self.config.degree}")
        print("=" * 70 + "\n")

    def _validate_config(self) -> None:
        """Validate configuration before running."""
        for warning in self.config.validate():
            logger.warning("Configuration warning: %s", warning)

    def _setup_meshes(self) -> None:
        print("\n[1/5] Setting up meshes...", flush=True)
        self.solver.setup_meshes()
        for name, mesh in (("Fluid", self.solver.fluid_mesh), ("Solid", self.solver.solid_mesh)):
            print(f"      {name}: {mesh.node_count} nodes, {mesh.elements_count} cells")
            print(f"      {name} node sets: {mesh.node_sets_names}")

    def _setup_solver(self) -> None:
        print("\n[2/5] Building finite element spaces...", flush=True)
        self.solver.setup()
        print(f"      Fluid: {self.solver.fluid_fe!r}, {self.solver.fluid_dofs.n_dofs} dofs")
        print(f"      Solid: {self.solver.solid_fe!r}, {self.solver.solid_dofs.n_dofs} dofs")

    def _report_boundary_conditions(self) -> None:
        print("\n[3/5] Applying boundary conditions...", flush=True)
        manager = self.solver.bc_manager
        for condition in manager.conditions:
            print(f"      Dirichlet on '{condition.nodeset}': {condition.function!r}")
        print(f"      Total Dirichlet BCs: {len(manager.conditions)}")
        print(f"      All boundaries essential: {manager.all_dirichlet}")

    def _run_postprocessing(self) -> None:
        """Plot the global log when requested."""
        if not self.config.output.plot:
            return

        print("\n[5/5] Post-processing...", flush=True)
        try:
            from fem_immersed.postprocess.plots import GlobalLogVisualizer

            folder = self.solver.output_folder
            name = self.config.output.name
            visualizer = GlobalLogVisualizer(os.path.join(folder, f"{name}_global.gpl"))
            save_path = os.path.join(folder, f"{name}_global.png")
            visualizer.plot(save_path=save_path)
            print(f"      Saved: {save_path}")

        except Exception as e:
            logger.warning("Post-processing failed: %s", e)
            print(f"      Warning: Could not generate plots: {e}")

    # =========================================================================
    # Utility methods
    # =========================================================================

    def preview_config(self) -> str:
        """Get a preview of the configuration.

        Returns
        -------
        str
            Human-readable configuration summary.
        """
        return str(self.config)


def run_from_yaml(
    yaml_path: Union[str, Path], working_dir: Optional[str] = None
) -> ImmersedFEMSolver:
    """
    Convenience function to run an immersed simulation from YAML file.

    Parameters
    ----------
    yaml_path : str or Path
        Path to the YAML configuration file.
    working_dir : str, optional
        Working directory for the simulation.

    Returns
    -------
    ImmersedFEMSolver
        The solver instance after running.

    Examples
    --------
    >>> from fem_immersed.solvers.runner import run_from_yaml
    >>> solver = run_from_yaml("ring.yaml")
    """
    runner = IFEMRunner(yaml_path, working_dir)
    return runner.run()
