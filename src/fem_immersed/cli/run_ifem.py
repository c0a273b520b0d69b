#!/usr/bin/env python3
"""
Immersed FEM Simulation CLI Runner.

This script provides a command-line interface for running immersed
simulations from YAML configuration files.

Usage:
    python -m fem_immersed.cli.run_ifem config.yaml [options]

Examples:
    # Run simulation from YAML
    python -m fem_immersed.cli.run_ifem ring.yaml

    # Run with custom working directory
    python -m fem_immersed.cli.run_ifem ring.yaml --workdir /path/to/case

    # Preview configuration without running
    python -m fem_immersed.cli.run_ifem ring.yaml --preview

    # Generate template configuration
    python -m fem_immersed.cli.run_ifem --template > my_config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path

# Template YAML configuration
TEMPLATE_CONFIG = """# Immersed FEM Simulation Configuration
# =====================================
# An elastic body immersed in an incompressible viscous fluid.

dim: 2
degree: 2            # Velocity/displacement degree (pressure uses degree - 1)

#============================================================================
# FINITE ELEMENTS
#============================================================================
fe:
  pressure_element: "FE_DGP"     # "FE_DGP" or "FE_Q"
  # fluid_quadrature: 4          # Gauss points per direction (default degree + 2)
  # solid_quadrature_copies: 40  # Trapezoid copies (default 4 * (degree + 8))

#============================================================================
# MESHES
#============================================================================
mesh:
  fluid:
    source: "generator"          # "file" or "generator"
    generator:
      type: "HyperCube"          # "HyperCube", "Rectangle" or "HyperShell"
      params: {left: 0.0, right: 1.0}
    refinements: 4
    renumber: "simple"           # "simple" or "rcm"
  solid:
    source: "file"
    file:
      path: "solid_2d.inp"       # Any meshio format; .inp is read as deal.II UCD
      format: "auto"
    refinements: 1

#============================================================================
# MATERIALS
#============================================================================
fluid:
  rho: 1.0
  eta: 1.0

solid:
  material_model: "INH_0"        # "INH_0", "INH_1" or "CircumferentialFiberModel"
  mu: 1.0
  Phi_B: 1.0
  # ring:                        # Geometry of the fiber ring benchmark
  #   center: [0.5, 0.5]
  #   R: 0.25
  #   w: 0.0625
  #   l: 1.0

#============================================================================
# SOLVER
#============================================================================
solver:
  time_step: 0.01
  final_time: 1.0
  semi_implicit: false
  use_spread: false
  update_jacobian_continuously: true
  update_jacobian_at_step_beginning: false
  fix_pressure: false

#============================================================================
# BOUNDARY AND INITIAL CONDITIONS
#============================================================================
boundary_conditions:
  dirichlet:
    - nodeset: "boundary"
      value: ["0", "0"]          # Expressions in x, y, z and t
    # - nodeset: "top"
    #   value: ["1"]
    #   components: [0]          # Optional: constrain only some components

initial_conditions:
  velocity: ["0", "0"]
  displacement: ["0", "0"]

# body_force: ["0", "-1"]

#============================================================================
# OUTPUT
#============================================================================
output:
  folder: "results"
  name: "ifem"
  interval: 1                    # Snapshots at steps 0, 1 and multiples of interval
  write_vtu: true
  plot: false                    # Plot the global log after the run
"""


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_template() -> None:
    """Print template configuration to stdout."""
    print(TEMPLATE_CONFIG)


def validate_config(config_path: str) -> bool:
    """Validate configuration file without running."""
    from fem_immersed.core.config import IFEMConfig
    from fem_immersed.core.errors import ConfigurationError

    try:
        config = IFEMConfig.from_yaml(config_path)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"\n✗ Validation failed: {e}")
        return False

    warnings = config.validate()

    print("Configuration validation:")
    print("=" * 50)
    print(config)

    if warnings:
        print("\nWarnings:")
        for w in warnings:
            print(f"  ⚠️  {w}")
        return False

    print("\n✓ Configuration is valid")
    return True


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Run immersed FEM simulations from YAML configuration files.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s config.yaml                    Run simulation
  %(prog)s config.yaml --preview          Preview configuration
  %(prog)s config.yaml --validate         Validate configuration
  %(prog)s --template > config.yaml       Generate template
        """,
    )

    parser.add_argument(
        "config",
        nargs="?",
        help="Path to YAML configuration file",
    )

    parser.add_argument(
        "--workdir",
        "-w",
        help="Working directory for simulation",
    )

    parser.add_argument(
        "--preview",
        "-p",
        action="store_true",
        help="Preview configuration without running",
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration file",
    )

    parser.add_argument(
        "--template",
        "-t",
        action="store_true",
        help="Print template configuration to stdout",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.template:
        print_template()
        return 0

    # Require config file for other operations
    if not args.config:
        parser.print_help()
        return 1

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Configuration file not found: {config_path}")
        return 1

    setup_logging(args.verbose)

    # Validate only
    if args.validate:
        return 0 if validate_config(str(config_path)) else 1

    # Preview configuration
    if args.preview:
        from fem_immersed.solvers.runner import IFEMRunner

        print(IFEMRunner(str(config_path), args.workdir).preview_config())
        return 0

    # Run simulation
    try:
        from fem_immersed.solvers.runner import IFEMRunner

        runner = IFEMRunner(str(config_path), args.workdir)
        runner.run()
        return 0

    except KeyboardInterrupt:
        print("\nSimulation interrupted by user")
        return 130

    except Exception as e:
        logging.exception("Simulation failed")
        print(f"\nError: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
