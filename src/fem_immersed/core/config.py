"""
Immersed FEM Simulation Configuration Module.

This module provides a YAML-based configuration system for immersed finite
element simulations, allowing users to define complete simulations without
writing Python code. Configuration objects are immutable.

Example YAML configuration:
    dim: 2
    degree: 2

    mesh:
      fluid:
        source: "generator"
        generator:
          type: "HyperCube"
          params: {left: 0.0, right: 1.0}
        refinements: 3
      solid:
        source: "file"
        file:
          path: "solid_2d.inp"

    solid:
      material_model: "INH_0"
      mu: 1.0

    solver:
      time_step: 0.01
      final_time: 1.0
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from fem_immersed.core.errors import ConfigurationError

Expression = Union[str, float]


class MeshSource(str, Enum):
    """Source type for mesh data."""

    FILE = "file"
    GENERATOR = "generator"


class MeshGeneratorType(str, Enum):
    """Available mesh generators."""

    HYPER_CUBE = "HyperCube"
    RECTANGLE = "Rectangle"
    HYPER_SHELL = "HyperShell"


class MaterialModel(str, Enum):
    """Elastic laws of the immersed solid."""

    INH_0 = "INH_0"
    INH_1 = "INH_1"
    CIRCUMFERENTIAL_FIBER = "CircumferentialFiberModel"


class PressureElement(str, Enum):
    """Pressure finite element families."""

    FE_DGP = "FE_DGP"
    FE_Q = "FE_Q"


def _expressions(values: Any, name: str) -> Optional[Tuple[str, ...]]:
    """Normalize a scalar or list of expressions to a tuple of strings."""
    if values is None:
        return None
    if isinstance(values, (str, int, float)):
        values = [values]
    if not isinstance(values, (list, tuple)):
        raise ConfigurationError(f"{name} must be an expression or a list, got {values!r}")
    return tuple(str(v) for v in values)


# =============================================================================
# Configuration Data Classes
# =============================================================================


@dataclass(frozen=True)
class FiniteElementConfig:
    """Finite element spaces and quadrature."""

    pressure_element: str = PressureElement.FE_DGP.value
    fluid_quadrature: Optional[int] = None
    solid_quadrature_copies: Optional[int] = None

    def __post_init__(self):
        valid = [p.value for p in PressureElement]
        if self.pressure_element not in valid:
            raise ConfigurationError(
                f"Invalid pressure_element: '{self.pressure_element}'. Must be one of {valid}."
            )
        if self.fluid_quadrature is not None and self.fluid_quadrature < 1:
            raise ConfigurationError(
                f"fluid_quadrature must be positive, got {self.fluid_quadrature}"
            )
        if self.solid_quadrature_copies is not None and self.solid_quadrature_copies < 1:
            raise ConfigurationError(
                f"solid_quadrature_copies must be positive, got {self.solid_quadrature_copies}"
            )


@dataclass(frozen=True)
class MeshFileConfig:
    """Configuration for loading mesh from file."""

    path: str
    format: str = "auto"


@dataclass(frozen=True)
class MeshGeneratorConfig:
    """Configuration for mesh generation."""

    type: str
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        valid = [g.value for g in MeshGeneratorType]
        if self.type not in valid:
            raise ConfigurationError(
                f"Unknown mesh generator type: '{self.type}'. Must be one of {valid}."
            )


@dataclass(frozen=True)
class MeshConfig:
    """Mesh of one domain."""

    source: str
    file: Optional[MeshFileConfig] = None
    generator: Optional[MeshGeneratorConfig] = None
    refinements: int = 0
    renumber: str = "simple"

    def __post_init__(self):
        if self.source == MeshSource.FILE.value:
            if self.file is None:
                raise ConfigurationError("Mesh source is 'file' but no file config provided")
        elif self.source == MeshSource.GENERATOR.value:
            if self.generator is None:
                raise ConfigurationError(
                    "Mesh source is 'generator' but no generator config provided"
                )
        else:
            raise ConfigurationError(f"Invalid mesh source: {self.source}")
        if self.refinements < 0:
            raise ConfigurationError(f"refinements must be non-negative, got {self.refinements}")
        if self.renumber not in ("simple", "rcm"):
            raise ConfigurationError(
                f"Invalid renumber: '{self.renumber}'. Must be one of ('simple', 'rcm')."
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_path: Optional[Path] = None) -> "MeshConfig":
        mesh_file = None
        mesh_generator = None
        if data.get("source") == MeshSource.FILE.value:
            file_data = dict(data.get("file", {}))
            # Resolve relative paths
            if base_path and not Path(file_data.get("path", "")).is_absolute():
                file_data["path"] = str(base_path / file_data.get("path", ""))
            mesh_file = MeshFileConfig(**file_data)
        elif data.get("source") == MeshSource.GENERATOR.value:
            gen_data = data.get("generator", {})
            mesh_generator = MeshGeneratorConfig(
                type=gen_data.get("type"),
                params=dict(gen_data.get("params", {}) or {}),
            )
        return cls(
            source=data.get("source"),
            file=mesh_file,
            generator=mesh_generator,
            refinements=int(data.get("refinements", 0)),
            renumber=data.get("renumber", "simple"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"source": self.source}
        if self.file:
            result["file"] = {"path": self.file.path, "format": self.file.format}
        if self.generator:
            result["generator"] = {"type": self.generator.type, "params": dict(self.generator.params)}
        result["refinements"] = self.refinements
        result["renumber"] = self.renumber
        return result


@dataclass(frozen=True)
class MeshesConfig:
    """Meshes of the control volume and of the immersed solid."""

    fluid: Optional[MeshConfig] = None
    solid: Optional[MeshConfig] = None


@dataclass(frozen=True)
class FluidConfig:
    """Fluid properties."""

    rho: float = 1.0
    eta: float = 1.0

    def __post_init__(self):
        if self.rho <= 0:
            raise ConfigurationError(f"Density must be positive: {self.rho}")
        if self.eta <= 0:
            raise ConfigurationError(f"Viscosity must be positive: {self.eta}")


@dataclass(frozen=True)
class RingConfig:
    """Geometry of the ring benchmark: a ring of inner radius R and thickness w
    centred in the square [0, l]^2."""

    center: Tuple[float, ...] = (0.5, 0.5)
    R: float = 0.25
    w: float = 0.0625
    l: float = 1.0

    def __post_init__(self):
        if self.R <= 0 or self.w <= 0 or self.l <= 0:
            raise ConfigurationError(
                f"Ring dimensions must be positive, got R={self.R}, w={self.w}, l={self.l}"
            )


@dataclass(frozen=True)
class SolidConfig:
    """Immersed solid properties."""

    material_model: str = MaterialModel.INH_0.value
    mu: float = 1.0
    Phi_B: float = 1.0
    ring: RingConfig = field(default_factory=RingConfig)

    def __post_init__(self):
        valid = [m.value for m in MaterialModel]
        if self.material_model not in valid:
            raise ConfigurationError(
                f"Invalid material_model: '{self.material_model}'. Must be one of {valid}."
            )
        if self.mu < 0:
            raise ConfigurationError(f"Shear modulus must be non-negative: {self.mu}")
        if self.Phi_B <= 0:
            raise ConfigurationError(f"Phi_B must be positive: {self.Phi_B}")


@dataclass(frozen=True)
class SolverConfig:
    """Time stepping and nonlinear solver parameters."""

    time_step: float = 0.01
    final_time: float = 1.0
    semi_implicit: bool = False
    use_spread: bool = False
    update_jacobian_continuously: bool = True
    update_jacobian_at_step_beginning: bool = False
    fix_pressure: bool = False
    tolerance: float = 1e-10
    max_inner_iterations: int = 15
    max_outer_iterations: int = 3
    jacobian_refresh_threshold: float = 1e-2

    def __post_init__(self):
        positive = [
            ("time_step", self.time_step),
            ("final_time", self.final_time),
            ("tolerance", self.tolerance),
            ("max_inner_iterations", self.max_inner_iterations),
            ("jacobian_refresh_threshold", self.jacobian_refresh_threshold),
        ]
        for name, value in positive:
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.max_outer_iterations < 0:
            raise ConfigurationError(
                f"max_outer_iterations must be non-negative, got {self.max_outer_iterations}"
            )

    @property
    def n_steps(self) -> int:
        """Number of time steps t = dt, 2 dt, ... <= final_time."""
        return int(math.floor(self.final_time / self.time_step * (1 + 1e-12)))


@dataclass(frozen=True)
class DirichletBCConfig:
    """Dirichlet boundary condition configuration."""

    nodeset: str
    value: Tuple[str, ...] = ("0",)
    components: Optional[Tuple[int, ...]] = None  # Optional: specific velocity components


@dataclass(frozen=True)
class BoundaryConditionsConfig:
    """Complete boundary conditions configuration."""

    dirichlet: Tuple[DirichletBCConfig, ...] = ()


@dataclass(frozen=True)
class InitialConditionsConfig:
    """Initial velocity and displacement expressions (zero when omitted)."""

    velocity: Optional[Tuple[str, ...]] = None
    displacement: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class OutputConfig:
    """Output configuration."""

    folder: str = "results"
    name: str = "ifem"
    interval: int = 1
    write_vtu: bool = True
    plot: bool = False

    def __post_init__(self):
        if self.interval < 1:
            raise ConfigurationError(f"Output interval must be positive, got {self.interval}")
        if not self.name:
            raise ConfigurationError("Output name must not be empty")


@dataclass(frozen=True)
class IFEMConfig:
    """Complete immersed FEM simulation configuration."""

    dim: int = 2
    degree: int = 1
    fe: FiniteElementConfig = field(default_factory=FiniteElementConfig)
    mesh: MeshesConfig = field(default_factory=MeshesConfig)
    fluid: FluidConfig = field(default_factory=FluidConfig)
    solid: SolidConfig = field(default_factory=SolidConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    boundary_conditions: BoundaryConditionsConfig = field(default_factory=BoundaryConditionsConfig)
    initial_conditions: InitialConditionsConfig = field(default_factory=InitialConditionsConfig)
    body_force: Optional[Tuple[str, ...]] = None
    output: OutputConfig = field(default_factory=OutputConfig)

    def __post_init__(self):
        if self.dim not in (2, 3):
            raise ConfigurationError(f"dim must be 2 or 3, got {self.dim}")
        if self.degree < 1:
            raise ConfigurationError(f"degree must be at least 1, got {self.degree}")
        if self.degree == 1 and self.fe.pressure_element == PressureElement.FE_Q.value:
            raise ConfigurationError(
                "FE_Q pressure has degree - 1 = 0 for degree 1; use degree >= 2 or FE_DGP"
            )
        if self.is_ring_benchmark and self.dim != 2:
            raise ConfigurationError(
                f"CircumferentialFiberModel is only available in 2D, got dim={self.dim}"
            )
        if not self.is_ring_benchmark and (self.mesh.fluid is None or self.mesh.solid is None):
            raise ConfigurationError("Both mesh.fluid and mesh.solid must be configured")
        for name, values in (
            ("body_force", self.body_force),
            ("initial_conditions.velocity", self.initial_conditions.velocity),
            ("initial_conditions.displacement", self.initial_conditions.displacement),
        ):
            if values is not None and len(values) not in (1, self.dim):
                raise ConfigurationError(
                    f"{name} must have 1 or {self.dim} components, got {len(values)}"
                )
        for bc in self.boundary_conditions.dirichlet:
            n_components = len(bc.components) if bc.components is not None else self.dim
            if len(bc.value) not in (1, n_components):
                raise ConfigurationError(
                    f"Dirichlet condition on '{bc.nodeset}' has {len(bc.value)} values "
                    f"for {n_components} components"
                )
            for component in bc.components or ():
                if not 0 <= component < self.dim:
                    raise ConfigurationError(
                        f"Dirichlet condition on '{bc.nodeset}': component {component} "
                        f"out of range [0, {self.dim})"
                    )

    # =========================================================================
    # Derived quantities
    # =========================================================================

    @property
    def is_ring_benchmark(self) -> bool:
        return self.solid.material_model == MaterialModel.CIRCUMFERENTIAL_FIBER.value

    @property
    def fluid_quadrature(self) -> int:
        """Gauss points per direction on the fluid mesh."""
        return self.fe.fluid_quadrature or self.degree + 2

    @property
    def solid_quadrature_copies(self) -> int:
        """Trapezoid copies per direction on the solid mesh."""
        return self.fe.solid_quadrature_copies or 4 * (self.degree + 8)

    # =========================================================================
    # Serialization
    # =========================================================================

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "IFEMConfig":
        """Load configuration from YAML file.

        Parameters
        ----------
        yaml_path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        IFEMConfig
            Validated configuration object.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ConfigurationError
            If the configuration is invalid.
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data, base_path=yaml_path.parent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_path: Optional[Path] = None) -> "IFEMConfig":
        """Create configuration from dictionary.

        Parameters
        ----------
        data : dict
            Configuration dictionary.
        base_path : Path, optional
            Base path for resolving relative file paths.

        Returns
        -------
        IFEMConfig
            Validated configuration object.
        """
        try:
            return cls._from_dict(data, base_path)
        except (TypeError, KeyError) as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def _from_dict(cls, data: Dict[str, Any], base_path: Optional[Path]) -> "IFEMConfig":
        # Parse meshes
        mesh_data = data.get("mesh", {}) or {}
        meshes = MeshesConfig(
            fluid=MeshConfig.from_dict(mesh_data["fluid"], base_path)
            if mesh_data.get("fluid")
            else None,
            solid=MeshConfig.from_dict(mesh_data["solid"], base_path)
            if mesh_data.get("solid")
            else None,
        )

        fe_config = FiniteElementConfig(**(data.get("fe", {}) or {}))
        fluid_config = FluidConfig(**(data.get("fluid", {}) or {}))

        # Parse solid and ring geometry
        solid_data = dict(data.get("solid", {}) or {})
        ring_data = dict(solid_data.pop("ring", {}) or {})
        if "center" in ring_data:
            ring_data["center"] = tuple(float(c) for c in ring_data["center"])
        solid_config = SolidConfig(ring=RingConfig(**ring_data), **solid_data)

        solver_config = SolverConfig(**(data.get("solver", {}) or {}))

        # Parse boundary conditions
        bc_data = data.get("boundary_conditions", {}) or {}
        dirichlet_list = []
        for bc in bc_data.get("dirichlet", []) or []:
            components = bc.get("components")
            dirichlet_list.append(
                DirichletBCConfig(
                    nodeset=str(bc.get("nodeset")),
                    value=_expressions(bc.get("value", 0.0), "value"),
                    components=tuple(int(c) for c in components) if components is not None else None,
                )
            )

        ic_data = data.get("initial_conditions", {}) or {}
        ic_config = InitialConditionsConfig(
            velocity=_expressions(ic_data.get("velocity"), "initial velocity"),
            displacement=_expressions(ic_data.get("displacement"), "initial displacement"),
        )

        output_config = OutputConfig(**(data.get("output", {}) or {}))

        return cls(
            dim=int(data.get("dim", 2)),
            degree=int(data.get("degree", 1)),
            fe=fe_config,
            mesh=meshes,
            fluid=fluid_config,
            solid=solid_config,
            solver=solver_config,
            boundary_conditions=BoundaryConditionsConfig(dirichlet=tuple(dirichlet_list)),
            initial_conditions=ic_config,
            body_force=_expressions(data.get("body_force"), "body_force"),
            output=output_config,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        result: Dict[str, Any] = {
            "dim": self.dim,
            "degree": self.degree,
            "fe": {
                "pressure_element": self.fe.pressure_element,
                "fluid_quadrature": self.fe.fluid_quadrature,
                "solid_quadrature_copies": self.fe.solid_quadrature_copies,
            },
            "mesh": {},
            "fluid": {"rho": self.fluid.rho, "eta": self.fluid.eta},
            "solid": {
                "material_model": self.solid.material_model,
                "mu": self.solid.mu,
                "Phi_B": self.solid.Phi_B,
                "ring": {
                    "center": list(self.solid.ring.center),
                    "R": self.solid.ring.R,
                    "w": self.solid.ring.w,
                    "l": self.solid.ring.l,
                },
            },
            "solver": {
                "time_step": self.solver.time_step,
                "final_time": self.solver.final_time,
                "semi_implicit": self.solver.semi_implicit,
                "use_spread": self.solver.use_spread,
                "update_jacobian_continuously": self.solver.update_jacobian_continuously,
                "update_jacobian_at_step_beginning": self.solver.update_jacobian_at_step_beginning,
                "fix_pressure": self.solver.fix_pressure,
                "tolerance": self.solver.tolerance,
                "max_inner_iterations": self.solver.max_inner_iterations,
                "max_outer_iterations": self.solver.max_outer_iterations,
                "jacobian_refresh_threshold": self.solver.jacobian_refresh_threshold,
            },
            "boundary_conditions": {
                "dirichlet": [
                    {
                        "nodeset": bc.nodeset,
                        "value": list(bc.value),
                        **({"components": list(bc.components)} if bc.components else {}),
                    }
                    for bc in self.boundary_conditions.dirichlet
                ],
            },
            "output": {
                "folder": self.output.folder,
                "name": self.output.name,
                "interval": self.output.interval,
                "write_vtu": self.output.write_vtu,
                "plot": self.output.plot,
            },
        }

        # Add mesh specifics
        if self.mesh.fluid:
            result["mesh"]["fluid"] = self.mesh.fluid.to_dict()
        if self.mesh.solid:
            result["mesh"]["solid"] = self.mesh.solid.to_dict()

        # Add optional configurations
        initial = {}
        if self.initial_conditions.velocity:
            initial["velocity"] = list(self.initial_conditions.velocity)
        if self.initial_conditions.displacement:
            initial["displacement"] = list(self.initial_conditions.displacement)
        if initial:
            result["initial_conditions"] = initial

        if self.body_force:
            result["body_force"] = list(self.body_force)

        return result

    def save_yaml(self, yaml_path: Union[str, Path]) -> None:
        """Save configuration to YAML file.

        Parameters
        ----------
        yaml_path : str or Path
            Path to the output YAML file.
        """
        with open(yaml_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def validate(self) -> List[str]:
        """Validate the complete configuration.

        Returns
        -------
        list of str
            List of validation warnings (empty if all OK).
        """
        warnings = []

        if not self.boundary_conditions.dirichlet and not self.solver.fix_pressure:
            warnings.append("No Dirichlet conditions: the velocity is only fixed by the dynamics")

        if self.solver.time_step > self.solver.final_time:
            warnings.append(
                f"time_step ({self.solver.time_step}) exceeds final_time "
                f"({self.solver.final_time}): no step will be computed"
            )

        # Boundary conditions referencing node sets need the mesh to be validated

        return warnings

    def __str__(self) -> str:
        """Human-readable string representation."""
        lines = [
            "Immersed FEM Simulation Configuration",
            "=" * 40,
            f"Dimension: {self.dim}, degree: {self.degree}, pressure: {self.fe.pressure_element}",
        ]
        for name, mesh in (("Fluid", self.mesh.fluid), ("Solid", self.mesh.solid)):
            if mesh is None:
                lines.append(f"{name} mesh: ring benchmark default")
                continue
            lines.append(f"{name} mesh: {mesh.source} ({mesh.refinements} refinements)")
            if mesh.file:
                lines.append(f"  File: {mesh.file.path}")
            if mesh.generator:
                lines.append(f"  Generator: {mesh.generator.type}")

        lines.extend(
            [
                f"Fluid: rho={self.fluid.rho}, eta={self.fluid.eta}",
                f"Solid: {self.solid.material_model}, mu={self.solid.mu}, Phi_B={self.solid.Phi_B}",
                f"  Time: 0 → {self.solver.final_time}s (dt={self.solver.time_step}s)",
                f"  Semi-implicit: {self.solver.semi_implicit}, spread: {self.solver.use_spread}",
                f"Boundary Conditions: {len(self.boundary_conditions.dirichlet)} Dirichlet",
                f"Output: {self.output.folder}/{self.output.name}",
            ]
        )
        return "\n".join(lines)
