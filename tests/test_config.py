from pathlib import Path

import numpy as np
import pytest
import yaml

from fem_immersed.cli.run_ifem import TEMPLATE_CONFIG
from fem_immersed.core.config import IFEMConfig, SolverConfig
from fem_immersed.core.errors import ConfigurationError

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


@pytest.fixture
def config_dict():
    return {
        "dim": 2,
        "degree": 2,
        "fe": {"pressure_element": "FE_Q"},
        "mesh": {
            "fluid": {
                "source": "generator",
                "generator": {"type": "HyperCube", "params": {"left": 0.0, "right": 1.0}},
                "refinements": 2,
            },
            "solid": {
                "source": "generator",
                "generator": {
                    "type": "HyperShell",
                    "params": {"center": [0.5, 0.5], "inner_radius": 0.2, "outer_radius": 0.3},
                },
            },
        },
        "solid": {"material_model": "INH_1", "mu": 2.0},
        "solver": {"time_step": 0.1, "final_time": 1.0, "semi_implicit": True},
        "boundary_conditions": {
            "dirichlet": [
                {"nodeset": "boundary", "value": [0, 0]},
                {"nodeset": "top", "value": "sin(pi*x)", "components": [0]},
            ]
        },
        "initial_conditions": {"velocity": ["0", "0"]},
        "output": {"folder": "out", "name": "case", "interval": 5},
    }


class TestIFEMConfig:
    def test_from_dict(self, config_dict):
        config = IFEMConfig.from_dict(config_dict)
        assert config.degree == 2
        assert config.fe.pressure_element == "FE_Q"
        assert config.mesh.fluid.refinements == 2
        assert config.mesh.solid.generator.type == "HyperShell"
        assert config.solid.mu == 2.0
        assert config.solver.semi_implicit
        assert config.solver.n_steps == 10
        assert len(config.boundary_conditions.dirichlet) == 2
        top = config.boundary_conditions.dirichlet[1]
        assert top.value == ("sin(pi*x)",)
        assert top.components == (0,)
        assert config.boundary_conditions.dirichlet[0].value == ("0", "0")
        assert not config.is_ring_benchmark

    def test_defaults(self, config_dict):
        config = IFEMConfig.from_dict(config_dict)
        assert config.fluid.rho == 1.0
        assert config.solver.tolerance == 1e-10
        assert config.solver.max_inner_iterations == 15
        assert config.solver.max_outer_iterations == 3
        assert config.fluid_quadrature == 4
        assert config.solid_quadrature_copies == 40

    def test_yaml_round_trip(self, config_dict, tmp_path):
        config = IFEMConfig.from_dict(config_dict)
        path = tmp_path / "case.yaml"
        config.save_yaml(path)
        assert IFEMConfig.from_yaml(path) == config

    def test_relative_mesh_path(self, tmp_path):
        data = {
            "mesh": {
                "fluid": {"source": "file", "file": {"path": "fluid.vtu"}},
                "solid": {"source": "file", "file": {"path": "/abs/solid.inp"}},
            }
        }
        path = tmp_path / "case.yaml"
        path.write_text(yaml.safe_dump(data))
        config = IFEMConfig.from_yaml(path)
        assert config.mesh.fluid.file.path == str(tmp_path / "fluid.vtu")
        assert config.mesh.solid.file.path == "/abs/solid.inp"

    def test_ring_benchmark_needs_no_meshes(self):
        config = IFEMConfig.from_dict({"solid": {"material_model": "CircumferentialFiberModel"}})
        assert config.is_ring_benchmark
        assert config.mesh.fluid is None
        assert config.solid.ring.R == 0.25
        assert "ring benchmark default" in str(config)

    def test_validate_warnings(self, config_dict):
        config_dict["boundary_conditions"] = {}
        config_dict["solver"]["time_step"] = 2.0
        warnings = IFEMConfig.from_dict(config_dict).validate()
        assert len(warnings) == 2

    @pytest.mark.parametrize(
        "path, value",
        [
            (("dim",), 4),
            (("degree",), 0),
            (("degree",), 1),
            (("fe", "pressure_element"), "FE_RT"),
            (("solid", "material_model"), "Hooke"),
            (("solid", "Phi_B"), 0.0),
            (("fluid",), {"eta": -1.0}),
            (("solver", "time_step"), -0.1),
            (("solver", "unknown_option"), True),
            (("output", "interval"), 0),
            (("mesh", "fluid", "source"), "ftp"),
            (("mesh", "fluid", "generator", "type"), "Sphere"),
            (("initial_conditions", "velocity"), ["0", "0", "0"]),
        ],
    )
    def test_invalid_values(self, config_dict, path, value):
        target = config_dict
        for key in path[:-1]:
            target = target[key]
        target[path[-1]] = value
        with pytest.raises(ConfigurationError):
            IFEMConfig.from_dict(config_dict)

    def test_linear_velocity_needs_discontinuous_pressure(self, config_dict):
        config_dict["degree"] = 1
        with pytest.raises(ConfigurationError, match="FE_Q"):
            IFEMConfig.from_dict(config_dict)
        config_dict["fe"]["pressure_element"] = "FE_DGP"
        assert IFEMConfig.from_dict(config_dict).degree == 1

    def test_fiber_law_is_2d_only(self):
        with pytest.raises(ConfigurationError):
            IFEMConfig.from_dict(
                {"dim": 3, "solid": {"material_model": "CircumferentialFiberModel"}}
            )

    def test_missing_meshes(self):
        with pytest.raises(ConfigurationError):
            IFEMConfig.from_dict({"solid": {"material_model": "INH_0"}})

    def test_dirichlet_component_out_of_range(self, config_dict):
        config_dict["boundary_conditions"]["dirichlet"][1]["components"] = [2]
        with pytest.raises(ConfigurationError):
            IFEMConfig.from_dict(config_dict)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            IFEMConfig.from_yaml(tmp_path / "missing.yaml")

    def test_n_steps_rounding(self):
        assert SolverConfig(time_step=0.1, final_time=0.3).n_steps == 3
        assert SolverConfig(time_step=0.01, final_time=0.01).n_steps == 1


class TestShippedConfigurations:
    def test_template(self):
        config = IFEMConfig.from_dict(yaml.safe_load(TEMPLATE_CONFIG))
        assert config.degree == 2
        assert config.boundary_conditions.dirichlet[0].nodeset == "boundary"

    @pytest.mark.parametrize("name", ["ring/ring.yaml", "cavity/cavity.yaml"])
    def test_examples(self, name):
        config = IFEMConfig.from_yaml(EXAMPLES / name)
        assert config.validate() == []
        assert np.isclose(config.solver.n_steps * config.solver.time_step, config.solver.final_time)
