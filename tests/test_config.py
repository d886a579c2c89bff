"""
仿真配置测试
"""

import pytest

from core.config import SimulationConfig
from core.exceptions import ConfigurationError
from finite_elements.assembly import DirichletStrategy
from finite_elements.newton import NewtonVerbosity
from finite_elements.solvers import LinearSolverType
from materials.elastic_materials import MaterialLaw


class TestSimulationConfig:
    """配置读写与求解器配置构造"""

    def make_config(self):
        return SimulationConfig(
            name="channel",
            physics_params={'fluid': {'viscosity': 0.1},
                            'solid': {'young_modulus': 200.0, 'law': 'neo_hooke_ln'}},
            numerical_params={'newton': {'tolerance': 1e-8,
                                         'ale': {'max_iterations': 5, 'linear_solver': 'cg'}},
                              'fsi': {'iterations': 4, 'drag_lift_sides': [[1, 'south']]},
                              'assembly': {'dirichlet_strategy': 'penalization'}})

    def test_defaults_are_merged(self):
        config = self.make_config()
        assert config.physics_params['fluid']['viscosity'] == 0.1
        assert config.physics_params['fluid']['density'] == 1.0
        assert config.physics_params['solid']['poisson_ratio'] == 0.3
        assert config.numerical_params['newton']['max_iterations'] == 100

    def test_yaml_roundtrip(self, tmp_path):
        config = self.make_config()
        path = tmp_path / "config.yaml"
        config.to_yaml(str(path))
        loaded = SimulationConfig.from_yaml(str(path))
        assert loaded.to_dict() == config.to_dict()

    def test_json_roundtrip(self, tmp_path):
        config = self.make_config()
        path = tmp_path / "config.json"
        config.to_json(str(path))
        loaded = SimulationConfig.from_json(str(path))
        assert loaded.name == "channel"
        assert loaded.numerical_params['fsi']['iterations'] == 4

    def test_unknown_keys(self):
        with pytest.raises(ConfigurationError):
            SimulationConfig.from_dict({'name': 'x', 'solver': 'lu'})

    def test_materials(self):
        config = self.make_config()
        solid = config.solid_material()
        assert solid.young_modulus == 200.0
        assert solid.law == MaterialLaw.NEO_HOOKE_LN
        assert config.ale_material().poisson_ratio == pytest.approx(0.4)

    def test_newton_overrides(self):
        config = self.make_config()
        common = config.newton_config()
        assert common.tolerance == 1e-8
        assert common.max_iterations == 100
        assert common.verbosity == NewtonVerbosity.NONE
        ale = config.newton_config('ale')
        assert ale.max_iterations == 5
        assert ale.linear_solver.solver_type == LinearSolverType.CG
        assert config.newton_config('flow').linear_solver.solver_type == LinearSolverType.LU
        with pytest.raises(ConfigurationError):
            config.newton_config('thermal')

    def test_fsi_and_assembly(self):
        config = self.make_config()
        fsi = config.fsi_config()
        assert fsi.max_iterations == 4
        assert fsi.tolerance is None
        assert fsi.drag_lift_sides == [(1, 'south')]
        assert fsi.ale_newton.max_iterations == 5
        options = config.assembler_options()
        assert options.dirichlet_strategy == DirichletStrategy.PENALIZATION
        assert options.penalty == 1e9


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
