"""
Newmark时间积分测试
"""

import numpy as np
import pytest

from core.exceptions import ConfigurationError
from finite_elements.boundary_conditions import BoundaryConditions
from finite_elements.global_assembly import ElasticityAssembler, ElasticityMassAssembler
from finite_elements.mesh_generation import MultiPatch, rectangle_patch, field_on
from materials.elastic_materials import ElasticMaterial
from time_integration import ElasticityTimeIntegrator


def cantilever(traction=(0.0, -1.0), nonlinear=False):
    geo = MultiPatch([rectangle_patch(0, 0, 4, 1, (4, 1), order=2)])
    bases = field_on(geo)
    bcs = BoundaryConditions()
    bcs.add_dirichlet(0, "west")
    bcs.add_neumann(0, "east", traction)
    stiffness = ElasticityAssembler(geo, bases, bcs, material=ElasticMaterial(100.0, 0.3),
                                    nonlinear=nonlinear)
    mass = ElasticityMassAssembler(geo, bases, bcs, density=1.0)
    return stiffness, mass


class TestNewmark:
    """平均加速度法测试"""

    def test_zero_state_stays_zero(self):
        integrator = ElasticityTimeIntegrator(*cantilever(traction=(0.0, 0.0)))
        for _ in range(5):
            integrator.make_time_step(0.01)
        np.testing.assert_allclose(integrator.displacement, 0.0)
        np.testing.assert_allclose(integrator.velocity, 0.0)
        assert integrator.time == pytest.approx(0.05)
        assert integrator.get_integration_info()['steps_taken'] == 5

    def test_energy_is_conserved(self):
        """恒定载荷下 ½vᵀMv + ½uᵀKu − fᵀu 守恒"""
        stiffness, mass = cantilever()
        integrator = ElasticityTimeIntegrator(stiffness, mass)
        integrator.initialize()
        K, f = stiffness.assemble()
        M, _ = mass.assemble()

        def energy():
            u, v = integrator.displacement, integrator.velocity
            return 0.5 * v @ (M @ v) + 0.5 * u @ (K @ u) - f @ u

        assert energy() == 0.0
        for _ in range(50):
            integrator.make_time_step(0.05)
        work = abs(f @ integrator.displacement)
        assert work > 0.0
        assert abs(energy()) < 1e-8 * work

    def test_solution_fields(self):
        integrator = ElasticityTimeIntegrator(*cantilever())
        integrator.make_time_step(0.1)
        u = integrator.solution()["displacement"]
        np.testing.assert_allclose(u.patch(0).eval([[0.0, 0.5]]), 0.0)
        assert u.patch(0).eval([[1.0, 0.5]])[0, 1] < 0.0

    def test_invalid_configuration(self):
        stiffness, mass = cantilever(nonlinear=True)
        with pytest.raises(ConfigurationError):
            ElasticityTimeIntegrator(stiffness, mass)
        stiffness, mass = cantilever()
        with pytest.raises(ConfigurationError):
            ElasticityTimeIntegrator(stiffness, stiffness)
        integrator = ElasticityTimeIntegrator(stiffness, mass)
        with pytest.raises(ConfigurationError):
            integrator.make_time_step(0.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
