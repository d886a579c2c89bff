"""
流体、界面载荷、网格运动与流体-固体耦合测试
"""

import numpy as np
import pytest

from core.exceptions import ConfigurationError
from coupling.fluid_solid import (
    FsiInterface, FSIConfig, FsiLoad, ALEMeshMotion, FluidSolidCoupling,
)
from finite_elements.basis_functions import PatchBasis
from finite_elements.boundary_conditions import BoundaryConditions
from finite_elements.global_assembly import (
    NavierStokesAssembler, ElasticityAssembler, ALEAssembler,
)
from finite_elements.mesh_generation import (
    Patch, MultiPatch, rectangle_patch, field_on, zero_field,
)
from finite_elements.newton import NewtonConfig, NewtonSolver
from materials.elastic_materials import ElasticMaterial

VISCOSITY = 0.1
UMAX = 1.0


def inflow(x):
    y = x[:, 1]
    return np.column_stack([4.0 * UMAX * y * (1.0 - y), np.zeros_like(y)])


def pressure_bases(geometry):
    return [PatchBasis(1, b.n_elements) for b in geometry.bases()]


def channel_flow(geometry):
    bcs = BoundaryConditions()
    bcs.add_dirichlet(0, "west", inflow)
    for k in range(geometry.n_patches):
        bcs.add_dirichlet(k, "south")
        bcs.add_dirichlet(k, "north")
    return NavierStokesAssembler(geometry, field_on(geometry), pressure_bases(geometry), bcs,
                                 viscosity=VISCOSITY, density=1.0)


def channel_geometry():
    return MultiPatch([rectangle_patch(0.0, 0.0, 0.5, 1.0, (1, 2), order=2),
                       rectangle_patch(0.5, 0.0, 1.5, 1.0, (2, 2), order=2),
                       rectangle_patch(1.5, 0.0, 2.0, 1.0, (1, 2), order=2)])


def beam_geometry():
    return MultiPatch([rectangle_patch(0.5, -0.2, 1.5, 0.0, (4, 1), order=2)])


def beam_assembler(young_modulus=200.0):
    geo = beam_geometry()
    bcs = BoundaryConditions()
    bcs.add_dirichlet(0, "west")
    bcs.add_dirichlet(0, "east")
    return ElasticityAssembler(geo, field_on(geo), bcs,
                               material=ElasticMaterial(young_modulus, 0.3))


def ale_assembler(fluid_geometry):
    geo = fluid_geometry.subset([1])
    bcs = BoundaryConditions()
    for side in ("west", "east", "north", "south"):
        bcs.add_dirichlet(0, side)
    return ALEAssembler(geo, geo.bases(), bcs)


class TestNavierStokes:
    """定常Navier–Stokes测试"""

    def solve_poiseuille(self):
        geo = MultiPatch([rectangle_patch(0.0, 0.0, 2.0, 1.0, (2, 2), order=2)])
        assembler = channel_flow(geo)
        solver = NewtonSolver(assembler, config=NewtonConfig(tolerance=1e-10, max_iterations=20))
        solver.solve()
        return assembler, solver

    def test_poiseuille_is_exact(self):
        """二次速度、线性压力在Taylor–Hood空间内精确再现"""
        _, solver = self.solve_poiseuille()
        assert solver.converged()
        fields = solver.solution()
        params = np.random.default_rng(4).uniform(0, 1, size=(15, 2))
        x = params * [2.0, 1.0]
        np.testing.assert_allclose(fields["velocity"].patch(0).eval(params), inflow(x), atol=1e-8)
        p_exact = 8.0 * VISCOSITY * UMAX * (2.0 - x[:, 0])
        np.testing.assert_allclose(fields["pressure"].patch(0).eval(params)[:, 0], p_exact,
                                   atol=1e-8)

    def test_wall_force(self):
        """下壁面：剪力 ν u'(0) L，法向力 −∫ p"""
        assembler, solver = self.solve_poiseuille()
        fields = solver.solution()
        force = assembler.compute_force(fields["velocity"], fields["pressure"], [(0, "south")])
        np.testing.assert_allclose(force, [4.0 * VISCOSITY * UMAX * 2.0, -1.6], rtol=1e-7)


class TestFsiLoad:
    """界面载荷测试"""

    def test_hydrostatic_traction(self):
        fluid = channel_geometry()
        beam = beam_geometry()
        load = FsiLoad(fluid, 1, "south", beam.patch(0), "north",
                       viscosity=VISCOSITY, density=1.5)
        side_params = Patch.side_params("north", [0.2, 0.7])
        points = beam.patch(0).eval(side_params)
        np.testing.assert_allclose(load.evaluate(side_params, points), 0.0)

        velocity = zero_field(fluid.bases(), 2)
        pressure = MultiPatch([Patch(b, np.full((b.size, 1), 2.0)) for b in pressure_bases(fluid)])
        load.update(velocity, pressure)
        np.testing.assert_allclose(load.evaluate(side_params, points), [[0.0, -3.0]] * 2,
                                   atol=1e-12)

    def test_invalid_orientation(self):
        with pytest.raises(ConfigurationError):
            FsiLoad(channel_geometry(), 1, "south", beam_geometry().patch(0), "north",
                    VISCOSITY, 1.0, orientation=0)


class TestALEMeshMotion:
    """网格运动施加/撤销测试"""

    def test_apply_and_undo(self):
        fluid = channel_geometry()
        original = fluid.copy()
        motion = ALEMeshMotion(fluid, {1: 0})
        basis = fluid.patch(1).basis

        motion.apply(MultiPatch([Patch(basis, np.full((basis.size, 2), 0.1))]))
        np.testing.assert_allclose(fluid.patch(1).coefs, original.patch(1).coefs + 0.1)
        motion.apply(MultiPatch([Patch(basis, np.full((basis.size, 2), 0.2))]))
        np.testing.assert_allclose(fluid.patch(1).coefs, original.patch(1).coefs + 0.2)
        for k in (0, 2):
            np.testing.assert_array_equal(fluid.patch(k).coefs, original.patch(k).coefs)

        motion.undo()
        assert motion.applied is None
        np.testing.assert_allclose(fluid.patch(1).coefs, original.patch(1).coefs, atol=1e-15)

    def test_shape_mismatch(self):
        fluid = channel_geometry()
        motion = ALEMeshMotion(fluid, {1: 0})
        with pytest.raises(ConfigurationError):
            motion.apply(zero_field([PatchBasis(1, (1, 1))], 2))
        with pytest.raises(ConfigurationError):
            ALEMeshMotion(fluid, {5: 0})


class TestFluidSolidCoupling:
    """分区耦合测试"""

    def build(self, max_iterations=3):
        fluid = channel_geometry()
        flow = channel_flow(fluid)
        beam = beam_assembler()
        ale = ale_assembler(fluid)
        newton = NewtonConfig(max_iterations=30, tolerance=1e-8)
        config = FSIConfig(max_iterations=max_iterations, flow_newton=newton, beam_newton=newton,
                           ale_newton=newton, drag_lift_sides=[(1, "south")])
        coupling = FluidSolidCoupling(flow, beam, ale,
                                      [FsiInterface(0, "north", 1, "south", 0, "south")],
                                      {1: 0}, config)
        return fluid, coupling

    def test_interface_residual(self):
        """
        界面残量比较的是相邻两次外迭代装入ALE的Dirichlet数据（界面位移），
        而非界面力：sqrt(Σ_d ‖new_d − old_d‖²)
        """
        residual = FluidSolidCoupling.interface_residual(
            [np.array([3.0]), np.array([4.0])], [np.zeros(1), np.zeros(1)])
        assert residual == pytest.approx(5.0)

    def test_channel_with_elastic_floor(self):
        fluid, coupling = self.build()
        original = fluid.copy()
        state = coupling.solve()

        residuals = state.interface_residuals
        assert len(residuals) == 3
        assert residuals[0] > 0.0
        assert residuals[1] <= residuals[0]
        assert residuals[2] <= residuals[1]
        assert all(len(v) == 3 for v in state.newton_iterations.values())
        assert len(state.forces) == 3

        # 流体压力使结构向下弯曲
        deflection = state.displacement.patch(0).eval([[0.5, 1.0]])[0]
        assert deflection[1] < 0.0

        # 只有运动片被修改，且界面随结构移动
        for k in (0, 2):
            np.testing.assert_array_equal(fluid.patch(k).coefs, original.patch(k).coefs)
        moved = fluid.patch(1).eval([[0.5, 0.0]])[0] - original.patch(1).eval([[0.5, 0.0]])[0]
        np.testing.assert_allclose(moved, deflection, atol=1e-12)

        stats = coupling.get_performance_stats()
        assert stats['iterations'] == 3

    def test_tolerance_stops_early(self):
        _, coupling = self.build(max_iterations=10)
        coupling.config.tolerance = 1e3
        state = coupling.solve()
        assert state.convergence_status
        assert state.iteration == 1

    def test_mismatched_interface(self):
        fluid = channel_geometry()
        with pytest.raises(ConfigurationError):
            FluidSolidCoupling(channel_flow(fluid), beam_assembler(), ale_assembler(fluid),
                               [FsiInterface(0, "south", 1, "south", 0, "south")], {1: 0})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
