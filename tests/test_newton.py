"""
Newton求解器与线性求解器测试
"""

import numpy as np
import pytest
from scipy.sparse import diags

from core.exceptions import BadSolutionError, ConfigurationError, LinearSolveError
from finite_elements.boundary_conditions import BoundaryConditions
from finite_elements.global_assembly import ElasticityAssembler
from finite_elements.mesh_generation import MultiPatch, rectangle_patch, cooks_membrane, field_on
from finite_elements.newton import NewtonConfig, NewtonSolver, NewtonStatus, NewtonVerbosity
from finite_elements.solvers import SolverConfig, SolverFactory, LinearSolverType
from materials.elastic_materials import ElasticMaterial, StressType

LENGTH, HEIGHT = 10.0, 1.0


def bar_assembler(traction=(1.0, 0.0), young_modulus=1000.0, nonlinear=False):
    """左端固支、右端受均匀面力的平面应变杆"""
    geo = MultiPatch([rectangle_patch(0, 0, LENGTH, HEIGHT, (10, 2), order=2)])
    bcs = BoundaryConditions()
    bcs.add_dirichlet(0, "west")
    bcs.add_neumann(0, "east", traction)
    return ElasticityAssembler(geo, field_on(geo), bcs,
                               material=ElasticMaterial(young_modulus, 0.3),
                               nonlinear=nonlinear)


def tip_displacement(solver):
    return solver.solution()["displacement"].patch(0).eval([[1.0, 0.5]])[0]


class TestLinearProblems:
    """线性问题：一次迭代收敛"""

    def test_bar_converges_in_one_iteration(self):
        solver = NewtonSolver(bar_assembler(), config=NewtonConfig(tolerance=1e-10))
        status = solver.solve()
        assert status == NewtonStatus.CONVERGED
        assert solver.converged()
        assert solver.num_iterations() == 1
        assert len(solver.history) == 1

    def test_bar_displacement(self):
        solver = NewtonSolver(bar_assembler(), config=NewtonConfig(tolerance=1e-10))
        solver.solve()
        u = solver.solution()["displacement"].patch(0)
        # 平面应变：u_x(L) ≈ L (1 − ν²) / E
        assert tip_displacement(solver)[0] == pytest.approx(LENGTH * (1 - 0.3 ** 2) / 1000.0, rel=0.1)
        midline = u.eval(np.column_stack([np.linspace(0, 1, 11), np.full(11, 0.5)]))
        np.testing.assert_allclose(midline[:, 1], 0.0, atol=1e-10)

    def test_bar_stress(self):
        assembler = bar_assembler()
        solver = NewtonSolver(assembler, config=NewtonConfig(tolerance=1e-10))
        solver.solve()
        u = solver.solution()["displacement"]
        sigma = assembler.stress(u, 0, [[0.5, 0.5]], StressType.ALL_2D)[0]
        assert sigma[0] == pytest.approx(1.0, rel=0.05)
        assert abs(sigma[2]) < 0.05
        vm = assembler.stress(u, 0, [[0.5, 0.5]], "von_mises")
        assert vm.shape == (1,)

    def test_zero_load_is_converged(self):
        solver = NewtonSolver(bar_assembler(traction=(0.0, 0.0)))
        solver.solve()
        assert solver.converged()
        assert solver.num_iterations() == 1
        np.testing.assert_allclose(solver.solution_vector(), 0.0)

    @pytest.mark.parametrize("solver_type", ["ldlt", "cg", "bicgstab"])
    def test_linear_solvers_agree(self, solver_type):
        reference = NewtonSolver(bar_assembler(), config=NewtonConfig(tolerance=1e-10))
        reference.solve()
        config = NewtonConfig(tolerance=1e-8,
                              linear_solver=SolverConfig(solver_type, tolerance=1e-11))
        solver = NewtonSolver(bar_assembler(), config=config)
        solver.solve()
        assert solver.converged()
        np.testing.assert_allclose(solver.solution_vector(), reference.solution_vector(),
                                   rtol=1e-4, atol=1e-8)


class TestNonlinearProblems:
    """非线性问题"""

    def test_small_strain_matches_linear(self):
        linear = NewtonSolver(bar_assembler(), config=NewtonConfig(tolerance=1e-10))
        linear.solve()
        nonlinear = NewtonSolver(bar_assembler(nonlinear=True),
                                 config=NewtonConfig(tolerance=1e-10, max_iterations=20))
        nonlinear.solve()
        assert nonlinear.converged()
        assert 1 < nonlinear.num_iterations() < 10
        np.testing.assert_allclose(tip_displacement(nonlinear), tip_displacement(linear),
                                   rtol=1e-2, atol=1e-5)

    def test_iteration_count_under_unit_scaling(self):
        """模量与面力同比缩放：无量纲问题相同，迭代次数与位移不变"""
        counts, tips = [], []
        for scale in (1.0, 100.0):
            solver = NewtonSolver(bar_assembler(traction=(5.0 * scale, 0.0),
                                                young_modulus=1000.0 * scale, nonlinear=True),
                                  config=NewtonConfig(tolerance=1e-10, max_iterations=20))
            solver.solve()
            assert solver.converged()
            counts.append(solver.num_iterations())
            tips.append(tip_displacement(solver))
        assert counts[0] == counts[1]
        # u_y 在中线上只是舍入噪声
        assert tips[0][0] == pytest.approx(tips[1][0], rel=1e-8)
        np.testing.assert_allclose(tips[0], tips[1], rtol=1e-8, atol=1e-12)

    @pytest.mark.parametrize("traction", [1.0, 2.0])
    def test_doubled_load_keeps_iteration_count(self, traction):
        """载荷加倍（零初值加倍仍为零）时Newton迭代次数不变"""
        counts = []
        for t in (traction, 2.0 * traction):
            solver = NewtonSolver(bar_assembler(traction=(t, 0.0), nonlinear=True),
                                  config=NewtonConfig(tolerance=1e-10, max_iterations=20))
            solver.solve()
            assert solver.converged()
            counts.append(solver.num_iterations())
        assert counts[0] == counts[1]

    def test_zero_max_iterations(self):
        solver = NewtonSolver(bar_assembler(nonlinear=True), config=NewtonConfig(max_iterations=0))
        assert solver.solve() == NewtonStatus.INTERRUPTED
        assert solver.num_iterations() == 0
        assert not solver.converged()

    def test_interrupted_after_max_iterations(self):
        solver = NewtonSolver(bar_assembler(traction=(10.0, 0.0), nonlinear=True),
                              config=NewtonConfig(max_iterations=1))
        assert solver.solve() == NewtonStatus.INTERRUPTED
        assert solver.num_iterations() == 1
        assert solver.relative_residue() > 1e-6

    def test_bad_solution(self):
        solver = NewtonSolver(bar_assembler(traction=(-5000.0, 0.0), nonlinear=True))
        with pytest.raises(BadSolutionError) as info:
            solver.solve()
        assert info.value.patch == 0
        assert solver.status() == NewtonStatus.BAD_SOLUTION

    def test_incompressible_cooks_membrane(self):
        geo = cooks_membrane((4, 4), order=1)
        bcs = BoundaryConditions()
        bcs.add_dirichlet(0, "west")
        bcs.add_neumann(0, "east", [0.0, 0.5])
        assembler = ElasticityAssembler(geo, field_on(geo, order=2), bcs,
                                        material=ElasticMaterial(240.565, 0.5),
                                        pressure_bases=geo.bases())
        solver = NewtonSolver(assembler, config=NewtonConfig(tolerance=1e-10, max_iterations=20))
        solver.solve()
        assert solver.converged()
        fields = solver.solution()
        assert fields["displacement"].patch(0).eval([[1.0, 1.0]])[0, 1] > 0.0
        with pytest.raises(ConfigurationError):
            assembler.stress(fields["displacement"], 0, [[0.5, 0.5]])
        vm = assembler.stress(fields["displacement"], 0, [[0.5, 0.5]],
                              pressure=fields["pressure"])
        assert np.all(np.isfinite(vm))


class TestNewtonConfiguration:
    """配置与输出"""

    def test_invalid_tolerance(self):
        with pytest.raises(ConfigurationError):
            NewtonConfig(tolerance=0.0)
        solver = NewtonSolver(bar_assembler())
        with pytest.raises(ConfigurationError):
            solver.set_tolerance(-1.0)
        solver.set_tolerance(1e-6)
        assert solver.tolerance() == 1e-6

    def test_config_is_copied(self):
        config = NewtonConfig(max_iterations=7)
        solver = NewtonSolver(bar_assembler(), config=config)
        solver.set_max_iterations(3)
        assert config.max_iterations == 7

    def test_initial_solution_length_checked(self):
        with pytest.raises(ConfigurationError):
            NewtonSolver(bar_assembler(), initial_solution=np.zeros(3))

    def test_verbose_output(self, capsys):
        solver = NewtonSolver(bar_assembler(),
                              config=NewtonConfig(tolerance=1e-10, verbosity="all"))
        solver.solve()
        out = capsys.readouterr().out
        assert "Iteration: 1" in out
        assert "converged" in out
        assert solver.config.verbosity == NewtonVerbosity.ALL


class TestLinearSolvers:
    """线性求解器测试"""

    def test_singular_matrix(self):
        A = diags([1.0, 0.0, 2.0], format='csr')
        with pytest.raises(LinearSolveError):
            SolverFactory.create_solver("lu").solve(A, np.ones(3))

    def test_zero_diagonal_jacobi(self):
        A = diags([1.0, 0.0, 2.0], format='csr')
        with pytest.raises(LinearSolveError):
            SolverFactory.create_solver(LinearSolverType.CG).solve(A, np.ones(3))

    def test_dimension_mismatch(self):
        with pytest.raises(LinearSolveError):
            SolverFactory.create_solver().solve(np.eye(3), np.ones(2))

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            SolverConfig(solver_type="gmres")
        with pytest.raises(ValueError):
            SolverConfig(preconditioner="ilu")

    def test_spd_system(self):
        A = diags([[-1.0] * 9, [4.0] * 10, [-1.0] * 9], [-1, 0, 1], format='csr')
        b = np.arange(10, dtype=float)
        expected = np.linalg.solve(A.toarray(), b)
        for solver_type in ("lu", "ldlt", "cg", "bicgstab"):
            x = SolverFactory.create_solver(SolverConfig(solver_type, tolerance=1e-12)).solve(A, b)
            np.testing.assert_allclose(x, expected, rtol=1e-8, atol=1e-10)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
