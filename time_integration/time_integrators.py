"""
线弹性动力学的 Newmark 时间积分器（平均加速度法，β = 1/4, γ = 1/2）
"""

import numpy as np
from typing import Dict, Optional
import time

from core.exceptions import ConfigurationError
from finite_elements.assembly import GlobalAssembly
from finite_elements.elements import LinearElasticityKernel, MassKernel
from finite_elements.mesh_generation import MultiPatch
from finite_elements.solvers import SolverConfig, SolverFactory


class TimeIntegrator:
    """时间积分器基类"""

    def __init__(self):
        self.time = 0.0
        self.integration_time = 0.0
        self.steps_taken = 0

    def make_time_step(self, dt: float):
        """推进一个时间步"""
        raise NotImplementedError("子类必须实现此方法")

    def get_integration_info(self) -> Dict:
        """获取积分信息"""
        return {
            'time': self.time,
            'integration_time': self.integration_time,
            'steps_taken': self.steps_taken
        }


class ElasticityTimeIntegrator(TimeIntegrator):
    """
    M ü + K u = f 的 Newmark 积分

    刚度装配器须为线弹性；质量装配器与之共用边界条件，自由度编号一致。
    Dirichlet值不随时间变化。
    """

    def __init__(self, stiffness_assembler: GlobalAssembly, mass_assembler: GlobalAssembly,
                 beta: float = 0.25, gamma: float = 0.5,
                 solver_config: Optional[SolverConfig] = None):
        super().__init__()
        if not isinstance(stiffness_assembler.kernel, LinearElasticityKernel):
            raise ConfigurationError("Newmark积分器需要线弹性刚度装配器")
        if not isinstance(mass_assembler.kernel, MassKernel):
            raise ConfigurationError("质量装配器须使用质量单元核")
        if stiffness_assembler.num_dofs() != mass_assembler.num_dofs():
            raise ConfigurationError(
                f"刚度 ({stiffness_assembler.num_dofs()}) 与质量 ({mass_assembler.num_dofs()}) 自由度数不一致")
        self.stiffness_assembler = stiffness_assembler
        self.mass_assembler = mass_assembler
        self.beta = beta
        self.gamma = gamma
        self.linear_solver = SolverFactory.create_solver(solver_config)

        n = stiffness_assembler.num_dofs()
        self.displacement = np.zeros(n)
        self.velocity = np.zeros(n)
        self.acceleration = None
        self._K = self._M = self._f = None

    def _system(self):
        if self._K is None:
            self._K, self._f = self.stiffness_assembler.assemble()
            self._M, _ = self.mass_assembler.assemble()
            self._f = self._f.copy()
        return self._K, self._M, self._f

    def initialize(self, displacement: Optional[np.ndarray] = None,
                   velocity: Optional[np.ndarray] = None):
        """设置初始条件，由 M a0 = f − K u0 求初始加速度"""
        n = self.stiffness_assembler.num_dofs()
        if displacement is not None:
            self.displacement = np.array(displacement, dtype=float).reshape(n)
        if velocity is not None:
            self.velocity = np.array(velocity, dtype=float).reshape(n)
        K, M, f = self._system()
        self.acceleration = self.linear_solver.solve(M, f - K @ self.displacement)
        self.time = 0.0
        self.steps_taken = 0

    def make_time_step(self, dt: float):
        if dt <= 0:
            raise ConfigurationError(f"时间步长必须为正: {dt}")
        start = time.time()
        if self.acceleration is None:
            self.initialize()
        K, M, f = self._system()
        beta, gamma = self.beta, self.gamma
        alpha1 = 1.0 / (beta * dt ** 2)
        alpha2 = 1.0 / (beta * dt)
        alpha3 = 1.0 / (2.0 * beta) - 1.0

        u, v, a = self.displacement, self.velocity, self.acceleration
        lhs = K + alpha1 * M
        rhs = f + M @ (alpha1 * u + alpha2 * v + alpha3 * a)
        u_new = self.linear_solver.solve(lhs, rhs)
        a_new = alpha1 * (u_new - u) - alpha2 * v - alpha3 * a
        v_new = v + dt * ((1.0 - gamma) * a + gamma * a_new)

        self.displacement, self.velocity, self.acceleration = u_new, v_new, a_new
        self.time += dt
        self.steps_taken += 1
        self.integration_time += time.time() - start

    def solution(self) -> Dict[str, MultiPatch]:
        return self.stiffness_assembler.construct_solution(self.displacement)
