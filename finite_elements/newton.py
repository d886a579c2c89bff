"""
Newton求解器

对单一物理场的装配器反复执行 装配 → 分解 → 求解 → 更新，
直至收敛（相对残量或相对更新量小于容差）、迭代次数耗尽或遇到非物理解。
"""

import time
import numpy as np
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Union

from core.exceptions import BadSolutionError, ConfigurationError
from .assembly import GlobalAssembly
from .mesh_generation import MultiPatch
from .solvers import SolverConfig, SolverFactory, LinearSolverType


class NewtonStatus(Enum):
    """Newton迭代状态"""
    WORKING = "working"
    CONVERGED = "converged"
    INTERRUPTED = "interrupted"
    BAD_SOLUTION = "bad_solution"


class NewtonVerbosity(Enum):
    """输出详细程度"""
    NONE = "none"
    SOME = "some"
    ALL = "all"


@dataclass
class NewtonConfig:
    """Newton求解器配置"""
    max_iterations: int = 100
    tolerance: float = 1e-12
    verbosity: NewtonVerbosity = NewtonVerbosity.NONE
    linear_solver: SolverConfig = field(default_factory=SolverConfig)

    def __post_init__(self):
        if isinstance(self.verbosity, str):
            self.verbosity = NewtonVerbosity(self.verbosity)
        if isinstance(self.linear_solver, (str, LinearSolverType)):
            self.linear_solver = SolverConfig(solver_type=self.linear_solver)
        if self.tolerance <= 0:
            raise ConfigurationError(f"容差必须为正: {self.tolerance}")


class NewtonSolver:
    """
    Newton求解器

    状态：未初始化 → 首次迭代 → 迭代中 → {收敛 | 中断（次数耗尽） | 非物理解}
    """

    def __init__(self, assembler: GlobalAssembly,
                 initial_solution: Union[None, np.ndarray, Dict[str, MultiPatch]] = None,
                 initial_fixed_dofs: Optional[np.ndarray] = None,
                 config: Optional[NewtonConfig] = None):
        self.assembler = assembler
        self.config = replace(config) if config is not None else NewtonConfig()
        self.linear_solver = SolverFactory.create_solver(self.config.linear_solver)

        n, n_fixed = assembler.num_dofs(), assembler.dof_mapper.num_fixed
        fixed_from_fields = None
        if isinstance(initial_solution, dict):
            initial_solution, fixed_from_fields = assembler.vector_from_fields(initial_solution)
        if initial_solution is None:
            self._vector = np.zeros(n)
        else:
            self._vector = np.array(initial_solution, dtype=float)
            if self._vector.shape != (n,):
                raise ConfigurationError(f"初始解长度 {self._vector.shape} 应为 ({n},)")
        if initial_fixed_dofs is not None:
            self._fixed = np.array(initial_fixed_dofs, dtype=float)
        elif fixed_from_fields is not None:
            self._fixed = fixed_from_fields
        else:
            self._fixed = np.zeros(n_fixed)
        if self._fixed.shape != (n_fixed,):
            raise ConfigurationError(f"初始固定值长度 {self._fixed.shape} 应为 ({n_fixed},)")

        self._status = NewtonStatus.WORKING
        self._num_iterations = 0
        self._residue = 0.0
        self._update_norm = 0.0
        self._ref_residue = 0.0
        self._ref_update = 0.0
        self.history: List[Dict[str, float]] = []
        self.performance_stats = {
            'assembly_time': 0.0,
            'linear_solve_time': 0.0,
            'total_time': 0.0,
        }

    # ---- 配置 ----
    def set_max_iterations(self, n: int):
        self.config.max_iterations = int(n)

    def set_tolerance(self, tol: float):
        if tol <= 0:
            raise ConfigurationError(f"容差必须为正: {tol}")
        self.config.tolerance = tol

    def tolerance(self) -> float:
        return self.config.tolerance

    # ---- 迭代 ----
    def solve(self) -> NewtonStatus:
        """迭代直至收敛、次数耗尽或非物理解"""
        start = time.time()
        if self.config.max_iterations <= 0:
            self._status = NewtonStatus.INTERRUPTED
            self._report()
            return self._status

        self._status = NewtonStatus.WORKING
        try:
            self.first_iteration()
            while self._status == NewtonStatus.WORKING:
                self.next_iteration()
        except BadSolutionError:
            self._status = NewtonStatus.BAD_SOLUTION
            self._report()
            raise
        finally:
            self.performance_stats['total_time'] += time.time() - start
        self._report()
        return self._status

    def first_iteration(self):
        """在初始状态装配求解，记录参考残量 r0 与参考更新量 u0"""
        self._assemble()
        self._ref_residue = np.linalg.norm(self.assembler.rhs())
        update = self._linear_solve()
        self._apply(update)
        self._ref_update = np.linalg.norm(update)
        self._residue = self._ref_residue
        self._update_norm = self._ref_update
        self._num_iterations = 1
        self._record()

    def next_iteration(self):
        """在当前状态重新装配切线（完全Newton步）并检验收敛"""
        self._assemble()
        self._residue = np.linalg.norm(self.assembler.rhs())
        if self._is_small(self._residue, self._ref_residue):
            self._status = NewtonStatus.CONVERGED
            return
        if self._num_iterations >= self.config.max_iterations:
            self._status = NewtonStatus.INTERRUPTED
            return
        update = self._linear_solve()
        self._apply(update)
        self._update_norm = np.linalg.norm(update)
        self._num_iterations += 1
        self._record()
        if self._is_small(self._update_norm, self._ref_update):
            self._status = NewtonStatus.CONVERGED

    def _assemble(self):
        t0 = time.time()
        try:
            self.assembler.assemble(self._vector, self._fixed)
        except BadSolutionError:
            self._status = NewtonStatus.BAD_SOLUTION
            raise
        finally:
            self.performance_stats['assembly_time'] += time.time() - t0

    def _linear_solve(self) -> np.ndarray:
        t0 = time.time()
        update = self.linear_solver.solve(self.assembler.matrix(), self.assembler.rhs())
        self.performance_stats['linear_solve_time'] += time.time() - t0
        return update

    def _apply(self, update: np.ndarray):
        self._vector = self._vector + update
        self._fixed = self.assembler.all_fixed_dofs()

    def _is_small(self, current: float, reference: float) -> bool:
        if reference == 0.0:
            return current == 0.0
        return abs(current / reference) < self.config.tolerance

    def _record(self):
        self.history.append({
            'iteration': self._num_iterations,
            'residue': self._residue,
            'update_norm': self._update_norm,
        })
        if self.config.verbosity == NewtonVerbosity.ALL:
            print(f"Iteration: {self._num_iterations}, residue: {self._residue:.6e}, "
                  f"update norm: {self._update_norm:.6e}")

    def _report(self):
        if self.config.verbosity == NewtonVerbosity.NONE:
            return
        print(f"Newton's method {self._status.value} after {self._num_iterations} iteration(s): "
              f"residue {self._residue:.6e}, update norm {self._update_norm:.6e}")

    # ---- 结果 ----
    def solution(self) -> Dict[str, MultiPatch]:
        return self.assembler.construct_solution(self._vector, self._fixed)

    def solution_vector(self) -> np.ndarray:
        return self._vector.copy()

    def fixed_dofs(self) -> np.ndarray:
        return self._fixed.copy()

    def converged(self) -> bool:
        return self._status == NewtonStatus.CONVERGED

    def status(self) -> NewtonStatus:
        return self._status

    def num_iterations(self) -> int:
        return self._num_iterations

    def residue(self) -> float:
        return self._residue

    def update_norm(self) -> float:
        return self._update_norm

    def relative_residue(self) -> float:
        if self._ref_residue == 0.0:
            return 0.0
        return self._residue / self._ref_residue
