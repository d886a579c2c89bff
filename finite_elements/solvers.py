"""
线性求解器模块

直接法（LU / LDLT 型对称分解）与 Jacobi 预处理的 Krylov 迭代法（CG / BiCGStab）。
求解失败统一抛出 LinearSolveError，不做自动正则化。
"""

import time
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Union

from scipy.sparse import csr_matrix, csc_matrix, issparse
from scipy.sparse.linalg import splu, cg, bicgstab, LinearOperator

from core.exceptions import LinearSolveError


class LinearSolverType(Enum):
    """线性求解器类型"""
    LU = "lu"
    LDLT = "ldlt"
    CG = "cg"
    BICGSTAB = "bicgstab"


@dataclass
class SolverConfig:
    """求解器配置"""
    solver_type: LinearSolverType = LinearSolverType.LU
    tolerance: float = 1e-10
    max_iterations: int = 10000
    preconditioner: str = "jacobi"  # 'jacobi', 'none'
    verbose: bool = False

    def __post_init__(self):
        if isinstance(self.solver_type, str):
            self.solver_type = LinearSolverType(self.solver_type.lower())
        if self.preconditioner not in ("jacobi", "none"):
            raise ValueError(f"不支持的预处理器: {self.preconditioner}")


class LinearSolver(ABC):
    """线性求解器抽象基类"""

    def __init__(self, config: SolverConfig = None):
        self.config = config or SolverConfig()
        self.performance_stats = {'setup_time': 0.0, 'solve_time': 0.0, 'n_solves': 0}

    @abstractmethod
    def setup(self, A: csr_matrix):
        """设置求解器（分解或预处理器）"""
        pass

    @abstractmethod
    def _solve(self, b: np.ndarray) -> np.ndarray:
        pass

    def solve(self, A: Union[np.ndarray, csr_matrix], b: np.ndarray) -> np.ndarray:
        """求解线性系统 Ax = b"""
        A = csr_matrix(A) if not issparse(A) else A
        b = np.asarray(b, dtype=float)
        if A.shape[0] != A.shape[1] or A.shape[0] != b.shape[0]:
            raise LinearSolveError(f"矩阵 {A.shape} 与右端项 {b.shape} 维数不符")
        if b.shape[0] == 0:
            return np.zeros(0)

        t0 = time.time()
        self.setup(A)
        t1 = time.time()
        x = self._solve(b)
        self.performance_stats['setup_time'] += t1 - t0
        self.performance_stats['solve_time'] += time.time() - t1
        self.performance_stats['n_solves'] += 1

        if not np.all(np.isfinite(x)):
            raise LinearSolveError("线性求解结果含非有限值，矩阵可能奇异")
        return x


class DirectSolver(LinearSolver):
    """直接求解器（SuperLU）"""

    def __init__(self, config: SolverConfig = None):
        super().__init__(config)
        self.factorized = None

    def setup(self, A):
        options = {}
        if self.config.solver_type == LinearSolverType.LDLT:
            # 对称结构：A + Aᵀ 上的最小度排序，对角主元优先
            options = dict(permc_spec="MMD_AT_PLUS_A", diag_pivot_thresh=0.0,
                           options=dict(SymmetricMode=True))
        elif self.config.solver_type != LinearSolverType.LU:
            raise ValueError(f"不支持的直接求解方法: {self.config.solver_type}")
        try:
            self.factorized = splu(csc_matrix(A), **options)
        except RuntimeError as e:
            raise LinearSolveError(f"矩阵分解失败: {e}") from e

    def _solve(self, b):
        return self.factorized.solve(b)


class IterativeSolver(LinearSolver):
    """Jacobi预处理的Krylov迭代求解器"""

    def __init__(self, config: SolverConfig = None):
        super().__init__(config or SolverConfig(solver_type=LinearSolverType.CG))
        self.preconditioner = None
        self.A = None

    def setup(self, A):
        self.A = A
        self.preconditioner = None
        if self.config.preconditioner == "jacobi":
            diag = A.diagonal()
            if np.any(diag == 0.0):
                raise LinearSolveError("对角元为零，无法使用Jacobi预处理")
            inv_diag = 1.0 / diag
            self.preconditioner = LinearOperator(A.shape, matvec=lambda x: inv_diag * x)

    def _solve(self, b):
        if self.config.solver_type == LinearSolverType.CG:
            method = cg
        elif self.config.solver_type == LinearSolverType.BICGSTAB:
            method = bicgstab
        else:
            raise ValueError(f"不支持的迭代求解方法: {self.config.solver_type}")
        x, info = method(self.A, b, rtol=self.config.tolerance,
                         maxiter=self.config.max_iterations, M=self.preconditioner)
        if info > 0:
            raise LinearSolveError(f"{self.config.solver_type.value} 在 {info} 步内未收敛")
        if info < 0:
            raise LinearSolveError(f"{self.config.solver_type.value} 输入非法或发生breakdown")
        if self.config.verbose:
            res = np.linalg.norm(self.A @ x - b) / max(np.linalg.norm(b), 1e-300)
            print(f"   {self.config.solver_type.value}: 相对残差 {res:.3e}")
        return x


class SolverFactory:
    """求解器工厂"""

    @staticmethod
    def create_solver(config: Union[SolverConfig, LinearSolverType, str] = None) -> LinearSolver:
        if config is None:
            config = SolverConfig()
        elif not isinstance(config, SolverConfig):
            config = SolverConfig(solver_type=config)
        if config.solver_type in (LinearSolverType.LU, LinearSolverType.LDLT):
            return DirectSolver(config)
        if config.solver_type in (LinearSolverType.CG, LinearSolverType.BICGSTAB):
            return IterativeSolver(config)
        raise ValueError(f"不支持的求解器类型: {config.solver_type}")
