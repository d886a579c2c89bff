"""
边界条件处理模块
按 (片, 边, 场, 分量) 指定 Dirichlet（给定值）或 Neumann（面力）条件
"""

import numpy as np
from typing import List, Optional, Callable, Union, Sequence
from dataclasses import dataclass
from abc import ABC, abstractmethod

from core.exceptions import ConfigurationError
from .basis_functions import SIDES

BOUNDARY_TYPES = ("dirichlet", "neumann")


class BoundaryLoad(ABC):
    """随状态变化的边界面力（如流体作用在结构上的载荷）"""

    @abstractmethod
    def evaluate(self, side_params: np.ndarray, points: np.ndarray) -> np.ndarray:
        """
        side_params: (n, 2) 片参数坐标
        points: (n, dim) 物理坐标
        返回面力 (n, dim)
        """
        pass


@dataclass
class BoundaryCondition:
    """边界条件基类"""
    patch: int
    side: str
    boundary_type: str  # 'dirichlet', 'neumann'
    value: Union[None, float, Sequence[float], np.ndarray, Callable, BoundaryLoad] = None
    component: Optional[int] = None
    field_name: Optional[str] = None

    def __post_init__(self):
        if self.side not in SIDES:
            raise ConfigurationError(f"不支持的边: {self.side}")
        if self.boundary_type not in BOUNDARY_TYPES:
            raise ConfigurationError(f"不支持的边界条件类型: {self.boundary_type}")
        if self.patch < 0:
            raise ConfigurationError(f"片编号无效: {self.patch}")
        if self.boundary_type == "neumann" and self.component is not None:
            raise ConfigurationError("Neumann条件作用于全部分量，不能指定 component")


class DirichletBC(BoundaryCondition):
    """Dirichlet边界条件"""

    def __init__(self, patch: int, side: str, value=None,
                 component: Optional[int] = None, field_name: Optional[str] = None):
        super().__init__(patch=patch, side=side, boundary_type="dirichlet",
                         value=value, component=component, field_name=field_name)


class NeumannBC(BoundaryCondition):
    """Neumann边界条件"""

    def __init__(self, patch: int, side: str, traction,
                 field_name: Optional[str] = None):
        super().__init__(patch=patch, side=side, boundary_type="neumann",
                         value=traction, field_name=field_name)


class BoundaryConditions:
    """边界条件集合"""

    def __init__(self):
        self.conditions: List[BoundaryCondition] = []

    def __len__(self):
        return len(self.conditions)

    def __iter__(self):
        return iter(self.conditions)

    def add_condition(self, patch: int, side: str, condition_type: str, value=None,
                      component: Optional[int] = None,
                      field_name: Optional[str] = None) -> BoundaryCondition:
        if condition_type == "dirichlet":
            bc = DirichletBC(patch, side, value, component, field_name)
        elif condition_type == "neumann":
            bc = NeumannBC(patch, side, value, field_name)
        else:
            raise ConfigurationError(f"不支持的边界条件类型: {condition_type}")
        self.conditions.append(bc)
        return bc

    def add_dirichlet(self, patch, side, value=None, component=None, field_name=None):
        return self.add_condition(patch, side, "dirichlet", value, component, field_name)

    def add_neumann(self, patch, side, traction, field_name=None):
        return self.add_condition(patch, side, "neumann", traction, None, field_name)

    def dirichlet_conditions(self) -> List[BoundaryCondition]:
        return [bc for bc in self.conditions if bc.boundary_type == "dirichlet"]

    def neumann_conditions(self) -> List[BoundaryCondition]:
        return [bc for bc in self.conditions if bc.boundary_type == "neumann"]

    def dirichlet_sides(self, field_name: Optional[str] = None):
        return {(bc.patch, bc.side) for bc in self.dirichlet_conditions()
                if field_name is None or bc.field_name == field_name}

    def copy(self) -> "BoundaryConditions":
        other = BoundaryConditions()
        other.conditions = list(self.conditions)
        return other


def dirichlet_values(value, points: np.ndarray, n_components: int) -> np.ndarray:
    """
    Dirichlet值在节点处求值
    value: None（零）、标量、向量或关于物理坐标的函数
    返回 (n_points, n_components)
    """
    n = points.shape[0]
    if value is None:
        return np.zeros((n, n_components))
    if callable(value):
        vals = np.asarray(value(points), dtype=float)
    else:
        vals = np.asarray(value, dtype=float)
    if vals.ndim == 0:
        return np.full((n, n_components), float(vals))
    if vals.ndim == 1:
        if callable(value) and vals.shape[0] == n:
            return np.tile(vals[:, None], (1, n_components))
        if vals.shape[0] == n_components:
            return np.tile(vals, (n, 1))
    if vals.shape == (n, n_components):
        return vals
    raise ConfigurationError(f"Dirichlet值形状 {vals.shape} 与 ({n}, {n_components}) 不符")


def traction_values(value, side_params: np.ndarray, points: np.ndarray,
                    dim: int) -> np.ndarray:
    """Neumann面力求值，返回 (n_points, dim)"""
    n = points.shape[0]
    if isinstance(value, BoundaryLoad):
        vals = value.evaluate(side_params, points)
    elif callable(value):
        vals = value(points)
    elif value is None:
        vals = np.zeros(dim)
    else:
        vals = value
    vals = np.asarray(vals, dtype=float)
    if vals.ndim == 1 and vals.shape[0] == dim:
        vals = np.tile(vals, (n, 1))
    if vals.shape != (n, dim):
        raise ConfigurationError(f"面力形状 {vals.shape} 与 ({n}, {dim}) 不符")
    return vals
