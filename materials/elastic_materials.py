"""
弹性材料模型

超弹性本构：Saint-Venant–Kirchhoff 与 对数型 Neo-Hooke。
应力函数均按积分点批量计算，F 形状 (nq, d, d)。
"""

import numpy as np
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, Dict, Union

from core.exceptions import ConfigurationError, BadSolutionError


class MaterialLaw(Enum):
    """本构律"""
    SAINT_VENANT_KIRCHHOFF = "saint_venant_kirchhoff"
    NEO_HOOKE_LN = "neo_hooke_ln"


class StressType(Enum):
    """应力后处理类型"""
    VON_MISES = "von_mises"
    ALL_2D = "all_2d"


@dataclass
class ElasticMaterial:
    """弹性材料参数"""
    young_modulus: float = 1.0
    poisson_ratio: float = 0.3
    density: float = 1.0
    law: MaterialLaw = MaterialLaw.SAINT_VENANT_KIRCHHOFF

    def __post_init__(self):
        if isinstance(self.law, str):
            self.law = MaterialLaw(self.law)
        if self.young_modulus <= 0:
            raise ConfigurationError(f"杨氏模量必须为正: {self.young_modulus}")
        if not -1.0 < self.poisson_ratio <= 0.5:
            raise ConfigurationError(f"泊松比超出范围 (-1, 0.5]: {self.poisson_ratio}")

    @property
    def lame_lambda(self) -> float:
        """第一Lamé参数，不可压缩极限 (ν = 0.5) 时为无穷"""
        nu = self.poisson_ratio
        if nu == 0.5:
            return np.inf
        return self.young_modulus * nu / ((1 + nu) * (1 - 2 * nu))

    @property
    def lame_mu(self) -> float:
        return self.young_modulus / (2 * (1 + self.poisson_ratio))

    @property
    def incompressible(self) -> bool:
        return np.isinf(self.lame_lambda)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['law'] = self.law.value
        return data


@dataclass
class ThermalExpansion:
    """
    热膨胀载荷

    temperature 为常数或温度函数；param_temperature=True 时温度函数在参数坐标上求值，
    否则在物理坐标上求值。平面应变下热应力为 (3λ + 2μ)·α·(T − T₀)·I。
    """
    coefficient: float = 0.0
    initial_temperature: float = 0.0
    temperature: Union[float, Callable] = 0.0
    param_temperature: bool = False

    def __post_init__(self):
        if self.coefficient < 0:
            raise ConfigurationError(f"热膨胀系数不能为负: {self.coefficient}")

    def temperature_change(self, points: np.ndarray, params: np.ndarray) -> np.ndarray:
        """积分点上的 T − T₀，形状 (nq,)"""
        n = points.shape[0]
        if callable(self.temperature):
            T = np.asarray(self.temperature(params if self.param_temperature else points),
                           dtype=float).reshape(-1)
            if T.shape != (n,):
                raise ConfigurationError(f"温度函数返回形状 {T.shape}，应为 ({n},)")
        else:
            T = np.full(n, float(self.temperature))
        return T - self.initial_temperature

    def stress_coefficient(self, material: ElasticMaterial) -> float:
        """(3λ + 2μ)·α"""
        if material.incompressible:
            raise ConfigurationError("不可压缩材料不支持热膨胀载荷")
        return (3.0 * material.lame_lambda + 2.0 * material.lame_mu) * self.coefficient


def deformation_gradient(grad_u: np.ndarray) -> np.ndarray:
    """F = I + ∇u，grad_u[q, i, j] = ∂u_i/∂X_j"""
    dim = grad_u.shape[-1]
    return np.eye(dim)[None] + grad_u


def check_determinant(J: np.ndarray, patch: int = None, element=None):
    if np.any(J <= 0.0) or not np.all(np.isfinite(J)):
        raise BadSolutionError(
            f"变形梯度行列式非正 (min J = {np.min(J):.3e})，解不可用",
            patch=patch, element=element)


def second_piola_kirchhoff(F: np.ndarray, material: ElasticMaterial) -> np.ndarray:
    """第二类Piola-Kirchhoff应力 S"""
    lam, mu = material.lame_lambda, material.lame_mu
    dim = F.shape[-1]
    I = np.eye(dim)[None]
    C = np.einsum('qki,qkj->qij', F, F)
    if material.law == MaterialLaw.SAINT_VENANT_KIRCHHOFF:
        E = 0.5 * (C - I)
        trE = np.trace(E, axis1=1, axis2=2)
        return lam * trE[:, None, None] * I + 2.0 * mu * E
    if material.law == MaterialLaw.NEO_HOOKE_LN:
        J = np.linalg.det(F)
        check_determinant(J)
        C_inv = np.linalg.inv(C)
        return lam * np.log(J)[:, None, None] * C_inv + mu * (I - C_inv)
    raise ValueError(f"不支持的本构律: {material.law}")


def cauchy_stress(F: np.ndarray, material: ElasticMaterial) -> np.ndarray:
    """σ = F S Fᵀ / J"""
    S = second_piola_kirchhoff(F, material)
    J = np.linalg.det(F)
    check_determinant(J)
    return np.einsum('qik,qkl,qjl->qij', F, S, F) / J[:, None, None]


def von_mises(sigma: np.ndarray) -> np.ndarray:
    """二维von Mises等效应力"""
    s11, s22, s12 = sigma[:, 0, 0], sigma[:, 1, 1], sigma[:, 0, 1]
    return np.sqrt(s11 ** 2 + s22 ** 2 - s11 * s22 + 3.0 * s12 ** 2)
