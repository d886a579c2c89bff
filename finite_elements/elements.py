"""
单元核（ElementKernel）注册与工厂

单元核对一个单元、一个当前状态计算局部切线矩阵与残量形式的右端项
（外力 − 内力）。局部自由度顺序为 场 → 分量 → 基函数。
单元核不保存跨单元状态，可被多个线程同时调用。
"""
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from core.exceptions import ConfigurationError
from materials.elastic_materials import (
    ElasticMaterial, MaterialLaw, ThermalExpansion, deformation_gradient, check_determinant,
    second_piola_kirchhoff,
)


@dataclass
class ElementValues:
    """单元积分点数据"""
    weights: np.ndarray                 # (nq,) 积分权重 × |det J|
    points: np.ndarray                  # (nq, dim) 物理坐标
    basis: Dict[str, np.ndarray] = field(default_factory=dict)   # N (nq, n)
    grads: Dict[str, np.ndarray] = field(default_factory=dict)   # dN/dx (nq, n, dim)
    patch: int = 0
    element: Tuple[int, int] = (0, 0)
    params: Optional[np.ndarray] = None   # (nq, 2) 参数坐标

    @property
    def dim(self) -> int:
        return self.points.shape[1]


def body_force_values(body_force, points: np.ndarray, dim: int) -> Optional[np.ndarray]:
    """体力求值 (nq, dim)；None 表示无体力"""
    if body_force is None:
        return None
    vals = body_force(points) if callable(body_force) else body_force
    vals = np.asarray(vals, dtype=float)
    if vals.ndim == 1:
        vals = np.tile(vals, (points.shape[0], 1))
    if vals.shape != (points.shape[0], dim):
        raise ConfigurationError(f"体力形状 {vals.shape} 与 ({points.shape[0]}, {dim}) 不符")
    return vals


def _load_vector(values: ElementValues, name: str, load: np.ndarray) -> np.ndarray:
    """∫ f_i N_a，按 (分量, 基函数) 展平"""
    N = values.basis[name]
    return np.einsum('q,qi,qa->ia', values.weights, load, N).ravel()


class ElementKernel(ABC):
    """单元核抽象基类"""

    symmetric: bool = True

    @property
    @abstractmethod
    def fields(self) -> Dict[str, int]:
        """有序的 {场名: 分量数}"""
        pass

    @abstractmethod
    def evaluate(self, values: ElementValues,
                 state: Dict[str, np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        """返回 (Ke, fe)"""
        pass

    def local_size(self, values: ElementValues) -> int:
        return sum(values.basis[f].shape[1] * d for f, d in self.fields.items())


class LinearElasticityKernel(ElementKernel):
    """
    小变形线弹性，可选位移-压力混合形式

    thermal 给定时右端项加入热膨胀载荷 ∫ (3λ + 2μ)·α·(T − T₀)·∂N_a/∂x_i（仅纯位移形式）
    """

    def __init__(self, material: ElasticMaterial, body_force=None,
                 mixed: bool = False, dim: int = 2,
                 thermal: Optional[ThermalExpansion] = None):
        if material.incompressible and not mixed:
            raise ConfigurationError("不可压缩材料 (ν = 0.5) 需要混合形式")
        if thermal is not None and mixed:
            raise ConfigurationError("热膨胀载荷仅支持纯位移形式")
        self.material = material
        self.body_force = body_force
        self.mixed = mixed
        self.dim = dim
        self.thermal = thermal
        self.thermal_coefficient = (thermal.stress_coefficient(material)
                                    if thermal is not None else 0.0)

    @property
    def fields(self):
        f = {'displacement': self.dim}
        if self.mixed:
            f['pressure'] = 1
        return f

    def evaluate(self, values, state):
        lam, mu = self.material.lame_lambda, self.material.lame_mu
        w = values.weights
        G = values.grads['displacement']
        n, d = G.shape[1], self.dim
        I = np.eye(d)

        GG = np.einsum('q,qam,qbm->ab', w, G, G)
        K = mu * np.einsum('ik,ab->iakb', I, GG)
        K += mu * np.einsum('q,qak,qbi->iakb', w, G, G)
        if not self.mixed:
            K += lam * np.einsum('q,qai,qbk->iakb', w, G, G)
        Kuu = K.reshape(d * n, d * n)

        f = np.zeros(d * n)
        b = body_force_values(self.body_force, values.points, d)
        if b is not None:
            f = _load_vector(values, 'displacement', self.material.density * b)
        if self.thermal is not None:
            dT = self.thermal.temperature_change(values.points, values.params)
            f = f + self.thermal_coefficient * np.einsum('q,q,qai->ia', w, dT, G).ravel()

        if self.mixed:
            Np = values.basis['pressure']
            m = Np.shape[1]
            Kup = mu * np.einsum('q,qai,qb->iab', w, G, Np).reshape(d * n, m)
            Kpp = np.zeros((m, m))
            if not np.isinf(lam):
                Kpp = -(mu ** 2 / lam) * np.einsum('q,qa,qb->ab', w, Np, Np)
            Ke = np.block([[Kuu, Kup], [Kup.T, Kpp]])
            f = np.concatenate([f, np.zeros(m)])
            x = np.concatenate([state['displacement'].T.ravel(), state['pressure'].T.ravel()])
        else:
            Ke = Kuu
            x = state['displacement'].T.ravel()
        return Ke, f - Ke @ x


class NonlinearElasticityKernel(ElementKernel):
    """全Lagrange描述的超弹性（SVK / 对数Neo-Hooke），一致切线"""

    def __init__(self, material: ElasticMaterial, body_force=None, dim: int = 2):
        if material.incompressible:
            raise ConfigurationError("不可压缩材料 (ν = 0.5) 需要混合形式")
        self.material = material
        self.body_force = body_force
        self.dim = dim

    @property
    def fields(self):
        return {'displacement': self.dim}

    def evaluate(self, values, state):
        lam, mu = self.material.lame_lambda, self.material.lame_mu
        w = values.weights
        G = values.grads['displacement']
        n, d = G.shape[1], self.dim

        grad_u = np.einsum('ai,qaj->qij', state['displacement'], G)
        F = deformation_gradient(grad_u)
        J = np.linalg.det(F)
        check_determinant(J, values.patch, values.element)
        S = second_piola_kirchhoff(F, self.material)
        P = np.einsum('qik,qkj->qij', F, S)

        # 几何刚度
        GSG = np.einsum('q,qam,qmn,qbn->ab', w, G, S, G)
        K = np.einsum('ik,ab->iakb', np.eye(d), GSG)

        # δE(N_a e_i)
        B = 0.5 * (np.einsum('qim,qaj->qaimj', F, G) + np.einsum('qij,qam->qaimj', F, G))
        if self.material.law == MaterialLaw.SAINT_VENANT_KIRCHHOFF:
            trB = np.einsum('qaimm->qai', B)
            K += lam * np.einsum('q,qai,qbk->iakb', w, trB, trB)
            K += 2.0 * mu * np.einsum('q,qaimj,qbkmj->iakb', w, B, B)
        else:
            C_inv = np.linalg.inv(np.einsum('qki,qkj->qij', F, F))
            CB = np.einsum('qmj,qaimj->qai', C_inv, B)
            K += lam * np.einsum('q,qai,qbk->iakb', w, CB, CB)
            coef = 2.0 * (mu - lam * np.log(J))
            BC = np.einsum('qaimn,qnj->qaimj', B, C_inv)
            K += np.einsum('q,q,qaimj,qbkjm->iakb', w, coef, BC, BC)
        Ke = K.reshape(d * n, d * n)

        f_int = np.einsum('q,qij,qaj->ia', w, P, G).ravel()
        f = np.zeros(d * n)
        b = body_force_values(self.body_force, values.points, d)
        if b is not None:
            f = _load_vector(values, 'displacement', self.material.density * b)
        return Ke, f - f_int


class MixedNonlinearElasticityKernel(ElementKernel):
    """
    近不可压缩非线性弹性的Taylor–Hood位移-压力形式

    位移残量 μ(F − F⁻ᵀ) + μp F⁻ᵀ，压力残量 μ ln J − (μ²/λ) p；
    λ 为无穷时略去稳定项。
    """

    def __init__(self, material: ElasticMaterial, body_force=None, dim: int = 2):
        self.material = material
        self.body_force = body_force
        self.dim = dim

    @property
    def fields(self):
        return {'displacement': self.dim, 'pressure': 1}

    def evaluate(self, values, state):
        lam, mu = self.material.lame_lambda, self.material.lame_mu
        w = values.weights
        G = values.grads['displacement']
        Np = values.basis['pressure']
        n, d, m = G.shape[1], self.dim, Np.shape[1]

        grad_u = np.einsum('ai,qaj->qij', state['displacement'], G)
        F = deformation_gradient(grad_u)
        J = np.linalg.det(F)
        check_determinant(J, values.patch, values.element)
        F_inv = np.linalg.inv(F)
        F_invT = np.transpose(F_inv, (0, 2, 1))
        p = Np @ state['pressure'][:, 0]
        prex = mu * p

        T = np.einsum('qam,qmk->qak', G, F_inv)
        GG = np.einsum('q,qam,qbm->ab', w, G, G)
        K = mu * np.einsum('ik,ab->iakb', np.eye(d), GG)
        K += np.einsum('q,qak,qbi->iakb', w * (mu - prex), T, T)
        Kuu = K.reshape(d * n, d * n)
        Kup = mu * np.einsum('q,qai,qb->iab', w, T, Np).reshape(d * n, m)
        Kpp = np.zeros((m, m))
        if not np.isinf(lam):
            Kpp = -(mu ** 2 / lam) * np.einsum('q,qa,qb->ab', w, Np, Np)
        Ke = np.block([[Kuu, Kup], [Kup.T, Kpp]])

        P = mu * (F - F_invT) + prex[:, None, None] * F_invT
        f_u = -np.einsum('q,qij,qaj->ia', w, P, G).ravel()
        b = body_force_values(self.body_force, values.points, d)
        if b is not None:
            f_u += _load_vector(values, 'displacement', self.material.density * b)
        r_p = mu * np.log(J)
        if not np.isinf(lam):
            r_p = r_p - (mu ** 2 / lam) * p
        f_p = -np.einsum('q,q,qa->a', w, r_p, Np)
        return Ke, np.concatenate([f_u, f_p])


class ALEKernel(NonlinearElasticityKernel):
    """网格运动：无体力的SVK弹性，默认 ν = 0.4"""

    def __init__(self, material: Optional[ElasticMaterial] = None, dim: int = 2):
        material = material or ElasticMaterial(young_modulus=1.0, poisson_ratio=0.4)
        super().__init__(material, body_force=None, dim=dim)


class NavierStokesKernel(ElementKernel):
    """
    定常不可压Navier–Stokes（运动学压力），对流项Newton线性化

    -ν Δv + (v·∇)v + ∇p = f, div v = 0
    """

    symmetric = False

    def __init__(self, viscosity: float, force=None, dim: int = 2):
        if viscosity <= 0:
            raise ConfigurationError(f"粘度必须为正: {viscosity}")
        self.viscosity = viscosity
        self.force = force
        self.dim = dim

    @property
    def fields(self):
        return {'velocity': self.dim, 'pressure': 1}

    def evaluate(self, values, state):
        nu = self.viscosity
        w = values.weights
        N = values.basis['velocity']
        G = values.grads['velocity']
        Np = values.basis['pressure']
        n, d, m = N.shape[1], self.dim, Np.shape[1]

        v_coefs = state['velocity']
        v = N @ v_coefs
        grad_v = np.einsum('ai,qaj->qij', v_coefs, G)
        p = Np @ state['pressure'][:, 0]

        GG = np.einsum('q,qam,qbm->ab', w, G, G)
        vG = np.einsum('qj,qbj->qb', v, G)
        K = np.einsum('ik,ab->iakb', np.eye(d), nu * GG + np.einsum('q,qa,qb->ab', w, N, vG))
        K += np.einsum('q,qa,qb,qik->iakb', w, N, N, grad_v)
        Kvv = K.reshape(d * n, d * n)
        Kvp = -np.einsum('q,qai,qb->iab', w, G, Np).reshape(d * n, m)
        Ke = np.block([[Kvv, Kvp], [Kvp.T, np.zeros((m, m))]])

        conv = np.einsum('qij,qj->qi', grad_v, v)
        r_v = (nu * np.einsum('q,qij,qaj->ia', w, grad_v, G)
               + np.einsum('q,qi,qa->ia', w, conv, N)
               - np.einsum('q,q,qai->ia', w, p, G))
        f_v = -r_v.ravel()
        b = body_force_values(self.force, values.points, d)
        if b is not None:
            f_v += _load_vector(values, 'velocity', b)
        div_v = np.trace(grad_v, axis1=1, axis2=2)
        f_p = np.einsum('q,q,qa->a', w, div_v, Np)
        return Ke, np.concatenate([f_v, f_p])


class MassKernel(ElementKernel):
    """一致质量矩阵"""

    def __init__(self, density: float = 1.0, dim: int = 2):
        self.density = density
        self.dim = dim

    @property
    def fields(self):
        return {'displacement': self.dim}

    def evaluate(self, values, state):
        N = values.basis['displacement']
        n, d = N.shape[1], self.dim
        M = self.density * np.einsum('q,qa,qb->ab', values.weights, N, N)
        Ke = np.kron(np.eye(d), M)
        return Ke, np.zeros(d * n)


# 单元核注册表
KERNEL_TYPE_MAP = {
    'linear': LinearElasticityKernel,
    'nonlinear': NonlinearElasticityKernel,
    'nonlinear_mixed': MixedNonlinearElasticityKernel,
    'ale': ALEKernel,
    'navier_stokes': NavierStokesKernel,
    'mass': MassKernel,
}


def create_kernel(kernel_type: str, *args, **kwargs) -> ElementKernel:
    """
    按名称创建单元核
    kernel_type: 'linear', 'nonlinear', 'nonlinear_mixed', 'ale', 'navier_stokes', 'mass'
    """
    if kernel_type not in KERNEL_TYPE_MAP:
        raise ValueError(f"未知单元核类型: {kernel_type}")
    return KERNEL_TYPE_MAP[kernel_type](*args, **kwargs)
