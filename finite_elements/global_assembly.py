"""
物理场装配器

弹性（线性 / 非线性 / 混合）、网格运动（ALE）、定常Navier–Stokes 与质量矩阵，
均为 GlobalAssembly 配以相应单元核。
"""

import numpy as np
from typing import Optional, Sequence, Tuple

from core.exceptions import ConfigurationError
from materials.elastic_materials import (
    ElasticMaterial, StressType, ThermalExpansion, cauchy_stress, von_mises,
    deformation_gradient, check_determinant,
)
from .assembly import GlobalAssembly, AssemblerOptions
from .basis_functions import PatchBasis
from .boundary_conditions import BoundaryConditions
from .elements import (
    LinearElasticityKernel, NonlinearElasticityKernel, MixedNonlinearElasticityKernel,
    ALEKernel, NavierStokesKernel, MassKernel,
)
from .mesh_generation import MultiPatch, Patch
from .quadrature import side_points_weights
from .transformations import jacobian_inv, outer_normals, side_tangent_index


def physical_gradient(geometry: Patch, field: Patch, params) -> np.ndarray:
    """场对物理坐标的梯度 grad[q, i, j] = ∂f_i/∂x_j"""
    Jf = field.jacobian(params)
    Jg = geometry.jacobian(params)
    return np.einsum('qai,qja->qij', Jf, jacobian_inv(Jg))


def fluid_traction(geometry: Patch, velocity: Patch, pressure: Patch, side: str, params,
                   viscosity: float, density: float) -> np.ndarray:
    """
    流体对壁面的面力 −σ n_f，σ = ρ(−p I + ν(∇v + ∇vᵀ))
    n_f 为流体域在该边上的单位外法向
    """
    grad_v = physical_gradient(geometry, velocity, params)
    p = pressure.eval(params)[:, 0]
    dim = grad_v.shape[1]
    sigma = density * (-p[:, None, None] * np.eye(dim)[None]
                       + viscosity * (grad_v + np.transpose(grad_v, (0, 2, 1))))
    normals, _ = outer_normals(geometry.jacobian(params), side)
    return -np.einsum('qij,qj->qi', sigma, normals)


class ElasticityAssembler(GlobalAssembly):
    """
    弹性装配器

    pressure_bases 给定时使用位移-压力混合形式（Taylor–Hood）；
    nonlinear=False 时为小变形线弹性；thermal 给定时加入热膨胀载荷（仅线弹性纯位移形式）。
    """

    def __init__(self, geometry: MultiPatch, displacement_bases: Sequence[PatchBasis],
                 boundary_conditions: Optional[BoundaryConditions] = None,
                 body_force=None, material: Optional[ElasticMaterial] = None,
                 pressure_bases: Optional[Sequence[PatchBasis]] = None,
                 nonlinear: bool = True, options: Optional[AssemblerOptions] = None,
                 thermal: Optional[ThermalExpansion] = None):
        self.material = material or ElasticMaterial()
        self.nonlinear = nonlinear
        self.mixed = pressure_bases is not None
        self.thermal = thermal
        if thermal is not None and nonlinear:
            raise ConfigurationError("热膨胀载荷仅支持线弹性 (nonlinear=False)")
        dim = geometry.dim
        if self.mixed and nonlinear:
            kernel = MixedNonlinearElasticityKernel(self.material, body_force, dim)
        elif nonlinear:
            kernel = NonlinearElasticityKernel(self.material, body_force, dim)
        else:
            kernel = LinearElasticityKernel(self.material, body_force, self.mixed, dim, thermal)
        field_bases = {'displacement': list(displacement_bases)}
        if self.mixed:
            field_bases['pressure'] = list(pressure_bases)
        super().__init__(geometry, field_bases, boundary_conditions, kernel, options)

    def stress(self, displacement: MultiPatch, patch: int, params,
               stress_type: StressType = StressType.VON_MISES,
               pressure: Optional[MultiPatch] = None) -> np.ndarray:
        """
        Cauchy应力后处理
        VON_MISES 返回 (n,)；ALL_2D 返回 (n, 3) = σ11, σ22, σ12
        """
        if isinstance(stress_type, str):
            stress_type = StressType(stress_type)
        self.dof_mapper.check_field('displacement', displacement)
        if self.mixed and pressure is None:
            raise ConfigurationError("混合形式的应力计算需要压力场")
        params = np.atleast_2d(params)
        geo = self.geometry.patch(patch)
        grad_u = physical_gradient(geo, displacement.patch(patch), params)
        lam, mu = self.material.lame_lambda, self.material.lame_mu
        dim = grad_u.shape[1]
        I = np.eye(dim)[None]

        if self.mixed:
            p = pressure.patch(patch).eval(params)[:, 0]
            if self.nonlinear:
                F = deformation_gradient(grad_u)
                J = np.linalg.det(F)
                check_determinant(J, patch)
                FFt = np.einsum('qik,qjk->qij', F, F)
                sigma = (mu * (FFt - I) + mu * p[:, None, None] * I) / J[:, None, None]
            else:
                eps = 0.5 * (grad_u + np.transpose(grad_u, (0, 2, 1)))
                sigma = 2.0 * mu * eps + mu * p[:, None, None] * I
        elif self.nonlinear:
            sigma = cauchy_stress(deformation_gradient(grad_u), self.material)
        else:
            eps = 0.5 * (grad_u + np.transpose(grad_u, (0, 2, 1)))
            tr = np.trace(eps, axis1=1, axis2=2)
            sigma = lam * tr[:, None, None] * I + 2.0 * mu * eps
            if self.thermal is not None:
                dT = self.thermal.temperature_change(geo.eval(params), params)
                coef = self.thermal.stress_coefficient(self.material)
                sigma = sigma - coef * dT[:, None, None] * I

        if stress_type == StressType.VON_MISES:
            return von_mises(sigma)
        if stress_type == StressType.ALL_2D:
            return np.column_stack([sigma[:, 0, 0], sigma[:, 1, 1], sigma[:, 0, 1]])
        raise ValueError(f"不支持的应力类型: {stress_type}")


class ALEAssembler(GlobalAssembly):
    """网格运动装配器：流体域运动部分上的非线性弹性"""

    def __init__(self, geometry: MultiPatch, bases: Sequence[PatchBasis],
                 boundary_conditions: Optional[BoundaryConditions] = None,
                 material: Optional[ElasticMaterial] = None,
                 options: Optional[AssemblerOptions] = None):
        kernel = ALEKernel(material, geometry.dim)
        self.material = kernel.material
        super().__init__(geometry, {'displacement': list(bases)}, boundary_conditions,
                         kernel, options)


class NavierStokesAssembler(GlobalAssembly):
    """定常不可压Navier–Stokes装配器（Taylor–Hood 速度/压力）"""

    def __init__(self, geometry: MultiPatch, velocity_bases: Sequence[PatchBasis],
                 pressure_bases: Sequence[PatchBasis],
                 boundary_conditions: Optional[BoundaryConditions] = None,
                 force=None, viscosity: float = 1e-3, density: float = 1.0,
                 options: Optional[AssemblerOptions] = None):
        self.viscosity = viscosity
        self.density = density
        kernel = NavierStokesKernel(viscosity, force, geometry.dim)
        super().__init__(geometry, {'velocity': list(velocity_bases),
                                    'pressure': list(pressure_bases)},
                         boundary_conditions, kernel, options)

    def compute_force(self, velocity: MultiPatch, pressure: MultiPatch,
                      boundary_sides: Sequence[Tuple[int, str]]) -> np.ndarray:
        """
        流体作用在给定边界上的合力（阻力, 升力）
        在当前（可能已变形的）流体几何上积分
        """
        self.dof_mapper.check_field('velocity', velocity)
        self.dof_mapper.check_field('pressure', pressure)
        order = self.element_assembly.quadrature_order
        force = np.zeros(self.geometry.dim)
        for patch, side in boundary_sides:
            geo = self.geometry.patch(patch)
            basis = self.field_bases['velocity'][patch]
            for ex, ey in basis.side_elements(side):
                params, wts = side_points_weights(basis.element_box(ex, ey), side, order)
                tangent = geo.jacobian(params)[:, side_tangent_index(side), :]
                ds = np.linalg.norm(tangent, axis=1)
                t = fluid_traction(geo, velocity.patch(patch), pressure.patch(patch), side,
                                   params, self.viscosity, self.density)
                force += np.einsum('q,qi->i', wts * ds, t)
        return force


class ElasticityMassAssembler(GlobalAssembly):
    """质量矩阵装配器，与刚度装配器共用边界条件即得到一致的自由度编号"""

    def __init__(self, geometry: MultiPatch, bases: Sequence[PatchBasis],
                 boundary_conditions: Optional[BoundaryConditions] = None,
                 density: float = 1.0, options: Optional[AssemblerOptions] = None):
        super().__init__(geometry, {'displacement': list(bases)}, boundary_conditions,
                         MassKernel(density, geometry.dim), options)
