"""
有限元方法模块

多片Lagrange离散上的非线性问题求解，包括：
- 张量积基函数与多片几何
- 高斯积分与等参变换
- 自由度编号（界面粘合、Dirichlet处理）
- 单元核与全局装配
- 线性求解器与Newton迭代
"""

from .basis_functions import SIDES, Lagrange1D, LagrangeQuad, PatchBasis
from .quadrature import (
    gauss_legendre_1d, quad_points_weights, element_points_weights, side_points_weights,
)
from .transformations import (
    jacobian_matrix, jacobian_det, jacobian_inv, dN_dx, outer_normals, side_tangent_index,
)
from .mesh_generation import (
    Patch, MultiPatch, check_matching_boundaries, quad_patch, rectangle_patch,
    cooks_membrane, zero_field, field_on,
)
from .boundary_conditions import (
    BoundaryLoad, BoundaryCondition, DirichletBC, NeumannBC, BoundaryConditions,
)
from .dof_manager import DofMapper
from .elements import (
    ElementValues, ElementKernel, LinearElasticityKernel, NonlinearElasticityKernel,
    MixedNonlinearElasticityKernel, ALEKernel, NavierStokesKernel, MassKernel, create_kernel,
)
from .assembly import DirichletStrategy, AssemblerOptions, ElementAssembly, GlobalAssembly
from .solvers import (
    LinearSolverType, SolverConfig, LinearSolver, DirectSolver, IterativeSolver, SolverFactory,
)
from .newton import NewtonStatus, NewtonVerbosity, NewtonConfig, NewtonSolver
from .global_assembly import (
    physical_gradient, fluid_traction, ElasticityAssembler, ALEAssembler,
    NavierStokesAssembler, ElasticityMassAssembler,
)

__version__ = "0.3.0"
__all__ = [
    # 基函数与几何
    "SIDES",
    "Lagrange1D",
    "LagrangeQuad",
    "PatchBasis",
    "Patch",
    "MultiPatch",
    "check_matching_boundaries",
    "quad_patch",
    "rectangle_patch",
    "cooks_membrane",
    "zero_field",
    "field_on",

    # 积分与变换
    "gauss_legendre_1d",
    "quad_points_weights",
    "element_points_weights",
    "side_points_weights",
    "jacobian_matrix",
    "jacobian_det",
    "jacobian_inv",
    "dN_dx",
    "outer_normals",
    "side_tangent_index",

    # 边界条件与自由度
    "BoundaryLoad",
    "BoundaryCondition",
    "DirichletBC",
    "NeumannBC",
    "BoundaryConditions",
    "DofMapper",

    # 单元核与装配
    "ElementValues",
    "ElementKernel",
    "LinearElasticityKernel",
    "NonlinearElasticityKernel",
    "MixedNonlinearElasticityKernel",
    "ALEKernel",
    "NavierStokesKernel",
    "MassKernel",
    "create_kernel",
    "DirichletStrategy",
    "AssemblerOptions",
    "ElementAssembly",
    "GlobalAssembly",
    "physical_gradient",
    "fluid_traction",
    "ElasticityAssembler",
    "ALEAssembler",
    "NavierStokesAssembler",
    "ElasticityMassAssembler",

    # 求解器
    "LinearSolverType",
    "SolverConfig",
    "LinearSolver",
    "DirectSolver",
    "IterativeSolver",
    "SolverFactory",
    "NewtonStatus",
    "NewtonVerbosity",
    "NewtonConfig",
    "NewtonSolver",
]
