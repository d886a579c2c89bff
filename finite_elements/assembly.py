"""
单元积分数据计算与全局装配

GlobalAssembly 遍历所有片的所有单元，调用注入的单元核，
按自由度映射累加到全局稀疏系统；Dirichlet条件以消去或罚函数方式施加。
"""

import time
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple, Optional

from scipy.sparse import coo_matrix, csr_matrix, diags, triu

from core.exceptions import ConfigurationError
from .basis_functions import PatchBasis
from .boundary_conditions import BoundaryConditions, dirichlet_values, traction_values
from .dof_manager import DofMapper
from .elements import ElementKernel, ElementValues
from .mesh_generation import MultiPatch, Patch
from .quadrature import quad_points_weights, element_points_weights, side_points_weights
from .transformations import (
    jacobian_det, jacobian_inv, dN_dx, side_tangent_index,
)


class DirichletStrategy(Enum):
    """Dirichlet条件施加方式"""
    ELIMINATION = "elimination"
    PENALIZATION = "penalization"


@dataclass
class AssemblerOptions:
    """装配选项"""
    dirichlet_strategy: DirichletStrategy = DirichletStrategy.ELIMINATION
    penalty: float = 1e9
    quadrature_order: Optional[int] = None  # 每方向积分点数，默认最高阶次 + 1
    n_threads: int = 1
    glue_tolerance: float = 1e-8

    def __post_init__(self):
        if isinstance(self.dirichlet_strategy, str):
            self.dirichlet_strategy = DirichletStrategy(self.dirichlet_strategy)
        if self.n_threads < 1:
            raise ConfigurationError(f"线程数必须 >= 1: {self.n_threads}")


class ElementAssembly:
    """单元积分点数据：物理坐标、权重 × |det J|、各场基函数值与物理梯度"""

    def __init__(self, geometry: MultiPatch, field_bases: Dict[str, List[PatchBasis]],
                 quadrature_order: int):
        self.geometry = geometry
        self.field_bases = field_bases
        self.quadrature_order = quadrature_order
        self.quad_pts, self.quad_wts = quad_points_weights(quadrature_order)
        self._reference = {}

    def _reference_values(self, basis: PatchBasis):
        """参考单元上的基函数值与对参数 (u, v) 的导数，按基缓存"""
        key = (basis.order, basis.n_elements)
        if key not in self._reference:
            N = basis.reference.evaluate(self.quad_pts)
            dN = basis.reference.evaluate_derivatives(self.quad_pts)
            dN[:, :, 0] *= 2.0 * basis.n_elements[0]
            dN[:, :, 1] *= 2.0 * basis.n_elements[1]
            self._reference[key] = (N, dN)
        return self._reference[key]

    def element_grid(self, patch: int) -> PatchBasis:
        return next(iter(self.field_bases.values()))[patch]

    def element_nodes(self, patch: int, ex: int, ey: int) -> Dict[str, np.ndarray]:
        return {f: bases[patch].element_nodes(ex, ey) for f, bases in self.field_bases.items()}

    def element_values(self, patch: int, ex: int, ey: int) -> ElementValues:
        geo = self.geometry.patch(patch)
        box = self.element_grid(patch).element_box(ex, ey)
        params, wts = element_points_weights(box, self.quadrature_order)
        points = geo.eval(params)
        J = geo.jacobian(params)
        detJ = jacobian_det(J)
        if np.any(detJ == 0.0):
            raise ConfigurationError(f"片 {patch} 单元 {(ex, ey)} 的几何映射退化")
        J_inv = jacobian_inv(J)

        values = ElementValues(weights=wts * np.abs(detJ), points=points, params=params,
                               patch=patch, element=(ex, ey))
        for field, bases in self.field_bases.items():
            N, dN = self._reference_values(bases[patch])
            values.basis[field] = N
            values.grads[field] = dN_dx(dN, J_inv)
        return values


class GlobalAssembly:
    """全局装配器：单元核通过依赖注入组合"""

    def __init__(self, geometry: MultiPatch, field_bases: Dict[str, List[PatchBasis]],
                 boundary_conditions: Optional[BoundaryConditions], kernel: ElementKernel,
                 options: Optional[AssemblerOptions] = None):
        self.geometry = geometry
        self.kernel = kernel
        self.options = options or AssemblerOptions()
        self.boundary_conditions = boundary_conditions or BoundaryConditions()

        if set(field_bases) != set(kernel.fields):
            raise ConfigurationError(
                f"场 {sorted(field_bases)} 与单元核需要的场 {sorted(kernel.fields)} 不一致")
        self.field_bases = {f: list(field_bases[f]) for f in kernel.fields}
        self.primary_field = next(iter(kernel.fields))
        self._check_bases()

        dirichlet = []
        for bc in self.boundary_conditions.dirichlet_conditions():
            dirichlet.append((self._field_of(bc), bc.patch, bc.side, bc.component))
        for bc in self.boundary_conditions.neumann_conditions():
            self._field_of(bc)

        self.dof_mapper = DofMapper(
            geometry, self.field_bases, kernel.fields, dirichlet,
            eliminate=self.options.dirichlet_strategy == DirichletStrategy.ELIMINATION,
            tolerance=self.options.glue_tolerance)

        order = self.options.quadrature_order
        if order is None:
            order = max(b.order for bases in self.field_bases.values() for b in bases) + 1
        self.element_assembly = ElementAssembly(geometry, self.field_bases, order)

        self._fixed = np.zeros(self.dof_mapper.num_fixed)
        self._compute_dirichlet_values()
        self._matrix = None
        self._rhs = None

        self.performance_stats = {
            'assembly_time': 0.0,
            'element_time': 0.0,
            'n_assemblies': 0,
        }

    def _check_bases(self):
        for field, bases in self.field_bases.items():
            if len(bases) != self.geometry.n_patches:
                raise ConfigurationError(
                    f"场 {field} 的片数 {len(bases)} 与几何片数 {self.geometry.n_patches} 不一致")
        for k in range(self.geometry.n_patches):
            grids = {bases[k].n_elements for bases in self.field_bases.values()}
            if len(grids) != 1:
                raise ConfigurationError(f"第 {k} 片上各场的单元划分不一致: {grids}")
            if self.geometry.patch(k).dim != 2:
                raise ConfigurationError(f"仅支持二维几何，第 {k} 片为 {self.geometry.patch(k).dim} 维")

    def _field_of(self, bc) -> str:
        field = bc.field_name or self.primary_field
        if field not in self.kernel.fields:
            raise ConfigurationError(f"边界条件指定了未知的场: {field}")
        if bc.patch >= self.geometry.n_patches:
            raise ConfigurationError(f"边界条件的片编号 {bc.patch} 超出范围")
        return field

    # ---- Dirichlet 数据 ----
    def _side_dofs(self, patch: int, side: str, field: str):
        basis = self.field_bases[field][patch]
        local = basis.side_nodes(side)
        return local, self.dof_mapper.global_nodes(field, patch, local)

    def _compute_dirichlet_values(self):
        """在边界节点处插值Dirichlet值，后添加的条件覆盖先前的"""
        for bc in self.boundary_conditions.dirichlet_conditions():
            field = self._field_of(bc)
            n_comp = self.kernel.fields[field]
            basis = self.field_bases[field][bc.patch]
            local, nodes = self._side_dofs(bc.patch, bc.side, field)
            points = self.geometry.patch(bc.patch).eval(basis.node_params()[local])
            vals = dirichlet_values(bc.value, points, n_comp)
            comps = range(n_comp) if bc.component is None else [bc.component]
            for c in comps:
                self._fixed[self.dof_mapper.fixed_index[field][c, nodes]] = vals[:, c]

    def set_dirichlet_dofs(self, patch: int, side: str, values, field: Optional[str] = None,
                           component: Optional[int] = None):
        """
        直接设置某条Dirichlet边上的给定值（无需重建自由度映射）
        values: (n_side_nodes, n_comp) 或 component 给定时 (n_side_nodes,)
        """
        field = field or self.primary_field
        if field not in self.kernel.fields:
            raise ConfigurationError(f"未知的场: {field}")
        n_comp = self.kernel.fields[field]
        _, nodes = self._side_dofs(patch, side, field)
        values = np.asarray(values, dtype=float)
        comps = range(n_comp) if component is None else [component]
        values = values.reshape(len(nodes), len(comps))
        for j, c in enumerate(comps):
            idx = self.dof_mapper.fixed_index[field][c, nodes]
            if np.any(idx < 0):
                raise ConfigurationError(f"片 {patch} 的边 {side} 不是场 {field} 的Dirichlet边")
            self._fixed[idx] = values[:, j]

    def fixed_dofs(self, component: int, field: Optional[str] = None) -> np.ndarray:
        field = field or self.primary_field
        return self._fixed[self.dof_mapper.fixed_slices[(field, component)]].copy()

    def all_fixed_dofs(self) -> np.ndarray:
        return self._fixed.copy()

    def set_fixed_dofs(self, fixed: np.ndarray):
        fixed = np.asarray(fixed, dtype=float)
        if fixed.shape != self._fixed.shape:
            raise ConfigurationError(f"固定值长度 {fixed.shape} 应为 {self._fixed.shape}")
        self._fixed = fixed.copy()

    # ---- 装配 ----
    def num_dofs(self) -> int:
        return self.dof_mapper.num_free

    def patches(self) -> MultiPatch:
        return self.geometry

    def vector_from_fields(self, fields: Dict[str, MultiPatch]) -> Tuple[np.ndarray, np.ndarray]:
        """场 → (自由向量, 固定值向量)，检查拓扑一致性"""
        missing = set(self.kernel.fields) - set(fields)
        if missing:
            raise ConfigurationError(f"缺少场: {sorted(missing)}")
        nodal = {f: self.dof_mapper.gather(f, fields[f]) for f in self.kernel.fields}
        return self.dof_mapper.to_vectors(nodal)

    def _element_task(self, nodal, task):
        patch, ex, ey = task
        values = self.element_assembly.element_values(patch, ex, ey)
        nodes = self.element_assembly.element_nodes(patch, ex, ey)
        state = {f: nodal[f][:, self.dof_mapper.global_nodes(f, patch, nodes[f])].T
                 for f in self.kernel.fields}
        Ke, fe = self.kernel.evaluate(values, state)
        free, fixed = self.dof_mapper.local_dofs(patch, nodes)
        return free, fixed, Ke, fe

    def _tasks(self):
        return [(k, ex, ey) for k in range(self.geometry.n_patches)
                for ex, ey in self.element_assembly.element_grid(k).elements()]

    def assemble(self, solution_vector=None, fixed_dofs: Optional[np.ndarray] = None):
        """
        在当前状态装配切线矩阵与右端项

        solution_vector: 自由向量，或 {场名: MultiPatch}；None 表示零状态
        fixed_dofs: 状态中已包含的Dirichlet值；默认零状态时为零，否则视为已等于给定值
        消去方式下右端项包含Dirichlet增量（给定值 − 已含值）的耦合项
        """
        start = time.time()
        mapper = self.dof_mapper
        if isinstance(solution_vector, dict):
            solution_vector, state_fixed = self.vector_from_fields(solution_vector)
            if fixed_dofs is not None:
                state_fixed = np.asarray(fixed_dofs, dtype=float)
        elif solution_vector is None:
            solution_vector = np.zeros(mapper.num_free)
            state_fixed = np.zeros(mapper.num_fixed) if fixed_dofs is None else np.asarray(fixed_dofs, dtype=float)
        else:
            solution_vector = np.asarray(solution_vector, dtype=float)
            state_fixed = self._fixed if fixed_dofs is None else np.asarray(fixed_dofs, dtype=float)
        nodal = mapper.scatter(solution_vector, state_fixed)
        delta = self._fixed - state_fixed

        tasks = self._tasks()
        t0 = time.time()
        if self.options.n_threads > 1:
            with ThreadPoolExecutor(max_workers=self.options.n_threads) as executor:
                results = list(executor.map(lambda t: self._element_task(nodal, t), tasks))
        else:
            results = [self._element_task(nodal, t) for t in tasks]
        self.performance_stats['element_time'] += time.time() - t0

        n = mapper.num_free
        rhs = np.zeros(n)
        rows, cols, vals = [], [], []
        for free, fixed, Ke, fe in results:
            fr = free >= 0
            gi = free[fr]
            np.add.at(rhs, gi, fe[fr])
            eliminated = (fixed >= 0) & ~fr
            if np.any(eliminated):
                np.add.at(rhs, gi, -(Ke[np.ix_(fr, eliminated)] @ delta[fixed[eliminated]]))
            R, C = np.meshgrid(gi, gi, indexing='ij')
            block = Ke[np.ix_(fr, fr)]
            if self.kernel.symmetric:
                keep = R <= C
                R, C, block = R[keep], C[keep], block[keep]
            rows.append(R.ravel())
            cols.append(C.ravel())
            vals.append(block.ravel())

        K = coo_matrix((np.concatenate(vals) if vals else np.zeros(0),
                        (np.concatenate(rows) if rows else np.zeros(0, dtype=int),
                         np.concatenate(cols) if cols else np.zeros(0, dtype=int))),
                       shape=(n, n)).tocsr()
        if self.kernel.symmetric:
            K = (K + triu(K, k=1).T).tocsr()

        self._assemble_neumann(rhs)

        if self.options.dirichlet_strategy == DirichletStrategy.PENALIZATION:
            K, rhs = self._apply_penalty(K, rhs, solution_vector)

        self._matrix = K
        self._rhs = rhs
        self.performance_stats['assembly_time'] += time.time() - start
        self.performance_stats['n_assemblies'] += 1
        return K, rhs

    def _assemble_neumann(self, rhs: np.ndarray):
        """边界面力积分（参考构形）"""
        mapper = self.dof_mapper
        order = self.element_assembly.quadrature_order
        for bc in self.boundary_conditions.neumann_conditions():
            field = self._field_of(bc)
            n_comp = self.kernel.fields[field]
            basis = self.field_bases[field][bc.patch]
            geo = self.geometry.patch(bc.patch)
            for ex, ey in basis.side_elements(bc.side):
                params, wts = side_points_weights(basis.element_box(ex, ey), bc.side, order)
                points = geo.eval(params)
                tangent = geo.jacobian(params)[:, side_tangent_index(bc.side), :]
                ds = np.linalg.norm(tangent, axis=1)
                traction = traction_values(bc.value, params, points, n_comp)
                _, N = basis.evaluate(params)
                local = basis.element_nodes(ex, ey)
                contrib = np.einsum('q,qi,qa->ia', wts * ds, traction, N)
                nodes = mapper.global_nodes(field, bc.patch, local)
                for c in range(n_comp):
                    idx = mapper.free_index[field][c, nodes]
                    ok = idx >= 0
                    np.add.at(rhs, idx[ok], contrib[c, ok])

    def _apply_penalty(self, K: csr_matrix, rhs: np.ndarray, solution_vector: np.ndarray):
        """罚函数：K_ii += PP，rhs_i += PP (g_i − x_i)"""
        mapper = self.dof_mapper
        pp = self.options.penalty
        diag = np.zeros(mapper.num_free)
        for field, n_comp in self.kernel.fields.items():
            for c in range(n_comp):
                nodes = mapper.fixed_nodes[(field, c)]
                idx = mapper.free_index[field][c, nodes]
                target = self._fixed[mapper.fixed_slices[(field, c)]]
                diag[idx] += pp
                rhs[idx] += pp * (target - solution_vector[idx])
        return (K + diags(diag, format='csr')).tocsr(), rhs

    def matrix(self) -> csr_matrix:
        if self._matrix is None:
            raise RuntimeError("尚未装配，请先调用 assemble()")
        return self._matrix

    def rhs(self) -> np.ndarray:
        if self._rhs is None:
            raise RuntimeError("尚未装配，请先调用 assemble()")
        return self._rhs

    def construct_solution(self, solution_vector: np.ndarray,
                           fixed_dofs: Optional[np.ndarray] = None) -> Dict[str, MultiPatch]:
        """
        自由向量 → 各场的多片解；Dirichlet自由度取给定值
        fixed_dofs 默认为当前存储的Dirichlet数据
        """
        fixed = self._fixed if fixed_dofs is None else np.asarray(fixed_dofs, dtype=float)
        nodal = self.dof_mapper.scatter(solution_vector, fixed, prefer_fixed=True)
        fields = {}
        for field, bases in self.field_bases.items():
            fields[field] = MultiPatch([
                Patch(b, nodal[field][:, self.dof_mapper.node_maps[field][k]].T)
                for k, b in enumerate(bases)])
        return fields

    def get_performance_stats(self) -> Dict:
        return self.performance_stats.copy()
