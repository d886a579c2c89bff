"""
自由度管理模块

多片、多场的自由度映射：相邻片上重合的节点粘合为同一全局节点，
自由自由度按 场 → 分量 → 节点 的顺序编号；Dirichlet自由度另行编号。
"""
import numpy as np
from typing import Dict, List, Tuple, Optional, Iterable

from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree

from core.exceptions import ConfigurationError
from .basis_functions import PatchBasis
from .mesh_generation import MultiPatch


class DofMapper:
    """
    (片, 局部基函数, 场, 分量) → 自由全局编号 / 固定编号

    eliminate=True 时Dirichlet自由度不占矩阵行列；
    eliminate=False（罚函数）时它们仍为自由自由度，同时拥有固定编号保存给定值。
    """

    def __init__(self, geometry: MultiPatch, field_bases: Dict[str, List[PatchBasis]],
                 field_dims: Dict[str, int],
                 dirichlet: Iterable[Tuple[str, int, str, Optional[int]]] = (),
                 eliminate: bool = True, tolerance: float = 1e-8):
        self.geometry = geometry
        self.field_dims = dict(field_dims)
        self.field_bases = {f: list(field_bases[f]) for f in self.field_dims}
        self.eliminate = eliminate
        self.tolerance = geometry.tolerance(tolerance)

        for field, bases in self.field_bases.items():
            if len(bases) != geometry.n_patches:
                raise ConfigurationError(
                    f"场 {field} 的片数 {len(bases)} 与几何片数 {geometry.n_patches} 不一致")

        self.node_maps: Dict[str, List[np.ndarray]] = {}
        self.n_nodes: Dict[str, int] = {}
        for field in self.field_dims:
            self._glue(field)

        self.fixed_mask = {f: np.zeros((d, self.n_nodes[f]), dtype=bool)
                           for f, d in self.field_dims.items()}
        for field, patch, side, component in dirichlet:
            self.mark_fixed(field, patch, side, component)
        self._number()

    @property
    def fields(self) -> List[str]:
        return list(self.field_dims)

    def _glue(self, field: str):
        """粘合重合节点"""
        bases = self.field_bases[field]
        points = [self.geometry.patch(k).eval(b.node_params()) for k, b in enumerate(bases)]
        sizes = [b.size for b in bases]
        offsets = np.concatenate([[0], np.cumsum(sizes)])
        all_points = np.vstack(points)
        n = all_points.shape[0]

        tree = cKDTree(all_points)
        pairs = tree.query_pairs(self.tolerance, output_type='ndarray')
        graph = coo_matrix((np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])), shape=(n, n))
        n_global, labels = connected_components(graph, directed=False)

        self.node_maps[field] = [labels[offsets[k]:offsets[k + 1]] for k in range(len(bases))]
        self.n_nodes[field] = n_global

    def mark_fixed(self, field: str, patch: int, side: str, component: Optional[int] = None):
        if field not in self.field_dims:
            raise ConfigurationError(f"未知的场: {field}")
        if patch >= self.geometry.n_patches:
            raise ConfigurationError(f"片编号 {patch} 超出范围")
        n_comp = self.field_dims[field]
        if component is not None and not 0 <= component < n_comp:
            raise ConfigurationError(f"场 {field} 没有分量 {component}")
        nodes = self.global_nodes(field, patch, self.field_bases[field][patch].side_nodes(side))
        comps = range(n_comp) if component is None else [component]
        for c in comps:
            self.fixed_mask[field][c, nodes] = True

    def _number(self):
        self.free_index = {}
        self.fixed_index = {}
        self.fixed_slices = {}
        self.fixed_nodes = {}
        counter = 0
        fixed_counter = 0
        for field, n_comp in self.field_dims.items():
            free = -np.ones((n_comp, self.n_nodes[field]), dtype=int)
            fixed = -np.ones((n_comp, self.n_nodes[field]), dtype=int)
            for c in range(n_comp):
                mask = self.fixed_mask[field][c]
                idx = np.flatnonzero(~mask) if self.eliminate else np.arange(mask.size)
                free[c, idx] = counter + np.arange(idx.size)
                counter += idx.size

                nodes = np.flatnonzero(mask)
                fixed[c, nodes] = fixed_counter + np.arange(nodes.size)
                self.fixed_slices[(field, c)] = slice(fixed_counter, fixed_counter + nodes.size)
                self.fixed_nodes[(field, c)] = nodes
                fixed_counter += nodes.size
            self.free_index[field] = free
            self.fixed_index[field] = fixed
        self.num_free = counter
        self.num_fixed = fixed_counter

    def size(self) -> int:
        return self.num_free

    def global_nodes(self, field: str, patch: int, local_nodes) -> np.ndarray:
        return self.node_maps[field][patch][local_nodes]

    def local_dofs(self, patch: int, element_nodes: Dict[str, np.ndarray]):
        """
        单元局部自由度（场 → 分量 → 节点）对应的自由编号与固定编号，-1 表示无
        """
        free, fixed = [], []
        for field, n_comp in self.field_dims.items():
            nodes = self.global_nodes(field, patch, element_nodes[field])
            for c in range(n_comp):
                free.append(self.free_index[field][c, nodes])
                fixed.append(self.fixed_index[field][c, nodes])
        return np.concatenate(free), np.concatenate(fixed)

    def check_field(self, field: str, values: MultiPatch):
        """检查场与映射的拓扑一致性"""
        bases = self.field_bases[field]
        if values.n_patches != len(bases):
            raise ConfigurationError(
                f"场 {field} 的片数 {values.n_patches} 与映射的片数 {len(bases)} 不一致")
        for k, (patch, basis) in enumerate(zip(values, bases)):
            if patch.coefs.shape[0] != basis.size:
                raise ConfigurationError(
                    f"场 {field} 第 {k} 片控制点数 {patch.coefs.shape[0]} 与映射 {basis.size} 不一致")
            if patch.dim != self.field_dims[field]:
                raise ConfigurationError(
                    f"场 {field} 第 {k} 片分量数 {patch.dim} 应为 {self.field_dims[field]}")

    def scatter(self, vector: np.ndarray, fixed_values: np.ndarray,
                prefer_fixed: bool = False) -> Dict[str, np.ndarray]:
        """
        自由向量与固定值 → 各场的全局节点值 (n_comp, n_nodes)
        罚函数方式下默认以自由向量中的值为准，prefer_fixed=True 时取给定值
        """
        vector = np.asarray(vector, dtype=float)
        fixed_values = np.asarray(fixed_values, dtype=float)
        if vector.shape != (self.num_free,):
            raise ConfigurationError(f"解向量长度 {vector.shape} 应为 ({self.num_free},)")
        if fixed_values.shape != (self.num_fixed,):
            raise ConfigurationError(f"固定值长度 {fixed_values.shape} 应为 ({self.num_fixed},)")
        out = {}
        for field, n_comp in self.field_dims.items():
            values = np.zeros((n_comp, self.n_nodes[field]))
            fixed = self.fixed_index[field]
            free = self.free_index[field]
            has_fixed = fixed >= 0
            use_free = free >= 0
            if prefer_fixed:
                use_free &= ~has_fixed
            values[use_free] = vector[free[use_free]]
            use_fixed = has_fixed & ~use_free
            values[use_fixed] = fixed_values[fixed[use_fixed]]
            out[field] = values
        return out

    def gather(self, field: str, values: MultiPatch) -> np.ndarray:
        """片场 → 全局节点值 (n_comp, n_nodes)"""
        self.check_field(field, values)
        out = np.zeros((self.field_dims[field], self.n_nodes[field]))
        for k, patch in enumerate(values):
            out[:, self.node_maps[field][k]] = patch.coefs.T
        return out

    def to_vectors(self, nodal: Dict[str, np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        """各场全局节点值 → (自由向量, 固定值向量)"""
        vector = np.zeros(self.num_free)
        fixed_values = np.zeros(self.num_fixed)
        for field in self.field_dims:
            values = nodal[field]
            free = self.free_index[field]
            fixed = self.fixed_index[field]
            vector[free[free >= 0]] = values[free >= 0]
            fixed_values[fixed[fixed >= 0]] = values[fixed >= 0]
        return vector, fixed_values
