"""
多片几何与场模块

Patch 表示一片上的几何映射或解场（控制点系数 + 片基），
MultiPatch 为有序的片集合，并通过重合的边识别片间界面与外边界。
"""

import numpy as np
from typing import List, Tuple, Optional, Sequence

from core.exceptions import ConfigurationError
from .basis_functions import PatchBasis, SIDES


class Patch:
    """单片几何或场，coefs 形状为 (basis.size, dim)"""

    def __init__(self, basis: PatchBasis, coefs):
        coefs = np.array(coefs, dtype=float)
        if coefs.ndim == 1:
            coefs = coefs.reshape(-1, 1)
        if coefs.shape[0] != basis.size:
            raise ConfigurationError(
                f"控制点数 {coefs.shape[0]} 与基函数数 {basis.size} 不一致")
        self.basis = basis
        self.coefs = coefs

    def __repr__(self):
        return f"Patch({self.basis!r}, dim={self.dim})"

    @property
    def dim(self) -> int:
        return self.coefs.shape[1]

    def eval(self, params) -> np.ndarray:
        """在参数点处求值，返回 (n_points, dim)"""
        nodes, N = self.basis.evaluate(params)
        return np.einsum('qn,qnd->qd', N, self.coefs[nodes])

    def jacobian(self, params) -> np.ndarray:
        """参数导数 (n_points, 2, dim)，J[q, a, :] = d/du_a"""
        nodes, dN = self.basis.evaluate_derivatives(params)
        return np.einsum('qna,qnd->qad', dN, self.coefs[nodes])

    def boundary_coefs(self, side: str) -> np.ndarray:
        return self.coefs[self.basis.side_nodes(side)]

    @staticmethod
    def side_params(side: str, t) -> np.ndarray:
        """边参数 t ∈ [0,1] 对应的片参数坐标"""
        t = np.atleast_1d(np.asarray(t, dtype=float))
        if side == "west":
            return np.column_stack([np.zeros_like(t), t])
        if side == "east":
            return np.column_stack([np.ones_like(t), t])
        if side == "south":
            return np.column_stack([t, np.zeros_like(t)])
        if side == "north":
            return np.column_stack([t, np.ones_like(t)])
        raise ConfigurationError(f"不支持的边: {side}")

    def corners(self, side: str) -> np.ndarray:
        c = self.boundary_coefs(side)
        return np.array([c[0], c[-1]])

    def copy(self) -> "Patch":
        return Patch(self.basis, self.coefs.copy())

    def interpolate(self, basis: PatchBasis) -> "Patch":
        """在另一组嵌套基上插值（对嵌套空间精确）"""
        return Patch(basis, self.eval(basis.node_params()))

    def refined(self) -> "Patch":
        return self.interpolate(self.basis.refined())

    def elevated(self, k: int = 1) -> "Patch":
        return self.interpolate(self.basis.elevated(k))


class MultiPatch:
    """有序的多片集合"""

    def __init__(self, patches: Sequence[Patch]):
        self.patches = list(patches)
        if not self.patches:
            raise ConfigurationError("MultiPatch 至少需要一片")

    def __len__(self):
        return len(self.patches)

    def __iter__(self):
        return iter(self.patches)

    def __getitem__(self, i):
        return self.patches[i]

    def __repr__(self):
        return f"MultiPatch(n_patches={len(self)})"

    def patch(self, i: int) -> Patch:
        return self.patches[i]

    @property
    def n_patches(self) -> int:
        return len(self.patches)

    @property
    def dim(self) -> int:
        return self.patches[0].dim

    def bases(self) -> List[PatchBasis]:
        return [p.basis for p in self.patches]

    def copy(self) -> "MultiPatch":
        return MultiPatch([p.copy() for p in self.patches])

    def subset(self, indices: Sequence[int]) -> "MultiPatch":
        return MultiPatch([self.patches[i].copy() for i in indices])

    def refined(self) -> "MultiPatch":
        return MultiPatch([p.refined() for p in self.patches])

    def elevated(self, k: int = 1) -> "MultiPatch":
        return MultiPatch([p.elevated(k) for p in self.patches])

    def bounding_box(self) -> np.ndarray:
        coefs = np.vstack([p.coefs for p in self.patches])
        return np.array([coefs.min(axis=0), coefs.max(axis=0)])

    def tolerance(self, rel: float = 1e-9) -> float:
        box = self.bounding_box()
        return rel * max(np.linalg.norm(box[1] - box[0]), 1.0)

    def interfaces(self) -> List[Tuple[int, str, int, str, int]]:
        """片间界面 (patch1, side1, patch2, side2, orientation)"""
        found = []
        tol = self.tolerance()
        for a in range(len(self)):
            for b in range(a + 1, len(self)):
                for sa in SIDES:
                    for sb in SIDES:
                        o = check_matching_boundaries(self.patches[a], sa,
                                                      self.patches[b], sb, tol)
                        if o != 0:
                            found.append((a, sa, b, sb, o))
        return found

    def boundaries(self) -> List[Tuple[int, str]]:
        """不与其他片相接的边"""
        inner = set()
        for a, sa, b, sb, _ in self.interfaces():
            inner.add((a, sa))
            inner.add((b, sb))
        return [(k, s) for k in range(len(self)) for s in SIDES if (k, s) not in inner]


def check_matching_boundaries(patch_a: Patch, side_a: str, patch_b: Patch, side_b: str,
                              tol: float = 1e-9) -> int:
    """
    检查两片的边是否重合
    返回 1（同向）、-1（反向）或 0（不匹配）
    """
    ca = patch_a.boundary_coefs(side_a)
    cb = patch_b.boundary_coefs(side_b)
    if ca.shape == cb.shape:
        if np.allclose(ca, cb, atol=tol, rtol=0.0):
            return 1
        if np.allclose(ca, cb[::-1], atol=tol, rtol=0.0):
            return -1
        return 0
    # 离散不同时比较端点与中点
    t = np.array([0.0, 0.5, 1.0])
    xa = patch_a.eval(Patch.side_params(side_a, t))
    xb = patch_b.eval(Patch.side_params(side_b, t))
    if np.allclose(xa, xb, atol=tol, rtol=0.0):
        return 1
    if np.allclose(xa, xb[::-1], atol=tol, rtol=0.0):
        return -1
    return 0


def quad_patch(corners, n_elements=(1, 1), order=1) -> Patch:
    """
    双线性四边形片
    corners: [SW, SE, NE, NW] 四个角点
    """
    corners = np.asarray(corners, dtype=float)
    if corners.shape != (4, 2):
        raise ConfigurationError(f"需要4个二维角点: {corners.shape}")
    basis = PatchBasis(order, n_elements)
    uv = basis.node_params()
    u, v = uv[:, :1], uv[:, 1:]
    coefs = ((1 - u) * (1 - v) * corners[0] + u * (1 - v) * corners[1]
             + u * v * corners[2] + (1 - u) * v * corners[3])
    return Patch(basis, coefs)


def rectangle_patch(x0, y0, x1, y1, n_elements=(1, 1), order=1) -> Patch:
    """矩形片 [x0, x1] × [y0, y1]"""
    return quad_patch([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], n_elements, order)


def cooks_membrane(n_elements=(4, 4), order=1) -> MultiPatch:
    """Cook 膜的经典几何"""
    return MultiPatch([quad_patch([[0.0, 0.0], [48.0, 44.0], [48.0, 60.0], [0.0, 44.0]],
                                  n_elements, order)])


def zero_field(bases: Sequence[PatchBasis], dim: int) -> MultiPatch:
    """给定片基上的零场"""
    return MultiPatch([Patch(b, np.zeros((b.size, dim))) for b in bases])


def field_on(geometry: MultiPatch, order: Optional[int] = None,
             refinements: int = 0) -> List[PatchBasis]:
    """由几何的片基派生场的片基：可升阶、可加密"""
    bases = []
    for p in geometry:
        b = p.basis
        for _ in range(refinements):
            b = b.refined()
        if order is not None and order > b.order:
            b = b.elevated(order - b.order)
        bases.append(b)
    return bases
