"""
有限元基函数实现
张量积 Lagrange 基函数（1D/2D）与结构化参数网格上的片基（PatchBasis）
"""

import numpy as np
from typing import Tuple

from core.exceptions import ConfigurationError

SIDES = ("west", "east", "south", "north")


# ---- 通用高阶Lagrange基函数生成器 ----
def lagrange_nodes_1d(order):
    return np.linspace(-1, 1, order + 1)


def lagrange_basis_1d(order, xi):
    """返回 (n_points, order+1) 的基函数值"""
    nodes = lagrange_nodes_1d(order)
    n = order + 1
    xi = np.atleast_1d(np.asarray(xi, dtype=float))
    N = np.ones((xi.shape[0], n))
    for i in range(n):
        for j in range(n):
            if i != j:
                N[:, i] *= (xi - nodes[j]) / (nodes[i] - nodes[j])
    return N


def lagrange_basis_deriv_1d(order, xi):
    """返回 (n_points, order+1) 的基函数导数"""
    nodes = lagrange_nodes_1d(order)
    n = order + 1
    xi = np.atleast_1d(np.asarray(xi, dtype=float))
    dN = np.zeros((xi.shape[0], n))
    for i in range(n):
        for j in range(n):
            if i == j:
                continue
            prod = np.full(xi.shape[0], 1.0 / (nodes[i] - nodes[j]))
            for k in range(n):
                if k != i and k != j:
                    prod *= (xi - nodes[k]) / (nodes[i] - nodes[k])
            dN[:, i] += prod
    return dN


# ---- 1D Lagrange ----
class Lagrange1D:
    def __init__(self, order):
        self.order = order
        self.nodes = lagrange_nodes_1d(order)

    def evaluate(self, xi):
        return lagrange_basis_1d(self.order, xi)

    def evaluate_derivatives(self, xi):
        return lagrange_basis_deriv_1d(self.order, xi)


# ---- 2D 四边形 Lagrange ----
class LagrangeQuad:
    """张量积四边形单元，局部节点编号 j*(order+1) + i（i 沿 xi 方向）"""

    def __init__(self, order):
        self.order = order
        self.n_nodes = (order + 1) ** 2

    def evaluate(self, xi):
        xi = np.atleast_2d(xi)
        Nx = lagrange_basis_1d(self.order, xi[:, 0])
        Ny = lagrange_basis_1d(self.order, xi[:, 1])
        return np.einsum('qj,qi->qji', Ny, Nx).reshape(xi.shape[0], -1)

    def evaluate_derivatives(self, xi):
        """返回 (n_points, n_nodes, 2)"""
        xi = np.atleast_2d(xi)
        Nx = lagrange_basis_1d(self.order, xi[:, 0])
        Ny = lagrange_basis_1d(self.order, xi[:, 1])
        dNx = lagrange_basis_deriv_1d(self.order, xi[:, 0])
        dNy = lagrange_basis_deriv_1d(self.order, xi[:, 1])
        nq = xi.shape[0]
        dN = np.empty((nq, self.n_nodes, 2))
        dN[:, :, 0] = np.einsum('qj,qi->qji', Ny, dNx).reshape(nq, -1)
        dN[:, :, 1] = np.einsum('qj,qi->qji', dNy, Nx).reshape(nq, -1)
        return dN


class PatchBasis:
    """
    参数正方形 [0,1]^2 上均匀 nx × ny 单元网格的张量积 Lagrange 基。

    全局节点 (i, j) 的编号为 j*nu + i，其中 nu = nx*order + 1。
    边的命名：west (u=0), east (u=1), south (v=0), north (v=1)。
    """

    def __init__(self, order: int, n_elements: Tuple[int, int] = (1, 1)):
        if order < 1:
            raise ConfigurationError(f"基函数阶次必须 >= 1: {order}")
        nx, ny = int(n_elements[0]), int(n_elements[1])
        if nx < 1 or ny < 1:
            raise ConfigurationError(f"单元数必须为正: {n_elements}")
        self.order = order
        self.n_elements = (nx, ny)
        self.nu = nx * order + 1
        self.nv = ny * order + 1
        self.reference = LagrangeQuad(order)

    def __repr__(self):
        return f"PatchBasis(order={self.order}, n_elements={self.n_elements})"

    def __eq__(self, other):
        return (isinstance(other, PatchBasis) and self.order == other.order
                and self.n_elements == other.n_elements)

    @property
    def size(self) -> int:
        return self.nu * self.nv

    @property
    def n_local(self) -> int:
        return self.reference.n_nodes

    def num_elements(self) -> int:
        return self.n_elements[0] * self.n_elements[1]

    def elements(self):
        """按 ey 外层、ex 内层遍历单元"""
        nx, ny = self.n_elements
        for ey in range(ny):
            for ex in range(nx):
                yield ex, ey

    def element_nodes(self, ex: int, ey: int) -> np.ndarray:
        p = self.order
        i = ex * p + np.arange(p + 1)
        j = ey * p + np.arange(p + 1)
        return (j[:, None] * self.nu + i[None, :]).ravel()

    def element_box(self, ex: int, ey: int) -> np.ndarray:
        """单元的参数区间 [[u0, u1], [v0, v1]]"""
        nx, ny = self.n_elements
        return np.array([[ex / nx, (ex + 1) / nx], [ey / ny, (ey + 1) / ny]])

    def side_nodes(self, side: str) -> np.ndarray:
        """边上的节点，按边参数递增排列"""
        if side == "west":
            return np.arange(self.nv) * self.nu
        if side == "east":
            return np.arange(self.nv) * self.nu + self.nu - 1
        if side == "south":
            return np.arange(self.nu)
        if side == "north":
            return (self.nv - 1) * self.nu + np.arange(self.nu)
        raise ConfigurationError(f"不支持的边: {side}")

    def side_elements(self, side: str):
        nx, ny = self.n_elements
        if side == "west":
            return [(0, ey) for ey in range(ny)]
        if side == "east":
            return [(nx - 1, ey) for ey in range(ny)]
        if side == "south":
            return [(ex, 0) for ex in range(nx)]
        if side == "north":
            return [(ex, ny - 1) for ex in range(nx)]
        raise ConfigurationError(f"不支持的边: {side}")

    def node_params(self) -> np.ndarray:
        """所有节点的参数坐标 (size, 2)"""
        u = np.linspace(0.0, 1.0, self.nu)
        v = np.linspace(0.0, 1.0, self.nv)
        uu, vv = np.meshgrid(u, v)
        return np.column_stack([uu.ravel(), vv.ravel()])

    def locate(self, params):
        """
        定位参数点所在单元
        返回 (节点索引 (n_points, n_local), 参考坐标 (n_points, 2))
        """
        params = np.atleast_2d(np.asarray(params, dtype=float))
        nx, ny = self.n_elements
        su = np.clip(params[:, 0], 0.0, 1.0) * nx
        sv = np.clip(params[:, 1], 0.0, 1.0) * ny
        ex = np.minimum(np.floor(su).astype(int), nx - 1)
        ey = np.minimum(np.floor(sv).astype(int), ny - 1)
        xi = np.column_stack([2.0 * (su - ex) - 1.0, 2.0 * (sv - ey) - 1.0])
        nodes = np.array([self.element_nodes(a, b) for a, b in zip(ex, ey)])
        return nodes, xi

    def evaluate(self, params):
        nodes, xi = self.locate(params)
        return nodes, self.reference.evaluate(xi)

    def evaluate_derivatives(self, params):
        """基函数对参数 (u, v) 的导数 (n_points, n_local, 2)"""
        nodes, xi = self.locate(params)
        nx, ny = self.n_elements
        dN = self.reference.evaluate_derivatives(xi)
        dN[:, :, 0] *= 2.0 * nx
        dN[:, :, 1] *= 2.0 * ny
        return nodes, dN

    def elevated(self, k: int = 1) -> "PatchBasis":
        return PatchBasis(self.order + k, self.n_elements)

    def refined(self) -> "PatchBasis":
        nx, ny = self.n_elements
        return PatchBasis(self.order, (2 * nx, 2 * ny))
