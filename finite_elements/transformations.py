"""
等参变换、Jacobi矩阵与单元微分算子（按积分点批量计算）
"""
import numpy as np

from core.exceptions import ConfigurationError


def jacobian_matrix(node_coords, dN_dxi):
    """
    计算Jacobi矩阵
    node_coords: (n_nodes, dim) 物理坐标
    dN_dxi: (nq, n_nodes, dim) 基函数对参考坐标的导数
    返回 J: (nq, dim, dim)，J[q, a, b] = dx_b/dxi_a
    """
    return np.einsum('qna,nb->qab', dN_dxi, node_coords)


def jacobian_det(J):
    """Jacobi行列式"""
    return np.linalg.det(J)


def jacobian_inv(J):
    """Jacobi逆矩阵"""
    return np.linalg.inv(J)


def dN_dx(dN_dxi, J_inv):
    """
    基函数对物理坐标的导数
    dN_dxi: (nq, n_nodes, dim)
    J_inv: (nq, dim, dim)
    返回 dN_dx: (nq, n_nodes, dim)
    """
    return np.einsum('qna,qba->qnb', dN_dxi, J_inv)


def side_tangent_index(side):
    """沿边的参数方向"""
    if side in ("west", "east"):
        return 1
    if side in ("south", "north"):
        return 0
    raise ConfigurationError(f"不支持的边: {side}")


def outer_normals(J, side):
    """
    边上的单位外法向与线元长度
    J: (nq, 2, 2) 参数Jacobi矩阵，J[q, a, :] = dx/du_a
    """
    t = J[:, side_tangent_index(side), :]
    if side in ("east", "south"):
        n = np.column_stack([t[:, 1], -t[:, 0]])
    else:
        n = np.column_stack([-t[:, 1], t[:, 0]])
    # 左手参数化时法向翻转
    orientation = np.sign(jacobian_det(J))
    n *= orientation[:, None]
    length = np.linalg.norm(t, axis=1)
    return n / length[:, None], length
