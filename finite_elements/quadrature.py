"""
高斯积分模块：1D/2D 张量积 Gauss-Legendre，任意阶
"""
import numpy as np


def gauss_legendre_1d(order):
    from numpy.polynomial.legendre import leggauss
    pts, wts = leggauss(order)
    return pts, wts


def quad_points_weights(order):
    pts_1d, wts_1d = gauss_legendre_1d(order)
    xx, yy = np.meshgrid(pts_1d, pts_1d, indexing='ij')
    pts = np.column_stack([xx.ravel(), yy.ravel()])
    wts = np.outer(wts_1d, wts_1d).ravel()
    return pts, wts


def element_points_weights(box, order):
    """
    单元参数区间上的积分点
    box: [[u0, u1], [v0, v1]]
    返回参数坐标 (nq, 2) 与权重（含参数区间缩放）
    """
    pts, wts = quad_points_weights(order)
    box = np.asarray(box, dtype=float)
    half = 0.5 * (box[:, 1] - box[:, 0])
    mid = 0.5 * (box[:, 1] + box[:, 0])
    return mid + pts * half, wts * np.prod(half)


def side_points_weights(box, side, order):
    """单元位于某条边上的一维积分点，返回参数坐标与边参数方向的权重"""
    t, w = gauss_legendre_1d(order)
    box = np.asarray(box, dtype=float)
    if side in ("west", "east"):
        lo, hi = box[1]
        s = 0.5 * (lo + hi) + 0.5 * (hi - lo) * t
        u = np.full_like(s, 0.0 if side == "west" else 1.0)
        params = np.column_stack([u, s])
    elif side in ("south", "north"):
        lo, hi = box[0]
        s = 0.5 * (lo + hi) + 0.5 * (hi - lo) * t
        v = np.full_like(s, 0.0 if side == "south" else 1.0)
        params = np.column_stack([s, v])
    else:
        raise ValueError(f"不支持的边: {side}")
    return params, w * 0.5 * (hi - lo)
