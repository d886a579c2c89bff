"""
2D可视化模块

多片场的伪彩色图、片网格线与收敛历史曲线（Matplotlib）。
"""

import numpy as np
from typing import Optional, Tuple, Sequence, Union

import matplotlib.pyplot as plt

from finite_elements.mesh_generation import MultiPatch


class MatplotlibVisualizer2D:
    """基于Matplotlib的2D可视化器"""

    def __init__(self, figsize: Tuple[int, int] = (12, 8), dpi: int = 100):
        """
        初始化2D可视化器

        Parameters:
        -----------
        figsize : Tuple[int, int]
            图形大小 (宽度, 高度)
        dpi : int
            分辨率
        """
        self.figsize = figsize
        self.dpi = dpi
        self.current_figure = None
        self.current_ax = None

    def _axes(self):
        if self.current_figure is None:
            self.current_figure = plt.figure(figsize=self.figsize, dpi=self.dpi)
        self.current_figure.clf()
        self.current_ax = self.current_figure.add_subplot(111)
        return self.current_ax

    @staticmethod
    def _sample_grid(samples: int) -> Tuple[np.ndarray, np.ndarray]:
        t = np.linspace(0.0, 1.0, samples)
        uu, vv = np.meshgrid(t, t)
        return np.column_stack([uu.ravel(), vv.ravel()]), uu

    def plot_field(self, geometry: MultiPatch, field: MultiPatch,
                   component: Optional[int] = None, samples: int = 20,
                   cmap: str = 'viridis', title: str = 'Field',
                   deformed: bool = False, scale: float = 1.0) -> plt.Figure:
        """
        在几何上绘制多片场
        component 为 None 时绘制向量场的模
        deformed=True 时在 x + scale·field 的变形构形上绘制
        """
        ax = self._axes()
        params, shape_ref = self._sample_grid(samples)
        values = []
        for geo, f in zip(geometry, field):
            vals = f.eval(params)
            values.append(np.linalg.norm(vals, axis=1) if component is None else vals[:, component])
        vmin = min(v.min() for v in values)
        vmax = max(v.max() for v in values)
        if vmax == vmin:
            vmax = vmin + 1.0

        mesh = None
        for (geo, f), vals in zip(zip(geometry, field), values):
            x = geo.eval(params)
            if deformed:
                x = x + scale * f.eval(params)[:, :2]
            X = x[:, 0].reshape(shape_ref.shape)
            Y = x[:, 1].reshape(shape_ref.shape)
            mesh = ax.pcolormesh(X, Y, vals.reshape(shape_ref.shape), cmap=cmap,
                                 vmin=vmin, vmax=vmax, shading='gouraud')
        plt.colorbar(mesh, ax=ax)

        ax.set_title(title)
        ax.set_xlabel('X')
        ax.set_ylabel('Y')
        ax.set_aspect('equal')
        return self.current_figure

    def plot_mesh(self, geometry: MultiPatch, title: str = 'Mesh',
                  samples_per_element: int = 8, color: str = 'k') -> plt.Figure:
        """绘制各片的单元边界线"""
        ax = self._axes()
        for geo in geometry:
            nx, ny = geo.basis.n_elements
            t = np.linspace(0.0, 1.0, samples_per_element * max(nx, ny) + 1)
            for u in np.linspace(0.0, 1.0, nx + 1):
                x = geo.eval(np.column_stack([np.full_like(t, u), t]))
                ax.plot(x[:, 0], x[:, 1], color=color, linewidth=0.5)
            for v in np.linspace(0.0, 1.0, ny + 1):
                x = geo.eval(np.column_stack([t, np.full_like(t, v)]))
                ax.plot(x[:, 0], x[:, 1], color=color, linewidth=0.5)

        ax.set_title(title)
        ax.set_xlabel('X')
        ax.set_ylabel('Y')
        ax.set_aspect('equal')
        return self.current_figure

    def plot_convergence(self, histories: Union[Sequence[float], dict],
                         title: str = 'Convergence', ylabel: str = 'residual') -> plt.Figure:
        """
        绘制收敛历史（对数坐标）
        histories: 单条序列，或 {标签: 序列}
        """
        ax = self._axes()
        if not isinstance(histories, dict):
            histories = {ylabel: histories}
        for label, values in histories.items():
            values = np.asarray(values, dtype=float)
            ax.semilogy(np.arange(1, len(values) + 1), np.maximum(values, 1e-300),
                        marker='o', label=label)
        ax.set_title(title)
        ax.set_xlabel('iteration')
        ax.set_ylabel(ylabel)
        ax.grid(True, which='both', alpha=0.3)
        ax.legend()
        return self.current_figure

    def save(self, filepath: str):
        """保存当前图形"""
        if self.current_figure is None:
            raise RuntimeError("没有可保存的图形")
        self.current_figure.savefig(filepath, dpi=self.dpi, bbox_inches='tight')

    def close(self):
        if self.current_figure is not None:
            plt.close(self.current_figure)
        self.current_figure = None
        self.current_ax = None
