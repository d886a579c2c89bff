"""
可视化模块
"""

from .visualizer_2d import MatplotlibVisualizer2D

__all__ = [
    'MatplotlibVisualizer2D',
]
