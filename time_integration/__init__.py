"""
时间积分模块 - 线弹性动力学的 Newmark 时间积分
"""

from .time_integrators import TimeIntegrator, ElasticityTimeIntegrator

__all__ = [
    'TimeIntegrator',
    'ElasticityTimeIntegrator',
]
