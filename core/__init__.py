"""
核心模块 - 异常类型与仿真配置

仿真配置（SimulationConfig）依赖各求解器模块，需从 core.config 显式导入。
"""

from .exceptions import ConfigurationError, BadSolutionError, LinearSolveError

__all__ = [
    'ConfigurationError',
    'BadSolutionError',
    'LinearSolveError',
]
