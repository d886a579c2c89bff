"""
异常定义模块

配置错误、非物理解与线性求解失败三类致命错误。
数值不收敛不属于异常，由Newton求解器以状态的形式返回。
"""


class ConfigurationError(ValueError):
    """配置错误：自由度映射与场的拓扑不一致、边界条件定义无效等。

    立即报告，不重试。常见原因：
    - 场的片数或控制点数与构造时的自由度映射不一致
    - 边界条件指定了不存在的边、分量或场
    - 界面两侧的边界不匹配
    """


class BadSolutionError(RuntimeError):
    """装配过程中遇到非物理状态（变形梯度行列式 J <= 0）。

    Newton求解器将状态置为 bad_solution 并重新抛出。
    """

    def __init__(self, message: str, patch: int = None, element=None):
        super().__init__(message)
        self.patch = patch
        self.element = element


class LinearSolveError(RuntimeError):
    """线性系统求解失败：矩阵奇异、结果非有限或迭代法不收敛。

    不做自动正则化，对当前Newton迭代是致命的。
    """
