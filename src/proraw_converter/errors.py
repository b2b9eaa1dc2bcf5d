"""
异常定义
所有异常都继承自 ValueError，调用方可以按需捕获具体类型或统一处理
"""


class ConverterError(ValueError):
    """转换流程中所有可恢复错误的基类"""


class SingularColorMatrix(ConverterError):
    """相机 -> XYZ 矩阵在行归一化后不可逆"""


class InvalidStretchRate(ConverterError):
    """stretch_rate 不在 [0, 1] 范围内"""

    def __init__(self, stretch_rate):
        super().__init__(f"stretch_rate must be within [0, 1], got {stretch_rate!r}")
        self.stretch_rate = stretch_rate


class ShapeMismatch(ConverterError):
    """缓冲区或矩阵的维度不符合要求"""
