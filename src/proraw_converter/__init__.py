# __init__.py
"""
ProRaw Converter - Apple ProRaw / DNG 色彩与色调处理工具包
"""

from .config import SRGB_FROM_XYZ_D65, COLOR_MODES, SUPPORTED_RAW_EXTENSIONS
from .errors import ConverterError, SingularColorMatrix, InvalidStretchRate, ShapeMismatch
from .logger import Logger, TraceLog, create_logger
from .converter import RawConverter, reduce_to_rgb
from .file_io import RawFrame, read_raw, save_image
from .core import develop_frame, process_image

__all__ = [
    # 配置
    'SRGB_FROM_XYZ_D65',
    'COLOR_MODES',
    'SUPPORTED_RAW_EXTENSIONS',
    # 异常
    'ConverterError',
    'SingularColorMatrix',
    'InvalidStretchRate',
    'ShapeMismatch',
    # 日志
    'Logger',
    'TraceLog',
    'create_logger',
    # 转换核心
    'RawConverter',
    'reduce_to_rgb',
    # 文件IO
    'RawFrame',
    'read_raw',
    'save_image',
    # 处理流程
    'develop_frame',
    'process_image',
]
