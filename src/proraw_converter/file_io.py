"""
文件读写
RAW 解码交给 rawpy (LibRaw)，16-bit TIFF 交给 tifffile，8-bit PNG 预览交给 imageio。
本模块只负责在库的数据布局与平面缓冲区 (3, N) 之间搬运数据。
"""
import os
from dataclasses import dataclass, field
from typing import Optional

import imageio.v3 as iio
import numpy as np
import rawpy
import tifffile

from .config import USHRT_MAX
from .converter import reduce_to_rgb
from .errors import ShapeMismatch
from .logger import Logger


@dataclass
class RawFrame:
    """解码后的 ProRaw 帧及其色彩元数据"""
    image: np.ndarray                 # (3, N) uint16
    width: int
    height: int
    black_level: float = 0.0
    black_levels: np.ndarray = field(default_factory=lambda: np.zeros(4, dtype=np.float32))
    rgb_xyz_matrix: Optional[np.ndarray] = None   # 4x3, XYZ -> 相机原生 (ColorMatrix2)
    rgb_cam: Optional[np.ndarray] = None          # 3x4, 相机原生 -> sRGB'
    analog_balance: np.ndarray = field(default_factory=lambda: np.ones(4, dtype=np.float32))
    white_level: int = USHRT_MAX
    path: Optional[str] = None


def to_planar(img: np.ndarray) -> np.ndarray:
    """(H, W, C) -> (C, H*W)"""
    if img.ndim != 3:
        raise ShapeMismatch(f"expected an (H, W, C) image, got {img.shape}")
    h, w, c = img.shape
    return np.ascontiguousarray(img.reshape(h * w, c).T)


def to_image(buffer: np.ndarray, height: int, width: int) -> np.ndarray:
    """(C, H*W) -> (H, W, C)，交给写入库使用"""
    if buffer.ndim != 2 or buffer.shape[1] != height * width:
        raise ShapeMismatch(
            f"buffer of shape {buffer.shape} does not hold a {width}x{height} image"
        )
    return np.ascontiguousarray(buffer.T.reshape(height, width, buffer.shape[0]))


def to_uint8(buffer: np.ndarray) -> np.ndarray:
    """16-bit -> 8-bit (保留高 8 位)"""
    clipped = np.clip(buffer, 0, USHRT_MAX).astype(np.uint16)
    return (clipped >> 8).astype(np.uint8)


def read_raw(raw_path: str, logger: Optional[Logger] = None) -> RawFrame:
    """
    用 rawpy 解码线性 (已去马赛克) DNG，例如 Apple ProRaw

    Raises:
        ValueError: 文件仍为 Bayer 马赛克数据 (不支持去马赛克)
    """
    with rawpy.imread(raw_path) as raw:
        visible = raw.raw_image_visible
        if visible.ndim != 3:
            raise ValueError(
                f"{os.path.basename(raw_path)} holds mosaiced sensor data; "
                "only linear (demosaiced) DNG files are supported"
            )
        height, width, channels = visible.shape
        planar = to_planar(visible)
        if channels == 4:
            planar = reduce_to_rgb(planar)
        elif channels != 3:
            raise ShapeMismatch(f"unsupported channel count: {channels}")

        frame = RawFrame(
            image=planar.astype(np.uint16, copy=False),
            width=width,
            height=height,
            black_levels=np.asarray(raw.black_level_per_channel, dtype=np.float32),
            rgb_xyz_matrix=np.array(raw.rgb_xyz_matrix, dtype=np.float32),
            rgb_cam=np.array(raw.color_matrix, dtype=np.float32),
            white_level=int(raw.white_level),
            path=raw_path,
        )

    if logger:
        logger.debug(f"  Raw image shape: {frame.image.shape} ({width}x{height})")
        logger.debug(f"  Black Levels: {', '.join(str(v) for v in frame.black_levels[:3])}")
        logger.debug(f"  White Level: {frame.white_level}")
    return frame


def render_reference(raw_path: str) -> np.ndarray:
    """LibRaw 自身的 sRGB 渲染 (相机白平衡，16-bit)，用于对比"""
    with rawpy.imread(raw_path) as raw:
        return raw.postprocess(
            use_camera_wb=True,
            output_bps=16,
            output_color=rawpy.ColorSpace.sRGB,
        )


def save_image(img: np.ndarray, output_path: str, logger: Optional[Logger] = None):
    """
    保存 (H, W, 3) 图像，格式由扩展名决定

    - .tif / .tiff: 16-bit TIFF
    - .png: 8-bit PNG
    """
    ext = os.path.splitext(output_path)[1].lower()
    if ext in ('.tif', '.tiff'):
        data = img if img.dtype == np.uint16 else np.clip(img, 0, USHRT_MAX).astype(np.uint16)
        tifffile.imwrite(output_path, data, photometric='rgb')
    elif ext == '.png':
        data = img if img.dtype == np.uint8 else to_uint8(img)
        iio.imwrite(output_path, data)
    else:
        raise ValueError(f"Unsupported output format: {ext}")

    if logger:
        logger.debug(f"  Saved image: {output_path}")
