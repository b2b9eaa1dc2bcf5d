import gc
import os
import time
from typing import Optional

import numpy as np

from .config import (
    USHRT_MAX, COLOR_MODES, DEFAULT_COLOR_MODE, DEFAULT_STRETCH_RATE, DEFAULT_MAX_VALUE,
)
from .converter import RawConverter
from .errors import SingularColorMatrix
from .file_io import RawFrame, read_raw, render_reference, save_image, to_image, to_uint8
from .logger import Logger, create_logger


class _StageTimer:
    """记录各阶段耗时 (ms)，仅在 measure=True 时输出"""

    def __init__(self, logger: Logger, enabled: bool):
        self.logger = logger
        self.enabled = enabled
        self.total = 0.0

    def run(self, label: str, func, *args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000.0
        self.total += elapsed
        if self.enabled:
            self.logger.info(f"     ⏱️  {label}: {elapsed:.1f} ms")
        return result


def _log_sample(logger: Logger, label: str, buffer: np.ndarray):
    """输出中间像素，便于追踪各阶段数值"""
    if buffer.shape[1]:
        mid = buffer.shape[1] // 2
        logger.debug(f"  {label} image[:, {mid}]: {buffer[:, mid].tolist()}")


# ==========================================
#              核心处理函数
# ==========================================

def develop_frame(
    frame: RawFrame,
    converter: RawConverter,
    color_mode: str = DEFAULT_COLOR_MODE,
    stretch_rate: float = DEFAULT_STRETCH_RATE,
    apply_color: bool = True,
    apply_gamma: bool = True,
    raw_scale: bool = True,
    debug: bool = False,
    measure: bool = False,
    logger: Optional[Logger] = None,
) -> np.ndarray:
    """
    对一帧执行完整的色彩与色调流程，返回 (3, N) uint16 缓冲区

    顺序: 黑电平 -> 色彩空间转换 -> 直方图拉伸 -> 伽马校正
    """
    if logger is None:
        logger = create_logger(debug=debug)
    if color_mode not in COLOR_MODES:
        raise ValueError(f"Unknown color mode: {color_mode}")

    timer = _StageTimer(logger, measure)
    image = frame.image

    # --- Step 1: 黑电平 ---
    if raw_scale:
        image = converter.raw_adjust(image)
    logger.debug(f"  Black Level: {frame.black_level}")
    logger.info("  🔹 [Step 1] Subtracting black level...")
    image = timer.run(
        "Black level", converter.subtract_black, image, frame.black_level, frame.black_levels
    )
    _log_sample(logger, "Original", image)

    # --- Step 2: 色彩空间转换 ---
    if apply_color:
        if color_mode == 'xyz':
            logger.info("  🔹 [Step 2] Color Transform (Camera -> XYZ D65 -> sRGB')")
            try:
                xyz = timer.run(
                    "Camera -> XYZ", converter.camera_to_xyz,
                    image, frame.rgb_xyz_matrix, frame.analog_balance,
                )
                image = timer.run("XYZ -> sRGB'", converter.xyz_to_srgb, xyz)
            except SingularColorMatrix as e:
                logger.warning(f"  ⚠️  [Color] {e}; falling back to the camera matrix.")
                image = timer.run("Camera -> sRGB'", converter.camera_to_srgb, image, frame.rgb_cam)
        else:
            logger.info("  🔹 [Step 2] Color Transform (Camera -> sRGB')")
            image = timer.run("Camera -> sRGB'", converter.camera_to_srgb, image, frame.rgb_cam)
        _log_sample(logger, "After cam-to-sRGB'", image)
    else:
        logger.info("  🔹 [Step 2] Skipping Color Transform.")

    # --- Step 3: 亮度 / 对比度 ---
    if stretch_rate > 0:
        logger.info(f"  🔹 [Step 3] Adjusting brightness and contrast (stretch rate {stretch_rate})")
        image = timer.run("Histogram stretch", converter.adjust_brightness, image, stretch_rate, debug)
        for line in converter.debug_message.drain():
            logger.debug(f"     {line}")
        _log_sample(logger, "After adjustment", image)
    else:
        logger.info("  🔹 [Step 3] Skipping brightness adjustment.")

    # --- Step 4: 伽马校正 ---
    if apply_gamma:
        logger.info("  🔹 [Step 4] Applying gamma correction...")
        result = timer.run("Gamma correction", converter.gamma_correction, image)
        _log_sample(logger, "After gamma correction", result)
    else:
        logger.info("  🔹 [Step 4] Skipping gamma correction.")
        result = np.clip(image, 0, USHRT_MAX).astype(np.uint16)

    if measure:
        logger.info(f"  ⏱️  Total run time: {timer.total:.1f} ms")
    return result


def process_image(
    raw_path: str,
    output_path: str,
    stretch_rate: float = DEFAULT_STRETCH_RATE,
    color_mode: str = DEFAULT_COLOR_MODE,
    apply_color: bool = True,
    apply_gamma: bool = True,
    raw_scale: bool = True,
    max_value: float = DEFAULT_MAX_VALUE,
    save_raw: bool = False,
    reference: bool = False,
    debug: bool = False,
    measure: bool = False,
    converter: Optional[RawConverter] = None,
    log_queue: Optional[object] = None, # 多进程通信队列 或 回调函数
):
    filename = os.path.basename(raw_path)
    logger = create_logger(log_queue, filename, debug=debug)

    # 未传入时临时创建；批处理时每个 worker 复用自己的实例以保留伽马缓存
    if converter is None:
        converter = RawConverter(max_value=max_value)
    else:
        converter.max_value = max_value

    logger.info(f"🧪 [ProRaw Converter] Processing: {raw_path}")

    # --- Step 0: 解码 ---
    logger.info("  🔹 [Step 0] Decoding RAW...")
    frame = read_raw(raw_path, logger)
    base, _ = os.path.splitext(output_path)

    if save_raw:
        raw_preview = base + ".raw.png"
        logger.info(f"  💾 Saving undeveloped samples to {os.path.basename(raw_preview)}...")
        save_image(to_image(to_uint8(frame.image), frame.height, frame.width), raw_preview, logger)

    result = develop_frame(
        frame,
        converter,
        color_mode=color_mode,
        stretch_rate=stretch_rate,
        apply_color=apply_color,
        apply_gamma=apply_gamma,
        raw_scale=raw_scale,
        debug=debug,
        measure=measure,
        logger=logger,
    )

    # --- Step 5: 保存 ---
    logger.info(f"  💾 Saving to {os.path.basename(output_path)}...")
    save_image(to_image(result, frame.height, frame.width), output_path, logger)

    if reference:
        reference_path = base + ".libraw.tif"
        logger.info(f"  💾 Saving LibRaw reference rendition to {os.path.basename(reference_path)}...")
        save_image(render_reference(raw_path), reference_path, logger)

    # --- 最终清理 ---
    del frame, result
    gc.collect()
    logger.success(f"  ✅ Done: {os.path.basename(output_path)}")
