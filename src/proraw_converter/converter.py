"""
RawConverter: ProRaw/DNG 色彩与色调处理核心

图像数据统一为平面布局 (3, N)，N = 宽 * 高，通道顺序 R, G, B。
所有操作都是纯函数式的 (返回新数组)，唯一的可变状态是伽马曲线缓存。
一个 RawConverter 实例不是线程安全的，并发处理时每个 worker 持有自己的实例。
"""
import math
from typing import Optional, Sequence

import numpy as np

from . import utils
from .config import (
    USHRT_MAX, GAMMA_CURVE_SIZE, GAMMA, LINEAR_COEFF, LINEAR_THRESH_COEFF,
    GAMMA_SCALE, BLACK_OFFSET, DEFAULT_MAX_VALUE, SRGB_FROM_XYZ_D65, ROW_SUM_EPS,
    SINGULAR_DET_EPS, HIST_SHIFT, HIST_BINS, STRETCH_RATE_MIN,
    STRETCH_RATE_MAX, STRETCH_SPREAD_EPS, RAW_ADJUST_SHIFT,
)
from .errors import SingularColorMatrix, InvalidStretchRate, ShapeMismatch
from .logger import TraceLog


def _check_planar(image: np.ndarray, channels: int = 3) -> np.ndarray:
    image = np.asarray(image)
    if image.ndim != 2 or image.shape[0] != channels:
        raise ShapeMismatch(
            f"expected a planar buffer of shape ({channels}, N), got {image.shape}"
        )
    return image


def _leading_3x3(matrix, accepted, name: str) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.float32)
    if m.shape not in accepted:
        raise ShapeMismatch(f"{name} must have shape in {accepted}, got {m.shape}")
    return m[:3, :3]


def _as_float(image: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(image, dtype=np.float32)


def new_gamma_curve() -> np.ndarray:
    """65536 个条目，-1 表示尚未计算"""
    return np.full(GAMMA_CURVE_SIZE, -1, dtype=np.int32)


def reduce_to_rgb(image: np.ndarray, average_greens: bool = False) -> np.ndarray:
    """
    将 4 通道 (R, G1, B, G2) 缓冲区转为 3 通道 (R, G, B)

    Args:
        image: (4, N) 缓冲区
        average_greens: True 时 G = (G1 + G2) / 2，否则直接丢弃 G2
    """
    image = _check_planar(image, channels=4)
    if not average_greens:
        return image[:3].copy()
    rgb = image[:3].astype(np.float32)
    rgb[1] = (rgb[1] + image[3].astype(np.float32)) * 0.5
    return rgb.astype(image.dtype) if np.issubdtype(image.dtype, np.integer) else rgb


class RawConverter:
    """
    ProRaw 转换器

    持有伽马曲线缓存 (gamma_curve) 和调试记录 (debug_message)。
    缓存按输入级别惰性填充，生命周期与实例相同；
    修改 max_value 会重建缓存，因为缓存内容取决于该参数。
    """

    def __init__(self, max_value: float = DEFAULT_MAX_VALUE):
        self._max_value = self._validate_max_value(max_value)
        self.gamma_curve = new_gamma_curve()
        self.srgb_from_xyz_d65 = SRGB_FROM_XYZ_D65.copy()
        self.debug_message = TraceLog()

    # ------------------------------------------------------------------
    #  配置
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_max_value(max_value) -> float:
        value = float(max_value)
        if not (0.0 < value <= USHRT_MAX):
            raise ValueError(f"max_value must be within (0, {USHRT_MAX}], got {max_value!r}")
        return value

    @property
    def max_value(self) -> float:
        return self._max_value

    @max_value.setter
    def max_value(self, value):
        value = self._validate_max_value(value)
        if value != self._max_value:
            self._max_value = value
            self.reset_gamma_curve()

    def reset_gamma_curve(self):
        """丢弃所有已缓存的伽马值"""
        self.gamma_curve = new_gamma_curve()

    @property
    def gamma_threshold(self) -> int:
        """线性段与幂函数段的分界级别"""
        return int(math.floor(min(max(LINEAR_THRESH_COEFF * self._max_value, 0.0), USHRT_MAX)))

    # ------------------------------------------------------------------
    #  黑电平
    # ------------------------------------------------------------------

    def subtract_black(self, image: np.ndarray, black_level=0, black_levels: Optional[Sequence] = None) -> np.ndarray:
        """
        减去黑电平

        Args:
            image: (3, N) 缓冲区
            black_level: 公共黑电平。非零时只使用该值，black_levels 被忽略
            black_levels: RGB 各通道黑电平 (至少 3 个，多余的忽略)

        Returns:
            新的缓冲区。整数输入在 int64 中计算并裁剪到 [0, dtype 最大值]，
            因此无符号存储不会回绕；浮点输入不做裁剪。
        """
        image = _check_planar(image)
        if black_levels is None:
            black_levels = (0, 0, 0)
        if len(black_levels) < 3:
            raise ShapeMismatch(f"black_levels needs at least 3 values, got {len(black_levels)}")

        integer = np.issubdtype(image.dtype, np.integer)
        work = image.astype(np.int64 if integer else image.dtype, copy=True)
        level = int if integer else float

        if black_level:
            work -= level(black_level)
        else:
            for ch in range(3):
                if black_levels[ch]:
                    work[ch] -= level(black_levels[ch])

        if integer:
            info = np.iinfo(image.dtype)
            return np.clip(work, max(info.min, 0), info.max).astype(image.dtype)
        return work

    def raw_adjust(self, image: np.ndarray, shift: int = RAW_ADJUST_SHIFT) -> np.ndarray:
        """ProRaw 样本左移 shift 位，扩展到 16-bit 范围并裁剪"""
        image = _check_planar(image)
        scaled = np.left_shift(image.astype(np.int64), shift)
        return np.clip(scaled, 0, USHRT_MAX).astype(np.uint16)

    # ------------------------------------------------------------------
    #  色彩空间转换
    # ------------------------------------------------------------------

    def xyz_from_camera_matrix(self, color_matrix, analog_balance: Optional[Sequence] = None) -> np.ndarray:
        """
        由 ColorMatrix2 (XYZ -> 相机原生) 与 AnalogBalance 求出 相机 -> XYZ 矩阵

        Raises:
            SingularColorMatrix: 归一化后的矩阵不可逆
        """
        cm = _leading_3x3(color_matrix, [(3, 3), (4, 3)], "color_matrix").astype(np.float64)
        if analog_balance is None:
            ab = np.ones(3)
        else:
            ab = np.asarray(analog_balance, dtype=np.float64).ravel()
            if ab.shape[0] < 3:
                raise ShapeMismatch(f"analog_balance needs at least 3 values, got {ab.shape[0]}")
            ab = ab[:3]

        cam_from_xyz = np.diag(ab) @ cm

        # 行归一化
        row_sums = cam_from_xyz.sum(axis=1)
        for i in range(3):
            if ROW_SUM_EPS < row_sums[i]:
                cam_from_xyz[i] /= row_sums[i]
            else:
                cam_from_xyz[i] = 0.0

        if not cam_from_xyz.any():
            raise SingularColorMatrix("all rows of the normalized camera matrix are zero")
        det = np.linalg.det(cam_from_xyz)
        if abs(det) < SINGULAR_DET_EPS:
            raise SingularColorMatrix(f"normalized camera matrix is singular (det={det:.3e})")
        try:
            xyz_from_cam = np.linalg.inv(cam_from_xyz)
        except np.linalg.LinAlgError as e:
            raise SingularColorMatrix(str(e)) from e
        if not np.all(np.isfinite(xyz_from_cam)):
            raise SingularColorMatrix("inverse of the normalized camera matrix is not finite")
        return xyz_from_cam.astype(np.float32)

    def camera_to_xyz(self, image: np.ndarray, color_matrix, analog_balance: Optional[Sequence] = None) -> np.ndarray:
        """
        相机原生色彩空间 -> CIE XYZ (D65)

        Args:
            image: (3, N) 缓冲区
            color_matrix: XYZ -> 相机原生 的矩阵 (DNG ColorMatrix2)，3x3 或 4x3
            analog_balance: DNG AnalogBalance，取前 3 个值，缺省为单位阵
        """
        image = _check_planar(image)
        xyz_from_cam = self.xyz_from_camera_matrix(color_matrix, analog_balance)
        return utils.apply_matrix_planar(_as_float(image), xyz_from_cam)

    def xyz_to_srgb(self, image: np.ndarray) -> np.ndarray:
        """CIE XYZ (D65) -> sRGB' (线性)"""
        image = _check_planar(image)
        return utils.apply_matrix_planar(_as_float(image), self.srgb_from_xyz_d65)

    def camera_to_srgb(self, image: np.ndarray, color_matrix) -> np.ndarray:
        """
        相机原生色彩空间 -> sRGB' (线性)
        color_matrix 已经是 相机 -> sRGB' 矩阵 (LibRaw rgb_cam)，3x3 或 3x4，第 4 列忽略
        """
        image = _check_planar(image)
        srgb_from_cam = _leading_3x3(color_matrix, [(3, 3), (3, 4)], "color_matrix")
        return utils.apply_matrix_planar(_as_float(image), srgb_from_cam)

    # ------------------------------------------------------------------
    #  伽马校正
    # ------------------------------------------------------------------

    def gamma_correction(self, image: np.ndarray) -> np.ndarray:
        """
        sRGB 伽马编码，返回 uint16 缓冲区

        输入先裁剪到 [0, 65535] 并截断为整数级别，
        每个级别的结果缓存在 self.gamma_curve 中，跨调用复用。
        """
        image = _check_planar(image)
        if np.issubdtype(image.dtype, np.floating):
            image = np.nan_to_num(image, nan=0.0)
        levels = np.clip(image, 0, USHRT_MAX).astype(np.int32)
        return utils.gamma_lookup(
            levels,
            self.gamma_curve,
            self.gamma_threshold,
            self._max_value,
            LINEAR_COEFF,
            GAMMA,
            GAMMA_SCALE,
            float(np.float32(BLACK_OFFSET)),
            float(USHRT_MAX),
        )

    # ------------------------------------------------------------------
    #  亮度 / 对比度 (直方图拉伸)
    # ------------------------------------------------------------------

    def stretch_window(self, image: np.ndarray, stretch_rate: float, debug: bool = False):
        """
        根据绿通道直方图估计 [min_value, max_value] 窗口

        image 必须已裁剪到 [0, 65535]。返回 (min_value, max_value)。
        """
        if STRETCH_RATE_MAX <= stretch_rate:
            # 退化: 整幅图映射为常量
            min_value = max_value = float(image.min()) if image.size else 0.0
        else:
            acc_thresh = int(image.shape[1] * stretch_rate * 0.5)
            if debug:
                self.debug_message.record("acc_thresh", acc_thresh)
            hist = utils.build_histogram(np.ascontiguousarray(image[1]), HIST_SHIFT, HIST_BINS)
            min_bin, max_bin = utils.histogram_window(hist, acc_thresh)
            if debug:
                self.debug_message.record("min bin", int(min_bin))
                self.debug_message.record("max bin", int(max_bin))
            min_value = float(int(min_bin) << HIST_SHIFT)
            max_value = float(int(max_bin) << HIST_SHIFT)

        return min_value, max_value

    def adjust_brightness(self, image: np.ndarray, stretch_rate: float = 0.4, debug: bool = False) -> np.ndarray:
        """
        直方图拉伸，增强亮度与对比度

        将输入裁剪到 [0, 65535]，用桶宽为 8 的绿通道直方图找出
        最暗与最亮各 stretch_rate/2 比例的分界点，并把 [min, max] 线性映射到 [0, 65535]。

        Args:
            image: (3, N) 缓冲区
            stretch_rate: [0, 1]。0 表示不调整，1 表示输出全黑
            debug: 为 True 时把中间数值写入 self.debug_message

        Returns:
            float32 缓冲区，值域 [0, 65535]

        Raises:
            InvalidStretchRate: stretch_rate 不在 [0, 1] 内
        """
        image = _check_planar(image)
        rate = float(stretch_rate)
        if not (0.0 <= rate <= 1.0):
            raise InvalidStretchRate(stretch_rate)

        if debug:
            self.debug_message.write("Start adjust_brightness()")

        clipped = np.clip(np.nan_to_num(_as_float(image)), 0, USHRT_MAX)
        if rate < STRETCH_RATE_MIN:
            if debug:
                self.debug_message.write("stretch_rate is zero, data is not stretched")
            return clipped

        min_value, max_value = self.stretch_window(clipped, rate, debug)
        if debug:
            self.debug_message.record("max value", max_value)
            self.debug_message.record("min value", min_value)

        # min_value -> 0, max_value -> 65535
        spread = max_value - min_value
        alpha = 0.0 if spread < STRETCH_SPREAD_EPS else float(USHRT_MAX) / spread
        beta = -min_value * alpha
        if debug:
            self.debug_message.record("alpha", alpha)
            self.debug_message.record("beta", beta)

        result = utils.affine_clip(clipped, alpha, beta, 0.0, float(USHRT_MAX))
        if debug:
            self.debug_message.write("End adjust_brightness()")
        return result
