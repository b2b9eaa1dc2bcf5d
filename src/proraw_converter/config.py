"""
ProRaw Converter 配置文件
包含伽马曲线常量、色彩矩阵、直方图拉伸阈值以及 CLI 默认值
"""
import numpy as np

# ==========================================
#           数值范围
# ==========================================

USHRT_MAX = 65535
GAMMA_CURVE_SIZE = 1 << 16

# ==========================================
#           伽马曲线 (sRGB 分段曲线)
# ==========================================

GAMMA = 2.4
LINEAR_COEFF = 12.92
LINEAR_THRESH_COEFF = 0.0031308
GAMMA_SCALE = 1.055
BLACK_OFFSET = 0.055               # 以 float32 精度参与计算，白点 65535 -> 65535
DEFAULT_MAX_VALUE = USHRT_MAX

# ==========================================
#           色彩矩阵
# ==========================================

# CIE XYZ (D65) -> sRGB'
SRGB_FROM_XYZ_D65 = np.array(
    [
        [3.079955, -1.537139, -0.542816],
        [-0.921259, 1.876011, 0.045247],
        [0.052887, -0.204026, 1.151138],
    ],
    dtype=np.float32,
)

# 行归一化：行和小于该值时整行置零
ROW_SUM_EPS = 1e-7
# 归一化后矩阵行列式低于该值视为不可逆
SINGULAR_DET_EPS = 1e-12

# ==========================================
#           直方图拉伸
# ==========================================

HIST_SHIFT = 3                      # 桶宽 8
HIST_BINS = 1 << (16 - HIST_SHIFT)  # 8192 个桶
STRETCH_RATE_MIN = 1e-6             # 低于此值: 恒等映射
STRETCH_RATE_MAX = 0.999999         # 不低于此值: 输出常量图
STRETCH_SPREAD_EPS = 1e-5           # max - min 低于此值时 alpha = 0
DEFAULT_STRETCH_RATE = 0.0          # CLI 默认不拉伸 (推荐 0.01)

# ProRaw 样本左移位数 (12/13-bit -> 16-bit)
RAW_ADJUST_SHIFT = 3

# ==========================================
#           处理流程 / CLI 配置
# ==========================================

# 色彩转换路径
COLOR_MODES = [
    'camera',  # rgb_cam 直接转换到 sRGB' (默认)
    'xyz',     # ColorMatrix2 求逆 -> XYZ -> sRGB'
]
DEFAULT_COLOR_MODE = 'camera'

OUTPUT_FORMATS = ['tif', 'png']
DEFAULT_OUTPUT_FORMAT = 'tif'

DEFAULT_JOBS = 4

# Supported RAW file extensions (lowercase)
SUPPORTED_RAW_EXTENSIONS = ['.dng']
