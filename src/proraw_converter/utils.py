import numpy as np
from numba import njit, prange

# =========================================================
# Numba 加速核函数
# 所有图像数据均为平面布局 (channels, N)，N = 宽 * 高
# =========================================================

@njit(parallel=True, fastmath=True, cache=True)
def apply_matrix_planar(img, matrix):
    """
    3x3 矩阵乘以平面图像: out = matrix · img
    返回新的 float32 数组，不修改输入
    """
    n_pixels = img.shape[1]
    out = np.empty((3, n_pixels), dtype=np.float32)

    # 预加载矩阵参数到寄存器
    m00, m01, m02 = matrix[0, 0], matrix[0, 1], matrix[0, 2]
    m10, m11, m12 = matrix[1, 0], matrix[1, 1], matrix[1, 2]
    m20, m21, m22 = matrix[2, 0], matrix[2, 1], matrix[2, 2]

    for i in prange(n_pixels):
        r = img[0, i]
        g = img[1, i]
        b = img[2, i]

        out[0, i] = r * m00 + g * m01 + b * m02
        out[1, i] = r * m10 + g * m11 + b * m12
        out[2, i] = r * m20 + g * m21 + b * m22
    return out


@njit(cache=True)
def gamma_lookup(levels, gamma_curve, thresh, max_value, linear_coeff, gamma, scale, black_offset, upper):
    """
    带缓存的 sRGB 伽马编码

    levels 必须是已裁剪到 [0, 65535] 的整数级别。
    gamma_curve 中 < 0 的条目表示尚未计算，计算后原位写回，
    因此同一个级别在任意通道、任意调用中只计算一次。
    顺序循环: 缓存槽只允许单线程写入。
    """
    channels, n_pixels = levels.shape
    out = np.empty((channels, n_pixels), dtype=np.uint16)
    inv_gamma = 1.0 / gamma

    for ch in range(channels):
        for i in range(n_pixels):
            v = levels[ch, i]
            cached = gamma_curve[v]
            if cached < 0:
                if v < thresh:
                    # 线性段
                    value = v * linear_coeff
                else:
                    # 幂函数段
                    value = (v / max_value) ** inv_gamma
                    value = value * scale - black_offset
                    value *= max_value

                if value < 0.0:
                    value = 0.0
                elif value > upper:
                    value = upper
                cached = int(value)
                gamma_curve[v] = cached
            out[ch, i] = cached
    return out


@njit(cache=True)
def build_histogram(channel, shift, n_bins):
    """对单通道 (已裁剪) 统计直方图，桶宽 = 1 << shift"""
    hist = np.zeros(n_bins, dtype=np.int64)
    for i in range(channel.shape[0]):
        hist[int(channel[i]) >> shift] += 1
    return hist


@njit(cache=True)
def histogram_window(hist, acc_thresh):
    """
    从两端累加直方图直到达到 acc_thresh
    返回 (min_bin, max_bin)，两者都停在最后一个被累加桶的下一个位置
    """
    n_bins = hist.shape[0]

    # 低端
    bin_lo = 0
    acc = 0
    while acc < acc_thresh and bin_lo < n_bins:
        acc += hist[bin_lo]
        bin_lo += 1

    # 高端
    bin_hi = n_bins - 1
    acc = 0
    while acc < acc_thresh and 0 < bin_hi:
        acc += hist[bin_hi]
        bin_hi -= 1

    return bin_lo, bin_hi


@njit(parallel=True, fastmath=True, cache=True)
def affine_clip(img, alpha, beta, lower, upper):
    """out = clip(img * alpha + beta, lower, upper)，立即求值"""
    channels, n_pixels = img.shape
    out = np.empty((channels, n_pixels), dtype=np.float32)

    for i in prange(n_pixels):
        for ch in range(channels):
            v = img[ch, i] * alpha + beta
            if v < lower:
                v = lower
            elif v > upper:
                v = upper
            out[ch, i] = v
    return out
