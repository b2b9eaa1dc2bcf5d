# tests/conftest.py
from __future__ import annotations

import numpy as np
import pytest

from proraw_converter.converter import RawConverter
from proraw_converter.file_io import RawFrame


@pytest.fixture
def converter() -> RawConverter:
    return RawConverter()


@pytest.fixture
def ramp() -> np.ndarray:
    """Every 16-bit level once, stacked into three identical channels."""
    v = np.arange(0, 1 << 16, dtype=np.int64)
    return np.stack([v, v, v])


@pytest.fixture
def frame() -> RawFrame:
    """A small 3x4 linear frame with identity matrices and no black level."""
    rng = np.random.default_rng(7)
    h, w = 3, 4
    image = rng.integers(0, 60000, size=(3, h * w), dtype=np.uint16)
    return RawFrame(
        image=image,
        width=w,
        height=h,
        black_levels=np.zeros(4, dtype=np.float32),
        rgb_xyz_matrix=np.vstack([np.eye(3), np.zeros((1, 3))]).astype(np.float32),
        rgb_cam=np.hstack([np.eye(3), np.zeros((3, 1))]).astype(np.float32),
        path="synthetic.dng",
    )
