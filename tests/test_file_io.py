# tests/test_file_io.py
import concurrent.futures
from pathlib import Path

import numpy as np
import pytest
import tifffile
from click.testing import CliRunner

from proraw_converter import cli, file_io, orchestrator
from proraw_converter.file_io import read_raw, render_reference
from proraw_converter.logger import create_logger


class FakeRaw:
    """Stands in for the object returned by ``rawpy.imread``."""

    def __init__(self, visible):
        self.raw_image_visible = visible
        self.black_level_per_channel = [64, 65, 66, 67]
        self.rgb_xyz_matrix = np.vstack([np.eye(3), np.zeros((1, 3))])
        self.color_matrix = np.hstack([np.eye(3), np.zeros((3, 1))])
        self.white_level = 16383
        self.postprocess_kwargs = None

    def postprocess(self, **kwargs):
        self.postprocess_kwargs = kwargs
        h, w = self.raw_image_visible.shape[:2]
        return np.full((h, w, 3), 1234, dtype=np.uint16)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def linear_samples(h=2, w=3, channels=4):
    return np.arange(h * w * channels, dtype=np.uint16).reshape(h, w, channels) * 100


@pytest.fixture
def fake_imread(monkeypatch):
    """Route ``rawpy.imread`` to a FakeRaw; file names containing 'bayer' decode as 2-D."""
    opened = {}

    def imread(path):
        if "bayer" in Path(path).name.lower():
            raw = FakeRaw(np.zeros((4, 6), dtype=np.uint16))
        else:
            raw = FakeRaw(linear_samples())
        opened[Path(path).name] = raw
        return raw

    monkeypatch.setattr(file_io.rawpy, "imread", imread)
    return opened


def test_read_raw_four_channel_frame(fake_imread):
    frame = read_raw("IMG_0001.DNG")

    assert frame.image.shape == (3, 6)
    assert frame.image.dtype == np.uint16
    assert (frame.width, frame.height) == (3, 2)
    # G2 is dropped, pixel order is row-major
    samples = linear_samples()
    np.testing.assert_array_equal(frame.image[:, 4], samples[1, 1, :3])

    np.testing.assert_array_equal(frame.black_levels, [64, 65, 66, 67])
    assert frame.rgb_xyz_matrix.shape == (4, 3)
    assert frame.rgb_cam.shape == (3, 4)
    assert frame.rgb_xyz_matrix.dtype == np.float32
    assert frame.white_level == 16383
    assert frame.path == "IMG_0001.DNG"


def test_read_raw_three_channel_frame(monkeypatch):
    samples = linear_samples(channels=3)
    monkeypatch.setattr(file_io.rawpy, "imread", lambda path: FakeRaw(samples))

    frame = read_raw("three.dng")
    assert frame.image.shape == (3, 6)
    np.testing.assert_array_equal(frame.image[:, 0], samples[0, 0])


def test_read_raw_rejects_bayer_data(fake_imread):
    with pytest.raises(ValueError, match="mosaiced"):
        read_raw("bayer.dng")


def test_read_raw_logs_levels(fake_imread):
    messages = []
    read_raw("IMG_0001.DNG", create_logger(messages.append, "IMG_0001.DNG", debug=True))

    assert any("Black Levels: 64.0, 65.0, 66.0" in m for m in messages)
    assert any("White Level: 16383" in m for m in messages)


def test_render_reference_uses_camera_white_balance(fake_imread):
    img = render_reference("IMG_0001.DNG")

    assert img.shape == (2, 3, 3)
    kwargs = fake_imread["IMG_0001.DNG"].postprocess_kwargs
    assert kwargs["use_camera_wb"] is True
    assert kwargs["output_bps"] == 16
    assert kwargs["output_color"] == file_io.rawpy.ColorSpace.sRGB


def test_cli_reference_writes_libraw_tiff(tmp_path: Path, fake_imread):
    src = tmp_path / "IMG_0001.DNG"
    src.write_bytes(b"")
    out = tmp_path / "IMG_0001.tif"

    result = CliRunner().invoke(cli.main, [str(src), str(out), "--reference"])

    assert result.exit_code == 0, result.output
    assert tifffile.imread(out).shape == (2, 3, 3)
    reference = tifffile.imread(tmp_path / "IMG_0001.libraw.tif")
    np.testing.assert_array_equal(reference, 1234)


def test_init_worker_builds_converter(monkeypatch):
    monkeypatch.setattr(orchestrator, "_worker_converter", None)
    orchestrator._init_worker(32768)
    assert orchestrator._worker_converter.max_value == 32768


def test_batch_counts_failures(tmp_path: Path, fake_imread, monkeypatch):
    monkeypatch.setattr(orchestrator, "_worker_converter", None)
    # Threads run the same initializer and submit path as the process pool
    monkeypatch.setattr(
        concurrent.futures, "ProcessPoolExecutor", concurrent.futures.ThreadPoolExecutor
    )
    in_dir = tmp_path / "in"
    out_dir = tmp_path / "out"
    in_dir.mkdir()
    out_dir.mkdir()
    (in_dir / "a.dng").write_bytes(b"")
    (in_dir / "bayer.dng").write_bytes(b"")

    messages = []
    failures = orchestrator.process_path(
        str(in_dir), str(out_dir), 0.01, "xyz", 1, messages.append,
        output_format="png", max_value=60000,
    )

    assert failures == 1
    assert (out_dir / "a.png").exists()
    assert not (out_dir / "bayer.png").exists()
    assert orchestrator._worker_converter.max_value == 60000
    assert any("[bayer.dng]" in m and "mosaiced" in m for m in messages)
    assert any("1/2 succeeded" in m for m in messages)
