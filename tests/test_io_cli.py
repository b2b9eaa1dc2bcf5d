# tests/test_io_cli.py
import queue
from pathlib import Path

import imageio.v3 as iio
import numpy as np
import pytest
import tifffile
from click.testing import CliRunner

from proraw_converter import cli, core, orchestrator
from proraw_converter.errors import ShapeMismatch
from proraw_converter.file_io import save_image, to_image, to_planar, to_uint8
from proraw_converter.logger import TraceLog, create_logger


def test_planar_image_conversions():
    h, w = 2, 3
    img = np.arange(h * w * 3, dtype=np.uint16).reshape(h, w, 3)

    planar = to_planar(img)
    assert planar.shape == (3, h * w)
    np.testing.assert_array_equal(planar[:, 4], img[1, 1])
    np.testing.assert_array_equal(to_image(planar, h, w), img)


def test_to_image_rejects_wrong_size():
    with pytest.raises(ShapeMismatch):
        to_image(np.zeros((3, 5)), 2, 3)


def test_to_uint8_keeps_high_byte():
    data = np.array([[0, 255, 256, 65535]], dtype=np.uint16)
    np.testing.assert_array_equal(to_uint8(data), [[0, 0, 1, 255]])


def test_save_tiff_roundtrip(tmp_path: Path):
    img = np.arange(4 * 5 * 3, dtype=np.uint16).reshape(4, 5, 3) * 1000
    out = tmp_path / "out.tif"
    save_image(img, str(out))

    back = tifffile.imread(out)
    assert back.dtype == np.uint16
    np.testing.assert_array_equal(back, img)


def test_save_png_is_8bit(tmp_path: Path):
    img = np.full((4, 5, 3), 40000, dtype=np.uint16)
    out = tmp_path / "out.png"
    save_image(img, str(out))

    back = iio.imread(out)
    assert back.dtype == np.uint8
    np.testing.assert_array_equal(back, 40000 >> 8)


def test_save_unknown_format(tmp_path: Path):
    with pytest.raises(ValueError):
        save_image(np.zeros((2, 2, 3), dtype=np.uint16), str(tmp_path / "out.bmp"))


def test_logger_targets():
    q = queue.Queue()
    create_logger(q, "a.dng").warning("careful")
    assert q.get_nowait() == {"id": "a.dng", "msg": "careful", "level": "WARNING"}

    messages = []
    logger = create_logger(messages.append, "a.dng")
    logger.info("hello")
    logger.debug("hidden")
    assert messages == ["[a.dng] hello"]


def test_trace_log_drain():
    trace = TraceLog()
    trace.record("alpha", 1.5)
    trace.record("min bin", 10)
    assert trace.lines == ["alpha: 1.500000", "min bin: 10"]
    assert trace.drain() == ["alpha: 1.500000", "min bin: 10"]
    assert len(trace) == 0


@pytest.fixture
def fake_dng(tmp_path: Path, frame, monkeypatch):
    path = tmp_path / "IMG_0001.DNG"
    path.write_bytes(b"")
    monkeypatch.setattr(core, "read_raw", lambda raw_path, logger=None: frame)
    return path


def test_cli_single_file(tmp_path: Path, fake_dng):
    out = tmp_path / "out.tif"
    result = CliRunner().invoke(
        cli.main, [str(fake_dng), str(out), "--stretch-rate", "0.01", "--measure"]
    )

    assert result.exit_code == 0, result.output
    assert "Total run time" in result.output
    assert tifffile.imread(out).shape == (3, 4, 3)


def test_cli_output_directory_and_png(tmp_path: Path, fake_dng):
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    result = CliRunner().invoke(
        cli.main, [str(fake_dng), str(out_dir), "--format", "png", "--save-raw"]
    )

    assert result.exit_code == 0, result.output
    assert (out_dir / "IMG_0001.png").exists()
    assert (out_dir / "IMG_0001.raw.png").exists()


def test_cli_rejects_bad_stretch_rate(tmp_path: Path, fake_dng):
    result = CliRunner().invoke(
        cli.main, [str(fake_dng), str(tmp_path / "out.tif"), "--stretch-rate", "1.5"]
    )
    assert result.exit_code == 2


def test_batch_requires_output_directory(tmp_path: Path):
    (tmp_path / "in").mkdir()
    (tmp_path / "in" / "a.dng").write_bytes(b"")
    messages = []
    with pytest.raises(ValueError):
        orchestrator.process_path(
            str(tmp_path / "in"), str(tmp_path / "missing"), 0.0, "camera", 1, messages.append
        )


def test_batch_without_raw_files(tmp_path: Path):
    (tmp_path / "in").mkdir()
    (tmp_path / "in" / "notes.txt").write_text("x")
    (tmp_path / "out").mkdir()
    with pytest.raises(ValueError):
        orchestrator.process_path(
            str(tmp_path / "in"), str(tmp_path / "out"), 0.0, "camera", 1, lambda m: None
        )


def test_find_raw_files(tmp_path: Path):
    for name in ["b.DNG", "a.dng", "c.jpg"]:
        (tmp_path / name).write_bytes(b"")
    assert orchestrator.find_raw_files(str(tmp_path)) == ["a.dng", "b.DNG"]
