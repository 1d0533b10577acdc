"""Tests for the histeq command line entry point."""

import logging
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from histeq.cli.equalize import build_parser, default_output_path, format_table, main


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep handlers off the captured streams."""
    with patch("histeq.cli.equalize.setup_logging"):
        yield


@pytest.fixture
def pgm(tmp_path):
    path = tmp_path / "test.pgm"
    Image.fromarray(np.array([[10, 10], [200, 200]], dtype=np.uint8)).save(path)
    return path


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.platform_id is None
        assert args.device_id is None
        assert args.list_devices is False
        assert args.image_filename == "test.pgm"
        assert args.output is None
        assert args.no_gpu is False
        assert args.plot is None
        assert args.quiet is False

    def test_all_flags(self):
        args = build_parser().parse_args(
            ["-p", "1", "-d", "2", "-l", "-f", "cat.pgm", "-o", "out.png", "--no-gpu", "--plot", "c.png", "--quiet", "-v"]
        )
        assert args.platform_id == 1
        assert args.device_id == 2
        assert args.list_devices is True
        assert args.image_filename == "cat.pgm"
        assert args.output == "out.png"
        assert args.no_gpu is True
        assert args.plot == "c.png"
        assert args.quiet is True
        assert args.verbose is True

    def test_help_exits_zero(self, capsys):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["-h"])
        assert exc.value.code == 0
        assert "-p" in capsys.readouterr().out


def test_default_output_path():
    assert default_output_path("images/cat.pgm") == "images/cat_equalized.png"


def test_format_table():
    assert format_table(np.array([1, 2, 3], dtype=np.uint32)) == "[1, 2, 3]"


def test_run_on_host(pgm, tmp_path, capsys):
    out = tmp_path / "eq.png"
    assert main(["-f", str(pgm), "--no-gpu", "-o", str(out)]) == 0

    assert np.asarray(Image.open(out)).tolist() == [[128, 128], [255, 255]]
    printed = capsys.readouterr().out
    assert "Running on Host CPU (numba)" in printed
    assert "Histogram = [" in printed
    assert "Cumulative Histogram = [" in printed
    assert "LUT = [" in printed
    assert "Histogram kernel execution time [ns]:" in printed
    assert "Reproject kernel execution time [ns]:" in printed
    assert "[us]" in printed


def test_quiet_and_plot(pgm, tmp_path, capsys):
    out = tmp_path / "eq.png"
    chart = tmp_path / "chart.png"
    assert main(["-f", str(pgm), "--no-gpu", "-o", str(out), "--plot", str(chart), "--quiet"]) == 0
    assert chart.exists() and chart.stat().st_size > 0
    assert "Histogram = [" not in capsys.readouterr().out


def test_default_output_next_to_input(pgm, tmp_path):
    assert main(["-f", str(pgm), "--no-gpu", "--quiet"]) == 0
    assert (tmp_path / "test_equalized.png").exists()


def test_missing_image(tmp_path, capsys):
    assert main(["-f", str(tmp_path / "missing.pgm"), "--no-gpu"]) == 1
    assert "ERROR" in capsys.readouterr().err


def test_colour_image_is_invalid_input(tmp_path, capsys):
    path = tmp_path / "colour.png"
    Image.new("RGB", (2, 2)).save(path)
    assert main(["-f", str(path), "--no-gpu"]) == 1
    assert "ERROR: InvalidInput" in capsys.readouterr().err


def test_list_devices_then_runs(pgm, tmp_path, capsys):
    with patch("histeq.cli.equalize.list_platforms", return_value="Platform 0, Vulkan"):
        assert main(["-l", "-f", str(pgm), "--no-gpu", "--quiet", "-o", str(tmp_path / "o.png")]) == 0
    assert "Platform 0, Vulkan" in capsys.readouterr().out


def test_no_gpu_warns_about_device_selection(pgm, tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="histeq"):
        assert main(["-f", str(pgm), "--no-gpu", "-p", "1", "-d", "0", "--quiet", "-o", str(tmp_path / "o.png")]) == 0
    assert "ignoring the -p/-d device selection" in caplog.text


def test_no_warning_without_device_selection(pgm, tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="histeq"):
        assert main(["-f", str(pgm), "--no-gpu", "--quiet", "-o", str(tmp_path / "o.png")]) == 0
    assert "device selection" not in caplog.text
