import logging

import pytest
import structlog
from click.testing import CliRunner
from PIL import Image

from bytestep.cli import cli
from bytestep.log import LOGGER_NAME
from bytestep.writer import BreakpointWriteError, BreakpointWriter


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    structlog.reset_defaults()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def noise_png(tmp_path):
    path = tmp_path / "noise.png"
    Image.effect_noise((120, 120), 64).save(path)
    return path


class TestRun:
    """Test suite for the run command"""

    def test_creates_breakpoints(self, runner, noise_png, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(cli, [
            "run", "--source", str(noise_png), "--lower", "30x30", "--step", "4000",
            "--output-dir", str(out), "--no-ui",
        ])
        assert result.exit_code == 0, result.output
        assert "created" in result.output
        assert (out / "noise-30x30.png").exists()
        assert len(list(out.glob("noise-*x*.png"))) >= 2

    def test_quiet_hides_created_lines(self, runner, noise_png, tmp_path):
        result = runner.invoke(cli, [
            "-q", "run", "--source", str(noise_png), "--lower", "30x30", "--step", "4000",
            "--output-dir", str(tmp_path / "out"), "--no-ui",
        ])
        assert result.exit_code == 0, result.output
        assert "created" not in result.output

    def test_upper_clamped_to_source(self, runner, noise_png, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(cli, [
            "run", "--source", str(noise_png), "--lower", "30x30", "--upper", "500x500",
            "--step", "4000", "--output-dir", str(out), "--no-ui",
        ])
        assert result.exit_code == 0, result.output
        assert "upper size limit restricted" in result.output
        for path in out.glob("noise-*x*.png"):
            with Image.open(path) as img:
                assert img.size[0] <= 120 and img.size[1] <= 120

    def test_missing_lower(self, runner, noise_png):
        result = runner.invoke(cli, ["run", "--source", str(noise_png), "--step", "4000", "--no-ui"])
        assert result.exit_code == 2
        assert "--lower" in result.output

    def test_invalid_dimensions(self, runner, noise_png):
        result = runner.invoke(cli, ["run", "--source", str(noise_png), "--lower", "30", "--step", "4000", "--no-ui"])
        assert result.exit_code == 2
        assert "expected WxH" in result.output

    def test_invalid_step(self, runner, noise_png, tmp_path):
        result = runner.invoke(cli, [
            "run", "--source", str(noise_png), "--lower", "30x30", "--step", "0",
            "--output-dir", str(tmp_path), "--no-ui",
        ])
        assert result.exit_code == 2
        assert "step" in result.output

    def test_divergent_samples(self, runner, noise_png, tmp_path):
        """A plugin whose larger images are smaller files cannot be stepped"""
        plugin = tmp_path / "plugin.py"
        plugin.write_text(
            "import io\n"
            "from PIL import Image\n"
            "\n"
            "def resize(source_path, width, height):\n"
            "    if width < 50:\n"
            "        img = Image.effect_noise((width, height), 64)\n"
            "    else:\n"
            "        img = Image.new('L', (width, height), 0)\n"
            "    buf = io.BytesIO()\n"
            "    img.save(buf, format='PNG')\n"
            "    return buf.getvalue()\n"
        )
        out = tmp_path / "out"
        result = runner.invoke(cli, [
            "run", "--source", str(noise_png), "--lower", "40x40", "--step", "4000",
            "--oracle-fn", str(plugin), "--output-dir", str(out), "--no-ui",
        ])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "does not grow" in result.output
        assert not out.exists() or not list(out.glob("*.png"))

    def test_write_failure_is_reported(self, runner, noise_png, tmp_path, monkeypatch):
        """A breakpoint that cannot be written ends the run with an error message"""
        def refuse(self, bp):
            raise BreakpointWriteError(f"Breakpoint {bp.index} carries no image data")

        monkeypatch.setattr(BreakpointWriter, "write", refuse)
        result = runner.invoke(cli, [
            "run", "--source", str(noise_png), "--lower", "30x30", "--step", "4000",
            "--output-dir", str(tmp_path / "out"), "--no-ui",
        ])
        assert result.exit_code == 1
        assert "Error: Breakpoint 0 carries no image data" in result.output



class TestProbe:
    """Test suite for the probe command"""

    def test_reports_actual_size(self, runner, tmp_path):
        path = tmp_path / "wide.png"
        Image.effect_noise((120, 60), 64).save(path)
        result = runner.invoke(cli, ["probe", "--source", str(path), "--size", "60x60"])
        assert result.exit_code == 0, result.output
        assert result.output.startswith("60x30 ")
        assert "bytes" in result.output

    def test_quality_reaches_oracle(self, runner, tmp_path):
        """--quality changes what the pillow oracle measures"""
        path = tmp_path / "photo.jpg"
        Image.effect_noise((120, 120), 64).convert("RGB").save(path, format="JPEG")

        def probed_size(quality):
            result = runner.invoke(cli, ["probe", "--source", str(path), "--size", "100x100", "--quality", quality])
            assert result.exit_code == 0, result.output
            return int(result.output.split()[1])

        assert probed_size("10") < probed_size("95")

    def test_missing_magick_binary(self, runner, noise_png, tmp_path):
        result = runner.invoke(cli, [
            "probe", "--source", str(noise_png), "--size", "60x60",
            "--oracle", "magick", "--magick-binary", str(tmp_path / "no-such-convert"),
        ])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "not found" in result.output


class TestDemo:
    """Test suite for the demo command"""

    def test_runs_on_generated_image(self, runner, tmp_path):
        result = runner.invoke(cli, [
            "demo", "--size", "100x80", "--step", "3000", "--output-dir", str(tmp_path), "--no-ui",
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "noise.png").exists()
        assert (tmp_path / "noise-20x16.png").exists()
