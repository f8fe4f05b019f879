import numpy as np
import tifffile
import typer
from typer.testing import CliRunner

# Import the CLI function without executing it
from deconvolute import cli as cli_command


def _app():
    app = typer.Typer()
    app.command()(cli_command)
    return app


def test_cli_help_renders():
    runner = CliRunner()
    result = runner.invoke(_app(), ["--help"])  # help should not run anything
    assert result.exit_code == 0
    assert "Usage" in result.output
    assert "iterations" in result.output.lower()
    assert "deconvoluted_image.tif" in result.output


def test_cli_deconvolutes(tmp_path, make_tiff16, make_psf8, recording_backend):
    image = make_tiff16(np.full((4, 4, 3), 32768, dtype=np.uint16))
    psf = make_psf8(np.full((1, 1, 3), 255, dtype=np.uint8))
    out = tmp_path / "cli_out.tif"
    config_file = tmp_path / "config.yaml"
    config_file.write_text("transform:\n  planner_effort: FFTW_ESTIMATE\n")

    result = CliRunner().invoke(
        _app(),
        [str(image), str(psf), "3", "--output", str(out), "--backend", "recording", "--config", str(config_file)],
    )

    assert result.exit_code == 0, result.output
    assert np.all(tifffile.imread(out) == 32768)


def test_cli_missing_input_exits_1(tmp_path, make_psf8, recording_backend):
    psf = make_psf8(np.full((1, 1, 3), 255, dtype=np.uint8))

    result = CliRunner().invoke(
        _app(), [str(tmp_path / "missing.tif"), str(psf), "1", "--backend", "recording", "-o", str(tmp_path / "o.tif")]
    )

    assert result.exit_code == 1
    assert not (tmp_path / "o.tif").exists()


def test_cli_bad_config_exits_1(tmp_path, make_tiff16, make_psf8):
    image = make_tiff16(np.full((2, 2, 3), 1, dtype=np.uint16))
    psf = make_psf8(np.full((1, 1, 3), 255, dtype=np.uint8))
    config_file = tmp_path / "config.yaml"
    config_file.write_text("backend:\n  device_type: fpga\n")

    result = CliRunner().invoke(_app(), [str(image), str(psf), "1", "--config", str(config_file)])

    assert result.exit_code == 1


def test_cli_usage_error_is_nonzero():
    result = CliRunner().invoke(_app(), ["only-one-argument"])
    assert result.exit_code != 0
