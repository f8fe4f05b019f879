#!/usr/bin/python3
# -*- coding: utf-8 -*-
"""
Deconvolute a 16-bit RGB TIFF with an 8-bit RGB point spread function.

Usage:
    deconvolute.py [OPTIONS] INPUT_IMAGE PSF_IMAGE ITERATIONS

Runs ITERATIONS rounds of Richardson-Lucy deconvolution and writes a 16-bit
RGB TIFF (deconvoluted_image.tif unless --output is given). Exits 0 on
success and 1 on any failure.
"""

import logging
import pathlib
from typing import Optional

import typer

from rl_deconvolute.config import Config
from rl_deconvolute.exceptions import DeconvolutionError
from rl_deconvolute.pipeline import RunController

logger = logging.getLogger("deconvolute")


def cli(
    input_image: pathlib.Path = typer.Argument(..., help="16-bit RGB TIFF to deconvolute."),
    psf_image: pathlib.Path = typer.Argument(..., help="8-bit RGB point spread function image."),
    iterations: int = typer.Argument(..., help="Number of Richardson-Lucy iterations (>= 0)."),
    output: Optional[pathlib.Path] = typer.Option(
        None, "--output", "-o", help="Where to save the result (default: deconvoluted_image.tif)."
    ),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="Compute backend: opencl or torch."),
    device_type: Optional[str] = typer.Option(
        None, "--device-type", help="OpenCL device type: gpu, cpu, accelerator or all."
    ),
    config: Optional[pathlib.Path] = typer.Option(None, "--config", help="YAML file overriding the defaults."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every stage and iteration."),
) -> None:
    """Deconvolute INPUT_IMAGE with PSF_IMAGE."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = Config(config if config is not None else "").with_overrides(
            iterations=iterations,
            output=output,
            backend=backend,
            device_type=device_type,
            verbose=verbose,
        )
        written = RunController(cfg).run(input_image, psf_image, cfg.output_path, cfg.iterations)
    except DeconvolutionError as exc:
        logger.error("%s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Wrote {written}")


def main() -> None:
    typer.run(cli)


if __name__ == "__main__":
    main()
