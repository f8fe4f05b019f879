"""Run controller and public entry points for rl_deconvolute.pipeline."""

from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from ..config.config import Config
from ..exceptions import AllocationError, ConfigurationError, DeconvolutionError, ImageIOError, StageError
from ..image_io import write_image16
from .base import RunContext, RunState
from .stages import (
    ArrayImages,
    DeviceStage,
    FileImages,
    ImageSource,
    ImageStage,
    TransformStage,
    extract_output,
    iterate,
    quantize16,
    upload_reusables,
)

logger = logging.getLogger(__name__)

Sink = Callable[[np.ndarray], None]


def _check_iterations(iterations) -> int:
    if isinstance(iterations, bool) or not isinstance(iterations, (int, np.integer)):
        raise ConfigurationError(f"iteration count must be an integer, got {iterations!r}")
    if iterations < 0:
        raise ConfigurationError(f"iteration count must be >= 0, got {iterations}")
    return int(iterations)


class RunController:
    """Drives one deconvolution through its states.

    Setup stages are entered on an ``ExitStack``; leaving the stack, whether
    normally or by an error, releases whatever was acquired in reverse order.
    Each call builds a fresh ``RunContext``, so one controller can be used for
    several runs.
    """

    def __init__(self, cfg: Optional[Config] = None):
        self.cfg = Config(cfg) if cfg is not None else Config()
        if self.cfg.verbose:
            logging.getLogger("rl_deconvolute").setLevel(logging.DEBUG)

    @staticmethod
    def _transition(ctx: RunContext, state: RunState) -> None:
        logger.info("%s -> %s", ctx.state.value, state.value)
        ctx.state = state

    def _execute(self, source: ImageSource, iterations: int, sink: Optional[Sink] = None) -> RunContext:
        ctx = RunContext(cfg=self.cfg, iterations=iterations)
        try:
            with ExitStack() as stack:
                logger.info("Starting run on %s (%d iterations, backend %s)", source, iterations, self.cfg.backend)
                stack.enter_context(ImageStage(ctx, source))
                self._transition(ctx, RunState.INIT_TRANSFORM)
                stack.enter_context(TransformStage(ctx))
                self._transition(ctx, RunState.INIT_DEVICE)
                stack.enter_context(DeviceStage(ctx))

                self._transition(ctx, RunState.UPLOAD_REUSABLES)
                upload_reusables(ctx)
                self._transition(ctx, RunState.ITERATE)
                iterate(ctx)
                self._transition(ctx, RunState.EXTRACT_OUTPUT)
                result = extract_output(ctx)
                if sink is not None:
                    sink(result)
                self._transition(ctx, RunState.TEARDOWN)
        except DeconvolutionError as exc:
            failed = ctx.state
            ctx.state = RunState.FAILED
            logger.error("Run failed during %s: %s", failed.value, exc)
            raise StageError(failed, exc) from exc
        except MemoryError as exc:
            failed = ctx.state
            ctx.state = RunState.FAILED
            logger.error("Run failed during %s: out of host memory", failed.value)
            raise StageError(failed, AllocationError("out of host memory")) from exc

        self._transition(ctx, RunState.DONE)
        return ctx

    def run(
        self,
        input_path: Path | str,
        psf_path: Path | str,
        output_path: Optional[Path | str] = None,
        iterations: Optional[int] = None,
    ) -> Path:
        """Deconvolve a 16-bit RGB TIFF with an 8-bit RGB PSF and write the result.

        The image is written to a temporary name next to ``output_path`` and
        renamed once the run has torn down, so a failed run leaves no output.

        Returns:
            The path of the written image.

        Raises:
            ConfigurationError: ``iterations`` is negative or not an integer.
            StageError: any later failure; ``.state`` names the failing stage.
            ImageIOError: the finished image could not be moved to ``output_path``.
        """
        iterations = _check_iterations(self.cfg.iterations if iterations is None else iterations)
        output_path = Path(output_path) if output_path is not None else self.cfg.output_path
        tmp_out = output_path.with_name(output_path.stem + "__tmp.tif")

        def sink(result: np.ndarray) -> None:
            write_image16(tmp_out, quantize16(result))

        try:
            self._execute(FileImages(Path(input_path), Path(psf_path)), iterations, sink)
        except StageError:
            tmp_out.unlink(missing_ok=True)
            raise
        try:
            tmp_out.replace(output_path)
        except OSError as exc:
            tmp_out.unlink(missing_ok=True)
            logger.error("Cannot move result into place at %s: %s", output_path, exc)
            raise ImageIOError(f"could not write {output_path}: {exc}") from exc
        logger.info("Wrote %s", output_path)
        return output_path

    def run_arrays(self, observed: np.ndarray, kernel: np.ndarray, iterations: Optional[int] = None) -> np.ndarray:
        """Deconvolve in memory.

        ``observed`` is ``(3, width, height)`` with samples in [0, 1] and
        ``kernel`` is ``(3, kw, kh)`` raw PSF samples. Returns the clamped
        float32 estimate in the same layout as ``observed``.
        """
        iterations = _check_iterations(self.cfg.iterations if iterations is None else iterations)
        ctx = self._execute(ArrayImages(observed, kernel), iterations)
        return ctx.result


def deconvolve_file(
    input_path: Path | str,
    psf_path: Path | str,
    iterations: Optional[int] = None,
    output_path: Optional[Path | str] = None,
    cfg: Optional[Config] = None,
) -> Path:
    """Convenience wrapper around ``RunController(cfg).run(...)``."""
    return RunController(cfg).run(input_path, psf_path, output_path=output_path, iterations=iterations)
