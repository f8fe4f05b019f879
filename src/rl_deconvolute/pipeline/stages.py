"""Setup stages and the per-state steps of a deconvolution run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Tuple

import numpy as np

from ..backends import get_backend
from ..channels import CHANNELS, Channel, ChannelMap
from ..dispatch import ElementwiseDispatcher
from ..exceptions import ImageFormatError
from ..image_io import MAX_16BIT, read_image16, read_psf8
from ..psf import build_psf
from ..richardson_lucy import RichardsonLucy
from ..spectral import SpectralEngine, Spectrum
from .base import RunContext, RunState, Stage

logger = logging.getLogger(__name__)


class ImageSource(Protocol):
    def load(self) -> Tuple[ChannelMap[np.ndarray], np.ndarray]:
        """Return the normalized observation and the raw ``(3, kw, kh)`` PSF kernel."""
        ...


@dataclass
class FileImages:
    """16-bit RGB TIFF observation plus an 8-bit RGB PSF image."""

    input_path: Path
    psf_path: Path

    def load(self) -> Tuple[ChannelMap[np.ndarray], np.ndarray]:
        image = read_image16(self.input_path)
        kernel = read_psf8(self.psf_path)
        return image.normalized(), kernel.samples

    def __str__(self) -> str:
        return f"{self.input_path} with PSF {self.psf_path}"


@dataclass
class ArrayImages:
    """In-memory observation ``(3, width, height)`` in [0, 1] and kernel ``(3, kw, kh)``."""

    observed: np.ndarray
    kernel: np.ndarray

    def load(self) -> Tuple[ChannelMap[np.ndarray], np.ndarray]:
        try:
            observed = np.asarray(self.observed, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise ImageFormatError(f"observation is not a numeric array: {exc}") from exc
        if observed.ndim != 3 or observed.shape[0] != 3:
            raise ImageFormatError(f"observation must have shape (3, width, height), got {observed.shape}")
        return ChannelMap.from_stack(observed), np.asarray(self.kernel)

    def __str__(self) -> str:
        return f"in-memory image {np.shape(self.observed)}"


class ImageStage(Stage):
    """Decode inputs, normalize, and build the padded PSF."""

    state = RunState.INIT_IMAGES

    def __init__(self, ctx: RunContext, source: ImageSource):
        super().__init__(ctx)
        self.source = source

    def describe(self) -> str:
        return f"Images ({self.source})"

    def acquire(self) -> None:
        observed, kernel = self.source.load()
        width, height = observed[Channel.R].shape
        psf = build_psf(kernel, width, height)
        self.ctx.width, self.ctx.height = width, height
        self.ctx.observed = observed
        self.ctx.psf = psf
        logger.debug("Working size %dx%d, PSF %dx%d", width, height, psf.kernel_width, psf.kernel_height)

    def release(self) -> None:
        self.ctx.solver = None
        self.ctx.psf = None
        self.ctx.observed = None


class TransformStage(Stage):
    """FFT scratch and plans sized to the working image."""

    state = RunState.INIT_TRANSFORM

    def describe(self) -> str:
        return f"Transform ({self.ctx.cfg.planner_effort})"

    def acquire(self) -> None:
        engine = SpectralEngine(
            self.ctx.width, self.ctx.height, planner_effort=self.ctx.cfg.planner_effort, threads=self.ctx.cfg.fft_threads
        )
        engine.acquire()
        self.ctx.engine = engine

    def release(self) -> None:
        if self.ctx.engine is not None:
            self.ctx.engine.release()
            self.ctx.engine = None


class DeviceStage(Stage):
    """Compute backend: queue, program, kernels and device buffers."""

    state = RunState.INIT_DEVICE

    def describe(self) -> str:
        return f"Device ({self.ctx.cfg.backend})"

    def acquire(self) -> None:
        backend = get_backend(self.ctx.cfg.backend)
        device = backend(self.ctx.width, self.ctx.height, self.ctx.cfg)
        dispatcher = ElementwiseDispatcher(device)
        device.acquire()
        self.ctx.device = device
        self.ctx.dispatcher = dispatcher

    def release(self) -> None:
        self.ctx.dispatcher = None
        if self.ctx.device is not None:
            self.ctx.device.release()
            self.ctx.device = None


def upload_reusables(ctx: RunContext) -> None:
    """Transform the PSF once and put it, with the observation, on the device."""
    psf_spectrum = ChannelMap.build(lambda c: Spectrum.zeros(ctx.width, ctx.height))
    registered = ctx.psf.registered()
    for channel in CHANNELS:
        ctx.engine.forward(registered[channel], psf_spectrum[channel])
    ctx.dispatcher.upload_reusables(ctx.observed, psf_spectrum)


def iterate(ctx: RunContext) -> None:
    ctx.solver = RichardsonLucy(ctx.engine, ctx.dispatcher, ctx.observed)
    ctx.solver.run(ctx.iterations)


def clamp_output(planes: ChannelMap[np.ndarray]) -> np.ndarray:
    """Stack channels and clamp to [0, 1]; NaN maps to 0 and +inf to 1."""
    stacked = np.nan_to_num(planes.stack(), nan=0.0, posinf=1.0, neginf=0.0)
    return np.clip(stacked, 0.0, 1.0).astype(np.float32)


def quantize16(clamped: np.ndarray) -> np.ndarray:
    return np.rint(clamped.astype(np.float64) * MAX_16BIT).astype(np.uint16)


def extract_output(ctx: RunContext) -> np.ndarray:
    ctx.result = clamp_output(ctx.solver.current)
    return ctx.result
