"""Real-to-complex / complex-to-real 2-D Fourier transforms over fixed FFTW plans.

The engine owns one real scratch plane and one complex half-spectrum bound to
a forward and an inverse plan. Every call copies channel data into the shared
scratch, executes, and copies the result out, so one engine serves all three
channels in turn. It is not thread-safe.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np
import pyfftw

from .exceptions import AllocationError, TransformError

logger = logging.getLogger(__name__)


def spectrum_shape(width: int, height: int) -> Tuple[int, int]:
    return width, height // 2 + 1


@dataclass
class Spectrum:
    """Half-spectrum of one channel stored as separate real/imaginary planes."""

    real: np.ndarray
    imag: np.ndarray

    @classmethod
    def zeros(cls, width: int, height: int) -> "Spectrum":
        shape = spectrum_shape(width, height)
        return cls(np.zeros(shape, dtype=np.float32), np.zeros(shape, dtype=np.float32))

    def to_complex(self) -> np.ndarray:
        return self.real.astype(np.complex64) + 1j * self.imag.astype(np.complex64)


class SpectralEngine:
    """Forward/inverse transform pair sized to one ``width x height`` plane.

    Parameters:
        width, height: plane size; planes are indexed ``[x, y]``.
        planner_effort: FFTW planner flag used once, in ``acquire()``.
        threads: threads FFTW may use inside a single transform.
    """

    def __init__(self, width: int, height: int, planner_effort: str = "FFTW_MEASURE", threads: int = 1):
        if width <= 0 or height <= 0:
            raise TransformError(f"Invalid transform size {width}x{height}")
        self.width = width
        self.height = height
        self.planner_effort = planner_effort
        self.threads = threads
        self._scale = float(width * height)
        self._real: Optional[np.ndarray] = None
        self._complex: Optional[np.ndarray] = None
        self._forward: Optional[pyfftw.FFTW] = None
        self._inverse: Optional[pyfftw.FFTW] = None
        self._busy = False

    @property
    def acquired(self) -> bool:
        return self._forward is not None and self._inverse is not None

    def acquire(self) -> None:
        """Allocate scratch and build both plans.

        Raises:
            AllocationError: scratch could not be allocated.
            TransformError: a plan could not be built.
        """
        if self.acquired:
            raise TransformError("SpectralEngine already acquired")
        try:
            self._real = pyfftw.empty_aligned((self.width, self.height), dtype="float32")
            self._complex = pyfftw.empty_aligned(spectrum_shape(self.width, self.height), dtype="complex64")
        except MemoryError as exc:
            self.release()
            raise AllocationError(f"Cannot allocate FFT scratch for {self.width}x{self.height}") from exc

        flags = (self.planner_effort,)
        try:
            self._forward = pyfftw.FFTW(
                self._real, self._complex, axes=(0, 1), direction="FFTW_FORWARD", flags=flags, threads=self.threads
            )
            self._inverse = pyfftw.FFTW(
                self._complex, self._real, axes=(0, 1), direction="FFTW_BACKWARD", flags=flags, threads=self.threads
            )
        except (ValueError, TypeError, RuntimeError, MemoryError) as exc:
            self.release()
            raise TransformError(f"Cannot create FFT plans: {exc}") from exc
        logger.debug(
            "FFT plans ready for %dx%d (%s, %d thread(s))", self.width, self.height, self.planner_effort, self.threads
        )

    def release(self) -> None:
        """Drop plans then scratch. Safe to call repeatedly or after a failed acquire."""
        if self._real is not None:
            logger.debug("Releasing FFT plans and scratch")
        self._inverse = None
        self._forward = None
        self._complex = None
        self._real = None
        self._busy = False

    def __enter__(self) -> "SpectralEngine":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self.acquired:
            raise TransformError("SpectralEngine used before acquire()")
        if self._busy:
            raise TransformError("SpectralEngine scratch is already in use")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def forward(self, plane: np.ndarray, out: Spectrum) -> Spectrum:
        """Transform one spatial plane into ``out``."""
        if plane.shape != (self.width, self.height):
            raise TransformError(f"Expected plane of shape {(self.width, self.height)}, got {plane.shape}")
        with self._exclusive():
            self._real[...] = plane
            self._forward.execute()
            np.copyto(out.real, self._complex.real)
            np.copyto(out.imag, self._complex.imag)
        return out

    def inverse(self, spectrum: Spectrum, out: np.ndarray) -> np.ndarray:
        """Transform one half-spectrum into ``out``, divided by ``width * height``."""
        with self._exclusive():
            self._complex.real[...] = spectrum.real
            self._complex.imag[...] = spectrum.imag
            self._inverse.execute()
            np.divide(self._real, self._scale, out=out)
        return out
