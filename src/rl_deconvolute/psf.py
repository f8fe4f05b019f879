"""Point-spread function construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .channels import Channel, ChannelMap
from .exceptions import ImageFormatError


@dataclass
class PointSpreadFunction:
    """A kernel padded to the working image size.

    ``planes`` hold the kernel centred in a zero grid, each channel summing
    to 1. ``kernel_width``/``kernel_height`` are the size of the decoded
    kernel before padding.
    """

    planes: ChannelMap[np.ndarray]
    kernel_width: int
    kernel_height: int

    @property
    def shape(self) -> Tuple[int, int]:
        return self.planes[Channel.R].shape  # (width, height)

    @property
    def offset(self) -> Tuple[int, int]:
        width, height = self.shape
        return (width - self.kernel_width) // 2, (height - self.kernel_height) // 2

    @property
    def centre(self) -> Tuple[int, int]:
        x0, y0 = self.offset
        return x0 + self.kernel_width // 2, y0 + self.kernel_height // 2

    def registered(self) -> ChannelMap[np.ndarray]:
        """Planes circularly shifted so the kernel centre sits at (0, 0).

        Convolving in the Fourier domain with these planes does not translate
        the image.
        """
        cx, cy = self.centre
        return self.planes.map(lambda p: np.ascontiguousarray(np.roll(p, (-cx, -cy), axis=(0, 1))))


def build_psf(kernel: np.ndarray, width: int, height: int) -> PointSpreadFunction:
    """Centre a ``(3, kw, kh)`` kernel in a ``width x height`` grid and normalize.

    Each channel is divided by its own sample total, so the raw sample depth
    does not matter.

    Raises:
        ImageFormatError: the kernel is larger than the image or a channel is all zero.
    """
    if kernel.ndim != 3 or kernel.shape[0] != 3:
        raise ImageFormatError(f"PSF must have shape (3, width, height), got {kernel.shape}")
    _, kw, kh = kernel.shape
    if kw > width or kh > height:
        raise ImageFormatError(f"PSF ({kw}x{kh}) is larger than the image ({width}x{height})")

    totals = kernel.reshape(3, -1).astype(np.float64).sum(axis=1)
    if np.any(totals <= 0):
        raise ImageFormatError("PSF has a channel whose samples sum to zero")

    x0 = (width - kw) // 2
    y0 = (height - kh) // 2
    padded = np.zeros((3, width, height), dtype=np.float32)
    padded[:, x0:x0 + kw, y0:y0 + kh] = (kernel / totals[:, None, None]).astype(np.float32)
    return PointSpreadFunction(ChannelMap.from_stack(padded), kw, kh)
