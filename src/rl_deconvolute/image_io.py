"""Image and PSF codecs.

Both readers return channel-major samples laid out x-major, i.e. an array of
shape ``(3, width, height)``; the writer takes the same layout back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import tifffile
from PIL import Image, UnidentifiedImageError

from .channels import ChannelMap
from .exceptions import ImageFormatError, ImageIOError

logger = logging.getLogger(__name__)

MAX_16BIT = np.iinfo(np.uint16).max
MAX_8BIT = np.iinfo(np.uint8).max


@dataclass
class DecodedImage:
    samples: np.ndarray
    width: int
    height: int
    max_value: int

    def normalized(self) -> ChannelMap[np.ndarray]:
        """Per-channel float32 planes scaled into [0, 1] by the source depth."""
        planes = self.samples.astype(np.float32) / np.float32(self.max_value)
        return ChannelMap.from_stack(planes)


def _to_channel_major(hwc: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(np.transpose(hwc, (2, 1, 0)))


def read_image16(path: Path | str) -> DecodedImage:
    """Read a three-channel, 16-bit-per-sample (RGBRGB) TIFF.

    Raises:
        ImageIOError: the file is missing or is not a readable TIFF.
        ImageFormatError: the TIFF is not contiguous 16-bit RGB.
    """
    path = Path(path)
    if not path.is_file():
        raise ImageIOError(f"read_image16: could not open {path}")
    try:
        data = tifffile.imread(path)
    except (OSError, ValueError, tifffile.TiffFileError) as exc:
        raise ImageIOError(f"read_image16: error reading {path}: {exc}") from exc

    if data.ndim != 3 or data.shape[2] != 3 or data.dtype != np.uint16:
        raise ImageFormatError(
            f"read_image16: {path} is not in correct format (shape {data.shape}, dtype {data.dtype}). "
            "TIFF file should have 16-bit channels in RGBRGB format."
        )
    height, width = data.shape[:2]
    logger.debug("Read %dx%d 16-bit image from %s", width, height, path)
    return DecodedImage(_to_channel_major(data), width, height, int(MAX_16BIT))


def read_psf8(path: Path | str) -> DecodedImage:
    """Read a three-channel, 8-bit-per-sample PSF image.

    Raises:
        ImageIOError: the file is missing or cannot be decoded.
        ImageFormatError: the image is not 8-bit RGB.
    """
    path = Path(path)
    if not path.is_file():
        raise ImageIOError(f"read_psf8: could not open {path}")
    try:
        with Image.open(path) as im:
            if im.mode != "RGB":
                raise ImageFormatError(
                    f"read_psf8: {path} is not in correct format (mode {im.mode}). "
                    "PSF file should have 8-bit channels in RGBRGB format."
                )
            data = np.array(im, dtype=np.uint8)
    except (OSError, UnidentifiedImageError) as exc:
        raise ImageIOError(f"read_psf8: error reading {path}: {exc}") from exc

    height, width = data.shape[:2]
    logger.debug("Read %dx%d 8-bit PSF from %s", width, height, path)
    return DecodedImage(_to_channel_major(data), width, height, int(MAX_8BIT))


def write_image16(path: Path | str, samples: np.ndarray) -> None:
    """Write ``(3, width, height)`` uint16 samples as a contiguous RGB TIFF."""
    path = Path(path)
    if samples.ndim != 3 or samples.shape[0] != 3:
        raise ImageFormatError(f"write_image16: expected (3, width, height) samples, got {samples.shape}")
    hwc = np.ascontiguousarray(np.transpose(samples.astype(np.uint16, copy=False), (2, 1, 0)))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tifffile.imwrite(path, hwc, photometric="rgb", planarconfig="contig")
    except (OSError, ValueError) as exc:
        raise ImageIOError(f"write_image16: error writing {path}: {exc}") from exc
    logger.debug("Wrote %dx%d 16-bit image to %s", hwc.shape[1], hwc.shape[0], path)
