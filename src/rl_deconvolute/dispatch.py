"""Elementwise operations dispatched to device buffers, one launch per channel.

Every operation runs the same three phases: blocking uploads of the host
operands, one kernel launch per channel followed by a joint wait, then a
download. Results land in staging arrays first and are copied to the caller's
outputs only once every channel has been read back, so a failed operation
leaves the outputs as they were.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from .backends.base import Domain, DeviceResources
from .channels import CHANNELS, ChannelMap
from .spectral import Spectrum

logger = logging.getLogger(__name__)


class ElementwiseDispatcher:
    """Richardson-Lucy elementwise steps on top of a ``DeviceResources``.

    The observation and the PSF spectrum live on the device (see
    ``upload_reusables``) and are implicit operands where noted.
    """

    def __init__(self, device: DeviceResources):
        self.device = device
        width, height = device.width, device.height
        self._spatial_staging = ChannelMap.build(lambda c: np.zeros((width, height), dtype=np.float32))
        self._spectral_staging = ChannelMap.build(lambda c: Spectrum.zeros(width, height))

    def upload_reusables(self, observed: ChannelMap[np.ndarray], psf_spectrum: ChannelMap[Spectrum]) -> None:
        """Upload the read-only operands once per run."""
        for channel in CHANNELS:
            self.device.write("observed", channel, observed[channel])
            self.device.write("psf_re", channel, psf_spectrum[channel].real)
            self.device.write("psf_im", channel, psf_spectrum[channel].imag)
        logger.debug("Uploaded observation and PSF spectrum")

    def real_multiply(
        self, a: ChannelMap[np.ndarray], b: ChannelMap[np.ndarray], out: ChannelMap[np.ndarray]
    ) -> ChannelMap[np.ndarray]:
        """out = a * b. ``out`` may be ``a``."""
        self._upload_spatial("image_a", a)
        self._upload_spatial("image_b", b)
        self._launch("mult", ("image_a", "image_b", "image_a"), Domain.SPATIAL)
        return self._download_spatial("image_a", out)

    def real_divide(self, denominator: ChannelMap[np.ndarray], out: ChannelMap[np.ndarray]) -> ChannelMap[np.ndarray]:
        """out = observed / denominator, with no guard against zero denominators."""
        self._upload_spatial("image_a", denominator)
        self._launch("divide", ("observed", "image_a", "image_b"), Domain.SPATIAL)
        return self._download_spatial("image_b", out)

    def complex_multiply(self, spectrum: ChannelMap[Spectrum], out: ChannelMap[Spectrum]) -> ChannelMap[Spectrum]:
        """out = psf * spectrum (convolution with the PSF)."""
        self._upload_spectral("spectrum_a", spectrum)
        self._launch(
            "complex_mult",
            ("psf_re", "psf_im", "spectrum_a_re", "spectrum_a_im", "spectrum_b_re", "spectrum_b_im"),
            Domain.SPECTRAL,
        )
        return self._download_spectral("spectrum_b", out)

    def complex_conjugate_multiply(
        self, spectrum: ChannelMap[Spectrum], out: ChannelMap[Spectrum]
    ) -> ChannelMap[Spectrum]:
        """out = spectrum * conj(psf) (convolution with the mirrored PSF)."""
        self._upload_spectral("spectrum_a", spectrum)
        self._launch(
            "complex_conj_mult",
            ("spectrum_a_re", "spectrum_a_im", "psf_re", "psf_im", "spectrum_b_re", "spectrum_b_im"),
            Domain.SPECTRAL,
        )
        return self._download_spectral("spectrum_b", out)

    def _launch(self, kernel: str, buffers: Sequence[str], domain: Domain) -> None:
        size = self.device.size_of(domain)
        events = [self.device.enqueue(kernel, channel, buffers, size) for channel in CHANNELS]
        self.device.wait(events)

    def _upload_spatial(self, name: str, planes: ChannelMap[np.ndarray]) -> None:
        for channel in CHANNELS:
            self.device.write(name, channel, planes[channel])

    def _upload_spectral(self, prefix: str, spectra: ChannelMap[Spectrum]) -> None:
        for channel in CHANNELS:
            self.device.write(f"{prefix}_re", channel, spectra[channel].real)
            self.device.write(f"{prefix}_im", channel, spectra[channel].imag)

    def _download_spatial(self, name: str, out: ChannelMap[np.ndarray]) -> ChannelMap[np.ndarray]:
        for channel in CHANNELS:
            self.device.read(name, channel, self._spatial_staging[channel])
        for channel in CHANNELS:
            np.copyto(out[channel], self._spatial_staging[channel])
        return out

    def _download_spectral(self, prefix: str, out: ChannelMap[Spectrum]) -> ChannelMap[Spectrum]:
        for channel in CHANNELS:
            staging = self._spectral_staging[channel]
            self.device.read(f"{prefix}_re", channel, staging.real)
            self.device.read(f"{prefix}_im", channel, staging.imag)
        for channel in CHANNELS:
            np.copyto(out[channel].real, self._spectral_staging[channel].real)
            np.copyto(out[channel].imag, self._spectral_staging[channel].imag)
        return out
