"""Richardson-Lucy iteration over a spectral engine and an elementwise dispatcher.

One iteration computes

    x <- x * ( psf_mirrored (*) ( y / ( psf (*) x ) ) )

where ``(*)`` is circular convolution done as forward transform, spectral
multiply and inverse transform, ``y`` is the observation held on the device
and the mirrored PSF is realized by multiplying with the conjugate PSF
spectrum. The number of iterations is fixed by the caller; there is no
convergence or divergence test.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .channels import CHANNELS, ChannelMap
from .dispatch import ElementwiseDispatcher
from .exceptions import ConfigurationError
from .spectral import SpectralEngine, Spectrum

logger = logging.getLogger(__name__)


class RichardsonLucy:
    """Owns the estimate and all working buffers of one deconvolution.

    Parameters:
        engine: acquired spectral engine sized to the image.
        dispatcher: dispatcher whose device already holds the observation and
            PSF spectrum.
        observed: the normalized observation; also the default starting estimate.
        initial: optional starting estimate instead of ``observed``.
    """

    def __init__(
        self,
        engine: SpectralEngine,
        dispatcher: ElementwiseDispatcher,
        observed: ChannelMap[np.ndarray],
        initial: Optional[ChannelMap[np.ndarray]] = None,
    ):
        self.engine = engine
        self.dispatcher = dispatcher
        width, height = engine.width, engine.height

        start = initial if initial is not None else observed
        self.current = start.map(lambda p: np.array(p, dtype=np.float32, copy=True))
        self.blurred = ChannelMap.build(lambda c: np.zeros((width, height), dtype=np.float32))
        self.ratio = ChannelMap.build(lambda c: np.zeros((width, height), dtype=np.float32))
        self.correction = ChannelMap.build(lambda c: np.zeros((width, height), dtype=np.float32))
        self._spectrum_in = ChannelMap.build(lambda c: Spectrum.zeros(width, height))
        self._spectrum_out = ChannelMap.build(lambda c: Spectrum.zeros(width, height))
        self.iterations_done = 0

    def _forward(self, planes: ChannelMap[np.ndarray], spectra: ChannelMap[Spectrum]) -> None:
        for channel in CHANNELS:
            self.engine.forward(planes[channel], spectra[channel])

    def _inverse(self, spectra: ChannelMap[Spectrum], planes: ChannelMap[np.ndarray]) -> None:
        for channel in CHANNELS:
            self.engine.inverse(spectra[channel], planes[channel])

    def step(self) -> None:
        """Advance ``current`` by one RL update."""
        # blurred = psf (*) current
        self._forward(self.current, self._spectrum_in)
        self.dispatcher.complex_multiply(self._spectrum_in, self._spectrum_out)
        self._inverse(self._spectrum_out, self.blurred)
        # ratio = observed / blurred
        self.dispatcher.real_divide(self.blurred, self.ratio)
        # correction = mirrored psf (*) ratio
        self._forward(self.ratio, self._spectrum_in)
        self.dispatcher.complex_conjugate_multiply(self._spectrum_in, self._spectrum_out)
        self._inverse(self._spectrum_out, self.correction)
        # current *= correction
        self.dispatcher.real_multiply(self.current, self.correction, self.current)
        self.iterations_done += 1

    def run(self, iterations: int) -> ChannelMap[np.ndarray]:
        """Run exactly ``iterations`` updates and return the estimate."""
        if iterations < 0:
            raise ConfigurationError(f"iteration count must be >= 0, got {iterations}")
        for i in range(iterations):
            self.step()
            logger.debug("RL iteration %d/%d done", i + 1, iterations)
        return self.current

    def convolve(self, planes: ChannelMap[np.ndarray], out: ChannelMap[np.ndarray]) -> ChannelMap[np.ndarray]:
        """out = psf (*) planes, using the same buffers as an iteration."""
        self._forward(planes, self._spectrum_in)
        self.dispatcher.complex_multiply(self._spectrum_in, self._spectrum_out)
        self._inverse(self._spectrum_out, out)
        return out
