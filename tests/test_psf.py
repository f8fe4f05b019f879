import numpy as np
import pytest

from rl_deconvolute.channels import CHANNELS, Channel
from rl_deconvolute.exceptions import ImageFormatError
from rl_deconvolute.psf import build_psf


def test_each_channel_sums_to_one():
    rng = np.random.default_rng(0)
    kernel = rng.integers(1, 256, size=(3, 3, 5)).astype(np.uint8)
    psf = build_psf(kernel, width=8, height=9)

    assert psf.shape == (8, 9)
    for channel in CHANNELS:
        assert psf.planes[channel].dtype == np.float32
        assert abs(float(psf.planes[channel].sum(dtype=np.float64)) - 1.0) < 1e-6


def test_kernel_is_centred_in_grid():
    kernel = np.ones((3, 2, 3), dtype=np.uint8)
    psf = build_psf(kernel, width=6, height=7)

    assert psf.offset == (2, 2)
    nonzero = np.argwhere(psf.planes[Channel.G] > 0)
    assert nonzero.min(axis=0).tolist() == [2, 2]
    assert nonzero.max(axis=0).tolist() == [3, 4]


def test_channels_normalized_independently():
    kernel = np.zeros((3, 1, 1), dtype=np.uint8)
    kernel[:, 0, 0] = (10, 200, 1)
    psf = build_psf(kernel, width=3, height=3)
    for channel in CHANNELS:
        assert psf.planes[channel][1, 1] == pytest.approx(1.0)


def test_registered_moves_centre_to_origin():
    kernel = np.zeros((3, 3, 3), dtype=np.uint8)
    kernel[:, 1, 1] = 255
    psf = build_psf(kernel, width=8, height=6)

    registered = psf.registered()
    for channel in CHANNELS:
        assert registered[channel][0, 0] == pytest.approx(1.0)
        assert registered[channel].sum() == pytest.approx(1.0)
    # the padded planes themselves are left alone
    assert psf.planes[Channel.R][0, 0] == 0.0


def test_kernel_larger_than_image():
    with pytest.raises(ImageFormatError, match="larger"):
        build_psf(np.ones((3, 5, 2), dtype=np.uint8), width=4, height=4)


def test_zero_channel():
    kernel = np.ones((3, 2, 2), dtype=np.uint8)
    kernel[2] = 0
    with pytest.raises(ImageFormatError, match="sum to zero"):
        build_psf(kernel, width=4, height=4)
