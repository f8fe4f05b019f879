import numpy as np
import pytest

from rl_deconvolute.channels import CHANNELS, Channel, ChannelMap


def test_channel_order():
    assert CHANNELS == (Channel.R, Channel.G, Channel.B)
    assert [c.value for c in CHANNELS] == [0, 1, 2]


def test_from_stack_copies_and_stacks_back():
    array = np.arange(24, dtype=np.float32).reshape(3, 2, 4)
    planes = ChannelMap.from_stack(array)
    array[0, 0, 0] = -1.0
    assert planes[Channel.R][0, 0] == 0.0
    np.testing.assert_array_equal(planes[Channel.B], np.arange(16, 24, dtype=np.float32).reshape(2, 4))
    assert planes.stack().shape == (3, 2, 4)


def test_build_and_map_visit_in_channel_order():
    seen = []
    planes = ChannelMap.build(lambda c: c.value * 10)
    doubled = planes.map(lambda v: seen.append(v) or v * 2)
    assert seen == [0, 10, 20]
    assert list(doubled.values()) == [0, 20, 40]
    assert list(planes) == list(CHANNELS)
    assert len(planes) == 3


def test_incomplete_mapping_rejected():
    with pytest.raises(ValueError, match="missing"):
        ChannelMap({Channel.R: 1, Channel.G: 2})


def test_from_stack_needs_three_channels():
    with pytest.raises(ValueError):
        ChannelMap.from_stack(np.zeros((4, 2, 2)))
