"""Per-channel container used for every buffer kind in a run."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Generic, Iterator, Tuple, TypeVar

import numpy as np

T = TypeVar("T")
U = TypeVar("U")


class Channel(Enum):
    R = 0
    G = 1
    B = 2


CHANNELS: Tuple[Channel, ...] = tuple(Channel)


class ChannelMap(Generic[T]):
    """Fixed mapping from each of the three channels to one value.

    Values are always visited in channel order. No operation here combines
    two channels' values.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Dict[Channel, T]):
        missing = [c.name for c in CHANNELS if c not in values]
        if missing or len(values) != len(CHANNELS):
            raise ValueError(f"ChannelMap needs exactly R, G, B (missing: {missing})")
        self._values = {c: values[c] for c in CHANNELS}

    @classmethod
    def build(cls, factory: Callable[[Channel], T]) -> "ChannelMap[T]":
        return cls({c: factory(c) for c in CHANNELS})

    @classmethod
    def from_stack(cls, array: np.ndarray) -> "ChannelMap[np.ndarray]":
        """Split a channel-major ``(3, ...)`` array into per-channel copies."""
        if array.shape[0] != len(CHANNELS):
            raise ValueError(f"Expected {len(CHANNELS)} channels, got array of shape {array.shape}")
        return cls({c: np.array(array[c.value], copy=True) for c in CHANNELS})

    def stack(self) -> np.ndarray:
        return np.stack([self._values[c] for c in CHANNELS])

    def map(self, fn: Callable[[T], U]) -> "ChannelMap[U]":
        return ChannelMap({c: fn(v) for c, v in self._values.items()})

    def items(self) -> Iterator[Tuple[Channel, T]]:
        return iter(self._values.items())

    def values(self) -> Iterator[T]:
        return iter(self._values.values())

    def __getitem__(self, channel: Channel) -> T:
        return self._values[channel]

    def __iter__(self) -> Iterator[Channel]:
        return iter(CHANNELS)

    def __len__(self) -> int:
        return len(CHANNELS)

    def __repr__(self) -> str:
        return f"ChannelMap({', '.join(f'{c.name}={v!r}' for c, v in self._values.items())})"
