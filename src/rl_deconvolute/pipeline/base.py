"""Run state, per-run context and the base class for setup stages."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import Optional, Type

import numpy as np

from ..backends.base import DeviceResources
from ..channels import ChannelMap
from ..config.config import Config
from ..dispatch import ElementwiseDispatcher
from ..psf import PointSpreadFunction
from ..richardson_lucy import RichardsonLucy
from ..spectral import SpectralEngine

logger = logging.getLogger(__name__)


class RunState(Enum):
    INIT_IMAGES = "init_images"
    INIT_TRANSFORM = "init_transform"
    INIT_DEVICE = "init_device"
    UPLOAD_REUSABLES = "upload_reusables"
    ITERATE = "iterate"
    EXTRACT_OUTPUT = "extract_output"
    TEARDOWN = "teardown"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunContext:
    """Everything one run owns. Nothing here is shared between runs."""

    cfg: Config
    iterations: int
    state: RunState = RunState.INIT_IMAGES
    width: int = 0
    height: int = 0
    observed: Optional[ChannelMap[np.ndarray]] = None
    psf: Optional[PointSpreadFunction] = None
    engine: Optional[SpectralEngine] = None
    device: Optional[DeviceResources] = None
    dispatcher: Optional[ElementwiseDispatcher] = None
    solver: Optional[RichardsonLucy] = None
    result: Optional[np.ndarray] = None


class Stage(ABC):
    """A setup step whose resources live until the run tears down.

    ``acquire()`` must either succeed completely or clean up after itself
    before raising; ``release()`` must be safe to call more than once.
    Used as a context manager, a stage is released on leaving the block.
    """

    state: RunState

    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    @abstractmethod
    def describe(self) -> str:  # pragma: no cover - description only
        ...

    @abstractmethod
    def acquire(self) -> None: ...

    def release(self) -> None:
        return

    def __enter__(self) -> "Stage":
        logger.debug("Acquiring: %s", self.describe())
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        logger.debug("Releasing: %s", self.describe())
        self.release()
        return False
