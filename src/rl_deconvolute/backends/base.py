"""Device resource manager shared by all compute backends.

A backend owns, in acquisition order: a context with its command queue, the
compiled kernel program, one kernel handle per channel for each entry point
in ``KERNEL_NAMES``, and the per-channel device buffers in ``BUFFER_LAYOUT``.
``acquire()`` brings them up in that order and ``release()`` tears them down
in reverse.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np

from ..channels import Channel
from ..config import Config
from ..exceptions import BackendError, DeconvolutionError
from ..spectral import spectrum_shape

logger = logging.getLogger(__name__)


class Domain(Enum):
    SPATIAL = "spatial"
    SPECTRAL = "spectral"


class Access(Enum):
    READ_ONLY = "read_only"
    READ_WRITE = "read_write"


@dataclass(frozen=True)
class BufferSpec:
    name: str
    domain: Domain
    access: Access


# One device buffer of each entry exists per channel.
BUFFER_LAYOUT: Tuple[BufferSpec, ...] = (
    BufferSpec("observed", Domain.SPATIAL, Access.READ_ONLY),
    BufferSpec("image_a", Domain.SPATIAL, Access.READ_WRITE),
    BufferSpec("image_b", Domain.SPATIAL, Access.READ_WRITE),
    BufferSpec("psf_re", Domain.SPECTRAL, Access.READ_ONLY),
    BufferSpec("psf_im", Domain.SPECTRAL, Access.READ_ONLY),
    BufferSpec("spectrum_a_re", Domain.SPECTRAL, Access.READ_WRITE),
    BufferSpec("spectrum_a_im", Domain.SPECTRAL, Access.READ_WRITE),
    BufferSpec("spectrum_b_re", Domain.SPECTRAL, Access.READ_WRITE),
    BufferSpec("spectrum_b_im", Domain.SPECTRAL, Access.READ_WRITE),
)

KERNEL_NAMES: Tuple[str, ...] = ("mult", "complex_mult", "complex_conj_mult", "divide")


class DeviceResources(ABC):
    """Staged, rollback-safe owner of one backend's device state.

    Subclasses implement the four acquisition steps and their releases plus
    the transfer/launch primitives. Every release method must tolerate being
    called when its step never ran or ran only partway.

    Parameters:
        width, height: working image size; fixes every buffer's element count.
        cfg: run configuration (device type, kernel source, ...).
    """

    name = "abstract"

    def __init__(self, width: int, height: int, cfg: Optional[Config] = None):
        self.width = width
        self.height = height
        self.cfg = cfg if cfg is not None else Config()
        self._guard: Optional[ExitStack] = None

    @property
    def spatial_size(self) -> int:
        return self.width * self.height

    @property
    def spectral_size(self) -> int:
        rows, cols = spectrum_shape(self.width, self.height)
        return rows * cols

    def size_of(self, domain: Domain) -> int:
        return self.spatial_size if domain is Domain.SPATIAL else self.spectral_size

    def nbytes_of(self, domain: Domain) -> int:
        return self.size_of(domain) * np.dtype(np.float32).itemsize

    @property
    def acquired(self) -> bool:
        return self._guard is not None

    def _steps(self) -> Sequence[Tuple[str, Callable[[], None], Callable[[], None]]]:
        return (
            ("queue", self._open_queue, self._close_queue),
            ("program", self._build_program, self._release_program),
            ("kernels", self._create_kernels, self._release_kernels),
            ("buffers", self._allocate_buffers, self._release_buffers),
        )

    def acquire(self) -> None:
        """Bring up queue, program, kernels and buffers, in that order.

        On the first failing step everything acquired so far is released in
        reverse order before the error is raised.

        Raises:
            BackendError: (or a subclass / AllocationError) naming the failed step.
        """
        if self._guard is not None:
            raise BackendError(f"{self.name} resources already acquired")
        guard = ExitStack()
        step = None
        try:
            for step, setup, teardown in self._steps():
                # Teardown goes on the guard before setup runs so a step that
                # fails halfway still frees what it did create.
                guard.callback(self._logged_release, step, teardown)
                logger.debug("%s: acquiring %s", self.name, step)
                setup()
        except DeconvolutionError:
            logger.debug("%s: acquiring %s failed; rolling back", self.name, step)
            guard.close()
            raise
        except Exception as exc:
            logger.debug("%s: acquiring %s failed; rolling back", self.name, step)
            guard.close()
            raise BackendError(f"{self.name}: cannot acquire {step}: {exc}") from exc
        self._guard = guard

    def release(self) -> None:
        """Release everything in reverse acquisition order. Idempotent."""
        guard, self._guard = self._guard, None
        if guard is not None:
            guard.close()

    def _logged_release(self, step: str, teardown: Callable[[], None]) -> None:
        logger.debug("%s: releasing %s", self.name, step)
        teardown()

    def __enter__(self) -> "DeviceResources":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    # Acquisition steps

    @abstractmethod
    def _open_queue(self) -> None: ...

    @abstractmethod
    def _close_queue(self) -> None: ...

    @abstractmethod
    def _build_program(self) -> None: ...

    @abstractmethod
    def _release_program(self) -> None: ...

    @abstractmethod
    def _create_kernels(self) -> None: ...

    @abstractmethod
    def _release_kernels(self) -> None: ...

    @abstractmethod
    def _allocate_buffers(self) -> None: ...

    @abstractmethod
    def _release_buffers(self) -> None: ...

    # Transfer and launch primitives. All of them raise DispatchError on failure.

    @abstractmethod
    def write(self, name: str, channel: Channel, host: np.ndarray) -> None:
        """Copy ``host`` into buffer ``name`` of ``channel``; returns when done."""

    @abstractmethod
    def read(self, name: str, channel: Channel, host: np.ndarray) -> None:
        """Copy buffer ``name`` of ``channel`` into ``host``; returns when done."""

    @abstractmethod
    def enqueue(self, kernel: str, channel: Channel, buffers: Sequence[str], size: int) -> Any:
        """Bind ``buffers`` to the channel's kernel handle and launch over ``size`` items.

        Returns a completion event to pass to ``wait``.
        """

    @abstractmethod
    def wait(self, events: Sequence[Any]) -> None:
        """Block until every event has completed."""
