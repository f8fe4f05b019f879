"""PyTorch compute backend.

Buffers are flat float32 tensors on the selected torch device and the
"program" is a table of tensor kernels with the same argument layout as
``arithmetic.cl``.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import torch

from ..channels import CHANNELS, Channel
from ..config import Config
from ..exceptions import AllocationError, BackendError, DeviceNotFound, DispatchError, ProgramBuildError
from .base import BUFFER_LAYOUT, KERNEL_NAMES, DeviceResources

logger = logging.getLogger(__name__)


def _mult(a: torch.Tensor, b: torch.Tensor, out: torch.Tensor) -> None:
    torch.mul(a, b, out=out)


def _divide(numerator: torch.Tensor, denominator: torch.Tensor, out: torch.Tensor) -> None:
    torch.div(numerator, denominator, out=out)


def _complex_mult(a_re, a_im, b_re, b_im, out_re, out_im) -> None:
    re = a_re * b_re - a_im * b_im
    im = a_re * b_im + a_im * b_re
    out_re.copy_(re)
    out_im.copy_(im)


def _complex_conj_mult(a_re, a_im, b_re, b_im, out_re, out_im) -> None:
    re = a_re * b_re + a_im * b_im
    im = a_im * b_re - a_re * b_im
    out_re.copy_(re)
    out_im.copy_(im)


TORCH_KERNELS: Dict[str, Callable[..., None]] = {
    "mult": _mult,
    "divide": _divide,
    "complex_mult": _complex_mult,
    "complex_conj_mult": _complex_conj_mult,
}


def choose_device(device: Optional[str] = None) -> torch.device:
    """Return ``device`` if given, else the first of CUDA/MPS/XPU/CPU available."""
    if device:
        try:
            return torch.device(device)
        except RuntimeError as exc:
            raise DeviceNotFound(f"Unknown torch device '{device}': {exc}") from exc
    if torch.cuda.is_available():
        return torch.device("cuda")
    elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return torch.device("mps")
    elif hasattr(torch, "xpu") and torch.xpu.is_available():  # Intel XPU
        return torch.device("xpu")
    else:
        return torch.device("cpu")


class TorchResources(DeviceResources):
    """Per-channel tensors and kernel handles on a torch device."""

    name = "torch"

    def __init__(self, width: int, height: int, cfg: Optional[Config] = None):
        super().__init__(width, height, cfg)
        self.device: Optional[torch.device] = None
        self.program: Optional[Dict[str, Callable[..., None]]] = None
        self._kernels: Dict[Tuple[str, Channel], Callable[..., None]] = {}
        self._buffers: Dict[Tuple[str, Channel], torch.Tensor] = {}

    def _open_queue(self) -> None:
        self.device = choose_device(self.cfg.torch_device)
        logger.debug("Selected torch device %s", self.device)

    def _close_queue(self) -> None:
        if self.device is not None and self.device.type == "cuda":
            torch.cuda.synchronize(self.device)
        self.device = None

    def _build_program(self) -> None:
        self.program = dict(TORCH_KERNELS)

    def _release_program(self) -> None:
        self.program = None

    def _create_kernels(self) -> None:
        for channel in CHANNELS:
            for kernel in KERNEL_NAMES:
                if kernel not in self.program:
                    raise ProgramBuildError(f"torch program has no kernel '{kernel}'")
                self._kernels[(kernel, channel)] = self.program[kernel]

    def _release_kernels(self) -> None:
        self._kernels.clear()

    def _allocate_buffers(self) -> None:
        for channel in CHANNELS:
            for spec in BUFFER_LAYOUT:
                try:
                    self._buffers[(spec.name, channel)] = torch.zeros(
                        self.size_of(spec.domain), dtype=torch.float32, device=self.device
                    )
                except torch.cuda.OutOfMemoryError as exc:
                    raise AllocationError(f"cannot allocate device buffer {spec.name}[{channel.name}]") from exc
                except RuntimeError as exc:
                    raise BackendError(f"cannot create tensor {spec.name}[{channel.name}]: {exc}") from exc

    def _release_buffers(self) -> None:
        self._buffers.clear()
        if self.device is not None and self.device.type == "cuda":
            torch.cuda.empty_cache()

    def write(self, name: str, channel: Channel, host: np.ndarray) -> None:
        data = torch.from_numpy(np.ascontiguousarray(host, dtype=np.float32).reshape(-1))
        try:
            self._buffers[(name, channel)].copy_(data)
        except RuntimeError as exc:
            raise DispatchError(f"buffer write {name}[{channel.name}] failed: {exc}") from exc

    def read(self, name: str, channel: Channel, host: np.ndarray) -> None:
        try:
            data = self._buffers[(name, channel)].cpu().numpy()
        except RuntimeError as exc:
            raise DispatchError(f"buffer read {name}[{channel.name}] failed: {exc}") from exc
        np.copyto(host, data.reshape(host.shape))

    def enqueue(self, kernel: str, channel: Channel, buffers: Sequence[str], size: int) -> None:
        handle = self._kernels[(kernel, channel)]
        tensors = [self._buffers[(name, channel)][:size] for name in buffers]
        try:
            handle(*tensors)
        except RuntimeError as exc:
            raise DispatchError(f"kernel {kernel}[{channel.name}] failed: {exc}") from exc
        return None

    def wait(self, events: Sequence[None]) -> None:
        try:
            if self.device.type == "cuda":
                torch.cuda.synchronize(self.device)
            elif self.device.type == "mps":
                torch.mps.synchronize()
            elif self.device.type == "xpu":
                torch.xpu.synchronize(self.device)
        except RuntimeError as exc:
            raise DispatchError(f"device synchronize failed: {exc}") from exc
