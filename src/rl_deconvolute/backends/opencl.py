"""OpenCL compute backend built on pyopencl."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pyopencl as cl

from ..channels import CHANNELS, Channel
from ..config import Config
from ..exceptions import AllocationError, BackendError, DeviceNotFound, DispatchError, ProgramBuildError
from .base import BUFFER_LAYOUT, KERNEL_NAMES, Access, DeviceResources

logger = logging.getLogger(__name__)

DEVICE_TYPES = {
    "gpu": cl.device_type.GPU,
    "cpu": cl.device_type.CPU,
    "accelerator": cl.device_type.ACCELERATOR,
    "all": cl.device_type.ALL,
}


def select_device(device_type: str = "gpu") -> cl.Device:
    """Return the first device of ``device_type`` on the first platform that has one.

    Raises:
        DeviceNotFound: no platform, or no platform offers such a device.
    """
    try:
        platforms = cl.get_platforms()
    except cl.Error as exc:
        raise DeviceNotFound(f"No OpenCL platform available: {exc}") from exc

    for platform in platforms:
        try:
            devices = platform.get_devices(device_type=DEVICE_TYPES[device_type])
        except cl.Error as exc:
            logger.debug("Platform %s has no %s device (%s)", platform.name, device_type, exc)
            continue
        if devices:
            logger.debug("Selected OpenCL device %s on %s", devices[0].name, platform.name)
            return devices[0]
    raise DeviceNotFound(f"No OpenCL {device_type} device found")


def build_program(context: cl.Context, device: cl.Device, source_path: Path) -> cl.Program:
    """Compile the kernel source at ``source_path`` for ``device``.

    Raises:
        BackendError: the source cannot be read.
        ProgramBuildError: compilation failed; carries the device build log.
    """
    try:
        source = Path(source_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise BackendError(f"could not read kernel source {source_path}: {exc}") from exc

    try:
        program = cl.Program(context, source)
    except cl.Error as exc:
        raise BackendError(f"clCreateProgramWithSource failed: {exc}") from exc

    try:
        return program.build(devices=[device])
    except cl.Error as exc:
        try:
            build_log = program.get_build_info(device, cl.program_build_info.LOG)
        except cl.Error:
            build_log = str(exc)
        raise ProgramBuildError(f"clBuildProgram failed for {source_path}", build_log=build_log) from exc


class OpenCLResources(DeviceResources):
    """Context, queue, program, 12 kernel handles and per-channel buffers on an OpenCL device."""

    name = "opencl"

    def __init__(self, width: int, height: int, cfg: Optional[Config] = None):
        super().__init__(width, height, cfg)
        self.device: Optional[cl.Device] = None
        self.context: Optional[cl.Context] = None
        self.queue: Optional[cl.CommandQueue] = None
        self.program: Optional[cl.Program] = None
        self._kernels: Dict[Tuple[str, Channel], cl.Kernel] = {}
        self._buffers: Dict[Tuple[str, Channel], cl.Buffer] = {}

    def _open_queue(self) -> None:
        self.device = select_device(self.cfg.device_type)
        try:
            self.context = cl.Context(devices=[self.device])
            self.queue = cl.CommandQueue(self.context, self.device)
        except cl.Error as exc:
            raise BackendError(f"cannot create OpenCL context/queue on {self.device.name}: {exc}") from exc

    def _close_queue(self) -> None:
        if self.queue is not None:
            try:
                self.queue.finish()
            except cl.Error as exc:
                logger.warning("Draining the OpenCL queue failed: %s", exc)
        self.queue = None
        self.context = None
        self.device = None

    def _build_program(self) -> None:
        self.program = build_program(self.context, self.device, self.cfg.kernel_source)

    def _release_program(self) -> None:
        self.program = None

    def _create_kernels(self) -> None:
        for channel in CHANNELS:
            for kernel in KERNEL_NAMES:
                try:
                    self._kernels[(kernel, channel)] = cl.Kernel(self.program, kernel)
                except cl.Error as exc:
                    raise BackendError(f"clCreateKernel failed for '{kernel}': {exc}") from exc

    def _release_kernels(self) -> None:
        self._kernels.clear()

    def _allocate_buffers(self) -> None:
        for channel in CHANNELS:
            for spec in BUFFER_LAYOUT:
                flags = cl.mem_flags.READ_ONLY if spec.access is Access.READ_ONLY else cl.mem_flags.READ_WRITE
                try:
                    self._buffers[(spec.name, channel)] = cl.Buffer(
                        self.context, flags, size=self.nbytes_of(spec.domain)
                    )
                except cl.MemoryError as exc:
                    raise AllocationError(f"cannot allocate device buffer {spec.name}[{channel.name}]") from exc
                except cl.Error as exc:
                    raise BackendError(f"clCreateBuffer failed for {spec.name}[{channel.name}]: {exc}") from exc

    def _release_buffers(self) -> None:
        while self._buffers:
            key, buffer = self._buffers.popitem()
            try:
                buffer.release()
            except cl.Error as exc:
                logger.warning("Releasing device buffer %s[%s] failed: %s", key[0], key[1].name, exc)

    def write(self, name: str, channel: Channel, host: np.ndarray) -> None:
        data = np.ascontiguousarray(host, dtype=np.float32)
        try:
            cl.enqueue_copy(self.queue, self._buffers[(name, channel)], data, is_blocking=True)
        except cl.Error as exc:
            raise DispatchError(f"buffer write {name}[{channel.name}] failed: {exc}") from exc

    def read(self, name: str, channel: Channel, host: np.ndarray) -> None:
        try:
            cl.enqueue_copy(self.queue, host, self._buffers[(name, channel)], is_blocking=True)
        except cl.Error as exc:
            raise DispatchError(f"buffer read {name}[{channel.name}] failed: {exc}") from exc

    def enqueue(self, kernel: str, channel: Channel, buffers: Sequence[str], size: int) -> cl.Event:
        handle = self._kernels[(kernel, channel)]
        try:
            handle.set_args(*(self._buffers[(name, channel)] for name in buffers))
        except cl.Error as exc:
            raise DispatchError(f"clSetKernelArg failed for {kernel}[{channel.name}]: {exc}") from exc
        try:
            return cl.enqueue_nd_range_kernel(self.queue, handle, (size,), None)
        except cl.Error as exc:
            raise DispatchError(f"clEnqueueNDRangeKernel failed for {kernel}[{channel.name}]: {exc}") from exc

    def wait(self, events: Sequence[cl.Event]) -> None:
        pending: List[cl.Event] = [e for e in events if e is not None]
        if not pending:
            return
        try:
            cl.wait_for_events(pending)
        except cl.Error as exc:
            raise DispatchError(f"clWaitForEvents failed: {exc}") from exc
