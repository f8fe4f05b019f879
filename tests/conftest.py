import sys
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest
import tifffile
from PIL import Image

# Ensure the repository's src directory is importable for package imports
_REPO_ROOT = Path(__file__).resolve().parents[1]
_SRC = _REPO_ROOT / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from rl_deconvolute.backends import register_backend  # noqa: E402
from rl_deconvolute.backends.base import BUFFER_LAYOUT, KERNEL_NAMES, DeviceResources  # noqa: E402
from rl_deconvolute.channels import CHANNELS  # noqa: E402
from rl_deconvolute.config import Config  # noqa: E402
from rl_deconvolute.exceptions import AllocationError, BackendError, DispatchError  # noqa: E402


def _np_complex_mult(a_re, a_im, b_re, b_im, out_re, out_im):
    re = a_re * b_re - a_im * b_im
    im = a_re * b_im + a_im * b_re
    out_re[:] = re
    out_im[:] = im


def _np_complex_conj_mult(a_re, a_im, b_re, b_im, out_re, out_im):
    re = a_re * b_re + a_im * b_im
    im = a_im * b_re - a_re * b_im
    out_re[:] = re
    out_im[:] = im


NUMPY_KERNELS = {
    "mult": lambda a, b, out: np.multiply(a, b, out=out),
    "divide": lambda n, d, out: np.divide(n, d, out=out),
    "complex_mult": _np_complex_mult,
    "complex_conj_mult": _np_complex_conj_mult,
}


class RecordingResources(DeviceResources):
    """Host-memory backend that records every acquire/release.

    ``fail_at`` names a setup step (queue, program, kernels, buffers) or a
    primitive (write, read, enqueue) that raises on its next use.
    """

    name = "recording"
    events: List[str] = []
    fail_at: Optional[str] = None

    def __init__(self, width, height, cfg=None):
        super().__init__(width, height, cfg)
        self._buffers = {}
        self._kernels = {}

    def _setup(self, step):
        self.events.append(f"acquire:{step}")
        if self.fail_at == step:
            if step == "buffers":
                raise AllocationError("injected buffer allocation failure")
            raise BackendError(f"injected failure at {step}")

    def _open_queue(self):
        self._setup("queue")

    def _close_queue(self):
        self.events.append("release:queue")

    def _build_program(self):
        self._setup("program")

    def _release_program(self):
        self.events.append("release:program")

    def _create_kernels(self):
        self._setup("kernels")
        for channel in CHANNELS:
            for kernel in KERNEL_NAMES:
                self._kernels[(kernel, channel)] = NUMPY_KERNELS[kernel]

    def _release_kernels(self):
        self._kernels.clear()
        self.events.append("release:kernels")

    def _allocate_buffers(self):
        for channel in CHANNELS:
            for spec in BUFFER_LAYOUT:
                self._buffers[(spec.name, channel)] = np.zeros(self.size_of(spec.domain), dtype=np.float32)
        self._setup("buffers")

    def _release_buffers(self):
        self._buffers.clear()
        self.events.append("release:buffers")

    def write(self, name, channel, host):
        if self.fail_at == "write":
            raise DispatchError(f"injected write failure on {name}")
        self._buffers[(name, channel)][:] = np.asarray(host, dtype=np.float32).reshape(-1)

    def read(self, name, channel, host):
        if self.fail_at == "read":
            raise DispatchError(f"injected read failure on {name}")
        np.copyto(host, self._buffers[(name, channel)].reshape(host.shape))

    def enqueue(self, kernel, channel, buffers, size):
        if self.fail_at == "enqueue":
            raise DispatchError(f"injected launch failure of {kernel}")
        with np.errstate(divide="ignore", invalid="ignore"):
            self._kernels[(kernel, channel)](*[self._buffers[(name, channel)][:size] for name in buffers])
        return (kernel, channel)

    def wait(self, events):
        self.events.append(f"wait:{len(events)}")


@pytest.fixture
def recording_backend():
    """A fresh RecordingResources subclass registered as backend 'recording'."""

    class Recording(RecordingResources):
        events: List[str] = []
        fail_at: Optional[str] = None

    register_backend("recording", Recording)
    return Recording


@pytest.fixture
def recording_config():
    return Config().with_overrides(backend="recording", planner_effort="FFTW_ESTIMATE")


@pytest.fixture
def torch_config():
    return Config().with_overrides(backend="torch", torch_device="cpu", planner_effort="FFTW_ESTIMATE")


@pytest.fixture
def make_tiff16(tmp_path):
    """Factory writing an ``(height, width, 3)`` uint16 array as an RGB TIFF."""

    def _make(hwc: np.ndarray, name: str = "input.tif") -> Path:
        path = tmp_path / name
        tifffile.imwrite(path, np.asarray(hwc, dtype=np.uint16), photometric="rgb", planarconfig="contig")
        return path

    return _make


@pytest.fixture
def make_psf8(tmp_path):
    """Factory writing an ``(height, width, 3)`` uint8 array as an RGB PNG."""

    def _make(hwc: np.ndarray, name: str = "psf.png") -> Path:
        path = tmp_path / name
        Image.fromarray(np.asarray(hwc, dtype=np.uint8)).save(path)
        return path

    return _make
