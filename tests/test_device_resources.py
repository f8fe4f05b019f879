import numpy as np
import pytest

from rl_deconvolute.backends import available_backends, get_backend
from rl_deconvolute.backends.base import BUFFER_LAYOUT, Domain
from rl_deconvolute.channels import Channel
from rl_deconvolute.config import Config
from rl_deconvolute.exceptions import AllocationError, BackendError, ConfigurationError


def _opencl_device_or_skip(device_type="all"):
    cl = pytest.importorskip("pyopencl")
    try:
        found = any(p.get_devices(device_type=cl.device_type.ALL) for p in cl.get_platforms())
    except cl.Error:
        found = False
    if not found:
        pytest.skip("no OpenCL platform available")
    return Config().with_overrides(backend="opencl", device_type=device_type)


def test_builtin_backends_are_listed():
    assert {"opencl", "torch"} <= set(available_backends())


def test_unknown_backend():
    with pytest.raises(ConfigurationError, match="Unknown backend"):
        get_backend("vulkan")


def test_buffer_sizes():
    backend = get_backend("torch")
    device = backend(6, 5, Config())
    assert device.size_of(Domain.SPATIAL) == 30
    assert device.size_of(Domain.SPECTRAL) == 6 * 3
    assert device.nbytes_of(Domain.SPECTRAL) == 6 * 3 * 4


def test_full_acquire_then_reverse_release(recording_backend):
    device = recording_backend(4, 4)
    device.acquire()
    assert device.acquired
    assert len(device._buffers) == 3 * len(BUFFER_LAYOUT)
    assert len(device._kernels) == 12

    device.release()
    device.release()

    assert recording_backend.events == [
        "acquire:queue",
        "acquire:program",
        "acquire:kernels",
        "acquire:buffers",
        "release:buffers",
        "release:kernels",
        "release:program",
        "release:queue",
    ]
    assert not device.acquired


@pytest.mark.parametrize(
    "step,expected_error,released",
    [
        ("queue", BackendError, ["release:queue"]),
        ("program", BackendError, ["release:program", "release:queue"]),
        ("kernels", BackendError, ["release:kernels", "release:program", "release:queue"]),
        ("buffers", AllocationError, ["release:buffers", "release:kernels", "release:program", "release:queue"]),
    ],
)
def test_partial_failure_rolls_back_in_reverse(recording_backend, step, expected_error, released):
    recording_backend.fail_at = step
    device = recording_backend(4, 4)

    with pytest.raises(expected_error):
        device.acquire()

    assert not device.acquired
    releases = [e for e in recording_backend.events if e.startswith("release:")]
    assert releases == released
    # the failed step's partial buffers are gone too
    assert device._buffers == {}


def test_double_acquire_rejected(recording_backend):
    with recording_backend(2, 2) as device:
        with pytest.raises(BackendError, match="already acquired"):
            device.acquire()


def test_torch_resources_round_trip(torch_config):
    backend = get_backend("torch")
    host = np.arange(12, dtype=np.float32).reshape(4, 3)
    back = np.zeros_like(host)

    with backend(4, 3, torch_config) as device:
        assert str(device.device) == "cpu"
        device.write("image_a", Channel.G, host)
        device.read("image_a", Channel.G, back)
        np.testing.assert_array_equal(back, host)
        # channels do not share storage
        device.read("image_a", Channel.R, back)
        np.testing.assert_array_equal(back, np.zeros_like(host))

    assert device.device is None
    assert device._buffers == {}


def test_torch_kernel_launch(torch_config):
    backend = get_backend("torch")
    a = np.full((2, 2), 3.0, dtype=np.float32)
    b = np.full((2, 2), 0.5, dtype=np.float32)
    out = np.zeros((2, 2), dtype=np.float32)

    with backend(2, 2, torch_config) as device:
        device.write("image_a", Channel.B, a)
        device.write("image_b", Channel.B, b)
        event = device.enqueue("mult", Channel.B, ("image_a", "image_b", "image_a"), device.spatial_size)
        device.wait([event])
        device.read("image_a", Channel.B, out)

    np.testing.assert_allclose(out, 1.5)


@pytest.mark.opencl
def test_opencl_acquire_release():
    cfg = _opencl_device_or_skip()
    backend = get_backend("opencl")
    host = np.linspace(0, 1, 20, dtype=np.float32).reshape(5, 4)
    back = np.zeros_like(host)

    with backend(5, 4, cfg) as device:
        assert len(device._kernels) == 12
        device.write("observed", Channel.R, host)
        device.read("observed", Channel.R, back)

    np.testing.assert_array_equal(back, host)
    assert device.queue is None
    assert device._buffers == {}


@pytest.mark.opencl
def test_opencl_build_failure_carries_log(tmp_path):
    from rl_deconvolute.exceptions import ProgramBuildError

    _opencl_device_or_skip()
    broken = tmp_path / "broken.cl"
    broken.write_text("__kernel void mult(__global float *a) { this is not C }\n")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(f"backend:\n  name: opencl\n  device_type: all\n  kernel_source: {broken}\n")

    device = get_backend("opencl")(4, 4, Config(config_file))
    with pytest.raises(ProgramBuildError) as excinfo:
        device.acquire()
    assert excinfo.value.build_log
    assert not device.acquired


@pytest.mark.parametrize("device_type", ["cpu", "xpu"])
def test_torch_wait_synchronizes_selected_device(monkeypatch, torch_config, device_type):
    import torch

    if device_type == "xpu" and not hasattr(torch, "xpu"):
        pytest.skip("torch build has no xpu module")
    calls = []
    if hasattr(torch, "xpu"):
        monkeypatch.setattr(torch.xpu, "synchronize", lambda device=None: calls.append(device))

    device = get_backend("torch")(2, 2, torch_config)
    device.device = torch.device(device_type)
    device.wait([None, None, None])

    assert calls == ([torch.device("xpu")] if device_type == "xpu" else [])
