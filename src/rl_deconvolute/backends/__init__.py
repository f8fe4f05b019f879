"""Compute backends and their registry."""

from __future__ import annotations

import importlib
from typing import Dict, Tuple, Type

from ..exceptions import BackendError, ConfigurationError
from .base import BUFFER_LAYOUT, KERNEL_NAMES, Access, BufferSpec, DeviceResources, Domain

# Built-in backends are imported on first use so that importing the package
# does not pull in pyopencl or torch.
_BUILTIN: Dict[str, Tuple[str, str]] = {
    "opencl": ("rl_deconvolute.backends.opencl", "OpenCLResources"),
    "torch": ("rl_deconvolute.backends.torch_backend", "TorchResources"),
}
_BACKENDS: Dict[str, Type[DeviceResources]] = {}


def register_backend(name: str, cls: Type[DeviceResources]) -> None:
    _BACKENDS[name] = cls


def get_backend(name: str = "opencl") -> Type[DeviceResources]:
    if name not in _BACKENDS and name in _BUILTIN:
        module_name, attr = _BUILTIN[name]
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            raise BackendError(f"backend '{name}' is unavailable: {exc}") from exc
        _BACKENDS[name] = getattr(module, attr)
    try:
        return _BACKENDS[name]
    except KeyError:
        known = sorted(set(_BACKENDS) | set(_BUILTIN))
        raise ConfigurationError(f"Unknown backend '{name}' (known: {', '.join(known)})") from None


def available_backends() -> Tuple[str, ...]:
    return tuple(sorted(set(_BACKENDS) | set(_BUILTIN)))


__all__ = [
    "Access",
    "BUFFER_LAYOUT",
    "BufferSpec",
    "DeviceResources",
    "Domain",
    "KERNEL_NAMES",
    "available_backends",
    "get_backend",
    "register_backend",
]
