from __future__ import annotations

from typing import Optional


class DeconvolutionError(Exception):
    """Base class for rl-deconvolute exceptions."""


class ConfigurationError(DeconvolutionError):
    """Raised when configuration loading fails or a run parameter is invalid."""


class ImageIOError(DeconvolutionError):
    """Raised when an image or PSF file cannot be read or written."""


class ImageFormatError(ImageIOError):
    """Raised when a file decodes but its channel/bit-depth layout is wrong."""


class AllocationError(DeconvolutionError):
    pass


class TransformError(DeconvolutionError):
    pass


class BackendError(DeconvolutionError):
    """Raised when the compute backend cannot be brought up."""


class DeviceNotFound(BackendError):
    pass


class ProgramBuildError(BackendError):
    """Raised when the kernel program fails to compile; carries the build log."""

    def __init__(self, message: str, build_log: str = ""):
        super().__init__(message)
        self.build_log = build_log

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}\n{self.build_log}" if self.build_log else base


class DispatchError(BackendError):
    """Raised when a buffer transfer or kernel launch does not succeed."""


class StageError(DeconvolutionError):
    """Raised by the run controller; names the stage that failed."""

    def __init__(self, state, cause: Optional[BaseException] = None):
        self.state = state
        self.cause = cause
        name = getattr(state, "value", state)
        super().__init__(f"{name}: {cause}" if cause is not None else str(name))
