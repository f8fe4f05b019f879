"""Run controller and public API for the rl_deconvolute.pipeline package."""

from __future__ import annotations

from .base import RunContext, RunState, Stage
from .orchestrator import RunController, deconvolve_file
from .stages import (
    ArrayImages,
    DeviceStage,
    FileImages,
    ImageStage,
    TransformStage,
    clamp_output,
    quantize16,
)

__all__ = [
    "ArrayImages",
    "DeviceStage",
    "FileImages",
    "ImageStage",
    "RunContext",
    "RunController",
    "RunState",
    "Stage",
    "TransformStage",
    "clamp_output",
    "deconvolve_file",
    "quantize16",
]
