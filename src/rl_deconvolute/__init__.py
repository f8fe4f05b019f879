"""rl_deconvolute package public API surface.

Richardson-Lucy deconvolution of 16-bit RGB images with an RGB point spread
function. The FFTs run on the host; the elementwise steps run on an OpenCL
device or, alternatively, through PyTorch. The stable user-facing API is the
``deconvolute`` CLI.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Keep the public surface minimal; backends are imported on first use.
from . import config, exceptions, pipeline
from .exceptions import DeconvolutionError
from .pipeline import RunController, deconvolve_file

__all__ = ["__version__", "config", "exceptions", "pipeline", "DeconvolutionError", "RunController", "deconvolve_file"]
