"""Configuration management for rl-deconvolute.

The main components are:
    Config: settings loaded from the packaged ``config.yaml`` and optional user overrides
    DEFAULT_CONFIG_PATH: location of the packaged defaults

Example:
    >>> from rl_deconvolute.config import Config
    >>> cfg = Config().with_overrides(backend="torch", iterations=20)
    >>> cfg.iterations
    20
"""

from .config import DEFAULT_CONFIG_PATH, KERNELS_DIR, Config, logger

__all__ = ["Config", "DEFAULT_CONFIG_PATH", "KERNELS_DIR", "logger"]
