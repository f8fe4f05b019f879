"""Configuration loading for rl-deconvolute.

This module provides:
- YAML config loading with packaged defaults
- Typed accessors for run, backend and transform settings
- Per-run overrides via cloning
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from rl_deconvolute.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
KERNELS_DIR = Path(__file__).resolve().parents[1] / "backends" / "kernels"

_PLANNER_EFFORTS = ("FFTW_ESTIMATE", "FFTW_MEASURE", "FFTW_PATIENT", "FFTW_EXHAUSTIVE")
_DEVICE_TYPES = ("gpu", "cpu", "accelerator", "all")


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Settings for a deconvolution run.

    The packaged ``config.yaml`` is always loaded first; a user file, when
    given, is merged over it section by section. Constructing a Config from
    another Config makes an in-memory copy without touching the disk.

    Attributes:
        verbose (bool): Emit DEBUG-level progress from the run controller.
    """

    def __init__(self, path: "Path | str | Config" = "", verbose: Optional[bool] = False):
        if isinstance(path, Config):
            self.__dict__.update(copy.deepcopy(path.__dict__))
            return

        self.verbose = bool(verbose)
        self._config = _load_yaml(DEFAULT_CONFIG_PATH)
        self._config_path: Optional[Path] = None
        if path != "":
            self._config_path = Path(path)
            self._config = _merge(self._config, _load_yaml(self._config_path))
            logger.debug("Loaded configuration overrides from %s", self._config_path)
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._config.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
        return section

    def _validate(self) -> None:
        # Touch every accessor once so a bad file fails at load time.
        _ = (
            self.iterations,
            self.output_path,
            self.backend,
            self.device_type,
            self.kernel_source,
            self.torch_device,
            self.planner_effort,
            self.fft_threads,
        )

    @property
    def iterations(self) -> int:
        try:
            value = int(self._section("run").get("iterations", 10))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"run.iterations must be an integer: {exc}") from exc
        if value < 0:
            raise ConfigurationError(f"run.iterations must be >= 0, got {value}")
        return value

    @property
    def output_path(self) -> Path:
        return Path(str(self._section("run").get("output", "deconvoluted_image.tif")))

    @property
    def backend(self) -> str:
        return str(self._section("backend").get("name", "opencl")).lower()

    @property
    def device_type(self) -> str:
        value = str(self._section("backend").get("device_type", "gpu")).lower()
        if value not in _DEVICE_TYPES:
            raise ConfigurationError(
                f"backend.device_type must be one of {', '.join(_DEVICE_TYPES)}, got '{value}'"
            )
        return value

    @property
    def kernel_source(self) -> Path:
        """Kernel source file; relative names resolve against the packaged kernels."""
        source = Path(str(self._section("backend").get("kernel_source", "arithmetic.cl")))
        return source if source.is_absolute() else KERNELS_DIR / source

    @property
    def torch_device(self) -> Optional[str]:
        value = self._section("backend").get("torch_device") or ""
        return str(value) or None

    @property
    def planner_effort(self) -> str:
        value = str(self._section("transform").get("planner_effort", "FFTW_MEASURE")).upper()
        if value not in _PLANNER_EFFORTS:
            raise ConfigurationError(
                f"transform.planner_effort must be one of {', '.join(_PLANNER_EFFORTS)}, got '{value}'"
            )
        return value

    @property
    def fft_threads(self) -> int:
        try:
            value = int(self._section("transform").get("threads", 1))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"transform.threads must be an integer: {exc}") from exc
        if value < 1:
            raise ConfigurationError(f"transform.threads must be >= 1, got {value}")
        return value

    def with_overrides(
        self,
        *,
        iterations: Optional[int] = None,
        output: Optional[Path | str] = None,
        backend: Optional[str] = None,
        device_type: Optional[str] = None,
        torch_device: Optional[str] = None,
        planner_effort: Optional[str] = None,
        verbose: Optional[bool] = None,
    ) -> "Config":
        """Return a cloned Config with the given settings replaced.

        Arguments left as None keep the current values.
        """
        new_cfg = Config(self)
        if iterations is not None:
            new_cfg._config.setdefault("run", {})["iterations"] = iterations
        if output is not None:
            new_cfg._config.setdefault("run", {})["output"] = str(output)
        if backend is not None:
            new_cfg._config.setdefault("backend", {})["name"] = backend
        if device_type is not None:
            new_cfg._config.setdefault("backend", {})["device_type"] = device_type
        if torch_device is not None:
            new_cfg._config.setdefault("backend", {})["torch_device"] = torch_device
        if planner_effort is not None:
            new_cfg._config.setdefault("transform", {})["planner_effort"] = planner_effort
        if verbose is not None:
            new_cfg.verbose = bool(verbose)
        new_cfg._validate()
        return new_cfg
