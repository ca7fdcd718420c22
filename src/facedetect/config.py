"""
config.py - Configuration dataclasses for detection, recognition and the live app.

Every tunable lives here: cascade parameters, LBPH grid, confidence bands,
file locations and camera settings. Modules receive the relevant dataclass
instead of hard-coding values. `load_config` overlays a YAML file on the
defaults; unknown keys are ignored.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class DetectorConfig:
    """
    Cascade detector parameters.

    Attributes
    ----------
    cascade_path : Optional[str]
        OpenCV-format Haar cascade XML. None selects the frontal-face model
        bundled with opencv-python.
    scale_factor : float
        Pyramid step between scales, must be > 1.0.
    min_neighbors : int
        Raw hits a group needs to survive clustering (>= 1).
    min_size, max_size : (w, h)
        Window size limits in frame pixels. max_size None means the frame.
    group_eps : float
        Relative tolerance used when clustering raw hits.
    min_window_std : float
        Windows flatter than this (gray-level std) are rejected up front.
    scan_step : int
        Window stride in pixels at each pyramid level up to 2x downscale;
        coarser levels use half of it (at least 1). Larger is faster but can
        miss faces.
    """

    cascade_path: Optional[str] = None
    scale_factor: float = 1.1
    min_neighbors: int = 3
    min_size: Tuple[int, int] = (30, 30)
    max_size: Optional[Tuple[int, int]] = None
    group_eps: float = 0.2
    min_window_std: float = 1.0
    scan_step: int = 2

    def __post_init__(self):
        self.min_size = tuple(int(v) for v in self.min_size)
        if self.max_size is not None:
            self.max_size = tuple(int(v) for v in self.max_size)
        validate_detection_params(self.scale_factor, self.min_neighbors,
                                  self.min_size, self.max_size)
        if self.group_eps <= 0:
            raise ConfigurationError(f"group_eps must be > 0, got {self.group_eps}")
        if self.min_window_std < 0:
            raise ConfigurationError(f"min_window_std must be >= 0, got {self.min_window_std}")
        if int(self.scan_step) < 1:
            raise ConfigurationError(f"scan_step must be >= 1, got {self.scan_step}")
        self.scan_step = int(self.scan_step)


def validate_detection_params(scale_factor: float, min_neighbors: int,
                              min_size: Tuple[int, int],
                              max_size: Optional[Tuple[int, int]]) -> None:
    if not scale_factor > 1.0:
        raise ConfigurationError(f"scale_factor must be > 1.0, got {scale_factor}")
    if int(min_neighbors) != min_neighbors or min_neighbors < 1:
        raise ConfigurationError(f"min_neighbors must be an integer >= 1, got {min_neighbors}")
    if len(min_size) != 2 or min(min_size) < 0:
        raise ConfigurationError(f"min_size must be two non-negative ints, got {min_size}")
    if max_size is not None:
        if len(max_size) != 2 or min(max_size) <= 0:
            raise ConfigurationError(f"max_size must be two positive ints, got {max_size}")
        if max_size[0] < min_size[0] or max_size[1] < min_size[1]:
            raise ConfigurationError(f"max_size {max_size} is smaller than min_size {min_size}")


@dataclass
class RecognizerConfig:
    """LBPH descriptor layout and match acceptance."""

    radius: int = 1
    neighbors: int = 8
    grid_x: int = 8
    grid_y: int = 8
    face_size: Tuple[int, int] = (150, 150)   # (w, h) canonical face crop
    threshold: float = math.inf               # distances above this → Unknown

    def __post_init__(self):
        self.face_size = tuple(int(v) for v in self.face_size)
        if self.radius < 1:
            raise ConfigurationError(f"radius must be >= 1, got {self.radius}")
        if not 1 <= self.neighbors <= 16:
            raise ConfigurationError(f"neighbors must be in [1, 16], got {self.neighbors}")
        if self.grid_x < 1 or self.grid_y < 1:
            raise ConfigurationError(f"grid must be >= 1x1, got {self.grid_x}x{self.grid_y}")
        fw, fh = self.face_size
        if fw - 2 * self.radius < self.grid_x or fh - 2 * self.radius < self.grid_y:
            raise ConfigurationError(
                f"face_size {self.face_size} too small for radius {self.radius} "
                f"and grid {self.grid_x}x{self.grid_y}"
            )
        self.threshold = float(self.threshold)
        if self.threshold < 0:
            raise ConfigurationError(f"threshold must be >= 0, got {self.threshold}")


@dataclass
class BandConfig:
    """
    Distance bands used when annotating recognitions.
    Lower distance = better match:
      < excellent          → excellent
      [excellent, good)    → good
      [good, weak)         → weak / maybe
      >= weak              → unknown
    """

    excellent: float = 35.0
    good: float = 65.0
    weak: float = 100.0

    def __post_init__(self):
        if not 0 <= self.excellent < self.good < self.weak:
            raise ConfigurationError(
                f"bands must satisfy 0 <= excellent < good < weak, got "
                f"{self.excellent}/{self.good}/{self.weak}"
            )


@dataclass
class PathsConfig:
    training_dir: str = "training_data"
    model_path: str = "face_recognizer_model.npz"
    names_path: str = "face_names_map.json"


@dataclass
class CameraConfig:
    index: int = 0
    width: int = 640
    height: int = 480
    fps: int = 30

    def __post_init__(self):
        if self.fps <= 0:
            raise ConfigurationError(f"fps must be > 0, got {self.fps}")

    @property
    def tick_interval(self) -> float:
        return 1.0 / float(self.fps)


@dataclass
class AppConfig:
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    recognizer: RecognizerConfig = field(default_factory=RecognizerConfig)
    bands: BandConfig = field(default_factory=BandConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)


# ── YAML loading ──
_SECTIONS = {
    "detector": DetectorConfig,
    "recognizer": RecognizerConfig,
    "bands": BandConfig,
    "paths": PathsConfig,
    "camera": CameraConfig,
}


def _section_from_dict(cls, data: Dict[str, Any]):
    """Build a section from known keys only; unknown keys are logged and ignored."""
    known = set(cls.__dataclass_fields__)
    kwargs = {}
    for k, v in data.items():
        if k in known:
            kwargs[k] = v
        else:
            logger.warning("Ignoring unknown config key %s.%s", cls.__name__, k)
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid {cls.__name__} values: {exc}") from exc


def config_from_mapping(raw: Dict[str, Any]) -> AppConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config root must be a mapping, got: {type(raw).__name__}")

    sections = {}
    for name, cls in _SECTIONS.items():
        data = raw.get(name) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        sections[name] = _section_from_dict(cls, data)
    return AppConfig(**sections)


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    """
    Load a YAML config file and map it onto AppConfig.
    None returns the built-in defaults.
    """
    if path is None:
        return AppConfig()

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file {path} is not valid YAML: {exc}") from exc

    cfg = config_from_mapping(raw)
    logger.info(
        "Config loaded from %s | scale_factor=%.2f, min_neighbors=%d, grid=%dx%d, camera=%d",
        path,
        cfg.detector.scale_factor,
        cfg.detector.min_neighbors,
        cfg.recognizer.grid_x,
        cfg.recognizer.grid_y,
        cfg.camera.index,
    )
    return cfg
