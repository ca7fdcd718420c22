"""
cascade.py - Boosted Haar cascade model (OpenCV XML format).

Only the model is read from disk; evaluation lives in detect.py.
Supported: stageType BOOST, featureType HAAR, upright rectangles,
decision trees of any depth (stumps in the stock frontal-face models).
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"

# Stage thresholds are stored rounded; shave a hair off so borderline windows pass.
THRESHOLD_EPS = 1e-5


# ── Data ──
@dataclass(frozen=True)
class HaarFeature:
    # (x, y, w, h, weight) in base-window coordinates
    rects: Tuple[Tuple[int, int, int, int, float], ...]


@dataclass(frozen=True, eq=False)
class WeakClassifier:
    """
    Decision tree. Node i: go left if feature(feature_idx[i]) < threshold[i].
    A child index <= 0 is a leaf: leaves[-child].
    """
    left: np.ndarray          # (K,) int
    right: np.ndarray         # (K,) int
    feature_idx: np.ndarray   # (K,) int
    threshold: np.ndarray     # (K,) float64
    leaves: np.ndarray        # (K+1,) float64

    @property
    def is_stump(self) -> bool:
        return self.left.size == 1


@dataclass(frozen=True)
class Stage:
    threshold: float
    classifiers: Tuple[WeakClassifier, ...]


@dataclass(frozen=True)
class HaarCascade:
    window: Tuple[int, int]   # (w, h)
    stages: Tuple[Stage, ...]
    features: Tuple[HaarFeature, ...]

    @property
    def num_weak(self) -> int:
        return sum(len(s.classifiers) for s in self.stages)


def default_cascade_path() -> str:
    return cv2.data.haarcascades + DEFAULT_CASCADE


# ── XML helpers ──
def _numbers(node: Optional[ET.Element], what: str) -> List[float]:
    if node is None or node.text is None:
        raise ConfigurationError(f"Cascade is missing <{what}>")
    try:
        return [float(t) for t in node.text.split()]
    except ValueError as exc:
        raise ConfigurationError(f"Malformed <{what}>: {node.text.strip()[:60]}") from exc


def _scalar(parent: ET.Element, tag: str) -> float:
    vals = _numbers(parent.find(tag), tag)
    if len(vals) != 1:
        raise ConfigurationError(f"<{tag}> should hold one value, got {len(vals)}")
    return vals[0]


def _text(parent: ET.Element, tag: str) -> str:
    node = parent.find(tag)
    return node.text.strip() if node is not None and node.text else ""


def _parse_weak(node: ET.Element, num_features: int) -> WeakClassifier:
    internal = _numbers(node.find("internalNodes"), "internalNodes")
    leaves = _numbers(node.find("leafValues"), "leafValues")
    if not internal or len(internal) % 4 != 0:
        # categorical (LBP) splits carry subsets and are not Haar
        raise ConfigurationError("Unsupported weak classifier layout (expected 4 values per node)")

    nodes = np.array(internal, dtype=np.float64).reshape(-1, 4)
    left = nodes[:, 0].astype(np.int64)
    right = nodes[:, 1].astype(np.int64)
    feature_idx = nodes[:, 2].astype(np.int64)
    if feature_idx.min() < 0 or feature_idx.max() >= num_features:
        raise ConfigurationError("Weak classifier references an unknown feature")
    if max(left.max(), right.max()) >= len(nodes):
        raise ConfigurationError("Weak classifier references a node it does not have")
    if len(leaves) < -min(left.min(), right.min()) + 1:
        raise ConfigurationError("Weak classifier has fewer leaves than its nodes reference")

    return WeakClassifier(
        left=left,
        right=right,
        feature_idx=feature_idx,
        threshold=nodes[:, 3].copy(),
        leaves=np.array(leaves, dtype=np.float64),
    )


def _parse_feature(node: ET.Element, window: Tuple[int, int]) -> HaarFeature:
    if _text(node, "tilted") not in ("", "0"):
        raise ConfigurationError("Tilted Haar features are not supported")

    rects_node = node.find("rects")
    if rects_node is None:
        raise ConfigurationError("Feature without <rects>")

    rects = []
    W, H = window
    for r in rects_node.findall("_"):
        vals = _numbers(r, "rects/_")
        if len(vals) != 5:
            raise ConfigurationError(f"Rect should be 'x y w h weight', got {vals}")
        x, y, w, h = (int(v) for v in vals[:4])
        if x < 0 or y < 0 or w <= 0 or h <= 0 or x + w > W or y + h > H:
            raise ConfigurationError(f"Rect {vals[:4]} falls outside the {W}x{H} window")
        rects.append((x, y, w, h, float(vals[4])))
    if not rects:
        raise ConfigurationError("Feature has no rectangles")
    return HaarFeature(tuple(rects))


# ── Loader ──
def load_cascade(path: Union[str, Path, None] = None) -> HaarCascade:
    """Parse an OpenCV cascade XML. None loads the bundled frontal-face model."""
    if path is None:
        path = default_cascade_path()
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Cascade file not found: {path}")

    try:
        root = ET.parse(str(path)).getroot()
    except ET.ParseError as exc:
        raise ConfigurationError(f"Cascade file {path} is not valid XML: {exc}") from exc

    casc = root.find("cascade")
    if casc is None:
        raise ConfigurationError(
            f"{path.name}: no <cascade> node (old-style cascades are not supported)"
        )
    if _text(casc, "stageType") != "BOOST" or _text(casc, "featureType") != "HAAR":
        raise ConfigurationError(
            f"{path.name}: need stageType BOOST / featureType HAAR, got "
            f"{_text(casc, 'stageType')!r} / {_text(casc, 'featureType')!r}"
        )

    window = (int(_scalar(casc, "width")), int(_scalar(casc, "height")))

    features_node = casc.find("features")
    if features_node is None:
        raise ConfigurationError(f"{path.name}: no <features>")
    features = tuple(_parse_feature(f, window) for f in features_node.findall("_"))

    stages_node = casc.find("stages")
    if stages_node is None:
        raise ConfigurationError(f"{path.name}: no <stages>")

    stages = []
    for s in stages_node.findall("_"):
        weak_node = s.find("weakClassifiers")
        if weak_node is None:
            raise ConfigurationError(f"{path.name}: stage without <weakClassifiers>")
        classifiers = tuple(_parse_weak(w, len(features)) for w in weak_node.findall("_"))
        stages.append(Stage(_scalar(s, "stageThreshold") - THRESHOLD_EPS, classifiers))
    if not stages:
        raise ConfigurationError(f"{path.name}: cascade has no stages")

    cascade = HaarCascade(window=window, stages=tuple(stages), features=features)
    logger.info(
        "Loaded cascade %s: window %dx%d, %d stages, %d weak classifiers, %d features",
        path.name, window[0], window[1], len(cascade.stages), cascade.num_weak, len(features),
    )
    return cascade
