"""
recognize.py - LBPH matching against the trained gallery
gray face crop → LBPH descriptor → chi-square to every gallery descriptor → best label
Run: python -m facedetect.recognize photo.jpg [photo2.jpg ...]
Prints one line per detected face: box, label, name, distance, band.
"""

from __future__ import annotations

import argparse
import enum
import logging
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .config import BandConfig, RecognizerConfig, load_config
from .embed import LBPHExtractor, chi_square_many
from .errors import ConfigurationError, FaceDetectError, RecognitionUnavailable
from .gallery import Gallery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionResult:
    label: int
    distance: float
    name: str

    @property
    def is_known(self) -> bool:
        return self.label >= 0


UNKNOWN = RecognitionResult(-1, math.inf, "Unknown")


class Band(enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    WEAK = "weak"
    UNKNOWN = "unknown"


def confidence_band(distance: float, bands: Optional[BandConfig] = None) -> Band:
    bands = bands or BandConfig()
    if distance < bands.excellent:
        return Band.EXCELLENT
    if distance < bands.good:
        return Band.GOOD
    if distance < bands.weak:
        return Band.WEAK
    return Band.UNKNOWN


# ── Matcher ──
class FaceRecognizer:
    """
    Nearest-neighbour LBPH recognizer.
    The gallery is read-only; retraining swaps the whole reference at once.
    """

    def __init__(self, extractor: Optional[LBPHExtractor] = None,
                 config: Optional[RecognizerConfig] = None,
                 gallery: Optional[Gallery] = None):
        self.config = config or (extractor.config if extractor else RecognizerConfig())
        self.extractor = extractor or LBPHExtractor(self.config)
        self._lock = threading.Lock()
        self._gallery: Optional[Gallery] = None
        if gallery is not None:
            self.swap_gallery(gallery)

    @property
    def gallery(self) -> Optional[Gallery]:
        return self._gallery

    def is_gallery_loaded(self) -> bool:
        g = self._gallery
        return g is not None and not g.is_empty

    def check_compatible(self, gallery: Gallery) -> None:
        if gallery.is_empty:
            return
        if tuple(gallery.params) != self.extractor.params:
            raise ConfigurationError(
                f"Gallery was trained with LBPH params {tuple(gallery.params)}, "
                f"recognizer uses {self.extractor.params}"
            )
        if gallery.dim != self.extractor.dim:
            raise ConfigurationError(
                f"Gallery descriptors have {gallery.dim} bins, expected {self.extractor.dim}"
            )

    def swap_gallery(self, gallery: Optional[Gallery]) -> Optional[Gallery]:
        """Install `gallery` (None unloads); returns the previous one."""
        if gallery is not None:
            self.check_compatible(gallery)
        with self._lock:
            previous, self._gallery = self._gallery, gallery
        return previous

    def load(self, model_path, names_path) -> bool:
        """Load a persisted gallery. Missing or bad files leave the recognizer unloaded."""
        try:
            gallery = Gallery.load(model_path, names_path)
            self.swap_gallery(gallery)
        except ConfigurationError as exc:
            logger.warning("No usable model loaded: %s", exc)
            self.swap_gallery(None)
            return False
        logger.info("Model loaded: %d descriptors, %d identities", len(gallery), len(gallery.names))
        return self.is_gallery_loaded()

    def match(self, descriptor: np.ndarray, gallery: Optional[Gallery] = None) -> RecognitionResult:
        """Best gallery match for a descriptor. Raises RecognitionUnavailable without a gallery."""
        g = gallery if gallery is not None else self._gallery
        if g is None or g.is_empty:
            raise RecognitionUnavailable("No gallery loaded")

        dists = chi_square_many(g.descriptors, descriptor)
        best = int(np.argmin(dists))
        best_dist = float(dists[best])
        if best_dist > self.config.threshold:
            return RecognitionResult(-1, best_dist, "Unknown")

        label = int(g.labels[best])
        return RecognitionResult(label, best_dist, g.name_for(label))

    def recognize(self, face_region: np.ndarray, gallery: Optional[Gallery] = None) -> RecognitionResult:
        """Gray face crop → result. Never raises: any failure yields UNKNOWN."""
        g = gallery if gallery is not None else self._gallery
        if g is None or g.is_empty or face_region is None or face_region.size == 0:
            return UNKNOWN
        try:
            return self.match(self.extractor.describe(face_region), g)
        except (FaceDetectError, cv2.error, ValueError) as exc:
            logger.debug("Recognition failed for one face: %s", exc)
            return UNKNOWN


def main():
    from .context import FaceContext
    from .preprocess import preprocess

    parser = argparse.ArgumentParser(description="Recognize faces in still images.")
    parser.add_argument("images", nargs="+", type=Path)
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    cfg = load_config(args.config)
    ctx = FaceContext.from_config(cfg)
    if not ctx.is_gallery_loaded():
        print("Model not found. Run facedetect-train first.")
        return

    for path in args.images:
        img = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if img is None:
            print(f"{path}: cannot decode")
            continue
        gray = preprocess(img)
        boxes = ctx.detector.detect(gray, preprocessed=True)
        if not boxes:
            print(f"{path}: no face")
            continue
        for box in boxes:
            res = ctx.recognize(box.crop(gray))
            band = confidence_band(res.distance, cfg.bands)
            print(f"{path}: {box.as_tuple()} label={res.label} name={res.name} "
                  f"dist={res.distance:.1f} ({band.value})")


if __name__ == "__main__":
    main()
