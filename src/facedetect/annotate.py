"""
annotate.py - Drawing helpers for boxes, recognition labels and status text.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import BandConfig
from .detect import BoundingBox
from .recognize import Band, RecognitionResult, confidence_band

BOX_COLOR = (255, 0, 0)   # blue (BGR)

BAND_COLORS = {
    Band.EXCELLENT: (0, 255, 0),     # green
    Band.GOOD: (0, 255, 255),        # yellow
    Band.WEAK: (0, 165, 255),        # orange
    Band.UNKNOWN: (0, 0, 255),       # red
}


def label_text(result: RecognitionResult, bands: Optional[BandConfig] = None) -> Tuple[str, Band]:
    band = confidence_band(result.distance, bands)
    if band is Band.UNKNOWN or not result.is_known:
        return f"Unknown ({result.distance:.0f})", Band.UNKNOWN
    if band is Band.WEAK:
        return f"{result.name}? ({result.distance:.0f})", band
    return f"{result.name} ({result.distance:.0f})", band


def draw_faces(image: np.ndarray, boxes: Iterable[BoundingBox],
               color=BOX_COLOR, thickness: int = 3) -> None:
    for b in boxes:
        cv2.rectangle(image, (b.x, b.y), (b.x2, b.y2), color, thickness)


def draw_recognition_label(image: np.ndarray, box: BoundingBox, result: RecognitionResult,
                           bands: Optional[BandConfig] = None) -> Band:
    text, band = label_text(result, bands)
    origin = (box.x, max(box.y - 10, 12))
    cv2.putText(image, text, origin, cv2.FONT_HERSHEY_SIMPLEX, 0.5, BAND_COLORS[band], 2)
    return band


def draw_status(image: np.ndarray, lines: Sequence[str], origin=(10, 20)) -> None:
    x, y = origin
    for line in lines:
        cv2.putText(image, line, (x + 1, y + 1), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 0), 3)
        cv2.putText(image, line, (x, y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
        y += 20
