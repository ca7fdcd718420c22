"""
pipeline.py - Per-frame orchestration.
frame → preprocess → detect → (recognize each face) → annotated copy of the frame

The caller owns the event loop: it hands a frame to `on_frame` on every tick
and shows the returned image. Nothing here assumes a particular UI toolkit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

from .annotate import draw_faces, draw_recognition_label
from .config import BandConfig
from .context import FaceContext, TrainResult
from .detect import BoundingBox
from .errors import FaceDetectError, InvalidFrameError
from .preprocess import preprocess
from .recognize import RecognitionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceAnnotation:
    box: BoundingBox
    result: Optional[RecognitionResult] = None


@dataclass
class AnnotatedFrame:
    image: np.ndarray
    faces: List[FaceAnnotation] = field(default_factory=list)
    index: int = 0


class FramePipeline:
    def __init__(self, context: FaceContext, bands: Optional[BandConfig] = None,
                 recognition_enabled: bool = False):
        self.context = context
        self.bands = bands or context.config.bands
        self._recognition_enabled = False
        self.frame_count = 0
        if recognition_enabled:
            self.set_recognition(True)

    # ── Recognition toggle ──
    @property
    def recognition_enabled(self) -> bool:
        return self._recognition_enabled

    def set_recognition(self, enabled: bool) -> bool:
        """Enable/disable recognition. Enabling without a trained model is refused."""
        if enabled and not self.context.is_gallery_loaded():
            logger.warning(
                "No recognition model found. Put photos in %s/<person>/ "
                "(10-20 clear photos each) and retrain.",
                self.context.config.paths.training_dir,
            )
            self._recognition_enabled = False
            return False
        self._recognition_enabled = enabled
        return enabled

    def reset(self) -> None:
        self.frame_count = 0

    # ── Per frame ──
    def on_frame(self, frame: np.ndarray) -> AnnotatedFrame:
        try:
            gray = preprocess(frame)
        except InvalidFrameError as exc:
            logger.debug("Dropping malformed frame: %s", exc)
            image = frame.copy() if isinstance(frame, np.ndarray) else np.zeros((0, 0, 3), np.uint8)
            return AnnotatedFrame(image=image, faces=[], index=self.frame_count)

        self.frame_count += 1
        boxes = self.context.detector.detect(gray, preprocessed=True)

        vis = frame.copy()
        if vis.ndim == 2:
            vis = cv2.cvtColor(vis, cv2.COLOR_GRAY2BGR)
        elif vis.shape[2] == 4:
            vis = cv2.cvtColor(vis, cv2.COLOR_BGRA2BGR)
        draw_faces(vis, boxes)

        # read once; a retrain during this frame does not change what we match against
        gallery = self.context.recognizer.gallery
        recognize = self._recognition_enabled and gallery is not None and not gallery.is_empty

        faces: List[FaceAnnotation] = []
        fw, fh = self.context.config.recognizer.face_size
        for box in boxes:
            if not recognize:
                faces.append(FaceAnnotation(box))
                continue
            try:
                face = cv2.resize(box.crop(gray), (fw, fh))
                result = self.context.recognizer.recognize(face, gallery)
                draw_recognition_label(vis, box, result, self.bands)
                faces.append(FaceAnnotation(box, result))
            except (FaceDetectError, cv2.error, ValueError) as exc:
                logger.warning("Recognition failed for face at %s: %s", box.as_tuple(), exc)
                faces.append(FaceAnnotation(box))

        return AnnotatedFrame(image=vis, faces=faces, index=self.frame_count)

    def retrain(self, root_dir: Union[str, Path, None] = None) -> TrainResult:
        result = self.context.train(root_dir)
        if not result.ok:
            logger.error("Retrain failed: %s", result.reason)
        return result
