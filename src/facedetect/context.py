"""
context.py - Owns every stateful piece of the core: detector, extractor,
recognizer (and its gallery) and trainer. Front ends build one FaceContext
and pass it around instead of relying on module globals.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from .config import AppConfig
from .detect import BoundingBox, FaceDetector
from .embed import LBPHExtractor
from .enroll import FaceTrainer, TrainingReport
from .errors import ConfigurationError, TrainingDataError
from .recognize import FaceRecognizer, RecognitionResult

logger = logging.getLogger(__name__)


@dataclass
class TrainResult:
    ok: bool
    reason: str = ""
    report: Optional[TrainingReport] = None


class FaceContext:
    def __init__(self, config: AppConfig, detector: FaceDetector,
                 extractor: LBPHExtractor, recognizer: FaceRecognizer,
                 trainer: FaceTrainer):
        self.config = config
        self.detector = detector
        self.extractor = extractor
        self.recognizer = recognizer
        self.trainer = trainer
        self._train_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None, load_model: bool = True,
                    detector: Optional[FaceDetector] = None) -> "FaceContext":
        config = config or AppConfig()
        detector = detector or FaceDetector(config.detector)
        extractor = LBPHExtractor(config.recognizer)
        recognizer = FaceRecognizer(extractor, config.recognizer)
        ctx = cls(config, detector, extractor, recognizer, FaceTrainer(detector, extractor))
        if load_model:
            ctx.reload()
        return ctx

    # ── Core operations ──
    def is_gallery_loaded(self) -> bool:
        return self.recognizer.is_gallery_loaded()

    def detect(self, frame: np.ndarray) -> List[BoundingBox]:
        return self.detector.detect(frame)

    def recognize(self, face_region: np.ndarray) -> RecognitionResult:
        return self.recognizer.recognize(face_region)

    def reload(self) -> bool:
        paths = self.config.paths
        return self.recognizer.load(paths.model_path, paths.names_path)

    def train(self, root_dir: Union[str, Path, None] = None) -> TrainResult:
        """
        Build and persist a new gallery, then swap it in.
        On any failure the current gallery stays in effect and nothing is written.
        """
        if not self._train_lock.acquire(blocking=False):
            return TrainResult(False, "training already in progress")
        try:
            paths = self.config.paths
            root = root_dir if root_dir is not None else paths.training_dir
            try:
                report = self.trainer.build_gallery(root)
                self.recognizer.check_compatible(report.gallery)
                report.gallery.save(paths.model_path, paths.names_path)
                self.recognizer.swap_gallery(report.gallery)
            except (ConfigurationError, TrainingDataError) as exc:
                logger.error("Training failed: %s", exc)
                return TrainResult(False, str(exc))
            except OSError as exc:
                logger.error("Training failed while saving the model: %s", exc)
                return TrainResult(False, f"could not save model: {exc}")

            logger.info("Training complete: %s", report.summary())
            return TrainResult(True, "", report)
        finally:
            self._train_lock.release()
