"""
enroll.py - Training tool
training_data/<person>/*.jpg → detect face → 150×150 gray crop → LBPH descriptor → gallery
Run: python -m facedetect.enroll                  (train from training_data/)
     python -m facedetect.enroll --capture Alice  (collect photos from the webcam first)
Capture controls:
  SPACE = save one photo
  a     = toggle auto-capture
  q     = quit
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple, Union

import cv2
import numpy as np

from .annotate import draw_faces, draw_status
from .config import AppConfig, PathsConfig, load_config
from .detect import FaceDetector
from .embed import LBPHExtractor
from .errors import (
    ConfigurationError,
    DecodeError,
    DetectionMiss,
    FaceDetectError,
    TrainingDataError,
)
from .gallery import Gallery
from .preprocess import preprocess

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp")


# ── Discovery ──
def iter_identity_dirs(root: Path) -> List[Path]:
    """Immediate subdirectories, sorted by name."""
    return sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name)


def iter_image_files(person_dir: Path) -> List[Path]:
    return sorted(
        (p for p in person_dir.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS),
        key=lambda p: p.name,
    )


# ── Report ──
@dataclass
class TrainingReport:
    gallery: Gallery
    identities: Dict[int, str]
    images_seen: int = 0
    faces_used: int = 0
    skipped: List[Tuple[Path, str]] = field(default_factory=list)

    def summary(self) -> str:
        return (f"{len(self.identities)} identities, {self.faces_used}/{self.images_seen} "
                f"images used, {len(self.skipped)} skipped")


# ── Trainer ──
class FaceTrainer:
    def __init__(self, detector: FaceDetector, extractor: LBPHExtractor):
        self.detector = detector
        self.extractor = extractor

    def extract_face(self, image_path: Path) -> np.ndarray:
        """
        One image → one descriptor.
        Raises DecodeError (unreadable) or DetectionMiss (no face).
        """
        color = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        if color is None or color.size == 0:
            raise DecodeError(f"Cannot decode {image_path}")

        gray = preprocess(color)
        boxes = self.detector.detect(gray, max_faces=1, preprocessed=True)
        if not boxes:
            raise DetectionMiss(f"No face in {image_path}")

        fw, fh = self.extractor.config.face_size
        face = cv2.resize(boxes[0].crop(gray), (fw, fh))
        return self.extractor.describe(face)

    def build_gallery(self, root: Union[str, Path]) -> TrainingReport:
        root = Path(root)
        if not root.is_dir():
            raise ConfigurationError(
                f"Training data folder '{root}' not found. Create it and add one "
                f"subfolder per person with their photos."
            )

        person_dirs = iter_identity_dirs(root)
        if not person_dirs:
            raise ConfigurationError(
                f"No person directories found in '{root}'. Create subfolders for each "
                f"person (e.g. '{root}/Alice/', '{root}/Bob/')."
            )

        descriptors: List[np.ndarray] = []
        labels: List[int] = []
        names: Dict[int, str] = {}
        images_seen = 0
        skipped: List[Tuple[Path, str]] = []

        label = 0
        for person_dir in person_dirs:
            images = iter_image_files(person_dir)
            if not images:
                logger.warning("Skipping %s: no image files", person_dir.name)
                continue

            names[label] = person_dir.name
            used = 0
            for path in images:
                images_seen += 1
                try:
                    descriptors.append(self.extract_face(path))
                    labels.append(label)
                    used += 1
                except (DecodeError, DetectionMiss) as exc:
                    logger.info("Skipped %s: %s", path.name, exc)
                    skipped.append((path, str(exc)))
                except (FaceDetectError, cv2.error, ValueError) as exc:
                    logger.warning("Skipped %s: unexpected error: %s", path, exc)
                    skipped.append((path, str(exc)))

            logger.info("Label %d = %s: %d/%d images used", label, person_dir.name, used, len(images))
            label += 1

        if not names:
            raise ConfigurationError(
                f"No person directory in '{root}' contains image files. Add photos "
                f"to each person's folder (e.g. '{root}/Alice/1.jpg')."
            )
        if not descriptors:
            raise TrainingDataError(
                "No faces were extracted from training images. "
                "Make sure the photos contain clear, visible faces."
            )

        gallery = Gallery.from_samples(descriptors, labels, names, self.extractor.params)
        return TrainingReport(
            gallery=gallery,
            identities=names,
            images_seen=images_seen,
            faces_used=len(descriptors),
            skipped=skipped,
        )

    def train(self, root: Union[str, Path], model_path: Union[str, Path],
              names_path: Union[str, Path]) -> TrainingReport:
        """Build the gallery and persist it, replacing any previous model. Nothing is written on failure."""
        report = self.build_gallery(root)
        report.gallery.save(model_path, names_path)
        logger.info("Training complete: %s", report.summary())
        return report


# ── Photo capture ──
def capture_lines(name: str, count: int, needed: int, auto: bool, msg: str = "") -> List[str]:
    lines = [
        f"Capturing {name}: {count}/{needed} saved",
        f"auto-capture {'on' if auto else 'off'} (a)   SPACE = save   q = done",
    ]
    return [msg] + lines if msg else lines


def capture_photos(name: str, paths: PathsConfig, detector: FaceDetector,
                   cam_index: int = 0, samples_needed: int = 15,
                   auto_every_s: float = 0.4) -> int:
    """Save webcam frames that contain a face into training_data/<name>/. Returns photos saved."""
    person_dir = Path(paths.training_dir) / name
    person_dir.mkdir(parents=True, exist_ok=True)

    cap = cv2.VideoCapture(cam_index)
    if not cap.isOpened():
        print(f"Cannot open camera {cam_index}; set camera.index in the config.")
        return 0

    saved = len(iter_image_files(person_dir))
    auto = False
    last_auto = 0.0
    msg = f"{saved} existing photos." if saved else ""

    print(f"Capturing photos of {name} into {person_dir}. Vary angle, expression and lighting a little between shots.")

    while True:
        ok, frame = cap.read()
        if not ok:
            break

        boxes = detector.detect(frame, max_faces=1)
        vis = frame.copy()
        draw_faces(vis, boxes, color=(0, 255, 0), thickness=2)

        now = time.time()
        key = cv2.waitKey(1) & 0xFF
        want = key == ord(" ") or (auto and now - last_auto >= auto_every_s)
        if want:
            if boxes:
                cv2.imwrite(str(person_dir / f"{int(now * 1000)}.jpg"), frame)
                saved += 1
                last_auto = now
                msg = f"Captured ({saved})"
            elif key == ord(" "):
                msg = "No face → not captured"

        draw_status(vis, capture_lines(name, saved, samples_needed, auto, msg))
        cv2.imshow("capture", vis)

        if key == ord("q"):
            break
        elif key == ord("a"):
            auto = not auto
            msg = f"Auto {'ON' if auto else 'OFF'}"

    cap.release()
    cv2.destroyAllWindows()
    return saved


def main():
    parser = argparse.ArgumentParser(description="Train the face recognizer from a folder of photos.")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--training-dir", default=None)
    parser.add_argument("--model", default=None, help="output model (.npz)")
    parser.add_argument("--names", default=None, help="output label→name map (.json)")
    parser.add_argument("--capture", metavar="NAME", default=None,
                        help="collect webcam photos for NAME before training")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        cfg: AppConfig = load_config(args.config)
    except ConfigurationError as exc:
        print(f"Config error: {exc}")
        return

    paths = cfg.paths
    training_dir = args.training_dir or paths.training_dir
    model_path = args.model or paths.model_path
    names_path = args.names or paths.names_path

    try:
        detector = FaceDetector(cfg.detector)
    except ConfigurationError as exc:
        print(f"Failed to load cascade:\n{exc}")
        return

    if args.capture:
        name = args.capture.strip()
        if not name:
            print("--capture needs a non-empty name.")
            return
        capture_paths = PathsConfig(training_dir=training_dir, model_path=model_path,
                                    names_path=names_path)
        capture_photos(name, capture_paths, detector, cfg.camera.index)

    trainer = FaceTrainer(detector, LBPHExtractor(cfg.recognizer))
    try:
        report = trainer.train(training_dir, model_path, names_path)
    except (ConfigurationError, TrainingDataError) as exc:
        print(f"Training failed: {exc}")
        return

    print(f"Training completed: {report.summary()}")
    for label, name in sorted(report.identities.items()):
        print(f"  {label}: {name}")
    print(f"Model saved to {model_path}, names to {names_path}")


if __name__ == "__main__":
    main()
