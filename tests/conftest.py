from pathlib import Path

import cv2
import numpy as np
import pytest

from facedetect.cascade import HaarCascade, HaarFeature, Stage, WeakClassifier
from facedetect.config import AppConfig, PathsConfig
from facedetect.detect import BoundingBox


def stump(feature_idx, threshold, left_leaf, right_leaf):
    return WeakClassifier(
        left=np.array([0]),
        right=np.array([-1]),
        feature_idx=np.array([feature_idx]),
        threshold=np.array([threshold], dtype=np.float64),
        leaves=np.array([left_leaf, right_leaf], dtype=np.float64),
    )


@pytest.fixture
def edge_cascade():
    """One-stage cascade that fires on windows brighter on the left than on the right."""
    feature = HaarFeature(rects=((0, 0, 24, 24, -1.0), (0, 0, 12, 24, 2.0)))
    stage = Stage(threshold=0.0, classifiers=(stump(0, 0.1, -1.0, 1.0),))
    return HaarCascade(window=(24, 24), stages=(stage,), features=(feature,))


@pytest.fixture
def edge_image():
    img = np.full((100, 100), 50, dtype=np.uint8)
    img[:, :50] = 200
    return img


class FullFrameDetector:
    """Stands in for the cascade: every frame is one face."""

    def detect(self, frame, max_faces=None, preprocessed=False):
        h, w = frame.shape[:2]
        return [BoundingBox(0, 0, w, h)]


class NoFaceDetector:
    def detect(self, frame, max_faces=None, preprocessed=False):
        return []


class FixedBoxesDetector:
    def __init__(self, boxes):
        self.boxes = list(boxes)

    def detect(self, frame, max_faces=None, preprocessed=False):
        return list(self.boxes)


@pytest.fixture
def full_frame_detector():
    return FullFrameDetector()


@pytest.fixture
def no_face_detector():
    return NoFaceDetector()


def texture(seed, shape=(150, 150)):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 200, size=shape, dtype=np.uint8)


def write_person(root: Path, name: str, base: np.ndarray, count: int = 15):
    """count photos of one 'person': the same texture under different brightness offsets."""
    person = root / name
    person.mkdir(parents=True)
    for k in range(count):
        cv2.imwrite(str(person / f"{k + 1}.png"), base + np.uint8(k))
    return person


@pytest.fixture
def alice_base():
    return texture(1)


@pytest.fixture
def bob_base():
    return texture(2)


@pytest.fixture
def training_root(tmp_path, alice_base, bob_base):
    root = tmp_path / "training_data"
    write_person(root, "Alice", alice_base)
    write_person(root, "Bob", bob_base)
    return root


@pytest.fixture
def app_config(tmp_path, training_root):
    return AppConfig(paths=PathsConfig(
        training_dir=str(training_root),
        model_path=str(tmp_path / "model" / "face_recognizer_model.npz"),
        names_path=str(tmp_path / "model" / "face_names_map.json"),
    ))
