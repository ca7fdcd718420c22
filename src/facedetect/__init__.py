"""facedetect - real-time face detection (Haar cascade) and recognition (LBPH) in numpy."""

from .config import AppConfig, load_config
from .context import FaceContext, TrainResult
from .detect import BoundingBox, FaceDetector
from .errors import (
    ConfigurationError,
    DecodeError,
    DetectionMiss,
    FaceDetectError,
    InvalidFrameError,
    RecognitionUnavailable,
    TrainingDataError,
)
from .gallery import Gallery
from .pipeline import AnnotatedFrame, FramePipeline
from .recognize import UNKNOWN, FaceRecognizer, RecognitionResult

__version__ = "0.1.0"
