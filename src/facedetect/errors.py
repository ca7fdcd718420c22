"""
errors.py - Exceptions raised by the detection / recognition core.

Per-image and per-face errors (DecodeError, DetectionMiss) are caught where
they happen and logged. Directory and gallery level errors
(ConfigurationError, TrainingDataError) reach the caller.
"""


class FaceDetectError(Exception):
    """Base class for every error raised by facedetect."""


class ConfigurationError(FaceDetectError):
    """Missing or invalid path, parameter, cascade or model file."""


class TrainingDataError(FaceDetectError):
    """Training produced no usable face."""


class DecodeError(FaceDetectError):
    """One image could not be loaded or decoded."""


class DetectionMiss(FaceDetectError):
    """No face was found in an image or region."""


class RecognitionUnavailable(FaceDetectError):
    """Recognition was requested but no gallery is loaded."""


class InvalidFrameError(FaceDetectError, ValueError):
    """Frame is None, empty, or has an unsupported dtype / shape."""
