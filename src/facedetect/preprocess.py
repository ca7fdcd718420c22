"""
preprocess.py - Grayscale conversion + histogram equalization.
color frame → gray (BT.601 weights) → equalized gray, same H×W.
"""

from __future__ import annotations

import numpy as np

from .errors import InvalidFrameError

# BGR order, BT.601 luma
_GRAY_WEIGHTS = np.array([0.114, 0.587, 0.299], dtype=np.float64)


def validate_frame(frame) -> np.ndarray:
    if frame is None:
        raise InvalidFrameError("Frame is None")
    if not isinstance(frame, np.ndarray):
        raise InvalidFrameError(f"Frame must be a numpy array, got {type(frame).__name__}")
    if frame.size == 0:
        raise InvalidFrameError("Frame is empty")
    if frame.dtype != np.uint8:
        raise InvalidFrameError(f"Frame must be uint8, got {frame.dtype}")
    if frame.ndim == 2:
        return frame
    if frame.ndim == 3 and frame.shape[2] in (1, 3, 4):
        return frame
    raise InvalidFrameError(f"Unsupported frame shape {frame.shape}")


def to_gray(frame: np.ndarray) -> np.ndarray:
    """BGR / BGRA / single-channel → new (H, W) uint8 array."""
    frame = validate_frame(frame)
    if frame.ndim == 2:
        return frame.copy()
    if frame.shape[2] == 1:
        return frame[:, :, 0].copy()

    bgr = frame[:, :, :3].astype(np.float64)
    gray = bgr @ _GRAY_WEIGHTS
    return np.clip(np.rint(gray), 0, 255).astype(np.uint8)


def equalize_hist(gray: np.ndarray) -> np.ndarray:
    """
    Spread the gray-level histogram over 0..255.
    The lowest occupied level maps to 0; a single-level image is returned as-is.
    """
    gray = validate_frame(gray)
    if gray.ndim != 2:
        raise InvalidFrameError(f"equalize_hist needs a single-channel image, got {gray.shape}")

    hist = np.bincount(gray.ravel(), minlength=256)
    total = gray.size
    first = int(np.flatnonzero(hist)[0])
    if hist[first] == total:
        return gray.copy()

    scale = 255.0 / (total - hist[first])
    cdf = np.cumsum(hist)
    lut = np.rint((cdf - hist[first]) * scale)
    lut[:first] = 0
    lut = np.clip(lut, 0, 255).astype(np.uint8)
    return lut[gray]


def preprocess(frame: np.ndarray) -> np.ndarray:
    """Color (or gray) frame → equalized gray frame of identical H×W."""
    return equalize_hist(to_gray(frame))
