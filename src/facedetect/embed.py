"""
Descriptor stage (LBPH)
camera → cascade box → crop gray face → resize 150×150 → LBP codes → per-cell histograms → viz
Run: python -m facedetect.embed
Keys: q → quit, p → print descriptor stats
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import RecognizerConfig
from .errors import InvalidFrameError
from .preprocess import to_gray

logger = logging.getLogger(__name__)

_EPS = float(np.finfo(np.float32).eps)


# ── Local binary patterns ──
def _neighbor_offsets(radius: int, neighbors: int):
    """Sample points on the circle, with bilinear weights over the 4 surrounding pixels."""
    for n in range(neighbors):
        x = radius * np.cos(2.0 * np.pi * n / neighbors)
        y = -radius * np.sin(2.0 * np.pi * n / neighbors)
        fx, fy = int(np.floor(x)), int(np.floor(y))
        cx, cy = int(np.ceil(x)), int(np.ceil(y))
        tx, ty = x - fx, y - fy
        w1 = (1 - tx) * (1 - ty)
        w2 = tx * (1 - ty)
        w3 = (1 - tx) * ty
        w4 = tx * ty
        yield n, (fx, fy, cx, cy), (w1, w2, w3, w4)


def lbp_image(gray: np.ndarray, radius: int = 1, neighbors: int = 8) -> np.ndarray:
    """
    Circular LBP code per pixel, shape (H - 2r, W - 2r).
    Bit n is set when the interpolated n-th neighbour is >= the centre.
    """
    if gray.ndim != 2:
        raise InvalidFrameError(f"LBP needs a single-channel image, got {gray.shape}")
    H, W = gray.shape
    if H <= 2 * radius or W <= 2 * radius:
        raise InvalidFrameError(f"Image {W}x{H} too small for LBP radius {radius}")

    src = gray.astype(np.float64)
    r = radius
    oh, ow = H - 2 * r, W - 2 * r
    center = src[r:r + oh, r:r + ow]
    codes = np.zeros((oh, ow), dtype=np.int64)

    def shifted(dx: int, dy: int) -> np.ndarray:
        return src[r + dy:r + dy + oh, r + dx:r + dx + ow]

    for n, (fx, fy, cx, cy), (w1, w2, w3, w4) in _neighbor_offsets(radius, neighbors):
        t = (w1 * shifted(fx, fy) + w2 * shifted(cx, fy)
             + w3 * shifted(fx, cy) + w4 * shifted(cx, cy))
        bit = (t > center) | (np.abs(t - center) < _EPS)
        codes |= bit.astype(np.int64) << n
    return codes


def spatial_histogram(codes: np.ndarray, bins: int, grid_x: int, grid_y: int) -> np.ndarray:
    """Row-major grid of per-cell code histograms, each normalised by its cell size."""
    H, W = codes.shape
    ch, cw = H // grid_y, W // grid_x
    if ch == 0 or cw == 0:
        raise InvalidFrameError(f"LBP image {W}x{H} too small for a {grid_x}x{grid_y} grid")

    cells = codes[:grid_y * ch, :grid_x * cw].reshape(grid_y, ch, grid_x, cw)
    cells = cells.transpose(0, 2, 1, 3).reshape(grid_y * grid_x, ch * cw)
    offsets = np.arange(grid_y * grid_x, dtype=np.int64)[:, None] * bins
    hist = np.bincount((cells + offsets).ravel(), minlength=grid_y * grid_x * bins)
    return (hist.astype(np.float64) / float(ch * cw)).astype(np.float32)


# ── Distances ──
def chi_square(a: np.ndarray, b: np.ndarray) -> float:
    """Σ 2(a-b)² / (a+b) over bins where a+b > 0. Lower = more similar."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    return float(chi_square_many(a[None, :], b)[0])


def chi_square_many(gallery: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Chi-square distance from `query` (D,) to each row of `gallery` (N, D)."""
    g = np.asarray(gallery, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64).ravel()
    diff = g - q
    total = g + q
    safe = np.where(total > _EPS, total, 1.0)
    terms = np.where(total > _EPS, 2.0 * diff * diff / safe, 0.0)
    return terms.sum(axis=1)


# ── Extractor ──
class LBPHExtractor:
    def __init__(self, config: Optional[RecognizerConfig] = None, debug: bool = False):
        self.config = config or RecognizerConfig()
        self.debug = debug
        self.bins = 1 << self.config.neighbors

        if debug:
            print("[LBPH] descriptor ready")
            print("  face size:", self.config.face_size)
            print("  grid:", (self.config.grid_x, self.config.grid_y), "bins:", self.bins)
            print("  dim:", self.dim)

    @property
    def dim(self) -> int:
        return self.config.grid_x * self.config.grid_y * self.bins

    @property
    def params(self) -> Tuple[int, int, int, int, int, int]:
        c = self.config
        return (c.radius, c.neighbors, c.grid_x, c.grid_y, c.face_size[0], c.face_size[1])

    def _canonical(self, face_gray: np.ndarray) -> np.ndarray:
        if face_gray is None or face_gray.size == 0:
            raise InvalidFrameError("Empty face region")
        if face_gray.ndim == 3:
            face_gray = to_gray(face_gray)
        fw, fh = self.config.face_size
        if face_gray.shape[:2] != (fh, fw):
            face_gray = cv2.resize(face_gray, (fw, fh))
        return face_gray

    def describe(self, face_gray: np.ndarray) -> np.ndarray:
        """Gray face crop (any size) → read-only float32 descriptor of length `dim`."""
        face = self._canonical(face_gray)
        c = self.config
        codes = lbp_image(face, c.radius, c.neighbors)
        desc = spatial_histogram(codes, self.bins, c.grid_x, c.grid_y)
        desc.setflags(write=False)
        return desc


# ── Visualisation ──
def code_image(face_gray: np.ndarray, extractor: "LBPHExtractor", size: int = 160) -> np.ndarray:
    """LBP code map of a face crop as a BGR thumbnail."""
    face = extractor._canonical(face_gray)
    c = extractor.config
    codes = lbp_image(face, c.radius, c.neighbors)
    codes = (codes * (255.0 / (extractor.bins - 1))).astype(np.uint8)
    return cv2.cvtColor(cv2.resize(codes, (size, size), interpolation=cv2.INTER_NEAREST),
                        cv2.COLOR_GRAY2BGR)


def cell_map(desc: np.ndarray, extractor: "LBPHExtractor", cell_px: int = 20) -> np.ndarray:
    """Grid cells colored by how many distinct codes each one uses (more = busier texture)."""
    c = extractor.config
    used = (desc.reshape(c.grid_y, c.grid_x, extractor.bins) > 0).sum(axis=2)
    scaled = (255.0 * used / max(1, used.max())).astype(np.uint8)
    heat = cv2.applyColorMap(scaled, cv2.COLORMAP_JET)
    return cv2.resize(heat, (c.grid_x * cell_px, c.grid_y * cell_px), interpolation=cv2.INTER_NEAREST)


def paste(dst: np.ndarray, tile: np.ndarray, x: int, y: int) -> None:
    h, w = tile.shape[:2]
    if x >= 0 and y >= 0 and y + h <= dst.shape[0] and x + w <= dst.shape[1]:
        dst[y:y + h, x:x + w] = tile


def main():
    from .annotate import draw_status
    from .detect import FaceDetector
    from .preprocess import preprocess

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    cap = cv2.VideoCapture(0)
    if not cap.isOpened():
        print("Camera not opened. Try camera index 0/1/2.")
        return

    detector = FaceDetector()
    extractor = LBPHExtractor(debug=True)
    last: Optional[np.ndarray] = None
    print("LBPH descriptor demo. q = quit, p = print descriptor stats")

    frames, fps, t0 = 0, 0.0, time.time()
    while True:
        ok, frame = cap.read()
        if not ok:
            break

        gray = preprocess(frame)
        boxes = detector.detect(gray, max_faces=1, preprocessed=True)
        vis = frame.copy()
        W = vis.shape[1]

        lines = []
        if boxes:
            face = boxes[0].crop(gray)
            desc = extractor.describe(face)
            lines.append(f"dim {desc.size}, non-zero bins {int(np.count_nonzero(desc))}")
            if last is not None:
                lines.append(f"chi-square to previous frame: {chi_square(last, desc):.1f}")
            last = desc
            paste(vis, code_image(face, extractor), W - 170, 10)
            paste(vis, cell_map(desc, extractor), W - 170, 180)
        else:
            lines.append("No face detected")

        frames += 1
        if time.time() - t0 >= 1.0:
            fps = frames / (time.time() - t0)
            frames, t0 = 0, time.time()
        lines.append(f"FPS: {fps:.1f}")

        draw_status(vis, lines)
        cv2.imshow("LBPH Descriptor", vis)

        key = cv2.waitKey(1) & 0xFF
        if key == ord("q"):
            break
        if key == ord("p") and last is not None:
            cells = last.reshape(-1, extractor.bins)
            print(f"dim={last.size} min={last.min():.4f} max={last.max():.4f} "
                  f"cell sums={np.round(cells.sum(axis=1)[:4], 4).tolist()}...")

    cap.release()
    cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
