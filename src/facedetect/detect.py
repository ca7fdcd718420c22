"""
detect.py - Multi-scale Haar cascade face detector (numpy).
gray frame → image pyramid → sliding 24×24 window → cascade stages → grouped boxes
Run: python -m facedetect.detect
Keys: q → quit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .cascade import HaarCascade, WeakClassifier, load_cascade
from .config import DetectorConfig, validate_detection_params
from .errors import ConfigurationError, InvalidFrameError
from .preprocess import preprocess, validate_frame

logger = logging.getLogger(__name__)


# ── Data ──
@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    def clip(self, frame_w: int, frame_h: int) -> "BoundingBox":
        x = min(max(self.x, 0), frame_w)
        y = min(max(self.y, 0), frame_h)
        x2 = min(max(self.x2, x), frame_w)
        y2 = min(max(self.y2, y), frame_h)
        return BoundingBox(x, y, x2 - x, y2 - y)

    def crop(self, image: np.ndarray) -> np.ndarray:
        return image[self.y:self.y2, self.x:self.x2]

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


class IntegralImage:
    """Summed-area tables of pixel values and squared values, padded by one row/column."""

    def __init__(self, gray: np.ndarray):
        g = gray.astype(np.float64)
        h, w = g.shape
        self.sum = np.zeros((h + 1, w + 1), dtype=np.float64)
        self.sqsum = np.zeros((h + 1, w + 1), dtype=np.float64)
        self.sum[1:, 1:] = g.cumsum(axis=0).cumsum(axis=1)
        self.sqsum[1:, 1:] = (g * g).cumsum(axis=0).cumsum(axis=1)

    @property
    def stride(self) -> int:
        return self.sum.shape[1]

    def rect_sum(self, x: int, y: int, w: int, h: int) -> float:
        s = self.sum
        return float(s[y + h, x + w] - s[y, x + w] - s[y + h, x] + s[y, x])


def _box_sums(flat: np.ndarray, base: np.ndarray, stride: int,
              x: int, y: int, w: int, h: int) -> np.ndarray:
    """Sum of the (x, y, w, h) rect relative to every window origin in `base`."""
    tl = y * stride + x
    tr = tl + w
    bl = (y + h) * stride + x
    br = bl + w
    return flat[base + br] - flat[base + tr] - flat[base + bl] + flat[base + tl]


# ── Grouping ──
def _similar(r: np.ndarray, others: np.ndarray, eps: float) -> np.ndarray:
    delta = eps * (np.minimum(r[2], others[:, 2]) + np.minimum(r[3], others[:, 3])) * 0.5
    return (
        (np.abs(r[0] - others[:, 0]) <= delta)
        & (np.abs(r[1] - others[:, 1]) <= delta)
        & (np.abs(r[0] + r[2] - others[:, 0] - others[:, 2]) <= delta)
        & (np.abs(r[1] + r[3] - others[:, 1] - others[:, 3]) <= delta)
    )


def _partition(rects: np.ndarray, eps: float) -> np.ndarray:
    """Union-find over the 'similar rectangles' relation; returns a class id per rect."""
    n = len(rects)
    parent = np.arange(n)

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i in range(n - 1):
        for j in np.flatnonzero(_similar(rects[i], rects[i + 1:], eps)) + i + 1:
            ri, rj = find(i), find(int(j))
            if ri != rj:
                parent[rj] = ri

    roots = np.array([find(i) for i in range(n)])
    _, labels = np.unique(roots, return_inverse=True)
    return labels


def group_rectangles(rects: Sequence[Tuple[int, int, int, int]], min_neighbors: int,
                     eps: float = 0.2) -> List[Tuple[Tuple[int, int, int, int], int]]:
    """
    Cluster raw multi-scale hits into one box per face.
    A cluster survives with at least `min_neighbors` members and is replaced by
    its average box. A survivor sitting inside a stronger survivor is dropped.
    Returns [((x, y, w, h), members), ...].
    """
    if len(rects) == 0:
        return []

    r = np.asarray(rects, dtype=np.float64).reshape(-1, 4)
    labels = _partition(r, eps)
    nclasses = int(labels.max()) + 1

    counts = np.bincount(labels, minlength=nclasses)
    sums = np.zeros((nclasses, 4), dtype=np.float64)
    np.add.at(sums, labels, r)
    avg = np.rint(sums / counts[:, None]).astype(np.int64)

    survivors = [i for i in range(nclasses) if counts[i] >= min_neighbors]
    out = []
    for i in survivors:
        x1, y1, w1, h1 = avg[i]
        n1 = counts[i]
        nested = False
        for j in survivors:
            if j == i:
                continue
            x2, y2, w2, h2 = avg[j]
            n2 = counts[j]
            dx = int(round(w2 * eps))
            dy = int(round(h2 * eps))
            if (x1 >= x2 - dx and y1 >= y2 - dy
                    and x1 + w1 <= x2 + w2 + dx and y1 + h1 <= y2 + h2 + dy
                    and (n2 > max(3, n1) or n1 < 3)):
                nested = True
                break
        if not nested:
            out.append(((int(x1), int(y1), int(w1), int(h1)), int(n1)))
    return out


# ── Detector ──
class CascadeDetector:
    """Sliding-window cascade evaluation, vectorised over all windows of a pyramid level."""

    def __init__(self, cascade: HaarCascade, config: Optional[DetectorConfig] = None):
        self.cascade = cascade
        self.config = config or DetectorConfig()

    @classmethod
    def from_config(cls, config: DetectorConfig) -> "CascadeDetector":
        return cls(load_cascade(config.cascade_path), config)

    # -- window evaluation --
    def _feature_values(self, feature_idx: int, flat: np.ndarray, base: np.ndarray,
                        stride: int) -> np.ndarray:
        rects = self.cascade.features[feature_idx].rects
        x, y, w, h, weight = rects[0]
        val = weight * _box_sums(flat, base, stride, x, y, w, h)
        for x, y, w, h, weight in rects[1:]:
            val += weight * _box_sums(flat, base, stride, x, y, w, h)
        return val

    def _eval_weak(self, weak: WeakClassifier, flat: np.ndarray, base: np.ndarray,
                   inv_nf: np.ndarray, stride: int) -> np.ndarray:
        if weak.is_stump:
            v = self._feature_values(int(weak.feature_idx[0]), flat, base, stride) * inv_nf
            child = np.where(v < weak.threshold[0], weak.left[0], weak.right[0])
            return weak.leaves[-child]

        vals = np.stack([
            self._feature_values(int(f), flat, base, stride) * inv_nf for f in weak.feature_idx
        ])
        n = base.size
        node = np.zeros(n, dtype=np.int64)
        out = np.empty(n, dtype=np.float64)
        active = np.arange(n)
        for _ in range(weak.left.size + 1):
            if active.size == 0:
                return out
            k = node[active]
            child = np.where(vals[k, active] < weak.threshold[k], weak.left[k], weak.right[k])
            leaf = child <= 0
            out[active[leaf]] = weak.leaves[-child[leaf]]
            node[active[~leaf]] = child[~leaf]
            active = active[~leaf]
        raise ConfigurationError("Cascade tree does not terminate in a leaf")

    def scan_level(self, gray: np.ndarray, step: int) -> Tuple[np.ndarray, np.ndarray]:
        """Run the cascade over every window position of one pyramid level; returns (xs, ys) of hits."""
        ww, wh = self.cascade.window
        H, W = gray.shape
        if W < ww or H < wh:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)

        ii = IntegralImage(gray)
        stride = ii.stride
        flat = ii.sum.ravel()
        flat_sq = ii.sqsum.ravel()

        ys, xs = np.meshgrid(np.arange(0, H - wh + 1, step), np.arange(0, W - ww + 1, step),
                             indexing="ij")
        base = (ys * stride + xs).ravel()

        # variance normalisation over the window interior
        area = float((ww - 2) * (wh - 2))
        s = _box_sums(flat, base, stride, 1, 1, ww - 2, wh - 2)
        sq = _box_sums(flat_sq, base, stride, 1, 1, ww - 2, wh - 2)
        nf2 = area * sq - s * s
        nf = np.sqrt(np.maximum(nf2, 0.0))

        # flat windows cannot hold a face
        if self.config.min_window_std > 0:
            keep = nf >= self.config.min_window_std * area
            base = base[keep]
            nf = nf[keep]
        inv_nf = 1.0 / np.where(nf > 0, nf, 1.0)

        for stage in self.cascade.stages:
            if base.size == 0:
                break
            total = np.zeros(base.size, dtype=np.float64)
            for weak in stage.classifiers:
                total += self._eval_weak(weak, flat, base, inv_nf, stride)
            passed = total >= stage.threshold
            base = base[passed]
            inv_nf = inv_nf[passed]

        hit_y, hit_x = np.divmod(base, stride)
        return hit_x, hit_y

    def detect_raw(self, gray: np.ndarray, scale_factor: float,
                   min_size: Tuple[int, int],
                   max_size: Optional[Tuple[int, int]]) -> List[Tuple[int, int, int, int]]:
        """Ungrouped hits from every pyramid level, in frame coordinates."""
        H, W = gray.shape
        ww, wh = self.cascade.window
        max_w, max_h = max_size if max_size is not None else (W, H)

        raw: List[Tuple[int, int, int, int]] = []
        factor = 1.0
        while True:
            win_w = int(round(ww * factor))
            win_h = int(round(wh * factor))
            sw = int(round(W / factor))
            sh = int(round(H / factor))
            if sw < ww or sh < wh:
                break
            if win_w > max_w or win_h > max_h or win_w > W or win_h > H:
                break
            if win_w >= min_size[0] and win_h >= min_size[1]:
                if factor == 1.0:
                    scaled = gray
                else:
                    scaled = cv2.resize(gray, (sw, sh), interpolation=cv2.INTER_LINEAR)
                step = self.config.scan_step if factor <= 2.0 else max(1, self.config.scan_step // 2)
                xs, ys = self.scan_level(scaled, step)
                ox = np.rint(xs * factor).astype(np.int64)
                oy = np.rint(ys * factor).astype(np.int64)
                raw.extend((int(x), int(y), win_w, win_h) for x, y in zip(ox, oy))
            factor *= scale_factor
        return raw

    def detect(self, gray: np.ndarray, scale_factor: Optional[float] = None,
               min_neighbors: Optional[int] = None,
               min_size: Optional[Tuple[int, int]] = None,
               max_size: Optional[Tuple[int, int]] = None) -> List[BoundingBox]:
        """
        Faces in a preprocessed gray frame, largest first.
        Empty input or no faces → [].
        """
        if gray is None or getattr(gray, "size", 0) == 0:
            return []
        gray = validate_frame(gray)
        if gray.ndim != 2:
            raise InvalidFrameError(f"Cascade detection needs a gray frame, got shape {gray.shape}")

        cfg = self.config
        scale_factor = cfg.scale_factor if scale_factor is None else scale_factor
        min_neighbors = cfg.min_neighbors if min_neighbors is None else min_neighbors
        min_size = cfg.min_size if min_size is None else tuple(min_size)
        max_size = cfg.max_size if max_size is None else tuple(max_size)
        validate_detection_params(scale_factor, min_neighbors, min_size, max_size)

        raw = self.detect_raw(gray, scale_factor, min_size, max_size)
        grouped = group_rectangles(raw, min_neighbors, cfg.group_eps)

        H, W = gray.shape
        boxes = [BoundingBox(*r).clip(W, H) for r, _ in grouped]
        boxes = [b for b in boxes if b.area > 0]
        boxes.sort(key=lambda b: b.area, reverse=True)
        logger.debug("detect: %d raw hits → %d faces", len(raw), len(boxes))
        return boxes


class FaceDetector:
    """Color or gray frame in, face boxes out (preprocessing included)."""

    def __init__(self, config: Optional[DetectorConfig] = None,
                 cascade: Optional[HaarCascade] = None):
        self.config = config or DetectorConfig()
        if cascade is None:
            cascade = load_cascade(self.config.cascade_path)
        self.cascade_detector = CascadeDetector(cascade, self.config)

    def detect(self, frame: np.ndarray, max_faces: Optional[int] = None,
               preprocessed: bool = False) -> List[BoundingBox]:
        if frame is None or getattr(frame, "size", 0) == 0:
            return []
        gray = frame if preprocessed else preprocess(frame)
        boxes = self.cascade_detector.detect(gray)
        if max_faces is not None:
            boxes = boxes[:max_faces]
        return boxes


def main():
    from .annotate import draw_faces

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    detector = FaceDetector()

    cap = cv2.VideoCapture(0)
    if not cap.isOpened():
        raise RuntimeError("Camera not opened. Try camera index 0/1/2.")

    print("Cascade face detect (numpy). Press 'q' to quit.")

    while True:
        ok, frame = cap.read()
        if not ok:
            print("Failed to read frame.")
            break

        boxes = detector.detect(frame)
        vis = frame.copy()
        draw_faces(vis, boxes)
        cv2.imshow("Face Detection", vis)

        if (cv2.waitKey(1) & 0xFF) == ord("q"):
            break

    cap.release()
    cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
