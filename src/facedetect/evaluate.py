"""
evaluate.py - Distance threshold suggestion
training_data/<person>/* → LBPH descriptors (same extraction as training)
→ same-person vs different-person chi-square distances → FAR/FRR sweep
Run: python -m facedetect.evaluate --target-far 0.01
"""

from __future__ import annotations

import argparse
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import load_config
from .detect import FaceDetector
from .embed import LBPHExtractor, chi_square
from .enroll import FaceTrainer, iter_identity_dirs, iter_image_files
from .errors import ConfigurationError, DecodeError, DetectionMiss, FaceDetectError

logger = logging.getLogger(__name__)


# ── Config ──
@dataclass
class EvalConfig:
    training_dir: Path = Path("training_data")
    min_imgs_per_person: int = 5
    max_imgs_per_person: int = 80
    target_far: float = 0.01                        # 1% FAR
    thresholds: tuple = (5.0, 200.0, 1.0)           # start, stop, step for distance sweep


# ── Helpers ──
def load_descriptors_for_person(trainer: FaceTrainer, person_dir: Path,
                                cfg: EvalConfig) -> List[np.ndarray]:
    descriptors = []
    for path in iter_image_files(person_dir)[:cfg.max_imgs_per_person]:
        try:
            descriptors.append(trainer.extract_face(path))
        except (DecodeError, DetectionMiss) as exc:
            logger.info("Skipped %s: %s", path.name, exc)
        except (FaceDetectError, cv2.error, ValueError) as exc:
            logger.warning("Skipped %s: unexpected error: %s", path, exc)
    return descriptors


def pairwise_distances(descs_a: Sequence[np.ndarray], descs_b: Sequence[np.ndarray],
                       same_person: bool) -> List[float]:
    """Unordered pairs within descs_a (same_person) or every a×b pair."""
    if same_person:
        pairs = itertools.combinations(descs_a, 2)
    else:
        pairs = itertools.product(descs_a, descs_b)
    return [chi_square(a, b) for a, b in pairs]


def describe(arr: np.ndarray) -> str:
    if arr.size == 0:
        return "n=0"
    return (
        f"n={arr.size:5d}  mean={arr.mean():.2f}  std={arr.std():.2f}  "
        f"p05={np.percentile(arr, 5):.2f}  p50={np.percentile(arr, 50):.2f}  "
        f"p95={np.percentile(arr, 95):.2f}"
    )


def sweep_thresholds(genuine: np.ndarray, impostor: np.ndarray,
                     cfg: EvalConfig) -> List[Tuple[float, float, float]]:
    """(threshold, FAR, FRR) for every threshold in cfg.thresholds, stop included."""
    start, stop, step = cfg.thresholds
    thr = np.arange(start, stop + 1e-8, step)
    # a pair is accepted when its distance is at or below the threshold
    far = (impostor[None, :] <= thr[:, None]).mean(axis=1) if impostor.size else np.zeros(thr.size)
    frr = (genuine[None, :] > thr[:, None]).mean(axis=1) if genuine.size else np.zeros(thr.size)
    return [(float(t), float(a), float(r)) for t, a, r in zip(thr, far, frr)]


def recommend_threshold(results: Sequence[Tuple[float, float, float]],
                        target_far: float) -> Optional[Tuple[float, float, float]]:
    """Lowest FRR among thresholds with FAR <= target; ties go to the smaller threshold."""
    ok = [r for r in results if r[1] <= target_far]
    if not ok:
        return None
    return min(ok, key=lambda r: (r[2], r[0]))


def collect(trainer: FaceTrainer, cfg: EvalConfig) -> Dict[str, List[np.ndarray]]:
    """Descriptors per identity; identities with too few usable faces are left out."""
    if not cfg.training_dir.is_dir():
        raise ConfigurationError(f"Training directory missing: {cfg.training_dir}")

    per_person: Dict[str, List[np.ndarray]] = {}
    for pdir in iter_identity_dirs(cfg.training_dir):
        descs = load_descriptors_for_person(trainer, pdir, cfg)
        if len(descs) < cfg.min_imgs_per_person:
            logger.warning("Leaving out %s: %d usable faces, need %d",
                           pdir.name, len(descs), cfg.min_imgs_per_person)
            continue
        per_person[pdir.name] = descs
        logger.info("%s: %d descriptors", pdir.name, len(descs))
    return per_person


def split_distances(per_person: Dict[str, List[np.ndarray]]) -> Tuple[np.ndarray, np.ndarray]:
    """(genuine, impostor) distance arrays over every identity and identity pair."""
    names = sorted(per_person)
    genuine: List[float] = []
    impostor: List[float] = []
    for i, a in enumerate(names):
        genuine += pairwise_distances(per_person[a], per_person[a], same_person=True)
        for b in names[i + 1:]:
            impostor += pairwise_distances(per_person[a], per_person[b], same_person=False)
    return np.asarray(genuine, dtype=np.float64), np.asarray(impostor, dtype=np.float64)


def report(genuine: np.ndarray, impostor: np.ndarray, cfg: EvalConfig) -> Optional[Tuple[float, float, float]]:
    results = sweep_thresholds(genuine, impostor, cfg)

    print("chi-square distances (lower = more alike)")
    print(f"  same person   {describe(genuine)}")
    print(f"  different     {describe(impostor)}")
    print()
    print("  threshold    FAR      FRR")
    every = max(1, len(results) // 15)
    for thr, far, frr in results[::every]:
        print(f"  {thr:9.1f}  {far:6.2%}  {frr:6.2%}")
    print()

    best = recommend_threshold(results, cfg.target_far)
    if best is None:
        print(f"No threshold in {cfg.thresholds[0]:g}..{cfg.thresholds[1]:g} keeps FAR "
              f"at or below {cfg.target_far:.1%}. Add more varied photos or relax --target-far.")
        return None

    thr, far, frr = best
    print(f"Suggested recognizer.threshold: {thr:.1f}  (FAR {far:.2%}, FRR {frr:.2%})")
    print("Put it in your YAML config; bands can be tuned around it.")
    return best


def main():
    parser = argparse.ArgumentParser(description="Suggest an LBPH distance threshold.")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--training-dir", type=Path, default=None)
    parser.add_argument("--target-far", type=float, default=0.01)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        app_cfg = load_config(args.config)
        trainer = FaceTrainer(FaceDetector(app_cfg.detector), LBPHExtractor(app_cfg.recognizer))
        cfg = EvalConfig(
            training_dir=args.training_dir or Path(app_cfg.paths.training_dir),
            target_far=args.target_far,
        )
        per_person = collect(trainer, cfg)
    except ConfigurationError as exc:
        print(f"Cannot evaluate: {exc}")
        return

    if len(per_person) < 2:
        print("Evaluation needs at least two identities with enough usable photos.")
        return

    genuine, impostor = split_distances(per_person)
    report(genuine, impostor, cfg)


if __name__ == "__main__":
    main()
