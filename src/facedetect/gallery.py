"""
gallery.py - Trained gallery: LBPH descriptors + labels + label→name map.

On disk:
  face_recognizer_model.npz   descriptors (N, D) float32, labels (N,) int32, params
  face_names_map.json         {"0": "Alice", "1": "Bob"}
Both files are written to temporaries first and moved into place, so a failed
save never leaves a half-written model behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# (radius, neighbors, grid_x, grid_y, face_w, face_h)
Params = Tuple[int, int, int, int, int, int]


def _readonly(a: np.ndarray) -> np.ndarray:
    a.setflags(write=False)
    return a


@dataclass(frozen=True, eq=False)
class Gallery:
    descriptors: np.ndarray                 # (N, D) float32, read-only
    labels: np.ndarray                      # (N,) int32, read-only
    names: Mapping[int, str] = field(default_factory=dict)
    params: Params = (1, 8, 8, 8, 150, 150)

    def __post_init__(self):
        if self.descriptors.ndim != 2 or self.labels.ndim != 1:
            raise ConfigurationError(
                f"Gallery needs (N, D) descriptors and (N,) labels, got "
                f"{self.descriptors.shape} / {self.labels.shape}"
            )
        if self.descriptors.shape[0] != self.labels.shape[0]:
            raise ConfigurationError(
                f"Gallery has {self.descriptors.shape[0]} descriptors but {self.labels.shape[0]} labels"
            )

    # ── Construction ──
    @classmethod
    def from_samples(cls, descriptors: Sequence[np.ndarray], labels: Sequence[int],
                     names: Mapping[int, str], params: Params) -> "Gallery":
        if len(descriptors) == 0:
            desc = np.zeros((0, 0), dtype=np.float32)
        else:
            desc = np.stack([np.asarray(d, dtype=np.float32).ravel() for d in descriptors])
        return cls(
            descriptors=_readonly(desc),
            labels=_readonly(np.asarray(labels, dtype=np.int32).reshape(-1)),
            names=dict(names),
            params=tuple(int(p) for p in params),
        )

    @classmethod
    def empty(cls) -> "Gallery":
        return cls.from_samples([], [], {}, cls.params)

    # ── Queries ──
    def __len__(self) -> int:
        return int(self.labels.shape[0])

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def dim(self) -> int:
        return int(self.descriptors.shape[1]) if len(self) else 0

    def by_label(self) -> Dict[int, List[np.ndarray]]:
        out: Dict[int, List[np.ndarray]] = {}
        for desc, label in zip(self.descriptors, self.labels):
            out.setdefault(int(label), []).append(desc)
        return out

    def name_for(self, label: int) -> str:
        if label < 0:
            return "Unknown"
        return self.names.get(int(label), "Unknown")

    # ── Persistence ──
    def save(self, model_path: PathLike, names_path: PathLike) -> None:
        model_path = Path(model_path)
        names_path = Path(names_path)
        model_path.parent.mkdir(parents=True, exist_ok=True)
        names_path.parent.mkdir(parents=True, exist_ok=True)

        names_doc = {str(k): v for k, v in sorted(self.names.items())}

        tmp_model = _temp_beside(model_path)
        tmp_names = _temp_beside(names_path)
        backup: Optional[str] = None
        try:
            with open(tmp_model, "wb") as f:
                np.savez(
                    f,
                    descriptors=np.asarray(self.descriptors, dtype=np.float32),
                    labels=np.asarray(self.labels, dtype=np.int32),
                    params=np.asarray(self.params, dtype=np.int32),
                )
            Path(tmp_names).write_text(json.dumps(names_doc, indent=2), encoding="utf-8")

            if model_path.exists():
                backup = _temp_beside(model_path)
                os.replace(model_path, backup)
            try:
                os.replace(tmp_model, model_path)
                os.replace(tmp_names, names_path)
            except OSError:
                # model and names map are replaced as a pair or not at all
                if backup is not None:
                    os.replace(backup, model_path)
                    backup = None
                elif model_path.is_file():
                    os.remove(model_path)
                raise
        finally:
            for tmp in (tmp_model, tmp_names, backup):
                if tmp is not None and os.path.exists(tmp):
                    os.remove(tmp)

        logger.info("Saved gallery: %d descriptors, %d identities → %s, %s",
                    len(self), len(self.names), model_path, names_path)

    @classmethod
    def load(cls, model_path: PathLike, names_path: PathLike) -> "Gallery":
        model_path = Path(model_path)
        names_path = Path(names_path)
        if not model_path.exists():
            raise ConfigurationError(f"Model file not found: {model_path}")

        try:
            data = np.load(model_path, allow_pickle=False)
        except (OSError, ValueError, EOFError, zipfile.BadZipFile) as exc:
            raise ConfigurationError(f"Model file {model_path} is unreadable: {exc}") from exc
        if not hasattr(data, "files"):
            raise ConfigurationError(f"Model file {model_path} is not an .npz archive")

        with data:
            missing = {"descriptors", "labels", "params"} - set(data.files)
            if missing:
                raise ConfigurationError(f"Model file {model_path} lacks {sorted(missing)}")
            try:
                descriptors = np.array(data["descriptors"], dtype=np.float32)
                labels = np.array(data["labels"], dtype=np.int32)
                params = tuple(int(p) for p in data["params"])
            except (OSError, ValueError, EOFError, zipfile.BadZipFile) as exc:
                raise ConfigurationError(f"Model file {model_path} is unreadable: {exc}") from exc
        if len(params) != 6:
            raise ConfigurationError(f"Model file {model_path} has malformed params {params}")

        names: Dict[int, str] = {}
        if names_path.exists():
            try:
                raw = json.loads(names_path.read_text(encoding="utf-8"))
                names = {int(k): str(v) for k, v in raw.items()}
            except (ValueError, AttributeError) as exc:
                raise ConfigurationError(f"Names map {names_path} is malformed: {exc}") from exc
        else:
            logger.warning("Names map %s missing; identities will show as Unknown", names_path)

        return cls(
            descriptors=_readonly(descriptors),
            labels=_readonly(labels),
            names=names,
            params=params,
        )


def _temp_beside(path: Path) -> str:
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    os.close(fd)
    return tmp
