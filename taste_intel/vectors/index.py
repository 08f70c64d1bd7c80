from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

# Precomputed place vectors, keyed by place id.
_vectors: dict[str, np.ndarray] = {}
_lock = threading.Lock()


def save_place_vector(place_id: str, vector: np.ndarray) -> None:
    with _lock:
        _vectors[place_id] = np.asarray(vector, dtype=float).copy()


def get_place_vector(place_id: str) -> np.ndarray | None:
    with _lock:
        vec = _vectors.get(place_id)
        return vec.copy() if vec is not None else None


def all_place_vectors() -> tuple[list[str], np.ndarray]:
    """Return ``(ids, matrix)`` with one row per place, in insertion order."""
    with _lock:
        ids = list(_vectors)
        if not ids:
            return [], np.empty((0, 0))
        return ids, np.vstack([_vectors[i] for i in ids])


def _ids_path(path: Path) -> Path:
    return path.with_suffix(".ids.json")


def save_snapshot(path: Path) -> int:
    """Write the matrix to *path* (``.npy``) and the row ids beside it. Returns the row count."""
    ids, matrix = all_place_vectors()
    path.parent.mkdir(parents=True, exist_ok=True)
    np.save(path, matrix)
    _ids_path(path).write_text(json.dumps(ids))
    logger.info("Saved %d place vectors to %s", len(ids), path)
    return len(ids)


def load_snapshot(path: Path) -> int:
    """Replace the index with a snapshot written by ``save_snapshot``."""
    matrix = np.load(path)
    ids = json.loads(_ids_path(path).read_text())
    if len(ids) != len(matrix):
        raise ValueError(f"Snapshot {path} has {len(matrix)} rows but {len(ids)} ids")
    with _lock:
        _vectors.clear()
        for place_id, row in zip(ids, matrix):
            _vectors[place_id] = row.copy()
    logger.info("Loaded %d place vectors from %s", len(ids), path)
    return len(ids)


def clear_index() -> None:
    with _lock:
        _vectors.clear()
