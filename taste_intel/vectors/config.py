from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class VectorConfig:
    dimension: int = 32
    domain_dims: int = 6
    signal_dims: int = 26


@dataclass(frozen=True)
class BackfillConfig:
    # Worker-pool size for both backfill phases
    max_workers: int = 4
    # Both sides of a contradiction need at least this decayed confidence
    contradiction_threshold: float = 0.4
    vectors_path: Path = Path(__file__).resolve().parent.parent / "data" / "processed" / "place_vectors.npy"
    # Exported places and taste graph the CLI works on
    state_path: Path = Path(__file__).resolve().parent.parent / "data" / "processed" / "taste_state.json"


DEFAULT_VECTOR_CONFIG = VectorConfig()
DEFAULT_BACKFILL_CONFIG = BackfillConfig()
