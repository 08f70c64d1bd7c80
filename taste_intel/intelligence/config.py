from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class PipelineConfig:
    worker_url: str = os.getenv("PIPELINE_WORKER_URL", "")
    adapter_timeout_s: float = 30.0
    stage_deadline_s: float = 120.0
    max_attempts_per_adapter: int = 3
    max_fanout_workers: int = 6
    pipeline_version: str = "v3"


@dataclass(frozen=True)
class ReliabilityConfig:
    """
    Tunable constants for the reliability score.

    Each evidence component saturates at its ``*_saturation`` value and is
    blended with the matching weight. Review evidence carries the most weight
    because it reflects visitor experience rather than marketing copy.
    """

    signal_saturation: int = 30
    review_saturation: int = 50
    source_saturation: int = 4
    signal_weight: float = 0.30
    review_weight: float = 0.30
    diversity_weight: float = 0.15
    review_signal_weight: float = 0.25
    no_review_penalty: float = 0.5
    # Audit thresholds
    suspect_reliability: float = 0.5
    min_signal_count: int = 5


DEFAULT_PIPELINE_CONFIG = PipelineConfig()
DEFAULT_RELIABILITY_CONFIG = ReliabilityConfig()
