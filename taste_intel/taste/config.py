from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DecayConfig:
    half_life_days: float = 180.0
    aged_out_threshold: float = 0.05


@dataclass(frozen=True)
class ReprofilingConfig:
    # "6 months" is measured in 30-day months
    max_age_days: float = 180.0
    booking_threshold: int = 3
    confidence_floor: float = 0.5
    contradiction_ratio_limit: float = 0.30


@dataclass(frozen=True)
class MatchConfig:
    density_saturation: float = 20.0
    confidence_weight: float = 0.6
    density_weight: float = 0.4
    anti_signal_penalty: float = 0.05
    corroboration_boost: float = 0.05
    neutral_score: float = 50.0


DEFAULT_DECAY_CONFIG = DecayConfig()
DEFAULT_REPROFILING_CONFIG = ReprofilingConfig()
DEFAULT_MATCH_CONFIG = MatchConfig()
