from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel

from ..intelligence.models import ALL_DOMAINS, Polarity, TasteDomain, TasteSignal
from .config import DEFAULT_DECAY_CONFIG, DEFAULT_MATCH_CONFIG, DecayConfig, MatchConfig
from .decay import decay_confidence
from .models import TasteProfile


class MatchResult(BaseModel):
    overall_score: float  # 0-100
    breakdown: dict[TasteDomain, float]  # per-domain place strength, 0-100
    top_dimension: TasteDomain


def domain_strengths(
    signals: Iterable[TasteSignal],
    anti_signals: Iterable[TasteSignal] = (),
    *,
    now: datetime,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> dict[TasteDomain, float]:
    """
    Delivered strength (0-1) of a place on each taste domain.

    Positive evidence blends its average decayed confidence with its decayed
    density (total decayed confidence over ``density_saturation``). Negative
    evidence, whether a negative-polarity signal or an anti-signal, subtracts
    ``anti_signal_penalty`` per unit of decayed confidence. A domain without
    positive evidence has strength 0.
    """
    positive: dict[TasteDomain, list[float]] = defaultdict(list)
    negative: dict[TasteDomain, float] = defaultdict(float)

    def _decayed(signal: TasteSignal) -> float:
        return decay_confidence(
            signal.confidence, signal.extracted_at, decay_config.half_life_days, now=now,
        )

    for signal in signals:
        if signal.polarity == Polarity.negative:
            negative[signal.domain] += _decayed(signal)
            continue
        boost = config.corroboration_boost if signal.review_corroborated else 0.0
        positive[signal.domain].append(min(_decayed(signal) + boost, 1.0))

    for anti in anti_signals:
        negative[anti.domain] += _decayed(anti)

    strengths: dict[TasteDomain, float] = {}
    for domain in ALL_DOMAINS:
        values = positive[domain]
        if not values:
            strengths[domain] = 0.0
            continue
        avg_confidence = sum(values) / len(values)
        density = min(sum(values) / config.density_saturation, 1.0)
        base = config.confidence_weight * avg_confidence + config.density_weight * density
        strengths[domain] = max(0.0, min(1.0, base - config.anti_signal_penalty * negative[domain]))
    return strengths


def compute_match(
    signals: Iterable[TasteSignal],
    anti_signals: Iterable[TasteSignal],
    profile: TasteProfile,
    *,
    now: datetime,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> MatchResult:
    """
    Score a place against a user's taste profile.

    ``overall = sum(w[d] * s[d]) / sum(w[d])`` on a 0-100 scale, where ``w`` is
    the user's weight and ``s`` the place's strength. Domains without evidence
    count as strength 0; a profile whose weights are all 0 gets the neutral
    score. The top dimension is the domain with the largest ``w * s``.
    """
    strengths = domain_strengths(
        signals, anti_signals, now=now, decay_config=decay_config, config=config,
    )
    weights = profile.as_dict()

    total_weight = sum(weights.values())
    if total_weight > 0:
        weighted = sum(weights[d] * strengths[d] for d in ALL_DOMAINS)
        overall = round(weighted / total_weight * 100, 1)
    else:
        overall = config.neutral_score

    # Ties fall back to place strength, then user weight, then domain order.
    top = max(ALL_DOMAINS, key=lambda d: (weights[d] * strengths[d], strengths[d], weights[d]))

    return MatchResult(
        overall_score=overall,
        breakdown={d: round(strengths[d] * 100, 1) for d in ALL_DOMAINS},
        top_dimension=top,
    )
