from __future__ import annotations

from .config import DEFAULT_RELIABILITY_CONFIG, ReliabilityConfig


def score_reliability(
    signal_count: int,
    review_count: int,
    source_diversity: int,
    review_signal_count: int,
    config: ReliabilityConfig = DEFAULT_RELIABILITY_CONFIG,
) -> float:
    """
    Derive a 0-1 reliability score from the volume and shape of the evidence.

    Components (each capped at 1.0):
    - signal volume: ``signal_count / signal_saturation``
    - review volume: ``review_count / review_saturation``
    - source diversity: ``source_diversity / source_saturation``
    - review share: fraction of signals coming from reviews, full credit at 50%

    When other sources produced signals but none came from reviews the blend
    is multiplied by ``no_review_penalty``. No evidence at all scores 0.
    """
    if signal_count <= 0 and review_count <= 0:
        return 0.0

    volume = min(signal_count / config.signal_saturation, 1.0)
    reviews = min(review_count / config.review_saturation, 1.0)
    diversity = min(source_diversity / config.source_saturation, 1.0)
    review_share = review_signal_count / signal_count if signal_count > 0 else 0.0
    review_share = min(review_share * 2, 1.0)

    score = (
        config.signal_weight * volume
        + config.review_weight * reviews
        + config.diversity_weight * diversity
        + config.review_signal_weight * review_share
    )
    if review_signal_count == 0 and signal_count > 0:
        score *= config.no_review_penalty

    return round(max(0.0, min(1.0, score)), 3)


def audit_flags(
    reliability_score: float | None,
    signal_count: int,
    review_count: int,
    review_signal_count: int,
    config: ReliabilityConfig = DEFAULT_RELIABILITY_CONFIG,
) -> list[str]:
    """Return the audit problems for a record; an empty list means it looks healthy."""
    problems: list[str] = []
    if reliability_score is None:
        problems.append("no reliability score")
    if review_count == 0:
        problems.append("0 reviews processed")
    if signal_count <= config.min_signal_count:
        problems.append(f"only {signal_count} signals")
    if review_signal_count == 0 and signal_count > 0:
        problems.append("no review signals (only menu/editorial)")
    if reliability_score is not None and reliability_score < config.suspect_reliability:
        problems.append(f"low reliability {reliability_score:.3f}")
    return problems


def is_suspect(
    reliability_score: float | None,
    signal_count: int,
    review_count: int,
    config: ReliabilityConfig = DEFAULT_RELIABILITY_CONFIG,
) -> bool:
    return (
        reliability_score is None
        or reliability_score < config.suspect_reliability
        or signal_count <= config.min_signal_count
        or review_count == 0
    )
