"""
Signal decay.

Stored confidence is what was observed at extraction time. How much it still
counts is computed on every read:

    decayed = confidence * 0.5 ** (age_days / half_life_days)

so at one half-life a signal keeps 50%, at two 25%, and it is treated as aged
out once it drops below 0.05. Every function takes ``now`` explicitly.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable

from pydantic import BaseModel

from ..intelligence.models import ALL_DOMAINS, TasteDomain
from .config import DEFAULT_DECAY_CONFIG, DecayConfig
from .models import TasteNode

DEFAULT_HALF_LIFE_DAYS = DEFAULT_DECAY_CONFIG.half_life_days
_SECONDS_PER_DAY = 86_400


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def age_in_days(extracted_at: datetime, *, now: datetime) -> float:
    return (_as_utc(now) - _as_utc(extracted_at)).total_seconds() / _SECONDS_PER_DAY


def decay_confidence(
    confidence: float,
    extracted_at: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    *,
    now: datetime,
) -> float:
    """Return *confidence* decayed by its age at *now*. Future timestamps do not decay."""
    if half_life_days <= 0:
        raise ValueError("half_life_days must be positive")
    age = age_in_days(extracted_at, now=now)
    if age <= 0:
        return confidence
    return confidence * 0.5 ** (age / half_life_days)


def signal_age_days(extracted_at: datetime, *, now: datetime) -> int:
    """Whole days since extraction, never negative."""
    return max(0, int(age_in_days(extracted_at, now=now)))


def is_aged_out(
    confidence: float,
    extracted_at: datetime,
    *,
    now: datetime,
    config: DecayConfig = DEFAULT_DECAY_CONFIG,
) -> bool:
    decayed = decay_confidence(confidence, extracted_at, config.half_life_days, now=now)
    return decayed < config.aged_out_threshold


def domain_confidences(
    nodes: Iterable[TasteNode],
    *,
    now: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> dict[TasteDomain, float]:
    """Average decayed confidence per domain. A domain with no nodes averages 0."""
    buckets: dict[TasteDomain, list[float]] = defaultdict(list)
    for node in nodes:
        buckets[node.domain].append(
            decay_confidence(node.confidence, node.extracted_at, half_life_days, now=now)
        )
    return {
        domain: round(sum(buckets[domain]) / len(buckets[domain]), 3) if buckets[domain] else 0.0
        for domain in ALL_DOMAINS
    }


class DecayedNode(BaseModel):
    id: str
    domain: TasteDomain
    tag: str
    original_confidence: float
    decayed_confidence: float
    age_in_days: int
    extracted_at: datetime
    is_aged_out: bool


class DecaySummary(BaseModel):
    total: int
    aged_out: int
    avg_decayed_confidence: float


class DecayReport(BaseModel):
    user_id: str
    signals: list[DecayedNode]
    summary: DecaySummary


def build_decay_report(
    user_id: str,
    nodes: Iterable[TasteNode],
    *,
    now: datetime,
    config: DecayConfig = DEFAULT_DECAY_CONFIG,
) -> DecayReport:
    """Decayed view of a user's active nodes. Nothing is written back."""
    decayed: list[DecayedNode] = []
    for node in nodes:
        value = decay_confidence(node.confidence, node.extracted_at, config.half_life_days, now=now)
        decayed.append(DecayedNode(
            id=node.id,
            domain=node.domain,
            tag=node.tag,
            original_confidence=node.confidence,
            decayed_confidence=round(value, 3),
            age_in_days=signal_age_days(node.extracted_at, now=now),
            extracted_at=node.extracted_at,
            is_aged_out=value < config.aged_out_threshold,
        ))

    total = len(decayed)
    return DecayReport(
        user_id=user_id,
        signals=decayed,
        summary=DecaySummary(
            total=total,
            aged_out=sum(1 for d in decayed if d.is_aged_out),
            avg_decayed_confidence=(
                round(sum(d.decayed_confidence for d in decayed) / total, 3) if total else 0.0
            ),
        ),
    )
