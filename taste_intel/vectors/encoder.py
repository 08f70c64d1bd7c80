"""
Vector encoding.

Users and places share one 32-dimension space so a cosine similarity between
them is meaningful:

    [0-5]   six taste domains (Design, Character, Service, Food, Location, Wellness)
    [6-31]  26 tag buckets; each tag is hashed (FNV-1a) into one bucket and a
            bucket holds the average confidence of its tags, capped at 1

The whole vector is L2-normalised.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable

import numpy as np

from ..intelligence.models import ALL_DOMAINS, Polarity, TasteDomain, TasteSignal
from ..taste.config import DEFAULT_DECAY_CONFIG, DEFAULT_MATCH_CONFIG, DecayConfig, MatchConfig
from ..taste.decay import decay_confidence
from ..taste.match import domain_strengths
from ..taste.models import TasteNode, TasteProfile
from .config import DEFAULT_VECTOR_CONFIG, VectorConfig

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619

DOMAIN_INDEX: dict[TasteDomain, int] = {d: i for i, d in enumerate(ALL_DOMAINS)}


def hash_tag_to_bucket(tag: str, buckets: int = DEFAULT_VECTOR_CONFIG.signal_dims) -> int:
    """32-bit FNV-1a over the normalised tag's code points, modulo *buckets*."""
    h = _FNV_OFFSET
    for ch in tag.strip().lower():
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h % buckets


def signal_features(
    tags: Iterable[tuple[str, float]],
    config: VectorConfig = DEFAULT_VECTOR_CONFIG,
) -> np.ndarray:
    totals = np.zeros(config.signal_dims)
    counts = np.zeros(config.signal_dims)
    for tag, confidence in tags:
        bucket = hash_tag_to_bucket(tag, config.signal_dims)
        totals[bucket] += confidence
        counts[bucket] += 1
    features = np.divide(totals, counts, out=np.zeros_like(totals), where=counts > 0)
    return np.minimum(features, 1.0)


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """Unit-length copy of *vec*; a zero vector is returned unchanged."""
    norm = np.linalg.norm(vec)
    if norm == 0:
        return vec
    return vec / norm


def build_vector(
    domain_values: dict[TasteDomain, float],
    tags: Iterable[tuple[str, float]],
    config: VectorConfig = DEFAULT_VECTOR_CONFIG,
) -> np.ndarray:
    vec = np.zeros(config.dimension)
    for domain, value in domain_values.items():
        vec[DOMAIN_INDEX[domain]] = value
    vec[config.domain_dims:] = signal_features(tags, config)
    return l2_normalize(vec)


def user_taste_vector(
    profile: TasteProfile,
    nodes: Iterable[TasteNode],
    *,
    now: datetime,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
    config: VectorConfig = DEFAULT_VECTOR_CONFIG,
) -> np.ndarray:
    """Profile weights on the domain axes, decayed positive node tags in the buckets."""
    tags = [
        (n.tag, decay_confidence(n.confidence, n.extracted_at, decay_config.half_life_days, now=now))
        for n in nodes
        if n.is_active and n.polarity == Polarity.positive
    ]
    return build_vector(profile.as_dict(), tags, config)


def place_vector(
    signals: list[TasteSignal],
    anti_signals: list[TasteSignal],
    *,
    now: datetime,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
    match_config: MatchConfig = DEFAULT_MATCH_CONFIG,
    config: VectorConfig = DEFAULT_VECTOR_CONFIG,
) -> np.ndarray:
    """Delivered domain strengths (as the match engine sees them) plus tag buckets."""
    strengths = domain_strengths(
        signals, anti_signals, now=now, decay_config=decay_config, config=match_config,
    )
    tags = [
        (s.tag, decay_confidence(s.confidence, s.extracted_at, decay_config.half_life_days, now=now))
        for s in signals
        if s.polarity == Polarity.positive
    ]
    return build_vector(strengths, tags, config)


def domain_probe_vector(domain: TasteDomain, config: VectorConfig = DEFAULT_VECTOR_CONFIG) -> np.ndarray:
    """Unit vector along one domain axis, for "strongest on X" searches."""
    vec = np.zeros(config.dimension)
    vec[DOMAIN_INDEX[domain]] = 1.0
    return vec
