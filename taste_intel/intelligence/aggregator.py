from __future__ import annotations

from collections import Counter
from typing import Any

from pydantic import BaseModel, Field

from .models import (
    AdapterResult,
    Polarity,
    SourceCategory,
    SourceDiagnostic,
    TasteSignal,
)


class AggregatedSignals(BaseModel):
    signals: list[TasteSignal] = Field(default_factory=list)
    anti_signals: list[TasteSignal] = Field(default_factory=list)
    facts: dict[str, Any] = Field(default_factory=dict)
    sources_processed: dict[str, SourceDiagnostic] = Field(default_factory=dict)
    per_source_counts: dict[str, int] = Field(default_factory=dict)
    duplicates_merged: int = 0
    review_count: int = 0
    review_signal_count: int = 0
    source_diversity: int = 0

    @property
    def signal_count(self) -> int:
        return len(self.signals)

    @property
    def anti_signal_count(self) -> int:
        return len(self.anti_signals)

    @property
    def is_empty(self) -> bool:
        return not self.signals and not self.anti_signals


def _dedupe_key(signal: TasteSignal) -> tuple[str, str, str, str]:
    return (
        signal.domain.value,
        " ".join(signal.tag.lower().split()),
        signal.source,
        signal.polarity.value,
    )


def aggregate_signals(results: list[AdapterResult]) -> AggregatedSignals:
    """
    Merge adapter results into one canonical signal set.

    *results* must be in source processing order; output order follows it.
    Near-identical signals (same domain, tag, source and polarity) collapse
    into the first occurrence, keeping the highest confidence seen. Nothing is
    dropped for low confidence.
    """
    merged: dict[tuple[str, str, str, str], TasteSignal] = {}
    duplicates = 0
    facts: dict[str, Any] = {}
    sources: dict[str, SourceDiagnostic] = {}

    for result in results:
        sources[result.source] = result.diagnostic
        for key, value in result.facts.items():
            facts.setdefault(key, value)

        for signal in result.signals:
            key = _dedupe_key(signal)
            existing = merged.get(key)
            if existing is None:
                merged[key] = signal.model_copy()
                continue
            duplicates += 1
            existing.confidence = max(existing.confidence, signal.confidence)
            existing.review_corroborated = existing.review_corroborated or signal.review_corroborated

    ordered = list(merged.values())
    positives = [s for s in ordered if s.polarity == Polarity.positive]
    negatives = [s for s in ordered if s.polarity == Polarity.negative]

    # Count evidence per source
    per_source: Counter[str] = Counter(s.source for s in ordered)
    review_sources = {r.source for r in results if r.category == SourceCategory.reviews}

    review_count = sum(
        r.diagnostic.items_returned for r in results if r.category == SourceCategory.reviews
    )
    review_signal_count = sum(1 for s in positives if s.source in review_sources)

    return AggregatedSignals(
        signals=positives,
        anti_signals=negatives,
        facts=facts,
        sources_processed=sources,
        per_source_counts=dict(per_source),
        duplicates_merged=duplicates,
        review_count=review_count,
        review_signal_count=review_signal_count,
        source_diversity=len(per_source),
    )
