from datetime import datetime, timezone

from taste_intel.intelligence.aggregator import aggregate_signals
from taste_intel.intelligence.models import (
    AdapterResult,
    Polarity,
    SourceAttempt,
    SourceCategory,
    SourceDiagnostic,
    TasteDomain,
    TasteSignal,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _signal(source: str, domain: TasteDomain, tag: str, confidence: float = 0.6, **kwargs) -> TasteSignal:
    return TasteSignal(
        domain=domain,
        tag=tag,
        confidence=confidence,
        source=source,
        extracted_at=NOW,
        **kwargs,
    )


def _result(
    source: str,
    category: SourceCategory,
    signals: list[TasteSignal],
    items: int | None = None,
    facts: dict | None = None,
) -> AdapterResult:
    items = len(signals) if items is None else items
    return AdapterResult(
        source=source,
        category=category,
        signals=signals,
        facts=facts or {},
        diagnostic=SourceDiagnostic(
            source=source,
            category=category,
            attempts=[SourceAttempt(method=f"{source}_method", items_returned=items, signals_returned=len(signals))],
            items_returned=items,
            signals_returned=len(signals),
        ),
    )


def test_order_follows_source_processing_order():
    results = [
        _result("reviews", SourceCategory.reviews, [
            _signal("reviews", TasteDomain.service, "warm staff"),
            _signal("reviews", TasteDomain.food, "great pasta"),
        ]),
        _result("menu", SourceCategory.menu, [_signal("menu", TasteDomain.food, "seasonal menu")]),
    ]
    agg = aggregate_signals(results)

    assert [s.tag for s in agg.signals] == ["warm staff", "great pasta", "seasonal menu"]


def test_duplicates_collapse_keeping_highest_confidence():
    results = [
        _result("reviews", SourceCategory.reviews, [
            _signal("reviews", TasteDomain.food, "Great Pasta", 0.5),
            _signal("reviews", TasteDomain.food, "great  pasta", 0.8),
            _signal("reviews", TasteDomain.design, "great pasta", 0.4),
        ]),
    ]
    agg = aggregate_signals(results)

    assert agg.duplicates_merged == 1
    assert agg.signal_count == 2
    food = next(s for s in agg.signals if s.domain == TasteDomain.food)
    assert food.confidence == 0.8
    # First occurrence keeps its position and text
    assert food.tag == "Great Pasta"


def test_same_tag_from_different_sources_is_kept():
    results = [
        _result("reviews", SourceCategory.reviews, [_signal("reviews", TasteDomain.food, "pasta")]),
        _result("editorial", SourceCategory.editorial, [_signal("editorial", TasteDomain.food, "pasta")]),
    ]
    agg = aggregate_signals(results)

    assert agg.signal_count == 2
    assert agg.per_source_counts == {"reviews": 1, "editorial": 1}
    assert agg.source_diversity == 2


def test_low_confidence_signals_are_not_dropped():
    agg = aggregate_signals([
        _result("menu", SourceCategory.menu, [_signal("menu", TasteDomain.food, "bread", 0.01)]),
    ])
    assert agg.signal_count == 1


def test_negative_polarity_goes_to_anti_signals():
    agg = aggregate_signals([
        _result("reviews", SourceCategory.reviews, [
            _signal("reviews", TasteDomain.service, "slow service", polarity=Polarity.negative),
            _signal("reviews", TasteDomain.service, "friendly"),
        ]),
    ])

    assert agg.signal_count == 1
    assert agg.anti_signal_count == 1
    assert agg.anti_signals[0].tag == "slow service"


def test_review_counts():
    agg = aggregate_signals([
        _result("reviews", SourceCategory.reviews, [_signal("reviews", TasteDomain.food, "pasta")], items=42),
        _result("menu", SourceCategory.menu, [_signal("menu", TasteDomain.food, "menu")], items=3),
    ])

    assert agg.review_count == 42
    assert agg.review_signal_count == 1


def test_facts_first_source_wins_and_diagnostics_kept():
    agg = aggregate_signals([
        _result("reviews", SourceCategory.reviews, [], facts={"rating": 4.6}),
        _result("editorial", SourceCategory.editorial, [], facts={"rating": 3.0, "chef": "A. Chef"}),
    ])

    assert agg.facts == {"rating": 4.6, "chef": "A. Chef"}
    assert set(agg.sources_processed) == {"reviews", "editorial"}
    assert agg.is_empty
