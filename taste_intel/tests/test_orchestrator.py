import threading
from datetime import datetime, timedelta, timezone

import pytest

from taste_intel.intelligence import store
from taste_intel.intelligence.config import PipelineConfig
from taste_intel.intelligence.errors import RunConflictError
from taste_intel.intelligence.models import (
    AdapterResult,
    PlaceRef,
    PlaceStatus,
    RunStatus,
    SourceAttempt,
    SourceCategory,
    SourceDiagnostic,
    TasteDomain,
    TasteSignal,
)
from taste_intel.intelligence.adapters import (
    FallbackSourceAdapter,
    FetchMethod,
    SourceAdapter,
)
from taste_intel.intelligence.orchestrator import Orchestrator
from taste_intel.intelligence.queries import match_query, status_query
from taste_intel.taste.models import TasteProfile

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)
REF = PlaceRef(place_id="place-1", display_name="Casa Example")


@pytest.fixture(autouse=True)
def _clean_store():
    store.clear_store()
    yield
    store.clear_store()


class FakeAdapter(SourceAdapter):
    def __init__(self, name, category, tags=(), items=None, error=None, raises=None, gate=None):
        self.name = name
        self.category = category
        self.tags = list(tags)
        self.items = len(self.tags) if items is None else items
        self.error = error
        self.raises = raises
        self.gate = gate
        self.calls = 0
        self.cancel = None

    def fetch(self, ref, cancel=None):
        self.calls += 1
        self.cancel = cancel
        if self.gate is not None:
            self.gate.wait(5)
        if self.raises:
            raise self.raises
        signals = [
            TasteSignal(domain=domain, tag=tag, confidence=0.8, source=self.name, extracted_at=NOW)
            for domain, tag in self.tags
        ]
        attempt = SourceAttempt(
            method=f"{self.name}_actor",
            items_returned=0 if self.error else self.items,
            signals_returned=len(signals),
            error=self.error,
        )
        return AdapterResult(
            source=self.name,
            category=self.category,
            signals=signals,
            diagnostic=SourceDiagnostic(
                source=self.name,
                category=self.category,
                attempts=[attempt],
                items_returned=attempt.items_returned,
                signals_returned=len(signals),
                error=self.error,
            ),
        )


def _reviews(**kwargs):
    return FakeAdapter(
        "reviews", SourceCategory.reviews,
        tags=[(TasteDomain.service, "warm welcome"), (TasteDomain.food, "handmade pasta")],
        items=kwargs.pop("items", 40), **kwargs,
    )


def _menu(**kwargs):
    return FakeAdapter("menu", SourceCategory.menu, tags=[(TasteDomain.food, "seasonal menu")], **kwargs)


def _editorial(**kwargs):
    return FakeAdapter(
        "editorial", SourceCategory.editorial, tags=[(TasteDomain.design, "terrazzo floors")], **kwargs,
    )


def _orchestrator(adapters, **config) -> Orchestrator:
    return Orchestrator(adapters, config=PipelineConfig(**config), clock=lambda: NOW)


# ── Happy path ───────────────────────────────────────────────────────────


def test_run_completes_and_persists():
    orch = _orchestrator([_reviews(), _menu(), _editorial()])
    response = orch.process(REF)

    assert response.accepted
    assert response.status == "complete"
    place = store.get_place("place-1")
    assert place.status == PlaceStatus.complete
    assert place.signal_count == len(place.signals) == 4
    assert place.review_count == 40
    assert 0.0 <= place.reliability_score <= 1.0
    assert place.pipeline_version == "v3"
    assert place.last_enriched_at == NOW
    # Signal order follows adapter order, not completion order
    assert [s.source for s in place.signals] == ["reviews", "reviews", "menu", "editorial"]

    run = store.latest_run("place-1")
    assert run.status == RunStatus.complete
    assert sorted(run.stages_completed[:3]) == ["editorial", "menu", "reviews"]
    assert run.stages_completed[3:] == ["aggregate", "score"]
    assert run.current_stage is None
    assert run.error is None
    assert run.metadata["per_source_counts"] == {"reviews": 2, "menu": 1, "editorial": 1}


def test_failed_adapter_does_not_abort_run():
    orch = _orchestrator([_reviews(), FakeAdapter("menu", SourceCategory.menu, error="menu page 404")])
    orch.process(REF)

    place = store.get_place("place-1")
    run = store.latest_run("place-1")
    assert place.status == PlaceStatus.complete
    assert "menu_skipped" in run.stages_completed
    assert "menu page 404" in run.error
    assert place.sources_processed["menu"].attempts[0].error == "menu page 404"


def test_raising_adapter_is_contained():
    orch = _orchestrator([_reviews(), _menu(raises=RuntimeError("parser crashed"))])
    orch.process(REF)

    place = store.get_place("place-1")
    assert place.status == PlaceStatus.complete
    assert place.sources_processed["menu"].error == "parser crashed"


def test_no_signals_fails_run_with_diagnostics():
    orch = _orchestrator([
        FakeAdapter("reviews", SourceCategory.reviews, error="actor timeout"),
        FakeAdapter("menu", SourceCategory.menu, error="no menu found"),
    ])
    response = orch.process(REF)

    assert response.status == "failed"
    place = store.get_place("place-1")
    run = store.latest_run("place-1")
    assert place.status == PlaceStatus.failed
    assert run.status == RunStatus.failed
    assert "No source produced any signals" in run.error
    assert "actor timeout" in run.error
    assert set(place.sources_processed) == {"reviews", "menu"}
    assert run.completed_at == NOW


def test_menu_and_editorial_without_reviews_scores_low():
    orch = _orchestrator([FakeAdapter("reviews", SourceCategory.reviews), _menu(), _editorial()])
    orch.process(REF)

    place = store.get_place("place-1")
    assert place.review_count == 0
    assert place.reliability_score < 0.5


# ── Deadline ─────────────────────────────────────────────────────────────


def test_straggler_is_cancelled_at_deadline():
    gate = threading.Event()
    slow = FakeAdapter("social", SourceCategory.social, tags=[(TasteDomain.character, "hip")], gate=gate)
    orch = _orchestrator([_reviews(), slow], stage_deadline_s=0.2)
    try:
        orch.process(REF)
    finally:
        gate.set()

    place = store.get_place("place-1")
    run = store.latest_run("place-1")
    assert place.status == PlaceStatus.complete
    assert "social_skipped" in run.stages_completed
    assert "timed out" in place.sources_processed["social"].error
    assert all(s.source != "social" for s in place.signals)
    assert slow.cancel.is_set()


class GatedMethod(FetchMethod):
    def __init__(self, name, gate=None):
        self.name = name
        self.gate = gate
        self.calls = 0

    def run(self, ref, source, now):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        raise RuntimeError(f"{self.name} unavailable")


class TrackedAdapter(FallbackSourceAdapter):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.returned = threading.Event()

    def fetch(self, ref, cancel=None):
        try:
            return super().fetch(ref, cancel)
        finally:
            self.returned.set()


def test_straggler_starts_no_method_after_deadline():
    gate = threading.Event()
    first = GatedMethod("actor", gate)
    second, third = GatedMethod("backup"), GatedMethod("index")
    social = TrackedAdapter(
        "social", SourceCategory.social, [first, second, third], clock=lambda: NOW,
    )
    orch = _orchestrator([_reviews(), social], stage_deadline_s=0.2)
    try:
        orch.process(REF)
    finally:
        gate.set()

    assert social.returned.wait(5)
    assert first.calls == 1
    assert second.calls == 0
    assert third.calls == 0
    assert "timed out" in store.get_place("place-1").sources_processed["social"].error


# ── State machine ────────────────────────────────────────────────────────


def test_second_start_while_processing_is_rejected():
    orch = _orchestrator([_reviews()])
    first = orch.trigger(REF)
    before = store.get_run(first.run_id)

    with pytest.raises(RunConflictError):
        orch.trigger(REF)

    assert len(store.runs_for_place("place-1")) == 1
    assert store.get_run(first.run_id) == before
    assert store.get_place("place-1").status == PlaceStatus.processing


def test_trigger_on_complete_place_is_a_no_op():
    orch = _orchestrator([_reviews()])
    orch.process(REF)
    response = orch.trigger(REF)

    assert not response.accepted
    assert response.status == "complete"
    assert response.run_id is None
    assert len(store.runs_for_place("place-1")) == 1


def test_reset_then_rerun_clears_previous_result():
    reviews = _reviews()
    orch = _orchestrator([reviews, _menu()])
    orch.process(REF)

    place = orch.reset("place-1")
    assert place.status == PlaceStatus.pending
    assert place.reliability_score is None
    assert place.signals == [] and place.signal_count == 0
    assert place.review_count == 0
    assert place.sources_processed == {}

    orch.process(REF)
    assert reviews.calls == 2
    assert store.get_place("place-1").status == PlaceStatus.complete
    assert len(store.runs_for_place("place-1")) == 2


def test_reset_while_processing_is_rejected():
    orch = _orchestrator([_reviews()])
    orch.trigger(REF)
    with pytest.raises(RunConflictError):
        orch.reset("place-1")


# ── Queries ──────────────────────────────────────────────────────────────


def test_status_query_unknown_place():
    result = status_query("nope")
    assert result.status == "unknown"
    assert result.latest_run is None


def test_status_query_reports_latest_run():
    orch = _orchestrator([_reviews()])
    orch.process(REF)
    result = status_query("place-1")

    assert result.status == "complete"
    assert result.signal_count == len(result.signals)
    assert result.latest_run.stages_completed[-1] == "score"


def test_match_query_not_ready_until_complete():
    profile = TasteProfile(design=0.5, character=0.5, service=1.0, food=1.0, location=0.2, wellness=0.0)
    assert match_query("place-1", profile, now=NOW).status == "not_ready"

    orch = _orchestrator([_reviews()])
    orch.trigger(REF)
    pending = match_query("place-1", profile, now=NOW)
    assert pending.status == "not_ready"
    assert pending.place_status == PlaceStatus.processing

    run_id = store.latest_run("place-1").id
    orch.execute(run_id)
    ready = match_query("place-1", profile, now=NOW + timedelta(days=1))
    assert ready.status == "ok"
    assert 0.0 <= ready.overall_score <= 100.0
    assert ready.top_dimension in (TasteDomain.service, TasteDomain.food)
