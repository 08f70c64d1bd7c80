from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from taste_intel.app import app, get_clock, get_orchestrator
from taste_intel.intelligence import store
from taste_intel.intelligence.config import PipelineConfig
from taste_intel.intelligence.models import (
    AdapterResult,
    PlaceRef,
    SourceAttempt,
    SourceCategory,
    SourceDiagnostic,
    TasteDomain,
    TasteSignal,
)
from taste_intel.intelligence.adapters import SourceAdapter
from taste_intel.intelligence.orchestrator import Orchestrator
from taste_intel.taste import profiles
from taste_intel.taste.models import OnboardingSignal, TasteNode
from taste_intel.vectors import index

NOW = datetime(2026, 7, 1, tzinfo=timezone.utc)

PROFILE = {"design": 0.4, "character": 0.2, "service": 0.9, "food": 1.0, "location": 0.1, "wellness": 0.0}


class StaticAdapter(SourceAdapter):
    def __init__(self, name, category, tags, items):
        self.name = name
        self.category = category
        self.tags = tags
        self.items = items

    def fetch(self, ref, cancel=None):
        signals = [
            TasteSignal(domain=d, tag=t, confidence=0.8, source=self.name, extracted_at=NOW)
            for d, t in self.tags
        ]
        return AdapterResult(
            source=self.name,
            category=self.category,
            signals=signals,
            diagnostic=SourceDiagnostic(
                source=self.name,
                category=self.category,
                attempts=[SourceAttempt(method="static", items_returned=self.items, signals_returned=len(signals))],
                items_returned=self.items,
                signals_returned=len(signals),
            ),
        )


ORCHESTRATOR = Orchestrator(
    [
        StaticAdapter("reviews", SourceCategory.reviews, [(TasteDomain.food, "wood oven"), (TasteDomain.service, "warm")], 30),
        StaticAdapter("menu", SourceCategory.menu, [(TasteDomain.food, "short menu")], 1),
    ],
    config=PipelineConfig(),
    clock=lambda: NOW,
)

client = TestClient(app)


@pytest.fixture(autouse=True)
def _setup(monkeypatch):
    store.clear_store()
    profiles.clear_profiles()
    index.clear_index()
    monkeypatch.delenv("CRON_SECRET", raising=False)
    app.dependency_overrides[get_orchestrator] = lambda: ORCHESTRATOR
    app.dependency_overrides[get_clock] = lambda: (lambda: NOW)
    yield
    app.dependency_overrides.clear()
    store.clear_store()
    profiles.clear_profiles()
    index.clear_index()


def _ref(place_id: str) -> PlaceRef:
    return PlaceRef(place_id=place_id, display_name="Osteria")


def _trigger(place_id: str = "p1"):
    return client.post("/intelligence/trigger", json={"place_id": place_id, "display_name": "Osteria"})


# ── Health ───────────────────────────────────────────────────────────────


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# ── Pipeline ─────────────────────────────────────────────────────────────


def test_trigger_runs_pipeline_in_background():
    resp = _trigger()
    assert resp.status_code == 200
    body = resp.json()
    assert body["accepted"] is True
    assert body["status"] == "processing"

    # TestClient runs background tasks before returning
    status = client.get("/intelligence/p1").json()
    assert status["status"] == "complete"
    assert status["signal_count"] == len(status["signals"]) == 3
    assert status["review_count"] == 30
    assert 0.0 <= status["reliability_score"] <= 1.0
    assert status["latest_run"]["stages_completed"][-2:] == ["aggregate", "score"]


def test_trigger_missing_field_is_422():
    resp = client.post("/intelligence/trigger", json={"place_id": "p1"})
    assert resp.status_code == 422
    assert store.get_place("p1") is None


def test_trigger_while_processing_is_409():
    store.register_place(_ref("p1"), NOW)
    store.begin_run("p1", NOW)
    resp = _trigger()
    assert resp.status_code == 409
    assert len(store.runs_for_place("p1")) == 1


def test_trigger_complete_place_is_not_accepted():
    _trigger()
    resp = _trigger()
    assert resp.status_code == 200
    assert resp.json()["accepted"] is False
    assert resp.json()["status"] == "complete"


def test_status_unknown_place():
    resp = client.get("/intelligence/never-seen")
    assert resp.status_code == 200
    assert resp.json()["status"] == "unknown"


def test_reset_clears_result():
    _trigger()
    resp = client.post("/intelligence/p1/reset")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "pending"
    assert body["reliability_score"] is None
    assert body["signal_count"] == 0
    assert body["signals"] == []


def test_reset_errors():
    assert client.post("/intelligence/missing/reset").status_code == 404
    store.register_place(_ref("p2"), NOW)
    store.begin_run("p2", NOW)
    assert client.post("/intelligence/p2/reset").status_code == 409


def test_match_not_ready_then_ready():
    resp = client.post("/intelligence/p1/match", json={"taste_profile": PROFILE})
    assert resp.status_code == 200
    assert resp.json()["status"] == "not_ready"

    _trigger()
    resp = client.post("/intelligence/p1/match", json={"taste_profile": PROFILE})
    body = resp.json()
    assert body["status"] == "ok"
    assert body["top_dimension"] == "Food"
    assert set(body["breakdown"]) == {d.value for d in TasteDomain}


def test_match_rejects_out_of_range_weight():
    resp = client.post("/intelligence/p1/match", json={"taste_profile": dict(PROFILE, food=1.5)})
    assert resp.status_code == 422


def test_audit_endpoint():
    _trigger()
    resp = client.get("/intelligence/audit")
    assert resp.status_code == 200
    assert resp.json()["total"] == 1


# ── User taste ───────────────────────────────────────────────────────────


def _seed_user():
    profiles.upsert_user("u1", last_synthesized_at=NOW - timedelta(days=210))
    for i, domain in enumerate(TasteDomain):
        profiles.add_node(TasteNode(
            id=f"n{i}", user_id="u1", domain=domain, tag=f"tag {i}",
            confidence=0.9, extracted_at=NOW - timedelta(days=5),
        ))


def test_reprofiling_check():
    _seed_user()
    resp = client.get("/profile/reprofiling-check", params={"user_id": "u1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["should_reprofile"] is True
    assert body["suggested_phases"] == ["full-refresh"]
    assert body["diagnostics"]["total_signals"] == 6


def test_reprofiling_unknown_user_is_404():
    assert client.get("/profile/reprofiling-check", params={"user_id": "ghost"}).status_code == 404


def test_saved_places_drive_volume_trigger():
    synthesized = NOW - timedelta(days=10)
    profiles.upsert_user("u1", last_synthesized_at=synthesized)
    for i, domain in enumerate(TasteDomain):
        profiles.add_node(TasteNode(
            id=f"n{i}", user_id="u1", domain=domain, tag=f"tag {i}",
            confidence=0.9, extracted_at=NOW - timedelta(days=5),
        ))
    # Saves at or before the synthesis date do not count
    profiles.record_saved_place("u1", synthesized)
    profiles.record_saved_place("u1", synthesized - timedelta(days=1))

    for expected in (1, 2):
        resp = client.post("/profile/saved-places", params={"user_id": "u1"})
        assert resp.json()["new_bookings"] == expected
    assert client.get("/profile/reprofiling-check", params={"user_id": "u1"}).json()["should_reprofile"] is False

    client.post("/profile/saved-places", params={"user_id": "u1"})
    body = client.get("/profile/reprofiling-check", params={"user_id": "u1"}).json()
    assert body["should_reprofile"] is True
    assert body["triggers"] == ["3 new bookings since last synthesis"]
    assert body["suggested_phases"] == ["behavioral-update"]
    assert body["diagnostics"]["new_bookings"] == 3


def test_saved_place_unknown_user_is_404():
    assert client.post("/profile/saved-places", params={"user_id": "ghost"}).status_code == 404


def test_signal_decay_report():
    _seed_user()
    resp = client.get("/signals/decay", params={"user_id": "u1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["total"] == 6
    assert body["summary"]["aged_out"] == 0


# ── Backfill ─────────────────────────────────────────────────────────────


def test_backfill_full_and_search():
    profiles.upsert_user("u1", raw_signals=[
        OnboardingSignal(tag="wood oven", category="Food", confidence=0.9, extracted_at=NOW),
    ])
    _trigger()

    resp = client.post("/intelligence/taste-backfill", json={"mode": "full"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["users"]["nodes_created"] == 1
    assert body["places"]["computed"] == 1

    matches = client.get("/profile/matches", params={"user_id": "u1"}).json()
    assert [m["place_id"] for m in matches] == ["p1"]
    top = client.get("/intelligence/domains/Food/top").json()
    assert top[0]["place_id"] == "p1"
    assert client.get("/intelligence/p1/similar").json() == []


def test_backfill_user_mode_body_forms():
    profiles.upsert_user("u1")
    assert client.post("/intelligence/taste-backfill", json={"mode": "user:u1"}).status_code == 200
    assert client.post(
        "/intelligence/taste-backfill", json={"mode": "user", "user_id": "u1"},
    ).status_code == 200
    assert client.post("/intelligence/taste-backfill", json={"mode": "user:ghost"}).status_code == 404


def test_backfill_bad_mode_is_422():
    assert client.post("/intelligence/taste-backfill", json={"mode": "everything"}).status_code == 422


def test_backfill_requires_secret_when_configured(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    assert client.post("/intelligence/taste-backfill", json={"mode": "properties"}).status_code == 401
    wrong = {"Authorization": "Bearer nope"}
    assert client.post("/intelligence/taste-backfill", json={"mode": "properties"}, headers=wrong).status_code == 401
    ok = {"Authorization": "Bearer s3cret"}
    assert client.post("/intelligence/taste-backfill", json={"mode": "properties"}, headers=ok).status_code == 200
