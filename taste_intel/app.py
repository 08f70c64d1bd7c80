from __future__ import annotations

from datetime import datetime

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query

from .auth.dependencies import require_cron_secret
from .intelligence.adapters import Clock, build_default_adapters, utc_now
from .intelligence.audit import run_audit
from .intelligence.errors import (
    InvalidTransitionError,
    PlaceNotFoundError,
    RunConflictError,
    UserNotFoundError,
)
from .intelligence.models import (
    PlaceRef,
    StatusResponse,
    TasteDomain,
    TriggerRequest,
    TriggerResponse,
)
from .intelligence.orchestrator import Orchestrator
from .intelligence.queries import MatchResponse, match_query, status_query
from .taste import profiles
from .taste.decay import DecayReport, build_decay_report
from .taste.models import MatchRequest
from .taste.reprofiling import ReprofilingCheck, evaluate_reprofiling
from .vectors.backfill import BackfillReport, BackfillRequest, parse_mode, run_backfill
from .vectors.similarity import (
    TasteNeighbor,
    VectorMatch,
    find_places_by_domain,
    find_similar_places,
    find_similar_to_place,
    find_taste_neighbors,
)

app = FastAPI(title="Taste Intelligence API", version="3.0.0")

_orchestrator: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator(build_default_adapters())
    return _orchestrator


def get_clock() -> Clock:
    return utc_now


def _require_user(user_id: str):
    state = profiles.get_user(user_id)
    if state is None:
        raise HTTPException(status_code=404, detail=str(UserNotFoundError(user_id)))
    return state


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ── Enrichment pipeline ──────────────────────────────────────────────────


@app.post("/intelligence/trigger", response_model=TriggerResponse)
def trigger(
    body: TriggerRequest,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TriggerResponse:
    try:
        response = orchestrator.trigger(
            PlaceRef(place_id=body.place_id, display_name=body.display_name)
        )
    except (RunConflictError, InvalidTransitionError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    # Adapters run after the response is sent
    if response.run_id:
        background_tasks.add_task(orchestrator.execute, response.run_id)
    return response


@app.get("/intelligence/audit")
def audit() -> dict:
    return run_audit()


@app.get("/intelligence/domains/{domain}/top", response_model=list[VectorMatch])
def top_places_for_domain(domain: TasteDomain, limit: int = Query(10, ge=1, le=100)) -> list[VectorMatch]:
    return find_places_by_domain(domain, limit=limit)


@app.get("/intelligence/{place_id}", response_model=StatusResponse)
def place_status(place_id: str) -> StatusResponse:
    return status_query(place_id)


@app.post("/intelligence/{place_id}/reset", response_model=StatusResponse)
def reset_place(
    place_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> StatusResponse:
    try:
        orchestrator.reset(place_id)
    except PlaceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RunConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return status_query(place_id)


@app.post("/intelligence/{place_id}/match", response_model=MatchResponse)
def match_place(
    place_id: str,
    body: MatchRequest,
    clock: Clock = Depends(get_clock),
) -> MatchResponse:
    return match_query(place_id, body.taste_profile, now=clock())


@app.get("/intelligence/{place_id}/similar", response_model=list[VectorMatch])
def similar_places(place_id: str, limit: int = Query(10, ge=1, le=100)) -> list[VectorMatch]:
    return find_similar_to_place(place_id, limit=limit)


# ── User taste ───────────────────────────────────────────────────────────


@app.get("/profile/reprofiling-check", response_model=ReprofilingCheck)
def reprofiling_check(user_id: str, clock: Clock = Depends(get_clock)) -> ReprofilingCheck:
    state = _require_user(user_id)
    now: datetime = clock()
    return evaluate_reprofiling(
        profiles.nodes_for_user(user_id),
        profiles.contradictions_for_user(user_id),
        state.last_synthesized_at,
        profiles.new_bookings_since(user_id, state.last_synthesized_at),
        now=now,
    )


@app.post("/profile/saved-places")
def record_saved_place(user_id: str, clock: Clock = Depends(get_clock)) -> dict:
    state = _require_user(user_id)
    profiles.record_saved_place(user_id, clock())
    return {
        "user_id": user_id,
        "new_bookings": profiles.new_bookings_since(user_id, state.last_synthesized_at),
    }


@app.get("/signals/decay", response_model=DecayReport)
def signal_decay(user_id: str, clock: Clock = Depends(get_clock)) -> DecayReport:
    _require_user(user_id)
    return build_decay_report(user_id, profiles.nodes_for_user(user_id), now=clock())


@app.get("/profile/matches", response_model=list[VectorMatch])
def profile_matches(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    min_score: int = Query(0, ge=0, le=100),
) -> list[VectorMatch]:
    state = _require_user(user_id)
    if state.taste_vector is None:
        return []
    return find_similar_places(state.taste_vector, limit=limit, min_score=min_score)


@app.get("/profile/taste-neighbors", response_model=list[TasteNeighbor])
def taste_neighbors(user_id: str, limit: int = Query(10, ge=1, le=100)) -> list[TasteNeighbor]:
    _require_user(user_id)
    return find_taste_neighbors(user_id, limit=limit)


# ── Batch ────────────────────────────────────────────────────────────────


@app.post(
    "/intelligence/taste-backfill",
    response_model=BackfillReport,
    dependencies=[Depends(require_cron_secret)],
)
def taste_backfill(body: BackfillRequest, clock: Clock = Depends(get_clock)) -> BackfillReport:
    selector = body.selector()
    try:
        parse_mode(selector)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    try:
        return run_backfill(selector, now=clock())
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
