from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..taste.config import DEFAULT_DECAY_CONFIG, DEFAULT_MATCH_CONFIG, DecayConfig, MatchConfig
from ..taste.match import compute_match
from ..taste.models import TasteProfile
from . import store
from .models import PlaceStatus, RunSummary, StatusResponse, TasteDomain

UNKNOWN = "unknown"
NOT_READY = "not_ready"


class MatchResponse(BaseModel):
    place_id: str
    status: str
    place_status: PlaceStatus | None = None
    overall_score: float | None = None
    breakdown: dict[TasteDomain, float] = Field(default_factory=dict)
    top_dimension: TasteDomain | None = None


def status_query(place_id: str) -> StatusResponse:
    """Current state of a place. Never raises; unregistered places report ``unknown``."""
    place = store.get_place(place_id)
    if place is None:
        return StatusResponse(place_id=place_id, status=UNKNOWN)

    run = store.latest_run(place_id)
    latest = None
    if run is not None:
        latest = RunSummary(
            status=run.status,
            current_stage=run.current_stage,
            stages_completed=run.stages_completed,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_ms=run.duration_ms,
            error=run.error,
        )

    return StatusResponse(
        place_id=place.place_id,
        status=place.status.value,
        display_name=place.display_name,
        signals=place.signals,
        anti_signals=place.anti_signals,
        facts=place.facts,
        reliability_score=place.reliability_score,
        signal_count=place.signal_count,
        anti_signal_count=place.anti_signal_count,
        review_count=place.review_count,
        sources_processed=place.sources_processed,
        pipeline_version=place.pipeline_version,
        last_enriched_at=place.last_enriched_at,
        latest_run=latest,
    )


def match_query(
    place_id: str,
    profile: TasteProfile,
    *,
    now: datetime,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> MatchResponse:
    """Match a caller's profile against a completed place, or report ``not_ready``."""
    place = store.get_place(place_id)
    if place is None or place.status != PlaceStatus.complete:
        return MatchResponse(
            place_id=place_id,
            status=NOT_READY,
            place_status=place.status if place else None,
        )

    result = compute_match(
        place.signals,
        place.anti_signals,
        profile,
        now=now,
        decay_config=decay_config,
        config=config,
    )
    return MatchResponse(
        place_id=place_id,
        status="ok",
        place_status=place.status,
        overall_score=result.overall_score,
        breakdown=result.breakdown,
        top_dimension=result.top_dimension,
    )
