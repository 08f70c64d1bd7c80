from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TasteDomain(str, Enum):
    design = "Design"
    character = "Character"
    service = "Service"
    food = "Food"
    location = "Location"
    wellness = "Wellness"


ALL_DOMAINS: list[TasteDomain] = list(TasteDomain)

# Pipeline workers report long dimension names; older runs used a different set.
DIMENSION_TO_DOMAIN: dict[str, TasteDomain] = {
    "design": TasteDomain.design,
    "design language": TasteDomain.design,
    "design & aesthetic": TasteDomain.design,
    "character": TasteDomain.character,
    "character & identity": TasteDomain.character,
    "scale & intimacy": TasteDomain.character,
    "culture & character": TasteDomain.character,
    "rhythm & pace": TasteDomain.character,
    "service": TasteDomain.service,
    "service philosophy": TasteDomain.service,
    "food": TasteDomain.food,
    "food & drink": TasteDomain.food,
    "food & drink identity": TasteDomain.food,
    "location": TasteDomain.location,
    "location & context": TasteDomain.location,
    "location & setting": TasteDomain.location,
    "wellness": TasteDomain.wellness,
    "wellness & body": TasteDomain.wellness,
}


def resolve_domain(label: str | None) -> TasteDomain | None:
    """Map a domain or pipeline dimension label onto a taste domain."""
    if not label:
        return None
    return DIMENSION_TO_DOMAIN.get(label.strip().lower())


class Polarity(str, Enum):
    positive = "positive"
    negative = "negative"


class SourceCategory(str, Enum):
    reviews = "reviews"
    editorial = "editorial"
    menu = "menu"
    awards = "awards"
    social = "social"


class PlaceStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    complete = "complete"
    failed = "failed"


class RunStatus(str, Enum):
    processing = "processing"
    complete = "complete"
    failed = "failed"


class TasteSignal(BaseModel):
    domain: TasteDomain
    tag: str = Field(..., min_length=1)
    # Value at extraction time; decay is applied on read.
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str = Field(..., min_length=1)
    extracted_at: datetime
    polarity: Polarity = Polarity.positive
    review_corroborated: bool = False


class SourceAttempt(BaseModel):
    method: str
    items_returned: int = 0
    signals_returned: int = 0
    error: str | None = None
    duration_ms: float | None = None


class SourceDiagnostic(BaseModel):
    source: str
    category: SourceCategory
    attempts: list[SourceAttempt] = Field(default_factory=list)
    items_returned: int = 0
    signals_returned: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return any(a.error is None for a in self.attempts)


class AdapterResult(BaseModel):
    """Tagged result of one source adapter call: success, partial or error."""

    source: str
    category: SourceCategory
    signals: list[TasteSignal] = Field(default_factory=list)
    facts: dict[str, Any] = Field(default_factory=dict)
    diagnostic: SourceDiagnostic

    @property
    def outcome(self) -> str:
        if self.diagnostic.error:
            return "error"
        if any(a.error for a in self.diagnostic.attempts):
            return "partial"
        return "success"


class PlaceRef(BaseModel):
    place_id: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)


class PipelineRun(BaseModel):
    id: str
    place_id: str
    status: RunStatus = RunStatus.processing
    current_stage: str | None = None
    stages_completed: list[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: float | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.complete, RunStatus.failed)


class PlaceIntelligence(BaseModel):
    place_id: str
    display_name: str
    status: PlaceStatus = PlaceStatus.pending
    signals: list[TasteSignal] = Field(default_factory=list)
    anti_signals: list[TasteSignal] = Field(default_factory=list)
    facts: dict[str, Any] = Field(default_factory=dict)
    reliability_score: float | None = Field(default=None, ge=0.0, le=1.0)
    signal_count: int = 0
    anti_signal_count: int = 0
    review_count: int = 0
    sources_processed: dict[str, SourceDiagnostic] = Field(default_factory=dict)
    pipeline_version: str | None = None
    last_enriched_at: datetime | None = None
    created_at: datetime


# ── API payloads ─────────────────────────────────────────────────────────


class TriggerRequest(BaseModel):
    place_id: str = Field(..., min_length=1, description="External place identifier")
    display_name: str = Field(..., min_length=1)


class TriggerResponse(BaseModel):
    place_id: str
    status: str
    accepted: bool
    message: str
    run_id: str | None = None


class RunSummary(BaseModel):
    status: RunStatus
    current_stage: str | None
    stages_completed: list[str]
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: float | None = None
    error: str | None = None


class StatusResponse(BaseModel):
    place_id: str
    status: str
    display_name: str | None = None
    signals: list[TasteSignal] = Field(default_factory=list)
    anti_signals: list[TasteSignal] = Field(default_factory=list)
    facts: dict[str, Any] = Field(default_factory=dict)
    reliability_score: float | None = None
    signal_count: int = 0
    anti_signal_count: int = 0
    review_count: int = 0
    sources_processed: dict[str, SourceDiagnostic] = Field(default_factory=dict)
    pipeline_version: str | None = None
    last_enriched_at: datetime | None = None
    latest_run: RunSummary | None = None
