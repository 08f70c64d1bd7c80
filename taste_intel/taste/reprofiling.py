"""
Re-profiling triggers.

A user's taste profile is re-synthesized when any one of these fires:

1. Time: six or more 30-day months since the last synthesis, or no synthesis at all.
2. Volume: three or more saved places since the last synthesis.
3. Confidence floor: any domain's decayed average confidence is below 0.5.
4. Contradictions: active contradictions / active signals exceeds 0.30.

The result carries the full diagnostics so callers can explain the decision.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Literal

from pydantic import BaseModel, Field

from ..intelligence.models import ALL_DOMAINS
from .config import (
    DEFAULT_DECAY_CONFIG,
    DEFAULT_REPROFILING_CONFIG,
    DecayConfig,
    ReprofilingConfig,
)
from .decay import age_in_days, domain_confidences
from .models import ContradictionNode, TasteNode

Urgency = Literal["low", "medium", "high"]


class ReprofilingInput(BaseModel):
    last_synthesized_at: datetime | None = None
    new_bookings_since_synthesis: int = Field(default=0, ge=0)
    domain_confidences: dict[str, float] = Field(default_factory=dict)
    contradiction_ratio: float = Field(default=0.0, ge=0.0)
    total_signals: int = 0
    total_contradictions: int = 0


class ReprofilingDiagnostics(BaseModel):
    last_synthesized_at: datetime | None
    days_since_synthesis: float | None
    new_bookings: int
    domain_confidences: dict[str, float]
    contradiction_ratio: float
    total_signals: int
    total_contradictions: int


class ReprofilingCheck(BaseModel):
    should_reprofile: bool
    urgency: Urgency
    triggers: list[str]
    suggested_phases: list[str]
    diagnostics: ReprofilingDiagnostics


def contradiction_ratio(active_contradictions: int, active_signals: int) -> float:
    """Active contradictions per active signal; 0 when there are no signals."""
    return active_contradictions / active_signals if active_signals > 0 else 0.0


def check_reprofiling_triggers(
    data: ReprofilingInput,
    *,
    now: datetime,
    config: ReprofilingConfig = DEFAULT_REPROFILING_CONFIG,
) -> ReprofilingCheck:
    triggers: list[str] = []
    phases: list[str] = []

    # 1. Time since last synthesis
    days_since: float | None = None
    if data.last_synthesized_at is None:
        triggers.append("No profile synthesis on record")
        phases.append("full-onboarding")
    else:
        days_since = age_in_days(data.last_synthesized_at, now=now)
        if days_since >= config.max_age_days:
            triggers.append(f"{int(days_since // 30)} months since last profile synthesis")
            phases.append("full-refresh")

    # 2. New bookings
    if data.new_bookings_since_synthesis >= config.booking_threshold:
        triggers.append(f"{data.new_bookings_since_synthesis} new bookings since last synthesis")
        phases.append("behavioral-update")

    # 3. Decayed domain confidence
    weak = [d for d, c in data.domain_confidences.items() if c < config.confidence_floor]
    if weak:
        triggers.append(
            f"Low confidence in {', '.join(weak)} (below {config.confidence_floor:.0%})"
        )
        phases.extend(f"adaptive-{d.lower()}" for d in weak)

    # 4. Contradiction ratio
    if data.contradiction_ratio > config.contradiction_ratio_limit:
        triggers.append(
            f"Contradiction ratio {data.contradiction_ratio:.0%} "
            f"(exceeds {config.contradiction_ratio_limit:.0%})"
        )
        phases.append("contradiction-resolution")

    urgency: Urgency = "low"
    if len(triggers) >= 3 or len(weak) >= 3:
        urgency = "high"
    elif len(triggers) >= 2:
        urgency = "medium"

    return ReprofilingCheck(
        should_reprofile=bool(triggers),
        urgency=urgency,
        triggers=triggers,
        suggested_phases=list(dict.fromkeys(phases)),
        diagnostics=ReprofilingDiagnostics(
            last_synthesized_at=data.last_synthesized_at,
            days_since_synthesis=round(days_since, 1) if days_since is not None else None,
            new_bookings=data.new_bookings_since_synthesis,
            domain_confidences=data.domain_confidences,
            contradiction_ratio=round(data.contradiction_ratio, 2),
            total_signals=data.total_signals,
            total_contradictions=data.total_contradictions,
        ),
    )


def evaluate_reprofiling(
    nodes: Iterable[TasteNode],
    contradictions: Iterable[ContradictionNode],
    last_synthesized_at: datetime | None,
    new_bookings: int,
    *,
    now: datetime,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
    config: ReprofilingConfig = DEFAULT_REPROFILING_CONFIG,
) -> ReprofilingCheck:
    """Build the trigger input from a user's active graph state and evaluate it."""
    active_nodes = [n for n in nodes if n.is_active]
    active_contradictions = [c for c in contradictions if c.is_active]
    confidences = domain_confidences(
        active_nodes, now=now, half_life_days=decay_config.half_life_days,
    )
    return check_reprofiling_triggers(
        ReprofilingInput(
            last_synthesized_at=last_synthesized_at,
            new_bookings_since_synthesis=new_bookings,
            domain_confidences={d.value: confidences[d] for d in ALL_DOMAINS},
            contradiction_ratio=contradiction_ratio(len(active_contradictions), len(active_nodes)),
            total_signals=len(active_nodes),
            total_contradictions=len(active_contradictions),
        ),
        now=now,
        config=config,
    )
