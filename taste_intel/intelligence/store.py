from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Any

from .errors import InvalidTransitionError, PlaceNotFoundError, RunConflictError
from .models import (
    PipelineRun,
    PlaceIntelligence,
    PlaceRef,
    PlaceStatus,
    RunStatus,
    SourceDiagnostic,
)

# In-memory stand-in for the relational store. Signals, anti-signals and
# diagnostics are kept as JSON-capable model lists on the place row.
_places: dict[str, PlaceIntelligence] = {}
_runs: dict[str, PipelineRun] = {}
_runs_by_place: dict[str, list[str]] = {}
_lock = threading.RLock()


def register_place(ref: PlaceRef, now: datetime) -> tuple[PlaceIntelligence, bool]:
    """Create a ``pending`` record for *ref* if none exists. Returns ``(record, created)``."""
    with _lock:
        existing = _places.get(ref.place_id)
        if existing is not None:
            return existing.model_copy(deep=True), False
        record = PlaceIntelligence(
            place_id=ref.place_id,
            display_name=ref.display_name,
            created_at=now,
        )
        _places[ref.place_id] = record
        return record.model_copy(deep=True), True


def get_place(place_id: str) -> PlaceIntelligence | None:
    with _lock:
        record = _places.get(place_id)
        return record.model_copy(deep=True) if record else None


def list_places(status: PlaceStatus | None = None) -> list[PlaceIntelligence]:
    with _lock:
        return [
            p.model_copy(deep=True)
            for p in _places.values()
            if status is None or p.status == status
        ]


def begin_run(place_id: str, now: datetime, first_stage: str | None = None) -> PipelineRun:
    """Move a place from ``pending`` to ``processing`` and open a new run.

    The status check and the transition happen under one lock, so at most one
    non-terminal run can exist per place.
    """
    with _lock:
        record = _places.get(place_id)
        if record is None:
            raise PlaceNotFoundError(place_id)
        if record.status == PlaceStatus.processing:
            raise RunConflictError(place_id)
        if record.status != PlaceStatus.pending:
            raise InvalidTransitionError(place_id, record.status.value, PlaceStatus.processing.value)

        run = PipelineRun(
            id=uuid.uuid4().hex,
            place_id=place_id,
            current_stage=first_stage,
            started_at=now,
        )
        record.status = PlaceStatus.processing
        _runs[run.id] = run
        _runs_by_place.setdefault(place_id, []).append(run.id)
        return run.model_copy(deep=True)


def _get_run(run_id: str) -> PipelineRun:
    run = _runs.get(run_id)
    if run is None:
        raise KeyError(f"Unknown pipeline run {run_id!r}")
    return run


def record_stage(
    run_id: str,
    stage: str,
    next_stage: str | None = None,
    error: str | None = None,
) -> PipelineRun:
    """Append *stage* to the run's stage log and move ``current_stage`` on."""
    with _lock:
        run = _get_run(run_id)
        run.stages_completed.append(stage)
        run.current_stage = next_stage
        if error:
            run.error = f"{run.error}; {error}" if run.error else error
        return run.model_copy(deep=True)


def set_current_stage(run_id: str, stage: str | None) -> None:
    with _lock:
        _get_run(run_id).current_stage = stage


def complete_run(
    run_id: str,
    now: datetime,
    updates: dict[str, Any],
    metadata: dict[str, Any] | None = None,
) -> PlaceIntelligence:
    """Persist the enrichment result and mark both run and place ``complete``."""
    with _lock:
        run = _get_run(run_id)
        if metadata:
            run.metadata.update(metadata)
        record = _places[run.place_id]
        for field, value in updates.items():
            setattr(record, field, value)
        record.signal_count = len(record.signals)
        record.anti_signal_count = len(record.anti_signals)
        record.status = PlaceStatus.complete
        record.last_enriched_at = now

        run.status = RunStatus.complete
        run.current_stage = None
        run.completed_at = now
        run.duration_ms = round((now - run.started_at).total_seconds() * 1000, 1)
        return record.model_copy(deep=True)


def fail_run(
    run_id: str,
    now: datetime,
    error: str,
    sources_processed: dict[str, SourceDiagnostic] | None = None,
) -> PlaceIntelligence:
    """Mark the run and place ``failed``, keeping diagnostics for audit."""
    with _lock:
        run = _get_run(run_id)
        record = _places[run.place_id]
        if sources_processed is not None:
            record.sources_processed = sources_processed
        record.status = PlaceStatus.failed

        run.status = RunStatus.failed
        run.error = f"{run.error}; {error}" if run.error else error
        run.completed_at = now
        run.duration_ms = round((now - run.started_at).total_seconds() * 1000, 1)
        return record.model_copy(deep=True)


def reset_place(place_id: str) -> PlaceIntelligence:
    """Return a place to ``pending`` and clear the previous run's results."""
    with _lock:
        record = _places.get(place_id)
        if record is None:
            raise PlaceNotFoundError(place_id)
        if record.status == PlaceStatus.processing:
            raise RunConflictError(place_id)
        record.status = PlaceStatus.pending
        record.signals = []
        record.anti_signals = []
        record.facts = {}
        record.reliability_score = None
        record.signal_count = 0
        record.anti_signal_count = 0
        record.review_count = 0
        record.sources_processed = {}
        record.last_enriched_at = None
        return record.model_copy(deep=True)


def get_run(run_id: str) -> PipelineRun | None:
    with _lock:
        run = _runs.get(run_id)
        return run.model_copy(deep=True) if run else None


def runs_for_place(place_id: str) -> list[PipelineRun]:
    with _lock:
        return [_runs[rid].model_copy(deep=True) for rid in _runs_by_place.get(place_id, [])]


def latest_run(place_id: str) -> PipelineRun | None:
    with _lock:
        ids = _runs_by_place.get(place_id)
        return _runs[ids[-1]].model_copy(deep=True) if ids else None


def load_places(records: list[PlaceIntelligence]) -> int:
    """Replace all place rows with *records*, e.g. from an exported dump. Run history is dropped."""
    with _lock:
        _places.clear()
        _runs.clear()
        _runs_by_place.clear()
        for record in records:
            _places[record.place_id] = record.model_copy(deep=True)
        return len(_places)


def clear_store() -> None:
    with _lock:
        _places.clear()
        _runs.clear()
        _runs_by_place.clear()
