"""
Pipeline orchestrator.

One run per place: ``pending -> processing -> complete | failed``. Inside
``processing`` every source adapter is a stage, followed by ``aggregate`` and
``score``. Adapters run concurrently and are joined against a deadline;
stragglers are told to stop through a shared cancel event and are recorded
as timed-out diagnostics. Only an empty aggregate, or a crash in aggregation
or scoring, fails the run.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from time import monotonic

from . import store
from .adapters import Clock, SourceAdapter, utc_now
from .aggregator import AggregatedSignals, aggregate_signals
from .config import (
    DEFAULT_PIPELINE_CONFIG,
    DEFAULT_RELIABILITY_CONFIG,
    PipelineConfig,
    ReliabilityConfig,
)
from .errors import PipelineFatalError, RunConflictError
from .models import (
    AdapterResult,
    PlaceIntelligence,
    PlaceRef,
    PlaceStatus,
    SourceAttempt,
    SourceDiagnostic,
    TriggerResponse,
)
from .reliability import score_reliability

logger = logging.getLogger(__name__)

AGGREGATE_STAGE = "aggregate"
SCORE_STAGE = "score"
FETCH_STAGE = "fetch_sources"


def _failed_result(adapter: SourceAdapter, method: str, error: str) -> AdapterResult:
    return AdapterResult(
        source=adapter.name,
        category=adapter.category,
        diagnostic=SourceDiagnostic(
            source=adapter.name,
            category=adapter.category,
            attempts=[SourceAttempt(method=method, error=error)],
            error=error,
        ),
    )


class Orchestrator:
    def __init__(
        self,
        adapters: list[SourceAdapter],
        config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
        reliability_config: ReliabilityConfig = DEFAULT_RELIABILITY_CONFIG,
        clock: Clock = utc_now,
    ) -> None:
        self.adapters = adapters
        self.config = config
        self.reliability_config = reliability_config
        self._clock = clock

    # ── Trigger ──────────────────────────────────────────────────────────

    def trigger(self, ref: PlaceRef) -> TriggerResponse:
        """
        Register *ref* if new and open a run when the place is ``pending``.

        A ``complete`` or ``failed`` place is left alone; reprocessing needs an
        explicit reset. A place that is already ``processing`` raises
        ``RunConflictError`` and nothing is mutated.
        """
        record, created = store.register_place(ref, self._clock())
        if created:
            logger.info("Registered place %s (%s)", ref.place_id, ref.display_name)

        if record.status in (PlaceStatus.complete, PlaceStatus.failed):
            return TriggerResponse(
                place_id=ref.place_id,
                status=record.status.value,
                accepted=False,
                message=f"Place is {record.status.value}; reset it to pending to re-run",
            )
        if record.status == PlaceStatus.processing:
            raise RunConflictError(ref.place_id)

        first_stage = FETCH_STAGE if self.adapters else AGGREGATE_STAGE
        run = store.begin_run(ref.place_id, self._clock(), first_stage=first_stage)
        logger.info("Started run %s for %s", run.id, ref.place_id)
        return TriggerResponse(
            place_id=ref.place_id,
            status=PlaceStatus.processing.value,
            accepted=True,
            message="Pipeline run started",
            run_id=run.id,
        )

    def process(self, ref: PlaceRef) -> TriggerResponse:
        """Trigger and, when a run was opened, execute it synchronously."""
        response = self.trigger(ref)
        if response.run_id:
            place = self.execute(response.run_id)
            response.status = place.status.value
        return response

    def reset(self, place_id: str) -> PlaceIntelligence:
        place = store.reset_place(place_id)
        logger.info("Reset place %s to pending", place_id)
        return place

    # ── Run ──────────────────────────────────────────────────────────────

    def execute(self, run_id: str) -> PlaceIntelligence:
        """Run every stage of an opened run. Errors end up on the run, never raised."""
        run = store.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown pipeline run {run_id!r}")
        place = store.get_place(run.place_id)
        ref = PlaceRef(place_id=place.place_id, display_name=place.display_name)

        results: list[AdapterResult] = []
        try:
            results = self._fan_out(run_id, ref)
            aggregated = self._aggregate(run_id, results)
            score = self._score(run_id, aggregated)
        except PipelineFatalError as exc:
            logger.error("Run %s for %s failed: %s", run_id, ref.place_id, exc)
            return store.fail_run(run_id, self._clock(), str(exc), _diagnostics(results))
        except Exception as exc:
            logger.exception("Run %s for %s crashed", run_id, ref.place_id)
            return store.fail_run(
                run_id, self._clock(), f"{type(exc).__name__}: {exc}", _diagnostics(results),
            )

        place = store.complete_run(
            run_id,
            self._clock(),
            {
                "signals": aggregated.signals,
                "anti_signals": aggregated.anti_signals,
                "facts": aggregated.facts,
                "reliability_score": score,
                "review_count": aggregated.review_count,
                "sources_processed": aggregated.sources_processed,
                "pipeline_version": self.config.pipeline_version,
            },
            metadata={
                "per_source_counts": aggregated.per_source_counts,
                "duplicates_merged": aggregated.duplicates_merged,
                "source_diversity": aggregated.source_diversity,
            },
        )
        logger.info(
            "Run %s for %s complete: %d signals, %d anti-signals, reliability %.3f",
            run_id, ref.place_id, place.signal_count, place.anti_signal_count, score,
        )
        return place

    def _fan_out(self, run_id: str, ref: PlaceRef) -> list[AdapterResult]:
        """Call every adapter concurrently and join them against the stage deadline.

        Stages are logged in completion order. Results are returned in adapter
        order so aggregation stays reproducible.
        """
        if not self.adapters:
            return []

        by_name: dict[str, AdapterResult] = {}
        cancel = threading.Event()
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.max_fanout_workers, len(self.adapters)),
            thread_name_prefix=f"fanout-{ref.place_id}",
        )
        try:
            futures: dict[Future, SourceAdapter] = {
                executor.submit(adapter.fetch, ref, cancel): adapter for adapter in self.adapters
            }
            pending = set(futures)
            deadline = monotonic() + self.config.stage_deadline_s
            while pending:
                remaining = deadline - monotonic()
                if remaining <= 0:
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    adapter = futures[future]
                    result = self._collect(adapter, future)
                    by_name[adapter.name] = result
                    self._record_adapter_stage(run_id, result)

            for future in pending:
                future.cancel()
                adapter = futures[future]
                error = f"timed out after {self.config.stage_deadline_s:g}s"
                logger.warning("%s: %s for %s", adapter.name, error, ref.place_id)
                result = _failed_result(adapter, "deadline", error)
                by_name[adapter.name] = result
                self._record_adapter_stage(run_id, result)
        finally:
            # Stragglers stop after their current method; their results are discarded.
            cancel.set()
            executor.shutdown(wait=False, cancel_futures=True)

        return [by_name[a.name] for a in self.adapters if a.name in by_name]

    def _collect(self, adapter: SourceAdapter, future: Future) -> AdapterResult:
        try:
            return future.result()
        except Exception as exc:
            # Adapters are not supposed to raise; record it as a failed stage.
            logger.warning("%s: adapter raised", adapter.name, exc_info=True)
            return _failed_result(adapter, "fetch", str(exc) or type(exc).__name__)

    def _record_adapter_stage(self, run_id: str, result: AdapterResult) -> None:
        if result.outcome == "error":
            store.record_stage(
                run_id,
                f"{result.source}_skipped",
                next_stage=FETCH_STAGE,
                error=f"{result.source}: {result.diagnostic.error}",
            )
        else:
            store.record_stage(run_id, result.source, next_stage=FETCH_STAGE)

    def _aggregate(self, run_id: str, results: list[AdapterResult]) -> AggregatedSignals:
        store.set_current_stage(run_id, AGGREGATE_STAGE)
        aggregated = aggregate_signals(results)
        if aggregated.is_empty:
            raise PipelineFatalError("No source produced any signals")
        store.record_stage(run_id, AGGREGATE_STAGE, next_stage=SCORE_STAGE)
        return aggregated

    def _score(self, run_id: str, aggregated: AggregatedSignals) -> float:
        score = score_reliability(
            aggregated.signal_count,
            aggregated.review_count,
            aggregated.source_diversity,
            aggregated.review_signal_count,
            self.reliability_config,
        )
        store.record_stage(run_id, SCORE_STAGE)
        return score


def _diagnostics(results: list[AdapterResult]) -> dict[str, SourceDiagnostic]:
    return {r.source: r.diagnostic for r in results}
