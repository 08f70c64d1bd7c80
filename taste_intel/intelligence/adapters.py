"""
Source adapters.

Every adapter exposes ``fetch(ref, cancel) -> AdapterResult`` and never raises:
each concrete method it tries (scraper actor, index lookup, LLM fallback)
becomes a ``SourceAttempt`` in the result's diagnostic, in the order it was
tried. Once ``cancel`` is set no further method is started.
"""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ..llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from ..llm.groq_client import extract_editorial_signals
from .config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from .models import (
    AdapterResult,
    PlaceRef,
    Polarity,
    SourceAttempt,
    SourceCategory,
    SourceDiagnostic,
    TasteSignal,
    resolve_domain,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MethodResult:
    signals: list[TasteSignal] = field(default_factory=list)
    items: int = 0
    facts: dict[str, Any] = field(default_factory=dict)


def parse_raw_signals(
    raw: list[dict[str, Any]],
    source: str,
    extracted_at: datetime,
    polarity: Polarity | None = None,
) -> list[TasteSignal]:
    """Convert worker/LLM signal dicts into ``TasteSignal`` objects.

    Entries whose dimension maps to no taste domain, or that carry no tag, are
    skipped.
    """
    signals: list[TasteSignal] = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        domain = resolve_domain(item.get("dimension") or item.get("domain"))
        tag = str(item.get("signal") or item.get("tag") or "").strip()
        if domain is None or not tag:
            logger.debug("Dropping unmappable signal from %s: %r", source, item)
            continue
        try:
            confidence = float(item.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        item_polarity = polarity
        if item_polarity is None:
            item_polarity = (
                Polarity.negative
                if str(item.get("polarity", "")).lower() == "negative"
                else Polarity.positive
            )
        signals.append(TasteSignal(
            domain=domain,
            tag=tag,
            confidence=max(0.0, min(1.0, confidence)),
            source=source,
            extracted_at=extracted_at,
            polarity=item_polarity,
            review_corroborated=bool(item.get("review_corroborated", False)),
        ))
    return signals


class FetchMethod(ABC):
    """One concrete way of getting data out of a source."""

    name: str

    @abstractmethod
    def run(self, ref: PlaceRef, source: str, now: datetime) -> MethodResult:
        ...


class WorkerMethod(FetchMethod):
    """Call the pipeline worker's ``/run`` endpoint for one stage and method."""

    def __init__(self, stage: str, name: str, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> None:
        self.stage = stage
        self.name = name
        self.config = config

    def run(self, ref: PlaceRef, source: str, now: datetime) -> MethodResult:
        if not self.config.worker_url:
            raise RuntimeError("PIPELINE_WORKER_URL is not configured")

        response = httpx.post(
            f"{self.config.worker_url.rstrip('/')}/run",
            json={
                "stage": self.stage,
                "method": self.name,
                "place_id": ref.place_id,
                "display_name": ref.display_name,
            },
            timeout=self.config.adapter_timeout_s,
        )
        response.raise_for_status()
        payload = response.json()

        signals = parse_raw_signals(payload.get("signals", []), source, now)
        signals += parse_raw_signals(
            payload.get("anti_signals", []), source, now, polarity=Polarity.negative,
        )
        items = payload.get("item_count")
        return MethodResult(
            signals=signals,
            items=int(items) if items is not None else len(signals),
            facts=payload.get("facts") or {},
        )


class LLMEditorialMethod(FetchMethod):
    name = "groq_editorial"

    def __init__(self, config: LLMConfig = DEFAULT_LLM_CONFIG) -> None:
        self.config = config

    def run(self, ref: PlaceRef, source: str, now: datetime) -> MethodResult:
        raw = extract_editorial_signals(ref.display_name, config=self.config)
        signals = parse_raw_signals(raw, source, now)
        return MethodResult(signals=signals, items=len(raw))


class SourceAdapter(ABC):
    name: str
    category: SourceCategory

    @abstractmethod
    def fetch(self, ref: PlaceRef, cancel: threading.Event | None = None) -> AdapterResult:
        ...


class FallbackSourceAdapter(SourceAdapter):
    """
    Try each method in order until one returns data.

    An attempt that raises, or returns nothing, moves on to the next method.
    At most ``max_attempts`` methods are tried. Every attempt is kept in the
    diagnostic so a later audit can see which method produced the data.
    """

    def __init__(
        self,
        name: str,
        category: SourceCategory,
        methods: list[FetchMethod],
        max_attempts: int = DEFAULT_PIPELINE_CONFIG.max_attempts_per_adapter,
        clock: Clock = utc_now,
    ) -> None:
        self.name = name
        self.category = category
        self.methods = methods
        self.max_attempts = max_attempts
        self._clock = clock

    def fetch(self, ref: PlaceRef, cancel: threading.Event | None = None) -> AdapterResult:
        diagnostic = SourceDiagnostic(source=self.name, category=self.category)
        result = MethodResult()
        last_error: str | None = None

        for method in self.methods[: self.max_attempts]:
            if cancel is not None and cancel.is_set():
                logger.info("%s: cancelled before %s for %s", self.name, method.name, ref.place_id)
                break
            started = time.perf_counter()
            try:
                outcome = method.run(ref, self.name, self._clock())
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "%s: method %s failed for %s", self.name, method.name, ref.place_id,
                    exc_info=True,
                )
                diagnostic.attempts.append(SourceAttempt(
                    method=method.name,
                    error=last_error,
                    duration_ms=_elapsed_ms(started),
                ))
                continue

            diagnostic.attempts.append(SourceAttempt(
                method=method.name,
                items_returned=outcome.items,
                signals_returned=len(outcome.signals),
                duration_ms=_elapsed_ms(started),
            ))
            if outcome.items or outcome.signals:
                result = outcome
                break

        diagnostic.items_returned = result.items
        diagnostic.signals_returned = len(result.signals)
        if not diagnostic.succeeded and last_error:
            diagnostic.error = last_error

        return AdapterResult(
            source=self.name,
            category=self.category,
            signals=result.signals,
            facts=result.facts,
            diagnostic=diagnostic,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def build_default_adapters(
    config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    llm_config: LLMConfig = DEFAULT_LLM_CONFIG,
) -> list[SourceAdapter]:
    """The production adapter set, in source processing order."""
    attempts = config.max_attempts_per_adapter
    return [
        FallbackSourceAdapter("reviews", SourceCategory.reviews, [
            WorkerMethod("scrape_reviews", "google_maps_reviews", config),
            WorkerMethod("scrape_reviews", "tripadvisor_reviews", config),
        ], max_attempts=attempts),
        FallbackSourceAdapter("editorial", SourceCategory.editorial, [
            WorkerMethod("editorial_extraction", "editorial_index", config),
            LLMEditorialMethod(llm_config),
        ], max_attempts=attempts),
        FallbackSourceAdapter("menu", SourceCategory.menu, [
            WorkerMethod("menu_analysis", "menu_parser", config),
        ], max_attempts=attempts),
        FallbackSourceAdapter("awards", SourceCategory.awards, [
            WorkerMethod("award_positioning", "award_registry", config),
        ], max_attempts=attempts),
        FallbackSourceAdapter("social", SourceCategory.social, [
            WorkerMethod("instagram_analysis", "instagram_index", config),
        ], max_attempts=attempts),
    ]
