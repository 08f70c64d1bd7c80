"""
Vector backfill batch job.

Phase 1 (users): materialise onboarding signals into TasteNodes, record new
contradictions, synthesise the six-domain profile and store the user vector.
Phase 2 (places): compute the vector of every completed place.

Both phases are idempotent and report what they changed. Individual failures
are logged and counted; they never stop the batch.

The CLI works on an exported state file (places plus the taste graph) and the
place-vector snapshot next to it; ``--save`` writes both back.

Usage:
    python -m taste_intel.vectors.backfill --mode full --state taste_state.json
    python -m taste_intel.vectors.backfill --mode user:<id>
    python -m taste_intel.vectors.backfill --mode properties --save
"""
from __future__ import annotations

import argparse
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from itertools import product
from pathlib import Path
from typing import Literal

import numpy as np
from pydantic import BaseModel, Field

from ..intelligence import store as place_store
from ..intelligence.errors import PlaceNotFoundError, UserNotFoundError
from ..intelligence.models import PlaceIntelligence, PlaceStatus, Polarity, TasteDomain, resolve_domain
from ..taste import profiles
from ..taste.config import DEFAULT_DECAY_CONFIG, DecayConfig
from ..taste.decay import decay_confidence, domain_confidences
from ..taste.models import ContradictionNode, TasteNode, TasteProfile, UserTasteState
from . import index
from .config import DEFAULT_BACKFILL_CONFIG, BackfillConfig
from .encoder import place_vector, user_taste_vector

logger = logging.getLogger(__name__)

Mode = Literal["full", "user", "properties"]


class UserBackfillResult(BaseModel):
    user_id: str
    nodes_created: int = 0
    contradictions_created: int = 0
    vector_updated: bool = False
    error: str | None = None


class PlaceBackfillResult(BaseModel):
    place_id: str
    vector_computed: bool = False
    vector_changed: bool = False
    error: str | None = None


class UserPhaseSummary(BaseModel):
    users_processed: int = 0
    users_failed: int = 0
    nodes_created: int = 0
    contradictions_created: int = 0
    vectors_updated: int = 0
    results: list[UserBackfillResult] = Field(default_factory=list)


class PlacePhaseSummary(BaseModel):
    total: int = 0
    computed: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0


class BackfillRequest(BaseModel):
    mode: str = "full"
    user_id: str | None = None

    def selector(self) -> str:
        """Accept both ``{"mode": "user:<id>"}`` and ``{"mode": "user", "user_id": ...}``."""
        if self.mode == "user" and self.user_id:
            return f"user:{self.user_id}"
        return self.mode


class BackfillReport(BaseModel):
    mode: str
    users: UserPhaseSummary | None = None
    places: PlacePhaseSummary | None = None


class TasteState(BaseModel):
    """Exported places and taste graph, as read and written by the CLI."""

    places: list[PlaceIntelligence] = Field(default_factory=list)
    users: list[UserTasteState] = Field(default_factory=list)
    nodes: list[TasteNode] = Field(default_factory=list)
    contradictions: list[ContradictionNode] = Field(default_factory=list)


def parse_mode(mode: str) -> tuple[Mode, str | None]:
    """Split ``full`` / ``user:<id>`` / ``properties`` into ``(kind, user_id)``."""
    mode = (mode or "").strip()
    if mode in ("full", "properties"):
        return mode, None
    if mode.startswith("user:") and mode[len("user:"):].strip():
        return "user", mode[len("user:"):].strip()
    raise ValueError(f"Invalid backfill mode {mode!r}; expected full, user:<id> or properties")


# ── Phase 1: users ───────────────────────────────────────────────────────


def _node_key(domain: TasteDomain, tag: str, polarity: Polarity) -> tuple[str, str, str]:
    return domain.value, " ".join(tag.lower().split()), polarity.value


def _materialize_nodes(user_id: str) -> int:
    """Turn the user's onboarding signals into TasteNodes, skipping ones that already exist."""
    state = profiles.get_user(user_id)
    existing = {
        _node_key(n.domain, n.tag, n.polarity)
        for n in profiles.nodes_for_user(user_id, active_only=False)
    }
    created = 0
    for raw in state.raw_signals:
        if raw.confidence <= 0:
            continue
        domain = resolve_domain(raw.category)
        if domain is None:
            logger.debug("User %s: no domain for category %r", user_id, raw.category)
            continue
        key = _node_key(domain, raw.tag, raw.polarity)
        if key in existing:
            continue
        profiles.add_node(TasteNode(
            id=uuid.uuid4().hex,
            user_id=user_id,
            domain=domain,
            tag=raw.tag,
            confidence=raw.confidence,
            extracted_at=raw.extracted_at,
            polarity=raw.polarity,
        ))
        existing.add(key)
        created += 1
    return created


def _detect_contradictions(
    user_id: str,
    nodes: list[TasteNode],
    *,
    now: datetime,
    config: BackfillConfig,
    decay_config: DecayConfig,
) -> int:
    """Record a contradiction for each wanted/rejected pair of the same tag in one domain."""
    known = {
        frozenset(c.node_ids) for c in profiles.contradictions_for_user(user_id, active_only=False)
    }

    def decayed(node: TasteNode) -> float:
        return decay_confidence(node.confidence, node.extracted_at, decay_config.half_life_days, now=now)

    by_key: dict[tuple[str, str], dict[Polarity, list[TasteNode]]] = {}
    for node in nodes:
        key = (node.domain.value, " ".join(node.tag.lower().split()))
        by_key.setdefault(key, {}).setdefault(node.polarity, []).append(node)

    created = 0
    for (_, tag), sides in by_key.items():
        for pos, neg in product(sides.get(Polarity.positive, []), sides.get(Polarity.negative, [])):
            if frozenset((pos.id, neg.id)) in known:
                continue
            pos_conf, neg_conf = decayed(pos), decayed(neg)
            if min(pos_conf, neg_conf) < config.contradiction_threshold:
                continue
            profiles.add_contradiction(ContradictionNode(
                id=uuid.uuid4().hex,
                user_id=user_id,
                domain=pos.domain,
                node_ids=(pos.id, neg.id),
                description=f"{pos.domain.value}: '{tag}' is both preferred and rejected",
                strength=round(min(pos_conf, neg_conf), 3),
                created_at=now,
            ))
            known.add(frozenset((pos.id, neg.id)))
            created += 1
    return created


def backfill_user(
    user_id: str,
    *,
    now: datetime,
    config: BackfillConfig = DEFAULT_BACKFILL_CONFIG,
    decay_config: DecayConfig = DEFAULT_DECAY_CONFIG,
) -> UserBackfillResult:
    if profiles.get_user(user_id) is None:
        raise UserNotFoundError(user_id)

    # Node and contradiction keys are checked and inserted under the user lock.
    with profiles.user_lock(user_id):
        state = profiles.get_user(user_id)
        result = UserBackfillResult(user_id=user_id)
        result.nodes_created = _materialize_nodes(user_id)

        nodes = profiles.nodes_for_user(user_id)
        result.contradictions_created = _detect_contradictions(
            user_id, nodes, now=now, config=config, decay_config=decay_config,
        )

        positives = [n for n in nodes if n.polarity == Polarity.positive]
        profile = TasteProfile.from_domains(
            domain_confidences(positives, now=now, half_life_days=decay_config.half_life_days)
        )
        vector = user_taste_vector(profile, nodes, now=now, decay_config=decay_config)

        previous = state.taste_vector
        if previous is None or not np.allclose(previous, vector):
            profiles.save_user_vector(user_id, profile, vector.tolist(), now)
            result.vector_updated = True
    return result


def _backfill_user_isolated(user_id: str, now: datetime, config: BackfillConfig) -> UserBackfillResult:
    try:
        return backfill_user(user_id, now=now, config=config)
    except Exception as exc:
        logger.exception("Backfill failed for user %s", user_id)
        return UserBackfillResult(user_id=user_id, error=str(exc) or type(exc).__name__)


def backfill_all_users(
    *,
    now: datetime,
    config: BackfillConfig = DEFAULT_BACKFILL_CONFIG,
) -> UserPhaseSummary:
    user_ids = profiles.list_user_ids()
    logger.info("Phase 1: processing %d users with %d workers", len(user_ids), config.max_workers)

    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        results = list(pool.map(lambda uid: _backfill_user_isolated(uid, now, config), user_ids))

    return _summarize_users(results)


def _summarize_users(results: list[UserBackfillResult]) -> UserPhaseSummary:
    ok = [r for r in results if r.error is None]
    return UserPhaseSummary(
        users_processed=len(ok),
        users_failed=len(results) - len(ok),
        nodes_created=sum(r.nodes_created for r in ok),
        contradictions_created=sum(r.contradictions_created for r in ok),
        vectors_updated=sum(1 for r in ok if r.vector_updated),
        results=results,
    )


# ── Phase 2: places ──────────────────────────────────────────────────────


def backfill_place(place_id: str, *, now: datetime) -> PlaceBackfillResult:
    place = place_store.get_place(place_id)
    if place is None:
        raise PlaceNotFoundError(place_id)

    result = PlaceBackfillResult(place_id=place_id)
    if place.status != PlaceStatus.complete or not place.signals:
        return result

    # Decay is anchored at enrichment time, not at the wall clock.
    as_of = place.last_enriched_at or now
    vector = place_vector(place.signals, place.anti_signals, now=as_of)
    result.vector_computed = True

    previous = index.get_place_vector(place_id)
    if previous is None or not np.array_equal(previous, vector):
        index.save_place_vector(place_id, vector)
        result.vector_changed = True
    return result


def _backfill_place_isolated(place_id: str, now: datetime) -> PlaceBackfillResult:
    try:
        return backfill_place(place_id, now=now)
    except Exception as exc:
        logger.exception("Backfill failed for place %s", place_id)
        return PlaceBackfillResult(place_id=place_id, error=str(exc) or type(exc).__name__)


def backfill_all_places(
    *,
    now: datetime,
    config: BackfillConfig = DEFAULT_BACKFILL_CONFIG,
) -> PlacePhaseSummary:
    place_ids = [p.place_id for p in place_store.list_places()]
    logger.info("Phase 2: computing vectors for %d places", len(place_ids))

    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        results = list(pool.map(lambda pid: _backfill_place_isolated(pid, now), place_ids))

    summary = PlacePhaseSummary(total=len(results))
    for r in results:
        if r.error:
            summary.failed += 1
        elif not r.vector_computed:
            summary.skipped += 1
        else:
            summary.computed += 1
            if r.vector_changed:
                summary.updated += 1
            else:
                summary.unchanged += 1
    logger.info(
        "Phase 2 done: %d computed (%d updated), %d skipped, %d failed",
        summary.computed, summary.updated, summary.skipped, summary.failed,
    )
    return summary


# ── Entry points ─────────────────────────────────────────────────────────


def run_backfill(
    mode: str,
    *,
    now: datetime,
    config: BackfillConfig = DEFAULT_BACKFILL_CONFIG,
) -> BackfillReport:
    """Run the phases selected by *mode*. ``user:<id>`` raises for an unknown user."""
    kind, user_id = parse_mode(mode)
    report = BackfillReport(mode=mode)

    if kind == "user":
        report.users = _summarize_users([backfill_user(user_id, now=now, config=config)])
        return report

    if kind == "full":
        report.users = backfill_all_users(now=now, config=config)
    report.places = backfill_all_places(now=now, config=config)
    return report


def load_state(path: Path) -> TasteState:
    """Replace the in-memory stores with the contents of an exported state file."""
    state = TasteState.model_validate_json(path.read_text())
    place_store.load_places(state.places)
    profiles.load_graph(state.users, state.nodes, state.contradictions)
    logger.info(
        "Loaded %d places, %d users, %d nodes from %s",
        len(state.places), len(state.users), len(state.nodes), path,
    )
    return state


def save_state(path: Path) -> TasteState:
    users, nodes, contradictions = profiles.export_graph()
    state = TasteState(
        places=place_store.list_places(), users=users, nodes=nodes, contradictions=contradictions,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(state.model_dump_json(indent=2))
    return state


def main(argv: list[str] | None = None) -> None:
    config = DEFAULT_BACKFILL_CONFIG
    parser = argparse.ArgumentParser(description="Backfill taste vectors")
    parser.add_argument("--mode", default="full", help="full | user:<id> | properties")
    parser.add_argument("--state", type=Path, default=config.state_path, help="exported state JSON")
    parser.add_argument("--vectors", type=Path, default=config.vectors_path, help="place vector snapshot (.npy)")
    parser.add_argument("--save", action="store_true", help="write the state and vector snapshot back")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        parse_mode(args.mode)
    except ValueError as exc:
        parser.error(str(exc))
    if not args.state.exists():
        parser.error(f"state file {args.state} not found")

    load_state(args.state)
    if args.vectors.exists():
        index.load_snapshot(args.vectors)

    try:
        report = run_backfill(args.mode, now=datetime.now(timezone.utc), config=config)
    except UserNotFoundError as exc:
        parser.error(str(exc))

    if report.users is not None:
        u = report.users
        print(f"Users: {u.users_processed} processed, {u.users_failed} failed")
        print(f"TasteNodes: {u.nodes_created} created")
        print(f"Contradictions: {u.contradictions_created} created")
        print(f"Taste vectors: {u.vectors_updated} updated")
    if report.places is not None:
        p = report.places
        print(f"Places: {p.total} total")
        print(f"Vectors: {p.computed} computed ({p.updated} updated), {p.skipped} skipped, {p.failed} failed")

    if args.save:
        save_state(args.state)
        count = index.save_snapshot(args.vectors)
        print(f"Saved state to {args.state} and {count} place vectors to {args.vectors}")


if __name__ == "__main__":
    main()
