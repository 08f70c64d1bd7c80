from __future__ import annotations

from typing import Any

import pandas as pd

from . import store
from .config import DEFAULT_RELIABILITY_CONFIG, ReliabilityConfig
from .models import PlaceIntelligence, PlaceStatus, SourceCategory
from .reliability import audit_flags

_COLUMNS = [
    "place_id",
    "display_name",
    "status",
    "reliability_score",
    "signal_count",
    "anti_signal_count",
    "review_count",
    "review_signal_count",
    "problems",
]


def _review_signal_count(place: PlaceIntelligence) -> int:
    review_sources = {
        name for name, diag in place.sources_processed.items()
        if diag.category == SourceCategory.reviews
    }
    return sum(1 for s in place.signals if s.source in review_sources)


def build_audit_frame(
    places: list[PlaceIntelligence],
    config: ReliabilityConfig = DEFAULT_RELIABILITY_CONFIG,
) -> pd.DataFrame:
    """One row per place with its audit problems."""
    rows = []
    for place in places:
        review_signals = _review_signal_count(place)
        rows.append({
            "place_id": place.place_id,
            "display_name": place.display_name,
            "status": place.status.value,
            "reliability_score": place.reliability_score,
            "signal_count": place.signal_count,
            "anti_signal_count": place.anti_signal_count,
            "review_count": place.review_count,
            "review_signal_count": review_signals,
            "problems": audit_flags(
                place.reliability_score,
                place.signal_count,
                place.review_count,
                review_signals,
                config,
            ),
        })
    return pd.DataFrame(rows, columns=_COLUMNS)


def run_audit(config: ReliabilityConfig = DEFAULT_RELIABILITY_CONFIG) -> dict[str, Any]:
    df = build_audit_frame(store.list_places(), config)
    if df.empty:
        return {
            "total": 0,
            "complete": 0,
            "flagged": [],
            "not_complete": [],
            "status_counts": {},
            "avg_reliability": None,
        }

    complete = df[df["status"] == PlaceStatus.complete.value]
    flagged = complete[complete["problems"].map(len) > 0]
    not_complete = df[df["status"] != PlaceStatus.complete.value]

    # Average reliability over completed places only
    avg = complete["reliability_score"].dropna()

    return {
        "total": len(df),
        "complete": len(complete),
        "flagged": [
            {
                "place_id": row.place_id,
                "display_name": row.display_name,
                "reliability_score": row.reliability_score,
                "signal_count": int(row.signal_count),
                "review_count": int(row.review_count),
                "problems": row.problems,
            }
            for row in flagged.itertuples(index=False)
        ],
        "not_complete": [
            {"place_id": row.place_id, "display_name": row.display_name, "status": row.status}
            for row in not_complete.itertuples(index=False)
        ],
        "status_counts": {k: int(v) for k, v in df["status"].value_counts().items()},
        "avg_reliability": round(float(avg.mean()), 3) if not avg.empty else None,
    }
