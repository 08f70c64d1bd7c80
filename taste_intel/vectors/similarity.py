from __future__ import annotations

import numpy as np
from pydantic import BaseModel
from sklearn.metrics.pairwise import cosine_similarity

from ..intelligence import store as place_store
from ..intelligence.models import PlaceStatus, TasteDomain
from ..taste import profiles
from . import index
from .encoder import domain_probe_vector


class VectorMatch(BaseModel):
    place_id: str
    display_name: str
    similarity: float  # cosine, -1 to 1
    score: int  # 0-100


class TasteNeighbor(BaseModel):
    user_id: str
    similarity: float


def similarity_to_score(similarity: float) -> int:
    """Map a cosine similarity in [-1, 1] onto a 0-100 match score."""
    return max(0, min(100, round((similarity + 1) / 2 * 100)))


def _rank(
    query: np.ndarray,
    exclude: str | None,
    limit: int,
    min_score: int,
) -> list[VectorMatch]:
    ids, matrix = index.all_place_vectors()
    if not ids:
        return []

    sims = cosine_similarity(np.asarray(query, dtype=float).reshape(1, -1), matrix).flatten()

    matches: list[VectorMatch] = []
    for i in np.argsort(-sims, kind="stable"):
        place_id = ids[i]
        if place_id == exclude:
            continue
        # Vectors can outlive a reset; only completed places are searchable.
        place = place_store.get_place(place_id)
        if place is None or place.status != PlaceStatus.complete:
            continue
        score = similarity_to_score(float(sims[i]))
        if score < min_score:
            continue
        matches.append(VectorMatch(
            place_id=place_id,
            display_name=place.display_name,
            similarity=round(float(sims[i]), 4),
            score=score,
        ))
        if len(matches) >= limit:
            break
    return matches


def find_similar_places(vector: np.ndarray, limit: int = 50, min_score: int = 0) -> list[VectorMatch]:
    """Top-*limit* completed places closest to *vector* (typically a user's taste vector)."""
    return _rank(vector, exclude=None, limit=limit, min_score=min_score)


def find_similar_to_place(place_id: str, limit: int = 10) -> list[VectorMatch]:
    vector = index.get_place_vector(place_id)
    if vector is None:
        return []
    return _rank(vector, exclude=place_id, limit=limit, min_score=0)


def find_places_by_domain(domain: TasteDomain, limit: int = 10) -> list[VectorMatch]:
    return _rank(domain_probe_vector(domain), exclude=None, limit=limit, min_score=0)


def find_taste_neighbors(user_id: str, limit: int = 10) -> list[TasteNeighbor]:
    """Users whose stored taste vectors are closest to *user_id*'s."""
    me = profiles.get_user(user_id)
    if me is None or me.taste_vector is None:
        return []

    others = []
    for other_id in profiles.list_user_ids():
        if other_id == user_id:
            continue
        state = profiles.get_user(other_id)
        if state is not None and state.taste_vector is not None:
            others.append((other_id, state.taste_vector))
    if not others:
        return []

    sims = cosine_similarity(
        np.asarray(me.taste_vector).reshape(1, -1),
        np.asarray([vec for _, vec in others]),
    ).flatten()
    order = np.argsort(-sims, kind="stable")[:limit]
    return [TasteNeighbor(user_id=others[i][0], similarity=round(float(sims[i]), 4)) for i in order]
