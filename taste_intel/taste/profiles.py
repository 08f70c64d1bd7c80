from __future__ import annotations

import threading
from datetime import datetime

from .models import ContradictionNode, OnboardingSignal, TasteNode, TasteProfile, UserTasteState

# Per-user taste graph, owned by the profiling side.
_users: dict[str, UserTasteState] = {}
_nodes: dict[str, TasteNode] = {}
_contradictions: dict[str, ContradictionNode] = {}
_lock = threading.RLock()
_user_locks: dict[str, threading.Lock] = {}


def upsert_user(
    user_id: str,
    last_synthesized_at: datetime | None = None,
    raw_signals: list[OnboardingSignal] | None = None,
) -> UserTasteState:
    with _lock:
        state = _users.get(user_id)
        if state is None:
            state = UserTasteState(user_id=user_id)
            _users[user_id] = state
        if last_synthesized_at is not None:
            state.last_synthesized_at = last_synthesized_at
        if raw_signals is not None:
            state.raw_signals = list(raw_signals)
        return state.model_copy(deep=True)


def get_user(user_id: str) -> UserTasteState | None:
    with _lock:
        state = _users.get(user_id)
        return state.model_copy(deep=True) if state else None


def user_lock(user_id: str) -> threading.Lock:
    """Lock serialising graph rebuilds (node and contradiction writes) for one user."""
    with _lock:
        return _user_locks.setdefault(user_id, threading.Lock())


def list_user_ids() -> list[str]:
    with _lock:
        return list(_users)


def record_saved_place(user_id: str, at: datetime) -> None:
    with _lock:
        _users[user_id].saved_place_events.append(at)


def new_bookings_since(user_id: str, since: datetime | None) -> int:
    """Saved places recorded after *since*. Without a synthesis date there is nothing to count."""
    if since is None:
        return 0
    with _lock:
        state = _users.get(user_id)
        if state is None:
            return 0
        return sum(1 for at in state.saved_place_events if at > since)


def add_node(node: TasteNode) -> TasteNode:
    with _lock:
        _nodes[node.id] = node.model_copy()
        return node


def nodes_for_user(user_id: str, active_only: bool = True) -> list[TasteNode]:
    with _lock:
        return [
            n.model_copy()
            for n in _nodes.values()
            if n.user_id == user_id and (n.is_active or not active_only)
        ]


def deactivate_node(node_id: str) -> None:
    """Mark a node superseded. Contradictions that reference it go inactive too."""
    with _lock:
        _nodes[node_id].is_active = False
        for contradiction in _contradictions.values():
            if node_id in contradiction.node_ids:
                contradiction.is_active = False


def add_contradiction(contradiction: ContradictionNode) -> ContradictionNode:
    with _lock:
        _contradictions[contradiction.id] = contradiction.model_copy()
        return contradiction


def contradictions_for_user(user_id: str, active_only: bool = True) -> list[ContradictionNode]:
    with _lock:
        return [
            c.model_copy()
            for c in _contradictions.values()
            if c.user_id == user_id and (c.is_active or not active_only)
        ]


def save_user_vector(
    user_id: str,
    profile: TasteProfile,
    vector: list[float],
    now: datetime,
) -> None:
    with _lock:
        state = _users[user_id]
        state.taste_profile = profile
        state.taste_vector = vector
        state.vector_updated_at = now


def export_graph() -> tuple[list[UserTasteState], list[TasteNode], list[ContradictionNode]]:
    with _lock:
        return (
            [u.model_copy(deep=True) for u in _users.values()],
            [n.model_copy() for n in _nodes.values()],
            [c.model_copy() for c in _contradictions.values()],
        )


def load_graph(
    users: list[UserTasteState],
    nodes: list[TasteNode],
    contradictions: list[ContradictionNode],
) -> None:
    """Replace every user, node and contradiction with the given ones."""
    with _lock:
        _users.clear()
        _nodes.clear()
        _contradictions.clear()
        _users.update({u.user_id: u.model_copy(deep=True) for u in users})
        _nodes.update({n.id: n.model_copy() for n in nodes})
        _contradictions.update({c.id: c.model_copy() for c in contradictions})


def clear_profiles() -> None:
    with _lock:
        _users.clear()
        _nodes.clear()
        _contradictions.clear()
        _user_locks.clear()
