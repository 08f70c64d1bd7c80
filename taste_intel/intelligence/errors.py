from __future__ import annotations


class IntelligenceError(Exception):
    """Base class for enrichment pipeline errors."""


class PlaceNotFoundError(IntelligenceError):
    def __init__(self, place_id: str) -> None:
        super().__init__(f"No intelligence record for place {place_id!r}")
        self.place_id = place_id


class RunConflictError(IntelligenceError):
    """A run is already in flight for this place."""

    def __init__(self, place_id: str) -> None:
        super().__init__(f"Place {place_id!r} is already processing")
        self.place_id = place_id


class InvalidTransitionError(IntelligenceError):
    def __init__(self, place_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move place {place_id!r} from {current!r} to {target!r}; reset it to pending first"
        )
        self.place_id = place_id
        self.current = current
        self.target = target


class PipelineFatalError(IntelligenceError):
    """Aggregation or scoring could not produce a usable signal set."""


class UserNotFoundError(IntelligenceError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"No taste profile for user {user_id!r}")
        self.user_id = user_id
