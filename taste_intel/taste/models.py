from __future__ import annotations

from datetime import datetime
from typing import Mapping

from pydantic import BaseModel, Field

from ..intelligence.models import ALL_DOMAINS, Polarity, TasteDomain


class TasteProfile(BaseModel):
    """Six-domain weighting, one value in [0, 1] per taste domain."""

    design: float = Field(..., ge=0.0, le=1.0)
    character: float = Field(..., ge=0.0, le=1.0)
    service: float = Field(..., ge=0.0, le=1.0)
    food: float = Field(..., ge=0.0, le=1.0)
    location: float = Field(..., ge=0.0, le=1.0)
    wellness: float = Field(..., ge=0.0, le=1.0)

    def weight(self, domain: TasteDomain) -> float:
        return getattr(self, domain.name)

    def as_dict(self) -> dict[TasteDomain, float]:
        return {d: self.weight(d) for d in ALL_DOMAINS}

    @classmethod
    def from_domains(cls, values: Mapping[TasteDomain, float]) -> TasteProfile:
        """Build a profile from a domain mapping; missing domains weigh 0."""
        return cls(**{d.name: float(values.get(d, 0.0)) for d in ALL_DOMAINS})


class OnboardingSignal(BaseModel):
    """Raw signal from a user's onboarding blob, before it becomes a TasteNode."""

    tag: str = Field(..., min_length=1)
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    extracted_at: datetime
    polarity: Polarity = Polarity.positive


class TasteNode(BaseModel):
    id: str
    user_id: str
    domain: TasteDomain
    tag: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    extracted_at: datetime
    polarity: Polarity = Polarity.positive
    source: str = "onboarding"
    is_active: bool = True


class ContradictionNode(BaseModel):
    id: str
    user_id: str
    domain: TasteDomain
    node_ids: tuple[str, str]
    description: str
    strength: float = Field(..., ge=0.0, le=1.0)
    created_at: datetime
    is_active: bool = True


class UserTasteState(BaseModel):
    user_id: str
    last_synthesized_at: datetime | None = None
    raw_signals: list[OnboardingSignal] = Field(default_factory=list)
    saved_place_events: list[datetime] = Field(default_factory=list)
    taste_profile: TasteProfile | None = None
    taste_vector: list[float] | None = None
    vector_updated_at: datetime | None = None


class MatchRequest(BaseModel):
    taste_profile: TasteProfile
