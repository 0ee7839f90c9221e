from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Dict, Literal, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field


SpikeDirection = Literal["increase", "decrease"]

REACTIVATED_ACTOR = "reactivated_actor"
DORMANT_ACTOR = "dormant_actor"
ACTIVITY_SPIKE = "activity_spike"


class Incident(BaseModel):
    """The slice of an incident record the detectors look at."""

    model_config = ConfigDict(frozen=True)

    actor_id: str = Field(min_length=1)
    discovered_at: datetime


class _PatternKeyBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern_type: str
    run_date: date

    @property
    def discriminator(self) -> str:
        raise NotImplementedError

    def render(self) -> str:
        """Storage form `{type}:{discriminator}:{YYYY-MM-DD}`.

        The discriminator is percent-escaped, so an actor id containing ':'
        cannot produce the same string as a different key.
        """
        disc = quote(self.discriminator, safe="")
        return f"{self.pattern_type}:{disc}:{self.run_date.isoformat()}"


class ReactivatedActorKey(_PatternKeyBase):
    pattern_type: Literal["reactivated_actor"] = "reactivated_actor"
    actor_id: str = Field(min_length=1)

    @property
    def discriminator(self) -> str:
        return self.actor_id


class DormantActorKey(_PatternKeyBase):
    pattern_type: Literal["dormant_actor"] = "dormant_actor"
    actor_id: str = Field(min_length=1)

    @property
    def discriminator(self) -> str:
        return self.actor_id


class ActivitySpikeKey(_PatternKeyBase):
    pattern_type: Literal["activity_spike"] = "activity_spike"
    direction: SpikeDirection

    @property
    def discriminator(self) -> str:
        return self.direction


PatternKey = Annotated[
    Union[ReactivatedActorKey, DormantActorKey, ActivitySpikeKey],
    Field(discriminator="pattern_type"),
]


class DetectedPattern(BaseModel):
    """One detection produced by a detector for a given run-day.

    Equality of `key` is what deduplicates detections within a day; the
    rendered `pattern_key` is only the form the store sees.
    """

    model_config = ConfigDict(frozen=True)

    key: PatternKey
    confidence: float = Field(ge=0.0, le=1.0)
    description: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def pattern_type(self) -> str:
        return self.key.pattern_type

    @property
    def pattern_key(self) -> str:
        return self.key.render()

    def payload(self) -> Dict[str, Any]:
        """JSON payload persisted in the `data` column."""
        return {**self.data, "description": self.description}


class StoredPattern(BaseModel):
    """What the pattern store reports back for reconciliation."""

    id: int
    pattern_key: str
    detection_count: int = Field(ge=0)


def dormancy_confidence(dormant_days: int, saturation_days: int = 180) -> float:
    """Linear in dormancy, saturating at 1.0 once `saturation_days` is reached."""
    if dormant_days <= 0:
        return 0.0
    return min(1.0, dormant_days / float(saturation_days))


def spike_confidence(ratio: float) -> float:
    """Bounded deviation score: 0 at ratio 1.0, 1.0 from ratio 3.0 up; drops top out at 0.5."""
    if ratio >= 1.0:
        return min(1.0, (ratio - 1.0) / 2.0)
    return min(1.0, (1.0 - ratio) / 2.0)
