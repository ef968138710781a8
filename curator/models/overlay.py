from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from curator.models.entities import EntityRef, EntityType


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class RestrictionMode(str, Enum):
    NONE = "NONE"
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"


class RatingRecord(BaseModel):
    """Explicit per-user rating and favorite for one entity."""

    user_id: str
    entity_type: EntityType
    ref: EntityRef
    rating: int | None = None
    favorite: bool = False
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("rating")
    @classmethod
    def _clamp_rating(cls, v: int | None) -> int | None:
        if v is None:
            return None
        return max(0, min(100, int(v)))


class WatchRecord(BaseModel):
    """Per-user watch history for a scene or image."""

    user_id: str
    entity_type: EntityType = EntityType.SCENE
    ref: EntityRef
    play_count: int = 0
    play_duration: float = 0.0
    o_count: int = 0
    resume_time: float = 0.0
    play_history: list[datetime] = Field(default_factory=list)
    o_history: list[datetime] = Field(default_factory=list)

    @property
    def last_played_at(self) -> datetime | None:
        return max(self.play_history) if self.play_history else None


class EngagementRanking(BaseModel):
    user_id: str
    entity_type: EntityType
    ref: EntityRef
    play_count: int = 0
    o_count: int = 0
    play_duration: float = 0.0
    library_presence: int = 0
    engagement_score: float = 0.0
    engagement_rate: float = 0.0
    percentile_rank: int = 0


class Restriction(BaseModel):
    mode: RestrictionMode = RestrictionMode.NONE
    ids: list[str] = Field(default_factory=list)
    # Exclude content that references nothing of the restricted type
    restrict_empty: bool = False


class UserAccess(BaseModel):
    """Per-user role, content restrictions and personally hidden entities."""

    user_id: str
    role: Role = Role.USER
    restrictions: dict[EntityType, Restriction] = Field(default_factory=dict)
    hidden: dict[EntityType, list[EntityRef]] = Field(default_factory=dict)
    allowed_instance_ids: list[str] | None = None

    @property
    def is_elevated(self) -> bool:
        return self.role == Role.ADMIN


class UserOverlay(BaseModel):
    """Everything the overlay store holds for one user, fetched in bulk."""

    user_id: str
    ratings: dict[EntityType, dict[EntityRef, RatingRecord]] = Field(default_factory=dict)
    watches: dict[EntityType, dict[EntityRef, WatchRecord]] = Field(default_factory=dict)

    def rating(self, entity_type: EntityType, ref: EntityRef) -> RatingRecord | None:
        return self.ratings.get(entity_type, {}).get(ref)

    def watch(self, entity_type: EntityType, ref: EntityRef) -> WatchRecord | None:
        return self.watches.get(entity_type, {}).get(ref)

    def favorites(self, entity_type: EntityType) -> set[EntityRef]:
        return {ref for ref, r in self.ratings.get(entity_type, {}).items() if r.favorite}
