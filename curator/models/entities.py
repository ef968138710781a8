import datetime as dt
import os
from enum import Enum
from typing import ClassVar, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from curator.core.errors import InputError


class EntityType(str, Enum):
    SCENE = "scene"
    PERFORMER = "performer"
    STUDIO = "studio"
    TAG = "tag"
    GALLERY = "gallery"
    IMAGE = "image"
    COLLECTION = "collection"

    @classmethod
    def parse(cls, value: "str | EntityType") -> "EntityType":
        if isinstance(value, EntityType):
            return value
        normalized = str(value).strip().lower()
        normalized = _TYPE_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise InputError(f"Unknown entity type: {value}", field="entity_type") from None


# Plural route segments and the upstream name for collections
_TYPE_ALIASES = {
    "scenes": "scene",
    "performers": "performer",
    "studios": "studio",
    "tags": "tag",
    "galleries": "gallery",
    "images": "image",
    "collections": "collection",
    "group": "collection",
    "groups": "collection",
}


class EntityRef(NamedTuple):
    """Global identity of a catalog entity: upstream id plus the source it came from."""

    id: str
    instance_id: str

    def __str__(self) -> str:
        return f"{self.id}:{self.instance_id}"


def parse_ref_token(token: str | int) -> tuple[str, str | None]:
    """
    Split an ``"id:instanceId"`` filter token.

    A bare ``"id"`` yields ``(id, None)`` and matches that id in every source.
    """
    text = str(token).strip()
    if ":" in text:
        entity_id, instance_id = text.split(":", 1)
        return entity_id.strip(), instance_id.strip() or None
    return text, None


class CatalogEntity(BaseModel):
    """Immutable snapshot of one upstream record."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    entity_type: ClassVar[EntityType]

    id: str
    instance_id: str
    hidden: bool = False
    tag_ids: list[str] = Field(default_factory=list)
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.id, self.instance_id)

    @property
    def canonical_name(self) -> str:
        return getattr(self, "name", None) or ""

    def related(self, ids: list[str]) -> list[EntityRef]:
        """Relations always point at records of the same source."""
        return [EntityRef(i, self.instance_id) for i in ids]


class Scene(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.SCENE

    title: str | None = None
    details: str | None = None
    path: str | None = None
    date: dt.date | None = None
    duration: float | None = None
    width: int | None = None
    height: int | None = None
    bitrate: int | None = None
    framerate: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    o_counter: int = 0
    organized: bool = False
    studio_id: str | None = None
    performer_ids: list[str] = Field(default_factory=list)
    group_ids: list[str] = Field(default_factory=list)
    gallery_ids: list[str] = Field(default_factory=list)
    # Tags carried by the scene's performers, studio and groups but not by the scene itself
    inherited_tag_ids: list[str] = Field(default_factory=list)

    @property
    def canonical_name(self) -> str:
        if self.title:
            return self.title
        return os.path.basename(self.path) if self.path else ""


class Performer(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.PERFORMER

    name: str = ""
    disambiguation: str | None = None
    aliases: list[str] = Field(default_factory=list)
    gender: str | None = None
    birthdate: dt.date | None = None
    country: str | None = None
    ethnicity: str | None = None
    height_cm: int | None = None
    details: str | None = None


class Studio(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.STUDIO

    name: str = ""
    details: str | None = None
    url: str | None = None
    parent_id: str | None = None


class Tag(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.TAG

    name: str = ""
    description: str | None = None
    aliases: list[str] = Field(default_factory=list)
    parent_ids: list[str] = Field(default_factory=list)


class Gallery(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.GALLERY

    title: str | None = None
    details: str | None = None
    date: dt.date | None = None
    path: str | None = None
    studio_id: str | None = None
    performer_ids: list[str] = Field(default_factory=list)
    scene_ids: list[str] = Field(default_factory=list)

    @property
    def canonical_name(self) -> str:
        if self.title:
            return self.title
        return os.path.basename(self.path) if self.path else ""


class Image(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.IMAGE

    title: str | None = None
    details: str | None = None
    path: str | None = None
    date: dt.date | None = None
    width: int | None = None
    height: int | None = None
    o_counter: int = 0
    studio_id: str | None = None
    performer_ids: list[str] = Field(default_factory=list)
    gallery_ids: list[str] = Field(default_factory=list)

    @property
    def canonical_name(self) -> str:
        if self.title:
            return self.title
        return os.path.basename(self.path) if self.path else ""


class Collection(CatalogEntity):
    entity_type: ClassVar[EntityType] = EntityType.COLLECTION

    name: str = ""
    aliases: list[str] = Field(default_factory=list)
    synopsis: str | None = None
    date: dt.date | None = None
    duration: float | None = None
    director: str | None = None
    studio_id: str | None = None
    parent_ids: list[str] = Field(default_factory=list)


ENTITY_MODELS: dict[EntityType, type[CatalogEntity]] = {
    EntityType.SCENE: Scene,
    EntityType.PERFORMER: Performer,
    EntityType.STUDIO: Studio,
    EntityType.TAG: Tag,
    EntityType.GALLERY: Gallery,
    EntityType.IMAGE: Image,
    EntityType.COLLECTION: Collection,
}
