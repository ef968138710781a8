"""
Closed field tables for every entity type.

Each field maps to a typed accessor ``(entity, ctx) -> value``. Unknown
field names are rejected at the boundary instead of being looked up
dynamically. Fields backed by the overlay store are flagged so the executor
can fetch overlay rows before filtering or sorting on them.
"""

from collections.abc import Callable
from typing import Any, NamedTuple

from curator.core.errors import InputError
from curator.models.entities import CatalogEntity, EntityRef, EntityType
from curator.models.overlay import UserOverlay
from curator.services.catalog.snapshot import CatalogSnapshot, effective_tag_refs, related_refs
from curator.services.query.criteria import FieldKind

ET = EntityType


class FieldContext:
    """What accessors may read besides the entity itself."""

    __slots__ = ("snapshot", "_overlay", "_favorites")

    def __init__(self, snapshot: CatalogSnapshot, overlay: UserOverlay | None = None):
        self.snapshot = snapshot
        self.overlay = overlay

    @property
    def overlay(self) -> UserOverlay | None:
        return self._overlay

    @overlay.setter
    def overlay(self, overlay: UserOverlay | None) -> None:
        self._overlay = overlay
        self._favorites: dict[EntityType, frozenset[EntityRef]] = {}

    def favorites(self, entity_type: EntityType) -> frozenset[EntityRef]:
        """The user's favorites of one type, built once per context."""
        if entity_type not in self._favorites:
            found = self._overlay.favorites(entity_type) if self._overlay is not None else ()
            self._favorites[entity_type] = frozenset(found)
        return self._favorites[entity_type]

    def name_of(self, entity_type: EntityType, ref: EntityRef) -> str:
        entity = self.snapshot.get(entity_type, ref)
        return entity.canonical_name if entity is not None else ""


Accessor = Callable[[CatalogEntity, FieldContext], Any]


class FieldSpec(NamedTuple):
    name: str
    kind: FieldKind
    accessor: Accessor
    # Type the values of a SET field refer to (used to resolve filter tokens)
    target: EntityType | None = None
    # Hierarchy walked when a criterion carries a depth
    hierarchical: bool = False
    overlay: bool = False
    sortable: bool = True


def _attr(name: str) -> Accessor:
    return lambda e, ctx: getattr(e, name, None)


def _joined(name: str) -> Accessor:
    return lambda e, ctx: " ".join(getattr(e, name, None) or [])


def _refs(target: EntityType) -> Accessor:
    return lambda e, ctx: frozenset(related_refs(e, target))


def _referrer_count(source: EntityType) -> Accessor:
    return lambda e, ctx: len(ctx.snapshot.referrers(source, e.entity_type, e.ref))


def _child_count(e: CatalogEntity, ctx: FieldContext) -> int:
    graph = ctx.snapshot.graph(e.entity_type)
    return len(graph.children(e.ref)) if graph is not None else 0


def _children(e: CatalogEntity, ctx: FieldContext) -> frozenset[EntityRef]:
    graph = ctx.snapshot.graph(e.entity_type)
    return frozenset(graph.children(e.ref)) if graph is not None else frozenset()


def _parents(e: CatalogEntity, ctx: FieldContext) -> frozenset[EntityRef]:
    graph = ctx.snapshot.graph(e.entity_type)
    return frozenset(graph.parents(e.ref)) if graph is not None else frozenset()


def _short_side(e: CatalogEntity, ctx: FieldContext) -> int | None:
    width, height = getattr(e, "width", None), getattr(e, "height", None)
    if not width or not height:
        return height or width or None
    return min(width, height)


def _orientation(e: CatalogEntity, ctx: FieldContext) -> str | None:
    width, height = getattr(e, "width", None), getattr(e, "height", None)
    if not width or not height:
        return None
    if width > height:
        return "LANDSCAPE"
    if height > width:
        return "PORTRAIT"
    return "SQUARE"


def _performer_studios(e: CatalogEntity, ctx: FieldContext) -> frozenset[EntityRef]:
    studios: set[EntityRef] = set()
    for scene_ref in ctx.snapshot.referrers(ET.SCENE, ET.PERFORMER, e.ref):
        scene = ctx.snapshot.get(ET.SCENE, scene_ref)
        if scene is not None:
            studios.update(related_refs(scene, ET.STUDIO))
    return frozenset(studios)


def _tag_performer_count(e: CatalogEntity, ctx: FieldContext) -> int:
    return len(ctx.snapshot.referrers(ET.PERFORMER, ET.TAG, e.ref))


# Overlay accessors


def _rating(e: CatalogEntity, ctx: FieldContext) -> int | None:
    record = ctx.overlay.rating(e.entity_type, e.ref) if ctx.overlay else None
    return record.rating if record else None


def _favorite(e: CatalogEntity, ctx: FieldContext) -> bool:
    record = ctx.overlay.rating(e.entity_type, e.ref) if ctx.overlay else None
    return bool(record and record.favorite)


def _watch(attr: str, default: Any = 0) -> Accessor:
    def accessor(e: CatalogEntity, ctx: FieldContext) -> Any:
        record = ctx.overlay.watch(e.entity_type, e.ref) if ctx.overlay else None
        return getattr(record, attr) if record else default

    return accessor


def _related_favorite(target: EntityType) -> Accessor:
    def accessor(e: CatalogEntity, ctx: FieldContext) -> bool:
        if ctx.overlay is None:
            return False
        favorites = ctx.favorites(target)
        return any(ref in favorites for ref in related_refs(e, target))

    return accessor


def _common(tags: Accessor = _refs(ET.TAG)) -> list[FieldSpec]:
    return [
        FieldSpec("ids", FieldKind.SET, lambda e, ctx: frozenset((e.ref,)), sortable=False),
        FieldSpec("created_at", FieldKind.DATE, _attr("created_at")),
        FieldSpec("updated_at", FieldKind.DATE, _attr("updated_at")),
        FieldSpec("tags", FieldKind.SET, tags, target=ET.TAG, hierarchical=True, sortable=False),
        FieldSpec("tag_count", FieldKind.NUMBER, lambda e, ctx: len(e.tag_ids)),
        FieldSpec("rating", FieldKind.NUMBER, _rating, overlay=True),
        FieldSpec("favorite", FieldKind.BOOL, _favorite, overlay=True),
    ]


def _studios() -> FieldSpec:
    return FieldSpec("studios", FieldKind.SET, _refs(ET.STUDIO), target=ET.STUDIO, hierarchical=True, sortable=False)


def _performers() -> FieldSpec:
    return FieldSpec("performers", FieldKind.SET, _refs(ET.PERFORMER), target=ET.PERFORMER, sortable=False)


_SCENE_FIELDS = [
    *_common(tags=lambda e, ctx: frozenset(effective_tag_refs(e))),
    FieldSpec("title", FieldKind.TEXT, lambda e, ctx: e.canonical_name),
    FieldSpec("details", FieldKind.TEXT, _attr("details")),
    FieldSpec("path", FieldKind.TEXT, _attr("path")),
    FieldSpec("date", FieldKind.DATE, _attr("date")),
    FieldSpec("duration", FieldKind.NUMBER, _attr("duration")),
    FieldSpec("bitrate", FieldKind.NUMBER, _attr("bitrate")),
    FieldSpec("framerate", FieldKind.NUMBER, _attr("framerate")),
    FieldSpec("resolution", FieldKind.RESOLUTION, _short_side),
    FieldSpec("orientation", FieldKind.ENUM, _orientation),
    FieldSpec("video_codec", FieldKind.ENUM, _attr("video_codec")),
    FieldSpec("audio_codec", FieldKind.ENUM, _attr("audio_codec")),
    FieldSpec("organized", FieldKind.BOOL, _attr("organized")),
    _performers(),
    _studios(),
    FieldSpec("groups", FieldKind.SET, _refs(ET.COLLECTION), target=ET.COLLECTION, sortable=False),
    FieldSpec("galleries", FieldKind.SET, _refs(ET.GALLERY), target=ET.GALLERY, sortable=False),
    FieldSpec("performer_count", FieldKind.NUMBER, lambda e, ctx: len(e.performer_ids)),
    FieldSpec("play_count", FieldKind.NUMBER, _watch("play_count"), overlay=True),
    FieldSpec("play_duration", FieldKind.NUMBER, _watch("play_duration"), overlay=True),
    FieldSpec("o_counter", FieldKind.NUMBER, _watch("o_count"), overlay=True),
    FieldSpec("last_played_at", FieldKind.DATE, _watch("last_played_at", None), overlay=True),
    FieldSpec("resume_time", FieldKind.NUMBER, _watch("resume_time"), overlay=True),
    FieldSpec("performer_favorite", FieldKind.BOOL, _related_favorite(ET.PERFORMER), overlay=True),
    FieldSpec("studio_favorite", FieldKind.BOOL, _related_favorite(ET.STUDIO), overlay=True),
    FieldSpec("tag_favorite", FieldKind.BOOL, _related_favorite(ET.TAG), overlay=True),
]

_PERFORMER_FIELDS = [
    *_common(),
    FieldSpec("name", FieldKind.TEXT, _attr("name")),
    FieldSpec("aliases", FieldKind.TEXT, _joined("aliases")),
    FieldSpec("details", FieldKind.TEXT, _attr("details")),
    FieldSpec("gender", FieldKind.ENUM, _attr("gender")),
    FieldSpec("country", FieldKind.ENUM, _attr("country")),
    FieldSpec("ethnicity", FieldKind.ENUM, _attr("ethnicity")),
    FieldSpec("birthdate", FieldKind.DATE, _attr("birthdate")),
    FieldSpec("height_cm", FieldKind.NUMBER, _attr("height_cm")),
    FieldSpec("scene_count", FieldKind.NUMBER, _referrer_count(ET.SCENE)),
    FieldSpec("image_count", FieldKind.NUMBER, _referrer_count(ET.IMAGE)),
    FieldSpec("gallery_count", FieldKind.NUMBER, _referrer_count(ET.GALLERY)),
    FieldSpec("studios", FieldKind.SET, _performer_studios, target=ET.STUDIO, hierarchical=True, sortable=False),
]

_STUDIO_FIELDS = [
    *_common(),
    FieldSpec("name", FieldKind.TEXT, _attr("name")),
    FieldSpec("details", FieldKind.TEXT, _attr("details")),
    FieldSpec("url", FieldKind.TEXT, _attr("url")),
    FieldSpec("parents", FieldKind.SET, _parents, target=ET.STUDIO, sortable=False),
    FieldSpec("scene_count", FieldKind.NUMBER, _referrer_count(ET.SCENE)),
    FieldSpec("image_count", FieldKind.NUMBER, _referrer_count(ET.IMAGE)),
    FieldSpec("gallery_count", FieldKind.NUMBER, _referrer_count(ET.GALLERY)),
    FieldSpec("child_count", FieldKind.NUMBER, _child_count),
]

_TAG_FIELDS = [
    *_common(),
    FieldSpec("name", FieldKind.TEXT, _attr("name")),
    FieldSpec("description", FieldKind.TEXT, _attr("description")),
    FieldSpec("aliases", FieldKind.TEXT, _joined("aliases")),
    FieldSpec("parents", FieldKind.SET, _parents, target=ET.TAG, sortable=False),
    FieldSpec("children", FieldKind.SET, _children, target=ET.TAG, sortable=False),
    FieldSpec("scene_count", FieldKind.NUMBER, _referrer_count(ET.SCENE)),
    FieldSpec("performer_count", FieldKind.NUMBER, _tag_performer_count),
    FieldSpec("child_count", FieldKind.NUMBER, _child_count),
]

_GALLERY_FIELDS = [
    *_common(),
    FieldSpec("title", FieldKind.TEXT, lambda e, ctx: e.canonical_name),
    FieldSpec("details", FieldKind.TEXT, _attr("details")),
    FieldSpec("date", FieldKind.DATE, _attr("date")),
    FieldSpec("path", FieldKind.TEXT, _attr("path")),
    _performers(),
    _studios(),
    FieldSpec("scenes", FieldKind.SET, _refs(ET.SCENE), target=ET.SCENE, sortable=False),
    FieldSpec("image_count", FieldKind.NUMBER, _referrer_count(ET.IMAGE)),
]

_IMAGE_FIELDS = [
    *_common(),
    FieldSpec("title", FieldKind.TEXT, lambda e, ctx: e.canonical_name),
    FieldSpec("details", FieldKind.TEXT, _attr("details")),
    FieldSpec("path", FieldKind.TEXT, _attr("path")),
    FieldSpec("date", FieldKind.DATE, _attr("date")),
    FieldSpec("resolution", FieldKind.RESOLUTION, _short_side),
    FieldSpec("orientation", FieldKind.ENUM, _orientation),
    _performers(),
    _studios(),
    FieldSpec("galleries", FieldKind.SET, _refs(ET.GALLERY), target=ET.GALLERY, sortable=False),
    FieldSpec("o_counter", FieldKind.NUMBER, _watch("o_count"), overlay=True),
    FieldSpec("view_count", FieldKind.NUMBER, _watch("play_count"), overlay=True),
]

_COLLECTION_FIELDS = [
    *_common(),
    FieldSpec("name", FieldKind.TEXT, _attr("name")),
    FieldSpec("synopsis", FieldKind.TEXT, _attr("synopsis")),
    FieldSpec("director", FieldKind.TEXT, _attr("director")),
    FieldSpec("date", FieldKind.DATE, _attr("date")),
    FieldSpec("duration", FieldKind.NUMBER, _attr("duration")),
    _studios(),
    FieldSpec("scene_count", FieldKind.NUMBER, _referrer_count(ET.SCENE)),
    FieldSpec("parents", FieldKind.SET, _parents, target=ET.COLLECTION, sortable=False),
]

FIELD_TABLES: dict[EntityType, dict[str, FieldSpec]] = {
    ET.SCENE: {f.name: f for f in _SCENE_FIELDS},
    ET.PERFORMER: {f.name: f for f in _PERFORMER_FIELDS},
    ET.STUDIO: {f.name: f for f in _STUDIO_FIELDS},
    ET.TAG: {f.name: f for f in _TAG_FIELDS},
    ET.GALLERY: {f.name: f for f in _GALLERY_FIELDS},
    ET.IMAGE: {f.name: f for f in _IMAGE_FIELDS},
    ET.COLLECTION: {f.name: f for f in _COLLECTION_FIELDS},
}


def _related_names(target: EntityType) -> Callable[[CatalogEntity, FieldContext], str]:
    return lambda e, ctx: " ".join(ctx.name_of(target, r) for r in related_refs(e, target))


SEARCH_FIELDS: dict[EntityType, list[Accessor]] = {
    ET.SCENE: [
        _attr("title"),
        _attr("details"),
        _attr("path"),
        _related_names(ET.PERFORMER),
        _related_names(ET.TAG),
        _related_names(ET.STUDIO),
    ],
    ET.PERFORMER: [_attr("name"), _joined("aliases"), _attr("disambiguation"), _attr("details")],
    ET.STUDIO: [_attr("name"), _attr("details")],
    ET.TAG: [_attr("name"), _joined("aliases"), _attr("description")],
    ET.GALLERY: [
        _attr("title"),
        _attr("details"),
        _attr("path"),
        _related_names(ET.PERFORMER),
        _related_names(ET.STUDIO),
    ],
    ET.IMAGE: [_attr("title"), _attr("path"), _related_names(ET.PERFORMER)],
    ET.COLLECTION: [_attr("name"), _joined("aliases"), _attr("synopsis"), _attr("director")],
}


def get_field(entity_type: EntityType, name: str, sorting: bool = False) -> FieldSpec:
    """
    Look up a field, failing fast on anything outside the closed table.

    Raises:
        InputError: If the field does not exist for the type, or is not
            sortable when ``sorting`` is set.
    """
    spec = FIELD_TABLES[entity_type].get(name)
    if spec is None:
        raise InputError(f"Unknown field '{name}' for {entity_type.value}", field=name)
    if sorting and not spec.sortable:
        raise InputError(f"Field '{name}' cannot be used for sorting {entity_type.value}", field=name)
    return spec


def matches_search(entity: CatalogEntity, needle: str, ctx: FieldContext) -> bool:
    """Case-insensitive substring match across the type's search fields."""
    for accessor in SEARCH_FIELDS[entity.entity_type]:
        value = accessor(entity, ctx)
        if value and needle in str(value).casefold():
            return True
    return False
