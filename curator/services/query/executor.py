import asyncio
import datetime as dt
import time
from typing import Any, NamedTuple

from loguru import logger

from curator.core.config import settings
from curator.core.errors import AmbiguousLookupError, InputError, NotFoundError
from curator.core.security import redact_user
from curator.models.entities import CatalogEntity, EntityRef, EntityType, parse_ref_token
from curator.models.filters import Criterion, FilterSet, Modifier
from curator.models.overlay import RatingRecord, UserOverlay, WatchRecord
from curator.models.results import PagedResult
from curator.services.catalog.repository import CatalogRepository
from curator.services.catalog.snapshot import CatalogSnapshot, related_refs
from curator.services.identity.disambiguator import InstanceDisambiguator
from curator.services.overlay.store import WATCHABLE, OverlayStore
from curator.services.query.criteria import (
    SUPPORTED_MODIFIERS,
    CriterionEvaluator,
    MalformedValue,
    Operands,
    SetGroup,
    default_group,
)
from curator.services.query.fields import FIELD_TABLES, FieldContext, FieldSpec, get_field, matches_search
from curator.services.query.seeded import SortSpec, parse_sort, random_sort_key
from curator.services.visibility.resolver import VisibilityResolver

ET = EntityType

_TAGS = ("tags", ET.TAG, False)
_PERFORMERS = ("performers", ET.PERFORMER, False)
_STUDIO = ("studio", ET.STUDIO, True)

# Nested names added to hydrated items: output key, related type, single-valued
ATTACHMENTS: dict[EntityType, tuple[tuple[str, EntityType, bool], ...]] = {
    ET.SCENE: (_TAGS, _PERFORMERS, _STUDIO, ("groups", ET.COLLECTION, False), ("galleries", ET.GALLERY, False)),
    ET.GALLERY: (_TAGS, _PERFORMERS, _STUDIO, ("scenes", ET.SCENE, False)),
    ET.IMAGE: (_TAGS, _PERFORMERS, _STUDIO, ("galleries", ET.GALLERY, False)),
    ET.COLLECTION: (_TAGS, _STUDIO),
    ET.PERFORMER: (_TAGS,),
    ET.STUDIO: (_TAGS,),
    ET.TAG: (),
}

COUNT_FIELDS = ("scene_count", "image_count", "gallery_count", "performer_count", "tag_count", "child_count")

# Overlay types needed to evaluate favorite-derived fields
OVERLAY_TYPES = (ET.PERFORMER, ET.STUDIO, ET.TAG)


class CompiledCriterion:
    """A criterion bound to its field accessor with values parsed once."""

    __slots__ = ("field", "spec", "modifier", "operands")

    def __init__(self, field: str, spec: FieldSpec, modifier: Modifier, operands: Operands):
        self.field = field
        self.spec = spec
        self.modifier = modifier
        self.operands = operands

    def matches(self, entity: CatalogEntity, ctx: FieldContext) -> bool:
        return CriterionEvaluator.test(self.spec.accessor(entity, ctx), self.spec.kind, self.modifier, self.operands)


class FilterPlan(NamedTuple):
    lookup: list[EntityRef] | None
    # Single bare id looked up on its own; ambiguous if it resolves to several sources
    lookup_token: str | None
    skip: frozenset[EntityRef]
    cheap: list[CompiledCriterion]
    expensive: list[CompiledCriterion]


def _group_resolver(spec: FieldSpec, criterion: Criterion, snapshot: CatalogSnapshot):
    depth = criterion.depth or 0
    graph = snapshot.graph(spec.target) if spec.hierarchical and spec.target else None
    if graph is None or depth == 0:
        return default_group

    def resolve(token: Any) -> SetGroup:
        entity_id, instance_id = parse_ref_token(token)
        roots = graph.resolve(entity_id, instance_id)
        if not roots:
            return default_group(token)
        return SetGroup(frozenset(graph.expand(roots, depth)), frozenset())

    return resolve


def compile_plan(entity_type: EntityType, filters: FilterSet, snapshot: CatalogSnapshot) -> FilterPlan:
    """
    Validate filters against the field table and split them by cost.

    Unknown fields and modifiers a field does not support raise InputError.
    Criteria whose values cannot be parsed are dropped with a warning;
    criteria that constrain nothing are dropped silently.
    """
    lookup: list[EntityRef] | None = None
    lookup_token: str | None = None
    skip: set[EntityRef] = set()
    cheap: list[CompiledCriterion] = []
    expensive: list[CompiledCriterion] = []

    for field, criterion in filters.items():
        spec = get_field(entity_type, field)
        modifier = criterion.modifier
        if modifier not in SUPPORTED_MODIFIERS[spec.kind]:
            raise InputError(f"Modifier {modifier.value} is not supported for '{field}'", field=field)

        if field == "ids" and modifier in (Modifier.INCLUDES, Modifier.EQUALS, Modifier.EXCLUDES):
            tokens = criterion.value if isinstance(criterion.value, list) else [criterion.value]
            tokens = [t for t in tokens if t not in (None, "")]
            refs: list[EntityRef] = []
            for token in tokens:
                entity_id, instance_id = parse_ref_token(token)
                refs.extend(snapshot.resolve(entity_type, entity_id, instance_id))
            if modifier == Modifier.EXCLUDES:
                skip.update(refs)
                continue
            lookup = list(dict.fromkeys(refs if lookup is None else [r for r in lookup if r in set(refs)]))
            if len(tokens) == 1 and parse_ref_token(tokens[0])[1] is None:
                lookup_token = str(tokens[0])
            continue

        try:
            operands = CriterionEvaluator.prepare(criterion, spec.kind, _group_resolver(spec, criterion, snapshot))
        except MalformedValue as e:
            logger.warning(f"Dropping criterion on {entity_type.value}.{field}: {e}")
            continue
        if CriterionEvaluator.is_unconstrained(spec.kind, modifier, operands):
            continue
        compiled = CompiledCriterion(field, spec, modifier, operands)
        (expensive if spec.overlay else cheap).append(compiled)

    only_ids = not cheap and not expensive and not skip
    return FilterPlan(lookup, lookup_token if only_ids else None, frozenset(skip), cheap, expensive)


def _sort_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.casefold()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, dt.datetime):
        return value.astimezone(dt.timezone.utc).replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)
    return value


def _tiebreak(entity: CatalogEntity) -> tuple[str, str, str]:
    return entity.canonical_name.casefold(), entity.id, entity.instance_id


def sort_entities(
    entities: list[CatalogEntity], sort: SortSpec, field: FieldSpec | None, ctx: FieldContext
) -> list[CatalogEntity]:
    """
    Order entities deterministically.

    Random sorts key on (id, seed) only, so every page of the same seed is a
    slice of one fixed permutation. Field sorts put missing values last and
    break ties on the canonical name.
    """
    if sort.is_random:
        seed = sort.seed or 0
        return sorted(
            entities, key=lambda e: (random_sort_key(e.id, seed), e.id, e.instance_id), reverse=sort.descending
        )
    if field is None:
        return sorted(entities, key=_tiebreak, reverse=sort.descending)

    valued: list[tuple[Any, CatalogEntity]] = []
    missing: list[CatalogEntity] = []
    for entity in entities:
        value = field.accessor(entity, ctx)
        if value is None or value == "":
            missing.append(entity)
        else:
            valued.append((_sort_value(value), entity))
    valued.sort(key=lambda pair: _tiebreak(pair[1]))
    # Stable: equal values keep the name order
    valued.sort(key=lambda pair: pair[0], reverse=sort.descending)
    missing.sort(key=_tiebreak)
    return [e for _, e in valued] + missing


class QueryExecutor:
    """
    Filter, sort and paginate one entity type for one user.

    Cheap criteria run over catalog data first; overlay-backed criteria and
    sorts load the user's overlay rows only when present. Only the returned
    page is hydrated with overlay values and nested names.
    """

    def __init__(
        self,
        entity_type: EntityType,
        catalog: CatalogRepository,
        store: OverlayStore,
        visibility: VisibilityResolver,
    ):
        self.entity_type = entity_type
        self.catalog = catalog
        self.store = store
        self.visibility = visibility

    @staticmethod
    def _page_bounds(page: int, per_page: int | None) -> tuple[int, int]:
        if page is None or page < 1:
            raise InputError("page must be >= 1", field="page")
        if per_page is None:
            per_page = settings.DEFAULT_PER_PAGE
        if per_page < 1:
            raise InputError("per_page must be >= 1", field="per_page")
        return page, min(per_page, settings.MAX_PER_PAGE)

    async def execute(
        self,
        user_id: str,
        filters: FilterSet | None = None,
        sort: str | None = None,
        direction: str = "ASC",
        page: int = 1,
        per_page: int | None = None,
        search_text: str | None = None,
    ) -> PagedResult:
        start = time.perf_counter()
        page, per_page = self._page_bounds(page, per_page)
        snapshot = await self.catalog.snapshot()
        plan = compile_plan(self.entity_type, filters or {}, snapshot)
        sort_spec = parse_sort(sort, direction, user_id)
        sort_field = None
        if sort_spec.field and not sort_spec.is_random:
            sort_field = get_field(self.entity_type, sort_spec.field, sorting=True)

        # (a) Exclusions for this user
        excluded = await self.visibility.excluded_ids(user_id, self.entity_type, snapshot)

        # (b) Point lookup before any scan
        if plan.lookup is not None:
            if plan.lookup_token and not search_text:
                self._check_ambiguous(plan.lookup_token, [r for r in plan.lookup if r not in excluded])
            candidates = [e for e in (snapshot.get(self.entity_type, r) for r in plan.lookup) if e is not None]
        else:
            candidates = list(snapshot.entities(self.entity_type))
        if plan.skip:
            candidates = [e for e in candidates if e.ref not in plan.skip]

        ctx = FieldContext(snapshot)

        # (c) Free-text search
        needle = (search_text or "").strip().casefold()
        if needle:
            candidates = [e for e in candidates if matches_search(e, needle, ctx)]

        # (d) Catalog-only criteria
        for criterion in plan.cheap:
            candidates = [e for e in candidates if criterion.matches(e, ctx)]

        # (e) Visibility
        candidates = [e for e in candidates if e.ref not in excluded]

        # Overlay-backed criteria and sorts need the user's rows materialized first
        overlay: UserOverlay | None = None
        if plan.expensive or (sort_field is not None and sort_field.overlay):
            overlay = await self.store.get_overlay(user_id, {self.entity_type, *OVERLAY_TYPES})
            ctx.overlay = overlay
            for criterion in plan.expensive:
                candidates = [e for e in candidates if criterion.matches(e, ctx)]

        # (f) Sort
        ordered = sort_entities(candidates, sort_spec, sort_field, ctx)

        # (g) Paginate
        offset = (page - 1) * per_page
        page_entities = ordered[offset : offset + per_page]

        # (h) Hydrate the page only
        items = await self._hydrate(user_id, page_entities, snapshot, overlay)

        logger.info(
            f"{self.entity_type.value} query for {redact_user(user_id)}: {len(ordered)} matched, "
            f"page {page} ({len(items)} items) in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return PagedResult(items=items, total_count=len(ordered), page=page, per_page=per_page)

    def _check_ambiguous(self, token: str, matches: list[EntityRef]) -> None:
        if len(matches) > 1:
            raise AmbiguousLookupError(self.entity_type.value, token, sorted(matches))

    async def get_by_ids(self, user_id: str, ids: list[str], instance_hint: str | None = None) -> list[dict[str, Any]]:
        """
        Hydrate entities by id, in the order requested.

        Tokens may be ``"id"`` or ``"id:instanceId"``; ``instance_hint`` pins
        bare ids to one source. A single bare id that matches visible
        entities in several sources raises AmbiguousLookupError.
        """
        snapshot = await self.catalog.snapshot()
        excluded = await self.visibility.excluded_ids(user_id, self.entity_type, snapshot)
        refs: dict[EntityRef, None] = {}
        for token in ids:
            entity_id, instance_id = parse_ref_token(token)
            instance_id = instance_id or instance_hint
            matches = [r for r in snapshot.resolve(self.entity_type, entity_id, instance_id) if r not in excluded]
            if instance_id is None and len(ids) == 1:
                self._check_ambiguous(entity_id, matches)
            for ref in matches:
                refs[ref] = None
        entities = [e for e in (snapshot.get(self.entity_type, r) for r in refs) if e is not None]
        return await self._hydrate(user_id, entities, snapshot, None)

    async def get(self, user_id: str, entity_id: str, instance_hint: str | None = None) -> dict[str, Any]:
        items = await self.get_by_ids(user_id, [entity_id], instance_hint)
        if not items:
            raise NotFoundError(f"{self.entity_type.value} {entity_id} not found")
        return items[0]

    async def _hydrate(
        self,
        user_id: str,
        entities: list[CatalogEntity],
        snapshot: CatalogSnapshot,
        overlay: UserOverlay | None,
    ) -> list[dict[str, Any]]:
        if not entities:
            return []
        refs = [e.ref for e in entities]
        if overlay is not None:
            ratings = overlay.ratings.get(self.entity_type, {})
            watches = overlay.watches.get(self.entity_type, {})
        elif self.entity_type in WATCHABLE:
            ratings, watches = await asyncio.gather(
                self.store.get_ratings(user_id, self.entity_type, refs),
                self.store.get_watches(user_id, self.entity_type, refs),
            )
        else:
            ratings = await self.store.get_ratings(user_id, self.entity_type, refs)
            watches = {}

        ctx = FieldContext(snapshot)
        table = FIELD_TABLES[self.entity_type]
        disambiguator = InstanceDisambiguator(snapshot.instance_labels, snapshot.default_instance_id)
        names = disambiguator.disambiguate([{"name": e.canonical_name, "instance_id": e.instance_id} for e in entities])

        items = []
        for entity, named in zip(entities, names):
            item = entity.model_dump(mode="json")
            item["ref"] = str(entity.ref)
            item["display_name"] = named["display_name"]
            self._attach_overlay(item, ratings.get(entity.ref), watches.get(entity.ref))
            for key, target, single in ATTACHMENTS[self.entity_type]:
                related = related_refs(entity, target)
                nested = [{"id": r.id, "instance_id": r.instance_id, "name": ctx.name_of(target, r)} for r in related]
                item[key] = (nested[0] if nested else None) if single else nested
            for count_field in COUNT_FIELDS:
                spec = table.get(count_field)
                if spec is not None:
                    item[count_field] = spec.accessor(entity, ctx)
            items.append(item)
        return items

    def _attach_overlay(self, item: dict[str, Any], rating: RatingRecord | None, watch: WatchRecord | None) -> None:
        item["rating"] = rating.rating if rating else None
        item["favorite"] = bool(rating and rating.favorite)
        if self.entity_type not in WATCHABLE:
            return
        item["play_count"] = watch.play_count if watch else 0
        item["o_counter"] = watch.o_count if watch else 0
        if self.entity_type == ET.SCENE:
            item["play_duration"] = watch.play_duration if watch else 0.0
            item["resume_time"] = watch.resume_time if watch else 0.0
            last_played = watch.last_played_at if watch else None
            item["last_played_at"] = last_played.isoformat() if last_played else None
