import asyncio
import time
from datetime import datetime, timezone

from loguru import logger

from curator.core.config import settings
from curator.core.errors import AmbiguousLookupError, InputError, NotFoundError
from curator.core.security import redact_user
from curator.models.entities import CatalogEntity, EntityRef, EntityType, parse_ref_token
from curator.models.results import PagedResult, RecommendationResult
from curator.services.catalog.repository import CatalogRepository
from curator.services.catalog.snapshot import CatalogSnapshot, related_refs
from curator.services.overlay.store import OverlayStore
from curator.services.query.executor import QueryExecutor
from curator.services.query.seeded import user_seed
from curator.services.recommendation import constants as C
from curator.services.recommendation.scoring import PREFERENCE_TYPES, RecommendationScoring
from curator.services.visibility.resolver import UserVisibility, VisibilityResolver

ET = EntityType

SIMILAR_TYPES = (ET.SCENE, ET.GALLERY, ET.IMAGE, ET.COLLECTION)


def _page_slice(items: list, page: int, per_page: int) -> list:
    offset = (page - 1) * per_page
    return items[offset : offset + per_page]


class RecommendationScorer:
    """
    Two-phase recommendations.

    Phase 1 scores every visible candidate from relation ids and overlay rows
    already in memory. Phase 2 hydrates only the requested page through the
    query executor, keeping score order.
    """

    def __init__(self, catalog: CatalogRepository, store: OverlayStore, visibility: VisibilityResolver):
        self.catalog = catalog
        self.store = store
        self.visibility = visibility
        self._executors: dict[EntityType, QueryExecutor] = {}

    def executor(self, entity_type: EntityType) -> QueryExecutor:
        if entity_type not in self._executors:
            self._executors[entity_type] = QueryExecutor(entity_type, self.catalog, self.store, self.visibility)
        return self._executors[entity_type]

    @staticmethod
    def _page_bounds(page: int, per_page: int | None, default: int) -> tuple[int, int]:
        if page < 1:
            raise InputError("page must be >= 1", field="page")
        per_page = default if per_page is None else per_page
        if per_page < 1:
            raise InputError("per_page must be >= 1", field="per_page")
        return page, min(per_page, settings.MAX_PER_PAGE)

    async def _hydrate(self, entity_type: EntityType, user_id: str, refs: list[EntityRef]) -> list[dict]:
        if not refs:
            return []
        return await self.executor(entity_type).get_by_ids(user_id, [str(r) for r in refs])

    async def recommended_for(
        self, user_id: str, page: int = 1, per_page: int | None = None, now: datetime | None = None
    ) -> RecommendationResult:
        start = time.perf_counter()
        page, per_page = self._page_bounds(page, per_page, settings.RECOMMENDATION_PER_PAGE)
        snapshot = await self.catalog.snapshot()

        # 1. Fetch visibility, overlay and rankings concurrently
        visibility, overlay, *ranked = await asyncio.gather(
            self.visibility.resolve(user_id, snapshot),
            self.store.get_overlay(user_id, [ET.SCENE, *PREFERENCE_TYPES]),
            *(self.store.get_rankings(user_id, t) for t in PREFERENCE_TYPES),
        )
        rankings = dict(zip(PREFERENCE_TYPES, ranked))

        # 2. Build the preference profile
        profile = RecommendationScoring.build_profile(overlay, snapshot, rankings)
        if profile.is_empty:
            logger.info(f"No recommendation criteria for {redact_user(user_id)}")
            return RecommendationResult(
                page=page,
                per_page=per_page,
                empty=True,
                reason="no_criteria",
                message="Rate or favorite performers, studios, tags or scenes to get recommendations.",
                criteria_counts=profile.criteria_counts(),
            )

        # 3. Score visible scenes from lightweight projections
        now = now or datetime.now(timezone.utc)
        scored: list[tuple[float, EntityRef]] = []
        for scene in snapshot.entities(ET.SCENE):
            if not visibility.is_visible(ET.SCENE, scene.ref):
                continue
            score = RecommendationScoring.score(scene, profile, overlay.watch(ET.SCENE, scene.ref), now)
            if score > 0:
                scored.append((score, scene.ref))

        if not scored:
            logger.info(f"No scene scored above zero for {redact_user(user_id)}")
            return RecommendationResult(
                page=page,
                per_page=per_page,
                empty=True,
                reason="no_matches",
                message="Nothing in the library matches your preferences yet.",
                criteria_counts=profile.criteria_counts(),
            )

        # 4. Sort, shuffle within score tiers, cap
        scored.sort(key=lambda pair: (-pair[0], pair[1]))
        ordered = RecommendationScoring.tier_shuffle(scored, user_seed(user_id))
        ordered = ordered[: settings.RECOMMENDATION_MAX_CANDIDATES]

        # 5. Hydrate the page only
        items = await self._hydrate(ET.SCENE, user_id, _page_slice(ordered, page, per_page))
        logger.info(
            f"Recommended {len(ordered)} scenes for {redact_user(user_id)} "
            f"({len(scored)} scored) in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return RecommendationResult(
            items=items,
            total_count=len(ordered),
            page=page,
            per_page=per_page,
            criteria_counts=profile.criteria_counts(),
        )

    def _source(
        self, snapshot: CatalogSnapshot, visibility: UserVisibility, entity_type: EntityType, entity_id: str
    ) -> CatalogEntity:
        token_id, instance_id = parse_ref_token(entity_id)
        matches = [
            r for r in snapshot.resolve(entity_type, token_id, instance_id) if visibility.is_visible(entity_type, r)
        ]
        if not matches:
            raise NotFoundError(f"{entity_type.value} {entity_id} not found")
        if len(matches) > 1:
            raise AmbiguousLookupError(entity_type.value, token_id, sorted(matches))
        return snapshot.get(entity_type, matches[0])

    @staticmethod
    def similarity_weights(
        snapshot: CatalogSnapshot, entity_type: EntityType, source: CatalogEntity
    ) -> dict[EntityRef, int]:
        """Points per candidate sharing a performer, the studio or a tag with ``source``."""
        weights: dict[EntityRef, int] = {}
        for target, points in (
            (ET.PERFORMER, C.SIMILAR_PERFORMER_POINTS),
            (ET.STUDIO, C.SIMILAR_STUDIO_POINTS),
            (ET.TAG, C.SIMILAR_TAG_POINTS),
        ):
            for related in related_refs(source, target):
                for candidate in snapshot.referrers(entity_type, target, related):
                    weights[candidate] = weights.get(candidate, 0) + points
        weights.pop(source.ref, None)
        return weights

    async def similar_to(
        self, entity_type: EntityType, entity_id: str, user_id: str, page: int = 1, per_page: int | None = None
    ) -> PagedResult:
        if entity_type not in SIMILAR_TYPES:
            raise InputError(f"Similarity is not supported for {entity_type.value}", field="entity_type")
        start = time.perf_counter()
        page, per_page = self._page_bounds(page, per_page, settings.SIMILAR_PER_PAGE)
        snapshot = await self.catalog.snapshot()
        visibility = await self.visibility.resolve(user_id, snapshot)
        source = self._source(snapshot, visibility, entity_type, entity_id)

        weights = self.similarity_weights(snapshot, entity_type, source)
        candidates = []
        for ref, weight in weights.items():
            entity = snapshot.get(entity_type, ref)
            if entity is None or not visibility.is_visible(entity_type, ref):
                continue
            date = getattr(entity, "date", None)
            candidates.append((-weight, date is None, -(date.toordinal() if date else 0), ref))
        candidates.sort()
        ordered = [c[-1] for c in candidates][: settings.SIMILAR_MAX_CANDIDATES]

        items = await self._hydrate(entity_type, user_id, _page_slice(ordered, page, per_page))
        logger.info(
            f"Found {len(ordered)} {entity_type.value}s similar to {source.ref} for {redact_user(user_id)} "
            f"in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return PagedResult(items=items, total_count=len(ordered), page=page, per_page=per_page)
