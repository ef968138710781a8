from datetime import datetime
from typing import Any

from loguru import logger

from curator.core.config import settings
from curator.core.errors import AmbiguousLookupError, NotFoundError
from curator.core.security import redact_user
from curator.models.entities import EntityRef, EntityType, parse_ref_token
from curator.models.filters import FilterSet
from curator.models.overlay import EngagementRanking, RatingRecord, UserAccess, WatchRecord
from curator.models.results import PagedResult, RecommendationResult
from curator.services.catalog.client import GraphQLCatalogProvider
from curator.services.catalog.provider import CatalogProvider, InMemoryCatalogProvider
from curator.services.catalog.repository import CatalogRepository
from curator.services.catalog.versioning import CatalogVersionSignal
from curator.services.overlay.store import OverlayStore, create_overlay_store
from curator.services.query.executor import QueryExecutor
from curator.services.recommendation.engine import RecommendationScorer
from curator.services.recommendation.rankings import EngagementRanker
from curator.services.visibility.resolver import VisibilityResolver


class LibraryService:
    """
    Facade over the catalog, the overlay store and the query, visibility and
    recommendation services. One instance serves the whole process.
    """

    def __init__(self, provider: CatalogProvider, store: OverlayStore, poll_seconds: float | None = None):
        self.provider = provider
        self.store = store
        self.signal = CatalogVersionSignal(
            provider, poll_seconds if poll_seconds is not None else settings.CATALOG_VERSION_POLL_SECONDS
        )
        self.catalog = CatalogRepository(provider, self.signal)
        self.visibility = VisibilityResolver(self.catalog, store)
        self.recommendations = RecommendationScorer(self.catalog, store, self.visibility)
        self.rankings = EngagementRanker(self.catalog, store, self.visibility)

    @classmethod
    def from_settings(cls) -> "LibraryService":
        provider: CatalogProvider
        if settings.CATALOG_INSTANCES:
            provider = GraphQLCatalogProvider()
        else:
            logger.warning("No CATALOG_INSTANCES configured; serving an empty in-memory catalog")
            provider = InMemoryCatalogProvider()
        return cls(provider, create_overlay_store())

    def start(self) -> None:
        self.signal.start()

    async def close(self) -> None:
        await self.signal.stop()
        await self.store.close()
        await self.provider.close()

    def executor(self, entity_type: EntityType) -> QueryExecutor:
        return self.recommendations.executor(entity_type)

    async def _ref(self, entity_type: EntityType, entity_id: str, instance_hint: str | None = None) -> EntityRef:
        """Resolve a caller-supplied id to exactly one catalog record."""
        snapshot = await self.catalog.snapshot()
        token_id, instance_id = parse_ref_token(entity_id)
        matches = snapshot.resolve(entity_type, token_id, instance_id or instance_hint)
        if not matches:
            raise NotFoundError(f"{entity_type.value} {entity_id} not found")
        if len(matches) > 1:
            raise AmbiguousLookupError(entity_type.value, token_id, sorted(matches))
        return matches[0]

    # Reads

    async def query(
        self,
        entity_type: EntityType,
        user_id: str,
        filters: FilterSet | None = None,
        sort: str | None = None,
        direction: str = "ASC",
        page: int = 1,
        per_page: int | None = None,
        search_text: str | None = None,
    ) -> PagedResult:
        return await self.executor(entity_type).execute(
            user_id, filters, sort=sort, direction=direction, page=page, per_page=per_page, search_text=search_text
        )

    async def get_by_ids(
        self, entity_type: EntityType, user_id: str, ids: list[str], instance_hint: str | None = None
    ) -> list[dict[str, Any]]:
        return await self.executor(entity_type).get_by_ids(user_id, ids, instance_hint)

    async def get(
        self, entity_type: EntityType, user_id: str, entity_id: str, instance_hint: str | None = None
    ) -> dict[str, Any]:
        return await self.executor(entity_type).get(user_id, entity_id, instance_hint)

    async def similar_to(
        self, entity_type: EntityType, entity_id: str, user_id: str, page: int = 1, per_page: int | None = None
    ) -> PagedResult:
        return await self.recommendations.similar_to(entity_type, entity_id, user_id, page, per_page)

    async def recommended_for(self, user_id: str, page: int = 1, per_page: int | None = None) -> RecommendationResult:
        return await self.recommendations.recommended_for(user_id, page, per_page)

    async def explain(self, entity_type: EntityType, user_id: str, entity_id: str) -> str | None:
        ref = await self._ref(entity_type, entity_id)
        return await self.visibility.explain(user_id, entity_type, ref)

    # Writes to the overlay

    async def set_rating(
        self,
        entity_type: EntityType,
        user_id: str,
        entity_id: str,
        instance_hint: str | None = None,
        **changes: Any,
    ) -> RatingRecord:
        """Update ``rating`` and/or ``favorite``; fields not passed keep their stored values."""
        ref = await self._ref(entity_type, entity_id, instance_hint)
        return await self.store.set_rating(user_id, entity_type, ref, **changes)

    async def record_play(
        self,
        entity_type: EntityType,
        user_id: str,
        entity_id: str,
        duration: float = 0.0,
        resume_time: float = 0.0,
        at: datetime | None = None,
    ) -> WatchRecord:
        ref = await self._ref(entity_type, entity_id)
        return await self.store.record_play(user_id, entity_type, ref, duration, resume_time, at)

    async def record_o(
        self, entity_type: EntityType, user_id: str, entity_id: str, at: datetime | None = None
    ) -> WatchRecord:
        ref = await self._ref(entity_type, entity_id)
        return await self.store.record_o(user_id, entity_type, ref, at)

    async def recompute_rankings(self, user_id: str) -> dict[EntityType, list[EngagementRanking]]:
        return await self.rankings.recompute(user_id)

    async def set_access(self, access: UserAccess) -> None:
        await self.store.set_access(access)
        self.visibility.invalidate(access.user_id)

    async def hide(self, entity_type: EntityType, user_id: str, entity_id: str) -> UserAccess:
        ref = await self._ref(entity_type, entity_id)
        access = await self.store.hide_entity(user_id, entity_type, ref)
        self.visibility.invalidate(user_id)
        return access

    async def unhide(self, entity_type: EntityType, user_id: str, entity_id: str) -> UserAccess:
        ref = await self._ref(entity_type, entity_id)
        access = await self.store.unhide_entity(user_id, entity_type, ref)
        self.visibility.invalidate(user_id)
        return access

    # Catalog

    async def update_entity(
        self, entity_type: EntityType, entity_id: str, changes: dict[str, Any], instance_hint: str | None = None
    ) -> dict[str, Any]:
        ref = await self._ref(entity_type, entity_id, instance_hint)
        updated = await self.catalog.update_entity(entity_type, ref, changes)
        return updated.model_dump(mode="json")

    def invalidate(self, user_id: str | None = None) -> int:
        dropped = self.visibility.invalidate(user_id)
        scope = redact_user(user_id) if user_id else "all users"
        logger.info(f"Invalidated {dropped} visibility entries for {scope}")
        return dropped
