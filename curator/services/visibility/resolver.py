import time
from enum import Enum

from loguru import logger

from curator.core.cache import VersionedCache
from curator.core.config import settings
from curator.core.security import redact_user
from curator.models.entities import EntityRef, EntityType
from curator.services.catalog.repository import CatalogRepository
from curator.services.catalog.snapshot import CatalogSnapshot
from curator.services.overlay.store import OverlayStore
from curator.services.visibility.emptiness import apply_emptiness
from curator.services.visibility.rules import apply_cascade, apply_hidden, apply_restrictions, new_exclusions


class VisibilityState(str, Enum):
    INELIGIBLE = "INELIGIBLE"
    COMPUTED = "COMPUTED"


class UserVisibility:
    """Exclusions for one user against one catalog version, with the reason for each."""

    __slots__ = ("user_id", "version", "excluded", "reasons")

    def __init__(self, user_id: str, version: int, reasons: dict[EntityType, dict[EntityRef, str]]):
        self.user_id = user_id
        self.version = version
        self.reasons = reasons
        self.excluded: dict[EntityType, frozenset[EntityRef]] = {t: frozenset(r) for t, r in reasons.items()}

    def is_visible(self, entity_type: EntityType, ref: EntityRef) -> bool:
        return ref not in self.excluded[entity_type]


class VisibilityResolver:
    """
    Computes what each user may not see.

    Order: hidden flags and disallowed sources, then the user's restriction
    lists, then a one-level cascade from those direct exclusions, then
    emptiness checked bottom-up against what is still visible. Results are
    cached per (user, catalog version) with last-writer-wins population.
    """

    def __init__(
        self,
        catalog: CatalogRepository,
        store: OverlayStore,
        cache: VersionedCache[UserVisibility] | None = None,
    ):
        self.catalog = catalog
        self.store = store
        self.cache: VersionedCache[UserVisibility] = cache or VersionedCache(
            "visibility", maxsize=settings.VISIBILITY_CACHE_MAX_ENTRIES
        )
        catalog.signal.subscribe(self._on_version)

    def _on_version(self, version: int) -> None:
        dropped = self.cache.invalidate()
        logger.debug(f"Dropped {dropped} visibility entries on catalog v{version}")

    def state(self, user_id: str, version: int) -> VisibilityState:
        if self.cache.get(user_id, version) is not None:
            return VisibilityState.COMPUTED
        return VisibilityState.INELIGIBLE

    async def resolve(self, user_id: str, snapshot: CatalogSnapshot | None = None) -> UserVisibility:
        snapshot = snapshot or await self.catalog.snapshot()
        cached = self.cache.get(user_id, snapshot.version)
        if cached is not None:
            return cached

        start = time.perf_counter()
        access = await self.store.get_access(user_id)
        exclusions = new_exclusions()

        # 1. Hidden flags, personally hidden entities, sources outside the allow-list
        apply_hidden(snapshot, access, exclusions)
        # 2. Restriction lists
        apply_restrictions(snapshot, access, exclusions)
        # 3. Downward cascade from direct exclusions
        apply_cascade(snapshot, exclusions)
        # 4. Emptiness against what is left
        emptied = 0
        if not access.is_elevated or settings.APPLY_EMPTY_FILTER_TO_ELEVATED:
            emptied = apply_emptiness(snapshot, exclusions)

        visibility = UserVisibility(user_id, snapshot.version, exclusions)
        self.cache.set(user_id, snapshot.version, visibility)
        total = sum(len(v) for v in exclusions.values())
        logger.debug(
            f"Visibility for {redact_user(user_id)} at v{snapshot.version}: "
            f"{total} excluded ({emptied} empty) in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return visibility

    async def excluded_ids(
        self, user_id: str, entity_type: EntityType, snapshot: CatalogSnapshot | None = None
    ) -> frozenset[EntityRef]:
        visibility = await self.resolve(user_id, snapshot)
        return visibility.excluded[entity_type]

    async def explain(self, user_id: str, entity_type: EntityType, ref: EntityRef) -> str | None:
        """Why ``ref`` is excluded for the user, or None if it is visible."""
        visibility = await self.resolve(user_id)
        return visibility.reasons[entity_type].get(ref)

    def invalidate(self, user_id: str | None = None) -> int:
        if user_id is None:
            return self.cache.invalidate()
        return self.cache.invalidate(lambda key: key == user_id)
