import asyncio
import time
from typing import Any

from loguru import logger

from curator.models.entities import CatalogEntity, EntityRef, EntityType
from curator.services.catalog.provider import CatalogProvider
from curator.services.catalog.snapshot import CatalogSnapshot
from curator.services.catalog.versioning import CatalogVersionSignal


class CatalogRepository:
    """
    Owns the live ``CatalogSnapshot``.

    A version bump swaps in a freshly built snapshot; requests that already
    hold the previous snapshot keep using it until they finish.
    """

    def __init__(self, provider: CatalogProvider, signal: CatalogVersionSignal | None = None):
        self.provider = provider
        self.signal = signal or CatalogVersionSignal(provider)
        self._snapshot: CatalogSnapshot | None = None
        self._load_lock = asyncio.Lock()

    @property
    def version(self) -> int:
        return self.signal.version

    async def snapshot(self) -> CatalogSnapshot:
        """Current snapshot, (re)built when the catalog version has moved."""
        current = self._snapshot
        if current is not None and current.version >= self.signal.version:
            return current
        async with self._load_lock:
            # Another request may have finished the rebuild while we waited
            if self._snapshot is None or self._snapshot.version < self.signal.version:
                self._snapshot = await self._build()
            return self._snapshot

    async def _build(self) -> CatalogSnapshot:
        if self.signal.version == 0:
            await self.signal.poll()
        version = self.signal.version
        start = time.perf_counter()
        types = list(EntityType)
        batches = await asyncio.gather(*(self.provider.fetch_all(t) for t in types))
        snapshot = CatalogSnapshot(version, dict(zip(types, batches)), self.provider.instances())
        logger.info(f"Catalog snapshot v{version} loaded in {time.perf_counter() - start:.2f}s")
        return snapshot

    async def update_entity(self, entity_type: EntityType, ref: EntityRef, changes: dict[str, Any]) -> CatalogEntity:
        """Delegate a single-record update upstream, then advance the version."""
        updated = await self.provider.update(entity_type, ref, changes)
        await self.signal.notify(await self.provider.get_version())
        logger.info(f"Updated {entity_type.value} {ref}; catalog now at v{self.signal.version}")
        return updated
