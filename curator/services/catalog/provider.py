from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from loguru import logger

from curator.core.config import CatalogInstanceConfig
from curator.core.errors import NotFoundError
from curator.models.entities import CatalogEntity, EntityRef, EntityType


class CatalogProvider(ABC):
    """
    Read access to the upstream catalog plus single-record updates.

    Implementations raise ``UpstreamUnavailable`` when the source fails.
    """

    @abstractmethod
    def instances(self) -> list[CatalogInstanceConfig]:
        """Configured sources, used for display labels and the default source."""

    @abstractmethod
    async def fetch_all(self, entity_type: EntityType) -> list[CatalogEntity]:
        pass

    @abstractmethod
    async def fetch_by_ids(self, entity_type: EntityType, refs: list[EntityRef]) -> list[CatalogEntity]:
        pass

    @abstractmethod
    async def update(self, entity_type: EntityType, ref: EntityRef, changes: dict[str, Any]) -> CatalogEntity:
        """Delegate a single-record update upstream and return the new record."""

    @abstractmethod
    async def get_version(self) -> int:
        """Monotonically increasing catalog version."""

    async def close(self) -> None:
        return None


class InMemoryCatalogProvider(CatalogProvider):
    """Catalog held in process memory. Used for local runs and tests."""

    def __init__(
        self,
        entities: Iterable[CatalogEntity] = (),
        instances: list[CatalogInstanceConfig] | None = None,
    ):
        self._records: dict[EntityType, dict[EntityRef, CatalogEntity]] = {t: {} for t in EntityType}
        self._instances = instances or [CatalogInstanceConfig(id="default", label="Default", priority=0)]
        self._version = 1
        for entity in entities:
            self._records[entity.entity_type][entity.ref] = entity

    def instances(self) -> list[CatalogInstanceConfig]:
        return list(self._instances)

    def load(self, entities: Iterable[CatalogEntity]) -> None:
        """Replace or add records and bump the version."""
        count = 0
        for entity in entities:
            self._records[entity.entity_type][entity.ref] = entity
            count += 1
        self._version += 1
        logger.debug(f"Loaded {count} catalog records (version {self._version})")

    async def fetch_all(self, entity_type: EntityType) -> list[CatalogEntity]:
        return list(self._records[entity_type].values())

    async def fetch_by_ids(self, entity_type: EntityType, refs: list[EntityRef]) -> list[CatalogEntity]:
        records = self._records[entity_type]
        return [records[r] for r in refs if r in records]

    async def update(self, entity_type: EntityType, ref: EntityRef, changes: dict[str, Any]) -> CatalogEntity:
        current = self._records[entity_type].get(ref)
        if current is None:
            raise NotFoundError(f"{entity_type.value} {ref} not found")
        changes = {k: v for k, v in changes.items() if k not in ("id", "instance_id")}
        # Round-trip through validation so updates get the same coercion as loads
        updated = type(current).model_validate({**current.model_dump(), **changes})
        self._records[entity_type][ref] = updated
        self._version += 1
        return updated

    async def get_version(self) -> int:
        return self._version
