import asyncio
import hashlib
import json
from typing import Any

from async_lru import alru_cache
from loguru import logger

from curator.core.base_client import BaseClient
from curator.core.config import CatalogInstanceConfig, settings
from curator.core.errors import InputError, NotFoundError, UpstreamUnavailable
from curator.core.version import __version__
from curator.models.entities import ENTITY_MODELS, CatalogEntity, EntityRef, EntityType
from curator.services.catalog.provider import CatalogProvider

_ID = "id"
_REL = "{ id }"

# Upstream query name, result key, selection set and update mutation per entity type
_QUERIES: dict[EntityType, tuple[str, str, str, str]] = {
    EntityType.SCENE: (
        "findScenes",
        "scenes",
        "id title details date o_counter organized created_at updated_at "
        "files { path duration width height bit_rate frame_rate video_codec audio_codec } "
        f"studio {_REL} performers {_REL} tags {_REL} galleries {_REL} groups {{ group {_REL} }}",
        "sceneUpdate",
    ),
    EntityType.PERFORMER: (
        "findPerformers",
        "performers",
        "id name disambiguation alias_list gender birthdate country ethnicity height_cm details "
        f"created_at updated_at tags {_REL}",
        "performerUpdate",
    ),
    EntityType.STUDIO: (
        "findStudios",
        "studios",
        f"id name details url created_at updated_at parent_studio {_REL} tags {_REL}",
        "studioUpdate",
    ),
    EntityType.TAG: (
        "findTags",
        "tags",
        f"id name description aliases created_at updated_at parents {_REL}",
        "tagUpdate",
    ),
    EntityType.GALLERY: (
        "findGalleries",
        "galleries",
        "id title details date created_at updated_at folder { path } "
        f"studio {_REL} performers {_REL} tags {_REL} scenes {_REL}",
        "galleryUpdate",
    ),
    EntityType.IMAGE: (
        "findImages",
        "images",
        "id title details date o_counter created_at updated_at visual_files { ... on ImageFile { path width height } } "
        f"studio {_REL} performers {_REL} tags {_REL} galleries {_REL}",
        "imageUpdate",
    ),
    EntityType.COLLECTION: (
        "findGroups",
        "groups",
        "id name aliases synopsis date duration director created_at updated_at "
        f"studio {_REL} tags {_REL} containing_groups {{ group {_REL} }}",
        "groupUpdate",
    ),
}

_STATS_FIELDS = "stats { scene_count image_count gallery_count performer_count studio_count tag_count }"


def _fingerprint_query() -> str:
    """Entity counts plus the newest ``updated_at`` per type, so in-place edits also register."""
    latest = " ".join(
        f'{key}_latest: {op}(filter: {{ per_page: 1, sort: "updated_at", direction: DESC }}) {{ {key} {{ updated_at }} }}'
        for op, key, _, _ in _QUERIES.values()
    )
    return f"query {{ {_STATS_FIELDS} {latest} }}"


_FINGERPRINT_QUERY = _fingerprint_query()


def _ids(items: list[dict[str, Any]] | None) -> list[str]:
    return [str(i[_ID]) for i in items or [] if i and i.get(_ID) is not None]


def _nested_ids(items: list[dict[str, Any]] | None, key: str) -> list[str]:
    return _ids([i.get(key) for i in items or [] if i])


def _one_id(item: dict[str, Any] | None) -> str | None:
    return str(item[_ID]) if item and item.get(_ID) is not None else None


def _split_aliases(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(a) for a in value if a]
    return [a.strip() for a in (value or "").split(",") if a.strip()]


def to_entity(entity_type: EntityType, raw: dict[str, Any], instance_id: str) -> CatalogEntity:
    """Map an upstream record onto the local entity model."""
    data: dict[str, Any] = {
        "id": str(raw["id"]),
        "instance_id": instance_id,
        "hidden": bool(raw.get("hidden", False)),
        "tag_ids": _ids(raw.get("tags")),
        "created_at": raw.get("created_at"),
        "updated_at": raw.get("updated_at"),
    }
    if entity_type == EntityType.SCENE:
        file = (raw.get("files") or [{}])[0] or {}
        data.update(
            title=raw.get("title"),
            details=raw.get("details"),
            date=raw.get("date") or None,
            o_counter=raw.get("o_counter") or 0,
            organized=bool(raw.get("organized")),
            path=file.get("path"),
            duration=file.get("duration"),
            width=file.get("width"),
            height=file.get("height"),
            bitrate=file.get("bit_rate"),
            framerate=file.get("frame_rate"),
            video_codec=file.get("video_codec"),
            audio_codec=file.get("audio_codec"),
            studio_id=_one_id(raw.get("studio")),
            performer_ids=_ids(raw.get("performers")),
            gallery_ids=_ids(raw.get("galleries")),
            group_ids=_nested_ids(raw.get("groups"), "group"),
        )
    elif entity_type == EntityType.PERFORMER:
        data.update(
            name=raw.get("name") or "",
            disambiguation=raw.get("disambiguation"),
            aliases=raw.get("alias_list") or [],
            gender=raw.get("gender"),
            birthdate=raw.get("birthdate") or None,
            country=raw.get("country"),
            ethnicity=raw.get("ethnicity"),
            height_cm=raw.get("height_cm"),
            details=raw.get("details"),
        )
    elif entity_type == EntityType.STUDIO:
        data.update(
            name=raw.get("name") or "",
            details=raw.get("details"),
            url=raw.get("url"),
            parent_id=_one_id(raw.get("parent_studio")),
        )
    elif entity_type == EntityType.TAG:
        data.update(
            name=raw.get("name") or "",
            description=raw.get("description"),
            aliases=raw.get("aliases") or [],
            parent_ids=_ids(raw.get("parents")),
        )
    elif entity_type == EntityType.GALLERY:
        data.update(
            title=raw.get("title"),
            details=raw.get("details"),
            date=raw.get("date") or None,
            path=(raw.get("folder") or {}).get("path"),
            studio_id=_one_id(raw.get("studio")),
            performer_ids=_ids(raw.get("performers")),
            scene_ids=_ids(raw.get("scenes")),
        )
    elif entity_type == EntityType.IMAGE:
        file = (raw.get("visual_files") or [{}])[0] or {}
        data.update(
            title=raw.get("title"),
            details=raw.get("details"),
            date=raw.get("date") or None,
            o_counter=raw.get("o_counter") or 0,
            path=file.get("path"),
            width=file.get("width"),
            height=file.get("height"),
            studio_id=_one_id(raw.get("studio")),
            performer_ids=_ids(raw.get("performers")),
            gallery_ids=_ids(raw.get("galleries")),
        )
    elif entity_type == EntityType.COLLECTION:
        data.update(
            name=raw.get("name") or "",
            aliases=_split_aliases(raw.get("aliases")),
            synopsis=raw.get("synopsis"),
            date=raw.get("date") or None,
            duration=raw.get("duration"),
            director=raw.get("director"),
            studio_id=_one_id(raw.get("studio")),
            parent_ids=_nested_ids(raw.get("containing_groups"), "group"),
        )
    return ENTITY_MODELS[entity_type].model_validate(data)


class GraphQLCatalogClient(BaseClient):
    """
    Client for one upstream catalog source speaking GraphQL.
    """

    def __init__(self, instance: CatalogInstanceConfig, timeout: float = 30.0, max_retries: int = 3, **kwargs):
        headers = {
            "User-Agent": f"Curator/{__version__}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if instance.api_key:
            headers["ApiKey"] = instance.api_key
        super().__init__(
            source=f"catalog:{instance.id}",
            base_url=instance.url.rstrip("/"),
            timeout=timeout,
            max_retries=max_retries,
            headers=headers,
            **kwargs,
        )
        self.instance = instance
        # Cached per client so several sources never evict each other
        self.fingerprint = alru_cache(maxsize=1, ttl=5)(self._fingerprint)

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = await self.post("/graphql", json={"query": query, "variables": variables or {}})
        if payload.get("errors"):
            message = "; ".join(str(e.get("message", e)) for e in payload["errors"])
            logger.error(f"[{self.source}] GraphQL errors: {message}")
            raise UpstreamUnavailable(self.source, message)
        return payload.get("data") or {}

    async def find_all(self, entity_type: EntityType) -> list[CatalogEntity]:
        op, key, selection, _ = _QUERIES[entity_type]
        query = f"query {{ {op}(filter: {{ per_page: -1 }}) {{ {key} {{ {selection} }} }} }}"
        data = await self.execute(query)
        records = (data.get(op) or {}).get(key) or []
        return [to_entity(entity_type, r, self.instance.id) for r in records]

    async def find_by_ids(self, entity_type: EntityType, ids: list[str]) -> list[CatalogEntity]:
        if not ids:
            return []
        op, key, selection, _ = _QUERIES[entity_type]
        query = f"query($ids: [ID!]) {{ {op}(ids: $ids, filter: {{ per_page: -1 }}) {{ {key} {{ {selection} }} }} }}"
        data = await self.execute(query, {"ids": ids})
        records = (data.get(op) or {}).get(key) or []
        return [to_entity(entity_type, r, self.instance.id) for r in records]

    async def update(self, entity_type: EntityType, entity_id: str, changes: dict[str, Any]) -> CatalogEntity:
        _, _, selection, mutation = _QUERIES[entity_type]
        query = f"mutation($input: {mutation[0].upper()}{mutation[1:]}Input!) {{ {mutation}(input: $input) {{ {selection} }} }}"
        data = await self.execute(query, {"input": {"id": entity_id, **changes}})
        record = data.get(mutation)
        if not record:
            raise NotFoundError(f"{entity_type.value} {entity_id} not found in {self.instance.id}")
        return to_entity(entity_type, record, self.instance.id)

    async def _fingerprint(self) -> str:
        """Digest of the source's entity counts and newest edit times, used to detect upstream changes."""
        data = await self.execute(_FINGERPRINT_QUERY)
        return hashlib.md5(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


class GraphQLCatalogProvider(CatalogProvider):
    """Fans catalog reads out to every configured source and merges the results."""

    def __init__(self, instances: list[CatalogInstanceConfig] | None = None):
        self._instances = sorted(instances or settings.CATALOG_INSTANCES, key=lambda c: c.priority)
        self._clients = {
            inst.id: GraphQLCatalogClient(
                inst, timeout=settings.CATALOG_TIMEOUT_SECONDS, max_retries=settings.CATALOG_MAX_RETRIES
            )
            for inst in self._instances
        }
        self._version = 0
        self._fingerprints: dict[str, str] = {}

    def instances(self) -> list[CatalogInstanceConfig]:
        return list(self._instances)

    def _client(self, instance_id: str) -> GraphQLCatalogClient:
        client = self._clients.get(instance_id)
        if client is None:
            raise InputError(f"Unknown catalog source: {instance_id}", field="instance_id")
        return client

    async def fetch_all(self, entity_type: EntityType) -> list[CatalogEntity]:
        results = await asyncio.gather(*(c.find_all(entity_type) for c in self._clients.values()))
        return [e for batch in results for e in batch]

    async def fetch_by_ids(self, entity_type: EntityType, refs: list[EntityRef]) -> list[CatalogEntity]:
        grouped: dict[str, list[str]] = {}
        for ref in refs:
            grouped.setdefault(ref.instance_id, []).append(ref.id)
        results = await asyncio.gather(*(self._client(i).find_by_ids(entity_type, ids) for i, ids in grouped.items()))
        return [e for batch in results for e in batch]

    async def update(self, entity_type: EntityType, ref: EntityRef, changes: dict[str, Any]) -> CatalogEntity:
        updated = await self._client(ref.instance_id).update(entity_type, ref.id, changes)
        self._version += 1
        return updated

    async def get_version(self) -> int:
        clients = list(self._clients.values())
        prints = await asyncio.gather(*(c.fingerprint() for c in clients))
        current = {c.instance.id: p for c, p in zip(clients, prints)}
        if current != self._fingerprints:
            self._fingerprints = current
            self._version += 1
        return self._version

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
