import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from loguru import logger

from curator.core.config import settings
from curator.core.errors import InputError, UpstreamUnavailable
from curator.core.security import redact_user
from curator.models.entities import EntityRef, EntityType
from curator.models.overlay import EngagementRanking, RatingRecord, UserAccess, UserOverlay, WatchRecord

_UNSET: Any = object()

WATCHABLE = (EntityType.SCENE, EntityType.IMAGE)


def _field(ref: EntityRef) -> str:
    return str(ref)


class OverlayStore(ABC):
    """
    Per-user data owned by this service: ratings, favorites, watch history,
    engagement rankings and access rules.

    Rows live in per-user hashes, one hash per bucket (``ratings:scene``,
    ``watches:image``, ...), keyed by ``"id:instanceId"``. Backends only
    implement the hash primitives; every typed operation is shared.
    """

    @abstractmethod
    async def _read_all(self, user_id: str, bucket: str) -> dict[str, str]:
        pass

    @abstractmethod
    async def _read_fields(self, user_id: str, bucket: str, fields: list[str]) -> dict[str, str]:
        pass

    @abstractmethod
    async def _write(self, user_id: str, bucket: str, mapping: dict[str, str]) -> None:
        pass

    @abstractmethod
    async def _delete(self, user_id: str, bucket: str, fields: list[str] | None = None) -> None:
        """Remove fields from a bucket, or the whole bucket when ``fields`` is None."""

    async def close(self) -> None:
        return None

    # Ratings and favorites

    async def get_ratings(
        self, user_id: str, entity_type: EntityType, refs: Iterable[EntityRef] | None = None
    ) -> dict[EntityRef, RatingRecord]:
        bucket = f"ratings:{entity_type.value}"
        if refs is None:
            raw = await self._read_all(user_id, bucket)
        else:
            fields = [_field(r) for r in refs]
            raw = await self._read_fields(user_id, bucket, fields) if fields else {}
        records = (RatingRecord.model_validate_json(v) for v in raw.values())
        return {r.ref: r for r in records}

    async def set_rating(
        self,
        user_id: str,
        entity_type: EntityType,
        ref: EntityRef,
        rating: int | None = _UNSET,
        favorite: bool | None = None,
    ) -> RatingRecord:
        """Create or update a rating row. Omitted arguments keep their stored values."""
        current = (await self.get_ratings(user_id, entity_type, [ref])).get(ref)
        record = current or RatingRecord(user_id=user_id, entity_type=entity_type, ref=ref)
        updates: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if rating is not _UNSET:
            updates["rating"] = rating
        if favorite is not None:
            updates["favorite"] = favorite
        record = RatingRecord.model_validate({**record.model_dump(), **updates})
        await self._write(user_id, f"ratings:{entity_type.value}", {_field(ref): record.model_dump_json()})
        logger.debug(
            f"Rating saved for {redact_user(user_id)}: {entity_type.value} {ref} "
            f"rating={record.rating} favorite={record.favorite}"
        )
        return record

    # Watch history

    async def get_watches(
        self, user_id: str, entity_type: EntityType = EntityType.SCENE, refs: Iterable[EntityRef] | None = None
    ) -> dict[EntityRef, WatchRecord]:
        bucket = f"watches:{entity_type.value}"
        if refs is None:
            raw = await self._read_all(user_id, bucket)
        else:
            fields = [_field(r) for r in refs]
            raw = await self._read_fields(user_id, bucket, fields) if fields else {}
        records = (WatchRecord.model_validate_json(v) for v in raw.values())
        return {r.ref: r for r in records}

    async def _update_watch(self, user_id: str, entity_type: EntityType, ref: EntityRef, **changes: Any) -> WatchRecord:
        if entity_type not in WATCHABLE:
            raise InputError(
                f"Watch history is only kept for scenes and images, not {entity_type.value}", field="entity_type"
            )
        current = (await self.get_watches(user_id, entity_type, [ref])).get(ref)
        record = current or WatchRecord(user_id=user_id, entity_type=entity_type, ref=ref)
        data = record.model_dump()
        for key, value in changes.items():
            data[key] = value(data[key]) if callable(value) else value
        record = WatchRecord.model_validate(data)
        await self._write(user_id, f"watches:{entity_type.value}", {_field(ref): record.model_dump_json()})
        return record

    async def record_play(
        self,
        user_id: str,
        entity_type: EntityType,
        ref: EntityRef,
        duration: float = 0.0,
        resume_time: float = 0.0,
        at: datetime | None = None,
    ) -> WatchRecord:
        played_at = at or datetime.now(timezone.utc)
        return await self._update_watch(
            user_id,
            entity_type,
            ref,
            play_count=lambda v: v + 1,
            play_duration=lambda v: v + max(duration, 0.0),
            resume_time=resume_time,
            play_history=lambda v: [*v, played_at],
        )

    async def record_o(
        self, user_id: str, entity_type: EntityType, ref: EntityRef, at: datetime | None = None
    ) -> WatchRecord:
        o_at = at or datetime.now(timezone.utc)
        return await self._update_watch(
            user_id, entity_type, ref, o_count=lambda v: v + 1, o_history=lambda v: [*v, o_at]
        )

    # Engagement rankings

    async def get_rankings(self, user_id: str, entity_type: EntityType) -> list[EngagementRanking]:
        raw = await self._read_all(user_id, f"rankings:{entity_type.value}")
        return [EngagementRanking.model_validate_json(v) for v in raw.values()]

    async def save_rankings(self, user_id: str, entity_type: EntityType, rankings: list[EngagementRanking]) -> None:
        """Replace the user's stored rankings for one type."""
        bucket = f"rankings:{entity_type.value}"
        await self._delete(user_id, bucket)
        if rankings:
            await self._write(user_id, bucket, {_field(r.ref): r.model_dump_json() for r in rankings})

    # Access rules and hidden entities

    async def get_access(self, user_id: str) -> UserAccess:
        raw = await self._read_fields(user_id, "access", ["user"])
        if "user" not in raw:
            return UserAccess(user_id=user_id)
        return UserAccess.model_validate_json(raw["user"])

    async def set_access(self, access: UserAccess) -> None:
        await self._write(access.user_id, "access", {"user": access.model_dump_json()})

    async def hide_entity(self, user_id: str, entity_type: EntityType, ref: EntityRef) -> UserAccess:
        access = await self.get_access(user_id)
        hidden = dict(access.hidden)
        refs = list(hidden.get(entity_type, []))
        if ref not in refs:
            refs.append(ref)
        hidden[entity_type] = refs
        access = access.model_copy(update={"hidden": hidden})
        await self.set_access(access)
        return access

    async def unhide_entity(self, user_id: str, entity_type: EntityType, ref: EntityRef) -> UserAccess:
        access = await self.get_access(user_id)
        hidden = dict(access.hidden)
        hidden[entity_type] = [r for r in hidden.get(entity_type, []) if r != ref]
        access = access.model_copy(update={"hidden": hidden})
        await self.set_access(access)
        return access

    # Bulk

    async def get_overlay(self, user_id: str, entity_types: Iterable[EntityType] | None = None) -> UserOverlay:
        """Everything stored for a user, for the given types (all types by default)."""
        types = list(entity_types) if entity_types is not None else list(EntityType)
        watch_types = [t for t in types if t in WATCHABLE]
        results = await asyncio.gather(
            *(self.get_ratings(user_id, t) for t in types), *(self.get_watches(user_id, t) for t in watch_types)
        )
        ratings = dict(zip(types, results[: len(types)]))
        watches = dict(zip(watch_types, results[len(types) :]))
        return UserOverlay(user_id=user_id, ratings=ratings, watches=watches)


class InMemoryOverlayStore(OverlayStore):
    def __init__(self) -> None:
        self._data: dict[tuple[str, str], dict[str, str]] = {}

    async def _read_all(self, user_id: str, bucket: str) -> dict[str, str]:
        return dict(self._data.get((user_id, bucket), {}))

    async def _read_fields(self, user_id: str, bucket: str, fields: list[str]) -> dict[str, str]:
        stored = self._data.get((user_id, bucket), {})
        return {f: stored[f] for f in fields if f in stored}

    async def _write(self, user_id: str, bucket: str, mapping: dict[str, str]) -> None:
        self._data.setdefault((user_id, bucket), {}).update(mapping)

    async def _delete(self, user_id: str, bucket: str, fields: list[str] | None = None) -> None:
        if fields is None:
            self._data.pop((user_id, bucket), None)
            return
        stored = self._data.get((user_id, bucket), {})
        for f in fields:
            stored.pop(f, None)


class RedisOverlayStore(OverlayStore):
    """Overlay rows in Redis hashes, one hash per (user, bucket)."""

    def __init__(self, url: str | None = None, key_prefix: str | None = None) -> None:
        self.url = url or settings.REDIS_URL
        self.key_prefix = key_prefix if key_prefix is not None else settings.REDIS_KEY_PREFIX
        self._client: redis.Redis | None = None
        if not self.url:
            logger.warning("REDIS_URL is not set. Overlay operations will fail until configured.")

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            logger.info("Creating Redis client for RedisOverlayStore")
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                health_check_interval=30,
                socket_keepalive=True,
            )
        return self._client

    def _key(self, user_id: str, bucket: str) -> str:
        return f"{self.key_prefix}user:{user_id}:{bucket}"

    async def _read_all(self, user_id: str, bucket: str) -> dict[str, str]:
        try:
            client = await self.get_client()
            return await client.hgetall(self._key(user_id, bucket))
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to read overlay '{bucket}' for {redact_user(user_id)}: {exc}")
            raise UpstreamUnavailable("overlay", str(exc)) from exc

    async def _read_fields(self, user_id: str, bucket: str, fields: list[str]) -> dict[str, str]:
        try:
            client = await self.get_client()
            values = await client.hmget(self._key(user_id, bucket), fields)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to read overlay '{bucket}' for {redact_user(user_id)}: {exc}")
            raise UpstreamUnavailable("overlay", str(exc)) from exc
        return {f: v for f, v in zip(fields, values) if v is not None}

    async def _write(self, user_id: str, bucket: str, mapping: dict[str, str]) -> None:
        try:
            client = await self.get_client()
            await client.hset(self._key(user_id, bucket), mapping=mapping)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to write overlay '{bucket}' for {redact_user(user_id)}: {exc}")
            raise UpstreamUnavailable("overlay", str(exc)) from exc

    async def _delete(self, user_id: str, bucket: str, fields: list[str] | None = None) -> None:
        try:
            client = await self.get_client()
            if fields is None:
                await client.delete(self._key(user_id, bucket))
            elif fields:
                await client.hdel(self._key(user_id, bucket), *fields)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to delete overlay '{bucket}' for {redact_user(user_id)}: {exc}")
            raise UpstreamUnavailable("overlay", str(exc)) from exc

    async def close(self) -> None:
        """Close and disconnect the Redis client"""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("RedisOverlayStore client closed")
            except (redis.RedisError, OSError) as exc:
                logger.warning(f"Failed to close RedisOverlayStore client: {exc}")
            finally:
                self._client = None


def create_overlay_store() -> OverlayStore:
    if settings.OVERLAY_BACKEND == "redis":
        return RedisOverlayStore()
    return InMemoryOverlayStore()
