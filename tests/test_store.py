import asyncio
from datetime import datetime, timezone

import pytest

from curator.core.cache import VersionedCache
from curator.core.errors import InputError
from curator.models.entities import EntityRef, EntityType
from curator.models.overlay import EngagementRanking
from curator.services.overlay.store import InMemoryOverlayStore

ET = EntityType
REF = EntityRef("100", "main")


def run(coro):
    return asyncio.run(coro)


def test_rating_updates_merge_with_stored_values():
    store = InMemoryOverlayStore()
    run(store.set_rating("u", ET.SCENE, REF, rating=70))
    record = run(store.set_rating("u", ET.SCENE, REF, favorite=True))
    assert (record.rating, record.favorite) == (70, True)

    record = run(store.set_rating("u", ET.SCENE, REF, rating=None))
    assert (record.rating, record.favorite) == (None, True)
    assert run(store.get_ratings("other", ET.SCENE)) == {}


def test_plays_and_o_events_accumulate():
    store = InMemoryOverlayStore()
    first = datetime(2024, 1, 1, tzinfo=timezone.utc)
    second = datetime(2024, 2, 1, tzinfo=timezone.utc)
    run(store.record_play("u", ET.SCENE, REF, duration=300, resume_time=120, at=first))
    run(store.record_play("u", ET.SCENE, REF, duration=-5, at=second))
    watch = run(store.record_o("u", ET.SCENE, REF, at=second))

    assert watch.play_count == 2
    assert watch.play_duration == 300
    assert watch.resume_time == 0
    assert watch.o_count == 1
    assert watch.last_played_at == second


def test_watch_history_is_not_kept_for_performers():
    with pytest.raises(InputError):
        run(InMemoryOverlayStore().record_play("u", ET.PERFORMER, REF))


def test_saving_rankings_replaces_the_previous_set():
    store = InMemoryOverlayStore()
    old = EngagementRanking(user_id="u", entity_type=ET.TAG, ref=EntityRef("1", "main"))
    new = EngagementRanking(user_id="u", entity_type=ET.TAG, ref=EntityRef("2", "main"), percentile_rank=100)
    run(store.save_rankings("u", ET.TAG, [old]))
    run(store.save_rankings("u", ET.TAG, [new]))
    assert run(store.get_rankings("u", ET.TAG)) == [new]

    run(store.save_rankings("u", ET.TAG, []))
    assert run(store.get_rankings("u", ET.TAG)) == []


def test_hide_and_unhide():
    store = InMemoryOverlayStore()
    run(store.hide_entity("u", ET.SCENE, REF))
    access = run(store.hide_entity("u", ET.SCENE, REF))
    assert access.hidden[ET.SCENE] == [REF]

    access = run(store.unhide_entity("u", ET.SCENE, REF))
    assert access.hidden[ET.SCENE] == []
    assert run(store.get_access("u")).hidden[ET.SCENE] == []


def test_overlay_bundles_ratings_and_watches():
    store = InMemoryOverlayStore()
    run(store.set_rating("u", ET.PERFORMER, EntityRef("20", "main"), favorite=True))
    run(store.record_play("u", ET.SCENE, REF))
    overlay = run(store.get_overlay("u", [ET.SCENE, ET.PERFORMER]))
    assert overlay.ratings[ET.PERFORMER][EntityRef("20", "main")].favorite
    assert overlay.watches[ET.SCENE][REF].play_count == 1
    assert ET.PERFORMER not in overlay.watches


def test_versioned_cache_drops_stale_entries():
    cache: VersionedCache[str] = VersionedCache("test")
    cache.set("a", 2, "value")
    assert cache.get("a", 2) == "value"
    # An older reader does not see the newer entry, and the entry survives
    assert cache.get("a", 1) is None
    assert cache.get("a", 2) == "value"
    # A newer version evicts it
    assert cache.get("a", 3) is None
    assert len(cache) == 0


def test_versioned_cache_selective_invalidation():
    cache: VersionedCache[int] = VersionedCache("test")
    cache.set("a", 1, 1)
    cache.set("b", 1, 2)
    assert cache.invalidate(lambda key: key == "a") == 1
    assert cache.get("b", 1) == 2
    assert cache.invalidate() == 1
