import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import MAIN, make_library

from curator.core.errors import InputError, NotFoundError
from curator.models.entities import EntityRef, EntityType, Performer, Scene, Tag
from curator.models.overlay import WatchRecord
from curator.services.recommendation.scoring import RecommendationScoring

ET = EntityType


def ids(result) -> list[str]:
    return [item["id"] for item in result.items]


def preference_catalog():
    return [
        Performer(id="1", instance_id=MAIN, name="Pat"),
        Performer(id="2", instance_id=MAIN, name="Quinn"),
        Tag(id="9", instance_id=MAIN, name="Plain"),
        Scene(id="s1", instance_id=MAIN, title="One", performer_ids=["1"]),
        Scene(id="s2", instance_id=MAIN, title="Two", performer_ids=["1"]),
        Scene(id="s3", instance_id=MAIN, title="Three", performer_ids=["1"]),
        Scene(id="s4", instance_id=MAIN, title="Four", performer_ids=["1"], tag_ids=["9"]),
        Scene(id="s5", instance_id=MAIN, title="Five", performer_ids=["2"], tag_ids=["9"]),
    ]


def test_favorite_performer_outranks_unrelated_scene():
    library = make_library(preference_catalog())

    async def scenario():
        await library.set_rating(ET.PERFORMER, "fan", "1", favorite=True)
        for scene_id in ("s1", "s2", "s3"):
            await library.set_rating(ET.SCENE, "fan", scene_id, rating=90)
        return await library.recommended_for("fan", per_page=50)

    result = asyncio.run(scenario())
    assert not result.empty
    recommended = ids(result)
    assert "s4" in recommended
    assert "s5" not in recommended
    assert result.criteria_counts["favorite_performers"] == 1
    assert result.criteria_counts["rated_scenes"] == 3


def test_user_without_preferences_gets_no_criteria(library):
    result = asyncio.run(library.recommended_for("newcomer"))
    assert result.empty
    assert result.reason == "no_criteria"
    assert result.items == []
    assert set(result.criteria_counts.values()) == {0}


def test_preferences_matching_nothing_visible_gives_no_matches(library):
    async def scenario():
        await library.set_rating(ET.TAG, "u", "5", favorite=True)
        return await library.recommended_for("u")

    result = asyncio.run(scenario())
    assert result.empty
    assert result.reason == "no_matches"
    assert result.criteria_counts["favorite_tags"] == 1


def test_recommendation_pages_do_not_overlap(library):
    async def scenario():
        await library.set_rating(ET.STUDIO, "u", "10", favorite=True)
        await library.set_rating(ET.PERFORMER, "u", "20", rating=95)
        full = await library.recommended_for("u", per_page=50)
        pages = []
        for page in (1, 2, 3):
            pages.extend(ids(await library.recommended_for("u", page=page, per_page=1)))
        return ids(full), pages

    full, pages = asyncio.run(scenario())
    assert pages == full
    assert len(set(full)) == len(full) == 3
    assert "103" not in full


def test_watch_modifier_thresholds():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    ref = EntityRef("1", MAIN)

    def watched(delta: timedelta) -> WatchRecord:
        return WatchRecord(user_id="u", ref=ref, play_count=1, play_history=[now - delta])

    assert RecommendationScoring.watch_modifier(None, now) == 30
    assert RecommendationScoring.watch_modifier(watched(timedelta(days=20)), now) == 20
    assert RecommendationScoring.watch_modifier(watched(timedelta(days=3)), now) == -10
    assert RecommendationScoring.watch_modifier(watched(timedelta(hours=2)), now) == -30


def test_engagement_multiplier_is_capped():
    ref = EntityRef("1", MAIN)
    assert RecommendationScoring.engagement_multiplier(None) == 1
    assert RecommendationScoring.engagement_multiplier(WatchRecord(user_id="u", ref=ref, o_count=2)) == pytest.approx(1.06)
    assert RecommendationScoring.engagement_multiplier(WatchRecord(user_id="u", ref=ref, o_count=50)) == pytest.approx(1.3)


def test_tier_shuffle_keeps_tiers_in_order():
    scored = [(100.0, "a"), (99.0, "b"), (10.0, "c"), (9.0, "d")]
    ordered = RecommendationScoring.tier_shuffle(scored, seed=5, tiers=10)
    assert set(ordered[:2]) == {"a", "b"}
    assert set(ordered[2:]) == {"c", "d"}
    assert ordered == RecommendationScoring.tier_shuffle(scored, seed=5, tiers=10)
    assert RecommendationScoring.tier_shuffle([(1.0, "x"), (1.0, "y")], seed=1, tiers=10) in (["x", "y"], ["y", "x"])


def test_similar_scenes_share_performers_studios_and_tags(library):
    assert ids(asyncio.run(library.similar_to(ET.SCENE, "100", "u"))) == ["101"]
    result = asyncio.run(library.similar_to(ET.SCENE, "101", "u"))
    assert ids(result) == ["102", "100"]
    assert result.total_count == 2


def test_similar_rejects_unsupported_types_and_unknown_ids(library):
    with pytest.raises(InputError):
        asyncio.run(library.similar_to(ET.PERFORMER, "20", "u"))
    with pytest.raises(NotFoundError):
        asyncio.run(library.similar_to(ET.SCENE, "999", "u"))
