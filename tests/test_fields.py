from conftest import MAIN

from curator.models.entities import EntityRef, EntityType
from curator.models.overlay import RatingRecord, UserOverlay
from curator.services.query.fields import FieldContext, get_field

ET = EntityType


def overlay_with_favorite(user_id: str, entity_id: str) -> UserOverlay:
    ref = EntityRef(entity_id, MAIN)
    record = RatingRecord(user_id=user_id, entity_type=ET.PERFORMER, ref=ref, favorite=True)
    return UserOverlay(user_id=user_id, ratings={ET.PERFORMER: {ref: record}})


def test_favorites_are_built_once_per_context(snapshot):
    ctx = FieldContext(snapshot, overlay_with_favorite("u", "21"))
    first = ctx.favorites(ET.PERFORMER)
    assert first == {EntityRef("21", MAIN)}
    assert ctx.favorites(ET.PERFORMER) is first
    assert ctx.favorites(ET.STUDIO) == frozenset()


def test_new_overlay_resets_cached_favorites(snapshot):
    ctx = FieldContext(snapshot)
    assert ctx.favorites(ET.PERFORMER) == frozenset()
    ctx.overlay = overlay_with_favorite("u", "20")
    assert ctx.favorites(ET.PERFORMER) == {EntityRef("20", MAIN)}


def test_related_favorite_reads_the_cached_set(snapshot):
    spec = get_field(ET.SCENE, "performer_favorite")
    ctx = FieldContext(snapshot, overlay_with_favorite("u", "21"))
    matched = [s.id for s in snapshot.entities(ET.SCENE) if spec.accessor(s, ctx)]
    assert matched == ["101", "102", "103"]
