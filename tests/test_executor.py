import asyncio

import pytest

from conftest import make_library

from curator.core.errors import AmbiguousLookupError, InputError, NotFoundError
from curator.models.entities import EntityRef, EntityType, Scene, Tag
from curator.models.filters import Criterion

ET = EntityType


def ids(result) -> list[str]:
    return [item["id"] for item in result.items]


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize(
    "depth,expected",
    [(0, []), (1, ["101"]), (-1, ["101", "100"])],
)
def test_tag_filter_depth(library, depth, expected):
    filters = {"tags": Criterion(modifier="INCLUDES", value=["1"], depth=depth)}
    result = run(library.query(ET.SCENE, "u", filters))
    assert ids(result) == expected


def test_child_tag_filter_at_depth_zero_matches_directly_tagged_scene(library):
    filters = {"tags": Criterion(modifier="INCLUDES", value=["2"], depth=0)}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["101"]
    filters = {"tags": Criterion(modifier="INCLUDES", value=["2"], depth=1)}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["101", "100"]


def test_includes_all_with_depth_needs_every_value_or_a_descendant():
    entities = [
        Tag(id="60", instance_id="main", name="Branch"),
        Tag(id="61", instance_id="main", name="Leaf One", parent_ids=["60"]),
        Tag(id="62", instance_id="main", name="Leaf Two", parent_ids=["60"]),
        Tag(id="63", instance_id="main", name="Other"),
        Scene(id="600", instance_id="main", title="Alpha", tag_ids=["61", "63"]),
        Scene(id="601", instance_id="main", title="Beta", tag_ids=["61", "62"]),
        Scene(id="602", instance_id="main", title="Gamma", tag_ids=["60", "63"]),
    ]
    library = make_library(entities)
    filters = {"tags": Criterion(modifier="INCLUDES_ALL", value=["60", "63"], depth=1)}
    # Two children of the same value never stand in for a missing one
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["600", "602"]
    filters = {"tags": Criterion(modifier="INCLUDES_ALL", value=["60", "63"], depth=0)}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["602"]


def test_default_order_is_by_name_and_hidden_scenes_never_appear(library):
    result = run(library.query(ET.SCENE, "u"))
    assert ids(result) == ["101", "100", "102", "104"]
    assert result.total_count == 4
    assert result.items[-1]["display_name"] == "untitled_clip.mp4"


def test_sort_by_date_puts_missing_values_last(library):
    result = run(library.query(ET.SCENE, "u", sort="date", direction="DESC"))
    assert ids(result) == ["101", "100", "102", "104"]
    result = run(library.query(ET.SCENE, "u", sort="date", direction="ASC"))
    assert ids(result) == ["102", "100", "101", "104"]


def test_hierarchical_studio_filter(library):
    filters = {"studios": Criterion(modifier="INCLUDES", value=["10"], depth=-1)}
    assert sorted(ids(run(library.query(ET.SCENE, "u", filters)))) == ["100", "101", "102"]
    filters = {"studios": Criterion(modifier="INCLUDES", value=["10"])}
    assert sorted(ids(run(library.query(ET.SCENE, "u", filters)))) == ["101", "102"]


def test_resolution_filter_uses_short_side(library):
    filters = {"resolution": Criterion(modifier="EQUALS", value="1080p")}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["100"]
    filters = {"resolution": Criterion(modifier="GREATER_THAN", value="1080p")}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["102"]


def test_search_covers_related_names(library):
    assert ids(run(library.query(ET.SCENE, "u", search_text="ALICE"))) == ["101", "100"]
    assert ids(run(library.query(ET.SCENE, "u", search_text="walk"))) == ["100"]
    assert ids(run(library.query(ET.SCENE, "u", search_text="clips/untitled"))) == ["104"]


def test_random_seed_pages_never_repeat_or_skip(library):
    async def scenario():
        full = await library.query(ET.SCENE, "u", sort="random_77", per_page=100)
        pages = []
        for page in (1, 2):
            result = await library.query(ET.SCENE, "u", sort="random_77", page=page, per_page=2)
            pages.extend(ids(result))
        again = await library.query(ET.SCENE, "u", sort="random_77", per_page=100)
        return ids(full), pages, ids(again)

    full, pages, again = run(scenario())
    assert pages == full
    assert len(set(pages)) == 4
    assert again == full


def test_malformed_criterion_is_dropped(library):
    filters = {"duration": Criterion(modifier="GREATER_THAN", value="long")}
    assert run(library.query(ET.SCENE, "u", filters)).total_count == 4


def test_unknown_field_and_unsupported_modifier_are_rejected(library):
    with pytest.raises(InputError) as exc:
        run(library.query(ET.SCENE, "u", {"mood": Criterion(value="happy")}))
    assert exc.value.field == "mood"
    with pytest.raises(InputError):
        run(library.query(ET.SCENE, "u", {"organized": Criterion(modifier="INCLUDES_ALL", value=True)}))
    with pytest.raises(InputError):
        run(library.query(ET.SCENE, "u", sort="performers"))


def test_page_bounds(library):
    with pytest.raises(InputError):
        run(library.query(ET.SCENE, "u", page=0))
    with pytest.raises(InputError):
        run(library.query(ET.SCENE, "u", per_page=0))
    result = run(library.query(ET.SCENE, "u", per_page=10_000))
    assert result.per_page == 500
    assert run(library.query(ET.SCENE, "u", page=9)).items == []


def test_overlay_filters_and_sorts(library):
    async def scenario():
        await library.set_rating(ET.SCENE, "u", "102", rating=90)
        await library.set_rating(ET.SCENE, "u", "100", rating=40)
        filtered = await library.query(ET.SCENE, "u", {"rating": Criterion(modifier="GREATER_THAN", value=50)})
        ordered = await library.query(ET.SCENE, "u", sort="rating", direction="DESC")
        other_user = await library.query(ET.SCENE, "someone-else", {"rating": Criterion(modifier="NOT_NULL")})
        return filtered, ordered, other_user

    filtered, ordered, other_user = run(scenario())
    assert ids(filtered) == ["102"]
    assert ids(ordered) == ["102", "100", "101", "104"]
    assert ordered.items[0]["rating"] == 90
    assert other_user.items == []


def test_related_favorite_filter(library):
    async def scenario():
        await library.set_rating(ET.PERFORMER, "u", "21", favorite=True)
        filters = {"performer_favorite": Criterion(value=True)}
        return await library.query(ET.SCENE, "u", filters)

    assert ids(run(scenario())) == ["101", "102"]


def test_watch_counters_are_hydrated(library):
    async def scenario():
        await library.record_play(ET.SCENE, "u", "100", duration=300, resume_time=120)
        await library.record_o(ET.SCENE, "u", "100")
        return await library.get(ET.SCENE, "u", "100")

    item = run(scenario())
    assert item["play_count"] == 1
    assert item["o_counter"] == 1
    assert item["resume_time"] == 120
    assert item["last_played_at"] is not None


def test_page_items_carry_nested_names(library):
    item = run(library.get(ET.SCENE, "u", "100"))
    assert [t["name"] for t in item["tags"]] == ["Sunset"]
    assert item["studio"]["name"] == "Sub Studio"
    assert [p["name"] for p in item["performers"]] == ["Alice"]
    assert [g["name"] for g in item["groups"]] == ["Part Two"]
    assert item["rating"] is None
    assert item["favorite"] is False


def test_ids_filter_and_exclusion(library):
    filters = {"ids": Criterion(modifier="INCLUDES", value=["100", "103", "102"])}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["100", "102"]
    filters = {"ids": Criterion(modifier="EXCLUDES", value=["100"])}
    assert ids(run(library.query(ET.SCENE, "u", filters))) == ["101", "102", "104"]


def test_single_id_lookup_across_sources_is_ambiguous(multi_library):
    with pytest.raises(AmbiguousLookupError) as exc:
        run(multi_library.get_by_ids(ET.PERFORMER, "u", ["20"]))
    assert set(exc.value.matches) == {EntityRef("20", "main"), EntityRef("20", "backup")}

    with pytest.raises(AmbiguousLookupError):
        run(multi_library.query(ET.PERFORMER, "u", {"ids": Criterion(modifier="INCLUDES", value=["20"])}))

    pinned = run(multi_library.get_by_ids(ET.PERFORMER, "u", ["20"], instance_hint="backup"))
    assert [p["instance_id"] for p in pinned] == ["backup"]
    assert run(multi_library.get(ET.PERFORMER, "u", "20:main"))["instance_id"] == "main"


def test_lookup_keeps_request_order(library):
    items = run(library.get_by_ids(ET.SCENE, "u", ["102", "100", "103"]))
    assert [i["id"] for i in items] == ["102", "100"]


def test_get_missing_entity(library):
    with pytest.raises(NotFoundError):
        run(library.get(ET.SCENE, "u", "103"))
    with pytest.raises(NotFoundError):
        run(library.get(ET.SCENE, "u", "999"))


def test_same_name_from_another_source_is_labelled(multi_library):
    result = run(multi_library.query(ET.PERFORMER, "u", search_text="alice"))
    assert sorted(i["display_name"] for i in result.items) == ["Alice", "Alice (Backup)"]


def test_performer_fields(library):
    filters = {"gender": Criterion(modifier="EQUALS", value="female")}
    assert ids(run(library.query(ET.PERFORMER, "u", filters))) == ["20"]
    filters = {"studios": Criterion(modifier="INCLUDES", value=["11"])}
    assert ids(run(library.query(ET.PERFORMER, "u", filters))) == ["20"]
