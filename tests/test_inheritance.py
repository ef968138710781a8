import asyncio
import datetime as dt

from conftest import MAIN, catalog_entities, make_library, make_snapshot

from curator.models.entities import (
    Collection,
    EntityRef,
    EntityType,
    Gallery,
    Image,
    Performer,
    Scene,
    Studio,
    Tag,
)
from curator.models.filters import Criterion
from curator.models.overlay import Restriction, RestrictionMode, UserAccess

ET = EntityType


def main(entity_id: str) -> EntityRef:
    return EntityRef(entity_id, MAIN)


def ids(result) -> list[str]:
    return [item["id"] for item in result.items]


def scene_sources() -> list:
    return [
        Tag(id="50", instance_id=MAIN, name="Mood"),
        Tag(id="51", instance_id=MAIN, name="Venue"),
        Tag(id="52", instance_id=MAIN, name="Serial"),
        Tag(id="53", instance_id=MAIN, name="Direct"),
        Performer(id="60", instance_id=MAIN, name="Dana", tag_ids=["50", "53"]),
        Studio(id="61", instance_id=MAIN, name="Hall", tag_ids=["51"]),
        Collection(id="62", instance_id=MAIN, name="Saga", tag_ids=["52", "50"]),
        Scene(
            id="600",
            instance_id=MAIN,
            title="Opening",
            tag_ids=["53"],
            performer_ids=["60"],
            studio_id="61",
            group_ids=["62"],
        ),
    ]


def test_scene_inherits_tags_from_performers_studio_and_collections():
    snapshot = make_snapshot(scene_sources())
    scene = snapshot.get(ET.SCENE, main("600"))
    assert scene.tag_ids == ["53"]
    # Direct tags are never repeated among inherited ones
    assert scene.inherited_tag_ids == ["50", "51", "52"]
    assert snapshot.inheriting_scenes(main("51")) == [main("600")]
    assert snapshot.inheriting_scenes(main("53")) == []


def test_inheritance_leaves_source_records_untouched():
    entities = scene_sources()
    make_snapshot(entities)
    assert entities[-1].inherited_tag_ids == []


def test_scene_tag_filter_matches_inherited_tags(library):
    filters = {"tags": Criterion(modifier="INCLUDES", value=["4"])}
    # 102 carries the tag itself, 100 and 101 through Alice
    assert ids(asyncio.run(library.query(ET.SCENE, "u", filters))) == ["101", "100", "102"]
    filters = {"tags": Criterion(modifier="EXCLUDES", value=["4"])}
    assert ids(asyncio.run(library.query(ET.SCENE, "u", filters))) == ["104"]


def test_tag_counts_stay_on_direct_tags(library):
    filters = {"scene_count": Criterion(modifier="EQUALS", value=1)}
    result = asyncio.run(library.query(ET.TAG, "u", filters))
    assert "4" in ids(result)


def test_excluded_tag_cascades_to_scenes_that_inherit_it(library):
    async def scenario():
        restrictions = {ET.TAG: Restriction(mode=RestrictionMode.EXCLUDE, ids=["4"])}
        await library.set_access(UserAccess(user_id="kid", restrictions=restrictions))
        return await library.visibility.resolve("kid")

    visibility = asyncio.run(scenario())
    assert visibility.reasons[ET.TAG][main("4")] == "restricted"
    assert visibility.reasons[ET.SCENE][main("102")] == "cascade"
    assert visibility.reasons[ET.SCENE][main("100")] == "cascade"
    assert visibility.reasons[ET.SCENE][main("101")] == "cascade"
    assert visibility.is_visible(ET.SCENE, main("104"))


def test_image_fills_missing_fields_from_its_gallery(snapshot):
    image = snapshot.get(ET.IMAGE, main("300"))
    assert image.studio_id == "10"
    # Own performers are kept as they are
    assert image.performer_ids == ["20"]


def test_image_studio_filter_uses_gallery_studio(library):
    filters = {"studios": Criterion(modifier="INCLUDES", value=["10"])}
    assert ids(asyncio.run(library.query(ET.IMAGE, "u", filters))) == ["300"]


def test_image_gallery_inheritance_rules():
    entities = [
        Gallery(id="70", instance_id=MAIN, title="First", performer_ids=["20"], tag_ids=["1"]),
        Gallery(
            id="71",
            instance_id=MAIN,
            title="Second",
            date=dt.date(2022, 3, 4),
            details="From the second album",
            studio_id="12",
            performer_ids=["21", "20"],
            tag_ids=["2"],
        ),
        Image(id="700", instance_id=MAIN, title="Bare", gallery_ids=["71", "70"]),
        Image(
            id="701",
            instance_id=MAIN,
            title="Own",
            gallery_ids=["71"],
            date=dt.date(2020, 1, 1),
            details="",
            tag_ids=["3"],
        ),
        Image(id="702", instance_id=MAIN, title="Orphan", gallery_ids=["999"]),
    ]
    snapshot = make_snapshot(catalog_entities() + entities)

    bare = snapshot.get(ET.IMAGE, main("700"))
    # Scalars come from the first gallery that has one; lists are unioned
    assert bare.date == dt.date(2022, 3, 4)
    assert bare.details == "From the second album"
    assert bare.studio_id == "12"
    assert bare.performer_ids == ["20", "21"]
    assert bare.tag_ids == ["1", "2"]

    own = snapshot.get(ET.IMAGE, main("701"))
    assert own.date == dt.date(2020, 1, 1)
    assert own.details == "From the second album"
    assert own.tag_ids == ["3"]
    assert own.performer_ids == ["21", "20"]

    orphan = snapshot.get(ET.IMAGE, main("702"))
    assert orphan.studio_id is None
    assert orphan.performer_ids == []


def test_image_details_filter_sees_gallery_details():
    entities = catalog_entities() + [
        Gallery(id="80", instance_id=MAIN, title="Trip", details="Harbour lights"),
        Image(id="800", instance_id=MAIN, title="Night", gallery_ids=["80"]),
    ]
    library = make_library(entities)
    filters = {"details": Criterion(modifier="INCLUDES", value="harbour")}
    assert ids(asyncio.run(library.query(ET.IMAGE, "u", filters))) == ["800"]
