import datetime as dt

import pytest

from curator.core.config import CatalogInstanceConfig
from curator.models.entities import (
    CatalogEntity,
    Collection,
    EntityType,
    Gallery,
    Image,
    Performer,
    Scene,
    Studio,
    Tag,
)
from curator.services.catalog.provider import InMemoryCatalogProvider
from curator.services.catalog.snapshot import CatalogSnapshot
from curator.services.library import LibraryService
from curator.services.overlay.store import InMemoryOverlayStore

MAIN = "main"
BACKUP = "backup"

INSTANCES = [
    CatalogInstanceConfig(id=MAIN, label="Main", priority=0),
    CatalogInstanceConfig(id=BACKUP, label="Backup", priority=1),
]


def catalog_entities() -> list[CatalogEntity]:
    """
    A small library on the main source.

    Tags: Outdoor > Beach > Sunset, plus Studio Shoot and an unused tag.
    Studios: Network > Sub Studio, plus an unused studio.
    Performers: Alice, Bob and Carol (Carol appears in nothing).
    Collections: Series One > Part Two.
    Scene 103 is hidden upstream; scene 104 has no title.
    """
    m = MAIN
    return [
        Tag(id="1", instance_id=m, name="Outdoor"),
        Tag(id="2", instance_id=m, name="Beach", parent_ids=["1"]),
        Tag(id="3", instance_id=m, name="Sunset", parent_ids=["2"]),
        Tag(id="4", instance_id=m, name="Studio Shoot"),
        Tag(id="5", instance_id=m, name="Unused"),
        Studio(id="10", instance_id=m, name="Network"),
        Studio(id="11", instance_id=m, name="Sub Studio", parent_id="10"),
        Studio(id="12", instance_id=m, name="Lonely Studio"),
        Performer(id="20", instance_id=m, name="Alice", tag_ids=["4"], gender="FEMALE"),
        Performer(id="21", instance_id=m, name="Bob", gender="MALE"),
        Performer(id="22", instance_id=m, name="Carol", gender="FEMALE"),
        Collection(id="30", instance_id=m, name="Series One", studio_id="10"),
        Collection(id="31", instance_id=m, name="Part Two", parent_ids=["30"]),
        Scene(
            id="100",
            instance_id=m,
            title="Morning Walk",
            tag_ids=["3"],
            performer_ids=["20"],
            studio_id="11",
            group_ids=["31"],
            date=dt.date(2023, 1, 10),
            duration=600,
            width=1920,
            height=1080,
        ),
        Scene(
            id="101",
            instance_id=m,
            title="Beach Day",
            tag_ids=["2"],
            performer_ids=["20", "21"],
            studio_id="10",
            date=dt.date(2023, 5, 1),
            duration=1800,
            width=1280,
            height=720,
        ),
        Scene(
            id="102",
            instance_id=m,
            title="Studio Session",
            tag_ids=["4"],
            performer_ids=["21"],
            studio_id="10",
            date=dt.date(2022, 12, 31),
            width=3840,
            height=2160,
        ),
        Scene(id="103", instance_id=m, title="Hidden Gem", hidden=True, performer_ids=["21"], studio_id="10"),
        Scene(id="104", instance_id=m, path="/media/clips/untitled_clip.mp4"),
        Gallery(id="200", instance_id=m, title="Album", performer_ids=["20"], studio_id="10"),
        Image(id="300", instance_id=m, title="Shot", gallery_ids=["200"], performer_ids=["20"], width=1080, height=1920),
    ]


def backup_entities() -> list[CatalogEntity]:
    """A second source that reuses performer id 20 and the name Alice."""
    return [
        Performer(id="20", instance_id=BACKUP, name="Alice"),
        Scene(id="500", instance_id=BACKUP, title="Remote Scene", performer_ids=["20"]),
    ]


def make_library(entities: list[CatalogEntity] | None = None) -> LibraryService:
    provider = InMemoryCatalogProvider(catalog_entities() if entities is None else entities, INSTANCES)
    return LibraryService(provider, InMemoryOverlayStore(), poll_seconds=3600)


def make_snapshot(entities: list[CatalogEntity] | None = None, version: int = 1) -> CatalogSnapshot:
    grouped: dict[EntityType, list[CatalogEntity]] = {}
    for entity in catalog_entities() if entities is None else entities:
        grouped.setdefault(entity.entity_type, []).append(entity)
    return CatalogSnapshot(version, grouped, INSTANCES)


@pytest.fixture
def library() -> LibraryService:
    return make_library()


@pytest.fixture
def multi_library() -> LibraryService:
    return make_library(catalog_entities() + backup_entities())


@pytest.fixture
def snapshot() -> CatalogSnapshot:
    return make_snapshot()
