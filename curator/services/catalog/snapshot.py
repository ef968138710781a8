from collections.abc import Iterable
from types import MappingProxyType

from loguru import logger

from curator.core.config import CatalogInstanceConfig
from curator.models.entities import (
    CatalogEntity,
    Collection,
    EntityRef,
    EntityType,
    Gallery,
    Scene,
    Studio,
    Tag,
)
from curator.services.catalog.inheritance import apply_inheritance
from curator.services.query.hierarchy import HierarchyGraph

ET = EntityType

# Relation edges followed when building reverse indexes: (source type, target type)
RELATIONS: tuple[tuple[EntityType, EntityType], ...] = (
    (ET.SCENE, ET.PERFORMER),
    (ET.SCENE, ET.STUDIO),
    (ET.SCENE, ET.COLLECTION),
    (ET.SCENE, ET.GALLERY),
    (ET.GALLERY, ET.PERFORMER),
    (ET.GALLERY, ET.STUDIO),
    (ET.GALLERY, ET.SCENE),
    (ET.IMAGE, ET.PERFORMER),
    (ET.IMAGE, ET.STUDIO),
    (ET.IMAGE, ET.GALLERY),
    (ET.COLLECTION, ET.STUDIO),
)


def related_refs(entity: CatalogEntity, target: EntityType) -> list[EntityRef]:
    """Forward relation lookup; every entity type can point at tags."""
    if target == ET.TAG:
        return entity.related(entity.tag_ids)
    if target == ET.STUDIO:
        studio_id = getattr(entity, "studio_id", None)
        return entity.related([studio_id]) if studio_id else []
    if target == ET.PERFORMER:
        return entity.related(getattr(entity, "performer_ids", []))
    if target == ET.COLLECTION and isinstance(entity, Scene):
        return entity.related(entity.group_ids)
    if target == ET.GALLERY:
        return entity.related(getattr(entity, "gallery_ids", []))
    if target == ET.SCENE and isinstance(entity, Gallery):
        return entity.related(entity.scene_ids)
    return []


def effective_tag_refs(entity: CatalogEntity) -> list[EntityRef]:
    """Own tags plus, for scenes, the tags inherited from performers, studio and collections."""
    if isinstance(entity, Scene):
        return entity.related(entity.tag_ids + entity.inherited_tag_ids)
    return entity.related(entity.tag_ids)


class CatalogSnapshot:
    """
    Frozen view of the whole catalog at one version.

    Holds every entity per type (with inherited metadata applied), bare-id
    indexes, reverse relation indexes and the tag/studio/collection
    hierarchies. Never mutated after build.
    """

    def __init__(
        self,
        version: int,
        entities: dict[EntityType, list[CatalogEntity]],
        instances: list[CatalogInstanceConfig] | None = None,
    ):
        self.version = version
        # Lowest priority number is the primary source
        self.instances = sorted(instances or [], key=lambda c: c.priority)
        self.default_instance_id = self.instances[0].id if self.instances else None
        self.instance_labels = MappingProxyType({c.id: c.label for c in self.instances})

        self._records: dict[EntityType, dict[EntityRef, CatalogEntity]] = {
            t: {e.ref: e for e in entities.get(t, [])} for t in ET
        }
        apply_inheritance(self._records)

        self._by_id: dict[EntityType, dict[str, list[EntityRef]]] = {}
        for entity_type in ET:
            by_id: dict[str, list[EntityRef]] = {}
            for ref in self._records[entity_type]:
                by_id.setdefault(ref.id, []).append(ref)
            self._by_id[entity_type] = by_id

        self._reverse: dict[tuple[EntityType, EntityType], dict[EntityRef, list[EntityRef]]] = {}
        for source_type in ET:
            for entity in self._records[source_type].values():
                for target_ref in related_refs(entity, ET.TAG):
                    self._reverse.setdefault((source_type, ET.TAG), {}).setdefault(target_ref, []).append(entity.ref)
        for source_type, target_type in RELATIONS:
            index = self._reverse.setdefault((source_type, target_type), {})
            for entity in self._records[source_type].values():
                for target_ref in related_refs(entity, target_type):
                    index.setdefault(target_ref, []).append(entity.ref)
        self._inherited_tag_scenes: dict[EntityRef, list[EntityRef]] = {}
        for scene in self._records[ET.SCENE].values():
            if isinstance(scene, Scene):
                for tag_ref in scene.related(scene.inherited_tag_ids):
                    self._inherited_tag_scenes.setdefault(tag_ref, []).append(scene.ref)

        tags = [t for t in self._records[ET.TAG].values() if isinstance(t, Tag)]
        studios = [s for s in self._records[ET.STUDIO].values() if isinstance(s, Studio)]
        collections = [c for c in self._records[ET.COLLECTION].values() if isinstance(c, Collection)]
        self.graphs: dict[EntityType, HierarchyGraph] = {
            ET.TAG: HierarchyGraph.from_parents((t.ref, t.related(t.parent_ids)) for t in tags),
            ET.STUDIO: HierarchyGraph.from_parents(
                (s.ref, s.related([s.parent_id] if s.parent_id else [])) for s in studios
            ),
            ET.COLLECTION: HierarchyGraph.from_parents((c.ref, c.related(c.parent_ids)) for c in collections),
        }
        logger.debug(
            f"Built catalog snapshot v{version}: " + ", ".join(f"{t.value}={len(self._records[t])}" for t in ET)
        )

    def entities(self, entity_type: EntityType) -> Iterable[CatalogEntity]:
        return self._records[entity_type].values()

    def refs(self, entity_type: EntityType) -> Iterable[EntityRef]:
        return self._records[entity_type].keys()

    def get(self, entity_type: EntityType, ref: EntityRef) -> CatalogEntity | None:
        return self._records[entity_type].get(ref)

    def resolve(self, entity_type: EntityType, entity_id: str, instance_id: str | None = None) -> list[EntityRef]:
        """Refs for an id, in every source unless ``instance_id`` pins one."""
        if instance_id is not None:
            ref = EntityRef(str(entity_id), instance_id)
            return [ref] if ref in self._records[entity_type] else []
        return list(self._by_id[entity_type].get(str(entity_id), []))

    def referrers(self, source_type: EntityType, target_type: EntityType, ref: EntityRef) -> list[EntityRef]:
        """Entities of ``source_type`` that point at ``ref``."""
        return self._reverse.get((source_type, target_type), {}).get(ref, [])

    def inheriting_scenes(self, tag_ref: EntityRef) -> list[EntityRef]:
        """Scenes that carry ``tag_ref`` only through a performer, their studio or a collection."""
        return self._inherited_tag_scenes.get(tag_ref, [])

    def graph(self, entity_type: EntityType) -> HierarchyGraph | None:
        return self.graphs.get(entity_type)

    def average_scene_duration(self, default: float = 1200.0) -> float:
        durations = [s.duration for s in self._records[ET.SCENE].values() if isinstance(s, Scene) and s.duration]
        return sum(durations) / len(durations) if durations else default
