"""
Metadata a record picks up from the records it belongs to.

Both passes run once while a snapshot is built and produce new frozen
records; upstream data is never written back.

- Scenes inherit the tags of their performers, their studio and their
  collections, kept apart from the scene's own tags in ``inherited_tag_ids``.
- Images with no studio, date, details, performers or tags take them from
  their galleries. Scalar fields come from the first gallery (by id) that
  has a value; performers and tags are the union over all galleries.
"""

from typing import Any

from loguru import logger

from curator.models.entities import CatalogEntity, EntityRef, EntityType, Gallery, Image, Scene

ET = EntityType

Records = dict[EntityType, dict[EntityRef, CatalogEntity]]

IMAGE_SCALAR_FIELDS = ("studio_id", "date", "details")


def _merge_ids(*groups: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for group in groups:
        for entity_id in group:
            seen.setdefault(entity_id, None)
    return list(seen)


def inherit_scene_tags(records: Records) -> int:
    """Fill ``inherited_tag_ids`` on every scene. Returns how many scenes gained tags."""
    changed = 0
    for ref, scene in list(records[ET.SCENE].items()):
        if not isinstance(scene, Scene):
            continue
        sources: list[CatalogEntity | None] = [records[ET.PERFORMER].get(r) for r in scene.related(scene.performer_ids)]
        if scene.studio_id:
            sources.append(records[ET.STUDIO].get(EntityRef(scene.studio_id, scene.instance_id)))
        sources.extend(records[ET.COLLECTION].get(r) for r in scene.related(scene.group_ids))

        direct = set(scene.tag_ids)
        inherited = [t for t in _merge_ids(*(s.tag_ids for s in sources if s is not None)) if t not in direct]
        if inherited != scene.inherited_tag_ids:
            records[ET.SCENE][ref] = scene.model_copy(update={"inherited_tag_ids": inherited})
            changed += 1
    return changed


def inherit_gallery_metadata(records: Records) -> int:
    """Fill empty image fields from the image's galleries. Returns how many images changed."""
    changed = 0
    for ref, image in list(records[ET.IMAGE].items()):
        if not isinstance(image, Image) or not image.gallery_ids:
            continue
        galleries: list[Gallery] = []
        for gallery_ref in sorted(image.related(image.gallery_ids)):
            gallery = records[ET.GALLERY].get(gallery_ref)
            if isinstance(gallery, Gallery):
                galleries.append(gallery)
        if not galleries:
            continue

        updates: dict[str, Any] = {}
        for field in IMAGE_SCALAR_FIELDS:
            if getattr(image, field) in (None, ""):
                value = next((getattr(g, field) for g in galleries if getattr(g, field) not in (None, "")), None)
                if value is not None:
                    updates[field] = value
        if not image.performer_ids:
            performers = _merge_ids(*(g.performer_ids for g in galleries))
            if performers:
                updates["performer_ids"] = performers
        if not image.tag_ids:
            tags = _merge_ids(*(g.tag_ids for g in galleries))
            if tags:
                updates["tag_ids"] = tags

        if updates:
            records[ET.IMAGE][ref] = image.model_copy(update=updates)
            changed += 1
    return changed


def apply_inheritance(records: Records) -> None:
    images = inherit_gallery_metadata(records)
    scenes = inherit_scene_tags(records)
    logger.debug(f"Inheritance applied: {images} images filled from galleries, {scenes} scenes with inherited tags")
