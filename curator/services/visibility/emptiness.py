"""
Cascading emptiness.

An organising entity is hidden when nothing visible references it. The
check runs bottom-up against what the user can already see, never against
raw catalog counts:

- scenes and images are content and are never empty;
- a gallery needs a visible image;
- a collection needs a visible scene or a non-empty sub-collection;
- a performer needs a visible scene or image, or a non-empty gallery;
- a studio needs a visible scene or image, a non-empty gallery or
  collection, or a non-empty child studio;
- a tag needs any visible scene or image, or any non-empty gallery,
  collection, performer or studio carrying it, or a non-empty child tag.
"""

from collections.abc import Iterable

from curator.models.entities import CatalogEntity, EntityRef, EntityType
from curator.services.catalog.snapshot import CatalogSnapshot, related_refs
from curator.services.visibility.rules import EMPTY, Exclusions

ET = EntityType


def _visible(snapshot: CatalogSnapshot, exclusions: Exclusions, entity_type: EntityType) -> set[EntityRef]:
    excluded = exclusions[entity_type]
    return {ref for ref in snapshot.refs(entity_type) if ref not in excluded}


def _referenced(
    snapshot: CatalogSnapshot, sources: Iterable[EntityRef], source_type: EntityType, target: EntityType
) -> set[EntityRef]:
    found: set[EntityRef] = set()
    for ref in sources:
        entity: CatalogEntity | None = snapshot.get(source_type, ref)
        if entity is not None:
            found.update(related_refs(entity, target))
    return found


def _with_ancestors(
    snapshot: CatalogSnapshot, entity_type: EntityType, direct: set[EntityRef], visible: set[EntityRef]
) -> set[EntityRef]:
    graph = snapshot.graph(entity_type)
    if graph is None:
        return direct
    return direct | graph.ancestors(direct, within=visible)


def non_empty(snapshot: CatalogSnapshot, exclusions: Exclusions) -> dict[EntityType, set[EntityRef]]:
    """Visible entities per organising type that still have visible content."""
    visible = {t: _visible(snapshot, exclusions, t) for t in ET}
    scenes, images = visible[ET.SCENE], visible[ET.IMAGE]

    galleries = _referenced(snapshot, images, ET.IMAGE, ET.GALLERY) & visible[ET.GALLERY]

    collections = _referenced(snapshot, scenes, ET.SCENE, ET.COLLECTION) & visible[ET.COLLECTION]
    collections = _with_ancestors(snapshot, ET.COLLECTION, collections, visible[ET.COLLECTION])

    performers = (
        _referenced(snapshot, scenes, ET.SCENE, ET.PERFORMER)
        | _referenced(snapshot, images, ET.IMAGE, ET.PERFORMER)
        | _referenced(snapshot, galleries, ET.GALLERY, ET.PERFORMER)
    ) & visible[ET.PERFORMER]

    studios = (
        _referenced(snapshot, scenes, ET.SCENE, ET.STUDIO)
        | _referenced(snapshot, images, ET.IMAGE, ET.STUDIO)
        | _referenced(snapshot, galleries, ET.GALLERY, ET.STUDIO)
        | _referenced(snapshot, collections, ET.COLLECTION, ET.STUDIO)
    ) & visible[ET.STUDIO]
    studios = _with_ancestors(snapshot, ET.STUDIO, studios, visible[ET.STUDIO])

    tags = (
        _referenced(snapshot, scenes, ET.SCENE, ET.TAG)
        | _referenced(snapshot, images, ET.IMAGE, ET.TAG)
        | _referenced(snapshot, galleries, ET.GALLERY, ET.TAG)
        | _referenced(snapshot, collections, ET.COLLECTION, ET.TAG)
        | _referenced(snapshot, performers, ET.PERFORMER, ET.TAG)
        | _referenced(snapshot, studios, ET.STUDIO, ET.TAG)
    ) & visible[ET.TAG]
    tags = _with_ancestors(snapshot, ET.TAG, tags, visible[ET.TAG])

    return {
        ET.GALLERY: galleries,
        ET.COLLECTION: collections,
        ET.PERFORMER: performers,
        ET.STUDIO: studios,
        ET.TAG: tags,
    }


def apply_emptiness(snapshot: CatalogSnapshot, exclusions: Exclusions) -> int:
    """Step 3: mark visible-but-empty organising entities. Returns how many were added."""
    keep = non_empty(snapshot, exclusions)
    added = 0
    for entity_type, non_empty_refs in keep.items():
        excluded = exclusions[entity_type]
        for ref in snapshot.refs(entity_type):
            if ref not in excluded and ref not in non_empty_refs:
                excluded[ref] = EMPTY
                added += 1
    return added
