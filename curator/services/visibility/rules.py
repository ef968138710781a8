from loguru import logger

from curator.models.entities import EntityRef, EntityType, parse_ref_token
from curator.models.overlay import RestrictionMode, UserAccess
from curator.services.catalog.snapshot import CatalogSnapshot, related_refs

ET = EntityType

# Exclusion reasons, strongest first
HIDDEN = "hidden"
INSTANCE = "instance"
RESTRICTED = "restricted"
CASCADE = "cascade"
EMPTY = "empty"

# Types whose exclusion removes the entities that reference them
CASCADE_TARGETS: dict[EntityType, tuple[EntityType, ...]] = {
    ET.PERFORMER: (ET.SCENE, ET.IMAGE, ET.GALLERY),
    ET.STUDIO: (ET.SCENE, ET.IMAGE, ET.GALLERY),
    ET.TAG: (ET.SCENE, ET.IMAGE, ET.GALLERY, ET.PERFORMER, ET.STUDIO, ET.COLLECTION),
    ET.COLLECTION: (ET.SCENE,),
    ET.GALLERY: (ET.IMAGE,),
}

# Content checked by restrict_empty for each restricted type
CONTENT_TYPES = (ET.SCENE, ET.IMAGE, ET.GALLERY)

Exclusions = dict[EntityType, dict[EntityRef, str]]


def new_exclusions() -> Exclusions:
    return {t: {} for t in ET}


def _mark(exclusions: Exclusions, entity_type: EntityType, ref: EntityRef, reason: str) -> None:
    # First reason recorded wins
    exclusions[entity_type].setdefault(ref, reason)


def _resolve_tokens(snapshot: CatalogSnapshot, entity_type: EntityType, tokens: list[str]) -> set[EntityRef]:
    refs: set[EntityRef] = set()
    for token in tokens:
        entity_id, instance_id = parse_ref_token(token)
        refs.update(snapshot.resolve(entity_type, entity_id, instance_id))
    return refs


def apply_hidden(snapshot: CatalogSnapshot, access: UserAccess, exclusions: Exclusions) -> None:
    """Step 1: catalog-hidden entities, the user's own hidden list and disallowed sources."""
    allowed_instances = set(access.allowed_instance_ids) if access.allowed_instance_ids is not None else None
    for entity_type in ET:
        for entity in snapshot.entities(entity_type):
            if entity.hidden:
                _mark(exclusions, entity_type, entity.ref, HIDDEN)
            elif allowed_instances is not None and entity.instance_id not in allowed_instances:
                _mark(exclusions, entity_type, entity.ref, INSTANCE)
    for entity_type, refs in access.hidden.items():
        for ref in refs:
            ref = EntityRef(*ref)
            if snapshot.get(entity_type, ref) is not None:
                _mark(exclusions, entity_type, ref, HIDDEN)


def apply_restrictions(snapshot: CatalogSnapshot, access: UserAccess, exclusions: Exclusions) -> None:
    """Step 2: INCLUDE/EXCLUDE lists and restrict_empty. Elevated users skip this step."""
    if access.is_elevated:
        return
    for entity_type, restriction in access.restrictions.items():
        listed = _resolve_tokens(snapshot, entity_type, restriction.ids)
        if restriction.mode == RestrictionMode.EXCLUDE:
            for ref in listed:
                _mark(exclusions, entity_type, ref, RESTRICTED)
        elif restriction.mode == RestrictionMode.INCLUDE:
            for ref in snapshot.refs(entity_type):
                if ref not in listed:
                    _mark(exclusions, entity_type, ref, RESTRICTED)

        if restriction.restrict_empty and entity_type not in CONTENT_TYPES:
            for content_type in CONTENT_TYPES:
                for entity in snapshot.entities(content_type):
                    if not related_refs(entity, entity_type):
                        _mark(exclusions, content_type, entity.ref, RESTRICTED)
        if restriction.ids and not listed:
            logger.warning(f"Restriction on {entity_type.value} references no known entities")


def apply_cascade(snapshot: CatalogSnapshot, exclusions: Exclusions) -> None:
    """Exclude content referencing a directly excluded entity (one level, from direct exclusions only)."""
    direct = {t: list(refs) for t, refs in exclusions.items()}
    for source_type, targets in CASCADE_TARGETS.items():
        for ref in direct[source_type]:
            for target_type in targets:
                for referrer in snapshot.referrers(target_type, source_type, ref):
                    _mark(exclusions, target_type, referrer, CASCADE)
            if source_type == ET.TAG:
                for scene_ref in snapshot.inheriting_scenes(ref):
                    _mark(exclusions, ET.SCENE, scene_ref, CASCADE)
