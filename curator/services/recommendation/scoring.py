import math
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from curator.core.config import settings
from curator.models.entities import CatalogEntity, EntityRef, EntityType
from curator.models.overlay import EngagementRanking, UserOverlay, WatchRecord
from curator.services.catalog.snapshot import CatalogSnapshot, related_refs
from curator.services.query.seeded import SeededRandom
from curator.services.recommendation import constants as C

ET = EntityType

PREFERENCE_TYPES = (ET.PERFORMER, ET.STUDIO, ET.TAG)


class PreferenceProfile:
    """What a user likes, reduced to per-entity weights used for scoring."""

    def __init__(self) -> None:
        self.favorites: dict[EntityType, set[EntityRef]] = {t: set() for t in PREFERENCE_TYPES}
        self.highly_rated: dict[EntityType, set[EntityRef]] = {t: set() for t in PREFERENCE_TYPES}
        self.derived: dict[EntityType, dict[EntityRef, float]] = {t: defaultdict(float) for t in PREFERENCE_TYPES}
        self.implicit: dict[EntityType, dict[EntityRef, float]] = {t: {} for t in PREFERENCE_TYPES}
        self.rated_scenes = 0

    def criteria_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entity_type in PREFERENCE_TYPES:
            counts[f"favorite_{entity_type.value}s"] = len(self.favorites[entity_type])
            counts[f"rated_{entity_type.value}s"] = len(self.highly_rated[entity_type])
        counts["rated_scenes"] = self.rated_scenes
        counts["engaged_entities"] = sum(len(w) for w in self.implicit.values())
        return counts

    @property
    def is_empty(self) -> bool:
        return not any(self.criteria_counts().values())


class RecommendationScoring:
    """
    Preference scoring, watch recency, engagement and tier shuffling.
    """

    @staticmethod
    def build_profile(
        overlay: UserOverlay,
        snapshot: CatalogSnapshot,
        rankings: dict[EntityType, list[EngagementRanking]] | None = None,
        high_rating: int | None = None,
    ) -> PreferenceProfile:
        threshold = settings.HIGH_RATING_THRESHOLD if high_rating is None else high_rating
        profile = PreferenceProfile()

        # 1. Explicit favorites and high ratings
        for entity_type in PREFERENCE_TYPES:
            for ref, record in overlay.ratings.get(entity_type, {}).items():
                if record.favorite:
                    profile.favorites[entity_type].add(ref)
                if record.rating is not None and record.rating >= threshold:
                    profile.highly_rated[entity_type].add(ref)

        # 2. Derived weights: what appears in the scenes the user rated or favorited
        for ref, record in overlay.ratings.get(ET.SCENE, {}).items():
            rating = record.rating
            if rating is None:
                if not record.favorite:
                    continue
                rating = C.FAVORITED_IMPLICIT_RATING
            if rating < C.DERIVED_RATING_FLOOR:
                continue
            scene = snapshot.get(ET.SCENE, ref)
            if scene is None:
                continue
            profile.rated_scenes += 1
            multiplier = rating / 100 * C.SCENE_WEIGHT_BASE + (C.SCENE_FAVORITE_BONUS if record.favorite else 0.0)
            for entity_type in PREFERENCE_TYPES:
                for related in related_refs(scene, entity_type):
                    profile.derived[entity_type][related] += multiplier

        # 3. Implicit weights from engagement percentiles
        for entity_type, ranked in (rankings or {}).items():
            if entity_type not in profile.implicit:
                continue
            for ranking in ranked:
                if ranking.percentile_rank >= settings.IMPLICIT_PERCENTILE_THRESHOLD:
                    profile.implicit[entity_type][ranking.ref] = ranking.percentile_rank / 100

        return profile

    @staticmethod
    def _weight_sum(refs: Iterable[EntityRef], weights: dict[EntityRef, float]) -> float:
        return sum(weights.get(ref, 0.0) for ref in refs)

    @staticmethod
    def preference_score(entity: CatalogEntity, profile: PreferenceProfile) -> float:
        """Score from explicit, derived and implicit preferences. Zero means no shared interest."""
        performers = related_refs(entity, ET.PERFORMER)
        studios = related_refs(entity, ET.STUDIO)
        tags = related_refs(entity, ET.TAG)
        score = 0.0

        favorite_performers = sum(1 for p in performers if p in profile.favorites[ET.PERFORMER])
        rated_performers = sum(1 for p in performers if p in profile.highly_rated[ET.PERFORMER])
        score += C.PERFORMER_FAVORITE_WEIGHT * math.sqrt(favorite_performers)
        score += C.PERFORMER_RATED_WEIGHT * math.sqrt(rated_performers)

        if any(s in profile.favorites[ET.STUDIO] for s in studios):
            score += C.STUDIO_FAVORITE_WEIGHT
        if any(s in profile.highly_rated[ET.STUDIO] for s in studios):
            score += C.STUDIO_RATED_WEIGHT

        favorite_tags = sum(1 for t in tags if t in profile.favorites[ET.TAG])
        rated_tags = sum(1 for t in tags if t in profile.highly_rated[ET.TAG])
        score += C.TAG_FAVORITE_WEIGHT * math.sqrt(favorite_tags)
        score += C.TAG_RATED_WEIGHT * math.sqrt(rated_tags)

        weight_sum = RecommendationScoring._weight_sum
        score += C.DERIVED_PERFORMER_WEIGHT * math.sqrt(weight_sum(performers, profile.derived[ET.PERFORMER]))
        score += C.DERIVED_STUDIO_WEIGHT * math.sqrt(weight_sum(studios, profile.derived[ET.STUDIO]))
        score += C.DERIVED_TAG_WEIGHT * math.sqrt(weight_sum(tags, profile.derived[ET.TAG]))

        score += C.IMPLICIT_PERFORMER_WEIGHT * math.sqrt(weight_sum(performers, profile.implicit[ET.PERFORMER]))
        score += C.IMPLICIT_STUDIO_WEIGHT * math.sqrt(weight_sum(studios, profile.implicit[ET.STUDIO]))
        score += C.IMPLICIT_TAG_WEIGHT * math.sqrt(weight_sum(tags, profile.implicit[ET.TAG]))
        return score

    @staticmethod
    def watch_modifier(watch: WatchRecord | None, now: datetime | None = None) -> float:
        """Favor never or long-ago watched items, push back recently watched ones."""
        if watch is None or (watch.play_count == 0 and not watch.play_history):
            return C.UNWATCHED_BONUS
        last_played = watch.last_played_at
        if last_played is None:
            return C.STALE_WATCH_BONUS
        if last_played.tzinfo is None:
            last_played = last_played.replace(tzinfo=timezone.utc)
        age_days = ((now or datetime.now(timezone.utc)) - last_played).total_seconds() / 86400
        if age_days > C.STALE_WATCH_DAYS:
            return C.STALE_WATCH_BONUS
        if age_days >= 1:
            return C.RECENT_WATCH_PENALTY
        return C.FRESH_WATCH_PENALTY

    @staticmethod
    def engagement_multiplier(watch: WatchRecord | None) -> float:
        o_count = watch.o_count if watch else 0
        return 1 + min(o_count, C.ENGAGEMENT_O_CAP) * C.ENGAGEMENT_O_FACTOR

    @staticmethod
    def score(
        entity: CatalogEntity, profile: PreferenceProfile, watch: WatchRecord | None, now: datetime | None = None
    ) -> float:
        preference = RecommendationScoring.preference_score(entity, profile)
        if preference <= 0:
            return 0.0
        modified = preference + RecommendationScoring.watch_modifier(watch, now)
        return modified * RecommendationScoring.engagement_multiplier(watch)

    @staticmethod
    def tier_shuffle(scored: list[tuple[float, Any]], seed: int, tiers: int | None = None) -> list[Any]:
        """
        Split score-sorted items into equal-width score bands and shuffle each band.

        Args:
            scored: (score, item) pairs, already sorted by score descending.
            seed: Per-user seed; each band uses its own generator derived from it.
            tiers: Number of bands between the highest and lowest score.

        Returns:
            Items with band order preserved and order inside each band shuffled.
        """
        if not scored:
            return []
        tiers = tiers or settings.RECOMMENDATION_TIERS
        top, bottom = scored[0][0], scored[-1][0]
        tier_size = (top - bottom) / tiers
        bands: list[list[Any]] = [[] for _ in range(tiers)]
        for score, item in scored:
            index = 0 if tier_size == 0 else min(int((top - score) / tier_size), tiers - 1)
            bands[index].append(item)

        ordered: list[Any] = []
        for index, band in enumerate(bands):
            ordered.extend(SeededRandom(seed + index).shuffle(band))
        return ordered
