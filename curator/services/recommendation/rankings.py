import time

from loguru import logger

from curator.core.security import redact_user
from curator.models.entities import EntityRef, EntityType
from curator.models.overlay import EngagementRanking, WatchRecord
from curator.services.catalog.repository import CatalogRepository
from curator.services.catalog.snapshot import CatalogSnapshot, related_refs
from curator.services.overlay.store import OverlayStore
from curator.services.recommendation import constants as C
from curator.services.visibility.resolver import VisibilityResolver

ET = EntityType

RANKED_TYPES = (ET.SCENE, ET.PERFORMER, ET.STUDIO, ET.TAG)


class _Totals:
    __slots__ = ("play_count", "o_count", "play_duration")

    def __init__(self) -> None:
        self.play_count = 0
        self.o_count = 0
        self.play_duration = 0.0

    def add(self, watch: WatchRecord) -> None:
        self.play_count += watch.play_count
        self.o_count += watch.o_count
        self.play_duration += watch.play_duration


def assign_percentiles(rankings: list[EngagementRanking]) -> list[EngagementRanking]:
    """Sort by engagement rate and set percentile ranks; near-equal rates share a rank."""
    ordered = sorted(rankings, key=lambda r: (-r.engagement_rate, r.ref))
    n = len(ordered)
    result: list[EngagementRanking] = []
    previous: EngagementRanking | None = None
    for i, ranking in enumerate(ordered):
        if previous is not None and abs(previous.engagement_rate - ranking.engagement_rate) < C.PERCENTILE_TIE_EPSILON:
            percentile = previous.percentile_rank
        else:
            percentile = round(100 * (n - i - 1) / max(n - 1, 1))
        previous = ranking.model_copy(update={"percentile_rank": percentile})
        result.append(previous)
    return result


class EngagementRanker:
    """
    Rebuilds a user's engagement rankings from their watch history.

    Each engaged scene, and every performer, studio and tag appearing in one,
    gets a score of ``o*5 + duration/avg_scene_duration + plays`` normalised
    by how many scenes it appears in, then a percentile rank within its type.
    """

    def __init__(self, catalog: CatalogRepository, store: OverlayStore, visibility: VisibilityResolver):
        self.catalog = catalog
        self.store = store
        self.visibility = visibility

    async def recompute(self, user_id: str) -> dict[EntityType, list[EngagementRanking]]:
        start = time.perf_counter()
        snapshot = await self.catalog.snapshot()
        visibility = await self.visibility.resolve(user_id, snapshot)
        watches = await self.store.get_watches(user_id, ET.SCENE)

        totals: dict[EntityType, dict[EntityRef, _Totals]] = {t: {} for t in RANKED_TYPES}
        for ref, watch in watches.items():
            if watch.play_count <= 0 and watch.o_count <= 0:
                continue
            scene = snapshot.get(ET.SCENE, ref)
            if scene is None or not visibility.is_visible(ET.SCENE, ref):
                continue
            totals[ET.SCENE].setdefault(ref, _Totals()).add(watch)
            for entity_type in (ET.PERFORMER, ET.STUDIO, ET.TAG):
                for related in related_refs(scene, entity_type):
                    if visibility.is_visible(entity_type, related):
                        totals[entity_type].setdefault(related, _Totals()).add(watch)

        average = snapshot.average_scene_duration(C.DEFAULT_SCENE_DURATION)
        result: dict[EntityType, list[EngagementRanking]] = {}
        for entity_type in RANKED_TYPES:
            rankings = [
                self._ranking(user_id, entity_type, ref, t, snapshot, average)
                for ref, t in totals[entity_type].items()
            ]
            result[entity_type] = assign_percentiles(rankings)
            await self.store.save_rankings(user_id, entity_type, result[entity_type])

        logger.info(
            f"Recomputed engagement rankings for {redact_user(user_id)}: "
            + ", ".join(f"{t.value}={len(r)}" for t, r in result.items())
            + f" in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return result

    @staticmethod
    def _ranking(
        user_id: str,
        entity_type: EntityType,
        ref: EntityRef,
        totals: _Totals,
        snapshot: CatalogSnapshot,
        average_duration: float,
    ) -> EngagementRanking:
        if entity_type == ET.SCENE:
            presence = 1
        else:
            presence = len(snapshot.referrers(ET.SCENE, entity_type, ref))
        score = totals.o_count * C.ENGAGEMENT_O_POINTS + totals.play_duration / average_duration + totals.play_count
        return EngagementRanking(
            user_id=user_id,
            entity_type=entity_type,
            ref=ref,
            play_count=totals.play_count,
            o_count=totals.o_count,
            play_duration=totals.play_duration,
            library_presence=presence,
            engagement_score=score,
            engagement_rate=score / max(presence, 1),
        )
