from typing import Final

# Explicit preference weights (performer and tag weights scale with sqrt of matches)
PERFORMER_FAVORITE_WEIGHT: Final[float] = 5.0
PERFORMER_RATED_WEIGHT: Final[float] = 3.0
STUDIO_FAVORITE_WEIGHT: Final[float] = 3.0
STUDIO_RATED_WEIGHT: Final[float] = 2.0
TAG_FAVORITE_WEIGHT: Final[float] = 1.0
TAG_RATED_WEIGHT: Final[float] = 0.5

# Derived weights from the user's rated and favorited scenes
SCENE_WEIGHT_BASE: Final[float] = 0.4
SCENE_FAVORITE_BONUS: Final[float] = 0.15
DERIVED_RATING_FLOOR: Final[int] = 40  # Ratings below this teach nothing
FAVORITED_IMPLICIT_RATING: Final[int] = 85  # Favorite without an explicit rating
DERIVED_PERFORMER_WEIGHT: Final[float] = 5.0
DERIVED_STUDIO_WEIGHT: Final[float] = 3.0
DERIVED_TAG_WEIGHT: Final[float] = 1.0

# Implicit weights from engagement percentiles
IMPLICIT_PERFORMER_WEIGHT: Final[float] = 2.0
IMPLICIT_STUDIO_WEIGHT: Final[float] = 1.5
IMPLICIT_TAG_WEIGHT: Final[float] = 0.5

# Watch recency modifier
UNWATCHED_BONUS: Final[float] = 30.0
STALE_WATCH_BONUS: Final[float] = 20.0  # Last played more than STALE_WATCH_DAYS ago
RECENT_WATCH_PENALTY: Final[float] = -10.0  # Between one day and STALE_WATCH_DAYS
FRESH_WATCH_PENALTY: Final[float] = -30.0  # Within the last day
STALE_WATCH_DAYS: Final[int] = 14

# Engagement multiplier
ENGAGEMENT_O_CAP: Final[int] = 10
ENGAGEMENT_O_FACTOR: Final[float] = 0.03

# Engagement ranking
ENGAGEMENT_O_POINTS: Final[float] = 5.0
DEFAULT_SCENE_DURATION: Final[float] = 1200.0
PERCENTILE_TIE_EPSILON: Final[float] = 1e-4

# Similarity points per shared entity
SIMILAR_PERFORMER_POINTS: Final[int] = 3
SIMILAR_STUDIO_POINTS: Final[int] = 2
SIMILAR_TAG_POINTS: Final[int] = 1
