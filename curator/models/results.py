from typing import Any

from pydantic import BaseModel, Field


class PagedResult(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    per_page: int = 0


class RecommendationResult(PagedResult):
    """
    A page of recommendations, or an explanation of why there are none.

    ``reason`` is ``no_criteria`` when the user has no favorites or ratings
    and ``no_matches`` when nothing scored above zero.
    """

    empty: bool = False
    reason: str | None = None
    message: str | None = None
    criteria_counts: dict[str, int] = Field(default_factory=dict)
