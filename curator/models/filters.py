from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class Modifier(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    BETWEEN = "BETWEEN"
    NOT_BETWEEN = "NOT_BETWEEN"
    INCLUDES = "INCLUDES"
    INCLUDES_ALL = "INCLUDES_ALL"
    EXCLUDES = "EXCLUDES"
    IS_NULL = "IS_NULL"
    NOT_NULL = "NOT_NULL"


class Criterion(BaseModel):
    """
    One typed filter clause.

    ``value2`` is the upper bound of a range; ``depth`` applies only to
    hierarchical set fields (0 exact, N levels of descendants, -1 all).
    """

    modifier: Modifier = Modifier.EQUALS
    value: Any = None
    value2: Any = None
    depth: int | None = None

    @field_validator("modifier", mode="before")
    @classmethod
    def _upper_modifier(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


FilterSet = dict[str, Criterion]


class QueryRequest(BaseModel):
    """Parameters of a paged entity query."""

    filters: FilterSet = Field(default_factory=dict)
    sort: str | None = None
    direction: Literal["ASC", "DESC"] = "ASC"
    page: int = 1
    per_page: int | None = None
    q: str | None = None

    @field_validator("direction", mode="before")
    @classmethod
    def _upper_direction(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class LookupRequest(BaseModel):
    ids: list[str]
    instance_id: str | None = None
