"""
Error taxonomy shared by the query, visibility and recommendation services.

Filtering and scoring never raise for missing optional data; these are only
raised for contract violations and upstream failures.
"""

from typing import Any


class CuratorError(Exception):
    """Base class for all errors raised by the engine."""

    code: str = "error"
    retriable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InputError(CuratorError):
    """Malformed request parameters (unknown field, bad page, unknown entity type)."""

    code = "invalid_input"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFoundError(CuratorError):
    code = "not_found"


class AmbiguousLookupError(CuratorError):
    """A single-ID lookup matched entities from more than one source."""

    code = "ambiguous_lookup"

    def __init__(self, entity_type: str, entity_id: str, matches: list[Any]):
        instances = ", ".join(m.instance_id for m in matches)
        super().__init__(f"{entity_type} {entity_id} exists in multiple sources ({instances}); pass a source hint")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.matches = matches

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["matches"] = [{"id": m.id, "instance_id": m.instance_id} for m in self.matches]
        return data


class UpstreamUnavailable(CuratorError):
    """The catalog provider or overlay store failed. Safe to retry."""

    code = "upstream_unavailable"
    retriable = True

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
