from fastapi import Header, Request

from curator.core.errors import InputError
from curator.services.library import LibraryService


def get_library(request: Request) -> LibraryService:
    return request.app.state.library


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, as established by whatever sits in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise InputError("X-User-Id header is required", field="X-User-Id")
    return x_user_id.strip()
