from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from curator.api.deps import get_library, get_user_id
from curator.models.entities import EntityType
from curator.models.filters import LookupRequest, QueryRequest
from curator.models.overlay import RatingRecord
from curator.models.results import PagedResult
from curator.services.library import LibraryService

router = APIRouter(prefix="/library", tags=["library"])


class RatingUpdate(BaseModel):
    rating: int | None = Field(default=None, ge=0, le=100)
    favorite: bool | None = None
    instance_id: str | None = None


@router.post("/{entity_type}/query", response_model=PagedResult)
async def query_entities(
    entity_type: str,
    request: QueryRequest,
    user_id: str = Depends(get_user_id),
    library: LibraryService = Depends(get_library),
):
    return await library.query(
        EntityType.parse(entity_type),
        user_id,
        request.filters,
        sort=request.sort,
        direction=request.direction,
        page=request.page,
        per_page=request.per_page,
        search_text=request.q,
    )


@router.post("/{entity_type}/lookup")
async def lookup_entities(
    entity_type: str,
    request: LookupRequest,
    user_id: str = Depends(get_user_id),
    library: LibraryService = Depends(get_library),
) -> dict[str, Any]:
    items = await library.get_by_ids(EntityType.parse(entity_type), user_id, request.ids, request.instance_id)
    return {"items": items}


@router.get("/{entity_type}/{entity_id}")
async def get_entity(
    entity_type: str,
    entity_id: str,
    instance_id: str | None = None,
    user_id: str = Depends(get_user_id),
    library: LibraryService = Depends(get_library),
) -> dict[str, Any]:
    return await library.get(EntityType.parse(entity_type), user_id, entity_id, instance_id)


@router.get("/{entity_type}/{entity_id}/similar", response_model=PagedResult)
async def similar_entities(
    entity_type: str,
    entity_id: str,
    page: int = 1,
    per_page: int | None = Query(default=None),
    user_id: str = Depends(get_user_id),
    library: LibraryService = Depends(get_library),
):
    return await library.similar_to(EntityType.parse(entity_type), entity_id, user_id, page, per_page)


@router.put("/{entity_type}/{entity_id}/rating", response_model=RatingRecord)
async def rate_entity(
    entity_type: str,
    entity_id: str,
    update: RatingUpdate,
    user_id: str = Depends(get_user_id),
    library: LibraryService = Depends(get_library),
):
    changes = update.model_dump(include={"rating", "favorite"} & update.model_fields_set)
    return await library.set_rating(EntityType.parse(entity_type), user_id, entity_id, update.instance_id, **changes)
