from fastapi import APIRouter, Depends

from curator.api.deps import get_library, get_user_id
from curator.models.results import RecommendationResult
from curator.services.library import LibraryService

router = APIRouter(tags=["recommendations"])


@router.get("/recommended", response_model=RecommendationResult)
async def recommended(
    page: int = 1,
    per_page: int | None = None,
    user_id: str = Depends(get_user_id),
    library: LibraryService = Depends(get_library),
):
    return await library.recommended_for(user_id, page, per_page)
