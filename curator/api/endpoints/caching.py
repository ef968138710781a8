from fastapi import APIRouter, Depends
from loguru import logger

from curator.api.deps import get_library
from curator.services.library import LibraryService

router = APIRouter(prefix="/cache", tags=["cache"])


@router.post("/invalidate")
async def invalidate_cache(user_id: str | None = None, library: LibraryService = Depends(get_library)):
    """
    Drop cached visibility results, for one user or for everyone.
    They are recomputed on the next request.
    """
    dropped = library.invalidate(user_id)
    logger.info("Cache invalidated via API endpoint")
    return {"message": "Cache invalidated", "status": "success", "dropped": dropped}
