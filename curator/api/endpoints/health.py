from fastapi import APIRouter, Depends

from curator.api.deps import get_library
from curator.core.version import __version__
from curator.services.library import LibraryService

router = APIRouter(tags=["health"])


@router.get("/health", summary="Simple readiness probe")
async def health_check(library: LibraryService = Depends(get_library)) -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "catalog_version": library.catalog.version,
        "visibility_cache_entries": len(library.visibility.cache),
    }
