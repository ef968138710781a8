from fastapi import APIRouter

from .endpoints.caching import router as caching_router
from .endpoints.health import router as health_router
from .endpoints.library import router as library_router
from .endpoints.recommendations import router as recommendations_router

api_router = APIRouter()


@api_router.get("/")
async def root():
    return {"message": "Curator API is running"}


api_router.include_router(health_router)
api_router.include_router(library_router)
api_router.include_router(recommendations_router)
api_router.include_router(caching_router)
