import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from curator.api.main import api_router
from curator.core.errors import AmbiguousLookupError, CuratorError, InputError, NotFoundError, UpstreamUnavailable
from curator.services.library import LibraryService

from .config import settings
from .version import __version__

ERROR_STATUS: dict[type[CuratorError], int] = {
    InputError: 400,
    NotFoundError: 404,
    AmbiguousLookupError: 409,
    UpstreamUnavailable: 503,
}


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events (startup/shutdown).
    """
    configure_logging()
    library = getattr(app.state, "library", None) or LibraryService.from_settings()
    app.state.library = library
    library.start()
    logger.info(f"Curator {__version__} started ({settings.APP_ENV}, overlay={settings.OVERLAY_BACKEND})")
    yield
    await library.close()
    logger.info("Curator stopped")


def create_app(library: LibraryService | None = None) -> FastAPI:
    app = FastAPI(
        title="Curator",
        description="Personalized, access-controlled queries and recommendations over a media catalog",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.APP_ENV != "development" else "/docs",
        redoc_url=None if settings.APP_ENV != "development" else "/redoc",
    )
    if library is not None:
        app.state.library = library

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CuratorError)
    async def curator_error_handler(request: Request, exc: CuratorError) -> JSONResponse:
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.debug(f"{request.method} {request.url.path} rejected ({status}): {exc}")
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    app.include_router(api_router)
    return app


app = create_app()
