"""
Application factory and ASGI entry point.

    uvicorn bookreview.main:app --reload

Routers are mounted under /api/<api_version>. Review-service exceptions
carry no HTTP knowledge; the handlers registered here translate them:

    NotFoundError        -> 404
    ForbiddenError       -> 403
    DuplicateReviewError -> 400
    InvalidReviewError   -> 422
    StorageError         -> 500

Schema changes go through Alembic; the app never creates tables itself.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from bookreview import __version__
from bookreview.config import get_settings
from bookreview.dependencies import DbSession
from bookreview.routers import auth_router, books_router, reviews_router
from bookreview.services.exceptions import (
    DuplicateReviewError,
    ForbiddenError,
    InvalidReviewError,
    NotFoundError,
    ReviewServiceError,
    StorageError,
)
from bookreview.services.rate_limiter import limiter, rate_limit_exceeded_handler

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific class first; the first isinstance match wins
ERROR_STATUS: tuple[tuple[type[ReviewServiceError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (DuplicateReviewError, status.HTTP_400_BAD_REQUEST),
    (InvalidReviewError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        f"Starting {settings.app_name} {__version__} "
        f"(environment={settings.environment}, debug={settings.debug})"
    )
    yield
    logger.info(f"Stopping {settings.app_name}")


async def review_service_error_handler(
    request: Request,
    exc: ReviewServiceError,
) -> JSONResponse:
    """Map a review-service exception to its status code with {"detail": message}."""
    status_code = next(
        (code for cls, code in ERROR_STATUS if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Raised outside the review service, e.g. by book or auth handlers
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "A database error occurred. Please try again later."},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    detail = str(exc) if settings.debug else "An internal error occurred."
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": detail},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description=(
            "Books, reviews and ratings. Each book carries the average and count "
            "of its active reviews, refreshed in the same transaction as every "
            "review change. Authenticate with a bearer token from "
            f"`/api/{settings.api_version}/auth/login`."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(ReviewServiceError, review_service_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    api_prefix = f"/api/{settings.api_version}"
    for router in (auth_router, books_router, reviews_router):
        app.include_router(router, prefix=api_prefix)

    @app.get("/health", tags=["Health"], summary="Liveness and database check")
    def health_check(db: DbSession) -> dict:
        try:
            db.execute(text("SELECT 1"))
            database = "ok"
        except SQLAlchemyError as exc:
            logger.error(f"Health check could not reach the database: {exc}")
            database = "unavailable"

        return {
            "status": "healthy" if database == "ok" else "degraded",
            "app": settings.app_name,
            "version": __version__,
            "environment": settings.environment,
            "database": database,
            "rate_limiting": {
                "enabled": settings.rate_limit_enabled,
                "default_limit": settings.rate_limit_default,
            },
        }

    @app.get("/", tags=["Root"], include_in_schema=False)
    def root() -> dict:
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.api_version,
            "docs": app.docs_url,
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("bookreview.main:app", host=settings.host, port=settings.port, reload=settings.debug)
