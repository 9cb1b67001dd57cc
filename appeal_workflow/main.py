"""Campus Appeals: Main FastAPI Application.

Moves appeals of rejected campus reports through the ten-stage ISO 21001
review process, from submission to the president's binding decision.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .api import api_router
from .core import close_db, engine, get_settings, init_db
from .schemas import ErrorResponse

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup - skip init_db in production (tables are managed by migrations)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Campus Appeals API

    Appeals against rejected campus reports, reviewed in ten stages.

    ### Workflow

    - **Submit**: the report owner appeals within the 10-day window
    - **Admin review and documentation**: planning and document control officers
    - **Department review**: the concerned head of office proposes a course of action
    - **President decision**: final and binding; an approval restores the report

    ### Authentication

    All endpoints require a valid JWT token in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

    message = "An unexpected error occurred"
    if settings.debug or settings.environment != "production":
        message = f"{message}: {str(exc)[:200]}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=message,
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check. A database outage reports "degraded" instead of failing."""
    database = "ok"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Health check could not reach the database: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.app_version,
        "database": database,
    }


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "appeal_workflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
