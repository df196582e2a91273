"""
STEWARD API - Main Application Entry Point

Authorization service for the church website: route checks, permission
review, delegation and audit browsing.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from steward.api.config import settings
from steward.api.db.session import init_db, close_db
from steward.api.services.background_tasks import init_background_workers, close_background_workers


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    await init_db()
    await init_background_workers()
    yield
    # Shutdown
    await close_background_workers()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="STEWARD - Authorization decision engine API",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    from steward.api.access.routes import router as access_router
    from steward.api.admin.routes import router as admin_router

    app.include_router(access_router, prefix="/api/v1/access", tags=["Access"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/api/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service": settings.APP_NAME,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "steward.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
