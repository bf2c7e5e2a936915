from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.attendance.router import router as attendance_router
from app.api.v1.dashboard.router import router as dashboard_router
from app.api.v1.events.router import router as events_router
from app.api.v1.fees.router import router as fees_router
from app.api.v1.grades.router import router as grades_router
from app.api.v1.messages.router import router as messages_router
from app.core.cache import CacheService, build_cache_service
from app.core.logging import get_logger, setup_logging

log = get_logger("main")


def create_app(cache: Optional[CacheService] = None) -> FastAPI:
    """Build the API. Pass a cache to share one across apps (tests); otherwise settings pick the backend."""
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.cache.close()

    app = FastAPI(title="School Insights", lifespan=lifespan)
    app.state.cache = cache if cache is not None else build_cache_service()
    log.info("Derived-view cache: %s", type(app.state.cache).__name__)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(dashboard_router)
    app.include_router(attendance_router)
    app.include_router(grades_router)
    app.include_router(fees_router)
    app.include_router(events_router)
    app.include_router(messages_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
