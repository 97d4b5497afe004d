"""
FastAPI application entrypoint.

Run locally:  uvicorn campaign_registry.main:app --reload
Tests build their own app with ``create_app(engine=...)``.
"""

import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from campaign_registry.api.errors import register_exception_handlers
from campaign_registry.api.routes import router
from campaign_registry.config import settings
from campaign_registry.models.database import Base, build_engine, build_session_factory

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s | %(name)s | %(message)s")

logger = logging.getLogger(__name__)


def create_app(engine: Engine | None = None) -> FastAPI:
    """Build the app around a store engine; the configured DATABASE_URL is used when none is given."""
    engine = engine or build_engine(settings.DATABASE_URL)

    app = FastAPI(
        title="Health Campaign Patient Registry",
        description=(
            "Patient registration for a short-term health campaign: registration, "
            "clinical updates, soft delete and restore, audit history, search, "
            "bulk operations, export and statistics."
        ),
        version=settings.APP_VERSION,
    )
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.started_at = time.monotonic()

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    register_exception_handlers(app)
    app.include_router(router, prefix=settings.API_PREFIX)

    @app.on_event("startup")
    def on_startup():
        Base.metadata.create_all(bind=engine)
        logger.info("Patient registry %s started (%s)", settings.APP_VERSION, settings.ENVIRONMENT)

    return app


app = create_app()
