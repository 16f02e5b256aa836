"""FastAPI application entry point for the webhook receiver.

Collaborators (database, store, Airtable client, pipeline) are constructed once
in the lifespan handler and kept on ``app.state``. Tests pass their own
pipeline to ``create_app`` instead.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from form_relay import __version__
from form_relay.airtable_client import AirtableClient
from form_relay.api.routes import health, webhook
from form_relay.config import Settings, get_settings
from form_relay.database import Database
from form_relay.logging_config import setup_logging
from form_relay.mirror import MirrorWriter
from form_relay.pipeline import IngestionPipeline
from form_relay.store import SubmissionStore

logger = logging.getLogger(__name__)


def build_mirror(settings: Settings) -> MirrorWriter | None:
    """Build the Airtable mirror, or None when Airtable is not configured."""
    if not settings.mirror_enabled:
        logger.warning("Airtable not configured, mirroring disabled")
        return None

    client = AirtableClient(
        base_id=settings.airtable_base_id,
        table_id=settings.airtable_table_id,
        token=settings.airtable_token,
        api_url=settings.airtable_api_url,
        timeout=settings.mirror_timeout_seconds,
    )
    return MirrorWriter(
        client,
        dashboard_url=settings.supabase_url or None,
        max_field_length=settings.mirror_field_max_length,
    )


def build_pipeline(settings: Settings, database: Database) -> IngestionPipeline:
    """Wire the pipeline from settings and an open database."""
    if not settings.signing_enabled:
        logger.warning(
            "TYPEFORM_WEBHOOK_SECRET not set: signature verification is DISABLED (open mode)"
        )

    return IngestionPipeline(
        SubmissionStore(database),
        build_mirror(settings),
        signing_secret=settings.typeform_webhook_secret or None,
        max_payload_bytes=settings.max_payload_bytes,
        store_timeout=settings.store_timeout_seconds,
        mirror_timeout=settings.mirror_timeout_seconds,
    )


def create_app(
    settings: Settings | None = None,
    *,
    pipeline: IngestionPipeline | None = None,
    database: Database | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to use (defaults to ``get_settings()``)
        pipeline: Pre-built pipeline; when given, no database is opened
        database: Pre-built database used for the pipeline and health check

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Construct collaborators on startup, release them on shutdown."""
        owned_database: Database | None = None

        if pipeline is not None:
            app.state.pipeline = pipeline
            app.state.database = database
        else:
            db = database
            if db is None:
                db = owned_database = Database(settings.database_url)
            try:
                await db.create_tables()
                logger.info("Database tables initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise
            app.state.database = db
            app.state.pipeline = build_pipeline(settings, db)

        yield

        if owned_database is not None:
            try:
                await owned_database.dispose()
            except Exception as e:
                logger.error(f"Failed to close database connections: {e}")

    app = FastAPI(
        title=settings.app_name,
        description="Form submission webhook receiver with Airtable mirroring",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(health.router, tags=["health"])
    app.include_router(webhook.router, prefix=settings.webhook_path, tags=["webhook"])
    return app


setup_logging(level=get_settings().log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting FastAPI application", extra={"stage": "startup"})

    uvicorn.run(
        "form_relay.api.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
