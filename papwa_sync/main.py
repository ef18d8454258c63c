"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from papwa_sync.context import AppContext, build_context
from papwa_sync.core.config import get_settings
from papwa_sync.core.structured_logging import configure_logging
from papwa_sync.routers import integrations, webhooks

logger = logging.getLogger(__name__)


def _init_sentry(settings) -> None:
    """Sentry Integration (optional, for production error tracking)."""
    if not settings.SENTRY_DSN or settings.is_dev:
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logger.info("Sentry initialized for error tracking")


def create_app(ctx: AppContext | None = None) -> FastAPI:
    """
    Build the API app.

    With no ctx, one is built from settings at startup and closed at
    shutdown. A ctx passed in (tests) is owned by the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = ctx is None
        app.state.ctx = ctx or build_context()
        try:
            yield
        finally:
            if owned:
                await app.state.ctx.aclose()

    settings = ctx.settings if ctx else get_settings()
    _init_sentry(settings)

    app = FastAPI(
        title="papwa-sync",
        description="Integration sync and job scheduling for the personal planning assistant",
        version=settings.VERSION,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    if ctx is not None:
        app.state.ctx = ctx

    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(integrations.router)

    @app.get("/health")
    def health():
        """
        Health check endpoint.

        Verifies database connectivity and returns environment info.
        """
        with app.state.ctx.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run("papwa_sync.main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
