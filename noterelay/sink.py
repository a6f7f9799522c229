"""
NoteRelay sink

FastAPI application hosting the idempotent receiver.
"""
from fastapi import FastAPI

from noterelay.config import settings
from noterelay.logging_config import configure_logging
from noterelay.sentry_config import configure_sentry
from noterelay.middleware.logging import LoggingMiddleware
from noterelay.routes.metrics import router as metrics_router
from noterelay.routes.sink import router as sink_router

configure_logging()
configure_sentry()

app = FastAPI(
    title=f"{settings.APP_NAME} Sink",
    version=settings.APP_VERSION,
    description="Idempotent webhook receiver for note deliveries",
)

app.add_middleware(LoggingMiddleware)

app.include_router(metrics_router)
app.include_router(sink_router)


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"ok": True}
