"""
NoteRelay - scheduled webhook delivery

FastAPI application entry point for the management API.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

# Import observability modules
from noterelay.config import settings
from noterelay.logging_config import configure_logging
from noterelay.sentry_config import configure_sentry
from noterelay.middleware.logging import LoggingMiddleware
from noterelay.routes.metrics import router as metrics_router

# Import route modules
from noterelay.routes.notes import router as notes_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Schedules notes for delayed, retried, idempotent webhook delivery",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTP errors as {"error": ...}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400, never enters the pipeline."""
    return JSONResponse(
        status_code=400,
        content={"error": "Bad Request", "details": str(exc.errors())},
    )


# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include note routes
app.include_router(notes_router)


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"ok": True}
