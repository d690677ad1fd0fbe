"""FastAPI application initialization."""

import os
from contextlib import asynccontextmanager

import logfire
import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration

from src.api import health, instagram
from src.config import get_settings
from src.db.client import get_supabase_client
from src.errors import register_error_handlers
from src.logging_config import setup_logfire

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()

    setup_logfire(app, settings)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.env,
            traces_sample_rate=settings.sentry_traces_sample_rate,
            send_default_pii=False,
            integrations=[FastApiIntegration()],
        )

    app.state.supabase = get_supabase_client(settings)

    if not settings.signature_required:
        logfire.warn(
            "Unsigned webhook deliveries are accepted in this environment",
            environment=settings.env,
        )

    logfire.info(
        "Application startup complete",
        environment=settings.env,
        webhook_url=settings.webhook_url,
        api_version=settings.instagram_api_version,
    )

    yield

    logfire.info("Application shutdown complete")


app = FastAPI(
    title="Instagram Bridge",
    description="Instagram OAuth, webhook and messaging integration service",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    # Read from the environment directly: settings may not be loadable at import
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(instagram.router, prefix="/api/instagram", tags=["instagram"])


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "status": "ok",
        "message": "Instagram Bridge API",
        "version": API_VERSION,
        "endpoints": {
            "health": "/health",
            "instagram": "/api/instagram",
            "webhook": "/api/instagram/webhook",
        },
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "src.main:app", host="0.0.0.0", port=port, reload=os.getenv("ENV") == "local"
    )
