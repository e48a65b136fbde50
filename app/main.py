import logging

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.api.admin import router as admin_router
from app.api.webhooks import router as webhooks_router
from app.core.config import settings
from app.db.deps import get_db
from app.middleware.correlation_id import (
    CorrelationIdMiddleware,
    install_correlation_id_filter,
)
from app.middleware.rate_limit import RateLimitMiddleware
from app.services.reprompts import get_reprompt_messages

logger = logging.getLogger(__name__)

app = FastAPI(title="Funnel Bot")

# Rate limit the surfaces outsiders can hit
app.add_middleware(RateLimitMiddleware, rate_limited_paths=["/webhooks", "/admin"])
# Added last so it runs first: every request (including 429s) gets a correlation id
app.add_middleware(CorrelationIdMiddleware)


@app.on_event("startup")
async def startup_event():
    """Fail fast on configuration that would only surface mid-conversation."""
    install_correlation_id_filter()

    production_errors = []
    if settings.app_env == "production":
        if not settings.admin_api_key:
            production_errors.append("ADMIN_API_KEY is required in production.")
        if not settings.webhook_secret:
            production_errors.append("WEBHOOK_SECRET is required in production.")
        if not settings.messaging_dry_run and not settings.messaging_api_key:
            production_errors.append("MESSAGING_API_KEY is required when MESSAGING_DRY_RUN=false.")
    if production_errors:
        error_message = "Production environment validation failed:\n" + "\n".join(
            f"  - {e}" for e in production_errors
        )
        logger.error(error_message)
        raise RuntimeError(error_message)

    # Raises RePromptConfigError if a configured (phase, offset) has no message
    if settings.feature_reprompts_enabled:
        get_reprompt_messages()

    logger.info(
        "Startup: Configuration loaded - "
        f"Environment: {settings.app_env}, "
        f"Messaging dry-run: {settings.messaging_dry_run}, "
        f"Trigger stages: {','.join(settings.trigger_stages())}"
    )


@app.get("/health")
def health():
    """Liveness plus feature flag visibility. Never touches the database."""
    return {
        "ok": True,
        "features": {
            "reprompts_enabled": settings.feature_reprompts_enabled,
            "offer_dm_enabled": settings.feature_offer_dm_enabled,
        },
        "messaging_dry_run": settings.messaging_dry_run,
        "trigger_stages": list(settings.trigger_stages()),
    }


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    """Readiness: 200 if the database answers, 503 otherwise."""
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "database": "connected"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "database": "disconnected", "error": str(e)},
        )


app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
