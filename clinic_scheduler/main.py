"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from clinic_scheduler.core.config import settings
from clinic_scheduler.db.session import engine

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

def init_error_tracking() -> bool:
    """Initialize Sentry when a DSN is configured outside dev. Returns whether it ran."""
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return False

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
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Patient data stays out of Sentry
    )
    logging.info("Sentry initialized for error tracking")
    return True


init_error_tracking()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Clinic Scheduling API",
    description="Appointment scheduling and visit lifecycle for clinics",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

# ============================================================================
# Routers
# ============================================================================

from clinic_scheduler.routers import appointments, blocked_slots, calendar

app.include_router(
    appointments.router, prefix="/clinics/{clinic_id}/appointments", tags=["appointments"]
)
app.include_router(
    blocked_slots.router, prefix="/clinics/{clinic_id}/blocked-slots", tags=["blocked-slots"]
)
app.include_router(calendar.router, prefix="/clinics/{clinic_id}/calendar", tags=["calendar"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
