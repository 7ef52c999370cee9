"""FastAPI application entry point."""
import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from followups.core.config import settings
from followups.core.deps import get_db

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
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
        send_default_pii=False,  # Contact phone numbers stay out of Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Follow-up Engine API",
    description="WhatsApp follow-up sequences, executions, and scheduling",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Organization-Id"],
    expose_headers=["X-Total-Count"],
)

# ============================================================================
# Routers
# ============================================================================

from followups.routers import conversations, executions, internal, sequences  # noqa: E402

app.include_router(sequences.router, prefix="/follow-ups")
app.include_router(executions.router, prefix="/follow-ups")
app.include_router(conversations.router, prefix="/follow-ups")
app.include_router(internal.router, prefix="/follow-ups")


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Liveness plus database reachability."""
    db.execute(text("SELECT 1"))
    return {"status": "ok", "version": settings.VERSION}
