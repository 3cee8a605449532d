"""Subscription billing API - FastAPI application entrypoint."""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import load_config, log_config_snapshot
from app.routers import webhooks
from billing.service import BillingService
from persistence.db import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load and validate configuration at startup
_config = load_config()
log_config_snapshot(_config)

# Export config value for middleware (validated)
MAX_REQUEST_SIZE_BYTES = _config.max_request_size_bytes


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests exceeding size limit to prevent payload bombs."""

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length is not None and not content_length.isdigit():
            return JSONResponse(
                status_code=400,
                content={"detail": "Invalid Content-Length header"},
            )
        if content_length and int(content_length) > MAX_REQUEST_SIZE_BYTES:
            return JSONResponse(
                status_code=413,
                content={"detail": "Request entity too large"},
            )
        return await call_next(request)


# Capture service start time for uptime reporting
_SERVICE_START_TIME = datetime.now(timezone.utc)

app = FastAPI(
    title="Subscription Billing",
    description="Stripe subscription state for local billable users",
    version=_config.service_version,
)

app.add_middleware(RequestSizeLimitMiddleware)

# One billing service per process, built from explicit configuration
app.state.billing = BillingService(_config.billing)

app.include_router(webhooks.router)


@app.on_event("startup")
async def startup_event():
    """Initialize database tables."""
    init_db()
    logger.info("Database initialized")


@app.get("/health")
async def health():
    """Health check with service observability."""
    return {
        "status": "healthy",
        "service": _config.service_name,
        "version": _config.service_version,
        "environment": _config.environment,
        "billing_enabled": _config.billing.billing_enabled,
        "webhooks_enabled": _config.billing.webhooks_enabled,
        "started_at": _SERVICE_START_TIME.isoformat(),
    }
