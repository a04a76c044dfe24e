"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
)
from app.modules.membership import router as membership_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Membership Billing API

Recurring membership invoices paid through the payment gateway.

### Features

* **Charges** - Card, Pix and boleto payments for membership plans
* **Webhooks** - Gateway notifications reconciled against invoices
* **Checkout** - Hosted checkout links for a plan
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "payments",
            "description": "Membership charges, gateway webhooks and checkout links",
        },
    ],
)

setup_logging(
    level=settings.LOG_LEVEL if not settings.DEBUG else "DEBUG",
    json_format=True,
    include_stack_trace=True,
)

environment = "sandbox" if settings.is_sandbox else "production"
set_app_info(version=settings.VERSION, environment=environment)
logger.info(
    "Payment gateway configured",
    extra={
        "environment": environment,
        "token_prefix": settings.gateway_access_token[:12],
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Status plus the gateway environment and document store backend
        the process was started with.
    """
    return {
        "status": "healthy",
        "gateway_environment": environment,
        "document_store": settings.DOCUMENT_STORE_BACKEND.lower(),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(membership_router, prefix=settings.API_V1_PREFIX)
