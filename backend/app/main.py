"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import init_models
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_logging
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from app.modules.payments.router import admin_router, payment_router


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await init_models()
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Storefront Payments API

Payment orchestration for Idram, Ameriabank, Inecobank and ArCa.

### Features

* **Initiation** - Redirect and form instructions for the provider's payment page
* **Webhooks** - Checksum-verified or status-query-verified provider notifications
* **Capture** - Refund, reversal and deposit of pre-authorized payments
* **Card bindings** - Charging stored cards through ArCa
* **Gateway admin** - Provider configurations with secrets encrypted at rest

### Authentication

Payment lookup, bindings and admin endpoints require a JWT Bearer token.

```
Authorization: Bearer <access_token>
```
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check and metrics endpoints",
        },
        {
            "name": "Payments",
            "description": "Payment initiation, status, capture operations, card bindings and webhooks",
        },
        {
            "name": "Payment Gateway Admin",
            "description": "Gateway configuration management - Idram, Ameriabank, Inecobank, ArCa",
        },
    ],
)

# Set up logging with correlation IDs
setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

# Set application info for metrics
set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, log_query=True)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", tags=["health"], include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition of application metrics."""
    return Response(content=get_metrics(), media_type=get_content_type())


# Include routers
app.include_router(payment_router, prefix=settings.API_V1_PREFIX)
app.include_router(admin_router, prefix=settings.API_V1_PREFIX)
