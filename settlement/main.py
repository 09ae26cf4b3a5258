"""
Settlement Microservice
Order lifecycle, payment reconciliation, disputes and eco-credit accounting
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from settlement.api.admin import router as admin_router
from settlement.api.deps import get_dispatcher
from settlement.api.disputes import router as disputes_router
from settlement.api.impact import router as impact_router
from settlement.api.routes import router as orders_router
from settlement.api.webhooks import router as webhooks_router
from settlement.core_settings import get_settings
from settlement.domain.errors import SettlementError
from settlement.infrastructure.db import engine, init_models

# Service configuration
SERVICE_NAME = "settlement-service"
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
SERVICE_DESCRIPTION = "Order lifecycle and settlement microservice"

settings = get_settings()

# Setup structured logging
setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    # Startup
    try:
        logger.info("Running database migrations")
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=os.path.join(os.path.dirname(__file__), ".."),
            capture_output=True,
            text=True,
            check=False
        )
        if result.returncode != 0:
            logger.warning(f"Migration output: {result.stderr}")
        else:
            logger.info("Database migrations completed")
    except OSError as e:
        logger.error(f"Migration error: {e}")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME}")
    get_dispatcher().shutdown()

# Create FastAPI application
app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.error(exc.message, extra={"extra_fields": {"error": exc.code, "path": request.url.path}})
    else:
        logger.info(exc.message, extra={"extra_fields": {"error": exc.code, "path": request.url.path}})
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

# Initialize health checks
health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine=engine,
    required_config={
        "PAYMENT_WEBHOOK_SECRET": settings.PAYMENT_WEBHOOK_SECRET,
        "PAYMENT_GATEWAY_URL": settings.PAYMENT_GATEWAY_URL,
        "FRONTEND_URL": settings.FRONTEND_URL,
    },
)
app.include_router(health_service.create_health_router())

# Business routes
app.include_router(orders_router)
app.include_router(disputes_router)
app.include_router(webhooks_router)
app.include_router(impact_router)
app.include_router(admin_router)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    """Service information endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "currency": settings.CURRENCY,
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "orders": "/orders",
            "disputes": "/disputes",
            "impact": "/impact",
            "docs": "/api/docs"
        }
    }
