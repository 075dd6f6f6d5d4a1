"""FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import settings
from .error_responses import register_error_handlers
from .routers import schedule_assignments
from .schemas import HealthCheckResponse

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

APP_VERSION = "1.0.0"

# Create app
app = FastAPI(
    title="FieldOps Scheduling",
    version=APP_VERSION,
    description="Backend API for crew scheduling (schedule assignments and their side effects)"
)

# Production safety checks (fail closed on insecure config).
if settings.ENV.lower() == "production" and settings.DEBUG:
    raise RuntimeError("DEBUG must be false in production.")
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.ENV.lower() == "production" and settings.EVENT_DISPATCH_MODE != "celery":
    raise RuntimeError("EVENT_DISPATCH_MODE must be 'celery' in production (sink retries live in the worker).")

# CORS
cors_methods = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

register_error_handlers(app)

# Include routers
app.include_router(schedule_assignments.router, prefix="/api/v1")


@app.get("/api/v1/system/health", response_model=HealthCheckResponse)
def health_check():
    """Health check endpoint."""
    return HealthCheckResponse(status="ok", version=APP_VERSION)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "FieldOps Scheduling API",
        "version": APP_VERSION,
        "docs": "/docs"
    }
