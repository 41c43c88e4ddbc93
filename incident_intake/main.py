"""
Incident Intake - main API
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from incident_intake.core.config import settings
from incident_intake.core.logging import setup_logging
from incident_intake.api.error_handlers import register_exception_handlers
from incident_intake.api.routes import health, webhook
from incident_intake.services.http_client import close_http_client

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")
    yield
    await close_http_client()
    logger.info(f"Stopped {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    description="WhatsApp incident reporting and AI classification",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health.router, tags=["Health"])
app.include_router(webhook.router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "status": "running",
        "docs": "/docs",
    }
