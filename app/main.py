"""Main FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import logging
import os

from app.core.config import settings
from app.core.dependencies import build_gateway
from app.core.logging import setup_logging
from app.db.database import init_db
from app.api import contents, health, realtime, session

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    os.makedirs(settings.upload_dir, exist_ok=True)
    gateway = build_gateway()
    app.state.gateway = gateway
    gateway.start()
    logger.info(f"Allowed CORS origins: {', '.join(settings.cors_origins)}")
    yield
    # Shutdown
    await gateway.stop()


app = FastAPI(
    title="Realtime Bridge",
    description="Relay between browser clients and a realtime voice API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include routers (must be before static file mounting to take precedence)
app.include_router(health.router, tags=["health"])
app.include_router(session.router, tags=["session"])
app.include_router(realtime.router, tags=["realtime"])
app.include_router(contents.router, tags=["contents"])

# Uploaded content files
app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


@app.get("/")
async def root():
    return {
        "message": "Realtime Bridge API",
        "version": "0.1.0",
    }
