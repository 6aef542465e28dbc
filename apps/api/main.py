from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from apps.api.routes import discover, health
from apps.core.db import Base, engine
from apps.discovery import models  # noqa: F401 - registers cache tables

# Create FastAPI app
app = FastAPI(
    title="Spot Discovery API",
    description="API for nearby study and coffee spot discovery with place intelligence",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api")
app.include_router(discover.router, prefix="/api", tags=["discovery"])

logger = logging.getLogger(__name__)


@app.on_event("startup")
async def create_cache_tables():
    Base.metadata.create_all(bind=engine)
    logger.info(
        "startup complete", extra={"env": os.getenv("APP_ENV", "dev"), "port": os.getenv("PORT", "8000")}
    )


@app.get("/")
async def root():
    return {"message": "Spot Discovery API", "version": "1.0.0"}
