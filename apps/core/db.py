from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from .config import settings
import os
import logging

logger = logging.getLogger(__name__)


def resolve_cache_database_url() -> str:
    """
    Resolve the local cache database URL.

    Priority:
    1. ENV: CACHE_DATABASE_URL
    2. settings.cache_database_url (from .env or config.py)
    """
    url = os.getenv("CACHE_DATABASE_URL") or settings.cache_database_url
    if not url:
        raise RuntimeError(
            "CACHE_DATABASE_URL is required (e.g. sqlite:///./discovery_cache.db)"
        )
    return url


def _mask_dsn(url: str) -> str:
    """Mask sensitive information in database URL for logging."""
    if "@" in url and "://" in url:
        scheme, rest = url.split("://", 1)
        if "@" in rest and ":" in rest.split("@", 1)[0]:
            creds, hostpart = rest.split("@", 1)
            user = creds.split(":", 1)[0]
            return f"{scheme}://{user}:***@{hostpart}"
    return url


def build_engine(url: str):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        future=True,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
    )


# Resolve database URL
DB_URL = resolve_cache_database_url()
logger.info("Cache DB init: %s", _mask_dsn(DB_URL))

engine = build_engine(DB_URL)

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
