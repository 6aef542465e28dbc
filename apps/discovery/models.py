from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from apps.core.db import Base


class CacheEntry(Base):
    __tablename__ = "discovery_cache"

    key = Column(String(512), primary_key=True)
    payload = Column(JSON, nullable=False)  # JSON-serializable value
    expires_at = Column(DateTime(timezone=True), nullable=True)  # null = never expires
    hits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_discovery_cache_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<CacheEntry(key='{self.key}', expires_at={self.expires_at})>"
