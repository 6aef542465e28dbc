"""Health check endpoints exposed by the public API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from apps.core.db import get_db
from apps.core.feature_flags import get_discovery_config, get_feature_flags

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", summary="Constant-time readiness probe")
def health_fast() -> dict[str, str]:
    """Simple readiness probe that avoids touching the cache database."""
    return {"status": "ok", "timestamp": _utc_timestamp()}


@router.get("/db", summary="Cache database connectivity check")
def health_db(db: Session = Depends(get_db)) -> dict[str, str]:
    db.execute(text("SELECT 1"))
    return {"status": "ok", "scope": "db", "timestamp": _utc_timestamp()}


@router.get("/feature-flags", summary="Feature flag snapshot")
def health_feature_flags() -> dict[str, object]:
    try:
        return {
            "ok": True,
            "flags": get_feature_flags().get_all_flags(),
            "discovery_config": get_discovery_config(),
            "timestamp": _utc_timestamp(),
        }
    except Exception as exc:  # pragma: no cover
        logger.error("Feature flag health check failed: %s", exc)
        return {"ok": False, "error": str(exc), "timestamp": _utc_timestamp()}
