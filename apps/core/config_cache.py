from __future__ import annotations

import copy
import json
import logging
import os
import threading
import time
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)
_CACHE: Dict[str, Dict[str, Any]] = {}
_LOCK = threading.Lock()


def _parse(fh, abs_path: str) -> Any:
    if abs_path.endswith(".json"):
        return json.load(fh)
    return yaml.safe_load(fh)


def load_yaml_cached(
    path: str,
    *,
    default: Optional[Dict[str, Any]] = None,
    ttl_seconds: Optional[int] = None,
) -> Dict[str, Any]:
    """Mapping stored in a YAML (or ``.json``) file.

    The parsed payload is kept until the TTL runs out or the file's mtime
    changes. Callers get a deep copy. Missing, unparsable and non-mapping
    files resolve to ``default``.
    """
    from apps.core.config import settings

    ttl = ttl_seconds if ttl_seconds is not None else settings.config_cache_ttl_s
    abs_path = os.path.abspath(path)
    try:
        mtime = os.path.getmtime(abs_path)
    except FileNotFoundError:
        mtime = None
    now = time.time()

    with _LOCK:
        cached = _CACHE.get(abs_path)
        if cached and cached["mtime"] == mtime and now - cached["loaded_at"] <= ttl:
            return copy.deepcopy(cached["payload"])

        payload: Any = None
        if mtime is None:
            logger.warning("Data file %s not found; using default", abs_path)
        else:
            try:
                with open(abs_path, "r", encoding="utf-8") as fh:
                    payload = _parse(fh, abs_path)
            except (yaml.YAMLError, json.JSONDecodeError) as exc:
                logger.warning("Failed to parse %s: %s", abs_path, exc)
        if payload is not None and not isinstance(payload, dict):
            logger.warning("Data file %s does not hold a mapping (%s)", abs_path, type(payload).__name__)
            payload = None
        if payload is None:
            payload = default or {}

        _CACHE[abs_path] = {"payload": payload, "mtime": mtime, "loaded_at": now}
        return copy.deepcopy(payload)


def clear_yaml_cache() -> None:
    with _LOCK:
        _CACHE.clear()
