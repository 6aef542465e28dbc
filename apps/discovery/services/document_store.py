#!/usr/bin/env python3
"""Document store interface for spots and check-ins, plus an in-memory implementation"""

import copy
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from apps.discovery.services.ingestion import parse_timestamp

logger = logging.getLogger(__name__)

Document = Tuple[str, Dict[str, Any]]


class DocumentStoreError(Exception):
    """Base error for remote document store failures"""
    pass


class QueryIndexError(DocumentStoreError):
    """The query needs a composite index the store does not have"""
    pass


class StoreUnavailableError(DocumentStoreError):
    """Network or backend outage"""
    pass


class SpotQuery(BaseModel):
    """One geohash-range page over the ``spots`` collection"""
    geohash_start: Optional[str] = None
    geohash_end: Optional[str] = None
    clauses: List[Tuple[str, str, Any]] = Field(default_factory=list)
    order_by: str = "geohash"
    limit: int = 90


class DocumentStore(Protocol):
    async def query_spots(self, query: SpotQuery) -> List[Document]: ...

    async def list_spots(self, limit: int) -> List[Document]: ...

    async def get_spot(self, spot_id: str) -> Optional[Dict[str, Any]]: ...

    async def recent_checkins(self, limit: int) -> List[Document]: ...

    async def merge_spot_fields(self, spot_id: str, fields: Dict[str, Any]) -> None: ...


def _lookup(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(doc: Dict[str, Any], clause: Tuple[str, str, Any]) -> bool:
    field, op, expected = clause
    value = _lookup(doc, field)
    if op == '==':
        return value == expected
    if op == 'in':
        return value in expected
    raise QueryIndexError(f"Unsupported operator {op!r} on {field}")


def _deep_merge(target: Dict[str, Any], fields: Dict[str, Any]) -> None:
    for key, value in fields.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _created_sort_key(doc: Dict[str, Any]) -> datetime:
    created = parse_timestamp(doc.get('createdAt', doc.get('timestamp')))
    return created or datetime.min.replace(tzinfo=timezone.utc)


class InMemoryDocumentStore:
    """
    Dict-backed store used in development and tests.

    ``max_indexed_clauses`` mimics a backend without composite indexes:
    queries with more equality/in clauses raise QueryIndexError.
    ``fail_with`` makes every call raise the given error.
    """

    def __init__(
        self,
        spots: Optional[Dict[str, Dict[str, Any]]] = None,
        checkins: Optional[Dict[str, Dict[str, Any]]] = None,
        max_indexed_clauses: Optional[int] = None,
        latency_s: float = 0.0,
    ):
        self.spots: Dict[str, Dict[str, Any]] = copy.deepcopy(spots or {})
        self.checkins: Dict[str, Dict[str, Any]] = copy.deepcopy(checkins or {})
        self.max_indexed_clauses = max_indexed_clauses
        self.latency_s = latency_s
        self.fail_with: Optional[DocumentStoreError] = None
        self.queries: List[SpotQuery] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # yield so concurrent callers overlap
            await asyncio.sleep(self.latency_s)
        finally:
            self.in_flight -= 1
        if self.fail_with is not None:
            raise self.fail_with

    async def query_spots(self, query: SpotQuery) -> List[Document]:
        self.queries.append(query)
        await self._enter()
        if self.max_indexed_clauses is not None and len(query.clauses) > self.max_indexed_clauses:
            raise QueryIndexError(
                f"Query with {len(query.clauses)} filters requires a composite index"
            )

        results = []
        for doc_id, doc in self.spots.items():
            geohash = doc.get(query.order_by) or ''
            if query.geohash_start is not None and geohash < query.geohash_start:
                continue
            if query.geohash_end is not None and geohash >= query.geohash_end:
                continue
            if all(_matches(doc, clause) for clause in query.clauses):
                results.append((doc_id, copy.deepcopy(doc)))

        results.sort(key=lambda item: (str(item[1].get(query.order_by) or ''), item[0]))
        return results[:query.limit]

    async def list_spots(self, limit: int) -> List[Document]:
        self.queries.append(SpotQuery(limit=limit))
        await self._enter()
        return [(doc_id, copy.deepcopy(doc)) for doc_id, doc in list(self.spots.items())[:limit]]

    async def get_spot(self, spot_id: str) -> Optional[Dict[str, Any]]:
        await self._enter()
        doc = self.spots.get(spot_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def recent_checkins(self, limit: int) -> List[Document]:
        await self._enter()
        ordered = sorted(self.checkins.items(), key=lambda item: _created_sort_key(item[1]), reverse=True)
        return [(doc_id, copy.deepcopy(doc)) for doc_id, doc in ordered[:limit]]

    async def merge_spot_fields(self, spot_id: str, fields: Dict[str, Any]) -> None:
        await self._enter()
        target = self.spots.setdefault(spot_id, {})
        _deep_merge(target, fields)
        logger.info("Merged %d fields into spot %s", len(fields), spot_id)
