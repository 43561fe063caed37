from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from . import db
from .db import utc_now

PENDING = "PENDING"
SUCCESS = "SUCCESS"
FAIL = "FAIL"


@dataclass
class Query:
    """Observable outcome of one orchestration request."""

    id: str
    context: str
    status: str = PENDING
    message: str = ""
    desired_state: str | None = None
    response: Any = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


class QueryBook:
    """In-memory index of queries, mirrored into the `queries` table."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._queries: dict[str, Query] = {}

    def open(self, context: str, desired_state: str | None = None, message: str = "") -> Query:
        q = Query(id=secrets.token_hex(6), context=context, desired_state=desired_state, message=message)
        with self._lock:
            self._queries[q.id] = q
        db.insert_query(q.id, context, q.status, message)
        return q

    def update(self, q: Query, status: str, message: str = "", response: Any = None) -> None:
        with self._lock:
            q.status = status
            q.message = message
            q.response = response
            q.updated_at = utc_now()
        db.set_query_status(q.id, status, message)

    def note(self, q: Query, message: str) -> None:
        with self._lock:
            q.message = message
            q.updated_at = utc_now()
        db.set_query_status(q.id, q.status, message)

    def get(self, query_id: str) -> Query | None:
        with self._lock:
            return self._queries.get(query_id)

    def list_queries(self) -> list[Query]:
        with self._lock:
            return list(self._queries.values())
