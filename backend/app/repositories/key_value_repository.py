"""Key-value persistence helpers."""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.models import KeyValueEntry, utcnow


class KeyValueRepository:
    """Read and replace JSON documents stored under namespaced keys."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, key: str) -> Any | None:
        entry = self._session.get(KeyValueEntry, key)
        if entry is None:
            return None
        return json.loads(entry.value)

    def put(self, key: str, value: Any) -> None:
        payload = json.dumps(value, separators=(",", ":"))
        entry = self._session.get(KeyValueEntry, key)
        if entry is None:
            self._session.add(KeyValueEntry(key=key, value=payload))
            return
        entry.value = payload
        entry.updated_at = utcnow()

    def delete(self, key: str) -> bool:
        result = self._session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
        return bool(result.rowcount)


__all__ = ["KeyValueRepository"]
