"""Durable storage for the route open/close interval log."""

from __future__ import annotations

import json
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.db import session_scope
from app.domain import RouteEventLog, RouteOpenEvent
from app.errors import PersistenceFailure

from .key_value_repository import KeyValueRepository

ENVELOPE_VERSION = 1


class StoredRouteEvent(BaseModel):
    """On-disk layout of one record; keys follow the dashboard's camelCase names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    route: str
    opened_at: int = Field(alias="openedAt", ge=0)
    closed_at: int | None = Field(default=None, alias="closedAt")
    duration_ms: int | None = Field(default=None, alias="durationMs")

    @model_validator(mode="after")
    def _duration_matches_close(self) -> "StoredRouteEvent":
        if self.closed_at is None:
            if self.duration_ms is not None:
                raise ValueError("open record must not carry a duration")
            return self
        expected = self.closed_at - self.opened_at
        if self.duration_ms is None:
            self.duration_ms = expected
        elif self.duration_ms != expected:
            raise ValueError("durationMs must equal closedAt - openedAt")
        return self

    @classmethod
    def from_domain(cls, event: RouteOpenEvent) -> "StoredRouteEvent":
        return cls(
            id=event.id,
            route=event.route_key,
            opened_at=event.opened_at_ms,
            closed_at=event.closed_at_ms,
            duration_ms=event.duration_ms,
        )

    def to_domain(self) -> RouteOpenEvent:
        return RouteOpenEvent(
            id=self.id,
            route_key=self.route,
            opened_at_ms=self.opened_at,
            closed_at_ms=self.closed_at,
            duration_ms=self.duration_ms,
        )


def encode_route_log(log: RouteEventLog) -> dict[str, Any]:
    return {
        "version": ENVELOPE_VERSION,
        "events": [
            StoredRouteEvent.from_domain(event).model_dump(by_alias=True) for event in log
        ],
    }


def decode_route_log(payload: Any) -> RouteEventLog:
    """Parse either the versioned envelope or the legacy bare list."""

    if payload is None:
        return []
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        version = payload.get("version")
        if version != ENVELOPE_VERSION:
            raise PersistenceFailure(f"Unsupported route log version: {version!r}")
        records = payload.get("events")
        if not isinstance(records, list):
            raise PersistenceFailure("Route log envelope has no events list")
    else:
        raise PersistenceFailure("Route log payload is neither a list nor an envelope")

    try:
        return [StoredRouteEvent.model_validate(record).to_domain() for record in records]
    except ValidationError as exc:
        raise PersistenceFailure(f"Malformed route log record: {exc}") from exc


class RouteEventStore(Protocol):
    def load(self) -> RouteEventLog: ...

    def save(self, log: RouteEventLog) -> None: ...

    def clear(self) -> None: ...


class SqlRouteEventStore:
    """Persist the whole log under one key; every save is a single replace."""

    def __init__(self, session_factory: sessionmaker[Session], key: str) -> None:
        self._session_factory = session_factory
        self.key = key

    def load(self) -> RouteEventLog:
        try:
            with session_scope(self._session_factory) as session:
                payload = KeyValueRepository(session).get(self.key)
        except (SQLAlchemyError, json.JSONDecodeError) as exc:
            raise PersistenceFailure(f"Could not read {self.key}: {exc}") from exc
        return decode_route_log(payload)

    def save(self, log: RouteEventLog) -> None:
        document = encode_route_log(log)
        try:
            with session_scope(self._session_factory) as session:
                KeyValueRepository(session).put(self.key, document)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Could not write {self.key}: {exc}") from exc

    def clear(self) -> None:
        try:
            with session_scope(self._session_factory) as session:
                KeyValueRepository(session).delete(self.key)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Could not clear {self.key}: {exc}") from exc


class InMemoryRouteEventStore:
    """Process-local store holding the serialized document, for tests and dry runs."""

    def __init__(self, initial: RouteEventLog | None = None) -> None:
        self._document: str | None = None
        if initial is not None:
            self.save(initial)

    def load(self) -> RouteEventLog:
        if self._document is None:
            return []
        return decode_route_log(json.loads(self._document))

    def save(self, log: RouteEventLog) -> None:
        self._document = json.dumps(encode_route_log(log))

    def clear(self) -> None:
        self._document = None


__all__ = [
    "ENVELOPE_VERSION",
    "InMemoryRouteEventStore",
    "RouteEventStore",
    "SqlRouteEventStore",
    "StoredRouteEvent",
    "decode_route_log",
    "encode_route_log",
]
