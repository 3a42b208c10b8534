"""Repository abstractions for database interactions."""

from .key_value_repository import KeyValueRepository
from .route_event_repository import (
    InMemoryRouteEventStore,
    RouteEventStore,
    SqlRouteEventStore,
    decode_route_log,
    encode_route_log,
)

__all__ = [
    "KeyValueRepository",
    "InMemoryRouteEventStore",
    "RouteEventStore",
    "SqlRouteEventStore",
    "decode_route_log",
    "encode_route_log",
]
