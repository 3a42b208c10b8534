"""Domain models representing normalized protocol data."""

from .models import (
    UNKNOWN_SYMBOL,
    AssetPrice,
    DepositFields,
    DomainEvent,
    EventKind,
    PriceSnapshot,
    PriceSource,
    ProtocolReads,
    RawLogEvent,
    RouteEventLog,
    RouteOpenEvent,
    RouteStatus,
    SwapFields,
    TransferClass,
    TransferFields,
    VaultCreatedFields,
    VaultTokenBalance,
    route_key,
)

__all__ = [
    "UNKNOWN_SYMBOL",
    "AssetPrice",
    "DepositFields",
    "DomainEvent",
    "EventKind",
    "PriceSnapshot",
    "PriceSource",
    "ProtocolReads",
    "RawLogEvent",
    "RouteEventLog",
    "RouteOpenEvent",
    "RouteStatus",
    "SwapFields",
    "TransferClass",
    "TransferFields",
    "VaultCreatedFields",
    "VaultTokenBalance",
    "route_key",
]
