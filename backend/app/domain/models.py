"""Typed domain representations used across ingestion, aggregation, and route tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping


class EventKind(str, Enum):
    SWAP = "swap"
    MINT = "mint"
    BURN = "burn"
    DEPOSIT = "deposit"
    VAULT_CREATED = "vault_created"


class TransferClass(str, Enum):
    MINT = "mint"
    BURN = "burn"
    IGNORE = "ignore"


class PriceSource(str, Enum):
    ORACLE = "oracle"
    EXTERNAL = "external"


@dataclass(frozen=True, slots=True)
class RawLogEvent:
    """Decoded log as served by the chain adapter, consumed once by the normalizer."""

    contract_address: str
    event_name: str
    topic: str
    args: Mapping[str, Any]
    block_number: int
    log_index: int
    tx_hash: str


@dataclass(frozen=True, slots=True)
class SwapFields:
    from_asset: str
    to_asset: str
    receiver: str
    amount_in: int
    amount_out: int
    iou_out: int


@dataclass(frozen=True, slots=True)
class TransferFields:
    sender: str
    recipient: str
    amount: int


@dataclass(frozen=True, slots=True)
class DepositFields:
    sender: str
    owner: str
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class VaultCreatedFields:
    vault: str
    owner: str


EventFields = SwapFields | TransferFields | DepositFields | VaultCreatedFields


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Canonical event; amounts stay in the token's native base units."""

    kind: EventKind
    block_number: int
    log_index: int
    timestamp_unix: int
    tx_hash: str
    fields: EventFields

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash.lower(), self.log_index)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True, slots=True)
class VaultTokenBalance:
    """Per-token vault holding as reported by the analytics indexer."""

    address: str
    symbol: str
    name: str
    decimals: int
    balance: int
    adapter: str


@dataclass(slots=True)
class ProtocolReads:
    """Point-in-time reads gathered alongside the event scan of one cycle."""

    last_block: int
    rebalance_count: int = 0
    iou_total_supply: int | None = None
    vault_total_assets: int | None = None
    vault_tokens: list[VaultTokenBalance] | None = None
    reserve_balances: dict[str, int] = field(default_factory=dict)
    degraded_sources: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AssetPrice:
    asset_id: str
    symbol: str
    decimals: int
    price: float
    source: PriceSource


UNKNOWN_SYMBOL = "Unknown"


@dataclass(frozen=True, slots=True)
class PriceSnapshot:
    """Prices valid for exactly one aggregation cycle.

    ``entries`` keeps every resolved row in arrival order, including oracle rows
    whose address is not in the symbol table. ``by_symbol`` is the canonical
    one-price-per-symbol view used for USD conversion and route evaluation.
    """

    entries: tuple[AssetPrice, ...] = ()
    by_symbol: Mapping[str, AssetPrice] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_prices(cls, prices: Iterable[AssetPrice]) -> "PriceSnapshot":
        entries = tuple(prices)
        canonical: dict[str, AssetPrice] = {}
        for entry in entries:
            if entry.symbol == UNKNOWN_SYMBOL:
                continue
            current = canonical.get(entry.symbol)
            if current is None or (
                entry.source == PriceSource.EXTERNAL and current.source != PriceSource.EXTERNAL
            ):
                canonical[entry.symbol] = entry
        return cls(entries=entries, by_symbol=MappingProxyType(canonical))

    def get(self, symbol: str) -> AssetPrice | None:
        return self.by_symbol.get(symbol)

    def price_of(self, symbol: str) -> float | None:
        entry = self.by_symbol.get(symbol)
        return entry.price if entry is not None else None

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.by_symbol

    def __iter__(self) -> Iterator[str]:
        return iter(self.by_symbol)

    def __len__(self) -> int:
        return len(self.by_symbol)


@dataclass(frozen=True, slots=True)
class RouteStatus:
    from_symbol: str
    to_symbol: str
    from_asset: str
    to_asset: str
    is_open: bool
    depeg_percent: float
    threshold_percent: float

    @property
    def route_key(self) -> str:
        return route_key(self.from_symbol, self.to_symbol)


def route_key(from_symbol: str, to_symbol: str) -> str:
    return f"{from_symbol} -> {to_symbol}"


@dataclass(slots=True)
class RouteOpenEvent:
    """One open interval of a route; closed when ``closed_at_ms`` is set."""

    id: str
    route_key: str
    opened_at_ms: int
    closed_at_ms: int | None = None
    duration_ms: int | None = None

    @property
    def is_open(self) -> bool:
        return self.closed_at_ms is None

    def close(self, now_ms: int) -> None:
        self.closed_at_ms = now_ms
        self.duration_ms = now_ms - self.opened_at_ms

    def copy(self) -> "RouteOpenEvent":
        return RouteOpenEvent(
            id=self.id,
            route_key=self.route_key,
            opened_at_ms=self.opened_at_ms,
            closed_at_ms=self.closed_at_ms,
            duration_ms=self.duration_ms,
        )


RouteEventLog = list[RouteOpenEvent]
