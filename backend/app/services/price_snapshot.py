"""Resolve one consistent set of asset prices per aggregation cycle."""

from __future__ import annotations

import asyncio
from typing import Mapping, Protocol, Sequence

from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import UNKNOWN_SYMBOL, AssetPrice, PriceSnapshot, PriceSource
from app.errors import EngineError

ORACLE_SOURCE = "oracle_prices"
REFERENCE_SOURCE = "reference_price"


class OracleRowLike(Protocol):
    asset: str
    asset_decimals: int | None
    oracle_decimals: int
    price: int


class OracleSource(Protocol):
    async def fetch_oracle_rows(self) -> Sequence[OracleRowLike]: ...


class ReferenceSource(Protocol):
    async def fetch_usd_price(self, asset_id: str) -> float: ...


class PriceSnapshotBuilder:
    """Combine oracle rows and the external base-asset quote into a ``PriceSnapshot``.

    The symbol table is injected so a deployment can swap it without code
    changes. Oracle rows for addresses outside the table are kept under the
    ``Unknown`` symbol. A failing source contributes nothing; the builder never
    raises on a source failure.
    """

    def __init__(
        self,
        oracle_source: OracleSource,
        reference_source: ReferenceSource,
        *,
        symbol_table: Mapping[str, str],
        asset_decimals: Mapping[str, int] | None = None,
        base_symbol: str,
        base_reference_id: str,
        base_decimals: int = 18,
    ) -> None:
        self.oracle_source = oracle_source
        self.reference_source = reference_source
        self.symbol_table = {address.lower(): symbol for address, symbol in symbol_table.items()}
        self.asset_decimals = {
            address.lower(): decimals for address, decimals in (asset_decimals or {}).items()
        }
        self.base_symbol = base_symbol
        self.base_reference_id = base_reference_id
        self.base_decimals = base_decimals

    @classmethod
    def from_settings(
        cls,
        oracle_source: OracleSource,
        reference_source: ReferenceSource,
        settings: Settings | None = None,
    ) -> "PriceSnapshotBuilder":
        settings = settings or get_settings()
        return cls(
            oracle_source,
            reference_source,
            symbol_table=settings.symbol_table,
            asset_decimals={
                address: asset.decimals for address, asset in settings.tracked_assets.items()
            },
            base_symbol=settings.base_asset_symbol,
            base_reference_id=settings.base_asset_reference_id,
            base_decimals=settings.base_asset_decimals,
        )

    async def build_snapshot(self) -> PriceSnapshot:
        snapshot, _ = await self.resolve()
        return snapshot

    async def resolve(self) -> tuple[PriceSnapshot, list[str]]:
        """Return the snapshot together with the names of the sources that failed."""

        oracle_result, reference_result = await asyncio.gather(
            self.oracle_source.fetch_oracle_rows(),
            self.reference_source.fetch_usd_price(self.base_reference_id),
            return_exceptions=True,
        )

        degraded: list[str] = []
        prices: list[AssetPrice] = []

        if isinstance(oracle_result, EngineError):
            logger.warning("Oracle prices unavailable: {}", oracle_result)
            degraded.append(ORACLE_SOURCE)
        elif isinstance(oracle_result, BaseException):
            raise oracle_result
        else:
            prices.extend(self._oracle_prices(oracle_result))

        if isinstance(reference_result, EngineError):
            logger.warning(
                "Reference price for {} unavailable: {}", self.base_symbol, reference_result
            )
            degraded.append(REFERENCE_SOURCE)
        elif isinstance(reference_result, BaseException):
            raise reference_result
        else:
            prices.append(
                AssetPrice(
                    asset_id=self.base_reference_id,
                    symbol=self.base_symbol,
                    decimals=self.base_decimals,
                    price=float(reference_result),
                    source=PriceSource.EXTERNAL,
                )
            )

        snapshot = PriceSnapshot.from_prices(prices)
        logger.debug(
            "Price snapshot: {}",
            ", ".join(f"{symbol}={entry.price:.6f}" for symbol, entry in snapshot.by_symbol.items()),
        )
        return snapshot, degraded

    def _oracle_prices(self, rows: Sequence[OracleRowLike]) -> list[AssetPrice]:
        prices: list[AssetPrice] = []
        for row in rows:
            address = row.asset.lower()
            symbol = self.symbol_table.get(address, UNKNOWN_SYMBOL)
            if symbol == UNKNOWN_SYMBOL:
                logger.warning("Oracle asset {} is not in the symbol table", address)
            decimals = row.asset_decimals
            if decimals is None:
                decimals = self.asset_decimals.get(address, self.base_decimals)
            prices.append(
                AssetPrice(
                    asset_id=address,
                    symbol=symbol,
                    decimals=decimals,
                    price=row.price / 10**row.oracle_decimals,
                    source=PriceSource.ORACLE,
                )
            )
        return prices


__all__ = [
    "ORACLE_SOURCE",
    "REFERENCE_SOURCE",
    "PriceSnapshotBuilder",
]
