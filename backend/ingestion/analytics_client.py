from __future__ import annotations

from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.core.config import settings
from app.errors import MalformedExternalResponse, SourceUnavailable

ORACLES_QUERY = "query { clearOracles { asset assetDecimals oracleDecimals price } }"
VAULTS_QUERY = (
    "query { clearVaults { totalAssets tokens { address name symbol decimals balance adapter } } }"
)
REBALANCES_QUERY = "query { clearLiquidityRebalances { id } }"
STATUSES_QUERY = "query { clearStatuses { swapDepegTreshold } }"


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class OracleRow(_Row):
    asset: str
    asset_decimals: int | None = Field(default=None, alias="assetDecimals")
    oracle_decimals: int = Field(alias="oracleDecimals", ge=0, le=77)
    price: int

    @field_validator("asset")
    @classmethod
    def _lower_address(cls, value: str) -> str:
        return value.lower()


class VaultTokenRow(_Row):
    address: str
    name: str = ""
    symbol: str
    decimals: int = Field(ge=0, le=77)
    balance: int
    adapter: str

    @field_validator("address", "adapter")
    @classmethod
    def _lower_address(cls, value: str) -> str:
        return value.lower()


class VaultRow(_Row):
    total_assets: int | None = Field(default=None, alias="totalAssets")
    tokens: list[VaultTokenRow] = Field(default_factory=list)


class RebalanceRow(_Row):
    id: str


class StatusRow(_Row):
    swap_depeg_threshold: int | None = Field(default=None, alias="swapDepegTreshold")


class _OraclesData(_Row):
    clear_oracles: list[OracleRow] | None = Field(default=None, alias="clearOracles")


class _VaultsData(_Row):
    clear_vaults: list[VaultRow] | None = Field(default=None, alias="clearVaults")


class _RebalancesData(_Row):
    clear_liquidity_rebalances: list[RebalanceRow] | None = Field(
        default=None, alias="clearLiquidityRebalances"
    )


class _StatusesData(_Row):
    clear_statuses: list[StatusRow] | None = Field(default=None, alias="clearStatuses")


_DataT = TypeVar("_DataT", bound=BaseModel)


class AnalyticsClient:
    """GraphQL reader for the protocol analytics indexer."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.analytics_url)
        self.timeout = timeout or settings.http_timeout_seconds
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def _query(self, query: str, model: type[_DataT]) -> _DataT:
        logger.debug("Analytics POST {} query={}", self.base_url, query)
        try:
            response = await self.client.post(self.base_url, json={"query": query})
            response.raise_for_status()
            payload: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailable(f"Analytics query failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise MalformedExternalResponse("Analytics response is not a JSON object")
        if payload.get("errors"):
            raise MalformedExternalResponse(f"Analytics query returned errors: {payload['errors']}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedExternalResponse("Analytics response has no data object")
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise MalformedExternalResponse(f"Unexpected analytics payload: {exc}") from exc

    async def fetch_oracle_rows(self) -> list[OracleRow]:
        data = await self._query(ORACLES_QUERY, _OraclesData)
        return list(data.clear_oracles or [])

    async def fetch_vault_composition(self) -> VaultRow | None:
        data = await self._query(VAULTS_QUERY, _VaultsData)
        vaults = data.clear_vaults or []
        return vaults[0] if vaults else None

    async def fetch_rebalance_count(self) -> int:
        data = await self._query(REBALANCES_QUERY, _RebalancesData)
        return len(data.clear_liquidity_rebalances or [])

    async def fetch_depeg_threshold(self) -> int | None:
        data = await self._query(STATUSES_QUERY, _StatusesData)
        statuses = data.clear_statuses or []
        return statuses[0].swap_depeg_threshold if statuses else None

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "AnalyticsClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


__all__ = [
    "AnalyticsClient",
    "OracleRow",
    "RebalanceRow",
    "StatusRow",
    "VaultRow",
    "VaultTokenRow",
]
