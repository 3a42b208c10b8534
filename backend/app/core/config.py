import json
from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class TrackedAsset(BaseModel):
    """Static metadata for a token the dashboard resolves prices for."""

    symbol: str
    decimals: int = Field(ge=0, le=36)


def _default_tracked_assets() -> dict[str, TrackedAsset]:
    return {
        "0x75faf114eafb1bdbe2f0316df893fd58ce46aa4d": TrackedAsset(symbol="USDC", decimals=6),
        "0x69cac783c212bfae06e3c1a9a2e6ae6b17ba0614": TrackedAsset(symbol="GHO", decimals=18),
    }


def _normalize_address(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Contract addresses must be strings")
    candidate = value.strip().lower()
    if len(candidate) != 42 or not candidate.startswith("0x"):
        raise ValueError(f"Invalid contract address: {value!r}")
    try:
        int(candidate[2:], 16)
    except ValueError as exc:
        raise ValueError(f"Invalid contract address: {value!r}") from exc
    return candidate


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: str = Field(
        default="sqlite:///../data/clear_metrics.db",
        description="SQLAlchemy compatible database URL holding the key-value store",
    )
    rpc_url: AnyUrl = Field(
        default="https://sepolia-rollup.arbitrum.io/rpc",
        description="JSON-RPC endpoint used for log queries and contract reads",
    )
    chain_id: int = Field(default=421614, description="Chain the contracts are deployed on")
    analytics_url: AnyUrl = Field(
        default="https://api-arb-sepolia-clear.trevee.xyz/graphql",
        description="GraphQL analytics endpoint (oracles, vaults, rebalances, statuses)",
    )
    reference_price_url: AnyUrl = Field(
        default="https://api.coingecko.com/api/v3",
        description="Base URL of the external reference price API",
    )
    factory_address: str = Field(
        default="0x514Ed620137c62484F426128317e5AA86edd7475", validate_default=True
    )
    vault_address: str = Field(
        default="0x343EfFc28C20821a65115a17032aCA7CA43F6102", validate_default=True
    )
    iou_address: str = Field(
        default="0x3bA352df84613877fc30AcC0303d1b5C9CF7Da4d", validate_default=True
    )
    start_block: int = Field(
        default=100_000_000,
        description="First block scanned for protocol events (deployment block or earlier)",
        ge=0,
    )
    log_chunk_size: int = Field(
        default=500_000,
        description="Maximum number of blocks requested per eth_getLogs call",
        ge=1,
    )
    rpc_max_concurrency: int = Field(
        default=8,
        description="Upper bound on concurrent JSON-RPC requests issued within one cycle",
        ge=1,
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every outbound HTTP call",
        gt=0,
    )
    refresh_interval_seconds: float = Field(
        default=30.0,
        description="Wall-clock interval between aggregation cycles",
        gt=0,
    )
    background_refresh: bool = Field(
        default=True,
        description="Run the cycle scheduler inside the API process",
    )
    default_depeg_threshold_bps: int = Field(
        default=9995,
        description="Depeg threshold used when the analytics status query is unavailable",
        ge=1,
        le=10_000,
    )
    route_event_log_key: str = Field(
        default="clear_route_events",
        description="Key-value store key holding the persisted route open/close log",
    )
    route_event_retention_days: int | None = Field(
        default=None,
        description="Prune closed route intervals older than this many days (unset keeps all)",
        ge=1,
    )
    tracked_assets: dict[str, TrackedAsset] = Field(
        default_factory=_default_tracked_assets,
        description="Oracle asset address to symbol/decimals table",
    )
    base_asset_symbol: str = Field(
        default="ETH",
        description="Symbol of the network gas asset priced by the external reference feed",
    )
    base_asset_reference_id: str = Field(
        default="ethereum",
        description="Identifier of the base asset on the reference price API",
    )
    base_asset_decimals: int = Field(default=18, ge=0, le=36)
    iou_decimals: int = Field(default=6, ge=0, le=36)
    protocol_fee_divisor: int = Field(
        default=100,
        description="Fee estimate is the IOU issued by swaps divided by this value",
        ge=1,
    )
    vault_asset_symbol: str = Field(
        default="USDC",
        description="Tracked asset the vault's totalAssets() is denominated in",
    )
    stable_fallback_price: float = Field(
        default=1.0,
        description="Price assumed for reserve/allocation tokens with no oracle price",
        ge=0,
    )

    @field_validator("factory_address", "vault_address", "iou_address", mode="before")
    @classmethod
    def _validate_address(cls, value: Any) -> str:
        return _normalize_address(value)

    @field_validator("tracked_assets", mode="before")
    @classmethod
    def _parse_tracked_assets(cls, value: Any) -> Any:
        if value in (None, ""):
            return _default_tracked_assets()
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("TRACKED_ASSETS must be a JSON object") from exc
        if not isinstance(value, dict):
            raise ValueError("TRACKED_ASSETS must map addresses to {symbol, decimals}")
        return {_normalize_address(address): entry for address, entry in value.items()}

    @field_validator("base_asset_symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        candidate = value.strip().upper()
        if not candidate:
            raise ValueError("BASE_ASSET_SYMBOL must not be empty")
        return candidate

    @property
    def symbol_table(self) -> dict[str, str]:
        return {address: asset.symbol for address, asset in self.tracked_assets.items()}

    @property
    def tracked_symbols(self) -> tuple[str, ...]:
        return tuple(asset.symbol for asset in self.tracked_assets.values())

    def asset_for_symbol(self, symbol: str) -> TrackedAsset | None:
        for asset in self.tracked_assets.values():
            if asset.symbol == symbol:
                return asset
        return None


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
