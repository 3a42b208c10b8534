from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


TvlSource = Literal["analytics", "contract", "swap_replay"]


class DailyValue(BaseModel):
    """One calendar-day bucket; ``native`` keeps the exact base-unit sum."""

    date: date
    native: str
    amount: str
    amount_usd: str | None = None


class AssetVolume(BaseModel):
    asset: str
    symbol: str
    native: str
    amount: str
    amount_usd: str


class TvlComponent(BaseModel):
    symbol: str
    amount: str
    amount_usd: str


class TvlDataPoint(BaseModel):
    date: date
    by_symbol: dict[str, str] = Field(default_factory=dict)
    total_usd: str


class ReserveBalance(BaseModel):
    address: str
    symbol: str
    balance: str
    balance_usd: str


class TokenAllocation(BaseModel):
    address: str
    symbol: str
    name: str
    decimals: int
    balance: str
    balance_usd: str
    adapter: str
    adapter_name: str


class OraclePrice(BaseModel):
    asset: str
    symbol: str
    decimals: int
    price: float
    source: str


class MetricsSnapshot(BaseModel):
    generated_at: datetime
    last_block: int | None = None

    total_swap_volume: str = "0"
    total_swap_volume_usd: str = "0"
    swap_volume_by_asset: list[AssetVolume] = Field(default_factory=list)
    total_iou_minted: str = "0"
    total_iou_burned: str = "0"
    iou_outstanding_supply: str = "0"
    total_value_locked_usd: str = "0"
    tvl_source: TvlSource = "swap_replay"
    tvl_is_estimate: bool = True
    tvl_composition: list[TvlComponent] = Field(default_factory=list)
    tvl_history: list[TvlDataPoint] = Field(default_factory=list)
    vault_total_assets: str | None = None
    reserve_balances: list[ReserveBalance] = Field(default_factory=list)
    token_allocations: list[TokenAllocation] = Field(default_factory=list)
    protocol_fees_usd: str = "0"

    active_users: int = 0
    number_of_vaults: int = 0
    number_of_rebalances: int = 0
    total_transactions: int = 0

    daily_swap_volume: list[DailyValue] = Field(default_factory=list)
    daily_iou_minted: list[DailyValue] = Field(default_factory=list)

    oracle_prices: list[OraclePrice] = Field(default_factory=list)
    base_asset_price: float | None = None
    degraded_sources: list[str] = Field(default_factory=list)


class RouteStatusOut(BaseModel):
    route: str
    from_symbol: str
    to_symbol: str
    from_asset: str
    to_asset: str
    is_open: bool
    depeg_percent: float
    threshold_percent: float


class RouteOpenEventOut(BaseModel):
    id: str
    route: str
    opened_at_ms: int
    closed_at_ms: int | None = None
    duration_ms: int | None = None


class RouteStatusMetrics(BaseModel):
    routes: list[RouteStatusOut] = Field(default_factory=list)
    depeg_threshold_bps: int
    depeg_threshold_percent: float
    any_route_open: bool = False
    route_open_events: list[RouteOpenEventOut] = Field(default_factory=list)
    total_times_opened: int = 0
    total_open_duration_ms: int = 0
    average_open_duration_ms: float | None = None


class DashboardMetricsResponse(BaseModel):
    stale: bool
    updated_at: datetime | None = None
    metrics: MetricsSnapshot | None = None


class DashboardRoutesResponse(BaseModel):
    stale: bool
    updated_at: datetime | None = None
    routes: RouteStatusMetrics | None = None


class RefreshResponse(BaseModel):
    ran: bool
    stale: bool
    updated_at: datetime | None = None
    detail: str | None = None
