"""Fold normalized protocol events into the dashboard metrics snapshot."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from loguru import logger

from app.core.config import ZERO_ADDRESS, Settings, get_settings
from app.core.units import format_units, sum_usd, usd_value
from app.domain import (
    UNKNOWN_SYMBOL,
    DepositFields,
    DomainEvent,
    EventKind,
    PriceSnapshot,
    ProtocolReads,
    SwapFields,
    TransferFields,
    VaultTokenBalance,
)
from app.schemas import (
    AssetVolume,
    DailyValue,
    MetricsSnapshot,
    OraclePrice,
    ReserveBalance,
    TokenAllocation,
    TvlComponent,
    TvlDataPoint,
)

SECONDS_PER_DAY = 86_400
_EPOCH = date(1970, 1, 1)

DIRECT_ADAPTER_NAME = "Vault (Direct)"
LENDING_ADAPTER_NAME = "Aave V3 Adapter"


def utc_day(timestamp_unix: int) -> date:
    return _EPOCH + timedelta(days=timestamp_unix // SECONDS_PER_DAY)


def adapter_name(adapter: str) -> str:
    return DIRECT_ADAPTER_NAME if adapter.lower() == ZERO_ADDRESS else LENDING_ADAPTER_NAME


@dataclass(slots=True)
class CumulativeState:
    """Running native-unit totals carried between cycles.

    ``seen`` holds the ``(tx_hash, log_index)`` of every folded event so that
    re-feeding an overlapping block range never double counts.
    """

    last_block: int | None = None
    seen: set[tuple[str, int]] = field(default_factory=set)
    swap_count: int = 0
    swap_volume: int = 0
    swap_volume_by_asset: dict[str, int] = field(default_factory=dict)
    iou_from_swaps: int = 0
    minted: int = 0
    burned: int = 0
    daily_swap_volume: dict[date, int] = field(default_factory=dict)
    daily_iou_minted: dict[date, int] = field(default_factory=dict)
    users: set[str] = field(default_factory=set)
    vault_count: int = 0
    replay_balances: dict[str, int] = field(default_factory=dict)

    def copy(self) -> "CumulativeState":
        return CumulativeState(
            last_block=self.last_block,
            seen=set(self.seen),
            swap_count=self.swap_count,
            swap_volume=self.swap_volume,
            swap_volume_by_asset=dict(self.swap_volume_by_asset),
            iou_from_swaps=self.iou_from_swaps,
            minted=self.minted,
            burned=self.burned,
            daily_swap_volume=dict(self.daily_swap_volume),
            daily_iou_minted=dict(self.daily_iou_minted),
            users=set(self.users),
            vault_count=self.vault_count,
            replay_balances=dict(self.replay_balances),
        )


# ----------------------------------------------------------------------
# Folding


def fold_events(
    events: Iterable[DomainEvent], previous: CumulativeState | None = None
) -> CumulativeState:
    """Return a new state with every unseen event folded in; ``previous`` is untouched."""

    state = previous.copy() if previous is not None else CumulativeState()

    by_kind: dict[EventKind, list[DomainEvent]] = defaultdict(list)
    for event in events:
        if event.key in state.seen:
            continue
        state.seen.add(event.key)
        by_kind[event.kind].append(event)

    swaps = sorted(
        by_kind[EventKind.SWAP],
        key=lambda event: (event.timestamp_unix, event.block_number, event.log_index),
    )
    for event in swaps:
        _fold_swap(state, event)
    for event in by_kind[EventKind.MINT]:
        fields: TransferFields = event.fields  # type: ignore[assignment]
        state.minted += fields.amount
        day = utc_day(event.timestamp_unix)
        state.daily_iou_minted[day] = state.daily_iou_minted.get(day, 0) + fields.amount
    for event in by_kind[EventKind.BURN]:
        fields = event.fields  # type: ignore[assignment]
        state.burned += fields.amount
    for event in by_kind[EventKind.DEPOSIT]:
        deposit: DepositFields = event.fields  # type: ignore[assignment]
        state.users.add(deposit.sender.lower())
    state.vault_count += len(by_kind[EventKind.VAULT_CREATED])

    return state


def _fold_swap(state: CumulativeState, event: DomainEvent) -> None:
    swap: SwapFields = event.fields  # type: ignore[assignment]
    from_asset = swap.from_asset.lower()
    to_asset = swap.to_asset.lower()

    state.swap_count += 1
    state.swap_volume += swap.amount_in
    state.swap_volume_by_asset[from_asset] = (
        state.swap_volume_by_asset.get(from_asset, 0) + swap.amount_in
    )
    state.iou_from_swaps += swap.iou_out
    day = utc_day(event.timestamp_unix)
    state.daily_swap_volume[day] = state.daily_swap_volume.get(day, 0) + swap.amount_in
    state.users.add(swap.receiver.lower())

    # Signed running balance; clamped only when presented.
    state.replay_balances[from_asset] = state.replay_balances.get(from_asset, 0) + swap.amount_in
    state.replay_balances[to_asset] = state.replay_balances.get(to_asset, 0) - swap.amount_out


# ----------------------------------------------------------------------
# Presentation


class MetricsAggregator:
    """Turn a cumulative state plus one price snapshot into a ``MetricsSnapshot``."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def build(
        self,
        state: CumulativeState,
        prices: PriceSnapshot,
        reads: ProtocolReads | None = None,
        *,
        now: datetime | None = None,
    ) -> MetricsSnapshot:
        settings = self.settings
        generated_at = now or datetime.now(timezone.utc)
        base_price = prices.price_of(settings.base_asset_symbol)
        base_decimals = settings.base_asset_decimals
        iou_decimals = settings.iou_decimals

        total_volume = format_units(state.swap_volume, base_decimals)
        fee_amount = format_units(
            state.iou_from_swaps // settings.protocol_fee_divisor, base_decimals
        )

        allocations = self._token_allocations(reads, prices)
        components, tvl_source, estimate = self._tvl_components(state, prices, reads, allocations)
        tvl_total = sum_usd([component.amount_usd for component in components])

        vault_total_assets = None
        if reads is not None and reads.vault_total_assets is not None:
            vault_total_assets = format_units(
                reads.vault_total_assets, self._vault_asset_decimals()
            )

        snapshot = MetricsSnapshot(
            generated_at=generated_at,
            last_block=reads.last_block if reads is not None else state.last_block,
            total_swap_volume=total_volume,
            total_swap_volume_usd=usd_value(total_volume, base_price),
            swap_volume_by_asset=self._volume_by_asset(state, prices),
            total_iou_minted=format_units(state.minted, iou_decimals),
            total_iou_burned=format_units(state.burned, iou_decimals),
            iou_outstanding_supply=(
                format_units(reads.iou_total_supply, iou_decimals)
                if reads is not None and reads.iou_total_supply is not None
                else "0"
            ),
            total_value_locked_usd=tvl_total,
            tvl_source=tvl_source,
            tvl_is_estimate=estimate,
            tvl_composition=components,
            tvl_history=[
                TvlDataPoint(
                    date=generated_at.astimezone(timezone.utc).date(),
                    by_symbol={component.symbol: component.amount_usd for component in components},
                    total_usd=tvl_total,
                )
            ],
            vault_total_assets=vault_total_assets,
            reserve_balances=self._reserve_balances(reads, prices),
            token_allocations=allocations,
            protocol_fees_usd=usd_value(fee_amount, base_price),
            active_users=len(state.users),
            number_of_vaults=state.vault_count,
            number_of_rebalances=reads.rebalance_count if reads is not None else 0,
            total_transactions=state.swap_count,
            daily_swap_volume=[
                DailyValue(
                    date=day,
                    native=str(native),
                    amount=format_units(native, base_decimals),
                    amount_usd=usd_value(format_units(native, base_decimals), base_price),
                )
                for day, native in sorted(state.daily_swap_volume.items())
            ],
            daily_iou_minted=[
                DailyValue(date=day, native=str(native), amount=format_units(native, iou_decimals))
                for day, native in sorted(state.daily_iou_minted.items())
            ],
            oracle_prices=[
                OraclePrice(
                    asset=entry.asset_id,
                    symbol=entry.symbol,
                    decimals=entry.decimals,
                    price=entry.price,
                    source=entry.source.value,
                )
                for entry in prices.entries
            ],
            base_asset_price=base_price,
            degraded_sources=list(reads.degraded_sources) if reads is not None else [],
        )
        logger.debug(
            "Built metrics snapshot: swaps={} tvl={} ({}) users={}",
            state.swap_count,
            tvl_total,
            tvl_source,
            snapshot.active_users,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Section helpers

    def _describe(self, address: str) -> tuple[str, int, bool]:
        asset = self.settings.tracked_assets.get(address.lower())
        if asset is None:
            return UNKNOWN_SYMBOL, self.settings.base_asset_decimals, False
        return asset.symbol, asset.decimals, True

    def _stable_price(self, prices: PriceSnapshot, symbol: str) -> float:
        price = prices.price_of(symbol)
        return price if price is not None else self.settings.stable_fallback_price

    def _vault_asset_decimals(self) -> int:
        asset = self.settings.asset_for_symbol(self.settings.vault_asset_symbol)
        return asset.decimals if asset is not None else self.settings.iou_decimals

    def _volume_by_asset(self, state: CumulativeState, prices: PriceSnapshot) -> list[AssetVolume]:
        volumes: list[AssetVolume] = []
        for address, native in sorted(state.swap_volume_by_asset.items()):
            symbol, decimals, known = self._describe(address)
            amount = format_units(native, decimals)
            volumes.append(
                AssetVolume(
                    asset=address,
                    symbol=symbol,
                    native=str(native),
                    amount=amount,
                    amount_usd=usd_value(amount, prices.price_of(symbol) if known else None),
                )
            )
        return volumes

    def _reserve_balances(
        self, reads: ProtocolReads | None, prices: PriceSnapshot
    ) -> list[ReserveBalance]:
        if reads is None:
            return []
        balances: list[ReserveBalance] = []
        for address, native in reads.reserve_balances.items():
            symbol, decimals, _ = self._describe(address)
            amount = format_units(native, decimals)
            balances.append(
                ReserveBalance(
                    address=address,
                    symbol=symbol,
                    balance=amount,
                    balance_usd=usd_value(amount, self._stable_price(prices, symbol)),
                )
            )
        return balances

    def _token_allocations(
        self, reads: ProtocolReads | None, prices: PriceSnapshot
    ) -> list[TokenAllocation]:
        if reads is None or not reads.vault_tokens:
            return []
        allocations: list[TokenAllocation] = []
        for token in reads.vault_tokens:
            amount = format_units(token.balance, token.decimals)
            allocations.append(
                TokenAllocation(
                    address=token.address,
                    symbol=token.symbol,
                    name=token.name,
                    decimals=token.decimals,
                    balance=amount,
                    balance_usd=usd_value(amount, self._stable_price(prices, token.symbol)),
                    adapter=token.adapter,
                    adapter_name=adapter_name(token.adapter),
                )
            )
        return allocations

    def _tvl_components(
        self,
        state: CumulativeState,
        prices: PriceSnapshot,
        reads: ProtocolReads | None,
        allocations: list[TokenAllocation],
    ) -> tuple[list[TvlComponent], str, bool]:
        """Pick the TVL source: analytics breakdown, then totalAssets(), then swap replay."""

        if allocations and reads is not None and reads.vault_tokens:
            per_symbol: dict[str, list[VaultTokenBalance]] = defaultdict(list)
            for token in reads.vault_tokens:
                per_symbol[token.symbol].append(token)
            usd_by_symbol: dict[str, list[str]] = defaultdict(list)
            for allocation in allocations:
                usd_by_symbol[allocation.symbol].append(allocation.balance_usd)
            components = [
                TvlComponent(
                    symbol=symbol,
                    amount=_sum_balances(tokens),
                    amount_usd=sum_usd(usd_by_symbol[symbol]),
                )
                for symbol, tokens in per_symbol.items()
            ]
            return components, "analytics", False

        if reads is not None and reads.vault_total_assets is not None:
            symbol = self.settings.vault_asset_symbol
            amount = format_units(reads.vault_total_assets, self._vault_asset_decimals())
            component = TvlComponent(
                symbol=symbol,
                amount=amount,
                amount_usd=usd_value(amount, self._stable_price(prices, symbol)),
            )
            return [component], "contract", False

        components = []
        for address, balance in sorted(state.replay_balances.items()):
            symbol, decimals, known = self._describe(address)
            amount = format_units(max(balance, 0), decimals)
            components.append(
                TvlComponent(
                    symbol=symbol,
                    amount=amount,
                    amount_usd=usd_value(amount, prices.price_of(symbol) if known else None),
                )
            )
        return components, "swap_replay", True


def _sum_balances(tokens: list[VaultTokenBalance]) -> str:
    decimals = max(token.decimals for token in tokens)
    total = sum(token.balance * 10 ** (decimals - token.decimals) for token in tokens)
    return format_units(total, decimals)


def aggregate(
    events: Iterable[DomainEvent],
    price_snapshot: PriceSnapshot,
    previous_state: CumulativeState | None = None,
    *,
    reads: ProtocolReads | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> MetricsSnapshot:
    state = fold_events(events, previous_state)
    if reads is not None:
        state.last_block = reads.last_block
    return MetricsAggregator(settings).build(state, price_snapshot, reads, now=now)


__all__ = [
    "CumulativeState",
    "MetricsAggregator",
    "adapter_name",
    "aggregate",
    "fold_events",
    "utc_day",
]
