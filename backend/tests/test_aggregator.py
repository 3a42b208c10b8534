from __future__ import annotations

import random
from datetime import date, datetime, timezone

from app.domain import EventKind, ProtocolReads, VaultTokenBalance
from app.services.aggregator import (
    CumulativeState,
    MetricsAggregator,
    adapter_name,
    aggregate,
    fold_events,
    utc_day,
)

from conftest import ALICE, BOB, DAY, GHO, JAN_15, USDC

NOW = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)


def test_zero_events_produce_zero_totals(test_settings, make_prices):
    snapshot = aggregate([], make_prices(eth=3000.0), settings=test_settings, now=NOW)

    assert snapshot.total_swap_volume == "0"
    assert snapshot.total_swap_volume_usd == "0"
    assert snapshot.total_iou_minted == "0"
    assert snapshot.total_iou_burned == "0"
    assert snapshot.total_value_locked_usd == "0"
    assert snapshot.protocol_fees_usd == "0"
    assert snapshot.daily_swap_volume == []
    assert snapshot.daily_iou_minted == []
    assert snapshot.active_users == 0
    assert snapshot.total_transactions == 0


def test_swap_volume_is_order_independent(make_swap):
    events = [make_swap(amount) for amount in (5, 17, 10**20, 3, 999)]
    shuffled = list(events)
    random.Random(7).shuffle(shuffled)

    assert fold_events(events).swap_volume == fold_events(shuffled).swap_volume == sum(
        (5, 17, 10**20, 3, 999)
    )


def test_daily_buckets_partition_total(make_swap):
    events = [
        make_swap(100, timestamp=JAN_15),
        make_swap(250, timestamp=JAN_15 + DAY - 1, block=2_000),
        make_swap(7, timestamp=JAN_15 + DAY),
        make_swap(10**19 + 1, timestamp=JAN_15 - 1),
    ]

    state = fold_events(events)

    assert sum(state.daily_swap_volume.values()) == state.swap_volume
    assert state.daily_swap_volume[date(2024, 1, 15)] == 350


def test_same_day_swaps_sum_into_one_bucket(test_settings, make_swap, make_prices):
    events = [
        make_swap(100, timestamp=JAN_15 + 60, block=10),
        make_swap(250, timestamp=JAN_15 + 3_600, block=20),
    ]

    snapshot = aggregate(events, make_prices(), settings=test_settings, now=NOW)

    assert len(snapshot.daily_swap_volume) == 1
    bucket = snapshot.daily_swap_volume[0]
    assert bucket.date == date(2024, 1, 15)
    assert bucket.native == "350"


def test_daily_series_sorted_by_date(test_settings, make_swap, make_transfer, make_prices):
    events = [
        make_swap(1, timestamp=JAN_15 + 2 * DAY),
        make_swap(1, timestamp=JAN_15),
        make_transfer(EventKind.MINT, 5, timestamp=JAN_15 + DAY),
        make_transfer(EventKind.MINT, 5, timestamp=JAN_15 - DAY),
    ]

    snapshot = aggregate(events, make_prices(), settings=test_settings, now=NOW)

    swap_dates = [bucket.date for bucket in snapshot.daily_swap_volume]
    mint_dates = [bucket.date for bucket in snapshot.daily_iou_minted]
    assert swap_dates == sorted(swap_dates)
    assert mint_dates == [date(2024, 1, 14), date(2024, 1, 16)]


def test_mints_and_burns_are_independent_totals(test_settings, make_transfer, make_prices):
    events = [
        make_transfer(EventKind.MINT, 2_500_000),
        make_transfer(EventKind.MINT, 500_000),
        make_transfer(EventKind.BURN, 4_000_000),
    ]
    reads = ProtocolReads(last_block=900, iou_total_supply=7_250_000)

    snapshot = aggregate(events, make_prices(), reads=reads, settings=test_settings, now=NOW)

    assert snapshot.total_iou_minted == "3"
    assert snapshot.total_iou_burned == "4"
    assert snapshot.iou_outstanding_supply == "7.25"


def test_usd_conversion_uses_base_asset_price(test_settings, make_swap, make_prices):
    events = [make_swap(3 * 10**18, iou_out=200 * 10**18)]

    priced = aggregate(events, make_prices(eth=2000.0), settings=test_settings, now=NOW)
    unpriced = aggregate(events, make_prices(eth=None), settings=test_settings, now=NOW)

    assert priced.total_swap_volume == "3"
    assert priced.total_swap_volume_usd == "6000.00"
    assert priced.protocol_fees_usd == "4000.00"
    assert priced.base_asset_price == 2000.0
    assert unpriced.total_swap_volume_usd == "0"
    assert unpriced.protocol_fees_usd == "0"


def test_active_users_merge_receivers_and_depositors(test_settings, make_swap, make_deposit, make_prices):
    events = [
        make_swap(1, receiver=ALICE),
        make_swap(1, receiver=ALICE.upper().replace("0X", "0x")),
        make_deposit(BOB),
        make_deposit(ALICE),
    ]

    snapshot = aggregate(events, make_prices(), settings=test_settings, now=NOW)

    assert snapshot.active_users == 2
    assert snapshot.total_transactions == 2


def test_vault_count_and_rebalances(test_settings, make_vault_created, make_prices):
    events = [make_vault_created("0x" + "1" * 40), make_vault_created("0x" + "2" * 40)]
    reads = ProtocolReads(last_block=10, rebalance_count=4)

    snapshot = aggregate(events, make_prices(), reads=reads, settings=test_settings, now=NOW)

    assert snapshot.number_of_vaults == 2
    assert snapshot.number_of_rebalances == 4
    assert snapshot.last_block == 10


def test_refeeding_events_never_double_counts(make_swap, make_transfer):
    first = [make_swap(100), make_transfer(EventKind.MINT, 10)]
    second = [*first, make_swap(50)]

    state = fold_events(first)
    merged = fold_events(second, state)

    assert state.swap_volume == 100
    assert merged.swap_volume == 150
    assert merged.minted == 10
    assert merged.swap_count == 2


def test_fold_does_not_mutate_previous_state(make_swap):
    previous = CumulativeState()
    fold_events([make_swap(10)], previous)

    assert previous.swap_volume == 0
    assert previous.seen == set()


def test_tvl_replay_is_labelled_estimate_and_clamped(test_settings, make_swap, make_prices):
    events = [
        make_swap(5 * 10**18, from_asset=GHO, to_asset=USDC, amount_out=9_000_000, timestamp=JAN_15),
        make_swap(2_000_000, from_asset=USDC, to_asset=GHO, amount_out=10**18, timestamp=JAN_15 + 10),
    ]

    snapshot = aggregate(events, make_prices(gho=0.99, usdc=1.0), settings=test_settings, now=NOW)

    assert snapshot.tvl_source == "swap_replay"
    assert snapshot.tvl_is_estimate is True
    by_symbol = {component.symbol: component for component in snapshot.tvl_composition}
    assert by_symbol["GHO"].amount == "4"
    assert by_symbol["GHO"].amount_usd == "3.96"
    # USDC replays to -7; clamped for display.
    assert by_symbol["USDC"].amount == "0"
    assert snapshot.total_value_locked_usd == "3.96"


def test_tvl_prefers_analytics_breakdown(test_settings, make_swap, make_prices):
    reads = ProtocolReads(
        last_block=1,
        vault_total_assets=1_000_000,
        vault_tokens=[
            VaultTokenBalance(USDC, "USDC", "USD Coin", 6, 2_500_000, "0x" + "0" * 40),
            VaultTokenBalance(GHO, "GHO", "Gho Token", 18, 3 * 10**18, "0x" + "a" * 40),
        ],
    )

    snapshot = aggregate(
        [make_swap(10**18)], make_prices(gho=None), reads=reads, settings=test_settings, now=NOW
    )

    assert snapshot.tvl_source == "analytics"
    assert snapshot.tvl_is_estimate is False
    assert snapshot.total_value_locked_usd == "5.50"
    assert [allocation.adapter_name for allocation in snapshot.token_allocations] == [
        "Vault (Direct)",
        "Aave V3 Adapter",
    ]
    # No GHO oracle price: stable fallback of 1.0.
    assert snapshot.token_allocations[1].balance_usd == "3.00"
    point = snapshot.tvl_history[0]
    assert point.date == date(2024, 1, 20)
    assert point.by_symbol == {"USDC": "2.50", "GHO": "3.00"}


def test_tvl_falls_back_to_total_assets_read(test_settings, make_prices):
    reads = ProtocolReads(last_block=1, vault_total_assets=12_340_000)

    snapshot = aggregate([], make_prices(), reads=reads, settings=test_settings, now=NOW)

    assert snapshot.tvl_source == "contract"
    assert snapshot.tvl_is_estimate is False
    assert snapshot.vault_total_assets == "12.34"
    assert snapshot.total_value_locked_usd == "12.34"


def test_reserve_balances_and_volume_by_asset(test_settings, make_swap, make_prices):
    reads = ProtocolReads(last_block=1, reserve_balances={USDC: 4_000_000, GHO: 2 * 10**18})
    events = [make_swap(10**18, from_asset=GHO), make_swap(3_000_000, from_asset=USDC)]

    snapshot = MetricsAggregator(test_settings).build(
        fold_events(events), make_prices(gho=0.5), reads, now=NOW
    )

    reserves = {reserve.symbol: reserve for reserve in snapshot.reserve_balances}
    assert reserves["USDC"].balance == "4"
    assert reserves["GHO"].balance_usd == "1.00"
    volumes = {volume.symbol: volume for volume in snapshot.swap_volume_by_asset}
    assert volumes["GHO"].amount == "1"
    assert volumes["GHO"].amount_usd == "0.50"
    assert volumes["USDC"].amount == "3"


def test_degraded_sources_and_oracle_prices_are_echoed(test_settings, make_prices):
    reads = ProtocolReads(last_block=5, degraded_sources=["swaps", "reference_price"])

    snapshot = aggregate([], make_prices(), reads=reads, settings=test_settings, now=NOW)

    assert snapshot.degraded_sources == ["swaps", "reference_price"]
    assert {price.symbol for price in snapshot.oracle_prices} == {"USDC", "GHO"}


def test_helpers():
    assert utc_day(0) == date(1970, 1, 1)
    assert utc_day(JAN_15 + DAY - 1) == date(2024, 1, 15)
    assert adapter_name("0x" + "0" * 40) == "Vault (Direct)"
    assert adapter_name("0x" + "b" * 40) == "Aave V3 Adapter"
