"""One aggregation cycle: query every source, aggregate, and track routes."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import PriceSnapshot, ProtocolReads, VaultTokenBalance
from app.errors import BlockHeightUnavailable, EngineError
from app.repositories.route_event_repository import RouteEventStore, SqlRouteEventStore
from app.schemas import MetricsSnapshot, RouteStatusMetrics
from app.services.aggregator import CumulativeState, MetricsAggregator, fold_events
from app.services.price_snapshot import PriceSnapshotBuilder
from app.services.route_state import RouteStateTracker
from ingestion.analytics_client import AnalyticsClient
from ingestion.contracts import BALANCE_OF, TOTAL_ASSETS, TOTAL_SUPPLY
from ingestion.price_client import ReferencePriceClient
from ingestion.rpc_client import ChainClient
from ingestion.service import EventCollector

_T = TypeVar("_T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class DashboardState:
    """Last published results; kept when a cycle is abandoned so consumers see stale data, not blanks."""

    metrics: MetricsSnapshot | None = None
    routes: RouteStatusMetrics | None = None
    stale: bool = True
    updated_at: datetime | None = None
    last_error: str | None = None
    completed_cycles: int = 0
    failed_cycles: int = 0


@dataclass(slots=True)
class CycleResult:
    metrics: MetricsSnapshot
    routes: RouteStatusMetrics
    prices: PriceSnapshot
    duration_seconds: float


class MetricsService:
    def __init__(
        self,
        *,
        chain: ChainClient,
        analytics: AnalyticsClient,
        reference: ReferencePriceClient,
        route_tracker: RouteStateTracker,
        settings: Settings | None = None,
        collector: EventCollector | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.chain = chain
        self.analytics = analytics
        self.reference = reference
        self.route_tracker = route_tracker
        self.collector = collector or EventCollector(chain, settings=self.settings)
        self.price_builder = PriceSnapshotBuilder.from_settings(analytics, reference, self.settings)
        self.aggregator = MetricsAggregator(self.settings)
        self.clock = clock
        self.state = DashboardState()
        self.cumulative: CumulativeState | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, *, store: RouteEventStore | None = None
    ) -> "MetricsService":
        from app.db import SessionLocal

        settings = settings or get_settings()
        chain = ChainClient(
            rpc_url=str(settings.rpc_url),
            timeout=settings.http_timeout_seconds,
            max_concurrency=settings.rpc_max_concurrency,
            log_chunk_size=settings.log_chunk_size,
        )
        analytics = AnalyticsClient(
            base_url=str(settings.analytics_url), timeout=settings.http_timeout_seconds
        )
        reference = ReferencePriceClient(
            base_url=str(settings.reference_price_url), timeout=settings.http_timeout_seconds
        )
        store = store or SqlRouteEventStore(SessionLocal, settings.route_event_log_key)
        return cls(
            chain=chain,
            analytics=analytics,
            reference=reference,
            route_tracker=RouteStateTracker(store, settings),
            settings=settings,
        )

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Produced interface

    async def get_all_metrics(self) -> MetricsSnapshot:
        async with self._lock:
            prices, degraded = await self.price_builder.resolve()
            head = await self.chain.get_block_number()
            return await self._collect_metrics(prices, degraded, head)

    async def get_route_status_metrics(self, price_snapshot: PriceSnapshot) -> RouteStatusMetrics:
        threshold = await self._depeg_threshold()
        return self.route_tracker.update(price_snapshot, threshold, self._now_ms())

    async def run_cycle(self) -> CycleResult | None:
        """Run one full cycle; returns ``None`` when the block height is unavailable."""

        async with self._lock:
            started = time.perf_counter()
            try:
                head = await self.chain.get_block_number()
            except BlockHeightUnavailable as exc:
                self.state.stale = True
                self.state.last_error = str(exc)
                self.state.failed_cycles += 1
                logger.error("Cycle abandoned, block height unavailable: {}", exc)
                return None

            prices, price_degraded = await self.price_builder.resolve()
            metrics, routes = await asyncio.gather(
                self._collect_metrics(prices, price_degraded, head),
                self.get_route_status_metrics(prices),
            )

            duration = time.perf_counter() - started
            self.state.metrics = metrics
            self.state.routes = routes
            self.state.stale = False
            self.state.updated_at = self.clock()
            self.state.last_error = None
            self.state.completed_cycles += 1
            logger.info(
                "Cycle {} finished in {:.2f}s at block {} (degraded: {})",
                self.state.completed_cycles,
                duration,
                head,
                ", ".join(metrics.degraded_sources) or "none",
            )
            return CycleResult(
                metrics=metrics, routes=routes, prices=prices, duration_seconds=duration
            )

    def reset_route_log(self) -> None:
        self.route_tracker.reset()

    async def aclose(self) -> None:
        await asyncio.gather(self.chain.aclose(), self.analytics.aclose(), self.reference.aclose())

    # ------------------------------------------------------------------
    # Cycle steps

    async def _collect_metrics(
        self, prices: PriceSnapshot, price_degraded: list[str], head: int
    ) -> MetricsSnapshot:
        previous = self.cumulative
        if previous is not None and previous.last_block is not None:
            from_block = previous.last_block + 1
        else:
            from_block = self.settings.start_block

        batch, reads = await asyncio.gather(
            self.collector.collect(from_block, head),
            self._protocol_reads(head),
        )
        reads.degraded_sources = [*price_degraded, *batch.degraded, *reads.degraded_sources]

        state = fold_events(batch.events, previous)
        if not batch.degraded:
            state.last_block = head
        else:
            # Rescan the range next cycle; already folded events are skipped by key.
            logger.warning(
                "Keeping scan cursor at {} because sub-streams degraded: {}",
                state.last_block,
                ", ".join(batch.degraded),
            )
        self.cumulative = state
        return self.aggregator.build(state, prices, reads, now=self.clock())

    async def _protocol_reads(self, head: int) -> ProtocolReads:
        settings = self.settings
        degraded: list[str] = []
        tracked = list(settings.tracked_assets)

        supply, total_assets, vault, rebalances, *balances = await asyncio.gather(
            self._optional("iou_total_supply", self.chain.call(settings.iou_address, TOTAL_SUPPLY), degraded),
            self._optional("vault_total_assets", self.chain.call(settings.vault_address, TOTAL_ASSETS), degraded),
            self._optional("vault_composition", self.analytics.fetch_vault_composition(), degraded),
            self._optional("rebalances", self.analytics.fetch_rebalance_count(), degraded),
            *(
                self._optional(
                    f"reserve_balance:{address}",
                    self.chain.call(address, BALANCE_OF, [settings.vault_address]),
                    degraded,
                )
                for address in tracked
            ),
        )

        vault_tokens: list[VaultTokenBalance] | None = None
        if vault is not None:
            vault_tokens = [
                VaultTokenBalance(
                    address=token.address,
                    symbol=token.symbol,
                    name=token.name,
                    decimals=token.decimals,
                    balance=token.balance,
                    adapter=token.adapter,
                )
                for token in vault.tokens
            ]
            if total_assets is None and vault.total_assets is not None:
                total_assets = vault.total_assets

        return ProtocolReads(
            last_block=head,
            rebalance_count=rebalances or 0,
            iou_total_supply=supply,
            vault_total_assets=total_assets,
            vault_tokens=vault_tokens,
            reserve_balances={
                address: balance
                for address, balance in zip(tracked, balances)
                if balance is not None
            },
            degraded_sources=degraded,
        )

    async def _depeg_threshold(self) -> int:
        default = self.settings.default_depeg_threshold_bps
        try:
            threshold = await self.analytics.fetch_depeg_threshold()
        except EngineError as exc:
            logger.warning("Depeg threshold unavailable, using {}: {}", default, exc)
            return default
        if threshold is None or not 0 < threshold <= 10_000:
            return default
        return threshold

    @staticmethod
    async def _optional(name: str, awaitable: Awaitable[_T], degraded: list[str]) -> _T | None:
        try:
            return await awaitable
        except EngineError as exc:
            logger.warning("{} unavailable: {}", name, exc)
            degraded.append(name)
            return None

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)


__all__ = ["CycleResult", "DashboardState", "MetricsService"]
