"""Route open/closed evaluation and the persisted interval log."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import (
    UNKNOWN_SYMBOL,
    PriceSnapshot,
    RouteEventLog,
    RouteOpenEvent,
    RouteStatus,
    route_key,
)
from app.errors import PersistenceFailure
from app.repositories.route_event_repository import RouteEventStore
from app.schemas import RouteOpenEventOut, RouteStatusMetrics, RouteStatusOut

BPS_DENOMINATOR = 10_000
MS_PER_DAY = 86_400_000


def threshold_percent(threshold_bps: int) -> float:
    """9995 bps tolerates a 0.05% shortfall."""

    return (BPS_DENOMINATOR - threshold_bps) / 100


def evaluate_routes(
    snapshot: PriceSnapshot,
    threshold_bps: int,
    tracked_symbols: Sequence[str] | None = None,
) -> list[RouteStatus]:
    """Evaluate every ordered pair of distinct priced symbols.

    A route ``from -> to`` is open when ``price(from) <= price(to) * bps / 10000``.
    """

    candidates = tracked_symbols if tracked_symbols is not None else tuple(snapshot)
    symbols: list[str] = []
    for symbol in candidates:
        if symbol == UNKNOWN_SYMBOL or symbol not in snapshot or symbol in symbols:
            continue
        symbols.append(symbol)

    tolerance = threshold_percent(threshold_bps)
    statuses: list[RouteStatus] = []
    for from_symbol in symbols:
        for to_symbol in symbols:
            if from_symbol == to_symbol:
                continue
            from_entry = snapshot.by_symbol[from_symbol]
            to_entry = snapshot.by_symbol[to_symbol]
            max_from_price = to_entry.price * threshold_bps / BPS_DENOMINATOR
            if to_entry.price:
                depeg = (to_entry.price - from_entry.price) / to_entry.price * 100
            else:
                depeg = 0.0
            statuses.append(
                RouteStatus(
                    from_symbol=from_symbol,
                    to_symbol=to_symbol,
                    from_asset=from_entry.asset_id,
                    to_asset=to_entry.asset_id,
                    is_open=from_entry.price <= max_from_price,
                    depeg_percent=depeg,
                    threshold_percent=tolerance,
                )
            )
    return statuses


def apply_transitions(
    log: Iterable[RouteOpenEvent], statuses: Iterable[RouteStatus], now_ms: int
) -> RouteEventLog:
    """Return a new log with one transition step applied per route.

    The input log is never mutated. Repeating the call with the same statuses and
    a non-decreasing ``now_ms`` leaves the result unchanged.
    """

    updated = [event.copy() for event in log]
    for status in statuses:
        key = status.route_key
        unclosed = [event for event in updated if event.route_key == key and event.is_open]
        if status.is_open:
            if not unclosed:
                updated.append(
                    RouteOpenEvent(id=f"{key}-{now_ms}", route_key=key, opened_at_ms=now_ms)
                )
            continue
        for event in unclosed:
            event.close(max(now_ms, event.opened_at_ms))
    return updated


def prune_closed(log: Iterable[RouteOpenEvent], *, now_ms: int, retention_days: int | None) -> RouteEventLog:
    if retention_days is None:
        return list(log)
    cutoff = now_ms - retention_days * MS_PER_DAY
    return [
        event
        for event in log
        if event.closed_at_ms is None or event.closed_at_ms >= cutoff
    ]


def track_routes(
    log: Iterable[RouteOpenEvent],
    snapshot: PriceSnapshot,
    threshold_bps: int,
    now_ms: int,
    *,
    tracked_symbols: Sequence[str] | None = None,
    retention_days: int | None = None,
) -> tuple[RouteEventLog, list[RouteStatus]]:
    statuses = evaluate_routes(snapshot, threshold_bps, tracked_symbols)
    updated = apply_transitions(log, statuses, now_ms)
    return prune_closed(updated, now_ms=now_ms, retention_days=retention_days), statuses


@dataclass(frozen=True, slots=True)
class RouteStatistics:
    total_times_opened: int
    total_open_duration_ms: int
    average_open_duration_ms: float | None


def summarize(log: Sequence[RouteOpenEvent]) -> RouteStatistics:
    """In-progress intervals count as openings but never toward durations."""

    closed = [event.duration_ms or 0 for event in log if not event.is_open]
    total = sum(closed)
    return RouteStatistics(
        total_times_opened=len(log),
        total_open_duration_ms=total,
        average_open_duration_ms=total / len(closed) if closed else None,
    )


def build_route_metrics(
    statuses: Sequence[RouteStatus], log: Sequence[RouteOpenEvent], threshold_bps: int
) -> RouteStatusMetrics:
    stats = summarize(log)
    return RouteStatusMetrics(
        routes=[
            RouteStatusOut(
                route=status.route_key,
                from_symbol=status.from_symbol,
                to_symbol=status.to_symbol,
                from_asset=status.from_asset,
                to_asset=status.to_asset,
                is_open=status.is_open,
                depeg_percent=status.depeg_percent,
                threshold_percent=status.threshold_percent,
            )
            for status in statuses
        ],
        depeg_threshold_bps=threshold_bps,
        depeg_threshold_percent=threshold_percent(threshold_bps),
        any_route_open=any(status.is_open for status in statuses),
        route_open_events=[
            RouteOpenEventOut(
                id=event.id,
                route=event.route_key,
                opened_at_ms=event.opened_at_ms,
                closed_at_ms=event.closed_at_ms,
                duration_ms=event.duration_ms,
            )
            for event in log
        ],
        total_times_opened=stats.total_times_opened,
        total_open_duration_ms=stats.total_open_duration_ms,
        average_open_duration_ms=stats.average_open_duration_ms,
    )


class RouteStateTracker:
    """Load the log, apply one cycle of transitions and write it back as one replace.

    A log that could not be written is kept in memory and becomes the starting
    point of the next cycle. A cycle whose load failed never writes: the durable
    log is read again next cycle instead of being overwritten.
    """

    def __init__(self, store: RouteEventStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._unsaved: RouteEventLog | None = None
        self.load_failed = False

    @property
    def has_unsaved_changes(self) -> bool:
        return self._unsaved is not None

    def load(self) -> RouteEventLog:
        if self._unsaved is not None:
            self.load_failed = False
            return [event.copy() for event in self._unsaved]
        try:
            log = self.store.load()
        except PersistenceFailure as exc:
            logger.warning("Route log unreadable, evaluating this cycle from an empty log: {}", exc)
            self.load_failed = True
            return []
        self.load_failed = False
        return log

    def update(
        self,
        snapshot: PriceSnapshot,
        threshold_bps: int,
        now_ms: int,
    ) -> RouteStatusMetrics:
        current = self.load()
        updated, statuses = track_routes(
            current,
            snapshot,
            threshold_bps,
            now_ms,
            tracked_symbols=self.settings.tracked_symbols,
            retention_days=self.settings.route_event_retention_days,
        )
        if self.load_failed:
            logger.warning("Route log write skipped: the stored log could not be read this cycle")
        else:
            self._save(updated)

        opened = sum(1 for status in statuses if status.is_open)
        logger.info(
            "Routes evaluated: {} total, {} open, threshold {} bps", len(statuses), opened, threshold_bps
        )
        return build_route_metrics(statuses, updated, threshold_bps)

    def _save(self, log: RouteEventLog) -> None:
        try:
            self.store.save(log)
        except PersistenceFailure as exc:
            logger.error("Route log write failed, retaining {} records in memory: {}", len(log), exc)
            self._unsaved = log
        else:
            self._unsaved = None

    def reset(self) -> None:
        """Operator action: drop every persisted interval."""

        self.store.clear()
        self._unsaved = None
        self.load_failed = False
        logger.warning("Route log {} cleared", self.settings.route_event_log_key)


__all__ = [
    "RouteStateTracker",
    "RouteStatistics",
    "apply_transitions",
    "build_route_metrics",
    "evaluate_routes",
    "prune_closed",
    "summarize",
    "threshold_percent",
    "track_routes",
]
