from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Sequence

from loguru import logger

from app.core.config import ZERO_ADDRESS, Settings, get_settings
from app.domain import DomainEvent, EventKind, RawLogEvent
from app.errors import MalformedExternalResponse, SourceUnavailable

from .contracts import DEPOSIT, LIQUIDITY_SWAP_EXECUTED, NEW_CLEAR_VAULT, TRANSFER, EventDefinition
from .normalize import normalize_logs
from .rpc_client import ChainClient


@dataclass(frozen=True, slots=True)
class SubStream:
    name: str
    contract_address: str
    event: EventDefinition
    indexed_filters: tuple[Any | None, ...] | None = None


@dataclass(slots=True)
class EventBatch:
    """Normalized events of one block range, grouped per sub-stream."""

    from_block: int
    to_block: int
    streams: dict[str, list[DomainEvent]] = field(default_factory=dict)
    degraded: list[str] = field(default_factory=list)

    def of_kind(self, kind: EventKind) -> list[DomainEvent]:
        return [
            event
            for events in self.streams.values()
            for event in events
            if event.kind is kind
        ]

    @property
    def events(self) -> list[DomainEvent]:
        return [event for events in self.streams.values() for event in events]


def default_sub_streams(settings: Settings) -> tuple[SubStream, ...]:
    return (
        SubStream("swaps", settings.vault_address, LIQUIDITY_SWAP_EXECUTED),
        SubStream("mints", settings.iou_address, TRANSFER, (ZERO_ADDRESS, None)),
        SubStream("burns", settings.iou_address, TRANSFER, (None, ZERO_ADDRESS)),
        SubStream("deposits", settings.vault_address, DEPOSIT),
        SubStream("vaults_created", settings.factory_address, NEW_CLEAR_VAULT),
    )


class EventCollector:
    """Fetch every protocol sub-stream for a block range and normalize it.

    A sub-stream the node cannot serve degrades to an empty list; the other
    sub-streams of the range are still returned.
    """

    def __init__(
        self,
        chain: ChainClient,
        *,
        settings: Settings | None = None,
        sub_streams: Sequence[SubStream] | None = None,
    ) -> None:
        self.chain = chain
        self.settings = settings or get_settings()
        self.sub_streams = tuple(sub_streams or default_sub_streams(self.settings))

    async def collect(self, from_block: int, to_block: int) -> EventBatch:
        batch = EventBatch(from_block=from_block, to_block=to_block)
        if to_block < from_block:
            batch.streams = {stream.name: [] for stream in self.sub_streams}
            return batch

        timestamps: dict[int, asyncio.Task[int]] = {}
        results = await asyncio.gather(
            *(self._collect_stream(stream, from_block, to_block, timestamps) for stream in self.sub_streams),
            return_exceptions=True,
        )
        for stream, result in zip(self.sub_streams, results):
            if isinstance(result, (SourceUnavailable, MalformedExternalResponse)):
                logger.warning(
                    "Sub-stream {} unavailable for blocks {}-{}: {}",
                    stream.name,
                    from_block,
                    to_block,
                    result,
                )
                batch.streams[stream.name] = []
                batch.degraded.append(stream.name)
            elif isinstance(result, BaseException):
                raise result
            else:
                batch.streams[stream.name] = result

        logger.info(
            "Collected blocks {}-{}: {}",
            from_block,
            to_block,
            ", ".join(f"{name}={len(events)}" for name, events in batch.streams.items()),
        )
        return batch

    async def _collect_stream(
        self,
        stream: SubStream,
        from_block: int,
        to_block: int,
        timestamps: dict[int, asyncio.Task[int]],
    ) -> list[DomainEvent]:
        raws = await self.chain.query_events(
            stream.contract_address,
            stream.event,
            stream.indexed_filters,
            from_block,
            to_block,
        )
        resolved = await self._resolve_timestamps(raws, timestamps)
        return normalize_logs(raws, resolved)

    async def _resolve_timestamps(
        self, raws: Sequence[RawLogEvent], cache: dict[int, asyncio.Task[int]]
    ) -> dict[int, int]:
        blocks = sorted({raw.block_number for raw in raws})
        for block in blocks:
            if block not in cache:
                cache[block] = asyncio.ensure_future(self.chain.get_block_timestamp(block))
        values = await asyncio.gather(*(cache[block] for block in blocks))
        return dict(zip(blocks, values))
