from __future__ import annotations

import asyncio
import itertools
from typing import Any, Sequence

import httpx
from eth_abi.exceptions import DecodingError
from loguru import logger

from app.core.config import settings
from app.domain import RawLogEvent
from app.errors import BlockHeightUnavailable, MalformedExternalResponse, SourceUnavailable

from .contracts import EventDefinition, FunctionDefinition


def _parse_quantity(value: Any, *, field: str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith("0x") else int(value)
        except ValueError as exc:
            raise MalformedExternalResponse(f"Invalid {field} quantity: {value!r}") from exc
    raise MalformedExternalResponse(f"Missing {field} quantity")


def _require_hash(value: Any) -> str:
    if not isinstance(value, str) or not value.startswith("0x") or len(value) < 3:
        raise MalformedExternalResponse(f"Missing transactionHash: {value!r}")
    return value.lower()


class ChainClient:
    """Thin JSON-RPC wrapper exposing the log, block, and call reads the engine needs."""

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        timeout: float | None = None,
        max_concurrency: int | None = None,
        log_chunk_size: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url or str(settings.rpc_url)
        self.timeout = timeout or settings.http_timeout_seconds
        self.log_chunk_size = log_chunk_size or settings.log_chunk_size
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.rpc_max_concurrency)
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def _request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        async with self._semaphore:
            try:
                response = await self.client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise SourceUnavailable(f"RPC {method} failed: {exc}") from exc

        if not isinstance(body, dict):
            raise MalformedExternalResponse(f"RPC {method} returned a non-object body")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise SourceUnavailable(f"RPC {method} error: {message}")
        if "result" not in body:
            raise MalformedExternalResponse(f"RPC {method} response has no result")
        return body["result"]

    async def get_block_number(self) -> int:
        try:
            result = await self._request("eth_blockNumber", [])
            height = _parse_quantity(result, field="blockNumber")
        except (SourceUnavailable, MalformedExternalResponse) as exc:
            raise BlockHeightUnavailable(str(exc)) from exc
        if height <= 0:
            raise BlockHeightUnavailable("RPC node reported a zero block height")
        return height

    async def get_block_timestamp(self, block_number: int) -> int:
        result = await self._request("eth_getBlockByNumber", [hex(block_number), False])
        if not isinstance(result, dict):
            raise SourceUnavailable(f"Block {block_number} not available on node")
        return _parse_quantity(result.get("timestamp"), field="timestamp")

    async def query_events(
        self,
        contract_address: str,
        event: EventDefinition,
        indexed_filters: Sequence[Any | None] | None,
        from_block: int,
        to_block: int,
    ) -> list[RawLogEvent]:
        if to_block < from_block:
            return []
        topics = event.topic_filter(indexed_filters)
        events: list[RawLogEvent] = []
        chunk_start = from_block
        while chunk_start <= to_block:
            chunk_end = min(chunk_start + self.log_chunk_size - 1, to_block)
            params = {
                "address": contract_address,
                "topics": topics,
                "fromBlock": hex(chunk_start),
                "toBlock": hex(chunk_end),
            }
            logger.debug(
                "eth_getLogs {} {} blocks {}-{}", event.name, contract_address, chunk_start, chunk_end
            )
            result = await self._request("eth_getLogs", [params])
            if not isinstance(result, list):
                raise MalformedExternalResponse("eth_getLogs result is not a list")
            for raw_log in result:
                decoded = self._decode_log(contract_address, event, raw_log)
                if decoded is not None:
                    events.append(decoded)
            chunk_start = chunk_end + 1
        return events

    @staticmethod
    def _decode_log(
        contract_address: str, event: EventDefinition, raw_log: Any
    ) -> RawLogEvent | None:
        if not isinstance(raw_log, dict) or raw_log.get("removed"):
            return None
        try:
            args = event.decode_log(raw_log.get("topics") or [], raw_log.get("data") or "0x")
            return RawLogEvent(
                contract_address=str(raw_log.get("address") or contract_address).lower(),
                event_name=event.name,
                topic=event.topic,
                args=args,
                block_number=_parse_quantity(raw_log.get("blockNumber"), field="blockNumber"),
                log_index=_parse_quantity(raw_log.get("logIndex"), field="logIndex"),
                tx_hash=_require_hash(raw_log.get("transactionHash")),
            )
        except (DecodingError, ValueError, TypeError, MalformedExternalResponse) as exc:
            logger.warning(
                "Skipping undecodable {} log in tx {}: {}",
                event.name,
                raw_log.get("transactionHash"),
                exc,
            )
            return None

    async def call(
        self, contract_address: str, function: FunctionDefinition, args: Sequence[Any] = ()
    ) -> Any:
        call_object = {"to": contract_address, "data": function.encode_call(args)}
        result = await self._request("eth_call", [call_object, "latest"])
        if not isinstance(result, str) or result in ("", "0x"):
            raise MalformedExternalResponse(f"{function.signature} returned no data")
        try:
            return function.decode_result(result)
        except (DecodingError, ValueError) as exc:
            raise MalformedExternalResponse(f"Cannot decode {function.signature}: {exc}") from exc

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
