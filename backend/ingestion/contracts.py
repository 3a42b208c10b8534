"""Event and function definitions for the protocol contracts the engine reads."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Sequence

from eth_abi import decode, encode
from web3 import Web3


@dataclass(frozen=True)
class EventParam:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventDefinition:
    """ABI event with topic hashing and log decoding."""

    name: str
    params: tuple[EventParam, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(param.type for param in self.params)})"

    @cached_property
    def topic(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.signature))

    @property
    def indexed_params(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.params if param.indexed)

    @property
    def data_params(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.params if not param.indexed)

    def topic_filter(self, indexed_filters: Sequence[Any | None] | None = None) -> list[str | None]:
        """Build the ``topics`` array for eth_getLogs; ``None`` matches anything."""

        topics: list[str | None] = [self.topic]
        if not indexed_filters:
            return topics
        if len(indexed_filters) > len(self.indexed_params):
            raise ValueError(
                f"{self.name} has {len(self.indexed_params)} indexed params, "
                f"got {len(indexed_filters)} filters"
            )
        for param, value in zip(self.indexed_params, indexed_filters):
            topics.append(None if value is None else encode_topic(param.type, value))
        while topics and topics[-1] is None:
            topics.pop()
        return topics

    def decode_log(self, topics: Sequence[str], data: str) -> dict[str, Any]:
        indexed = self.indexed_params
        if len(topics) != len(indexed) + 1:
            raise ValueError(
                f"{self.name} expects {len(indexed) + 1} topics, got {len(topics)}"
            )
        args: dict[str, Any] = {}
        for param, topic in zip(indexed, topics[1:]):
            (value,) = decode([param.type], Web3.to_bytes(hexstr=topic))
            args[param.name] = _normalize_value(value)
        data_params = self.data_params
        if data_params:
            values = decode([param.type for param in data_params], Web3.to_bytes(hexstr=data))
            for param, value in zip(data_params, values):
                args[param.name] = _normalize_value(value)
        return args


@dataclass(frozen=True)
class FunctionDefinition:
    name: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @cached_property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    def encode_call(self, args: Sequence[Any]) -> str:
        if len(args) != len(self.inputs):
            raise ValueError(f"{self.signature} takes {len(self.inputs)} arguments")
        payload = self.selector + encode(list(self.inputs), list(args))
        return Web3.to_hex(payload)

    def decode_result(self, result: str) -> Any:
        values = decode(list(self.outputs), Web3.to_bytes(hexstr=result))
        normalized = tuple(_normalize_value(value) for value in values)
        return normalized[0] if len(normalized) == 1 else normalized


def encode_topic(param_type: str, value: Any) -> str:
    if param_type == "address":
        value = Web3.to_checksum_address(value)
    return Web3.to_hex(encode([param_type], [value]))


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return value.lower()
    if isinstance(value, bytes):
        return Web3.to_hex(value)
    return value


LIQUIDITY_SWAP_EXECUTED = EventDefinition(
    "LiquiditySwapExecuted",
    (
        EventParam("from", "address", indexed=True),
        EventParam("to", "address", indexed=True),
        EventParam("receiver", "address"),
        EventParam("amountIn", "uint256"),
        EventParam("tokenAmountOut", "uint256"),
        EventParam("iouAmountOut", "uint256"),
    ),
)

TRANSFER = EventDefinition(
    "Transfer",
    (
        EventParam("from", "address", indexed=True),
        EventParam("to", "address", indexed=True),
        EventParam("value", "uint256"),
    ),
)

DEPOSIT = EventDefinition(
    "Deposit",
    (
        EventParam("sender", "address", indexed=True),
        EventParam("owner", "address", indexed=True),
        EventParam("assets", "uint256"),
        EventParam("shares", "uint256"),
    ),
)

NEW_CLEAR_VAULT = EventDefinition(
    "NewClearVault",
    (
        EventParam("vault", "address", indexed=True),
        EventParam("owner", "address", indexed=True),
    ),
)

TOTAL_SUPPLY = FunctionDefinition("totalSupply", (), ("uint256",))
TOTAL_ASSETS = FunctionDefinition("totalAssets", (), ("uint256",))
BALANCE_OF = FunctionDefinition("balanceOf", ("address",), ("uint256",))

__all__ = [
    "BALANCE_OF",
    "DEPOSIT",
    "EventDefinition",
    "EventParam",
    "FunctionDefinition",
    "LIQUIDITY_SWAP_EXECUTED",
    "NEW_CLEAR_VAULT",
    "TOTAL_ASSETS",
    "TOTAL_SUPPLY",
    "TRANSFER",
    "encode_topic",
]
