from __future__ import annotations

from typing import Any, Iterable, Mapping

from loguru import logger

from app.core.config import ZERO_ADDRESS
from app.domain import (
    DepositFields,
    DomainEvent,
    EventKind,
    RawLogEvent,
    SwapFields,
    TransferClass,
    TransferFields,
    VaultCreatedFields,
)

from .contracts import DEPOSIT, LIQUIDITY_SWAP_EXECUTED, NEW_CLEAR_VAULT, TRANSFER


def classify_transfer(sender: str, recipient: str) -> TransferClass:
    """Mint when tokens leave the zero address, burn when they are sent to it."""

    if sender.lower() == ZERO_ADDRESS:
        return TransferClass.MINT
    if recipient.lower() == ZERO_ADDRESS:
        return TransferClass.BURN
    return TransferClass.IGNORE


def _address(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str):
        raise ValueError(f"log argument {key!r} is not an address")
    return value.lower()


def _amount(args: Mapping[str, Any], key: str) -> int:
    value = args.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"log argument {key!r} is not an integer amount")
    if value < 0:
        raise ValueError(f"log argument {key!r} is negative")
    return value


def _build(raw: RawLogEvent, kind: EventKind, timestamp: int, fields: Any) -> DomainEvent:
    return DomainEvent(
        kind=kind,
        block_number=raw.block_number,
        log_index=raw.log_index,
        timestamp_unix=timestamp,
        tx_hash=raw.tx_hash,
        fields=fields,
    )


def normalize_swap(raw: RawLogEvent, timestamp: int) -> DomainEvent:
    args = raw.args
    fields = SwapFields(
        from_asset=_address(args, "from"),
        to_asset=_address(args, "to"),
        receiver=_address(args, "receiver"),
        amount_in=_amount(args, "amountIn"),
        amount_out=_amount(args, "tokenAmountOut"),
        iou_out=_amount(args, "iouAmountOut"),
    )
    return _build(raw, EventKind.SWAP, timestamp, fields)


def normalize_transfer(raw: RawLogEvent, timestamp: int) -> DomainEvent | None:
    args = raw.args
    sender = _address(args, "from")
    recipient = _address(args, "to")
    classification = classify_transfer(sender, recipient)
    if classification is TransferClass.IGNORE:
        return None
    kind = EventKind.MINT if classification is TransferClass.MINT else EventKind.BURN
    fields = TransferFields(sender=sender, recipient=recipient, amount=_amount(args, "value"))
    return _build(raw, kind, timestamp, fields)


def normalize_deposit(raw: RawLogEvent, timestamp: int) -> DomainEvent:
    args = raw.args
    fields = DepositFields(
        sender=_address(args, "sender"),
        owner=_address(args, "owner"),
        assets=_amount(args, "assets"),
        shares=_amount(args, "shares"),
    )
    return _build(raw, EventKind.DEPOSIT, timestamp, fields)


def normalize_vault_created(raw: RawLogEvent, timestamp: int) -> DomainEvent:
    args = raw.args
    fields = VaultCreatedFields(vault=_address(args, "vault"), owner=_address(args, "owner"))
    return _build(raw, EventKind.VAULT_CREATED, timestamp, fields)


_NORMALIZERS = {
    LIQUIDITY_SWAP_EXECUTED.name: normalize_swap,
    TRANSFER.name: normalize_transfer,
    DEPOSIT.name: normalize_deposit,
    NEW_CLEAR_VAULT.name: normalize_vault_created,
}


def normalize_log(raw: RawLogEvent, timestamp: int) -> DomainEvent | None:
    normalizer = _NORMALIZERS.get(raw.event_name)
    if normalizer is None:
        raise ValueError(f"No normalizer registered for event {raw.event_name!r}")
    return normalizer(raw, timestamp)


def normalize_logs(
    raws: Iterable[RawLogEvent], timestamps: Mapping[int, int]
) -> list[DomainEvent]:
    """Normalize a single sub-stream and order it by ``(block_number, log_index)``."""

    events: list[DomainEvent] = []
    for raw in raws:
        timestamp = timestamps.get(raw.block_number)
        if timestamp is None:
            raise KeyError(f"No timestamp resolved for block {raw.block_number}")
        try:
            event = normalize_log(raw, timestamp)
        except ValueError as exc:
            logger.warning(
                "Dropping malformed {} log {}:{}: {}", raw.event_name, raw.tx_hash, raw.log_index, exc
            )
            continue
        if event is not None:
            events.append(event)
    events.sort(key=lambda event: event.sort_key)
    return events
