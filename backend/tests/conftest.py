from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db
from app.domain import (
    AssetPrice,
    DepositFields,
    DomainEvent,
    EventKind,
    PriceSnapshot,
    PriceSource,
    SwapFields,
    TransferFields,
    VaultCreatedFields,
)

USDC = "0x75faf114eafb1bdbe2f0316df893fd58ce46aa4d"
GHO = "0x69cac783c212bfae06e3c1a9a2e6ae6b17ba0614"
ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"
DAY = 86_400
# 2024-01-15 00:00:00 UTC
JAN_15 = 1_705_276_800


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'clear_metrics.db'}",
        background_refresh=False,
        start_block=100,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = build_db_components(f"sqlite:///{tmp_path/'kv.db'}")
    init_db(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def make_swap():
    counter = iter(range(1, 10_000))

    def _make(
        amount_in: int,
        *,
        timestamp: int = JAN_15,
        block: int = 1_000,
        log_index: int | None = None,
        from_asset: str = GHO,
        to_asset: str = USDC,
        receiver: str = ALICE,
        amount_out: int = 0,
        iou_out: int = 0,
        tx_hash: str | None = None,
    ) -> DomainEvent:
        index = next(counter) if log_index is None else log_index
        return DomainEvent(
            kind=EventKind.SWAP,
            block_number=block,
            log_index=index,
            timestamp_unix=timestamp,
            tx_hash=tx_hash or f"0x{index:064x}",
            fields=SwapFields(
                from_asset=from_asset,
                to_asset=to_asset,
                receiver=receiver,
                amount_in=amount_in,
                amount_out=amount_out,
                iou_out=iou_out,
            ),
        )

    return _make


@pytest.fixture
def make_transfer():
    counter = iter(range(50_000, 60_000))

    def _make(kind: EventKind, amount: int, *, timestamp: int = JAN_15, block: int = 1_000) -> DomainEvent:
        index = next(counter)
        zero = "0x" + "0" * 40
        sender, recipient = (zero, ALICE) if kind is EventKind.MINT else (ALICE, zero)
        return DomainEvent(
            kind=kind,
            block_number=block,
            log_index=index,
            timestamp_unix=timestamp,
            tx_hash=f"0x{index:064x}",
            fields=TransferFields(sender=sender, recipient=recipient, amount=amount),
        )

    return _make


@pytest.fixture
def make_deposit():
    counter = iter(range(70_000, 80_000))

    def _make(sender: str, assets: int = 1, *, block: int = 1_000) -> DomainEvent:
        index = next(counter)
        return DomainEvent(
            kind=EventKind.DEPOSIT,
            block_number=block,
            log_index=index,
            timestamp_unix=JAN_15,
            tx_hash=f"0x{index:064x}",
            fields=DepositFields(sender=sender, owner=sender, assets=assets, shares=assets),
        )

    return _make


@pytest.fixture
def make_vault_created():
    counter = iter(range(90_000, 99_000))

    def _make(vault: str) -> DomainEvent:
        index = next(counter)
        return DomainEvent(
            kind=EventKind.VAULT_CREATED,
            block_number=1_000,
            log_index=index,
            timestamp_unix=JAN_15,
            tx_hash=f"0x{index:064x}",
            fields=VaultCreatedFields(vault=vault, owner=ALICE),
        )

    return _make


@pytest.fixture
def make_prices():
    def _make(
        *,
        gho: float | None = 1.0,
        usdc: float | None = 1.0,
        eth: float | None = None,
    ) -> PriceSnapshot:
        prices: list[AssetPrice] = []
        if usdc is not None:
            prices.append(AssetPrice(USDC, "USDC", 6, usdc, PriceSource.ORACLE))
        if gho is not None:
            prices.append(AssetPrice(GHO, "GHO", 18, gho, PriceSource.ORACLE))
        if eth is not None:
            prices.append(AssetPrice("ethereum", "ETH", 18, eth, PriceSource.EXTERNAL))
        return PriceSnapshot.from_prices(prices)

    return _make
