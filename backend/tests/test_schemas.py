from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.schemas import DailyValue, MetricsSnapshot


def test_metrics_snapshot_defaults_are_numeric_strings():
    """Every cumulative total defaults to the string "0", never null."""
    snapshot = MetricsSnapshot(generated_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

    dumped = snapshot.model_dump(mode="json")
    for field in (
        "total_swap_volume",
        "total_swap_volume_usd",
        "total_iou_minted",
        "total_iou_burned",
        "total_value_locked_usd",
        "protocol_fees_usd",
    ):
        assert dumped[field] == "0"
    assert dumped["tvl_is_estimate"] is True


def test_daily_value_serializes_iso_date():
    bucket = DailyValue(date=date(2024, 1, 15), native="350", amount="0.00000000000000035")
    assert bucket.model_dump(mode="json")["date"] == "2024-01-15"


def test_settings_normalize_addresses_and_symbols():
    settings = Settings(
        vault_address="0x343EfFc28C20821a65115a17032aCA7CA43F6102",
        base_asset_symbol=" eth ",
    )
    assert settings.vault_address == "0x343effc28c20821a65115a17032aca7ca43f6102"
    assert settings.base_asset_symbol == "ETH"
    assert settings.symbol_table["0x75faf114eafb1bdbe2f0316df893fd58ce46aa4d"] == "USDC"
    assert settings.tracked_symbols == ("USDC", "GHO")


def test_settings_accept_tracked_assets_json():
    settings = Settings(
        tracked_assets='{"0x00000000000000000000000000000000000000AA": {"symbol": "DAI", "decimals": 18}}'
    )
    assert settings.symbol_table == {"0x00000000000000000000000000000000000000aa": "DAI"}
    assert settings.asset_for_symbol("DAI").decimals == 18
    assert settings.asset_for_symbol("USDC") is None


def test_settings_reject_invalid_address():
    with pytest.raises(ValidationError):
        Settings(iou_address="not-an-address")
