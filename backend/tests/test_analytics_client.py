from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.errors import MalformedExternalResponse, PriceUnavailable, SourceUnavailable
from ingestion.analytics_client import AnalyticsClient
from ingestion.price_client import ReferencePriceClient

from conftest import GHO, USDC

GRAPHQL_URL = "https://analytics.test/graphql"


def _graphql(responses: dict[str, object]):
    def _handle(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        for marker, payload in responses.items():
            if marker in query:
                if isinstance(payload, httpx.Response):
                    return payload
                return httpx.Response(200, json=payload)
        return httpx.Response(404)

    return httpx.MockTransport(_handle)


def _analytics(responses, scenario):
    async def _main():
        async with AnalyticsClient(base_url=GRAPHQL_URL, transport=_graphql(responses)) as client:
            return await scenario(client)

    return asyncio.run(_main())


def test_oracle_rows_are_validated_and_lower_cased():
    payload = {
        "data": {
            "clearOracles": [
                {"asset": USDC.upper().replace("0X", "0x"), "assetDecimals": 6, "oracleDecimals": 8, "price": "100000000"},
                {"asset": GHO, "assetDecimals": 18, "oracleDecimals": 8, "price": 99_800_000},
            ]
        }
    }

    rows = _analytics({"clearOracles": payload}, lambda client: client.fetch_oracle_rows())

    assert [row.asset for row in rows] == [USDC, GHO]
    assert rows[0].price == 100_000_000
    assert rows[1].oracle_decimals == 8


def test_vault_composition_returns_first_vault():
    payload = {
        "data": {
            "clearVaults": [
                {
                    "totalAssets": "5000000",
                    "tokens": [
                        {
                            "address": USDC,
                            "name": "USD Coin",
                            "symbol": "USDC",
                            "decimals": 6,
                            "balance": "5000000",
                            "adapter": "0x" + "0" * 40,
                        }
                    ],
                }
            ]
        }
    }

    vault = _analytics({"clearVaults": payload}, lambda client: client.fetch_vault_composition())

    assert vault is not None
    assert vault.total_assets == 5_000_000
    assert vault.tokens[0].balance == 5_000_000


def test_rebalance_count_and_threshold():
    responses = {
        "clearLiquidityRebalances": {"data": {"clearLiquidityRebalances": [{"id": "a"}, {"id": "b"}]}},
        "clearStatuses": {"data": {"clearStatuses": [{"swapDepegTreshold": "9990"}]}},
    }

    async def scenario(client):
        return await client.fetch_rebalance_count(), await client.fetch_depeg_threshold()

    assert _analytics(responses, scenario) == (2, 9990)


def test_empty_collections_are_not_errors():
    responses = {
        "clearStatuses": {"data": {"clearStatuses": []}},
        "clearVaults": {"data": {"clearVaults": None}},
    }

    async def scenario(client):
        return await client.fetch_depeg_threshold(), await client.fetch_vault_composition()

    assert _analytics(responses, scenario) == (None, None)


def test_unexpected_shape_is_malformed():
    payload = {"data": {"clearOracles": [{"asset": GHO, "price": "not-a-number"}]}}
    with pytest.raises(MalformedExternalResponse):
        _analytics({"clearOracles": payload}, lambda client: client.fetch_oracle_rows())


def test_graphql_errors_are_malformed():
    payload = {"errors": [{"message": "Cannot query field"}]}
    with pytest.raises(MalformedExternalResponse):
        _analytics({"clearOracles": payload}, lambda client: client.fetch_oracle_rows())


def test_http_failure_is_source_unavailable():
    with pytest.raises(SourceUnavailable):
        _analytics(
            {"clearOracles": httpx.Response(503)}, lambda client: client.fetch_oracle_rows()
        )


def _reference(handler, asset_id="ethereum"):
    async def _main():
        async with ReferencePriceClient(
            base_url="https://prices.test/api/v3", transport=httpx.MockTransport(handler)
        ) as client:
            return await client.fetch_usd_price(asset_id)

    return asyncio.run(_main())


def test_reference_price_reads_usd_quote():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v3/simple/price"
        assert request.url.params["ids"] == "ethereum"
        return httpx.Response(200, json={"ethereum": {"usd": 3150.25}})

    assert _reference(handler) == 3150.25


def test_reference_price_missing_quote_is_unavailable():
    with pytest.raises(PriceUnavailable):
        _reference(lambda request: httpx.Response(200, json={}))


def test_reference_price_http_error_is_unavailable():
    with pytest.raises(PriceUnavailable):
        _reference(lambda request: httpx.Response(429))
