from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from app.core.config import settings
from app.errors import MalformedExternalResponse, PriceUnavailable


class ReferencePriceClient:
    """Reads USD reference prices from a CoinGecko-compatible simple price API."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or str(settings.reference_price_url)).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=transport
        )

    async def fetch_usd_price(self, asset_id: str) -> float:
        params = {"ids": asset_id, "vs_currencies": "usd"}
        logger.debug("Reference price GET /simple/price params={}", params)
        try:
            response = await self.client.get("/simple/price", params=params)
            response.raise_for_status()
            payload: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceUnavailable(f"Reference price for {asset_id} unavailable: {exc}") from exc

        if not isinstance(payload, dict):
            raise MalformedExternalResponse("Reference price response is not a JSON object")
        entry = payload.get(asset_id)
        if not isinstance(entry, dict) or "usd" not in entry:
            raise PriceUnavailable(f"Reference price response has no USD quote for {asset_id}")
        try:
            price = float(entry["usd"])
        except (TypeError, ValueError) as exc:
            raise MalformedExternalResponse(f"Non-numeric USD quote for {asset_id}") from exc
        if price <= 0:
            raise PriceUnavailable(f"Reference price for {asset_id} is not positive")
        return price

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "ReferencePriceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
