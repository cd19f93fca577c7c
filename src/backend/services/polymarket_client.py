"""
Outcome oracle backed by the Polymarket Gamma API.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog

from core.config import settings
from core.exceptions import AdapterUnavailable

logger = structlog.get_logger(__name__)


@dataclass
class SubMarket:
    question: Optional[str]
    group_item_title: Optional[str]
    closed: bool
    outcomes: list[str] = field(default_factory=list)
    prices: list[float] = field(default_factory=list)


@dataclass
class MarketEvent:
    closed: bool
    markets: list[SubMarket] = field(default_factory=list)


class OutcomeOracle(Protocol):
    async def fetch_market(self, event_id: str) -> MarketEvent: ...


def _json_list(value: Any) -> list:
    """Gamma sends outcomes/outcomePrices either as arrays or JSON-encoded strings."""
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError("expected a list")
    return value


class PolymarketClient:
    """Client for Polymarket event data."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: Optional[str] = None):
        self.http_client = http_client
        self.base_url = (base_url or settings.POLYMARKET_API_URL).rstrip("/")

    @classmethod
    def from_settings(cls) -> "PolymarketClient":
        transport = httpx.AsyncHTTPTransport(retries=settings.EXTERNAL_HTTP_RETRIES)
        http_client = httpx.AsyncClient(transport=transport, timeout=settings.EXTERNAL_HTTP_TIMEOUT_SECONDS)
        return cls(http_client)

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def fetch_market(self, event_id: str) -> MarketEvent:
        """Fetch an event and its sub-markets."""
        try:
            response = await self.http_client.get(f"{self.base_url}/events/{event_id}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise AdapterUnavailable(f"Polymarket returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AdapterUnavailable(f"Polymarket request failed: {e}") from e
        except ValueError as e:
            raise AdapterUnavailable("Polymarket returned a malformed body") from e

        if not isinstance(data, dict):
            raise AdapterUnavailable("Polymarket returned a malformed event")

        event_closed = bool(data.get("closed", False))
        markets = []
        try:
            for market in data.get("markets") or []:
                markets.append(
                    SubMarket(
                        question=market.get("question"),
                        group_item_title=market.get("groupItemTitle"),
                        closed=bool(market.get("closed", event_closed)),
                        outcomes=[str(outcome) for outcome in _json_list(market.get("outcomes"))],
                        prices=[float(price) for price in _json_list(market.get("outcomePrices"))],
                    )
                )
        except (AttributeError, TypeError, ValueError) as e:
            raise AdapterUnavailable("Polymarket market data is malformed") from e

        return MarketEvent(closed=event_closed, markets=markets)
