"""Price table providers (Pyth Hermes, static table)."""

import json
import logging
import time
from decimal import Decimal, InvalidOperation

import requests
from web3 import Web3

from .errors import PriceUnavailable
from .types import PriceTable, format_amount, parse_amount

logger = logging.getLogger(__name__)

DEFAULT_PRICE = Decimal(1)

# Pyth price feed ids (USD quotes)
PYTH_FEEDS = {
    "USDC": "0xeaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a",
    "USDT": "0x2b89b9dc8fdf9f34709a5b106b472f0f39bb6ca9ce04b0fd7f2e971688e2e53b",
    "ETH": "0xff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
    "MATIC": "0x5de33a9112c2b700b8d30b8a3402c103578ccfa2765696471cc672bd5cf6ac52",
    "BTC": "0xe62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
}

# Development prices, used when no live feed is configured
MOCK_PRICES = {
    "USDC": Decimal("1.0"),
    "USDT": Decimal("1.0"),
    "ETH": Decimal("2000.0"),
    "MATIC": Decimal("0.8"),
    "BTC": Decimal("45000.0"),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def price_of(table: PriceTable, token: str) -> Decimal:
    """USD price of `token`, falling back to 1 when the table has no entry.

    The fallback is logged once per token for each table.
    """
    price = table.prices.get(token)
    if price is None or price <= 0:
        if token not in table.warned:
            table.warned.add(token)
            logger.warning(f"No price for {token} (source={table.source}), defaulting to {DEFAULT_PRICE}")
        return DEFAULT_PRICE
    return price


def price_data_hash(table: PriceTable) -> str:
    """keccak256 of the canonical JSON of the price map."""
    prices = {token: format_amount(price) for token, price in table.prices.items()}
    text = json.dumps(prices, sort_keys=True, separators=(",", ":"))
    return Web3.to_hex(Web3.keccak(text=text))


class PriceProvider:
    """Source of the per-batch price table."""

    def fetch_prices(self) -> PriceTable:
        raise NotImplementedError


class StaticPriceProvider(PriceProvider):
    """Serves a fixed price table."""

    def __init__(self, prices: dict | None = None, source: str = "static"):
        if prices is None:
            prices = MOCK_PRICES
        self.prices = {token: parse_amount(price) for token, price in prices.items()}
        self.source = source

    def fetch_prices(self) -> PriceTable:
        return PriceTable(prices=dict(self.prices), source=self.source, timestamp=_now_ms())


class PythPriceProvider(PriceProvider):
    """Fetches latest prices from the Pyth Hermes HTTP API."""

    def __init__(
        self,
        url: str = "https://hermes.pyth.network/v2/updates/price/latest",
        feeds: dict[str, str] | None = None,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.feeds = dict(feeds or PYTH_FEEDS)
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_prices(self) -> PriceTable:
        logger.info("Fetching prices from Pyth Network...")
        try:
            response = self.session.get(
                self.url,
                params={"ids[]": list(self.feeds.values()), "parsed": "true"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise PriceUnavailable(f"Pyth request failed: {e}") from e

        try:
            prices = self._parse(payload)
        except (InvalidOperation, TypeError, ValueError, AttributeError) as e:
            raise PriceUnavailable(f"Malformed Pyth response: {e}") from e

        if not prices:
            raise PriceUnavailable("Pyth response contained no usable prices")
        logger.info(f"Prices fetched: {', '.join(f'{t}={p:.4f}' for t, p in prices.items())}")
        return PriceTable(prices=prices, source="pyth", timestamp=_now_ms())

    def _parse(self, payload) -> dict[str, Decimal]:
        by_id = {}
        for entry in payload.get("parsed") or []:
            feed_id = str(entry.get("id", "")).lower().removeprefix("0x")
            by_id[feed_id] = entry.get("price") or {}

        prices = {}
        for token, feed_id in self.feeds.items():
            quote = by_id.get(feed_id.lower().removeprefix("0x"))
            if not quote or "price" not in quote or "expo" not in quote:
                logger.warning(f"Pyth returned no price for {token}")
                continue
            price = Decimal(str(quote["price"])).scaleb(int(quote["expo"]))
            if not price.is_finite():
                raise ValueError(f"non-finite price for {token}")
            prices[token] = price
        return prices


def load_prices(provider: PriceProvider) -> PriceTable:
    """Fetch prices, degrading to an empty table when the provider fails."""
    try:
        return provider.fetch_prices()
    except PriceUnavailable as e:
        logger.warning(f"Price feed unavailable, using default price {DEFAULT_PRICE}: {e}")
        return PriceTable(source="unavailable", timestamp=_now_ms())
