"""Crypto spot prices and daily history.

Binance is the primary source (fast, many pairs); CoinGecko is the fallback
for spot prices and the only source for history.
"""

import asyncio
from collections.abc import Sequence

from nexo.config import CacheSettings, HttpSettings, ProviderSettings
from nexo.http.fetcher import HttpFetcher
from nexo.logging import get_logger
from nexo.market_data.cache import Lookup, TTLCache
from nexo.market_data.fallback import FallbackChain, NamedAdapter
from nexo.market_data.history import CRYPTO_DAYS, bucket_by_day, clamp_days
from nexo.market_data.parsing import parse_decimal
from nexo.models import CryptoHistoryPoint, CryptoQuote

logger = get_logger(__name__)

# Symbol -> CoinGecko coin id. Symbols missing here are Binance-only.
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "USDC": "usd-coin",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "LTC": "litecoin",
    "NEAR": "near",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "INJ": "injective-protocol",
    "SUI": "sui",
    "SEI": "sei-network",
    "TIA": "celestia",
}

# Long ranges come back hourly from CoinGecko and need a longer deadline
LONG_HISTORY_DAYS = 30


class BinanceTickerAdapter:
    """Spot price from Binance's 24h ticker. USD is quoted against USDT."""

    name = "binance"

    def __init__(self, fetcher: HttpFetcher, base_url: str, timeout: float) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def fetch(self, symbol: str, currency: str) -> CryptoQuote | None:
        quote = "USDT" if currency == "USD" else currency
        pair = symbol + quote
        data = await self._fetcher.fetch_json(
            f"{self._base_url}/ticker/24hr",
            params={"symbol": pair},
            timeout=self._timeout,
            label=f"binance {pair}",
        )
        if not isinstance(data, dict):
            return None

        price = parse_decimal(data.get("lastPrice"))
        if price is None:
            return None

        return CryptoQuote(
            symbol=symbol,
            price=price,
            currency="USD" if quote == "USDT" else currency,
            source=self.name,
            change_24h=parse_decimal(data.get("priceChangePercent")),
        )


class CoinGeckoAdapter:
    """Spot prices and market-chart history from CoinGecko's public API."""

    name = "coingecko"

    def __init__(
        self,
        fetcher: HttpFetcher,
        base_url: str,
        timeout: float,
        history_timeout_short: float = 12.0,
        history_timeout_long: float = 25.0,
        retry_delay: float = 2.0,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._history_timeout_short = history_timeout_short
        self._history_timeout_long = history_timeout_long
        self._retry_delay = retry_delay

    async def fetch(self, symbol: str, currency: str) -> CryptoQuote | None:
        coin_id = COINGECKO_IDS.get(symbol)
        if coin_id is None:
            return None

        vs = currency.lower()
        data = await self._fetcher.fetch_json(
            f"{self._base_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": vs, "include_24hr_change": "true"},
            timeout=self._timeout,
            label=f"coingecko {coin_id}/{vs}",
        )
        if not isinstance(data, dict) or not isinstance(data.get(coin_id), dict):
            return None

        entry = data[coin_id]
        price = parse_decimal(entry.get(vs))
        if price is None:
            return None

        return CryptoQuote(
            symbol=symbol,
            price=price,
            currency=currency,
            source=self.name,
            change_24h=parse_decimal(entry.get(f"{vs}_24h_change")),
        )

    async def history(self, symbol: str, currency: str, days: int) -> list[CryptoHistoryPoint] | None:
        """Daily closes for the last ``days`` days.

        Returns None when the upstream failed, an empty list when the
        symbol is unknown (no request is made).
        """
        coin_id = COINGECKO_IDS.get(symbol)
        if coin_id is None:
            return []

        long_range = days >= LONG_HISTORY_DAYS
        data = await self._fetcher.fetch_json(
            f"{self._base_url}/coins/{coin_id}/market_chart",
            params={"vs_currency": currency.lower(), "days": days},
            timeout=self._history_timeout_long if long_range else self._history_timeout_short,
            retries=1 if long_range else 0,
            retry_delay=self._retry_delay,
            label=f"coingecko history {symbol} days={days}",
        )
        if not isinstance(data, dict):
            return None

        samples = []
        for row in data.get("prices") or []:
            if not isinstance(row, list | tuple) or len(row) < 2:
                continue
            price = parse_decimal(row[1])
            if price is None or not isinstance(row[0], int | float):
                continue
            samples.append((row[0], price))

        return [CryptoHistoryPoint(date=day, price=price) for day, price in bucket_by_day(samples)]


class CryptoService:
    """Cache-aside crypto quotes over a Binance -> CoinGecko fallback chain.

    Args:
        fetcher: Shared outbound HTTP fetcher.
        cache: Shared TTL cache.
        providers: Upstream URLs and timeouts.
        cache_settings: TTLs for prices and history.
        http_settings: Default per-request timeout and retry delay.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        cache: TTLCache,
        providers: ProviderSettings | None = None,
        cache_settings: CacheSettings | None = None,
        http_settings: HttpSettings | None = None,
    ) -> None:
        providers = providers or ProviderSettings()
        http_settings = http_settings or HttpSettings()
        self._cache = cache
        self._ttl = cache_settings or CacheSettings()

        self._binance = BinanceTickerAdapter(
            fetcher, providers.binance_base_url, http_settings.timeout_default
        )
        self._coingecko = CoinGeckoAdapter(
            fetcher,
            providers.coingecko_base_url,
            http_settings.timeout_default,
            history_timeout_short=providers.crypto_history_timeout_short,
            history_timeout_long=providers.crypto_history_timeout_long,
            retry_delay=http_settings.retry_delay,
        )
        self._chain: FallbackChain[CryptoQuote] = FallbackChain(
            "crypto",
            [
                NamedAdapter(self._binance.name, self._binance.fetch),
                NamedAdapter(self._coingecko.name, self._coingecko.fetch),
            ],
        )

    async def get_price(self, symbol: str, currency: str = "USD") -> Lookup[CryptoQuote | None]:
        """Latest quote for one symbol, or None when every provider failed."""
        symbol = symbol.strip().upper()
        currency = currency.upper()
        key = f"crypto:{symbol}:{currency}"

        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        quote = await self._chain.first(symbol, currency)
        if quote is not None:
            self._cache.set(key, quote, self._ttl.crypto_price_ttl)
        return Lookup(quote, False)

    async def get_prices(
        self, symbols: Sequence[str], currency: str = "USD"
    ) -> Lookup[list[CryptoQuote]]:
        """Quotes for several symbols fetched concurrently.

        Symbols that fail are dropped; the batch itself never fails. The
        result keeps request order.
        """
        symbols = [s.strip().upper() for s in symbols if s.strip()]
        currency = currency.upper()
        key = f"crypto:{','.join(symbols)}:{currency}"

        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        lookups = await asyncio.gather(*(self.get_price(s, currency) for s in symbols))
        quotes = [lookup.value for lookup in lookups if lookup.value is not None]

        if len(quotes) < len(symbols):
            logger.info(
                "crypto_batch_partial",
                requested=len(symbols),
                returned=len(quotes),
            )
        if quotes:
            self._cache.set(key, quotes, self._ttl.crypto_price_ttl)
        return Lookup(quotes, False)

    async def get_history(
        self, symbol: str, currency: str = "USD", days: int = 7
    ) -> Lookup[list[CryptoHistoryPoint]]:
        """One point per day for the last ``days`` days (clamped to 1..90)."""
        symbol = symbol.strip().upper()
        currency = currency.upper()
        days = clamp_days(days, *CRYPTO_DAYS)
        key = f"crypto:history:{symbol}:{currency}:{days}"

        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        history = await self._coingecko.history(symbol, currency, days)
        if history is None:
            logger.warning("crypto_history_unavailable", symbol=symbol, days=days)
            return Lookup([], False)
        if history:
            self._cache.set(key, history, self._ttl.crypto_history_ttl)
        return Lookup(history, False)
