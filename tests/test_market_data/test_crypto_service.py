"""Tests for CryptoService: Binance -> CoinGecko fallback, caching, batch and history."""

import asyncio
from decimal import Decimal

import httpx
import pytest

from nexo.config import CacheSettings
from nexo.market_data.cache import TTLCache
from nexo.market_data.crypto import CryptoService

BINANCE = ("api.binance.com", "/api/v3/ticker/24hr")
SIMPLE_PRICE = ("api.coingecko.com", "/api/v3/simple/price")
BTC_CHART = ("api.coingecko.com", "/api/v3/coins/bitcoin/market_chart")

DAY = 86_400_000
MAR_1 = 1_709_251_200_000  # 2024-03-01T00:00:00Z


def binance_ticker(request: httpx.Request) -> httpx.Response:
    pair = request.url.params["symbol"]
    prices = {"BTCUSDT": "65000.50", "ETHUSDT": "3200.10", "BTCEUR": "60000"}
    if pair not in prices:
        return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})
    return httpx.Response(200, json={"lastPrice": prices[pair], "priceChangePercent": "-1.25"})


@pytest.fixture
def upstream(upstream):
    upstream.routes[BINANCE] = binance_ticker
    return upstream


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def service(upstream, cache, make_fetcher, http_settings) -> CryptoService:
    return CryptoService(
        make_fetcher(upstream), cache, cache_settings=CacheSettings(), http_settings=http_settings
    )


# ---------------------------------------------------------------------------
# Single quotes and fallback
# ---------------------------------------------------------------------------


class TestGetPrice:
    @pytest.mark.asyncio
    async def test_binance_primary(self, service: CryptoService, upstream) -> None:
        lookup = await service.get_price("btc", "usd")

        quote = lookup.value
        assert quote is not None
        assert quote.symbol == "BTC"
        assert quote.price == Decimal("65000.50")
        assert quote.currency == "USD"
        assert quote.source == "binance"
        assert quote.change_24h == Decimal("-1.25")
        assert lookup.cache_hit is False
        assert upstream.calls(BINANCE)[0].url.params["symbol"] == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_non_usd_currency_keeps_quote_currency(self, service: CryptoService) -> None:
        quote = (await service.get_price("BTC", "EUR")).value
        assert quote is not None
        assert quote.currency == "EUR"
        assert quote.price == Decimal("60000")

    @pytest.mark.asyncio
    async def test_falls_back_to_coingecko(self, service: CryptoService, upstream) -> None:
        upstream.routes[BINANCE] = httpx.Response(503)
        upstream.routes[SIMPLE_PRICE] = httpx.Response(
            200, json={"bitcoin": {"usd": 64999.0, "usd_24h_change": 2.5}}
        )

        quote = (await service.get_price("BTC", "USD")).value

        assert quote is not None
        assert quote.source == "coingecko"
        assert quote.price == Decimal("64999.0")
        assert quote.change_24h == Decimal("2.5")
        params = upstream.calls(SIMPLE_PRICE)[0].url.params
        assert params["ids"] == "bitcoin"
        assert params["vs_currencies"] == "usd"

    @pytest.mark.asyncio
    async def test_invalid_binance_price_falls_back(self, service: CryptoService, upstream) -> None:
        upstream.routes[BINANCE] = httpx.Response(200, json={"lastPrice": "NaN"})
        upstream.routes[SIMPLE_PRICE] = httpx.Response(200, json={"bitcoin": {"usd": 1}})

        quote = (await service.get_price("BTC")).value

        assert quote is not None
        assert quote.source == "coingecko"

    @pytest.mark.asyncio
    async def test_unknown_symbol_skips_coingecko(self, service: CryptoService, upstream) -> None:
        lookup = await service.get_price("NOTACOIN")

        assert lookup.value is None
        assert upstream.calls(SIMPLE_PRICE) == []

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, service: CryptoService, upstream, clock) -> None:
        await service.get_price("BTC")
        clock.advance(30)
        lookup = await service.get_price("BTC")

        assert lookup.cache_hit is True
        assert len(upstream.calls(BINANCE)) == 1

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(self, service: CryptoService, upstream, clock) -> None:
        await service.get_price("BTC")
        clock.advance(61)
        lookup = await service.get_price("BTC")

        assert lookup.cache_hit is False
        assert len(upstream.calls(BINANCE)) == 2

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, service: CryptoService, cache: TTLCache) -> None:
        await service.get_price("NOTACOIN")
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class TestGetPrices:
    @pytest.mark.asyncio
    async def test_partial_failure_drops_unknown(self, service: CryptoService) -> None:
        lookup = await service.get_prices(["BTC", "UNKNOWN"])

        assert [q.symbol for q in lookup.value] == ["BTC"]

    @pytest.mark.asyncio
    async def test_request_order_preserved(self, service: CryptoService) -> None:
        lookup = await service.get_prices(["ETH", " btc "])

        assert [q.symbol for q in lookup.value] == ["ETH", "BTC"]

    @pytest.mark.asyncio
    async def test_all_failing_returns_empty_and_not_cached(
        self, service: CryptoService, cache: TTLCache
    ) -> None:
        lookup = await service.get_prices(["FOO", "BAR"])

        assert lookup.value == []
        assert cache.get("crypto:FOO,BAR:USD") is None

    @pytest.mark.asyncio
    async def test_symbols_fetched_concurrently(self, service: CryptoService, upstream) -> None:
        in_flight = 0
        peak = 0

        async def slow_ticker(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return httpx.Response(200, json={"lastPrice": "1.5"})

        upstream.routes[BINANCE] = slow_ticker

        lookup = await service.get_prices(["BTC", "ETH", "SOL"])

        assert len(lookup.value) == 3
        assert peak == 3

    @pytest.mark.asyncio
    async def test_batch_served_from_cache(self, service: CryptoService, upstream) -> None:
        await service.get_prices(["BTC", "ETH"])
        lookup = await service.get_prices(["BTC", "ETH"])

        assert lookup.cache_hit is True
        assert len(upstream.calls(BINANCE)) == 2


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestGetHistory:
    @pytest.mark.asyncio
    async def test_buckets_to_one_point_per_day(self, service: CryptoService, upstream) -> None:
        upstream.routes[BTC_CHART] = httpx.Response(
            200,
            json={
                "prices": [
                    [MAR_1 + 3_600_000, 60000.0],
                    [MAR_1 + 20 * 3_600_000, 61000.0],
                    [MAR_1 + DAY + 3_600_000, 62000.0],
                ]
            },
        )

        lookup = await service.get_history("BTC", "USD", 7)

        assert [(p.date, p.price) for p in lookup.value] == [
            ("2024-03-01", Decimal("61000.0")),
            ("2024-03-02", Decimal("62000.0")),
        ]
        params = upstream.calls(BTC_CHART)[0].url.params
        assert params["vs_currency"] == "usd"
        assert params["days"] == "7"

    @pytest.mark.asyncio
    async def test_days_clamped(self, service: CryptoService, upstream) -> None:
        upstream.routes[BTC_CHART] = httpx.Response(200, json={"prices": []})

        await service.get_history("BTC", "USD", 500)

        assert upstream.calls(BTC_CHART)[0].url.params["days"] == "90"

    @pytest.mark.asyncio
    async def test_unknown_symbol_no_request(self, service: CryptoService, upstream) -> None:
        lookup = await service.get_history("NOTACOIN", "USD", 7)

        assert lookup.value == []
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_long_range_retries_once(self, service: CryptoService, upstream) -> None:
        responses = iter([httpx.Response(503), httpx.Response(200, json={"prices": [[MAR_1, 1.0]]})])
        upstream.routes[BTC_CHART] = lambda request: next(responses)

        lookup = await service.get_history("BTC", "USD", 30)

        assert len(lookup.value) == 1
        assert len(upstream.calls(BTC_CHART)) == 2

    @pytest.mark.asyncio
    async def test_short_range_does_not_retry(self, service: CryptoService, upstream) -> None:
        upstream.routes[BTC_CHART] = httpx.Response(503)

        lookup = await service.get_history("BTC", "USD", 7)

        assert lookup.value == []
        assert len(upstream.calls(BTC_CHART)) == 1

    @pytest.mark.asyncio
    async def test_non_empty_history_cached(self, service: CryptoService, upstream) -> None:
        upstream.routes[BTC_CHART] = httpx.Response(200, json={"prices": [[MAR_1, 1.0]]})

        await service.get_history("BTC", "USD", 7)
        lookup = await service.get_history("BTC", "USD", 7)

        assert lookup.cache_hit is True
        assert len(upstream.calls(BTC_CHART)) == 1

    @pytest.mark.asyncio
    async def test_empty_history_not_cached(self, service: CryptoService, upstream) -> None:
        upstream.routes[BTC_CHART] = httpx.Response(200, json={"prices": []})

        await service.get_history("BTC", "USD", 7)
        await service.get_history("BTC", "USD", 7)

        assert len(upstream.calls(BTC_CHART)) == 2
