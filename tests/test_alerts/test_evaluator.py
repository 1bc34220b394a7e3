"""Tests for alert evaluation: decision core, notification text and the evaluator tick."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from nexo.alerts.evaluator import (
    NOTIFICATION_TITLE,
    AlertEvaluator,
    PriceMap,
    build_notification,
    check_threshold,
    is_in_cooldown,
    resolve_price,
    select_due_alerts,
)
from nexo.config import AlertSettings
from nexo.market_data.cache import Lookup
from nexo.models import (
    Alert,
    AlertDirection,
    AlertType,
    CryptoQuote,
    ForexQuote,
    PushResult,
    VesQuote,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def make_alert(
    alert_id: str = "a1",
    type: AlertType = AlertType.CRYPTO,
    symbol: str = "BTC",
    threshold: str = "70000",
    direction: AlertDirection = AlertDirection.ABOVE,
    triggered_at: datetime | None = None,
) -> Alert:
    return Alert(
        id=alert_id,
        user_id="user-1",
        type=type,
        symbol=symbol,
        threshold=Decimal(threshold),
        direction=direction,
        triggered_at=triggered_at,
    )


VES_QUOTE = VesQuote(oficial=Decimal("36.5"), paralelo=Decimal("39.2"), date="2024-03-01", source="dolarapi")


# ---------------------------------------------------------------------------
# Decision core
# ---------------------------------------------------------------------------


class TestCheckThreshold:
    def test_above_fires_at_equality(self) -> None:
        alert = make_alert(threshold="100")
        assert check_threshold(alert, Decimal("100")) is True
        assert check_threshold(alert, Decimal("99.99")) is False

    def test_below_fires_at_equality(self) -> None:
        alert = make_alert(threshold="100", direction=AlertDirection.BELOW)
        assert check_threshold(alert, Decimal("100")) is True
        assert check_threshold(alert, Decimal("100.01")) is False


class TestCooldown:
    def test_never_triggered(self) -> None:
        assert is_in_cooldown(make_alert(), NOW, HOUR) is False

    def test_recent_trigger_cools_down(self) -> None:
        alert = make_alert(triggered_at=NOW - timedelta(minutes=30))
        assert is_in_cooldown(alert, NOW, HOUR) is True

    def test_old_trigger_rearms(self) -> None:
        alert = make_alert(triggered_at=NOW - timedelta(minutes=90))
        assert is_in_cooldown(alert, NOW, HOUR) is False

    def test_naive_trigger_time_is_utc(self) -> None:
        alert = make_alert(triggered_at=datetime(2024, 3, 1, 11, 30))
        assert is_in_cooldown(alert, NOW, HOUR) is True


class TestResolvePrice:
    def test_ves_series_case_insensitive(self) -> None:
        prices = PriceMap(ves=VES_QUOTE)
        assert resolve_price(make_alert(type=AlertType.VES, symbol="Oficial"), prices) == Decimal("36.5")
        assert resolve_price(make_alert(type=AlertType.VES, symbol="paralelo"), prices) == Decimal("39.2")
        assert resolve_price(make_alert(type=AlertType.VES, symbol="euro"), prices) is None

    def test_ves_without_quote(self) -> None:
        assert resolve_price(make_alert(type=AlertType.VES, symbol="oficial"), PriceMap()) is None

    def test_crypto_and_forex_by_upper_symbol(self) -> None:
        prices = PriceMap(crypto={"BTC": Decimal("1")}, forex={"USD_EUR": Decimal("0.9")})
        assert resolve_price(make_alert(symbol="btc"), prices) == Decimal("1")
        assert resolve_price(make_alert(type=AlertType.FOREX, symbol="usd_eur"), prices) == Decimal("0.9")
        assert resolve_price(make_alert(symbol="ETH"), prices) is None


class TestSelectDueAlerts:
    def test_filters_unresolved_unmet_and_cooling(self) -> None:
        prices = PriceMap(crypto={"BTC": Decimal("71000")})
        fires = make_alert("fires")
        unmet = make_alert("unmet", threshold="80000")
        cooling = make_alert("cooling", triggered_at=NOW - timedelta(minutes=5))
        unresolved = make_alert("unresolved", symbol="ETH")

        due = select_due_alerts([fires, unmet, cooling, unresolved], prices, NOW, HOUR)

        assert due == [(fires, Decimal("71000"))]


class TestBuildNotification:
    def test_crypto_above(self) -> None:
        title, body = build_notification(make_alert(), Decimal("71234.5"))

        assert title == NOTIFICATION_TITLE
        assert body == "BTC superó 70.000. Precio actual: 71.234,5"

    def test_ves_below_uses_series_label(self) -> None:
        alert = make_alert(type=AlertType.VES, symbol="oficial", threshold="37", direction=AlertDirection.BELOW)

        _, body = build_notification(alert, Decimal("36.5"))

        assert body == "Dólar Oficial (BCV) bajó de 37. Precio actual: 36,5"

    def test_forex_pair_label(self) -> None:
        alert = make_alert(type=AlertType.FOREX, symbol="USD_EUR", threshold="0.9")

        _, body = build_notification(alert, Decimal("0.9234"))

        assert body == "USD/EUR superó 0,9. Precio actual: 0,92"


# ---------------------------------------------------------------------------
# Evaluator tick
# ---------------------------------------------------------------------------


@pytest.fixture
def alert_store() -> AsyncMock:
    store = AsyncMock()
    store.find_all_enabled = AsyncMock(return_value=[])
    return store


@pytest.fixture
def token_store() -> AsyncMock:
    store = AsyncMock()
    store.find_by_user = AsyncMock(return_value=["ExponentPushToken[abc]"])
    return store


@pytest.fixture
def push() -> AsyncMock:
    push = AsyncMock()
    push.notify = AsyncMock(return_value=PushResult(sent=1, failed=0))
    return push


@pytest.fixture
def crypto() -> AsyncMock:
    crypto = AsyncMock()
    crypto.get_price = AsyncMock(
        return_value=Lookup(CryptoQuote(symbol="BTC", price=Decimal("71000"), currency="USD", source="binance"), False)
    )
    return crypto


@pytest.fixture
def forex() -> AsyncMock:
    forex = AsyncMock()
    forex.get_rate = AsyncMock(
        return_value=Lookup(
            ForexQuote(base="USD", target="EUR", rate=Decimal("0.92"), date="2024-03-01", source="frankfurter"),
            False,
        )
    )
    return forex


@pytest.fixture
def ves() -> AsyncMock:
    ves = AsyncMock()
    ves.get_price = AsyncMock(return_value=Lookup(VES_QUOTE, False))
    return ves


@pytest.fixture
def evaluator(alert_store, token_store, push, crypto, forex, ves) -> AlertEvaluator:
    return AlertEvaluator(
        alert_store, token_store, push, crypto, forex, ves, AlertSettings(cooldown_seconds=3600)
    )


class TestEvaluateAll:
    @pytest.mark.asyncio
    async def test_no_alerts(self, evaluator: AlertEvaluator, crypto: AsyncMock) -> None:
        result = await evaluator.evaluate_all(now=NOW)

        assert (result.evaluated, result.triggered) == (0, 0)
        crypto.get_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fires_and_marks_triggered(
        self, evaluator: AlertEvaluator, alert_store: AsyncMock, push: AsyncMock
    ) -> None:
        alert_store.find_all_enabled.return_value = [make_alert("a1"), make_alert("a2", threshold="90000")]

        result = await evaluator.evaluate_all(now=NOW)

        assert (result.evaluated, result.triggered) == (2, 1)
        push.notify.assert_awaited_once_with(
            ["ExponentPushToken[abc]"],
            NOTIFICATION_TITLE,
            "BTC superó 70.000. Precio actual: 71.000",
            {"alertId": "a1", "type": "crypto", "symbol": "BTC"},
        )
        alert_store.mark_triggered.assert_awaited_once_with("a1", NOW)

    @pytest.mark.asyncio
    async def test_user_without_tokens_is_skipped(
        self, evaluator: AlertEvaluator, alert_store: AsyncMock, token_store: AsyncMock, push: AsyncMock
    ) -> None:
        alert_store.find_all_enabled.return_value = [make_alert()]
        token_store.find_by_user.return_value = []

        result = await evaluator.evaluate_all(now=NOW)

        assert result.triggered == 0
        push.notify.assert_not_awaited()
        alert_store.mark_triggered.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_push_failure_isolated_per_alert(
        self, evaluator: AlertEvaluator, alert_store: AsyncMock, push: AsyncMock
    ) -> None:
        alert_store.find_all_enabled.return_value = [make_alert("a1"), make_alert("a2")]
        push.notify.side_effect = [RuntimeError("push down"), PushResult(sent=1, failed=0)]

        result = await evaluator.evaluate_all(now=NOW)

        assert result.triggered == 1
        alert_store.mark_triggered.assert_awaited_once_with("a2", NOW)

    @pytest.mark.asyncio
    async def test_cooling_alert_not_refired(
        self, evaluator: AlertEvaluator, alert_store: AsyncMock, push: AsyncMock
    ) -> None:
        alert_store.find_all_enabled.return_value = [make_alert(triggered_at=NOW - timedelta(minutes=30))]

        result = await evaluator.evaluate_all(now=NOW)

        assert (result.evaluated, result.triggered) == (1, 0)
        push.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_load_failure_propagates(self, evaluator: AlertEvaluator, alert_store: AsyncMock) -> None:
        alert_store.find_all_enabled.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await evaluator.evaluate_all(now=NOW)

    @pytest.mark.asyncio
    async def test_overlapping_ticks_notify_once(
        self, evaluator: AlertEvaluator, alert_store: AsyncMock, push: AsyncMock
    ) -> None:
        alert_store.find_all_enabled.return_value = [make_alert(threshold="50")]

        async def slow_notify(*args, **kwargs) -> PushResult:
            await asyncio.sleep(0.05)
            return PushResult(sent=1, failed=0)

        push.notify.side_effect = slow_notify

        first, second = await asyncio.gather(evaluator.evaluate_all(now=NOW), evaluator.evaluate_all(now=NOW))

        assert push.notify.await_count == 1
        assert alert_store.mark_triggered.await_count == 1
        assert sorted([first.triggered, second.triggered]) == [0, 1]

    @pytest.mark.asyncio
    async def test_next_tick_runs_after_previous_finished(
        self, evaluator: AlertEvaluator, alert_store: AsyncMock
    ) -> None:
        alert_store.find_all_enabled.return_value = [make_alert(threshold="50")]

        await evaluator.evaluate_all(now=NOW)
        result = await evaluator.evaluate_all(now=NOW)

        assert result.evaluated == 1
        assert alert_store.find_all_enabled.await_count == 2


class TestPrefetchPrices:
    @pytest.mark.asyncio
    async def test_quotes_fetched_concurrently(
        self, evaluator: AlertEvaluator, crypto: AsyncMock, forex: AsyncMock, ves: AsyncMock
    ) -> None:
        in_flight = 0
        peak = 0

        def tracked(result):  # type: ignore[no-untyped-def]
            async def call(*args, **kwargs):  # type: ignore[no-untyped-def]
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.02)
                in_flight -= 1
                return result

            return call

        crypto.get_price.side_effect = tracked(crypto.get_price.return_value)
        forex.get_rate.side_effect = tracked(forex.get_rate.return_value)
        ves.get_price.side_effect = tracked(ves.get_price.return_value)
        alerts = [
            make_alert("1", symbol="BTC"),
            make_alert("2", symbol="ETH"),
            make_alert("3", type=AlertType.FOREX, symbol="USD_EUR"),
            make_alert("4", type=AlertType.VES, symbol="oficial"),
        ]

        await evaluator.prefetch_prices(alerts)

        assert peak == 4

    @pytest.mark.asyncio
    async def test_each_distinct_quote_fetched_once(
        self, evaluator: AlertEvaluator, crypto: AsyncMock, forex: AsyncMock, ves: AsyncMock
    ) -> None:
        alerts = [
            make_alert("1", symbol="BTC"),
            make_alert("2", symbol="btc"),
            make_alert("3", type=AlertType.FOREX, symbol="USD_EUR"),
            make_alert("4", type=AlertType.FOREX, symbol="usd_eur"),
            make_alert("5", type=AlertType.VES, symbol="oficial"),
            make_alert("6", type=AlertType.VES, symbol="paralelo"),
        ]

        prices = await evaluator.prefetch_prices(alerts)

        crypto.get_price.assert_awaited_once_with("BTC", "USD")
        forex.get_rate.assert_awaited_once_with("USD", "EUR")
        ves.get_price.assert_awaited_once()
        assert prices.crypto == {"BTC": Decimal("71000")}
        assert prices.forex == {"USD_EUR": Decimal("0.92")}
        assert prices.ves == VES_QUOTE

    @pytest.mark.asyncio
    async def test_unneeded_domains_not_fetched(
        self, evaluator: AlertEvaluator, forex: AsyncMock, ves: AsyncMock
    ) -> None:
        await evaluator.prefetch_prices([make_alert()])

        forex.get_rate.assert_not_awaited()
        ves.get_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_fetch_leaves_quote_unresolved(
        self, evaluator: AlertEvaluator, crypto: AsyncMock
    ) -> None:
        crypto.get_price.side_effect = RuntimeError("timeout")

        prices = await evaluator.prefetch_prices(
            [make_alert(), make_alert("2", type=AlertType.VES, symbol="oficial")]
        )

        assert prices.crypto == {}
        assert prices.ves == VES_QUOTE

    @pytest.mark.asyncio
    async def test_malformed_forex_symbol_skipped(self, evaluator: AlertEvaluator, forex: AsyncMock) -> None:
        prices = await evaluator.prefetch_prices([make_alert(type=AlertType.FOREX, symbol="USDEUR")])

        assert prices.forex == {}
        forex.get_rate.assert_not_awaited()
