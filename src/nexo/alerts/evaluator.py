"""Price alert evaluation.

The decision core (threshold, cooldown, price resolution, due-alert
selection, message text) is pure and takes ``now`` explicitly.
AlertEvaluator wires it to the stores, the price services and the push
transport. Both the background scheduler and the cron endpoint call
AlertEvaluator.evaluate_all().

Alert lifecycle across ticks: armed -> fired -> cooling down -> armed.
Disabled alerts are never loaded.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from nexo.config import AlertSettings
from nexo.data.store import AlertStore, PushTokenStore
from nexo.logging import get_logger
from nexo.market_data.crypto import CryptoService
from nexo.market_data.forex import ForexService
from nexo.market_data.ves import VesService
from nexo.models import Alert, AlertDirection, AlertType, EvaluationResult, VesQuote
from nexo.notifications.push import PushTransport

logger = get_logger(__name__)

NOTIFICATION_TITLE = "⚡ Alerta de precio"

_VES_LABELS = {
    "oficial": "Dólar Oficial (BCV)",
    "paralelo": "Dólar Paralelo",
}


@dataclass
class PriceMap:
    """Quotes pre-fetched once per tick, shared by every alert."""

    ves: VesQuote | None = None
    crypto: dict[str, Decimal] = field(default_factory=dict)
    forex: dict[str, Decimal] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pure decision core
# ---------------------------------------------------------------------------


def check_threshold(alert: Alert, price: Decimal) -> bool:
    """``above`` fires at or over the threshold, ``below`` at or under it."""
    if alert.direction == AlertDirection.ABOVE:
        return price >= alert.threshold
    if alert.direction == AlertDirection.BELOW:
        return price <= alert.threshold
    return False


def is_in_cooldown(alert: Alert, now: datetime, cooldown: timedelta) -> bool:
    if alert.triggered_at is None:
        return False
    triggered_at = alert.triggered_at
    if triggered_at.tzinfo is None:
        triggered_at = triggered_at.replace(tzinfo=timezone.utc)
    return now - triggered_at < cooldown


def resolve_price(alert: Alert, prices: PriceMap) -> Decimal | None:
    """Current price an alert compares against, or None if unresolved."""
    if alert.type == AlertType.VES:
        if prices.ves is None:
            return None
        if alert.symbol.lower() == "oficial":
            return prices.ves.oficial
        if alert.symbol.lower() == "paralelo":
            return prices.ves.paralelo
        return None
    if alert.type == AlertType.CRYPTO:
        return prices.crypto.get(alert.symbol.upper())
    if alert.type == AlertType.FOREX:
        return prices.forex.get(alert.symbol.upper())
    return None


def select_due_alerts(
    alerts: Iterable[Alert],
    prices: PriceMap,
    now: datetime,
    cooldown: timedelta,
) -> list[tuple[Alert, Decimal]]:
    """Alerts that should fire now, paired with the price that fired them."""
    due = []
    for alert in alerts:
        try:
            price = resolve_price(alert, prices)
            if price is None:
                continue
            if not check_threshold(alert, price):
                continue
            if is_in_cooldown(alert, now, cooldown):
                logger.debug("alert_in_cooldown", alert_id=alert.id)
                continue
            due.append((alert, price))
        except Exception:
            logger.warning("alert_evaluation_failed", alert_id=alert.id, exc_info=True)
    return due


def _format_amount(value: Decimal) -> str:
    """Format like es-VE locale: ``.`` thousands, ``,`` decimals, at most 2 decimals."""
    rounded = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    integer, _, fraction = f"{rounded:,.2f}".partition(".")
    fraction = fraction.rstrip("0")
    integer = integer.replace(",", ".")
    return f"{integer},{fraction}" if fraction else integer


def symbol_label(alert: Alert) -> str:
    if alert.type == AlertType.VES:
        return _VES_LABELS.get(alert.symbol.lower(), alert.symbol)
    if alert.type == AlertType.FOREX:
        return alert.symbol.replace("_", "/")
    return alert.symbol


def build_notification(alert: Alert, price: Decimal) -> tuple[str, str]:
    """Title and body of the push notification for a fired alert."""
    verb = "superó" if alert.direction == AlertDirection.ABOVE else "bajó de"
    body = (
        f"{symbol_label(alert)} {verb} {_format_amount(alert.threshold)}. "
        f"Precio actual: {_format_amount(price)}"
    )
    return NOTIFICATION_TITLE, body


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class AlertEvaluator:
    """Evaluates every enabled alert against current prices.

    Args:
        alerts: Alert persistence (load enabled, mark triggered).
        push_tokens: Device tokens per user.
        push: Push delivery backend.
        crypto: Crypto price service.
        forex: Forex rate service.
        ves: VES quote service.
        settings: Cooldown configuration.
    """

    def __init__(
        self,
        alerts: AlertStore,
        push_tokens: PushTokenStore,
        push: PushTransport,
        crypto: CryptoService,
        forex: ForexService,
        ves: VesService,
        settings: AlertSettings | None = None,
    ) -> None:
        self._alerts = alerts
        self._push_tokens = push_tokens
        self._push = push
        self._crypto = crypto
        self._forex = forex
        self._ves = ves
        self._cooldown = timedelta(seconds=(settings or AlertSettings()).cooldown_seconds)
        self._tick_lock = asyncio.Lock()

    async def evaluate_all(self, now: datetime | None = None) -> EvaluationResult:
        """Run one evaluation tick.

        Store failures while loading alerts propagate. Failures for a single
        alert (tokens, push, mark triggered) are logged and skipped.
        Ticks never overlap: a call made while another tick is running is
        skipped and returns an empty result.
        """
        if self._tick_lock.locked():
            logger.info("alert_evaluation_skipped", reason="tick_in_progress")
            return EvaluationResult(evaluated=0, triggered=0)

        async with self._tick_lock:
            return await self._evaluate(now)

    async def _evaluate(self, now: datetime | None) -> EvaluationResult:
        alerts = await self._alerts.find_all_enabled()
        if not alerts:
            return EvaluationResult(evaluated=0, triggered=0)

        now = now or datetime.now(timezone.utc)
        logger.info("alert_evaluation_started", alerts=len(alerts))

        prices = await self.prefetch_prices(alerts)
        triggered = 0

        for alert, price in select_due_alerts(alerts, prices, now, self._cooldown):
            try:
                tokens = await self._push_tokens.find_by_user(alert.user_id)
                if not tokens:
                    logger.debug("alert_no_push_tokens", alert_id=alert.id, user_id=alert.user_id)
                    continue

                title, body = build_notification(alert, price)
                await self._push.notify(
                    tokens,
                    title,
                    body,
                    {"alertId": alert.id, "type": alert.type.value, "symbol": alert.symbol},
                )
                await self._alerts.mark_triggered(alert.id, now)
                triggered += 1
                logger.info(
                    "alert_triggered",
                    alert_id=alert.id,
                    symbol=alert.symbol,
                    price=str(price),
                    threshold=str(alert.threshold),
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "alert_evaluation_failed",
                    alert_id=alert.id,
                    error=str(e),
                    exc_info=True,
                )

        logger.info("alert_evaluation_complete", evaluated=len(alerts), triggered=triggered)
        return EvaluationResult(evaluated=len(alerts), triggered=triggered)

    async def prefetch_prices(self, alerts: list[Alert]) -> PriceMap:
        """Fetch each distinct quote the alert set needs, concurrently."""
        prices = PriceMap()

        async def fetch_ves() -> None:
            prices.ves = (await self._ves.get_price()).value

        async def fetch_crypto(symbol: str) -> None:
            quote = (await self._crypto.get_price(symbol, "USD")).value
            if quote is not None:
                prices.crypto[symbol] = quote.price

        async def fetch_forex(pair: str) -> None:
            base, sep, target = pair.partition("_")
            if not sep or not base or not target:
                logger.warning("alert_forex_symbol_invalid", symbol=pair)
                return
            quote = (await self._forex.get_rate(base, target)).value
            if quote is not None:
                prices.forex[pair] = quote.rate

        async def guarded(name: str, coro) -> None:  # type: ignore[no-untyped-def]
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("alert_prefetch_failed", quote=name, error=str(e))

        tasks = []
        if any(a.type == AlertType.VES for a in alerts):
            tasks.append(guarded("ves", fetch_ves()))
        for symbol in sorted({a.symbol.upper() for a in alerts if a.type == AlertType.CRYPTO}):
            tasks.append(guarded(f"crypto:{symbol}", fetch_crypto(symbol)))
        for pair in sorted({a.symbol.upper() for a in alerts if a.type == AlertType.FOREX}):
            tasks.append(guarded(f"forex:{pair}", fetch_forex(pair)))

        await asyncio.gather(*tasks)
        return prices
