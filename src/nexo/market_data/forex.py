"""Fiat exchange rates from Frankfurter (ECB reference rates)."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from nexo.config import CacheSettings, HttpSettings, ProviderSettings
from nexo.http.fetcher import HttpFetcher
from nexo.logging import get_logger
from nexo.market_data.cache import Lookup, TTLCache
from nexo.market_data.fallback import FallbackChain, NamedAdapter
from nexo.market_data.history import FOREX_DAYS, clamp_days
from nexo.market_data.parsing import parse_decimal
from nexo.models import ForexHistoryPoint, ForexQuote

logger = get_logger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


class FrankfurterAdapter:
    """Latest and time-series rates from the Frankfurter API."""

    name = "frankfurter"

    def __init__(
        self,
        fetcher: HttpFetcher,
        base_url: str,
        timeout: float,
        history_timeout: float = 10.0,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._history_timeout = history_timeout

    async def fetch(self, base: str, target: str) -> ForexQuote | None:
        data = await self._fetcher.fetch_json(
            f"{self._base_url}/v1/latest",
            params={"base": base, "symbols": target},
            timeout=self._timeout,
            label=f"frankfurter {base}/{target}",
        )
        if not isinstance(data, dict) or not isinstance(data.get("rates"), dict):
            return None

        rate = parse_decimal(data["rates"].get(target))
        if rate is None:
            return None

        return ForexQuote(
            base=str(data.get("base") or base).upper(),
            target=target,
            rate=rate,
            date=data.get("date") or _today().isoformat(),
            source=self.name,
        )

    async def time_series(
        self,
        base: str,
        target: str,
        start: date,
        end: date | None = None,
        timeout: float | None = None,
    ) -> dict[str, Decimal] | None:
        """Daily rates between ``start`` and ``end`` (open-ended when ``end`` is None).

        Returns a ``{YYYY-MM-DD: rate}`` map, or None when the upstream failed.
        Days with a missing or invalid rate are skipped.
        """
        period = f"{start.isoformat()}..{end.isoformat() if end else ''}"
        data = await self._fetcher.fetch_json(
            f"{self._base_url}/v1/{period}",
            params={"base": base, "symbols": target},
            timeout=timeout or self._history_timeout,
            label=f"frankfurter series {base}/{target} {period}",
        )
        if not isinstance(data, dict) or not isinstance(data.get("rates"), dict):
            return None

        series: dict[str, Decimal] = {}
        for day, row in data["rates"].items():
            if not isinstance(row, dict):
                continue
            rate = parse_decimal(row.get(target))
            if rate is not None:
                series[day] = rate
        return series


class ForexService:
    """Cache-aside fiat rates with an identity shortcut for same-currency pairs."""

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
        self.frankfurter = FrankfurterAdapter(
            fetcher,
            providers.frankfurter_base_url,
            http_settings.timeout_default,
            history_timeout=providers.forex_history_timeout,
        )
        self._chain: FallbackChain[ForexQuote] = FallbackChain(
            "forex", [NamedAdapter(self.frankfurter.name, self.frankfurter.fetch)]
        )

    async def get_rate(self, base: str, target: str) -> Lookup[ForexQuote | None]:
        """Latest ``base`` -> ``target`` rate, or None when unavailable."""
        base = base.upper()
        target = target.upper()

        if base == target:
            quote = ForexQuote(
                base=base,
                target=target,
                rate=Decimal("1"),
                date=_today().isoformat(),
                source="identity",
            )
            return Lookup(quote, False)

        key = f"forex:{base}:{target}"
        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        quote = await self._chain.first(base, target)
        if quote is not None:
            self._cache.set(key, quote, self._ttl.forex_price_ttl)
        return Lookup(quote, False)

    async def get_history(
        self, base: str, target: str, days: int = 30
    ) -> Lookup[list[ForexHistoryPoint]]:
        """Daily rates for the last ``days`` days (clamped to 1..365)."""
        base = base.upper()
        target = target.upper()
        days = clamp_days(days, *FOREX_DAYS)
        key = f"forex:history:{base}:{target}:{days}"

        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        if base == target:
            return Lookup([], False)

        end = _today()
        series = await self.frankfurter.time_series(base, target, end - timedelta(days=days), end)
        if series is None:
            logger.warning("forex_history_unavailable", base=base, target=target, days=days)
            return Lookup([], False)

        history = [ForexHistoryPoint(date=day, rate=rate) for day, rate in sorted(series.items())]
        self._cache.set(key, history, self._ttl.forex_history_ttl)
        return Lookup(history, False)
