"""USD -> VES (bolivar) quotes, hourly snapshots and daily history.

DolarAPI publishes the official (BCV) and parallel market rates as a list of
named series. History is not available upstream, so the service stores an
hourly snapshot and serves history from the local store.
"""

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import TYPE_CHECKING

from nexo.config import CacheSettings, ProviderSettings, VesJobSettings
from nexo.exceptions import PersistenceError
from nexo.http.fetcher import HttpFetcher
from nexo.logging import get_logger
from nexo.market_data.cache import Lookup, TTLCache
from nexo.market_data.fallback import FallbackChain, NamedAdapter
from nexo.market_data.forex import ForexService
from nexo.market_data.history import VES_DAYS, bucket_by_day, clamp_days
from nexo.market_data.parsing import parse_decimal
from nexo.models import VesHistoryPoint, VesQuote, VesSnapshot

if TYPE_CHECKING:
    from nexo.data.store import VesHistoryStore

logger = get_logger(__name__)

ZERO = Decimal("0")


class DolarApiAdapter:
    """Official and parallel USD/VES rates from DolarAPI.

    Picks the ``oficial`` and ``paralelo`` series by case-insensitive name.
    A missing series is reported as zero; when both are missing (or neither
    is positive) the quote is unavailable.
    """

    name = "dolarapi"

    def __init__(self, fetcher: HttpFetcher, url: str, timeout: float) -> None:
        self._fetcher = fetcher
        self._url = url
        self._timeout = timeout

    async def fetch(self) -> VesQuote | None:
        data = await self._fetcher.fetch_json(self._url, timeout=self._timeout, label="dolarapi")
        if not isinstance(data, list):
            return None

        series: dict[str, dict] = {}
        for item in data:
            if isinstance(item, dict) and isinstance(item.get("nombre"), str):
                series.setdefault(item["nombre"].strip().lower(), item)

        oficial_row = series.get("oficial")
        paralelo_row = series.get("paralelo")
        oficial = parse_decimal(oficial_row.get("promedio")) if oficial_row else None
        paralelo = parse_decimal(paralelo_row.get("promedio")) if paralelo_row else None
        if oficial is None and paralelo is None:
            return None

        oficial = oficial if oficial is not None else ZERO
        paralelo = paralelo if paralelo is not None else ZERO
        if oficial <= 0 and paralelo <= 0:
            return None

        published = None
        for row in (oficial_row, paralelo_row):
            if row and isinstance(row.get("fechaActualizacion"), str):
                published = row["fechaActualizacion"][:10]
                break

        return VesQuote(
            oficial=oficial,
            paralelo=paralelo,
            date=published or datetime.now(timezone.utc).date().isoformat(),
            source=self.name,
        )


class VesService:
    """Cache-aside VES quotes plus snapshot-backed daily history.

    Args:
        fetcher: Shared outbound HTTP fetcher.
        cache: Shared TTL cache.
        forex: Used for the USD -> EUR rate (EUR-denominated fields).
        store: Snapshot persistence.
        providers: Upstream URLs and timeouts.
        cache_settings: TTLs for price and history.
        tz: Timezone whose calendar days define history buckets.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        cache: TTLCache,
        forex: ForexService,
        store: "VesHistoryStore",
        providers: ProviderSettings | None = None,
        cache_settings: CacheSettings | None = None,
        tz: tzinfo = timezone.utc,
    ) -> None:
        providers = providers or ProviderSettings()
        self._cache = cache
        self._forex = forex
        self._store = store
        self._ttl = cache_settings or CacheSettings()
        self._backfill_timeout = providers.backfill_timeout
        self._tz = tz
        dolarapi = DolarApiAdapter(fetcher, providers.dolarapi_url, providers.dolarapi_timeout)
        self._chain: FallbackChain[VesQuote] = FallbackChain(
            "ves", [NamedAdapter(dolarapi.name, dolarapi.fetch)]
        )

    async def _usd_eur(self) -> Decimal | None:
        lookup = await self._forex.get_rate("USD", "EUR")
        if lookup.value is None or lookup.value.rate <= 0:
            return None
        return lookup.value.rate

    async def get_price(self) -> Lookup[VesQuote | None]:
        """Current USD/VES quote with EUR-derived fields when available."""
        key = "ves:usd"
        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        quote = await self._chain.first()
        if quote is None:
            return Lookup(None, False)

        usd_eur = await self._usd_eur()
        if usd_eur is not None:
            quote = dataclasses.replace(
                quote,
                oficial_eur=quote.oficial / usd_eur if quote.oficial > 0 else None,
                paralelo_eur=quote.paralelo / usd_eur if quote.paralelo > 0 else None,
            )

        self._cache.set(key, quote, self._ttl.ves_price_ttl)
        return Lookup(quote, False)

    async def get_history(
        self, days: int = 7, now: datetime | None = None
    ) -> Lookup[list[VesHistoryPoint]]:
        """One point per day from stored snapshots (last snapshot of the day wins)."""
        days = clamp_days(days, *VES_DAYS)
        key = f"ves:history:{days}"

        cached = self._cache.get(key)
        if cached is not None:
            return Lookup(cached, True)

        now = now or datetime.now(timezone.utc)
        try:
            snapshots = await self._store.get_snapshots(since=now - timedelta(days=days))
        except PersistenceError as e:
            logger.error("ves_history_read_failed", error=str(e), exc_info=True)
            return Lookup([], False)

        history = []
        for day, snap in bucket_by_day(((s.recorded_at, s) for s in snapshots), self._tz):
            point = VesHistoryPoint(date=day, oficial=snap.oficial, paralelo=snap.paralelo)
            if snap.usd_eur is not None and snap.usd_eur > 0:
                point = dataclasses.replace(
                    point,
                    oficial_eur=snap.oficial / snap.usd_eur,
                    paralelo_eur=snap.paralelo / snap.usd_eur,
                )
            history.append(point)

        if history:
            self._cache.set(key, history, self._ttl.ves_history_ttl)
        return Lookup(history, False)

    async def record_snapshot(self, now: datetime | None = None) -> VesSnapshot | None:
        """Fetch the current quote and upsert it under the current hour.

        Returns the stored snapshot, or None when no usable quote was available.
        """
        quote = (await self.get_price()).value
        if quote is None or (quote.oficial <= 0 and quote.paralelo <= 0):
            logger.warning("ves_snapshot_skipped", reason="no_quote")
            return None

        now = now or datetime.now(timezone.utc)
        snapshot = VesSnapshot(
            recorded_at=now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0),
            oficial=quote.oficial,
            paralelo=quote.paralelo,
            usd_eur=await self._usd_eur(),
        )
        await self._store.save_snapshot(snapshot)
        logger.info(
            "ves_snapshot_saved",
            recorded_at=snapshot.recorded_at.isoformat(),
            oficial=str(snapshot.oficial),
            paralelo=str(snapshot.paralelo),
        )
        return snapshot

    async def backfill_usd_eur(self, days: int = 90, now: datetime | None = None) -> int:
        """Fill ``usd_eur`` on stored snapshots from one Frankfurter range call.

        Returns the number of snapshot rows updated.
        """
        now = now or datetime.now(timezone.utc)
        start = (now - timedelta(days=days)).date()
        series = await self._forex.frankfurter.time_series(
            "USD", "EUR", start, timeout=self._backfill_timeout
        )
        if series is None:
            logger.warning("ves_backfill_unavailable", start=start.isoformat())
            return 0

        updated = 0
        for day, rate in series.items():
            if rate <= 0:
                continue
            try:
                updated += await self._store.set_usd_eur_for_day(day, rate)
            except PersistenceError as e:
                logger.warning("ves_backfill_row_failed", day=day, error=str(e))
        logger.info("ves_backfill_done", days=len(series), updated=updated)
        return updated


class VesSnapshotJob:
    """Background loop recording a VES snapshot every ``snapshot_interval``.

    On start it records one snapshot and runs one USD/EUR backfill, then
    records a snapshot per interval until stopped.
    """

    def __init__(self, service: VesService, settings: VesJobSettings | None = None) -> None:
        self._service = service
        self._settings = settings or VesJobSettings()
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("ves_snapshot_job_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("ves_snapshot_job_started", interval=self._settings.snapshot_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ves_snapshot_job_stopped")

    async def run_once(self) -> None:
        await self._service.record_snapshot()

    async def _loop(self) -> None:
        backfilled = False
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("ves_snapshot_error", exc_info=True)

            if not backfilled:
                backfilled = True
                try:
                    await self._service.backfill_usd_eur(self._settings.backfill_days)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.error("ves_backfill_error", exc_info=True)

            if self._running:
                await asyncio.sleep(self._settings.snapshot_interval)
