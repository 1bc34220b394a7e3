"""Typed SQLite read/write abstraction for the row store.

All SQL is isolated behind AlertStore, PushTokenStore and VesHistoryStore.
Monetary values are stored as TEXT and restored as Decimal on read.
Timestamps are stored as UTC ISO-8601 strings so range queries compare
lexicographically.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

import aiosqlite

from nexo.data.database import Database
from nexo.exceptions import PersistenceError, RowNotFoundError
from nexo.logging import get_logger
from nexo.models import Alert, AlertDirection, AlertType, VesSnapshot

logger = get_logger(__name__)

_ALERT_COLUMNS = (
    "id, user_id, type, symbol, threshold, direction, enabled, "
    "triggered_at, created_at, updated_at"
)


def _to_text(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


def _from_text(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _db_errors(operation: str) -> Iterator[None]:
    """Translate driver errors into PersistenceError."""
    try:
        yield
    except aiosqlite.Error as e:
        logger.error("db_operation_failed", operation=operation, error=str(e))
        raise PersistenceError(f"{operation} failed: {e}") from e


def _row_to_alert(row: tuple) -> Alert:  # type: ignore[type-arg]
    return Alert(
        id=row[0],
        user_id=row[1],
        type=AlertType(row[2]),
        symbol=row[3],
        threshold=Decimal(row[4]),
        direction=AlertDirection(row[5]),
        enabled=bool(row[6]),
        triggered_at=_from_text(row[7]),
        created_at=_from_text(row[8]),
        updated_at=_from_text(row[9]),
    )


class AlertStore:
    """User price alerts.

    Usage:
        async with Database("data/nexo.db") as database:
            alerts = AlertStore(database)
            alert = await alerts.create("user-1", AlertType.CRYPTO, "BTC", Decimal("70000"), AlertDirection.ABOVE)
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def create(
        self,
        user_id: str,
        type: AlertType,
        symbol: str,
        threshold: Decimal,
        direction: AlertDirection,
        enabled: bool = True,
    ) -> Alert:
        now = _utcnow()
        alert = Alert(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=type,
            symbol=symbol.upper(),
            threshold=threshold,
            direction=direction,
            enabled=enabled,
            created_at=now.replace(microsecond=0),
            updated_at=now.replace(microsecond=0),
        )
        with _db_errors("create_alert"):
            await self._database.db.execute(
                f"INSERT INTO alerts ({_ALERT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    alert.id,
                    alert.user_id,
                    alert.type.value,
                    alert.symbol,
                    str(alert.threshold),
                    alert.direction.value,
                    1 if enabled else 0,
                    None,
                    _to_text(now),
                    _to_text(now),
                ),
            )
            await self._database.db.commit()
        logger.info("alert_created", alert_id=alert.id, user_id=user_id, symbol=alert.symbol)
        return alert

    async def set_enabled(self, alert_id: str, enabled: bool) -> Alert:
        with _db_errors("set_alert_enabled"):
            cursor = await self._database.db.execute(
                "UPDATE alerts SET enabled = ?, updated_at = ? WHERE id = ?",
                (1 if enabled else 0, _to_text(_utcnow()), alert_id),
            )
            await self._database.db.commit()
        if cursor.rowcount == 0:
            raise RowNotFoundError(f"Alert {alert_id} not found")
        return await self.get(alert_id)

    async def delete(self, alert_id: str) -> None:
        with _db_errors("delete_alert"):
            cursor = await self._database.db.execute(
                "DELETE FROM alerts WHERE id = ?", (alert_id,)
            )
            await self._database.db.commit()
        if cursor.rowcount == 0:
            raise RowNotFoundError(f"Alert {alert_id} not found")

    async def mark_triggered(self, alert_id: str, when: datetime) -> None:
        """Record that an alert fired at ``when`` (starts its cooldown)."""
        with _db_errors("mark_alert_triggered"):
            cursor = await self._database.db.execute(
                "UPDATE alerts SET triggered_at = ?, updated_at = ? WHERE id = ?",
                (_to_text(when), _to_text(_utcnow()), alert_id),
            )
            await self._database.db.commit()
        if cursor.rowcount == 0:
            raise RowNotFoundError(f"Alert {alert_id} not found")

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get(self, alert_id: str) -> Alert:
        with _db_errors("get_alert"):
            cursor = await self._database.db.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE id = ?", (alert_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise RowNotFoundError(f"Alert {alert_id} not found")
        return _row_to_alert(row)

    async def find_by_user(self, user_id: str) -> list[Alert]:
        with _db_errors("find_alerts_by_user"):
            cursor = await self._database.db.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_alert(row) for row in rows]

    async def find_all_enabled(self) -> list[Alert]:
        with _db_errors("find_enabled_alerts"):
            cursor = await self._database.db.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE enabled = 1 ORDER BY created_at ASC"
            )
            rows = await cursor.fetchall()
        return [_row_to_alert(row) for row in rows]


class PushTokenStore:
    """Device push tokens registered per user."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def register(self, user_id: str, token: str) -> None:
        """Register a token for a user (idempotent on ``(user_id, token)``)."""
        with _db_errors("register_push_token"):
            await self._database.db.execute(
                "INSERT OR IGNORE INTO push_tokens (user_id, token, created_at) VALUES (?, ?, ?)",
                (user_id, token, _to_text(_utcnow())),
            )
            await self._database.db.commit()

    async def remove(self, user_id: str, token: str) -> bool:
        """Remove a token. Returns False when it was not registered."""
        with _db_errors("remove_push_token"):
            cursor = await self._database.db.execute(
                "DELETE FROM push_tokens WHERE user_id = ? AND token = ?",
                (user_id, token),
            )
            await self._database.db.commit()
        return cursor.rowcount > 0

    async def find_by_user(self, user_id: str) -> list[str]:
        with _db_errors("find_push_tokens"):
            cursor = await self._database.db.execute(
                "SELECT token FROM push_tokens WHERE user_id = ? ORDER BY created_at ASC",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]


class VesHistoryStore:
    """Hourly USD/VES snapshots (one row per hour key)."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def save_snapshot(self, snapshot: VesSnapshot) -> None:
        """Upsert a snapshot keyed by its (hour-truncated) ``recorded_at``."""
        with _db_errors("save_ves_snapshot"):
            await self._database.db.execute(
                "INSERT OR REPLACE INTO ves_history (recorded_at, oficial, paralelo, usd_eur) "
                "VALUES (?, ?, ?, ?)",
                (
                    _to_text(snapshot.recorded_at),
                    str(snapshot.oficial),
                    str(snapshot.paralelo),
                    str(snapshot.usd_eur) if snapshot.usd_eur is not None else None,
                ),
            )
            await self._database.db.commit()

    async def get_snapshots(self, since: datetime) -> list[VesSnapshot]:
        """Snapshots recorded at or after ``since``, oldest first."""
        with _db_errors("get_ves_snapshots"):
            cursor = await self._database.db.execute(
                "SELECT recorded_at, oficial, paralelo, usd_eur FROM ves_history "
                "WHERE recorded_at >= ? ORDER BY recorded_at ASC",
                (_to_text(since),),
            )
            rows = await cursor.fetchall()
        return [
            VesSnapshot(
                recorded_at=datetime.fromisoformat(row[0]),
                oficial=Decimal(row[1]),
                paralelo=Decimal(row[2]),
                usd_eur=Decimal(row[3]) if row[3] is not None else None,
            )
            for row in rows
        ]

    async def set_usd_eur_for_day(self, day: str, usd_eur: Decimal) -> int:
        """Set ``usd_eur`` on every snapshot of a UTC calendar day. Returns rows updated."""
        with _db_errors("set_ves_usd_eur"):
            cursor = await self._database.db.execute(
                "UPDATE ves_history SET usd_eur = ? WHERE recorded_at LIKE ?",
                (str(usd_eur), f"{day}%"),
            )
            await self._database.db.commit()
        return cursor.rowcount
