"""Local row store: alerts, push tokens and VES snapshots on SQLite."""

from nexo.data.database import Database
from nexo.data.store import AlertStore, PushTokenStore, VesHistoryStore

__all__ = ["AlertStore", "Database", "PushTokenStore", "VesHistoryStore"]
