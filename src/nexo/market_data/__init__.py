"""Market data layer -- provider adapters, fallback chains, caching and daily history."""

from nexo.market_data.cache import Lookup, TTLCache
from nexo.market_data.crypto import CryptoService
from nexo.market_data.forex import ForexService
from nexo.market_data.ves import VesService, VesSnapshotJob

__all__ = [
    "CryptoService",
    "ForexService",
    "Lookup",
    "TTLCache",
    "VesService",
    "VesSnapshotJob",
]
