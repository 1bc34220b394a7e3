"""Shared data models for the Nexo price service.

All monetary values use Decimal. Timestamps named ``timestamp`` are capture
times in Unix milliseconds; ``date`` fields are upstream publish dates
(YYYY-MM-DD). JSON payloads are built through ``to_dict()``.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

ALLOWED_CURRENCIES = ("USD", "EUR", "GBP", "VES")


def now_ms() -> int:
    """Current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


def _num(value: Decimal) -> float | int:
    """Render a Decimal as a JSON number (integral values stay ints)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CryptoQuote:
    """Spot price of a crypto asset in a fiat (or stablecoin-pegged) currency."""

    symbol: str
    price: Decimal
    currency: str
    source: str
    timestamp: int = field(default_factory=now_ms)
    change_24h: Decimal | None = None  # percent

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "symbol": self.symbol,
            "price": _num(self.price),
            "currency": self.currency,
            "source": self.source,
            "timestamp": self.timestamp,
        }
        if self.change_24h is not None:
            data["change24h"] = _num(self.change_24h)
        return data


@dataclass(frozen=True)
class ForexQuote:
    """Exchange rate: 1 ``base`` = ``rate`` ``target``."""

    base: str
    target: str
    rate: Decimal
    date: str
    source: str
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.base,
            "to": self.target,
            "rate": _num(self.rate),
            "date": self.date,
            "source": self.source,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class VesQuote:
    """1 USD = X bolivares, official (BCV) and parallel market series.

    A series missing upstream is reported as zero; see DESIGN.md.
    """

    oficial: Decimal
    paralelo: Decimal
    date: str
    source: str
    timestamp: int = field(default_factory=now_ms)
    oficial_eur: Decimal | None = None
    paralelo_eur: Decimal | None = None
    base: str = "USD"
    target: str = "VES"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "from": self.base,
            "to": self.target,
            "oficial": _num(self.oficial),
            "paralelo": _num(self.paralelo),
            "date": self.date,
            "source": self.source,
            "timestamp": self.timestamp,
        }
        if self.oficial_eur is not None:
            data["oficial_eur"] = _num(self.oficial_eur)
        if self.paralelo_eur is not None:
            data["paralelo_eur"] = _num(self.paralelo_eur)
        return data


# ---------------------------------------------------------------------------
# History points (one per calendar day)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CryptoHistoryPoint:
    date: str
    price: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "price": _num(self.price)}


@dataclass(frozen=True)
class ForexHistoryPoint:
    date: str
    rate: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "rate": _num(self.rate)}


@dataclass(frozen=True)
class VesHistoryPoint:
    date: str
    oficial: Decimal
    paralelo: Decimal
    oficial_eur: Decimal | None = None
    paralelo_eur: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "date": self.date,
            "oficial": _num(self.oficial),
            "paralelo": _num(self.paralelo),
        }
        if self.oficial_eur is not None:
            data["oficial_eur"] = _num(self.oficial_eur)
        if self.paralelo_eur is not None:
            data["paralelo_eur"] = _num(self.paralelo_eur)
        return data


@dataclass(frozen=True)
class VesSnapshot:
    """One stored VES observation, keyed by the hour it was recorded in."""

    recorded_at: datetime
    oficial: Decimal
    paralelo: Decimal
    usd_eur: Decimal | None = None


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_in_ms: int

    def headers(self) -> dict[str, str]:
        """Standard rate-limit response headers (reset rounded up to seconds)."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(-(-self.reset_in_ms // 1000)),
        }


# ---------------------------------------------------------------------------
# Alerts and push delivery
# ---------------------------------------------------------------------------


class AlertType(str, Enum):
    """Price domain an alert watches."""

    VES = "ves"
    CRYPTO = "crypto"
    FOREX = "forex"


class AlertDirection(str, Enum):
    """Which side of the threshold fires the alert."""

    ABOVE = "above"
    BELOW = "below"


@dataclass(frozen=True)
class Alert:
    """A user-defined price alert as stored in the row store."""

    id: str
    user_id: str
    type: AlertType
    symbol: str
    threshold: Decimal
    direction: AlertDirection
    enabled: bool = True
    triggered_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "symbol": self.symbol,
            "threshold": _num(self.threshold),
            "direction": self.direction.value,
            "enabled": self.enabled,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class PushMessage:
    """One push notification addressed to a single device token."""

    token: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PushTicket:
    """Per-message delivery receipt returned by the push transport."""

    status: str  # "ok" or "error"
    id: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True)
class PushResult:
    sent: int
    failed: int


@dataclass(frozen=True)
class EvaluationResult:
    """Summary of one alert evaluation tick."""

    evaluated: int
    triggered: int
