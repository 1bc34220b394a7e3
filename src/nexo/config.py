"""Configuration system using pydantic-settings with environment variable loading."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class HttpSettings(BaseSettings):
    """Outbound HTTP policy shared by every upstream adapter."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    timeout_default: float = 5.0  # seconds per attempt
    retry_delay: float = 2.0  # seconds between attempts
    retryable_statuses: frozenset[int] = frozenset({408, 429, 502, 503, 504})
    user_agent: str = "nexo-api/1.0"


class ProviderSettings(BaseSettings):
    """Upstream provider endpoints and per-provider timeouts.

    All providers are free, unauthenticated APIs. Base URLs are overridable
    so tests and staging can point at local fakes.
    """

    model_config = SettingsConfigDict(env_prefix="PROVIDER_")

    binance_base_url: str = "https://api.binance.com/api/v3"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    frankfurter_base_url: str = "https://api.frankfurter.dev"
    dolarapi_url: str = "https://ve.dolarapi.com/v1/dolares"

    crypto_history_timeout_short: float = 12.0  # days < 30
    crypto_history_timeout_long: float = 25.0  # days >= 30, many more raw samples
    forex_history_timeout: float = 10.0
    dolarapi_timeout: float = 8.0
    backfill_timeout: float = 15.0


class CacheSettings(BaseSettings):
    """Per-domain cache TTLs in seconds."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    crypto_price_ttl: int = 60
    crypto_history_ttl: int = 300
    forex_price_ttl: int = 60
    forex_history_ttl: int = 86_400
    ves_price_ttl: int = 60
    ves_history_ttl: int = 1_800


class RateLimitSettings(BaseSettings):
    """Fixed-window limiter protecting the price endpoints."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    window_seconds: float = 60.0
    max_requests: int = 60


class AlertSettings(BaseSettings):
    """Background alert evaluation and push delivery."""

    model_config = SettingsConfigDict(env_prefix="ALERTS_")

    evaluate_interval: float = 300.0  # seconds between ticks
    initial_delay: float = 30.0  # let price services warm up first
    cooldown_seconds: float = 3_600.0
    push_url: str = "https://exp.host/--/api/v2/push/send"
    push_timeout: float = 10.0


class VesJobSettings(BaseSettings):
    """Hourly VES snapshot job feeding the VES history endpoint."""

    model_config = SettingsConfigDict(env_prefix="VES_")

    snapshot_interval: float = 3_600.0
    backfill_days: int = 90


class StoreSettings(BaseSettings):
    """Local row store (alerts, push tokens, VES snapshots)."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    db_path: str = "data/nexo.db"


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 3000


class CronSettings(BaseSettings):
    """Shared secret for the externally triggered one-shot endpoints."""

    model_config = SettingsConfigDict(env_prefix="CRON_")

    secret: SecretStr = SecretStr("")


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: str = "console"
    serverless: bool = False  # no background loops; cron endpoints drive the jobs
    http: HttpSettings = HttpSettings()
    providers: ProviderSettings = ProviderSettings()
    cache: CacheSettings = CacheSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    alerts: AlertSettings = AlertSettings()
    ves: VesJobSettings = VesJobSettings()
    store: StoreSettings = StoreSettings()
    server: ServerSettings = ServerSettings()
    cron: CronSettings = CronSettings()
