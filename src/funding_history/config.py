"""Configuration system using pydantic-settings with environment variable loading."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiSettings(BaseSettings):
    """Drift Data API connection settings."""

    model_config = SettingsConfigDict(env_prefix="DRIFT_API_")

    base_url: str = "https://data.api.drift.trade"
    request_timeout: float | None = None  # None disables client-side timeouts


class CacheSettings(BaseSettings):
    """Persistent cache configuration.

    Controls where the key-value cache lives, how large it may grow, and how
    long an open (current) month stays fresh.
    All fields configurable via CACHE_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    db_path: str = "data/funding_cache.db"
    max_bytes: int = 5_000_000  # roughly a browser storage origin
    freshness_seconds: int = 300  # open month / day index re-fetch window
    wallet_key_length: int = 8  # wallet prefix used in cache keys


class FetchSettings(BaseSettings):
    """Incremental fetch configuration.

    All fields configurable via FETCH_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="FETCH_")

    initial_days: int = 7  # depth that counts as "show something"
    incremental_days: int = 30  # depth covered by the paginated walk
    month_batch_size: int = 3  # concurrent monthly requests per batch
    probe_months: int = 12


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    api: ApiSettings = ApiSettings()
    cache: CacheSettings = CacheSettings()
    fetch: FetchSettings = FetchSettings()
