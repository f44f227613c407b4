# ==============================================
# Configuration Management
# ==============================================
#
# PURPOSE:
#   Load and validate all configuration from environment
#   variables / .env file. Provides typed config objects
#   to all other modules.
#
# CLASSES:
# --------
# - CategoryConfig (dataclass)
#     batch_size: int                 (items before an immediate flush)
#     flush_interval_seconds: float   (deferred flush delay)
#     cache_ttl_seconds: float        (TTL of the cached record copy)
#
# - CacheConfig (dataclass)
#     default_ttl_seconds: float      (default 300.0)
#     max_size: int                   (default 10000)
#     cleanup_interval_seconds: float (default 60.0)
#     use_timers: bool                (default True)
#
# - BatchConfig (dataclass)
#     categories: dict[Category, CategoryConfig]
#     retry_delay_seconds: float      (default 1.0)
#     max_retries: int | None         (default None = unbounded requeue)
#     stale_after_seconds: float      (default 30.0)
#     periodic_flush_seconds: float   (default 30.0)
#
# - RetentionConfig (dataclass)
#     max_age_seconds: float          (default 86400.0)
#     sweep_interval_seconds: float   (default 300.0)
#     repopulate_cache_on_miss: bool  (default True)
#
# - MetricsConfig (dataclass)
#     report_interval_seconds: float  (default 60.0)
#     enabled: bool                   (default True)
#
# - MySQLConfig / MongoConfig (dataclass)
#     Connection settings for the optional downstream sinks.
#
# - AppConfig (dataclass)
#     cache, batch, retention, metrics, mysql, mongo
#     data_stream_url: str   (default "http://127.0.0.1:8000/events")
#     instance_id: str       (default "batchcache")
#     log_level: str         (default "INFO")
#
# FUNCTION:
# ---------
# - load_config(env_path=None) -> AppConfig
#     Load .env using python-dotenv, construct AppConfig.
#     Returns a NEW instance on every call; callers own and
#     inject it (no module-level singleton).
#
# USAGE:
# ------
#   from batchcache.config import load_config
#   config = load_config()
#   print(config.cache.max_size)
#   print(config.batch.categories[Category.MESSAGES].batch_size)
#
# ==============================================

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from dotenv import load_dotenv

from batchcache.categories import Category
from batchcache.exceptions import ConfigurationError


@dataclass
class CategoryConfig:
    """Batching and caching settings for one category."""
    batch_size: int = 50
    flush_interval_seconds: float = 5.0
    cache_ttl_seconds: float = 300.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.flush_interval_seconds <= 0:
            raise ConfigurationError(
                f"flush_interval_seconds must be positive, got {self.flush_interval_seconds}"
            )


def default_categories() -> Dict[Category, CategoryConfig]:
    """Per-category defaults: high-volume events flush small and often."""
    return {
        Category.MESSAGES: CategoryConfig(30, 2.0, 600.0),
        Category.CHATS: CategoryConfig(50, 5.0, 300.0),
        Category.GROUPS: CategoryConfig(100, 10.0, 600.0),
        Category.CONTACTS: CategoryConfig(100, 10.0, 600.0),
        Category.RECEIPTS: CategoryConfig(50, 5.0, 300.0),
        Category.REACTIONS: CategoryConfig(50, 5.0, 300.0),
    }


@dataclass
class CacheConfig:
    """Expiring cache configuration."""
    default_ttl_seconds: float = 300.0
    max_size: int = 10000
    cleanup_interval_seconds: float = 60.0
    use_timers: bool = True

    def __post_init__(self):
        if self.max_size < 1:
            raise ConfigurationError(f"max_size must be at least 1, got {self.max_size}")


@dataclass
class BatchConfig:
    """Batch coordinator configuration."""
    categories: Dict[Category, CategoryConfig] = field(default_factory=default_categories)
    retry_delay_seconds: float = 1.0
    max_retries: Optional[int] = None
    stale_after_seconds: float = 30.0
    periodic_flush_seconds: float = 30.0

    def __post_init__(self):
        if self.max_retries is not None and self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be at least 1, got {self.max_retries}")
        # Accept plain string keys ("messages") from hand-built configs
        self.categories = {
            Category.parse(name): settings
            for name, settings in self.categories.items()
        }


@dataclass
class RetentionConfig:
    """Max-age retention of the authoritative record maps."""
    max_age_seconds: float = 86400.0
    sweep_interval_seconds: float = 300.0
    repopulate_cache_on_miss: bool = True


@dataclass
class MetricsConfig:
    """Metrics collector configuration."""
    report_interval_seconds: float = 60.0
    enabled: bool = True


@dataclass
class MySQLConfig:
    """MySQL sink configuration."""
    enabled: bool = False
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = "root"
    database: str = "batchcache"


@dataclass
class MongoConfig:
    """MongoDB sink configuration."""
    enabled: bool = False
    host: str = "localhost"
    port: int = 27017
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "batchcache"


@dataclass
class AppConfig:
    """Main application configuration."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    mysql: MySQLConfig = field(default_factory=MySQLConfig)
    mongo: MongoConfig = field(default_factory=MongoConfig)
    data_stream_url: str = "http://127.0.0.1:8000/events"
    instance_id: str = "batchcache"
    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _load_categories() -> Dict[Category, CategoryConfig]:
    categories = default_categories()
    for category, defaults in categories.items():
        prefix = f"BATCH_{category.value.upper()}"
        categories[category] = CategoryConfig(
            batch_size=_env_int(f"{prefix}_SIZE", defaults.batch_size),
            flush_interval_seconds=_env_float(
                f"{prefix}_FLUSH_INTERVAL_SECONDS", defaults.flush_interval_seconds
            ),
            cache_ttl_seconds=_env_float(f"{prefix}_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
        )
    return categories


def load_config(env_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load configuration from environment variables / .env file.

    Args:
        env_path: Path to a .env file. Defaults to the project root .env.

    Returns:
        AppConfig: A freshly built application configuration
    """
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    # Build cache configuration
    cache_config = CacheConfig(
        default_ttl_seconds=_env_float("CACHE_DEFAULT_TTL_SECONDS", 300.0),
        max_size=_env_int("CACHE_MAX_SIZE", 10000),
        cleanup_interval_seconds=_env_float("CACHE_CLEANUP_INTERVAL_SECONDS", 60.0),
        use_timers=_env_bool("CACHE_USE_TIMERS", True),
    )

    # Build batch configuration
    max_retries = os.getenv("BATCH_MAX_RETRIES")
    batch_config = BatchConfig(
        categories=_load_categories(),
        retry_delay_seconds=_env_float("BATCH_RETRY_DELAY_SECONDS", 1.0),
        max_retries=_env_int("BATCH_MAX_RETRIES", 0) if max_retries else None,
        stale_after_seconds=_env_float("BATCH_STALE_AFTER_SECONDS", 30.0),
        periodic_flush_seconds=_env_float("BATCH_PERIODIC_FLUSH_SECONDS", 30.0),
    )

    retention_config = RetentionConfig(
        max_age_seconds=_env_float("RETENTION_MAX_AGE_SECONDS", 86400.0),
        sweep_interval_seconds=_env_float("RETENTION_SWEEP_INTERVAL_SECONDS", 300.0),
        repopulate_cache_on_miss=_env_bool("RETENTION_REPOPULATE_CACHE", True),
    )

    metrics_config = MetricsConfig(
        report_interval_seconds=_env_float("METRICS_REPORT_INTERVAL_SECONDS", 60.0),
        enabled=_env_bool("METRICS_ENABLED", True),
    )

    # Build sink configurations
    mysql_config = MySQLConfig(
        enabled=_env_bool("MYSQL_ENABLED", False),
        host=os.getenv("MYSQL_HOST", "localhost"),
        port=_env_int("MYSQL_PORT", 3306),
        user=os.getenv("MYSQL_USER", "root"),
        password=os.getenv("MYSQL_PASSWORD", "root"),
        database=os.getenv("MYSQL_DATABASE", "batchcache")
    )

    mongo_config = MongoConfig(
        enabled=_env_bool("MONGO_ENABLED", False),
        host=os.getenv("MONGO_HOST", "localhost"),
        port=_env_int("MONGO_PORT", 27017),
        user=os.getenv("MONGO_USER") or None,
        password=os.getenv("MONGO_PASSWORD") or None,
        database=os.getenv("MONGO_DATABASE", "batchcache")
    )

    return AppConfig(
        cache=cache_config,
        batch=batch_config,
        retention=retention_config,
        metrics=metrics_config,
        mysql=mysql_config,
        mongo=mongo_config,
        data_stream_url=os.getenv("DATA_STREAM_URL", "http://127.0.0.1:8000/events"),
        instance_id=os.getenv("INSTANCE_ID", "batchcache"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
