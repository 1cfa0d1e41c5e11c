"""
Crawler Configuration

Settings read from environment variables: deployment environment, storage,
frontier leases, worker pool sizes, Wikipedia endpoints and logging.
"""

import os
from enum import Enum
from pathlib import Path

EDGE_IDENTITIES = ("pair_only", "pair_plus_display")


class Environment(str, Enum):
    """Deployment environment"""

    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"


def _read_environment() -> Environment:
    """ENVIRONMENT must be set explicitly; there is no default."""
    raw = os.getenv("ENVIRONMENT")
    choices = ", ".join(e.value for e in Environment)
    if raw is None:
        raise RuntimeError(f"ENVIRONMENT is required. Set it to one of: {choices}.")
    try:
        return Environment(raw.strip().lower())
    except ValueError:
        raise RuntimeError(f"Invalid ENVIRONMENT '{raw}'. Expected one of: {choices}.")


class CrawlerSettings:
    """Crawler configuration"""

    # Application
    APP_NAME: str = "wikicrawl"
    APP_VERSION: str = "0.4.0"
    ENVIRONMENT: Environment = _read_environment()

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parents[3]
    DATA_DIR: Path = BASE_DIR / "data"

    # Storage: PostgreSQL when DATABASE_URL is set (required in production),
    # otherwise the SQLite file at CRAWLER_DB_PATH
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")
    DB_PATH: str = os.getenv("CRAWLER_DB_PATH", str(DATA_DIR / "wikicrawl.db"))
    SQLITE_BUSY_TIMEOUT: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

    # Retries on lock contention and dropped connections
    STORE_RETRY_ATTEMPTS: int = int(os.getenv("STORE_RETRY_ATTEMPTS", "5"))
    STORE_RETRY_MAX_WAIT: float = float(os.getenv("STORE_RETRY_MAX_WAIT", "2.0"))

    # Link identity: one edge per (linker, linked) or per distinct anchor text
    CRAWL_EDGE_IDENTITY: str = os.getenv("CRAWL_EDGE_IDENTITY", "pair_plus_display")

    # Worker pool
    CRAWL_EXPLORING_PAGES: int = int(os.getenv("CRAWL_EXPLORING_PAGES", "10"))
    CRAWL_NEW_PAGES: int = int(os.getenv("CRAWL_NEW_PAGES", "80"))
    CRAWL_MAX_ATTEMPTS: int = int(os.getenv("CRAWL_MAX_ATTEMPTS", "3"))
    CRAWL_IDLE_SLEEP_SEC: float = float(os.getenv("CRAWL_IDLE_SLEEP_SEC", "1.0"))
    CRAWL_STATS_EVERY: int = int(os.getenv("CRAWL_STATS_EVERY", "100"))

    # Frontier leases
    CRAWL_CLAIM_TIMEOUT_SEC: int = int(os.getenv("CRAWL_CLAIM_TIMEOUT_SEC", "600"))
    CRAWL_PAGE_TIMEOUT_SEC: float = float(os.getenv("CRAWL_PAGE_TIMEOUT_SEC", "300"))

    # HTTP
    CRAWL_USER_AGENT: str = os.getenv(
        "CRAWL_USER_AGENT", "wikicrawl/0.4 (+https://example.local/; link graph crawler)"
    )
    CRAWL_TIMEOUT_SEC: int = int(os.getenv("CRAWL_TIMEOUT_SEC", "30"))

    # Wikipedia
    WIKI_BASE_URL: str = os.getenv("WIKI_BASE_URL", "https://fr.m.wikipedia.org")
    WIKI_RETRY_COOLDOWN_SEC: float = float(os.getenv("WIKI_RETRY_COOLDOWN_SEC", "3"))
    WIKI_MAX_RETRIES: int = int(os.getenv("WIKI_MAX_RETRIES", "5"))

    # Logging
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = CrawlerSettings()


def _validate(settings: CrawlerSettings) -> None:
    """Validate settings that have a closed set of values."""
    if settings.CRAWL_EDGE_IDENTITY not in EDGE_IDENTITIES:
        raise RuntimeError(
            f"Invalid CRAWL_EDGE_IDENTITY: '{settings.CRAWL_EDGE_IDENTITY}'. "
            f"Must be one of {', '.join(EDGE_IDENTITIES)}."
        )
    if settings.CRAWL_EXPLORING_PAGES < 1:
        raise RuntimeError("CRAWL_EXPLORING_PAGES must be at least 1")
    if settings.CRAWL_NEW_PAGES < 1:
        raise RuntimeError("CRAWL_NEW_PAGES must be at least 1")
    if settings.CRAWL_MAX_ATTEMPTS < 1:
        raise RuntimeError("CRAWL_MAX_ATTEMPTS must be at least 1")


_validate(settings)
