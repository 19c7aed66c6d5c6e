from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()


def _detect_project_root(backend_dir: Path) -> Path:
    """Resolve project root from the backend directory in the repo layout."""
    return backend_dir.parent.resolve()


_PROJECT_ROOT = _detect_project_root(_BACKEND_DIR)
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"
_SQLITE_SYNC_PREFIX = "sqlite:///"

# Last-resort prices (cents) used only when no provider has ever answered and
# nothing is cached for the symbol. Zero is the resolver's "skip, retry next
# sweep" floor; set real values only if settling on a constant is acceptable.
DEFAULT_PRICE_FALLBACK_CENTS: dict[str, int] = {
    "BTC": 0,
    "ETH": 0,
}


class Settings(BaseSettings):
    # Database - unset means the in-memory store is used
    DATABASE_URL: Optional[str] = None
    MEMORY_STORE_PATH: Optional[str] = None  # JSON snapshot for the in-memory store
    MEMORY_STORE_FLUSH_SECONDS: float = 30.0  # Debounce between snapshot writes
    ACTIVITY_LOG_MAX_ENTRIES: int = 1000  # In-memory activity feed retention

    # Resolver
    RESOLVER_ENABLED: bool = True
    RESOLVER_INTERVAL_SECONDS: float = 10.0  # Time between sweep starts
    RESOLVER_MAX_CONCURRENCY: int = 1  # Per-signal parallelism inside one sweep

    # Price oracle
    PRICE_CACHE_TTL_SECONDS: float = 10.0
    PRICE_PROVIDER_TIMEOUT_SECONDS: float = 5.0
    PRICE_PROVIDERS: list[str] = ["cryptocompare", "coingecko", "binance"]  # Priority order
    PRICE_SUPPORTED_SYMBOLS: list[str] = ["BTC", "ETH"]
    PRICE_FALLBACK_CENTS: dict[str, int] = dict(DEFAULT_PRICE_FALLBACK_CENTS)

    # Upstream price APIs
    CRYPTOCOMPARE_API_URL: str = "https://min-api.cryptocompare.com/data/pricemulti"
    CRYPTOCOMPARE_API_KEY: Optional[str] = None  # Optional, raises rate limits
    COINGECKO_API_URL: str = "https://api.coingecko.com/api/v3/simple/price"
    BINANCE_API_URL: str = "https://api.binance.com/api/v3/ticker/price"

    # Notifications
    RESOLUTION_WEBHOOK_URL: Optional[str] = None
    WEBHOOK_TIMEOUT_SECONDS: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    @field_validator(
        "CRYPTOCOMPARE_API_URL",
        "COINGECKO_API_URL",
        "BINANCE_API_URL",
        "RESOLUTION_WEBHOOK_URL",
        mode="before",
    )
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from URL env vars."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        if not text:
            return None
        return text.rstrip("/")

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Normalize DB URL so worker cwd changes never split databases."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text:
            return None

        # Convert relative SQLite paths to absolute project-root paths.
        for prefix in (_SQLITE_ASYNC_PREFIX, _SQLITE_SYNC_PREFIX):
            if not text.startswith(prefix):
                continue
            path_part = text[len(prefix) :]
            if not path_part:
                return text
            if path_part in {":memory:", "/:memory:"}:
                return f"{prefix}:memory:"
            absolute = Path(path_part).resolve() if path_part.startswith("/") else (_PROJECT_ROOT / path_part).resolve()
            return f"{prefix}{absolute}"

        # Plain postgres URLs get the async driver.
        if text.startswith("postgres://"):
            text = "postgresql://" + text[len("postgres://") :]
        if text.startswith("postgresql://"):
            text = "postgresql+asyncpg://" + text[len("postgresql://") :]
        return text

    @field_validator("PRICE_SUPPORTED_SYMBOLS", mode="after")
    @classmethod
    def _normalize_symbols(cls, value: list[str]) -> list[str]:
        symbols = [str(s).strip().upper() for s in value if str(s).strip()]
        if not symbols:
            raise ValueError("PRICE_SUPPORTED_SYMBOLS must name at least one asset")
        return symbols

    @field_validator("PRICE_PROVIDERS", mode="after")
    @classmethod
    def _normalize_providers(cls, value: list[str]) -> list[str]:
        return [str(p).strip().lower() for p in value if str(p).strip()]

    @field_validator("PRICE_FALLBACK_CENTS", mode="after")
    @classmethod
    def _normalize_fallbacks(cls, value: dict[str, int]) -> dict[str, int]:
        fallbacks = {str(k).strip().upper(): int(v) for k, v in value.items()}
        negative = sorted(k for k, v in fallbacks.items() if v < 0)
        if negative:
            raise ValueError(f"PRICE_FALLBACK_CENTS must not be negative: {negative}")
        return fallbacks

    @field_validator(
        "MEMORY_STORE_FLUSH_SECONDS",
        "RESOLVER_INTERVAL_SECONDS",
        "PRICE_CACHE_TTL_SECONDS",
        "PRICE_PROVIDER_TIMEOUT_SECONDS",
        "WEBHOOK_TIMEOUT_SECONDS",
        mode="after",
    )
    @classmethod
    def _positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval/timeout settings must be positive")
        return value

    @field_validator("RESOLVER_MAX_CONCURRENCY", "ACTIVITY_LOG_MAX_ENTRIES", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, int(value))

    class Config:
        # Load project-root .env first (common workflow), then backend/.env
        # as an override if present.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
