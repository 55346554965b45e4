import os
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator

from app.integrations.market_page import MarketPageFetcher

_DEFAULT_STOCK_SYMBOLS = (
    "RELIANCE,TCS,HDFCBANK,INFY,ICICIBANK,SBIN,ITC,BHARTIARTL,TATAMOTORS,ZOMATO"
)
_DEFAULT_INDEX_IDS = "NIFTY50,SENSEX"


def _split_csv(raw: str | None, default: str) -> list[str]:
    values = [s.strip().upper() for s in (raw or default).split(",") if s.strip()]
    if not values:
        values = [s.strip() for s in default.split(",")]
    return values


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    QUOTE_SOURCE_BASE_URL: str = "https://www.google.com/finance/quote"
    QUOTE_EXCHANGE: str = "NSE"
    QUOTE_STOCK_SYMBOLS: list[str]
    QUOTE_INDEX_IDS: list[str]
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_SEC: float = Field(default=60.0, ge=10.0)
    FETCH_TIMEOUT_SEC: float = Field(default=10.0, gt=0)
    FETCH_DELAY_SEC: float = Field(default=0.5, ge=0)
    FETCH_MAX_WORKERS: int = Field(default=1, ge=1)
    QUOTE_STORE_PATH: str | None = None
    SYNC_HISTORY_PATH: str | None = None
    OMIT_FAILED_QUOTES: bool = False

    @field_validator("QUOTE_INDEX_IDS")
    @classmethod
    def _known_indices_only(cls, value: list[str]) -> list[str]:
        allowed = set(MarketPageFetcher.supported_indices())
        unknown = [v for v in value if v not in allowed]
        if unknown:
            raise ValueError(f"unsupported index ids: {', '.join(unknown)}")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "QUOTE_STOCK_SYMBOLS": _split_csv(os.getenv("QUOTE_STOCK_SYMBOLS"), _DEFAULT_STOCK_SYMBOLS),
            "QUOTE_INDEX_IDS": _split_csv(os.getenv("QUOTE_INDEX_IDS"), _DEFAULT_INDEX_IDS),
            "SYNC_ENABLED": _env_bool("SYNC_ENABLED", True),
            "OMIT_FAILED_QUOTES": _env_bool("OMIT_FAILED_QUOTES", False),
        }
        for key in (
            "QUOTE_SOURCE_BASE_URL",
            "QUOTE_EXCHANGE",
            "SYNC_INTERVAL_SEC",
            "FETCH_TIMEOUT_SEC",
            "FETCH_DELAY_SEC",
            "FETCH_MAX_WORKERS",
            "QUOTE_STORE_PATH",
            "SYNC_HISTORY_PATH",
        ):
            value = os.getenv(key)
            if value is not None and value.strip() != "":
                raw[key] = value.strip()

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
