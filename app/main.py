from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import router
from app.config.settings import get_settings
from app.integrations.market_page import MarketPageFetcher
from app.services.market_tools import MarketTools
from app.services.quote_collector import BatchQuoteCollector, CollectorConfig
from app.services.quote_store import build_quote_store
from app.services.sync_scheduler import SyncScheduler
from app.services.throttle import throttle_from_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = app.state.sync_scheduler
    if app.state.settings.SYNC_ENABLED:
        print(f"[SYNC][worker_start] interval_sec={scheduler.interval_sec}", flush=True)
        scheduler.start()

    try:
        yield
    finally:
        scheduler.stop()
        print("[SYNC][worker_stop] thread=quote-sync-worker", flush=True)


def _bind_runtime(app: FastAPI) -> None:
    settings = get_settings()
    fetcher = MarketPageFetcher(
        base_url=settings.QUOTE_SOURCE_BASE_URL,
        exchange=settings.QUOTE_EXCHANGE,
        timeout_sec=settings.FETCH_TIMEOUT_SEC,
    )
    collector = BatchQuoteCollector(
        fetcher=fetcher,
        config=CollectorConfig(
            stock_symbols=tuple(settings.QUOTE_STOCK_SYMBOLS),
            index_ids=tuple(settings.QUOTE_INDEX_IDS),
            exchange=settings.QUOTE_EXCHANGE,
            omit_failed=settings.OMIT_FAILED_QUOTES,
        ),
        throttle=throttle_from_settings(settings.FETCH_DELAY_SEC, settings.FETCH_MAX_WORKERS),
    )
    store = build_quote_store(settings.QUOTE_STORE_PATH)

    app.state.settings = settings
    app.state.quote_collector = collector
    app.state.quote_store = store
    app.state.market_tools = MarketTools(collector)
    app.state.sync_scheduler = SyncScheduler(
        collector=collector,
        store=store,
        interval_sec=settings.SYNC_INTERVAL_SEC,
        history_path=settings.SYNC_HISTORY_PATH,
    )


app = FastAPI(title="NSE Quote Sync", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

_bind_runtime(app)
