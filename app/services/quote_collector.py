from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from app.errors import ExtractionFailure, FetchError, QuoteError, UnknownInstrument
from app.schemas.quote import ExtractionMethod, InstrumentKind, Quote
from app.schemas.sync import CollectOutcome
from app.services.quote_extractor import extract_quote
from app.services.throttle import FixedDelayThrottle


@dataclass(frozen=True)
class CollectorConfig:
    stock_symbols: tuple[str, ...] = (
        "RELIANCE",
        "TCS",
        "HDFCBANK",
        "INFY",
        "ICICIBANK",
        "SBIN",
        "ITC",
        "BHARTIARTL",
        "TATAMOTORS",
        "ZOMATO",
    )
    index_ids: tuple[str, ...] = ("NIFTY50", "SENSEX")
    exchange: str = "NSE"
    omit_failed: bool = False


def _unique(symbols: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = str(symbol).strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


class BatchQuoteCollector:
    """Fetch + extract per instrument, isolating failures so the batch always completes."""

    def __init__(
        self,
        *,
        fetcher,
        config: CollectorConfig | None = None,
        throttle=None,
        extractor: Callable[..., Quote] = extract_quote,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.config = config or CollectorConfig()
        self.throttle = throttle or FixedDelayThrottle()
        self.extractor = extractor
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

        self.fetch_errors = 0
        self.extraction_failures = 0
        self.collected = 0
        self.last_batch_target = 0
        self.last_batch_ok = 0

    def _count(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)

    def _degraded(self, symbol: str, kind: InstrumentKind) -> Quote:
        return Quote(
            symbol=symbol.upper(),
            kind=kind,
            price=Decimal("0"),
            exchange=self.config.exchange if kind == InstrumentKind.EQUITY else None,
            timestamp=self.clock().isoformat(),
            extraction_method=ExtractionMethod.UNAVAILABLE,
        )

    def collect_one(self, symbol: str, kind: InstrumentKind = InstrumentKind.EQUITY) -> CollectOutcome:
        symbol = str(symbol).strip().upper()
        try:
            html = self.fetcher.fetch(symbol, kind)
        except UnknownInstrument as exc:
            print(f"[COLLECT][unknown_instrument] symbol={symbol}", flush=True)
            return CollectOutcome(symbol=symbol, kind=kind, error=exc)
        except FetchError as exc:
            self._count("fetch_errors")
            print(f"[COLLECT][fetch_error] symbol={symbol} kind={kind.value} error={exc}", flush=True)
            return CollectOutcome(symbol=symbol, kind=kind, quote=self._degraded(symbol, kind), error=exc)
        except Exception as exc:
            self._count("fetch_errors")
            print(f"[COLLECT][fetch_unexpected_error] symbol={symbol} error={exc!r}", flush=True)
            error = FetchError(symbol, reason=str(exc) or exc.__class__.__name__)
            return CollectOutcome(symbol=symbol, kind=kind, quote=self._degraded(symbol, kind), error=error)

        try:
            quote = self.extractor(
                html,
                kind,
                symbol,
                exchange=self.config.exchange,
                now=self.clock(),
            )
        except Exception as exc:
            self._count("extraction_failures")
            print(f"[COLLECT][extraction_error] symbol={symbol} error={exc!r}", flush=True)
            error = ExtractionFailure(symbol, f"extractor error: {exc.__class__.__name__}")
            return CollectOutcome(symbol=symbol, kind=kind, quote=self._degraded(symbol, kind), error=error)

        self._count("collected")
        if quote.extraction_method == ExtractionMethod.UNAVAILABLE:
            self._count("extraction_failures")
            reason = "no price on page" if quote.price == 0 else "no change data on page"
            print(f"[COLLECT][extraction_degraded] symbol={symbol} reason={reason}", flush=True)
            return CollectOutcome(
                symbol=symbol,
                kind=kind,
                quote=quote,
                error=ExtractionFailure(symbol, reason),
            )
        return CollectOutcome(symbol=symbol, kind=kind, quote=quote)

    def collect_outcomes(
        self,
        symbols: list[str],
        kind: InstrumentKind = InstrumentKind.EQUITY,
    ) -> list[CollectOutcome]:
        targets = _unique(symbols)
        max_workers = getattr(self.throttle, "max_workers", 1)

        if max_workers > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="quote-collect") as pool:
                outcomes = list(pool.map(lambda s: self.collect_one(s, kind), targets))
        else:
            outcomes = []
            for idx, symbol in enumerate(targets):
                self.throttle.before_request(idx)
                outcomes.append(self.collect_one(symbol, kind))

        ok_count = sum(1 for o in outcomes if o.ok)
        self.last_batch_target = len(targets)
        self.last_batch_ok = ok_count
        print(
            "[COLLECT][batch_done] "
            f"kind={kind.value} target_count={len(targets)} ok_count={ok_count} "
            f"degraded_count={len(targets) - ok_count}",
            flush=True,
        )
        return outcomes

    def collect_all(self, symbols: list[str], kind: InstrumentKind = InstrumentKind.EQUITY) -> list[Quote]:
        out: list[Quote] = []
        for outcome in self.collect_outcomes(symbols, kind):
            if outcome.quote is None:
                continue
            if outcome.error is not None and self.config.omit_failed:
                continue
            out.append(outcome.quote)
        return out

    def collect_indices(self) -> list[CollectOutcome]:
        return self.collect_outcomes(list(self.config.index_ids), InstrumentKind.INDEX)

    def collect_configured(self) -> list[CollectOutcome]:
        return self.collect_indices() + self.collect_outcomes(list(self.config.stock_symbols))

    def get_stock(self, symbol: str) -> Quote:
        outcome = self.collect_one(symbol, InstrumentKind.EQUITY)
        if outcome.quote is None:
            raise outcome.error or QuoteError(symbol)
        return outcome.quote

    def get_index(self, index_id: str) -> Quote:
        outcome = self.collect_one(index_id, InstrumentKind.INDEX)
        if isinstance(outcome.error, UnknownInstrument):
            raise outcome.error
        if outcome.quote is None:
            raise outcome.error or QuoteError(index_id)
        return outcome.quote

    def metrics(self) -> dict[str, int]:
        return {
            "collected": self.collected,
            "fetch_errors": self.fetch_errors,
            "extraction_failures": self.extraction_failures,
            "batch_target_count": self.last_batch_target,
            "batch_ok_count": self.last_batch_ok,
        }
