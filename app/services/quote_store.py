from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from app.errors import StoreError
from app.schemas.quote import Quote


def _captured_at(quote: Quote) -> datetime | None:
    try:
        return datetime.fromisoformat(quote.timestamp)
    except ValueError:
        return None


def _is_stale(incoming: Quote, current: Quote | None) -> bool:
    if current is None:
        return False
    new_ts, old_ts = _captured_at(incoming), _captured_at(current)
    if new_ts is None or old_ts is None:
        return False
    try:
        return new_ts < old_ts
    except TypeError:
        # naive vs aware timestamps; fall back to last write wins
        return False


class InMemoryQuoteStore:
    """One latest row per symbol; writes older than the stored row are ignored."""

    def __init__(self) -> None:
        self._rows: dict[str, Quote] = {}
        self._lock = threading.Lock()
        self.upserts = 0
        self.stale_skips = 0

    def _check_key(self, symbol: str, quote: Quote) -> str:
        key = str(symbol).strip().upper()
        if not key:
            raise StoreError(str(symbol), "empty symbol key")
        if key != quote.symbol.upper():
            raise StoreError(key, f"key does not match quote symbol {quote.symbol}")
        return key

    def _persist(self, rows: dict[str, Quote]) -> None:
        return None

    def upsert(self, symbol: str, quote: Quote) -> bool:
        key = self._check_key(symbol, quote)
        with self._lock:
            if _is_stale(quote, self._rows.get(key)):
                self.stale_skips += 1
                print(f"[STORE][stale_skip] symbol={key} ts={quote.timestamp}", flush=True)
                return False
            rows = dict(self._rows)
            rows[key] = quote
            self._persist(rows)
            self._rows = rows
            self.upserts += 1
            return True

    def get(self, symbol: str) -> Quote | None:
        return self._rows.get(str(symbol).strip().upper())

    def list_many(self, symbols: list[str]) -> list[Quote]:
        out: list[Quote] = []
        for s in symbols:
            row = self.get(s)
            if row:
                out.append(row)
        return out

    def select_all(self) -> list[Quote]:
        return list(self._rows.values())

    def clear(self) -> None:
        with self._lock:
            self._persist({})
            self._rows = {}

    def metrics(self) -> dict:
        return {
            "stored_symbols": len(self._rows),
            "upserts": self.upserts,
            "stale_skips": self.stale_skips,
        }


class JsonFileQuoteStore(InMemoryQuoteStore):
    """Durable variant: the whole symbol->quote map is rewritten atomically on every upsert."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise StoreError("*", f"corrupt store file {self.path}: {exc}") from exc

        for key, row in payload.items():
            try:
                self._rows[key] = Quote.model_validate(row)
            except ValidationError:
                print(f"[STORE][load_skip] symbol={key} reason=invalid_row", flush=True)
                continue

    def _persist(self, rows: dict[str, Quote]) -> None:
        data = {key: quote.model_dump(mode="json") for key, quote in rows.items()}
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".quotes-", suffix=".json", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise StoreError("*", f"write failed: {exc}") from exc
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)


def build_quote_store(path: str | None) -> InMemoryQuoteStore:
    if path:
        return JsonFileQuoteStore(path)
    return InMemoryQuoteStore()
