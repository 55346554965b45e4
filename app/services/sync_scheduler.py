from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from app.errors import ExtractionFailure, FetchError, StoreError
from app.schemas.sync import CollectOutcome, SymbolOutcome, SyncReport

IDLE = "IDLE"
RUNNING = "RUNNING"

_RECENT_LIMIT = 20
_FAILED_STATUSES = frozenset({"failed_fetch", "failed_db", "skipped"})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncScheduler:
    """Periodic collect -> upsert loop. At most one run at a time; overlapping triggers are skipped."""

    def __init__(
        self,
        *,
        collector,
        store,
        interval_sec: float = 60.0,
        history_path: str | Path | None = None,
    ) -> None:
        self.collector = collector
        self.store = store
        self.interval_sec = interval_sec
        self.state = IDLE
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._run_seq = 0
        self._metrics = {
            "runs": 0,
            "skipped_runs": 0,
            "updated": 0,
            "degraded": 0,
            "failed": 0,
        }
        self._recent_runs: list[dict] = []
        self._history_path = Path(history_path) if history_path else None
        self._persisted_count = 0
        self._load_persisted_runs()

    def _load_persisted_runs(self) -> None:
        if not self._history_path or not self._history_path.exists():
            return

        for line in self._history_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                summary = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(summary, dict):
                continue
            self._persisted_count += 1
            self._recent_runs.append(summary)

        if len(self._recent_runs) > _RECENT_LIMIT:
            self._recent_runs = self._recent_runs[-_RECENT_LIMIT:]
        if self._recent_runs:
            self._run_seq = max(int(r.get("run_id", 0)) for r in self._recent_runs)

    def _record_run(self, report: SyncReport) -> None:
        summary = report.model_dump(exclude={"results"})
        self._recent_runs.append(summary)
        if len(self._recent_runs) > _RECENT_LIMIT:
            self._recent_runs = self._recent_runs[-_RECENT_LIMIT:]

        if not self._history_path:
            return

        try:
            self._history_path.parent.mkdir(parents=True, exist_ok=True)
            with self._history_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(summary, ensure_ascii=False) + "\n")
        except OSError as exc:
            print(f"[SYNC][history_write_error] error={exc}", flush=True)
            return
        self._persisted_count += 1

    def _apply(self, outcome: CollectOutcome) -> SymbolOutcome:
        base = {"symbol": outcome.symbol, "kind": outcome.kind}
        if outcome.quote is None:
            return SymbolOutcome(**base, status="skipped", error=str(outcome.error) if outcome.error else None)

        quote = outcome.quote
        if isinstance(outcome.error, FetchError):
            return SymbolOutcome(**base, status="failed_fetch", error=str(outcome.error))

        try:
            applied = self.store.upsert(quote.symbol, quote)
        except StoreError as exc:
            print(f"[SYNC][store_error] symbol={quote.symbol} error={exc}", flush=True)
            return SymbolOutcome(**base, status="failed_db", error=str(exc))

        detail = {
            "price": str(quote.price),
            "extraction_method": quote.extraction_method.value,
        }
        if not applied:
            return SymbolOutcome(**base, status="stale", **detail)
        if isinstance(outcome.error, ExtractionFailure):
            return SymbolOutcome(**base, status="degraded", error=outcome.error.reason, **detail)
        return SymbolOutcome(**base, status="updated", **detail)

    def sync_once(self) -> SyncReport:
        if not self._run_lock.acquire(blocking=False):
            self._metrics["skipped_runs"] += 1
            print("[SYNC][run_skipped] reason=already_running", flush=True)
            now = _now_iso()
            return SyncReport(run_id=self._run_seq, status="skipped", started_at=now, finished_at=now)

        try:
            self.state = RUNNING
            self._run_seq += 1
            run_id = self._run_seq
            started_at = _now_iso()
            started = time.monotonic()
            print(f"[SYNC][run_start] run_id={run_id}", flush=True)

            results = [self._apply(outcome) for outcome in self.collector.collect_configured()]

            updated = sum(1 for r in results if r.status == "updated")
            degraded = sum(1 for r in results if r.status == "degraded")
            failed = sum(1 for r in results if r.status in _FAILED_STATUSES)
            if failed == 0 and degraded == 0:
                status = "success"
            elif failed == len(results):
                status = "failure"
            else:
                status = "partial"

            report = SyncReport(
                run_id=run_id,
                status=status,
                started_at=started_at,
                finished_at=_now_iso(),
                updated=updated,
                degraded=degraded,
                failed=failed,
                results=results,
            )
            self._metrics["runs"] += 1
            self._metrics["updated"] += updated
            self._metrics["degraded"] += degraded
            self._metrics["failed"] += failed
            self._record_run(report)
            print(
                "[SYNC][run_done] "
                f"run_id={run_id} status={status} updated={updated} degraded={degraded} "
                f"failed={failed} elapsed_sec={time.monotonic() - started:.2f}",
                flush=True,
            )
            return report
        finally:
            self.state = IDLE
            self._run_lock.release()

    def trigger(self) -> SyncReport:
        return self.sync_once()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sync_once()
            except Exception as exc:  # pragma: no cover
                print(f"[SYNC][run_crashed] error={exc!r}", flush=True)
            if self._stop_event.wait(self.interval_sec):
                break

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="quote-sync-worker")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def metrics(self) -> dict:
        return {
            **self._metrics,
            "state": self.state,
            "interval_sec": self.interval_sec,
            "persisted_count": self._persisted_count,
            "recent_runs": list(self._recent_runs),
        }
