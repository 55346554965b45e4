import json
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

from app.errors import StoreError
from app.schemas.quote import ExtractionMethod, InstrumentKind, Quote
from app.services.quote_store import InMemoryQuoteStore, JsonFileQuoteStore, build_quote_store


def make_quote(symbol="RELIANCE", price="2980.50", ts="2026-01-02T10:00:00+00:00", **kwargs):
    return Quote(
        symbol=symbol,
        kind=kwargs.pop("kind", InstrumentKind.EQUITY),
        price=Decimal(price),
        change=Decimal(kwargs.pop("change", "45.20")),
        change_percent=kwargs.pop("change_percent", "+1.54%"),
        exchange="NSE",
        timestamp=ts,
        extraction_method=kwargs.pop("extraction_method", ExtractionMethod.DIRECT_PARSE),
    )


class TestInMemoryQuoteStore(unittest.TestCase):
    def test_upsert_twice_is_idempotent(self):
        store = InMemoryQuoteStore()
        quote = make_quote()

        store.upsert("RELIANCE", quote)
        once = store.select_all()
        store.upsert("RELIANCE", quote)

        self.assertEqual(store.select_all(), once)
        self.assertEqual(len(store.select_all()), 1)

    def test_newer_quote_supersedes_older(self):
        store = InMemoryQuoteStore()
        store.upsert("RELIANCE", make_quote(price="2980.50"))

        applied = store.upsert("RELIANCE", make_quote(price="2990.00", ts="2026-01-02T10:01:00+00:00"))

        self.assertTrue(applied)
        self.assertEqual(store.get("reliance").price, Decimal("2990.00"))
        self.assertEqual(len(store.select_all()), 1)

    def test_stale_write_never_overwrites_fresher_row(self):
        store = InMemoryQuoteStore()
        store.upsert("RELIANCE", make_quote(price="2990.00", ts="2026-01-02T10:01:00+00:00"))

        applied = store.upsert("RELIANCE", make_quote(price="2980.50", ts="2026-01-02T10:00:00+00:00"))

        self.assertFalse(applied)
        self.assertEqual(store.get("RELIANCE").price, Decimal("2990.00"))
        self.assertEqual(store.metrics()["stale_skips"], 1)

    def test_key_must_match_quote_symbol(self):
        store = InMemoryQuoteStore()

        with self.assertRaises(StoreError):
            store.upsert("TCS", make_quote(symbol="RELIANCE"))
        with self.assertRaises(StoreError):
            store.upsert("  ", make_quote())

    def test_list_many_skips_missing(self):
        store = InMemoryQuoteStore()
        store.upsert("RELIANCE", make_quote())

        rows = store.list_many(["RELIANCE", "TCS"])

        self.assertEqual([r.symbol for r in rows], ["RELIANCE"])


class TestJsonFileQuoteStore(unittest.TestCase):
    def test_rows_survive_reopen(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "quotes.json"
            store = JsonFileQuoteStore(path)
            store.upsert("RELIANCE", make_quote())
            store.upsert("NIFTY50", make_quote(symbol="NIFTY50", price="24350.10", kind=InstrumentKind.INDEX))

            reopened = JsonFileQuoteStore(path)

            self.assertEqual(len(reopened.select_all()), 2)
            self.assertEqual(reopened.get("RELIANCE").price, Decimal("2980.50"))
            self.assertEqual(reopened.get("NIFTY50").kind, InstrumentKind.INDEX)
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(sorted(payload), ["NIFTY50", "RELIANCE"])
            self.assertEqual(payload["RELIANCE"]["change_percent"], "+1.54%")

    def test_one_row_per_symbol_on_disk(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "quotes.json"
            store = JsonFileQuoteStore(path)
            store.upsert("TCS", make_quote(symbol="TCS"))
            store.upsert("TCS", make_quote(symbol="TCS", price="2950.00", ts="2026-01-02T10:05:00+00:00"))

            payload = json.loads(path.read_text(encoding="utf-8"))

            self.assertEqual(list(payload), ["TCS"])
            self.assertEqual(payload["TCS"]["price"], "2950.00")

    def test_write_failure_raises_store_error_and_keeps_memory_unchanged(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "not-a-dir"
            blocker.write_text("x", encoding="utf-8")
            store = JsonFileQuoteStore(blocker / "quotes.json")

            with self.assertRaises(StoreError):
                store.upsert("RELIANCE", make_quote())

            self.assertEqual(store.select_all(), [])

    def test_failed_replace_removes_temp_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileQuoteStore(Path(tmpdir) / "quotes.json")

            with patch("app.services.quote_store.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(StoreError):
                    store.upsert("RELIANCE", make_quote())

            self.assertEqual(list(Path(tmpdir).iterdir()), [])
            self.assertIsNone(store.get("RELIANCE"))

    def test_corrupt_file_is_reported(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "quotes.json"
            path.write_text("{not json", encoding="utf-8")

            with self.assertRaises(StoreError):
                JsonFileQuoteStore(path)

    def test_build_quote_store(self):
        self.assertIsInstance(build_quote_store(None), InMemoryQuoteStore)
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertIsInstance(build_quote_store(str(Path(tmpdir) / "q.json")), JsonFileQuoteStore)


if __name__ == "__main__":
    unittest.main()
