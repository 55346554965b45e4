import unittest

from fastapi.testclient import TestClient

from app.errors import FetchError, UnknownInstrument
from app.main import app
from app.schemas.quote import InstrumentKind
from app.services.market_tools import MarketTools
from app.services.quote_collector import BatchQuoteCollector, CollectorConfig
from app.services.quote_store import InMemoryQuoteStore
from app.services.sync_scheduler import SyncScheduler
from app.services.throttle import FixedDelayThrottle


def quote_page(price: str, change: str) -> str:
    return (
        f'<html><body><div class="YMlKec fxKbKc">₹{price}</div>'
        f'<div class="JwB6zf">{change}</div></body></html>'
    )


class StubFetcher:
    pages = {
        "RELIANCE": quote_page("2,980.50", "+45.20 (+1.54%)"),
        "TCS": quote_page("2,941.60", "-49.90 (-1.67%)"),
        "NIFTY50": quote_page("24,350.10", "+120.40 (+0.50%)"),
        "SENSEX": quote_page("80,100.00", "-80.00 (-0.10%)"),
    }

    def fetch(self, instrument_id, kind):
        if kind == InstrumentKind.INDEX and instrument_id not in {"NIFTY50", "NIFTY", "SENSEX"}:
            raise UnknownInstrument(instrument_id)
        if instrument_id == "PAYTM":
            raise FetchError(instrument_id, status=503)
        return self.pages.get(instrument_id, "<html></html>")


class SmokeTest(unittest.TestCase):
    def setUp(self):
        self._original = {
            name: getattr(app.state, name)
            for name in ("quote_collector", "quote_store", "market_tools", "sync_scheduler")
        }
        collector = BatchQuoteCollector(
            fetcher=StubFetcher(),
            config=CollectorConfig(stock_symbols=("RELIANCE", "TCS")),
            throttle=FixedDelayThrottle(0.0),
        )
        store = InMemoryQuoteStore()
        app.state.quote_collector = collector
        app.state.quote_store = store
        app.state.market_tools = MarketTools(collector)
        app.state.sync_scheduler = SyncScheduler(collector=collector, store=store)
        self.client = TestClient(app)

    def tearDown(self):
        for name, value in self._original.items():
            setattr(app.state, name, value)

    def test_get_quote(self):
        r = self.client.get('/v1/quotes/reliance')
        self.assertEqual(r.status_code, 200)

        body = r.json()
        self.assertEqual(body['symbol'], 'RELIANCE')
        self.assertEqual(body['price'], '2980.50')
        self.assertEqual(body['change'], '45.20')
        self.assertEqual(body['change_percent'], '+1.54%')
        self.assertEqual(body['exchange'], 'NSE')
        self.assertEqual(body['extraction_method'], 'DIRECT_PARSE')

    def test_get_quote_fetch_failure_is_degraded_not_error(self):
        r = self.client.get('/v1/quotes/PAYTM')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['extraction_method'], 'UNAVAILABLE')

    def test_get_quotes_batch(self):
        r = self.client.get('/v1/quotes', params={'symbols': 'RELIANCE, PAYTM,TCS'})
        self.assertEqual(r.status_code, 200)
        self.assertEqual([q['symbol'] for q in r.json()], ['RELIANCE', 'PAYTM', 'TCS'])

        empty = self.client.get('/v1/quotes', params={'symbols': ' , '})
        self.assertEqual(empty.status_code, 400)

    def test_get_index_and_unknown_index(self):
        r = self.client.get('/v1/indices/NIFTY50')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['kind'], 'INDEX')

        missing = self.client.get('/v1/indices/BANKNIFTY')
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json(), {'detail': 'UNKNOWN_INDEX'})

    def test_market_overview(self):
        r = self.client.get('/v1/market/overview')
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(sorted(body['indices']), ['nifty50', 'sensex'])
        self.assertEqual([s['symbol'] for s in body['top_stocks']], ['RELIANCE', 'TCS'])

    def test_sync_trigger_then_store_read_and_metrics(self):
        r = self.client.post('/v1/sync/trigger')
        self.assertEqual(r.status_code, 200)
        report = r.json()
        self.assertEqual(report['status'], 'success')
        self.assertEqual(report['updated'], 4)

        stored = self.client.get('/v1/store/quotes')
        self.assertEqual(stored.status_code, 200)
        self.assertEqual(sorted(q['symbol'] for q in stored.json()), ['NIFTY50', 'RELIANCE', 'SENSEX', 'TCS'])

        metrics = self.client.get('/v1/metrics/sync').json()
        self.assertEqual(metrics['runs'], 1)
        self.assertEqual(metrics['state'], 'IDLE')
        self.assertEqual(metrics['store']['stored_symbols'], 4)
        self.assertEqual(metrics['collector']['fetch_errors'], 0)

    def test_tools_protocol(self):
        listed = self.client.get('/v1/tools')
        self.assertEqual(listed.status_code, 200)
        self.assertEqual(len(listed.json()['tools']), 4)

        r = self.client.post('/v1/tools/get_stock_price', json={'symbol': 'TCS'})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()['result']['change'], '-49.90')

        unknown_tool = self.client.post('/v1/tools/get_crypto_price', json={})
        self.assertEqual(unknown_tool.status_code, 400)
        self.assertEqual(unknown_tool.json(), {'error': 'Unknown tool: get_crypto_price'})

        missing_arg = self.client.post('/v1/tools/get_stock_price', json={})
        self.assertEqual(missing_arg.status_code, 400)
        self.assertIn('symbol', missing_arg.json()['error'])

        unknown_index = self.client.post('/v1/tools/get_market_index', json={'index': 'BANKNIFTY'})
        self.assertEqual(unknown_index.status_code, 404)
        self.assertIn('error', unknown_index.json())


if __name__ == '__main__':
    unittest.main()
