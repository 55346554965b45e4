from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from app.schemas.quote import InstrumentKind, Quote

_OVERVIEW_STOCK_COUNT = 5

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "get_stock_price",
        "description": "Get the latest price for an Indian stock (NSE): price, change and percentage change.",
        "input_schema": {
            "type": "object",
            "properties": {
                "symbol": {"type": "string", "description": "Stock symbol (e.g., RELIANCE, TCS, INFY, ZOMATO)"},
            },
            "required": ["symbol"],
        },
    },
    {
        "name": "get_market_index",
        "description": "Get the latest value of an Indian market index (NIFTY50 or SENSEX)",
        "input_schema": {
            "type": "object",
            "properties": {
                "index": {"type": "string", "enum": ["NIFTY50", "SENSEX"], "description": "Market index name"},
            },
            "required": ["index"],
        },
    },
    {
        "name": "get_multiple_stocks",
        "description": "Get the latest prices for several Indian stocks at once",
        "input_schema": {
            "type": "object",
            "properties": {
                "symbols": {"type": "array", "items": {"type": "string"}, "description": "Stock symbols"},
            },
            "required": ["symbols"],
        },
    },
    {
        "name": "get_market_overview",
        "description": "Get both indices plus the top tracked stocks",
        "input_schema": {"type": "object", "properties": {}, "required": []},
    },
]


def _dump(quote: Quote) -> dict:
    return quote.model_dump(mode="json")


class MarketTools:
    """On-demand read surface shared by the HTTP API and tool-calling clients."""

    def __init__(self, collector) -> None:
        self.collector = collector

    def list_tools(self) -> list[dict[str, Any]]:
        return [dict(t) for t in TOOL_DEFINITIONS]

    def get_stock_price(self, symbol: str) -> dict:
        return _dump(self.collector.get_stock(symbol))

    def get_market_index(self, index: str) -> dict:
        return _dump(self.collector.get_index(index))

    def get_multiple_stocks(self, symbols: list[str]) -> list[dict]:
        return [_dump(q) for q in self.collector.collect_all(list(symbols), InstrumentKind.EQUITY)]

    def get_market_overview(self) -> dict:
        indices = self.collector.collect_all(list(self.collector.config.index_ids), InstrumentKind.INDEX)
        stocks = self.collector.collect_all(list(self.collector.config.stock_symbols[:_OVERVIEW_STOCK_COUNT]))
        return {
            "indices": {q.symbol.lower(): _dump(q) for q in indices},
            "top_stocks": [_dump(q) for q in stocks],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def call_tool(self, name: str, arguments: dict | None = None) -> Any:
        args = arguments or {}
        if name == "get_stock_price":
            return self.get_stock_price(str(args["symbol"]))
        if name == "get_market_index":
            return self.get_market_index(str(args["index"]))
        if name == "get_multiple_stocks":
            symbols = args["symbols"]
            if not isinstance(symbols, list):
                raise ValueError("symbols must be an array")
            return self.get_multiple_stocks(symbols)
        if name == "get_market_overview":
            return self.get_market_overview()
        raise ValueError(f"Unknown tool: {name}")
