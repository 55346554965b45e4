from __future__ import annotations


class QuoteError(Exception):
    """Base class for per-instrument failures in the quote pipeline."""

    code = "QUOTE_ERROR"

    def to_payload(self) -> dict:
        return {"error": self.code, "message": str(self)}


class FetchError(QuoteError):
    code = "FETCH_ERROR"

    def __init__(self, instrument_id: str, *, status: int | None = None, reason: str | None = None) -> None:
        self.instrument_id = instrument_id
        self.status = status
        self.reason = reason or (f"HTTP {status}" if status is not None else "network error")
        super().__init__(f"{instrument_id}: {self.reason}")

    def to_payload(self) -> dict:
        return {"error": self.code, "message": str(self), "status": self.status}


class ExtractionFailure(QuoteError):
    code = "EXTRACTION_FAILURE"

    def __init__(self, instrument_id: str, reason: str) -> None:
        self.instrument_id = instrument_id
        self.reason = reason
        super().__init__(f"{instrument_id}: {reason}")


class UnknownInstrument(QuoteError):
    code = "UNKNOWN_INDEX"

    def __init__(self, instrument_id: str) -> None:
        self.instrument_id = instrument_id
        super().__init__(f"Unknown index: {instrument_id}")


class StoreError(QuoteError):
    code = "STORE_ERROR"

    def __init__(self, symbol: str, reason: str) -> None:
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{symbol}: {reason}")
