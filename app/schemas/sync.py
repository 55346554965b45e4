from pydantic import BaseModel

from app.errors import QuoteError
from app.schemas.quote import InstrumentKind, Quote


class CollectOutcome(BaseModel):
    """Tagged per-instrument result: a quote, an error, or a degraded quote plus its error."""

    model_config = {"arbitrary_types_allowed": True}

    symbol: str
    kind: InstrumentKind
    quote: Quote | None = None
    error: QuoteError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.quote is not None


class SymbolOutcome(BaseModel):
    symbol: str
    kind: InstrumentKind
    status: str
    price: str | None = None
    extraction_method: str | None = None
    error: str | None = None


class SyncReport(BaseModel):
    run_id: int
    status: str
    started_at: str
    finished_at: str
    updated: int = 0
    degraded: int = 0
    failed: int = 0
    results: list[SymbolOutcome] = []
