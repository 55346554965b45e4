from decimal import Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InstrumentKind(str, Enum):
    EQUITY = "EQUITY"
    INDEX = "INDEX"


class ExtractionMethod(str, Enum):
    DIRECT_PARSE = "DIRECT_PARSE"
    PREVIOUS_CLOSE_FALLBACK = "PREVIOUS_CLOSE_FALLBACK"
    CANDIDATE_LIST_FALLBACK = "CANDIDATE_LIST_FALLBACK"
    UNAVAILABLE = "UNAVAILABLE"


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    kind: InstrumentKind
    price: Decimal = Field(ge=0)
    change: Decimal = Decimal("0")
    change_percent: str = "0%"
    exchange: str | None = None
    timestamp: str
    extraction_method: ExtractionMethod

    @property
    def change_percent_value(self) -> Decimal:
        try:
            return Decimal(self.change_percent.rstrip("%") or "0")
        except InvalidOperation:
            return Decimal("0")

    @property
    def available(self) -> bool:
        return self.extraction_method != ExtractionMethod.UNAVAILABLE
