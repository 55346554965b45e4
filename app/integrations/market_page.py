from __future__ import annotations

from typing import Any, Optional

import requests

from app.errors import FetchError, UnknownInstrument
from app.schemas.quote import InstrumentKind

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class MarketPageFetcher:
    """Fetches raw quote-page HTML for one equity or index. No retry, no cache."""

    _INDEX_PATHS = {
        "NIFTY50": "NIFTY_50:INDEXNSE",
        "NIFTY": "NIFTY_50:INDEXNSE",
        "SENSEX": "SENSEX:INDEXBOM",
    }

    def __init__(
        self,
        base_url: str = "https://www.google.com/finance/quote",
        exchange: str = "NSE",
        timeout_sec: float = 10.0,
        session: Optional[Any] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.exchange = exchange
        self.timeout_sec = timeout_sec
        self.session = session or requests
        self.user_agent = user_agent

    @classmethod
    def supported_indices(cls) -> list[str]:
        return list(cls._INDEX_PATHS)

    def normalize_symbol(self, instrument_id: str) -> str:
        value = str(instrument_id).strip().upper()
        suffix = f":{self.exchange.upper()}"
        if value.endswith(suffix):
            value = value[: -len(suffix)]
        return value

    def url_for(self, instrument_id: str, kind: InstrumentKind) -> str:
        if kind == InstrumentKind.INDEX:
            path = self._INDEX_PATHS.get(str(instrument_id).strip().upper())
            if path is None:
                raise UnknownInstrument(instrument_id)
            return f"{self.base_url}/{path}"
        return f"{self.base_url}/{self.normalize_symbol(instrument_id)}:{self.exchange}"

    def fetch(self, instrument_id: str, kind: InstrumentKind) -> str:
        url = self.url_for(instrument_id, kind)
        try:
            response = self.session.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml",
                    "Accept-Language": "en-US,en;q=0.9",
                },
                timeout=self.timeout_sec,
            )
        except (requests.Timeout, TimeoutError) as exc:
            raise FetchError(instrument_id, reason=f"timeout after {self.timeout_sec}s") from exc
        except OSError as exc:
            # requests.RequestException is an OSError subclass
            raise FetchError(instrument_id, reason=str(exc) or exc.__class__.__name__) from exc

        status = getattr(response, "status_code", None)
        if not isinstance(status, int) or not 200 <= status < 300:
            print(f"[FETCH][http_error] instrument={instrument_id} status={status} url={url}", flush=True)
            raise FetchError(instrument_id, status=status if isinstance(status, int) else None)
        return response.text
