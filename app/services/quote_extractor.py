from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, DecimalException, InvalidOperation

from bs4 import BeautifulSoup, Tag

from app.schemas.quote import ExtractionMethod, InstrumentKind, Quote

_CURRENCY_CHARS = "₹$€£"
_MINUS_CHARS = "−–"

_PRICE_ATTR_SELECTOR = "[data-last-price]"
_PRICE_CLASS_SELECTOR = "div.YMlKec.fxKbKc"

# Case A / Case B markup for the combined "change (percent%)" element
_DIRECT_CHANGE_SELECTORS = ("div.JwB6zf", "span.P2Luy")
_CHANGE_CLASSES = frozenset({"JwB6zf", "P2Luy", "Ez2Ioe", "NydbP", "enJeMd"})

_FRAGMENT_MAX_LEN = 40
_PERCENT_FRAGMENT_MAX_LEN = 20

_COMBINED_RE = re.compile(r"([+\-]?[\d,.]+)\s*\(\s*([+\-]?[\d.,]+)\s*%\s*\)")
_PAREN_PERCENT_RE = re.compile(r"\(\s*([+\-]?[\d.,]+)\s*%\s*\)")
_PLAIN_PERCENT_RE = re.compile(r"([+\-]?[\d.,]+)\s*%")
_NUMERIC_RE = re.compile(r"^[+\-]?(\d[\d,]*)?\.?\d+$")

_PREVIOUS_CLOSE_LABEL = "Previous close"
_CENT = Decimal("0.01")
# magnitude bounds (power of ten) for any number read off a page
_MAX_EXPONENT = 15
_MIN_EXPONENT = -15
_ZERO = Decimal("0")


@dataclass(frozen=True)
class ChangeMatch:
    change: Decimal
    percent: Decimal | None
    method: ExtractionMethod


def _clean_text(text: str) -> str:
    for ch in _MINUS_CHARS:
        text = text.replace(ch, "-")
    return " ".join(text.split())


def parse_number(text: str | None) -> Decimal | None:
    """Parse currency text like "₹2,980.50"; None when nothing numeric remains."""
    if text is None:
        return None
    cleaned = _clean_text(str(text))
    for ch in _CURRENCY_CHARS:
        cleaned = cleaned.replace(ch, "")
    cleaned = cleaned.replace(",", "").replace(" ", "")
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    if value and not _MIN_EXPONENT <= value.adjusted() <= _MAX_EXPONENT:
        return None
    return value


def _to_cents(value: Decimal) -> Decimal | None:
    try:
        return value.quantize(_CENT, rounding=ROUND_HALF_UP)
    except DecimalException:
        return None


def format_percent(value: Decimal | None) -> str:
    if value is None:
        return "0%"
    rounded = _to_cents(value)
    if rounded is None:
        return "0%"
    if rounded == 0:
        rounded = abs(rounded)
    sign = "+" if rounded >= 0 else ""
    return f"{sign}{rounded}%"


def _node_text(node: Tag) -> str:
    return _clean_text(node.get_text(" ", strip=True))


def _has_explicit_sign(text: str) -> bool:
    return text.strip().startswith(("+", "-"))


def locate_price(tree: BeautifulSoup) -> Decimal | None:
    node = tree.select_one(_PRICE_ATTR_SELECTOR)
    if node is not None:
        value = parse_number(node.get("data-last-price"))
        if value is not None and value >= 0:
            return value

    node = tree.select_one(_PRICE_CLASS_SELECTOR)
    if node is not None:
        value = parse_number(_node_text(node))
        if value is not None and value >= 0:
            return value
    return None


def _from_combined(match: re.Match) -> ChangeMatch | None:
    change = parse_number(match.group(1))
    percent = parse_number(match.group(2))
    if change is None or percent is None:
        return None
    # an unsigned percent inside a signed pair follows the change
    if not _has_explicit_sign(match.group(2)) and change < 0:
        percent = -percent
    return ChangeMatch(change=change, percent=percent, method=ExtractionMethod.DIRECT_PARSE)


def match_direct_change(tree: BeautifulSoup) -> ChangeMatch | None:
    for selector in _DIRECT_CHANGE_SELECTORS:
        node = tree.select_one(selector)
        if node is None:
            continue
        text = _node_text(node)
        if len(text) > _FRAGMENT_MAX_LEN:
            continue
        found = _COMBINED_RE.search(text)
        if found is None:
            continue
        result = _from_combined(found)
        if result is not None:
            return result
    return None


def _has_change_class(node: Tag) -> bool:
    return bool(_CHANGE_CLASSES.intersection(node.get("class") or ()))


def collect_change_fragments(tree: BeautifulSoup) -> list[str]:
    """Short texts of innermost change-styled elements, in document order."""
    fragments: list[str] = []
    for node in tree.find_all(_has_change_class):
        if node.find(_has_change_class) is not None:
            continue
        text = _node_text(node)
        if text and len(text) <= _FRAGMENT_MAX_LEN:
            fragments.append(text)
    return fragments


def _parse_percent_fragment(text: str) -> Decimal | None:
    found = _PAREN_PERCENT_RE.search(text) or _PLAIN_PERCENT_RE.search(text)
    if found is None:
        return None
    percent = parse_number(found.group(1))
    if percent is None:
        return None
    if "-" in text and percent > 0:
        percent = -percent
    return percent


def match_candidate_list(tree: BeautifulSoup) -> ChangeMatch | None:
    fragments = collect_change_fragments(tree)
    for idx, text in enumerate(fragments):
        if "%" not in text or len(text) >= _PERCENT_FRAGMENT_MAX_LEN:
            continue
        percent = _parse_percent_fragment(text)
        if percent is None:
            continue

        change: Decimal | None = None
        if idx > 0:
            previous = fragments[idx - 1]
            stripped = previous
            for ch in _CURRENCY_CHARS:
                stripped = stripped.replace(ch, "")
            stripped = stripped.replace(" ", "")
            if "%" not in previous and _NUMERIC_RE.match(stripped):
                change = parse_number(stripped)
        if change is None:
            combined = _COMBINED_RE.search(text)
            if combined is not None:
                change = parse_number(combined.group(1))

        return ChangeMatch(
            change=_ZERO if change is None else change,
            percent=percent,
            method=ExtractionMethod.CANDIDATE_LIST_FALLBACK,
        )
    return None


def _previous_close_value(label: Tag) -> Decimal | None:
    candidates: list[Tag] = []
    if label.parent is not None:
        candidates.extend(s for s in label.parent.find_previous_siblings() if isinstance(s, Tag))
        candidates.reverse()
        candidates.extend(s for s in label.parent.find_next_siblings() if isinstance(s, Tag))
    candidates.extend(s for s in label.find_next_siblings() if isinstance(s, Tag))

    for sibling in candidates:
        value = parse_number(_node_text(sibling))
        if value is not None:
            return value
    return None


def match_previous_close(tree: BeautifulSoup, price: Decimal | None) -> ChangeMatch | None:
    labels = [d for d in tree.find_all("div") if _PREVIOUS_CLOSE_LABEL in d.get_text()]
    if not labels:
        return None
    prev_close = _previous_close_value(labels[-1])
    if prev_close is None or prev_close <= 0 or price is None or price <= 0:
        return None

    change = _to_cents(price - prev_close)
    if change is None:
        return None
    percent = (price - prev_close) / prev_close * 100
    return ChangeMatch(change=change, percent=percent, method=ExtractionMethod.PREVIOUS_CLOSE_FALLBACK)


def _signs_agree(change: Decimal, percent: Decimal | None) -> bool:
    if percent is None or change == 0 or percent == 0:
        return True
    return (change > 0) == (percent > 0)


def extract_quote(
    html: str | None,
    kind: InstrumentKind,
    symbol: str,
    *,
    exchange: str | None = "NSE",
    now: datetime | None = None,
) -> Quote:
    """Recover a quote from a quote page, trying each heuristic in priority order.

    Never raises on bad markup: when no price can be found the quote comes back
    zeroed and tagged ``UNAVAILABLE``.
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    tree = BeautifulSoup(html or "", "html.parser")
    base = {
        "symbol": symbol.upper(),
        "kind": kind,
        "exchange": exchange if kind == InstrumentKind.EQUITY else None,
        "timestamp": timestamp,
    }

    price = locate_price(tree)
    if price is None or price == 0:
        return Quote(**base, price=_ZERO, extraction_method=ExtractionMethod.UNAVAILABLE)

    match = match_direct_change(tree) or match_candidate_list(tree) or match_previous_close(tree, price)
    if match is None:
        return Quote(**base, price=price, extraction_method=ExtractionMethod.UNAVAILABLE)

    change, percent = match.change, match.percent
    if not _signs_agree(change, percent):
        change, percent = _ZERO, None

    return Quote(
        **base,
        price=price,
        change=change,
        change_percent=format_percent(percent),
        extraction_method=match.method,
    )
