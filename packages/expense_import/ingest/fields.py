"""Cell-level parsing shared by the CSV and PDF parsers: amounts, dates, currency."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------

# Longest tokens first so "MX$" is not read as a bare "$".
_CURRENCY_TOKENS: tuple[tuple[str, str], ...] = tuple(
    sorted(
        (
            ("US$", "USD"),
            ("USD", "USD"),
            ("MX$", "MXN"),
            ("MXN", "MXN"),
            ("COL$", "COP"),
            ("COP", "COP"),
            ("S/", "PEN"),
            ("PEN", "PEN"),
            ("R$", "BRL"),
            ("BRL", "BRL"),
            ("C$", "CAD"),
            ("CAD", "CAD"),
            ("€", "EUR"),
            ("EUR", "EUR"),
            ("£", "GBP"),
            ("GBP", "GBP"),
            ("¥", "CNY"),
            ("CNY", "CNY"),
            ("$", "USD"),
        ),
        key=lambda pair: -len(pair[0]),
    )
)
_STRIP_TOKENS_RE = re.compile(
    "|".join(re.escape(tok) for tok, _ in _CURRENCY_TOKENS), flags=re.IGNORECASE
)


def detect_currency(raw: str | None) -> str | None:
    """Return the ISO code implied by a currency token in ``raw``, if any."""

    if not raw:
        return None
    upper = raw.upper()
    for token, code in _CURRENCY_TOKENS:
        if token in upper:
            return code
    return None


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

# "1.234,56" or "1234,56": comma is the decimal mark (European exports).
_DECIMAL_COMMA_RE = re.compile(r"^\d{1,3}(?:\.\d{3})+,\d{1,2}$|^\d+,\d{1,2}$")


def parse_amount(raw: str | None) -> Decimal:
    """Parse a signed amount from a statement cell.

    Currency symbols/codes, thousands separators and whitespace are dropped.
    Negative markers: leading or trailing ``-``, surrounding parentheses, or a
    trailing ``CR``. A trailing ``DR`` is accepted and ignored.

    Raises
    ------
    ValueError
        When nothing numeric remains.
    """

    if raw is None:
        raise ValueError("amount is required")
    s = _STRIP_TOKENS_RE.sub("", raw).strip()
    if not s:
        raise ValueError("amount is empty")

    negative = False
    upper = s.upper()
    if upper.endswith("CR"):
        negative = True
        s = s[:-2].strip()
    elif upper.endswith("DR"):
        s = s[:-2].strip()

    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s.endswith("-"):
            negative = True
            s = s[:-1].rstrip()
            changed = True
        if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(" ", "").replace("\u00a0", "")
    if _DECIMAL_COMMA_RE.match(s):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")

    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def try_parse_amount(raw: str | None) -> Decimal | None:
    try:
        return parse_amount(raw)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_ISO_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T ].*)?$")
_NUMERIC_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$")
_MONTH_NAME_FORMATS: tuple[str, ...] = (
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
)
_DATE_LIKE_RE = re.compile(
    r"^(?:\d{4}-\d{2}-\d{2}|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"
    r"|\d{1,2}[ \-][A-Za-z]{3,9}[ \-]\d{2,4}|[A-Za-z]{3,9} \d{1,2},? \d{4})"
)


def _build(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _expand_year(raw: str) -> int:
    year = int(raw)
    return 2000 + year if len(raw) == 2 else year


def parse_date(raw: str | None, date_format: str = "auto") -> date | None:
    """Parse a statement date; ``None`` when the text is not a valid date.

    ``YYYY-MM-DD`` is always unambiguous. For ``##/##/####`` and
    ``##-##-####`` an explicit ``date_format`` hint (``"MM/DD/YYYY"`` or
    ``"DD/MM/YYYY"``) is applied as-is. In ``"auto"`` mode month-first is
    tried and kept when the month is valid; otherwise day-first. Two-digit
    years are 20xx. Month-name forms such as ``15 Jan 2024`` are accepted too.
    """

    if raw is None:
        return None
    s = raw.strip()
    if not s:
        return None

    if m := _ISO_RE.match(s):
        return _build(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    if m := _NUMERIC_RE.match(s):
        first, second, year = int(m.group(1)), int(m.group(2)), _expand_year(m.group(3))
        if date_format == "MM/DD/YYYY":
            return _build(year, first, second)
        if date_format == "DD/MM/YYYY":
            return _build(year, second, first)
        if 1 <= first <= 12 and (us := _build(year, first, second)) is not None:
            return us
        return _build(year, second, first)

    for fmt in _MONTH_NAME_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def is_date_like(raw: str | None) -> bool:
    """Cheap shape check used for footer trimming and table scanning."""

    return bool(raw) and bool(_DATE_LIKE_RE.match(raw.strip()))  # type: ignore[union-attr]


__all__ = [
    "detect_currency",
    "is_date_like",
    "parse_amount",
    "parse_date",
    "try_parse_amount",
]
