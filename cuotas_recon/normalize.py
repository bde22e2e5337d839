"""
Number and date normalization.

Spreadsheet exports mix locales (``1.200,50`` next to ``1,200.50``), Excel
serial numbers and free-form date strings. Everything here is lenient:
unparseable numbers come back as ``NaN`` and unparseable dates as ``None``.
"""
from __future__ import annotations

import math
import numbers
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import pandas as pd
import pytz


_NON_NUMERIC = re.compile(r"[^\d.,-]")
_FLOAT_PREFIX = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_INT_PREFIX = re.compile(r"\s*[+-]?\d+")
_DDMMYYYY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

_EXCEL_EPOCH = datetime(1899, 12, 31)


# -----------------------------
# Numbers
# -----------------------------
def _parse_float_prefix(text: str) -> float:
    m = _FLOAT_PREFIX.match(text)
    if not m:
        return math.nan
    return float(m.group(0))


def _parse_int_prefix(text: str) -> Optional[int]:
    m = _INT_PREFIX.match(text)
    if not m:
        return None
    return int(m.group(0))


def _resolve_three_digit_group(cleaned: str, sep: str) -> str:
    """One separator followed by exactly three digits: thousands or decimal?

    ``"1.000"`` is a thousand, ``"0.375"`` and ``"57.375"`` are decimals,
    ``"100.200"`` is a thousand again (leading group of three digits, >= 100).
    """
    pos = cleaned.rfind(sep)
    before = cleaned[:pos]
    after = cleaned[pos + 1:]

    if after == "000":
        return cleaned.replace(sep, "")
    if _parse_int_prefix(before) == 0:
        return cleaned.replace(sep, ".")
    if 0 < len(before) <= 3 and before.isdigit() and int(before) >= 100:
        return cleaned.replace(sep, "")
    return cleaned.replace(sep, ".")


def normalize_number(value: Any) -> float:
    """Parse a locale-ambiguous numeric value. Returns NaN when it can't."""
    if isinstance(value, bool) or value is None:
        return math.nan
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, numbers.Real):
        return float(value)

    text = str(value).strip()
    if not text:
        return math.nan

    cleaned = _NON_NUMERIC.sub("", text)
    dots = cleaned.count(".")
    commas = cleaned.count(",")

    if dots == 0 and commas == 0:
        return _parse_float_prefix(cleaned)

    last_dot = cleaned.rfind(".")
    last_comma = cleaned.rfind(",")
    digits_after = len(cleaned) - max(last_dot, last_comma) - 1

    if dots > 1:
        # 1.200.300,50
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif commas > 1:
        # 1,200,300.50
        cleaned = cleaned.replace(",", "")
    elif dots == 1 and commas == 1:
        if last_dot > last_comma:
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif dots == 1:
        if digits_after == 3:
            cleaned = _resolve_three_digit_group(cleaned, ".")
    else:
        if digits_after == 3:
            cleaned = _resolve_three_digit_group(cleaned, ",")
        else:
            cleaned = cleaned.replace(",", ".", 1)

    return _parse_float_prefix(cleaned)


def to_amount(value: Any) -> Optional[float]:
    """normalize_number, but None instead of NaN (for typed records)."""
    n = normalize_number(value)
    return None if math.isnan(n) else n


def normalize_number_for_key(value: Any) -> str:
    n = normalize_number(value)
    if math.isnan(n):
        return ""
    return f"{n:.8f}"


def normalize_reference_number(value: Any) -> str:
    """Strip leading zeros for key comparison: "000437506838" -> "437506838"."""
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    return text.lstrip("0") or "0"


def decimal_str(value: Optional[float]) -> Optional[str]:
    """Decimal text for storage; keeps the float's shortest repr."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return str(Decimal(repr(float(value))))


def parse_decimal_str(value: Any) -> Optional[float]:
    """Inverse of decimal_str. Storage text is never locale-formatted."""
    if value is None or value == "":
        return None
    try:
        return float(Decimal(str(value)))
    except InvalidOperation:
        return None


# -----------------------------
# Dates
# -----------------------------
def parse_excel_date(value: Any) -> Optional[datetime]:
    """Parse Excel serials, DD/MM/YYYY strings and anything pandas understands."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, numbers.Real):
        serial = float(value)
        if math.isnan(serial) or serial == 0:
            return None
        # Excel treats 1900 as a leap year; skip its fictitious Feb 29
        offset = serial - 1 if serial >= 60 else serial
        try:
            return _EXCEL_EPOCH + timedelta(days=offset)
        except OverflowError:
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        m = _DDMMYYYY.match(text)
        if m:
            try:
                return datetime(int(m.group(3)), int(m.group(2)), int(m.group(1)))
            except ValueError:
                return None
        try:
            ts = pd.to_datetime(text)
        except (ValueError, TypeError, OverflowError):
            return None
        if ts is pd.NaT:
            return None
        return parse_excel_date(ts)

    return None


def parse_ddmmyyyy(value: Any) -> Optional[datetime]:
    """Strict DD/MM/YYYY parser for filter inputs."""
    if not value:
        return None
    m = _DDMMYYYY.match(str(value).strip())
    if not m:
        return None
    try:
        return datetime(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    except ValueError:
        return None


def to_date(value: Any) -> Optional[date]:
    """Midnight-normalized calendar date of anything parse_excel_date accepts."""
    d = parse_excel_date(value)
    return d.date() if d else None


def format_date(value: Any) -> str:
    if value is None or value == "":
        return ""
    d = parse_excel_date(value)
    if d is None:
        return ""
    return d.strftime("%d/%m/%Y")


def iso_date(value: Any) -> Optional[str]:
    d = to_date(value)
    return d.isoformat() if d else None


# -----------------------------
# Week boundaries
# -----------------------------
def business_today(tz_name: str = "America/Caracas") -> date:
    tz = pytz.timezone(tz_name)
    return datetime.now(tz).date()


def get_monday(d: Optional[date] = None) -> date:
    d = d or date.today()
    return d - timedelta(days=d.weekday())


def get_sunday(d: Optional[date] = None) -> date:
    return get_monday(d) + timedelta(days=6)


def get_friday(d: Optional[date] = None) -> date:
    return get_monday(d) + timedelta(days=4)


def is_in_current_week(value: Any, today: Optional[date] = None) -> bool:
    d = to_date(value)
    if d is None:
        return False
    today = today or date.today()
    return get_monday(today) <= d <= get_sunday(today)
