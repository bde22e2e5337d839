import math
from datetime import date, datetime

import pandas as pd
import pytest

from cuotas_recon.normalize import (
    business_today,
    decimal_str,
    format_date,
    get_friday,
    get_monday,
    get_sunday,
    is_in_current_week,
    normalize_number,
    normalize_number_for_key,
    normalize_reference_number,
    parse_ddmmyyyy,
    parse_decimal_str,
    parse_excel_date,
    to_amount,
)


@pytest.mark.parametrize("raw, expected", [
    ("1.200,50", 1200.5),
    ("1,200.50", 1200.5),
    ("1.200.300,50", 1200300.5),
    ("1,200,300.50", 1200300.5),
    ("$ 1,234.56", 1234.56),
    ("1,5", 1.5),
    ("-5", -5.0),
    (12, 12.0),
    (12.5, 12.5),
])
def test_normalize_number_formats(raw, expected):
    assert normalize_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw, expected", [
    ("1.000", 1000.0),       # trailing "000" is always thousands
    ("57.375", 57.375),      # leading group < 100: decimal
    ("0.375", 0.375),
    ("100.200", 100200.0),   # leading group of 3 digits >= 100: thousands
    ("123,456", 123456.0),
    ("1,234", 1.234),
    ("1234.567", 1234.567),  # leading group longer than 3 digits: decimal
])
def test_normalize_number_three_digit_heuristic(raw, expected):
    assert normalize_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, True, "", "   ", "abc"])
def test_normalize_number_unparseable_is_nan(raw):
    assert math.isnan(normalize_number(raw))


def test_to_amount_and_key():
    assert to_amount("abc") is None
    assert to_amount("1.000") == 1000.0
    assert normalize_number_for_key("1.200,50") == "1200.50000000"
    assert normalize_number_for_key(None) == ""


def test_normalize_reference_number():
    assert normalize_reference_number("000437506838") == "437506838"
    assert normalize_reference_number("0000") == "0"
    assert normalize_reference_number(None) == ""
    assert normalize_reference_number("  ") == ""


def test_decimal_str():
    assert decimal_str(100.1) == "100.1"
    assert decimal_str(None) is None
    assert decimal_str(float("nan")) is None
    assert parse_decimal_str("100.125") == 100.125
    assert parse_decimal_str(decimal_str(1234.5)) == 1234.5
    assert parse_decimal_str(None) is None
    assert parse_decimal_str("abc") is None


def test_parse_excel_serial():
    d = parse_excel_date(45231)
    assert d == datetime(2023, 11, 1)
    assert format_date(d) == "01/11/2023"


def test_parse_excel_serial_leap_year_bug():
    assert parse_excel_date(1) == datetime(1900, 1, 1)
    assert parse_excel_date(59) == datetime(1900, 2, 28)
    assert parse_excel_date(61) == datetime(1900, 3, 1)
    assert parse_excel_date(0) is None


def test_parse_excel_date_strings():
    assert parse_excel_date("05/03/2025") == datetime(2025, 3, 5)
    assert parse_excel_date("31/02/2025") is None
    assert parse_excel_date("2025-03-05") == datetime(2025, 3, 5)
    assert parse_excel_date("not a date") is None
    assert parse_excel_date("") is None
    assert parse_excel_date(None) is None


def test_parse_excel_date_objects():
    assert parse_excel_date(date(2025, 3, 5)) == datetime(2025, 3, 5)
    assert parse_excel_date(pd.Timestamp("2025-03-05")) == datetime(2025, 3, 5)
    assert parse_excel_date(pd.NaT) is None


def test_parse_ddmmyyyy_is_strict():
    assert parse_ddmmyyyy("01/02/2025") == datetime(2025, 2, 1)
    assert parse_ddmmyyyy("2025-02-01") is None
    assert parse_ddmmyyyy("") is None


def test_format_date_invalid():
    assert format_date(None) == ""
    assert format_date("garbage") == ""


def test_week_boundaries():
    wednesday = date(2025, 3, 12)
    assert get_monday(wednesday) == date(2025, 3, 10)
    assert get_friday(wednesday) == date(2025, 3, 14)
    assert get_sunday(wednesday) == date(2025, 3, 16)
    assert is_in_current_week("16/03/2025", today=wednesday)
    assert not is_in_current_week("17/03/2025", today=wednesday)
    assert not is_in_current_week(None, today=wednesday)


def test_business_today_is_a_date():
    assert isinstance(business_today("America/Caracas"), date)
