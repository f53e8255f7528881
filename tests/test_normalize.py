import math

import pytest

from backroom.domain.normalize import (
    canonical_name,
    coerce_quantity,
    format_phone_number,
    format_quantity,
    truncate,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Solar Panels", "solar panels"),
        ("  solar   panels  ", "solar panels"),
        ("Solar Panels?", "solar panels"),
        ("'12V batteries'", "12v batteries"),
        (None, ""),
        ("", ""),
    ],
)
def test_canonical_name(raw, expected):
    assert canonical_name(raw) == expected


def test_coerce_quantity_accepts_numbers_and_numeric_strings():
    assert coerce_quantity(3) == 3.0
    assert coerce_quantity("10") == 10.0
    assert coerce_quantity(" 2,5 ") == 2.5


def test_coerce_quantity_rejects_non_numbers():
    assert coerce_quantity(True) is None
    assert coerce_quantity("ten") is None
    assert coerce_quantity(float("nan")) is None
    assert coerce_quantity(math.inf) is None
    assert coerce_quantity([]) is None


def test_format_quantity_drops_trailing_zeroes():
    assert format_quantity(10.0) == "10"
    assert format_quantity(2.5) == "2.5"
    assert format_quantity(1 / 3) == "0.33"


def test_format_phone_number_matches_cloud_api_recipient_format():
    assert format_phone_number("whatsapp:+27 82-123 4567") == "27821234567"
    assert format_phone_number("0821234567") == "821234567"
    assert format_phone_number(None) == ""


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("x" * 20, 10) == "x" * 7 + "..."
