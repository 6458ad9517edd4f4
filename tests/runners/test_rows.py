# tests/runners/test_rows.py
"""Testes da política de normalização de valores de linha."""

import math
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pandas as pd
import pytest

from panelflow.runners.rows import normalize_mapping, normalize_row, normalize_value


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        (True, True),
        ("x", "x"),
        (7, 7),
        (1.5, 1.5),
        (math.nan, None),
        (math.inf, None),
        (Decimal("10"), 10),
        (Decimal("10.25"), 10.25),
        (Decimal("NaN"), None),
        (date(2024, 1, 2), "2024-01-02"),
        (datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc), "2024-01-02T03:04:05+00:00"),
        (timedelta(minutes=1, seconds=30), 90.0),
        (b"\x01\xff", "01ff"),
        (uuid.UUID(int=1), "00000000-0000-0000-0000-000000000001"),
    ],
)
def test_normalize_value(value, expected):
    assert normalize_value(value) == expected


def test_bool_is_not_coerced_to_int():
    assert normalize_value(False) is False


def test_numpy_scalars_become_python_values():
    counts = pd.Series([3, 4])
    assert normalize_value(counts.iloc[0]) == 3
    assert type(normalize_value(counts.iloc[0])) is int
    assert normalize_value(pd.Series([float("nan")]).iloc[0]) is None


def test_nested_structures():
    assert normalize_value({"a": (Decimal("1"), [b"\x00"])}) == {"a": [1, ["00"]]}


def test_unknown_objects_become_strings():
    class Thing:
        def __str__(self):
            return "thing"

    assert normalize_value(Thing()) == "thing"


def test_normalize_row_keeps_column_order():
    row = normalize_row(["b", "a"], [Decimal("2"), 1])
    assert list(row) == ["b", "a"]
    assert row == {"b": 2, "a": 1}


def test_normalize_mapping_stringifies_keys():
    assert normalize_mapping({1: "x"}) == {"1": "x"}
