"""Tests for field coercion and statistics helpers."""
from __future__ import annotations

import pytest

from fuze.services import (
    SUBMISSION_FIELDS,
    coerce_bool,
    coerce_float,
    coerce_int,
    coerce_str,
    summarize,
    writable_fields,
)


@pytest.mark.parametrize("value,expected", [
    (None, None),
    ("  Acme  ", "  Acme  "),
    ("   ", None),
    (" \n\t", None),
    (["ISR", None, "EW"], "ISR; EW"),
    (42, "42"),
])
def test_coerce_str(value, expected):
    assert coerce_str(value) == expected


@pytest.mark.parametrize("value,expected", [
    ("$1,250,000", 1250000.0),
    ("7.5", 7.5),
    (3, 3.0),
    (True, None),
    ("n/a", None),
    ("", None),
    (float("nan"), None),
    ("inf", None),
    (10**400, None),
])
def test_coerce_float(value, expected):
    assert coerce_float(value) == expected


def test_coerce_int_rounds():
    assert coerce_int("6.6") == 7
    assert coerce_int("TRL 6") is None


@pytest.mark.parametrize("value", [1e20, 10**20, -(2**63) - 1, 2**63, "99999999999999999999"])
def test_coerce_int_outside_64_bits_is_none(value):
    assert coerce_int(value) is None


def test_coerce_int_64_bit_limits_kept():
    assert coerce_int(2**63 - 1) == 2**63 - 1
    assert coerce_int(-(2**63)) == -(2**63)
    assert coerce_int(True) is None


def test_transcript_whitespace_preserved():
    transcript = "  user: hi\n\nassistant: hello\n"
    assert writable_fields({"conversation_transcript": transcript}) == {"conversation_transcript": transcript}


@pytest.mark.parametrize("value,expected", [
    ("Yes", True),
    ("no", False),
    (1, True),
    (0, False),
    (2, None),
    ("maybe", None),
    (False, False),
])
def test_coerce_bool(value, expected):
    assert coerce_bool(value) is expected


def test_writable_fields_filters_and_keeps_explicit_null():
    data = {"id": 5, "created_at": "x", "company_name": None, "trl_level": "4", "junk": 1}
    assert writable_fields(data) == {"company_name": None, "trl_level": 4}


def test_writable_fields_has_no_server_columns():
    assert not {"id", "created_at", "updated_at"} & set(SUBMISSION_FIELDS)


class TestSummarize:
    def test_empty(self):
        assert summarize([]) == {
            "total": 0,
            "average_capability_score": 0,
            "registered_count": 0,
            "high_maturity_count": 0,
        }

    def test_counts(self):
        rows = [
            {"capability_score": 9, "sam_gov_registered": True, "trl_level": 8},
            {"capability_score": None, "sam_gov_registered": False, "trl_level": 7},
            {"capability_score": 5, "sam_gov_registered": None, "trl_level": None},
        ]
        assert summarize(rows) == {
            "total": 3,
            "average_capability_score": 7.0,
            "registered_count": 1,
            "high_maturity_count": 2,
        }
