"""Shared record logic for the FUZE portal: field registry, coercion, serialization."""
from __future__ import annotations

import json
import math
from datetime import datetime
from typing import Any, Iterable

from fuze.models import Submission


# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

STRING_FIELDS = (
    "company_name", "contact_email", "contact_phone", "company_size", "company_type",
    "technology_name", "technology_description", "detailed_description",
    "technology_category", "unique_value_proposition", "military_applications",
    "commercial_applications", "development_stage", "ip_status", "team_expertise",
    "funding_pathway", "previous_fuze_awards", "development_timeline",
    "ai_assessment", "recommendation", "conversation_transcript", "extraction_status",
)

INT_FIELDS = ("trl_level", "mrl_level", "team_size")

FLOAT_FIELDS = ("funding_amount_requested", "previous_fuze_amount", "capability_score")

BOOL_FIELDS = ("sam_gov_registered", "dsip_registered")

# Every column a caller may write; id and timestamps are server-assigned.
SUBMISSION_FIELDS = STRING_FIELDS + INT_FIELDS + FLOAT_FIELDS + BOOL_FIELDS

TIMESTAMP_FIELDS = ("created_at", "updated_at")

RESPONSE_FIELDS = ("id",) + SUBMISSION_FIELDS + TIMESTAMP_FIELDS

RECOMMENDATIONS = ("Strong Fit", "Moderate Fit", "Needs Development", "Not Ready")

_TRUE_STRINGS = {"true", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "no", "n", "0"}

INT_MIN = -(2**63)
INT_MAX = 2**63 - 1


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        value = "; ".join(str(v) for v in value if v is not None)
    elif isinstance(value, dict):
        value = json.dumps(value)
    text = str(value)
    return text if text.strip() else None


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    text = str(value).strip().replace(",", "").lstrip("$")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def coerce_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    else:
        number = coerce_float(value)
        if number is None:
            return None
        result = int(round(number))
    # SQLite INTEGER is a signed 64-bit value
    if not INT_MIN <= result <= INT_MAX:
        return None
    return result


def coerce_bool(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value) if value in (0, 1) else None
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


_COERCERS = {
    **{f: coerce_str for f in STRING_FIELDS},
    **{f: coerce_int for f in INT_FIELDS},
    **{f: coerce_float for f in FLOAT_FIELDS},
    **{f: coerce_bool for f in BOOL_FIELDS},
}


def writable_fields(data: dict[str, Any], fields: Iterable[str] = SUBMISSION_FIELDS) -> dict[str, Any]:
    """Keep only writable columns present in *data*, coerced to their column types.

    Values that cannot be coerced become ``None``; unknown keys are dropped.
    """
    allowed = set(fields)
    return {k: _COERCERS[k](v) for k, v in data.items() if k in allowed}


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def submission_to_dict(sub: Submission) -> dict[str, Any]:
    data = {f: getattr(sub, f) for f in ("id",) + SUBMISSION_FIELDS}
    data["created_at"] = _isoformat(sub.created_at)
    data["updated_at"] = _isoformat(sub.updated_at)
    return data


def summarize(rows: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Compute the statistics payload from already-fetched rows."""
    total = registered = high_maturity = 0
    scores: list[float] = []
    for row in rows:
        total += 1
        score = coerce_float(row.get("capability_score"))
        if score is not None:
            scores.append(score)
        if row.get("sam_gov_registered") is True:
            registered += 1
        trl = coerce_int(row.get("trl_level"))
        if trl is not None and trl >= 7:
            high_maturity += 1
    return {
        "total": total,
        "average_capability_score": sum(scores) / len(scores) if scores else 0,
        "registered_count": registered,
        "high_maturity_count": high_maturity,
    }
