"""
Validation of cached resolution payloads.

``validate_resolution_payload`` returns one of three verdicts:

- ``OK``: payload is served as is.
- ``REPAIRED``: a short-value field held narrative prose copied from the
  synopsis; that field was scrubbed and the rest of the payload is good.
- ``INVALID``: payload is unusable and must be re-resolved.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

REQUIRED_STR_FIELDS = ["id"]
SHORT_LIST_FIELDS = ["genres"]
SHORT_VALUE_FIELDS = ["rating"]

MAX_TAG_WORDS = 4
MAX_TAG_CHARS = 40
MAX_RATING_CHARS = 12

NARRATIVE_MARKERS = re.compile(
    r"\b(follows|when (?:a|an|the|his|her)|who must|after (?:a|an|the|his|her)|"
    r"their|finds (?:himself|herself|themselves)|story of|journey|discovers)\b",
    re.IGNORECASE,
)


class Verdict(Enum):
    OK = "ok"
    REPAIRED = "repaired"
    INVALID = "invalid"


@dataclass
class ValidationResult:
    verdict: Verdict
    payload: Optional[Dict[str, Any]] = None
    repaired_fields: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def looks_like_prose(text: Any, max_words: int = MAX_TAG_WORDS, max_chars: int = MAX_TAG_CHARS) -> bool:
    """True when ``text`` reads like narrative copy rather than a tag."""
    if not isinstance(text, str):
        return False
    stripped = text.strip()
    if len(stripped) > max_chars or len(stripped.split()) > max_words:
        return True
    if re.search(r"[.!?]\s+\S", stripped):
        return True
    return bool(NARRATIVE_MARKERS.search(stripped))


def _quotes_synopsis(value: Any, synopsis: str) -> bool:
    # multi-word tag lifted verbatim from the synopsis
    if not synopsis or not isinstance(value, str) or len(value.split()) < 3:
        return False
    return value.strip().lower() in synopsis


def validate_partnership_payload(data: Any) -> List[str]:
    """
    Structural checks. Returns a list of error messages; empty means valid.
    """
    if not isinstance(data, dict):
        return ["Payload must be a mapping"]
    errors: List[str] = []
    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
    if data.get("name") is not None and not isinstance(data["name"], str):
        errors.append("Field 'name' must be a string if provided")
    for f in SHORT_LIST_FIELDS:
        if f in data and data[f] is not None and not isinstance(data[f], list):
            errors.append(f"Field '{f}' must be a list if provided")
    return errors


def validate_resolution_payload(data: Any) -> ValidationResult:
    errors = validate_partnership_payload(data)
    if errors:
        return ValidationResult(Verdict.INVALID, None, errors=errors)

    payload = dict(data)
    repaired: List[str] = []
    synopsis = (payload.get("synopsis") or "").strip().lower()

    for f in SHORT_LIST_FIELDS:
        values = payload.get(f) or []
        if any(looks_like_prose(v) or _quotes_synopsis(v, synopsis) for v in values):
            payload[f] = []
            repaired.append(f)

    for f in SHORT_VALUE_FIELDS:
        value = payload.get(f)
        if looks_like_prose(value, max_words=2, max_chars=MAX_RATING_CHARS):
            payload[f] = None
            repaired.append(f)

    if repaired:
        return ValidationResult(Verdict.REPAIRED, payload, repaired_fields=repaired)
    return ValidationResult(Verdict.OK, payload)
