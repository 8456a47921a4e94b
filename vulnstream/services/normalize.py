"""Normalize heterogeneous raw vulnerability records to the canonical representation."""

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from vulnstream.schemas.vulns import RawVulnerability, Severity, Vulnerability

logger = logging.getLogger(__name__)

# Candidate raw field names per canonical field, in precedence order (first non-null wins).
ID_FIELDS = ("cveId", "cve", "id", "VulnerabilityID")
TITLE_FIELDS = ("title", "summary", "name", "packageName")
DESCRIPTION_FIELDS = ("description", "desc")
SEVERITY_FIELDS = ("severity", "cvssSeverity", "baseSeverity")
PUBLISHED_FIELDS = ("published", "publishedDate", "date")
RISK_FACTOR_FIELDS = ("riskFactors", "risk", "tags")
STATUS_FIELDS = ("kaiStatus", "aiStatus", "status")
SCORE_FIELDS = ("cvss", "cvssScore", "cvss_v3", "score")
CWE_FIELDS = ("cwe", "cweIds")
TAG_FIELDS = ("tags",)
VENDOR_FIELDS = ("vendor", "organization")
PRODUCT_FIELDS = ("product", "package")
SOURCE_FIELDS = ("source", "provider")

# Severity aliases (case-insensitive) -> canonical level. Anything else is "unknown".
_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": "critical",
    "crit": "critical",
    "high": "high",
    "medium": "medium",
    "med": "medium",
    "moderate": "medium",
    "low": "low",
}

_DEFAULT_SEVERITY: Severity = "unknown"

# Delimiters for risk factors given as a single string.
_RISK_FACTOR_SPLIT = re.compile(r"[;,]")


def _first_present(raw: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    """Return the value of the first field that is present and not null, else None."""
    for name in fields:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def _scalar_text(value: Any) -> str | None:
    """Text form of a JSON scalar; None for null, containers, and empty strings."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value or None
    return str(value)


def _number_or_none(value: Any) -> float | None:
    """Float for numbers and numeric strings; None otherwise (bools are not numbers)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _string_list(value: Any) -> list[str] | None:
    """
    Coerce a raw list-like value to a list of strings.

    list -> each element as text (non-strings in their JSON form); mapping -> its keys;
    string -> split on ';' or ',', trimmed, empties dropped. Any other type yields None.
    """
    if isinstance(value, list):
        return [v if isinstance(v, str) else json.dumps(v, sort_keys=True, default=str) for v in value]
    if isinstance(value, Mapping):
        return [str(k) for k in value.keys()]
    if isinstance(value, str):
        return [part.strip() for part in _RISK_FACTOR_SPLIT.split(value) if part.strip()]
    return None


def normalize_severity(raw_severity: Any) -> Severity:
    """Map a raw severity value to a canonical level; unrecognized or missing -> 'unknown'."""
    if not raw_severity or isinstance(raw_severity, (dict, list)):
        return _DEFAULT_SEVERITY
    return _SEVERITY_ALIASES.get(str(raw_severity).strip().lower(), _DEFAULT_SEVERITY)


def resolve_id(raw: Mapping[str, Any]) -> str | None:
    """Resolve the record id from ID_FIELDS; None when absent, empty, or not a scalar."""
    value = _first_present(raw, ID_FIELDS)
    if isinstance(value, bool):
        return None
    text = _scalar_text(value)
    if text is None or not text.strip():
        return None
    return text


def normalize_vulnerability(raw: RawVulnerability) -> Vulnerability | None:
    """
    Convert one raw record to a canonical Vulnerability, or None when no id can be derived.

    Pure and total: the same input always yields the same output and no input raises.
    Duplicates are not handled here; backends apply last-write-wins by id.
    """
    if not isinstance(raw, Mapping):
        return None
    record_id = resolve_id(raw)
    if record_id is None:
        return None

    title = _scalar_text(_first_present(raw, TITLE_FIELDS)) or record_id
    try:
        return Vulnerability(
            id=record_id,
            title=title,
            description=_scalar_text(_first_present(raw, DESCRIPTION_FIELDS)),
            severity=normalize_severity(_first_present(raw, SEVERITY_FIELDS)),
            published=_scalar_text(_first_present(raw, PUBLISHED_FIELDS)),
            risk_factors=_string_list(_first_present(raw, RISK_FACTOR_FIELDS)),
            status=_scalar_text(_first_present(raw, STATUS_FIELDS)),
            score=_number_or_none(_first_present(raw, SCORE_FIELDS)),
            tags=_string_list(_first_present(raw, TAG_FIELDS)),
            cwe=_string_list(_first_present(raw, CWE_FIELDS)),
            vendor=_scalar_text(_first_present(raw, VENDOR_FIELDS)),
            product=_scalar_text(_first_present(raw, PRODUCT_FIELDS)),
            source=_scalar_text(_first_present(raw, SOURCE_FIELDS)),
            raw=dict(raw),
        )
    except ValidationError as e:
        logger.debug("Dropping record %r: %s", record_id, e)
        return None
