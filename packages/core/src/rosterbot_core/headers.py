"""Spreadsheet header normalization.

Maps whatever column names a customer used onto the canonical upload
fields. Known synonyms are resolved locally; anything left over is handed
to an AI provider by the processor.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

logger = logging.getLogger(__name__)

CANONICAL_HEADERS = ("email", "first name", "last name", "job title", "mobile number", "teams", "user role")

# Canonical header -> key used by the validator.
FIELD_NAMES = {header: header.replace(" ", "_") for header in CANONICAL_HEADERS}

REQUIRED_HEADERS = ("email", "first name", "last name", "teams", "user role")

SYNONYMS: dict[str, set[str]] = {
    "email": {"email", "e-mail", "email address", "e-mail address", "user email", "login email"},
    "first name": {"first name", "firstname", "first_name", "given name", "given_name", "fname"},
    "last name": {"last name", "lastname", "last_name", "surname", "family name", "family_name", "lname"},
    "job title": {"job title", "jobtitle", "job_title", "title", "position", "job role", "work title"},
    "mobile number": {
        "mobile number",
        "mobile",
        "phone",
        "phone number",
        "cell phone",
        "mobile_number",
        "contact number",
    },
    "teams": {"teams", "team", "team name", "team names", "group", "groups", "department", "departments"},
    "user role": {
        "user role",
        "role",
        "user_role",
        "access role",
        "permission",
        "permissions",
        "user type",
        "account type",
    },
}


def normalize_header(header) -> str:
    text = " ".join(str(header or "").strip().lower().split())
    return re.sub(r"[^\w\s-]", "", text).strip()


def headers_match(headers: Iterable[str]) -> bool:
    """True when the headers are exactly the canonical set, ignoring case and order."""
    return {str(h).strip().lower() for h in headers} == set(CANONICAL_HEADERS)


def local_mapping(headers: Iterable[str]) -> dict[str, str]:
    """Map raw headers to canonical headers using the synonym table.

    Each canonical header is claimed by the first raw header that matches it.
    """
    mapping: dict[str, str] = {}
    claimed: set[str] = set()
    for raw in headers:
        normalized = normalize_header(raw)
        for canonical, variations in SYNONYMS.items():
            if canonical not in claimed and normalized in variations:
                mapping[str(raw)] = canonical
                claimed.add(canonical)
                break
    return mapping


def missing_headers(mapping: dict[str, str], required: Iterable[str] = REQUIRED_HEADERS) -> list[str]:
    covered = set(mapping.values())
    return [h for h in required if h not in covered]


def is_trivial(mapping: dict[str, str]) -> bool:
    """True when every raw header already is its canonical name."""
    return all(str(raw).strip().lower() == canonical for raw, canonical in mapping.items())


def apply_mapping(rows: Iterable[dict], mapping: dict[str, str]) -> list[dict]:
    """Re-key rows by validator field name, dropping unmapped columns."""
    keyed = {raw: FIELD_NAMES[canonical] for raw, canonical in mapping.items() if canonical in FIELD_NAMES}
    result = []
    for row in rows:
        result.append({field: row.get(raw, "") for raw, field in keyed.items()})
    logger.debug("Applied header mapping to %d row(s): %s", len(result), keyed)
    return result
