"""Row-level validation of normalized upload data.

Input rows are dicts keyed by canonical field names (see
``rosterbot_core.headers``). Output is a partition into valid UserRecords
and rejected rows with every reason that applied.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from rosterbot_core.models import UserRecord

logger = logging.getLogger(__name__)

USER_ROLES = ("TEAM MEMBER", "MANAGER", "MONITOR", "ADMINISTRATOR", "COMPANY ADMINISTRATOR")

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# "|" plus look-alikes that survive copy-paste from other tools (U+04CF, U+01C0).
_TEAM_SEPARATOR_RE = re.compile("[|\u04cf\u01c0]")

FIELDS = ("email", "first_name", "last_name", "job_title", "mobile_number", "teams", "user_role")


@dataclass
class RejectedRow:
    row_number: int  # 1-based position in the uploaded data
    row: dict
    reasons: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return self.reasons[0] if self.reasons else ""


@dataclass
class ValidationResult:
    valid: list[UserRecord] = field(default_factory=list)
    invalid: list[RejectedRow] = field(default_factory=list)
    skipped: int = 0

    def summary(self) -> str:
        text = f"{len(self.valid)} valid, {len(self.invalid)} invalid"
        if self.skipped:
            text += f", {self.skipped} blank row(s) skipped"
        return text


def _text(value) -> str:
    if value is None:
        return ""
    # Spreadsheet numbers arrive as floats ("412345678.0").
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def split_teams(value) -> list[str]:
    teams: list[str] = []
    for piece in _TEAM_SEPARATOR_RE.split(_text(value)):
        piece = piece.strip()
        if piece and piece not in teams:
            teams.append(piece)
    return teams


def validate_dataset(rows: Iterable[dict], existing_emails: Iterable[str] = ()) -> ValidationResult:
    """Partition ``rows`` into valid records and rejected rows.

    Never raises. The first occurrence of an email wins; later rows with the
    same address (case-insensitive) are rejected as duplicates.
    """
    existing = {e.strip().lower() for e in existing_emails if e}
    seen: set[str] = set()
    result = ValidationResult()

    for number, row in enumerate(rows, 1):
        if not isinstance(row, dict):
            result.invalid.append(RejectedRow(number, {"value": row}, ["unreadable row"]))
            continue

        values = {name: _text(row.get(name)) for name in FIELDS}
        if not any(_text(v) for v in row.values()):
            result.skipped += 1
            continue

        reasons: list[str] = []
        email = values["email"]
        key = email.lower()
        if not email:
            reasons.append("missing email")
        else:
            if not _EMAIL_RE.match(email):
                reasons.append(f"invalid email format: {email}")
            if key in seen:
                reasons.append("duplicate email")
            elif key in existing:
                reasons.append("email already exists")
            seen.add(key)

        if not values["first_name"]:
            reasons.append("missing first name")
        if not values["last_name"]:
            reasons.append("missing last name")

        role = values["user_role"].upper()
        role = " ".join(role.split())
        if role not in USER_ROLES:
            reasons.append(f"unknown role: {values['user_role']}")

        teams = split_teams(row.get("teams"))
        if not teams:
            reasons.append("no teams specified")

        if reasons:
            result.invalid.append(RejectedRow(number, dict(row), reasons))
            continue

        result.valid.append(
            UserRecord(
                email=email,
                first_name=values["first_name"],
                last_name=values["last_name"],
                job_title=values["job_title"],
                mobile_number=values["mobile_number"] or "0",
                teams=tuple(teams),
                user_role=role,
            )
        )

    logger.info("Validated dataset: %s", result.summary())
    return result
