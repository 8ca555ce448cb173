"""Creates teams and users in the backend for an approved upload."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from rosterbot_core.approval import REPORT_MARKER, embed_payload
from rosterbot_core.backend import BackendClient
from rosterbot_core.models import AttachmentFingerprint, UserRecord
from rosterbot_core.result import Err, Ok, Result

logger = logging.getLogger(__name__)


@dataclass
class UploadReport:
    created_teams: list[str] = field(default_factory=list)
    failed_teams: list[dict] = field(default_factory=list)  # {"name", "error"}
    created_users: list[str] = field(default_factory=list)
    existing_users: list[str] = field(default_factory=list)
    failed_users: list[dict] = field(default_factory=list)  # {"email", "error"}

    @property
    def success(self) -> bool:
        return bool(self.created_users or self.existing_users) and not self.failed_users

    @property
    def total_processed(self) -> int:
        return len(self.created_users) + len(self.existing_users) + len(self.failed_users)

    def summary(self) -> str:
        return (
            f"{len(self.created_users)} users created, {len(self.existing_users)} users existed, "
            f"{len(self.failed_users)} users failed"
        )


def user_payload(record: UserRecord, team_ids: list, role_id) -> dict:
    return {
        "firstName": record.first_name,
        "lastName": record.last_name,
        "email": record.email,
        "title": record.job_title,
        "mobileNumbers": [{"number": record.mobile_number, "isActive": True}],
        "teamIds": team_ids,
        "defaultTeam": team_ids[0] if team_ids else None,
        "roleId": role_id,
    }


def _create_missing_teams(client: BackendClient, names: list[str], team_map: dict, report: UploadReport) -> None:
    for name in names:
        if name in team_map:
            continue
        try:
            created = client.create_team(name)
        except Exception as e:
            logger.exception("Unexpected error creating team %r", name)
            report.failed_teams.append({"name": name, "error": str(e)})
            continue
        if isinstance(created, Err):
            logger.error("Failed to create team %r: %s", name, created.message)
            report.failed_teams.append({"name": name, "error": created.message})
            continue
        team_map[name] = created.value["id"]
        report.created_teams.append(name)
        logger.info("Created team %r (id %s)", name, created.value["id"])


def run_upload(client: BackendClient, records: Iterable[UserRecord]) -> Result[UploadReport]:
    """Create missing teams, then each user, continuing past individual failures.

    Returns an ``Err`` only when the existing backend data cannot be loaded.
    There are no retries; a failed user is reported and the next is attempted.
    """
    records = list(records)
    roles = client.roles()
    if isinstance(roles, Err):
        return roles
    users = client.search_users()
    if isinstance(users, Err):
        return users
    teams = client.search_teams()
    if isinstance(teams, Err):
        return teams

    role_map = {str(r.get("name", "")).upper(): r.get("id") for r in roles.value}
    existing = {str(u.get("email", "")).lower() for u in users.value if u.get("email")}
    team_map = {t.get("name"): t.get("id") for t in teams.value if t.get("name")}

    wanted: list[str] = []
    for record in records:
        for team in record.teams:
            if team not in wanted:
                wanted.append(team)

    report = UploadReport()
    _create_missing_teams(client, wanted, team_map, report)

    for record in records:
        if record.email.lower() in existing:
            logger.info("User %s already exists, skipping", record.email)
            report.existing_users.append(record.email)
            continue

        team_ids = [team_map[t] for t in record.teams if t in team_map]
        role_id = role_map.get(record.user_role.upper())
        if role_id is None or not team_ids:
            report.failed_users.append({"email": record.email, "error": "Missing role ID or team IDs"})
            continue

        try:
            created = client.create_user(user_payload(record, team_ids, role_id))
        except Exception as e:
            logger.exception("Unexpected error creating user %s", record.email)
            report.failed_users.append({"email": record.email, "error": str(e)})
            continue
        if isinstance(created, Err):
            logger.error("Failed to create user %s: %s", record.email, created.message)
            report.failed_users.append({"email": record.email, "error": created.message})
            continue
        report.created_users.append(record.email)

    logger.info("Upload complete: %s", report.summary())
    return Ok(report)


def render_report(ticket_key: str, report: UploadReport, attachments: list[AttachmentFingerprint]) -> str:
    """Final report comment; the embedded fingerprints mark these files as done."""
    lines = [
        REPORT_MARKER,
        "**USER UPLOAD COMPLETE**" if report.success else "**USER UPLOAD FINISHED WITH ERRORS**",
        "",
        f"Users created: {len(report.created_users)} | Already existed: {len(report.existing_users)} "
        f"| Failed: {len(report.failed_users)}",
    ]
    if report.created_teams:
        lines.append(f"Teams created: {len(report.created_teams)} ({', '.join(report.created_teams)})")
    if report.failed_teams:
        lines += ["", "**Teams that could not be created:**"]
        lines += [f"- {t['name']}: {t['error']}" for t in report.failed_teams]
    if report.failed_users:
        lines += ["", "**Users that could not be created:**"]
        lines += [f"- {u['email']}: {u['error']}" for u in report.failed_users]
    lines += [
        "",
        embed_payload(
            {
                "ticket_key": ticket_key,
                "attachments": [a.to_dict() for a in attachments],
                "created_users": len(report.created_users),
                "existing_users": len(report.existing_users),
                "failed_users": len(report.failed_users),
            }
        ),
    ]
    return "\n".join(lines)
