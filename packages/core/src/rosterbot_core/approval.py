"""Approval request construction and recovery.

An approval request is a bot comment that starts with a versioned marker,
summarises the proposed upload for a human, and embeds the structured
ApprovalRequest as a fenced JSON block. A later run finds the comment,
parses the block back out and compares its fingerprints with the files
currently on the ticket.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from rosterbot_core.fingerprint import fingerprint
from rosterbot_core.headers import CANONICAL_HEADERS, is_trivial
from rosterbot_core.jira.adf import adf_to_text, code_blocks
from rosterbot_core.models import ApprovalRequest, SheetLayout, TeamNameAnalysis, UserRecord
from rosterbot_core.result import Err, ErrorKind, Ok, Result
from rosterbot_core.tabular import REVIEW_FILENAME, review_csv
from rosterbot_core.teams import TeamDatasetAnalysis, analyze_dataset, apply_splitting

logger = logging.getLogger(__name__)

MARKER_VERSION = "v2"
MARKER_PREFIX = "[BOT:user_upload:approval-request:"
MARKER = f"{MARKER_PREFIX}{MARKER_VERSION}]"

_MARKER_RE = re.compile(r"\[BOT:user_upload:approval-request:([^\]\s]+)\]")
_PAYLOAD_RE = re.compile(r"```json[ \t]*\n(.*?)\n?```", re.DOTALL)

MISSING_PAYLOAD = "Cannot validate approval - missing structured data"

# Prefixes the comment posted after a completed upload.
REPORT_MARKER = "[BOT:user_upload:final-report:v2]"


@dataclass
class ApprovalDraft:
    """Everything needed to post an approval request."""

    request: ApprovalRequest
    analysis: TeamDatasetAnalysis
    records: list[UserRecord] = field(default_factory=list)
    review_file: bytes = b""
    review_filename: str = REVIEW_FILENAME


def approval_required(
    used_ai_mapping: bool,
    original_headers: Iterable[str],
    canonical_headers: Iterable[str] = CANONICAL_HEADERS,
    mapping: dict[str, str] | None = None,
) -> bool:
    """Decide whether a submission must be approved by a human.

    Only an upload whose headers are exactly the canonical set, with no
    renaming applied, goes straight through.
    """
    lowered = {str(h).strip().lower() for h in original_headers}
    if lowered != {h.lower() for h in canonical_headers}:
        return True
    if used_ai_mapping:
        return True
    return mapping is not None and not is_trivial(mapping)


def build(
    ticket_key: str,
    tenant: str,
    valid_records: list[UserRecord],
    attachments: Iterable[tuple[str, bytes]],
    extra_info: dict | None = None,
    column_mapping: dict[str, str] | None = None,
    now: datetime | None = None,
    sheet_layouts: dict[str, SheetLayout] | None = None,
) -> ApprovalDraft:
    """Split ambiguous teams, fingerprint attachments and assemble the request.

    ``extra_info`` is only used for the human-readable message.
    """
    analysis = analyze_dataset(valid_records)
    records = apply_splitting(valid_records, analysis.team_analyses)

    teams: list[str] = []
    for record in records:
        for team in record.teams:
            if team not in teams:
                teams.append(team)

    created = (now or datetime.now(timezone.utc)).isoformat()
    request = ApprovalRequest(
        ticket_key=ticket_key,
        tenant=tenant,
        user_count=len(records),
        team_count=len(teams),
        teams=tuple(teams),
        attachments=tuple(fingerprint(name, content) for name, content in attachments),
        column_mapping=dict(column_mapping or {}),
        created_at=created,
        sheet_layouts=dict(sheet_layouts or {}),
    )
    logger.info(
        "Built approval request for %s: %d user(s), %d team(s), %d split team name(s)",
        ticket_key,
        request.user_count,
        request.team_count,
        analysis.split_count,
    )
    return ApprovalDraft(request=request, analysis=analysis, records=records, review_file=review_csv(records))


def embed_payload(payload: dict) -> str:
    """Fence ``payload`` as JSON; backticks are escaped so no value can close the fence."""
    body = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False).replace("`", "\\u0060")
    return "```json\n" + body + "\n```"


def extract_payloads(message) -> list[dict]:
    """Return every JSON object found in fenced blocks of ``message``.

    Accepts plain text or an ADF document.
    """
    if isinstance(message, dict):
        blocks = code_blocks(message)
    else:
        blocks = _PAYLOAD_RE.findall(message or "")

    payloads = []
    for block in blocks:
        try:
            data = json.loads(block)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(data, dict):
            payloads.append(data)
    return payloads


def _split_section(team_analyses: list[TeamNameAnalysis]) -> list[str]:
    ambiguous = [a for a in team_analyses if a.is_ambiguous]
    if not ambiguous:
        return []
    lines = [
        "",
        "**Team Names Split on Spaces**",
        "The following team names contain spaces and were treated as several teams:",
    ]
    for a in ambiguous:
        lines.append(f'- "{a.raw_name}" → {" | ".join(a.split_candidates)} (confidence: {a.confidence.value})')
    lines.append(
        "If a name should stay as one team, or should be split differently, edit the source file "
        "so teams are separated with | only where intended, re-attach it, and a new request will be posted."
    )
    return lines


def render_message(
    request: ApprovalRequest,
    team_analyses: list[TeamNameAnalysis] | None = None,
    extra_info: dict | None = None,
) -> str:
    extra = extra_info or {}
    lines = [MARKER, "**USER UPLOAD APPROVAL REQUEST**", ""]

    tenant_line = f"Tenant: {request.tenant}"
    if extra.get("tenant_email"):
        tenant_line += f" ({extra['tenant_email']})"
    lines.append(tenant_line)
    if "credentials_found" in extra:
        lines.append("1Password: " + ("credentials found" if extra["credentials_found"] else "credentials NOT found"))
    lines.append(f"Users: {request.user_count} | Teams: {request.team_count} | Files: {len(request.attachments)}")

    lines += ["", "**Attachments:**"]
    for a in request.attachments:
        lines.append(f"- {a.filename} (sha256 {a.short_hash}, {a.size_bytes} bytes)")

    if request.column_mapping:
        lines += ["", "**Column mapping:**"]
        for raw, canonical in request.column_mapping.items():
            lines.append(f"- {raw} → {canonical}")

    if request.sheet_layouts:
        lines += ["", "**Detected sheets:**"]
        for name, layout in request.sheet_layouts.items():
            lines.append(
                f"- {name}: sheet '{layout.sheet}', headers on row {layout.header_row + 1}, "
                f"data from row {layout.data_start_row + 1}"
            )

    rejected = extra.get("rejected_rows") or []
    if rejected:
        lines += ["", f"**Rejected rows ({len(rejected)}):**"]
        for row in rejected[:20]:
            lines.append(f"- Row {row.row_number}: {'; '.join(row.reasons)}")
        if len(rejected) > 20:
            lines.append(f"- ... and {len(rejected) - 20} more")

    lines += _split_section(team_analyses or [])

    csv_name = extra.get("review_filename", REVIEW_FILENAME)
    lines += ["", f"**To approve:** Reply with 'approved' | **CSV attached:** {csv_name}", ""]
    # Customer text must not open a fence ahead of the payload.
    summary = "\n".join(lines).replace("```", "'''")
    return summary + "\n" + embed_payload(request.to_payload())


def marker_version(message) -> str | None:
    match = _MARKER_RE.search(adf_to_text(message))
    return match.group(1) if match else None


def is_approval_request(message) -> bool:
    """True for any approval-request comment, whatever its marker version."""
    return adf_to_text(message).lstrip().startswith(MARKER_PREFIX)


def parse_embedded_request(message) -> Result[ApprovalRequest]:
    """Recover the ApprovalRequest embedded by ``render_message``.

    ``message`` may be the rendered text or the ADF document Jira returns.
    Markers of another version are rejected.
    """
    version = marker_version(message)
    if version is None:
        return Err(ErrorKind.NOT_FOUND, "No approval request marker found")
    if version != MARKER_VERSION:
        return Err(
            ErrorKind.INTEGRITY,
            f"Approval request uses format {version}, expected {MARKER_VERSION}",
            {"version": version},
        )

    for payload in extract_payloads(message):
        try:
            return Ok(ApprovalRequest.from_payload(payload))
        except (KeyError, TypeError, ValueError):
            continue
    return Err(ErrorKind.INTEGRITY, MISSING_PAYLOAD)
