"""Ticket processing loop.

Each wake of the scheduler fetches the matching tickets and drives every
one of them through the status table below, one at a time:

    Open          → intent → tenant/credentials → parse → validate
                    → upload directly, or post an approval request → Review
    Review        → reconcile the approval state → upload on approval → Done
    anything else → skipped

A failure in one ticket is logged and counted; it never stops the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from rich.console import Console
from rich.markup import escape

from rosterbot_core.approval import approval_required, build, render_message
from rosterbot_core.backend import BackendClient
from rosterbot_core.config import BotConfig
from rosterbot_core.fingerprint import fingerprint
from rosterbot_core.headers import CANONICAL_HEADERS, apply_mapping, headers_match, local_mapping, missing_headers
from rosterbot_core.jira.client import JiraClient
from rosterbot_core.models import (
    ApprovalStatus,
    Attachment,
    AttachmentFingerprint,
    SheetLayout,
    Ticket,
    UserRecord,
)
from rosterbot_core.providers.base import BaseAssistant
from rosterbot_core.reconcile import find_final_report, open_request, reconcile
from rosterbot_core.result import Err, ErrorKind, Ok, Result
from rosterbot_core.tabular import REVIEW_FILENAME, is_eligible, is_workbook, parse_table, preview_sheets
from rosterbot_core.teams import analyze_dataset, apply_splitting
from rosterbot_core.tenant import extract_tenant, tenant_email
from rosterbot_core.upload import render_report, run_upload
from rosterbot_core.validator import RejectedRow, validate_dataset

console = Console()
logger = logging.getLogger(__name__)

STATUS_OPEN = "Open"
STATUS_REVIEW = "Review"
STATUS_INFO_REQUIRED = "Info Required"
DONE_STATUSES = ("Done", "Closed")

SETUP_MARKER = "[BOT:user_upload:setup-required:v2]"
NOTICE_MARKER = "[BOT:user_upload:approval-invalid:v2]"


@dataclass
class TicketOutcome:
    key: str
    action: str  # e.g. "uploaded", "approval_requested", "pending", "failed"
    message: str = ""
    success: bool = True
    skipped: bool = False


@dataclass
class RunSummary:
    outcomes: list[TicketOutcome] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.success and not o.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


@dataclass
class PreparedUpload:
    """Parsed, mapped and validated contents of a ticket's attachments."""

    files: list[tuple[str, bytes]]
    column_mapping: dict[str, str] = field(default_factory=dict)
    used_ai_mapping: bool = False
    sheet_layouts: dict[str, SheetLayout] = field(default_factory=dict)
    approval_required: bool = False
    valid: list[UserRecord] = field(default_factory=list)
    invalid: list[RejectedRow] = field(default_factory=list)


def build_jql(config: BotConfig) -> str:
    if config.custom_jql and config.custom_jql.strip():
        return config.custom_jql.strip()
    statuses = config.jira_statuses or [STATUS_OPEN, STATUS_REVIEW]
    if len(statuses) == 1:
        status_clause = f'status = "{statuses[0]}"'
    else:
        status_clause = "status IN (" + ", ".join(f'"{s}"' for s in statuses) + ")"
    return f'project = {config.jira_project} AND {status_clause} AND text ~ "user upload"'


def get_assistant(config: BotConfig) -> BaseAssistant:
    provider = config.ai_provider
    if provider == "claude-cli":
        from rosterbot_core.providers.claude_cli import ClaudeCliAssistant

        return ClaudeCliAssistant(timeout=config.ai_timeout)
    if provider == "anthropic":
        from rosterbot_core.providers.anthropic import AnthropicAssistant

        return AnthropicAssistant(api_key=config.anthropic_api_key, timeout=config.ai_timeout)
    if provider == "openai":
        from rosterbot_core.providers.openai import OpenAIAssistant

        return OpenAIAssistant(api_key=config.openai_api_key, timeout=config.ai_timeout)
    raise ValueError(f"Unknown AI provider: {provider!r}. Choose 'claude-cli', 'anthropic' or 'openai'.")


def fetch_tickets(
    jira: JiraClient, config: BotConfig, ticket_key: str | None = None, single: bool = False
) -> Result[list[Ticket]]:
    """Tickets for this pass: one named ticket, or the JQL matches (optionally only the first)."""
    if ticket_key:
        ticket = jira.get_ticket(ticket_key)
        return ticket if isinstance(ticket, Err) else Ok([ticket.value])
    found = jira.search(build_jql(config))
    if isinstance(found, Err) or not single:
        return found
    return Ok(found.value[:1])


def _latest_by_filename(attachments: Iterable[Attachment]) -> list[Attachment]:
    latest: dict[str, Attachment] = {}
    for a in attachments:
        if not is_eligible(a.filename) or a.filename == REVIEW_FILENAME:
            continue
        current = latest.get(a.filename)
        if current is None or (a.created and current.created and a.created > current.created):
            latest[a.filename] = a
    return [latest[name] for name in sorted(latest)]


class Processor:
    """Runs tickets through the upload workflow.

    Collaborators are injected so each can be replaced in tests; the
    credential vault (and its cache) is owned by the caller.
    """

    def __init__(
        self,
        config: BotConfig,
        jira: JiraClient,
        vault,
        assistant: BaseAssistant,
        backend_factory: Callable[[], BackendClient] | None = None,
        dry_run: bool = False,
        bot_account_id: str | None = None,
    ):
        self.config = config
        self.jira = jira
        self.vault = vault
        self.assistant = assistant
        self.backend_factory = backend_factory or (
            lambda: BackendClient(config.backend_url, config.backend_search_url, config.request_timeout)
        )
        self.dry_run = dry_run
        self.bot_account_id = bot_account_id or config.bot_account_id

    # ------------------------------------------------------------------ #
    # Entry points                                                         #
    # ------------------------------------------------------------------ #

    def resolve_bot_account(self) -> Result[str]:
        if self.bot_account_id:
            return Ok(self.bot_account_id)
        me = self.jira.myself()
        if isinstance(me, Err):
            return me
        account_id = me.value.get("accountId")
        if not account_id:
            return Err(ErrorKind.DATA, "Jira /myself returned no accountId")
        self.bot_account_id = account_id
        return Ok(account_id)

    def run(self, tickets: Iterable[Ticket]) -> RunSummary:
        summary = RunSummary()
        for ticket in tickets:
            outcome = self.process_ticket(ticket)
            summary.outcomes.append(outcome)
            style = "red" if not outcome.success else ("dim" if outcome.skipped else "green")
            console.print(f"[{style}]{outcome.key}: {outcome.action}[/{style}] {escape(outcome.message)}")
        logger.info(
            "Processed %d ticket(s): %d successful, %d skipped, %d failed",
            len(summary.outcomes),
            summary.successful,
            summary.skipped,
            summary.failed,
        )
        return summary

    def process_ticket(self, ticket: Ticket) -> TicketOutcome:
        """Process one ticket; any exception is logged and reported as a failure."""
        step = "load"
        try:
            loaded = self.jira.get_ticket(ticket.key)
            if isinstance(loaded, Err):
                return self._failed(ticket.key, step, loaded)
            ticket = loaded.value

            if ticket.status == STATUS_REVIEW:
                step = "review"
                return self._process_review(ticket)
            if ticket.status == STATUS_OPEN:
                step = "open"
                return self._process_open(ticket)

            logger.info("%s is in status %r; nothing to do", ticket.key, ticket.status)
            return TicketOutcome(ticket.key, "skipped", f"status {ticket.status}", skipped=True)
        except Exception as e:
            logger.exception("Unexpected error processing %s (step: %s)", ticket.key, step)
            return TicketOutcome(ticket.key, "failed", f"unexpected error in {step}: {e}", success=False)

    # ------------------------------------------------------------------ #
    # Status handlers                                                      #
    # ------------------------------------------------------------------ #

    def _process_open(self, ticket: Ticket) -> TicketOutcome:
        names = [a.filename for a in ticket.attachments]
        intent = self.assistant.detect_intent(ticket.summary, ticket.description, names)
        if isinstance(intent, Err):
            return self._failed(ticket.key, "intent", intent)
        if not intent.value:
            logger.info("%s is not a user upload request", ticket.key)
            return TicketOutcome(ticket.key, "not_upload", "not identified as a user upload request", skipped=True)

        attachments = _latest_by_filename(ticket.attachments)
        if not attachments:
            return self._report_data_error(ticket, "No CSV or Excel attachment with the user list was found.")

        bot_id = self.resolve_bot_account()
        if isinstance(bot_id, Err):
            return self._failed(ticket.key, "bot identity", bot_id)
        files = self._download(attachments)
        if isinstance(files, Err):
            return self._failed(ticket.key, "download", files)
        current = [fingerprint(name, content) for name, content in files.value]
        if find_final_report(ticket.comments, current, bot_id.value):
            logger.info("%s: these files were already uploaded; not uploading again", ticket.key)
            return TicketOutcome(ticket.key, "already_uploaded", "final report already posted", skipped=True)
        if open_request(ticket.comments, current, bot_id.value) is not None:
            # The request was posted but the ticket never reached Review.
            logger.info("%s: approval request for these files already posted", ticket.key)
            self._transition(ticket.key, [STATUS_REVIEW])
            return TicketOutcome(ticket.key, "approval_requested", "approval request already posted", skipped=True)

        backend = self._authenticate(ticket)
        if isinstance(backend, TicketOutcome):
            return backend
        tenant, client = backend

        existing = client.search_users()
        if isinstance(existing, Err):
            return self._failed(ticket.key, "existing users", existing)
        prepared = self._prepare(ticket, files.value, [u.get("email", "") for u in existing.value])
        if isinstance(prepared, TicketOutcome):
            return prepared

        if not prepared.approval_required:
            return self._upload(ticket, tenant, client, prepared.valid, current, [STATUS_REVIEW])
        return self._request_approval(ticket, tenant, prepared)

    def _process_review(self, ticket: Ticket) -> TicketOutcome:
        bot_id = self.resolve_bot_account()
        if isinstance(bot_id, Err):
            return self._failed(ticket.key, "bot identity", bot_id)

        files = self._download(_latest_by_filename(ticket.attachments))
        if isinstance(files, Err):
            return self._failed(ticket.key, "download", files)
        current = [fingerprint(name, content) for name, content in files.value]

        decision = reconcile(ticket.key, ticket.comments, current, bot_id.value)
        if decision.status == ApprovalStatus.NO_REQUEST:
            if find_final_report(ticket.comments, current, bot_id.value):
                logger.info("%s: uploaded without approval; nothing left to do", ticket.key)
                return TicketOutcome(ticket.key, "already_uploaded", "final report already posted", skipped=True)
            logger.warning("%s is in Review but has no approval request", ticket.key)
            return TicketOutcome(ticket.key, "no_request", decision.message, skipped=True)
        if decision.status == ApprovalStatus.PENDING:
            logger.info("%s: %s", ticket.key, decision.message)
            return TicketOutcome(ticket.key, "pending", decision.message, skipped=True)
        if decision.status == ApprovalStatus.INVALID:
            self._notify_invalid(ticket, decision.message, bot_id.value, decision.approval_comment)
            return TicketOutcome(ticket.key, "invalid", decision.message, success=False)

        request = decision.request
        approved_at = decision.approval_comment.created if decision.approval_comment else None
        if find_final_report(ticket.comments, current, bot_id.value, since=approved_at):
            logger.info("%s: approved upload already completed", ticket.key)
            self._transition(ticket.key, DONE_STATUSES)
            return TicketOutcome(ticket.key, "already_uploaded", "final report already posted", skipped=True)

        backend = self._authenticate(ticket, request.tenant)
        if isinstance(backend, TicketOutcome):
            return backend
        tenant, client = backend

        # Users created since the request are reported as existing by the upload, not rejected here.
        prepared = self._prepare(
            ticket, files.value, [], approved_mapping=request.column_mapping, approved_layouts=request.sheet_layouts
        )
        if isinstance(prepared, TicketOutcome):
            return prepared

        analysis = analyze_dataset(prepared.valid)
        records = apply_splitting(prepared.valid, analysis.team_analyses)
        return self._upload(ticket, tenant, client, records, current, list(DONE_STATUSES))

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    def _authenticate(self, ticket: Ticket, known_tenant: str | None = None):
        """Return (tenant, authenticated client) or a TicketOutcome to stop with."""
        tenant = Ok(known_tenant) if known_tenant else extract_tenant(ticket)
        if isinstance(tenant, Err):
            return self._request_setup(ticket, None, tenant.message)

        email = tenant_email(tenant.value, self.config.email_template)
        credentials = self.vault.lookup(email)
        if isinstance(credentials, Err):
            if credentials.kind == ErrorKind.NOT_FOUND:
                return self._request_setup(ticket, tenant.value, credentials.message)
            return self._failed(ticket.key, "credentials", credentials)

        client = self.backend_factory()
        login = client.authenticate(credentials.value.email, credentials.value.password)
        if isinstance(login, Err):
            if login.kind == ErrorKind.AUTH:
                return self._request_setup(ticket, tenant.value, login.message)
            return self._failed(ticket.key, "backend login", login)
        return tenant.value, client

    def _download(self, attachments: list[Attachment]) -> Result[list[tuple[str, bytes]]]:
        files = []
        for attachment in attachments:
            content = self.jira.download(attachment)
            if isinstance(content, Err):
                return content
            files.append((attachment.filename, content.value))
        return Ok(files)

    def _read_table(self, filename: str, content: bytes, layout: SheetLayout | None = None, detect: bool = True):
        """Return Ok((table, layout)); ``layout`` stays None when the first sheet's first row was used.

        A workbook whose first sheet does not carry the required columns is
        handed to the assistant to locate the user list.
        """
        if layout is not None:
            table = parse_table(filename, content, layout)
            return Ok((table.value, layout)) if isinstance(table, Ok) else table

        table = parse_table(filename, content)
        first_sheet = Ok((table.value, None)) if isinstance(table, Ok) else table
        if not detect or not is_workbook(filename):
            return first_sheet
        if isinstance(table, Ok) and not missing_headers(local_mapping(table.value.headers)):
            return first_sheet

        previews = preview_sheets(filename, content)
        if isinstance(previews, Err):
            return first_sheet
        detected = self.assistant.detect_sheet(filename, previews.value)
        if isinstance(detected, Err):
            logger.warning("%s: could not locate the user list: %s", filename, detected.message)
            if isinstance(table, Err) and detected.kind != ErrorKind.DATA:
                return detected
            return first_sheet
        located = parse_table(filename, content, detected.value)
        if isinstance(located, Err):
            logger.warning("%s: detected sheet could not be read: %s", filename, located.message)
            return first_sheet
        return Ok((located.value, detected.value))

    def _map_headers(self, headers: list[str], approved_mapping: dict[str, str] | None) -> Result:
        """Return (mapping, used_ai) for one file's headers."""
        if approved_mapping is not None:
            mapping = {h: approved_mapping[h] for h in headers if h in approved_mapping}
            for h in headers:
                if h not in mapping and h.strip().lower() in CANONICAL_HEADERS:
                    mapping[h] = h.strip().lower()
            return Ok((mapping, False))

        if headers_match(headers):
            return Ok(({h: h.strip().lower() for h in headers}, False))

        mapping = local_mapping(headers)
        if not missing_headers(mapping):
            return Ok((mapping, False))

        suggested = self.assistant.map_columns(list(CANONICAL_HEADERS), headers)
        if isinstance(suggested, Err):
            return suggested
        claimed = set(mapping.values())
        for header, canonical in suggested.value.mapping.items():
            if header not in mapping and canonical not in claimed:
                mapping[header] = canonical
                claimed.add(canonical)
        return Ok((mapping, True))

    def _prepare(
        self,
        ticket: Ticket,
        files: list[tuple[str, bytes]],
        existing_emails: list[str],
        approved_mapping: dict[str, str] | None = None,
        approved_layouts: dict[str, SheetLayout] | None = None,
    ):
        """Parse, map and validate downloaded files; returns PreparedUpload or a TicketOutcome.

        Approved runs reuse the approved sheet layouts and never ask the assistant to locate sheets.
        """
        prepared = PreparedUpload(files=files)
        rows: list[dict] = []
        for filename, content in files:
            read = self._read_table(
                filename, content, (approved_layouts or {}).get(filename), detect=approved_mapping is None
            )
            if isinstance(read, Err):
                if read.kind == ErrorKind.DATA:
                    return self._report_data_error(ticket, read.message)
                return self._failed(ticket.key, "sheet detection", read)
            table, layout = read.value
            if layout is not None:
                prepared.sheet_layouts[filename] = layout

            mapped = self._map_headers(table.headers, approved_mapping)
            if isinstance(mapped, Err):
                return self._failed(ticket.key, "column mapping", mapped)
            mapping, used_ai = mapped.value
            missing = missing_headers(mapping)
            if missing:
                return self._report_data_error(ticket, f"{filename}: required columns not found: {', '.join(missing)}")

            rows.extend(apply_mapping(table.rows, mapping))
            prepared.used_ai_mapping = prepared.used_ai_mapping or used_ai
            prepared.column_mapping.update({raw: c for raw, c in mapping.items() if raw.strip().lower() != c})
            prepared.approval_required = prepared.approval_required or approval_required(
                used_ai or layout is not None, table.headers, CANONICAL_HEADERS, mapping
            )

        validation = validate_dataset(rows, existing_emails)
        prepared.valid = validation.valid
        prepared.invalid = validation.invalid
        if not prepared.valid:
            reasons = "; ".join(f"row {r.row_number}: {r.reason}" for r in validation.invalid[:10])
            return self._report_data_error(ticket, f"No valid rows found ({validation.summary()}). {reasons}")
        return prepared

    def _request_approval(self, ticket: Ticket, tenant: str, prepared: PreparedUpload) -> TicketOutcome:
        draft = build(
            ticket.key,
            tenant,
            prepared.valid,
            prepared.files,
            column_mapping=prepared.column_mapping,
            sheet_layouts=prepared.sheet_layouts,
        )
        request = draft.request
        extra_info = {
            "tenant_email": tenant_email(tenant, self.config.email_template),
            "credentials_found": True,
            "rejected_rows": prepared.invalid,
            "review_filename": draft.review_filename,
        }

        if self.dry_run:
            console.print(f"[yellow](dry run) would post approval request on {ticket.key}[/yellow]")
            console.print(render_message(request, draft.analysis.team_analyses, extra_info), markup=False)
            return TicketOutcome(ticket.key, "approval_requested", "dry run; nothing posted")

        attached = self.jira.add_attachment(ticket.key, draft.review_filename, draft.review_file)
        if isinstance(attached, Err):
            return self._failed(ticket.key, "attach review file", attached)
        request = replace(request, csv_attachment_id=attached.value.id)

        posted = self.jira.post_comment(ticket.key, render_message(request, draft.analysis.team_analyses, extra_info))
        if isinstance(posted, Err):
            return self._failed(ticket.key, "post approval request", posted)
        self._transition(ticket.key, [STATUS_REVIEW])
        return TicketOutcome(
            ticket.key,
            "approval_requested",
            f"{request.user_count} user(s), {draft.analysis.split_count} split team name(s)",
        )

    def _upload(
        self,
        ticket: Ticket,
        tenant: str,
        client: BackendClient,
        records: list[UserRecord],
        fingerprints: list[AttachmentFingerprint],
        next_statuses: list[str],
    ) -> TicketOutcome:
        if self.dry_run:
            console.print(f"[yellow](dry run) would upload {len(records)} user(s) for {tenant} ({ticket.key})[/yellow]")
            return TicketOutcome(ticket.key, "uploaded", "dry run; nothing uploaded")

        result = run_upload(client, records)
        if isinstance(result, Err):
            return self._failed(ticket.key, "upload", result)
        report = result.value

        posted = self.jira.post_comment(ticket.key, render_report(ticket.key, report, fingerprints))
        if isinstance(posted, Err):
            # Users exist now; a missing report only means the next run finds them as existing.
            logger.error("%s: upload finished but the report could not be posted: %s", ticket.key, posted.message)
        self._transition(ticket.key, next_statuses)
        return TicketOutcome(ticket.key, "uploaded", report.summary(), success=not report.failed_users)

    # ------------------------------------------------------------------ #
    # Writes back to Jira                                                  #
    # ------------------------------------------------------------------ #

    def _transition(self, key: str, statuses: Iterable[str]) -> bool:
        """Try each status name in turn until one transition succeeds."""
        for status in statuses:
            if self.dry_run:
                logger.info("[dry-run] would transition %s to %s", key, status)
                return True
            moved = self.jira.transition(key, status)
            if not isinstance(moved, Err):
                return True
            logger.warning("Could not transition %s to %s: %s", key, status, moved.message)
        return False

    def _comment(self, key: str, text: str) -> None:
        if self.dry_run:
            logger.info("[dry-run] would comment on %s:\n%s", key, text)
            return
        posted = self.jira.post_comment(key, text)
        if isinstance(posted, Err):
            logger.error("Could not comment on %s: %s", key, posted.message)

    def _request_setup(self, ticket: Ticket, tenant: str | None, reason: str) -> TicketOutcome:
        if tenant is None:
            action = (
                "Add the tenant's service account address "
                f"({tenant_email('<tenant>', self.config.email_template)}) to the ticket description"
            )
        else:
            action = (
                f"Add a login item for {tenant_email(tenant, self.config.email_template)} "
                f'to the "{self.config.vault_name}" 1Password vault'
            )
        self._comment(
            ticket.key,
            "\n".join(
                [
                    SETUP_MARKER,
                    "**USER UPLOAD: SETUP REQUIRED**",
                    "",
                    f"The upload could not start: {reason}",
                    f"{action}, then move this ticket back to {STATUS_OPEN}.",
                ]
            ),
        )
        self._transition(ticket.key, [STATUS_INFO_REQUIRED])
        return TicketOutcome(ticket.key, "info_required", reason, success=False)

    def _report_data_error(self, ticket: Ticket, message: str) -> TicketOutcome:
        logger.warning("%s: %s", ticket.key, message)
        self._comment(
            ticket.key,
            "\n".join(
                [
                    SETUP_MARKER,
                    "**USER UPLOAD: FILE PROBLEM**",
                    "",
                    message,
                    f"Please fix the attached file, re-attach it, and move this ticket back to {STATUS_OPEN}.",
                ]
            ),
        )
        self._transition(ticket.key, [STATUS_INFO_REQUIRED])
        return TicketOutcome(ticket.key, "info_required", message, success=False)

    def _notify_invalid(self, ticket: Ticket, message: str, bot_id: str, approval_comment) -> None:
        """Explain an unusable approval once per approval reply."""
        since = approval_comment.created if approval_comment else None
        for c in ticket.comments:
            if c.author_id != bot_id or not c.body.lstrip().startswith(NOTICE_MARKER):
                continue
            if since is None or c.created > since:
                return
        self._comment(
            ticket.key,
            "\n".join(
                [
                    NOTICE_MARKER,
                    "**APPROVAL CANNOT BE USED**",
                    "",
                    message,
                    f"Move this ticket back to {STATUS_OPEN} to generate a new approval request.",
                ]
            ),
        )

    def _failed(self, key: str, step: str, error: Err) -> TicketOutcome:
        logger.error("%s failed at %s: %s", key, step, error)
        return TicketOutcome(key, "failed", f"{step}: {error.message}", success=False)
