"""Approval state of a ticket, derived from its comment history.

Nothing is stored between runs: the state is recomputed every time from
the comments and the bytes currently attached, so re-running is always
safe.
"""

from __future__ import annotations

import logging
from typing import Iterable

from rosterbot_core.approval import REPORT_MARKER, extract_payloads, is_approval_request, parse_embedded_request
from rosterbot_core.fingerprint import compare
from rosterbot_core.models import ApprovalDecision, ApprovalRequest, ApprovalStatus, AttachmentFingerprint, Comment
from rosterbot_core.result import Err

logger = logging.getLogger(__name__)

APPROVAL_REPLY = "approved"


def normalize_reply(text: str) -> str:
    return " ".join((text or "").lower().split())


def _latest(comments: list[Comment]) -> Comment:
    # Later position wins when two comments share a timestamp.
    return max(enumerate(comments), key=lambda pair: (pair[1].created, pair[0]))[1]


def latest_request(comments: Iterable[Comment], bot_account_id: str) -> Comment | None:
    candidates = [
        c for c in comments if c.author_id == bot_account_id and is_approval_request(c.document or c.body)
    ]
    return _latest(candidates) if candidates else None


def reconcile(
    ticket_key: str,
    comments: list[Comment],
    current_attachments: list[AttachmentFingerprint],
    bot_account_id: str,
) -> ApprovalDecision:
    """Compute the approval decision for one ticket.

    Only the latest approval request counts; replies to superseded requests
    are ignored. An approval is honoured only if the attached files still
    match the fingerprints recorded in the request.
    """
    request_comment = latest_request(comments, bot_account_id)
    if request_comment is None:
        return ApprovalDecision(ApprovalStatus.NO_REQUEST, f"No approval request found on {ticket_key}")

    approvals = [
        c
        for c in comments
        if c.created > request_comment.created
        and c.author_id != bot_account_id
        and normalize_reply(c.body) == APPROVAL_REPLY
    ]
    if not approvals:
        return ApprovalDecision(
            ApprovalStatus.PENDING,
            f"Waiting for approval of the request posted {request_comment.created.isoformat()}",
        )
    approval = min(approvals, key=lambda c: c.created)

    parsed = parse_embedded_request(request_comment.document or request_comment.body)
    if isinstance(parsed, Err):
        logger.warning("%s: approval request could not be parsed: %s", ticket_key, parsed.message)
        return ApprovalDecision(ApprovalStatus.INVALID, parsed.message, approval_comment=approval)
    request = parsed.value

    comparison = compare(current_attachments, request.attachments)
    if not comparison.valid:
        return ApprovalDecision(
            ApprovalStatus.INVALID,
            f"Attachment changes detected: {comparison.describe()}",
            request=request,
            approval_comment=approval,
            changes=comparison.as_dict(),
        )

    return ApprovalDecision(
        ApprovalStatus.APPROVED,
        f"Approved by {approval.author_name or approval.author_id} at {approval.created.isoformat()}",
        request=request,
        approval_comment=approval,
    )


def find_final_report(
    comments: Iterable[Comment],
    current_attachments: list[AttachmentFingerprint],
    bot_account_id: str,
    since=None,
) -> Comment | None:
    """Return the bot's final report for exactly these attachments, if one exists.

    ``since`` limits the search to reports posted after that timestamp.
    """
    for comment in comments:
        if comment.author_id != bot_account_id:
            continue
        if since is not None and comment.created <= since:
            continue
        text = comment.body or ""
        if not text.lstrip().startswith(REPORT_MARKER):
            continue
        for payload in extract_payloads(comment.document or text):
            try:
                recorded = [AttachmentFingerprint.from_dict(a) for a in payload.get("attachments") or ()]
            except (KeyError, TypeError, ValueError):
                continue
            if recorded and compare(current_attachments, recorded).valid:
                return comment
    return None


def open_request(
    comments: Iterable[Comment],
    current_attachments: list[AttachmentFingerprint],
    bot_account_id: str,
) -> ApprovalRequest | None:
    """Return the latest approval request if it was made for exactly these attachments."""
    comment = latest_request(comments, bot_account_id)
    if comment is None:
        return None
    parsed = parse_embedded_request(comment.document or comment.body)
    if isinstance(parsed, Err) or not compare(current_attachments, parsed.value.attachments).valid:
        return None
    return parsed.value
