"""Tenant identification from ticket text."""

from __future__ import annotations

import logging
import re

from rosterbot_core.models import Ticket
from rosterbot_core.result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_TEMPLATE = "customersolutions+%s@jesi.io"

_PATTERNS = (
    re.compile(r"customersolutions\+([a-zA-Z0-9_-]+)@jesi\.io", re.IGNORECASE),
    re.compile(r"([a-zA-Z0-9_-]+)\.service@jesi\.io", re.IGNORECASE),
)
_VALID_TENANT_RE = re.compile(r"^[a-zA-Z0-9_-]{2,50}$")


def tenant_email(tenant: str, template: str = DEFAULT_EMAIL_TEMPLATE) -> str:
    return template % tenant


def find_tenant(text: str) -> str | None:
    for pattern in _PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(1)
    return None


def extract_tenant(ticket: Ticket) -> Result[str]:
    """Find the tenant's service-account address in the ticket and validate it.

    Looks in the description first, then the summary, then comments in order.
    """
    sources = [ticket.description, ticket.summary] + [c.body for c in ticket.comments]
    for text in sources:
        tenant = find_tenant(text)
        if tenant is None:
            continue
        if not _VALID_TENANT_RE.match(tenant):
            return Err(ErrorKind.DATA, f"Invalid tenant name: {tenant!r}", {"tenant": tenant})
        logger.debug("Found tenant %s on %s", tenant, ticket.key)
        return Ok(tenant.lower())
    return Err(ErrorKind.NOT_FOUND, f"No tenant email address found on {ticket.key}")
