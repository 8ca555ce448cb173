from __future__ import annotations

import logging
from datetime import datetime, timezone

import requests

from rosterbot_core.jira.adf import adf_to_text, text_to_adf
from rosterbot_core.models import Attachment, Comment, Ticket
from rosterbot_core.result import Err, ErrorKind, Ok, Result
from rosterbot_core.utils.http import json_body, send

logger = logging.getLogger(__name__)

TICKET_FIELDS = "summary,description,status,attachment"
_PAGE_SIZE = 100
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse Jira's ``2024-01-15T10:30:00.000+0000`` timestamps."""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(value)


def _to_comment(data: dict) -> Comment:
    author = data.get("author") or {}
    body = data.get("body")
    return Comment(
        id=str(data.get("id", "")),
        author_id=author.get("accountId", ""),
        author_name=author.get("displayName", ""),
        body=adf_to_text(body),
        created=parse_timestamp(data.get("created")) or _EPOCH,
        document=body if isinstance(body, dict) else None,
    )


def _to_attachment(data: dict) -> Attachment:
    return Attachment(
        id=str(data.get("id", "")),
        filename=data.get("filename", ""),
        size=int(data.get("size") or 0),
        content_url=data.get("content", ""),
        created=parse_timestamp(data.get("created")),
    )


def _to_ticket(data: dict, comments: list[Comment] | None = None) -> Ticket:
    fields = data.get("fields") or {}
    return Ticket(
        key=data["key"],
        status=(fields.get("status") or {}).get("name", ""),
        summary=fields.get("summary") or "",
        description=adf_to_text(fields.get("description")),
        comments=comments or [],
        attachments=[_to_attachment(a) for a in fields.get("attachment") or []],
    )


class JiraClient:
    """Thin Jira Cloud REST v3 client using basic auth (email + API token)."""

    def __init__(self, domain: str, email: str, api_token: str, timeout: float = 30, session=None):
        self.base_url = f"https://{domain}/rest/api/3"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (email, api_token)
        self.session.headers.update({"Accept": "application/json"})

    def _call(self, method: str, path: str, **kwargs) -> Result:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        return send(self.session, method, url, self.timeout, **kwargs)

    def _json(self, method: str, path: str, **kwargs) -> Result:
        response = self._call(method, path, **kwargs)
        if isinstance(response, Err):
            return response
        return json_body(response.value)

    def myself(self) -> Result[dict]:
        return self._json("GET", "/myself")

    def search(self, jql: str, max_results: int = 100) -> Result[list[Ticket]]:
        """Run a JQL search. Comments are not loaded; use get_ticket for those."""
        found = self._json("GET", "/search", params={"jql": jql, "fields": TICKET_FIELDS, "maxResults": max_results})
        if isinstance(found, Err):
            return found
        issues = found.value.get("issues") or []
        logger.info("JQL search returned %d ticket(s)", len(issues))
        return Ok([_to_ticket(issue) for issue in issues])

    def comments(self, key: str) -> Result[list[Comment]]:
        collected: list[Comment] = []
        start = 0
        while True:
            params = {"startAt": start, "maxResults": _PAGE_SIZE, "orderBy": "created"}
            page = self._json("GET", f"/issue/{key}/comment", params=params)
            if isinstance(page, Err):
                return page
            batch = page.value.get("comments") or []
            collected.extend(_to_comment(c) for c in batch)
            start += len(batch)
            if not batch or start >= int(page.value.get("total", 0)):
                return Ok(collected)

    def get_ticket(self, key: str) -> Result[Ticket]:
        issue = self._json("GET", f"/issue/{key}", params={"fields": TICKET_FIELDS})
        if isinstance(issue, Err):
            return issue
        comments = self.comments(key)
        if isinstance(comments, Err):
            return comments
        return Ok(_to_ticket(issue.value, comments.value))

    def download(self, attachment: Attachment) -> Result[bytes]:
        if not attachment.content_url:
            return Err(ErrorKind.NOT_FOUND, f"No content URL for {attachment.filename}")
        response = self._call("GET", attachment.content_url)
        if isinstance(response, Err):
            return response
        return Ok(response.value.content)

    def post_comment(self, key: str, text: str) -> Result[Comment]:
        posted = self._json("POST", f"/issue/{key}/comment", json={"body": text_to_adf(text)})
        if isinstance(posted, Err):
            return posted
        logger.info("Posted comment on %s", key)
        return Ok(_to_comment(posted.value))

    def add_attachment(self, key: str, filename: str, content: bytes) -> Result[Attachment]:
        uploaded = self._json(
            "POST",
            f"/issue/{key}/attachments",
            files={"file": (filename, content)},
            headers={"X-Atlassian-Token": "no-check"},
        )
        if isinstance(uploaded, Err):
            return uploaded
        items = uploaded.value if isinstance(uploaded.value, list) else [uploaded.value]
        if not items:
            return Err(ErrorKind.DATA, f"Jira returned no attachment metadata for {filename}")
        logger.info("Attached %s to %s", filename, key)
        return Ok(_to_attachment(items[0]))

    def transition(self, key: str, status_name: str) -> Result[str]:
        """Move a ticket to the status called ``status_name`` (case-insensitive)."""
        available = self._json("GET", f"/issue/{key}/transitions")
        if isinstance(available, Err):
            return available
        wanted = status_name.lower()
        for transition in available.value.get("transitions") or []:
            target = ((transition.get("to") or {}).get("name") or "").lower()
            if target == wanted or (transition.get("name") or "").lower() == wanted:
                done = self._call("POST", f"/issue/{key}/transitions", json={"transition": {"id": transition["id"]}})
                if isinstance(done, Err):
                    return done
                logger.info("Transitioned %s to %s", key, status_name)
                return Ok(status_name)
        return Err(ErrorKind.NOT_FOUND, f"No transition to '{status_name}' available on {key}")
