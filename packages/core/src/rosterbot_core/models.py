"""Domain data models shared across the core modules.

Ticket-side models (Ticket, Comment, Attachment) are filled in by the Jira
client; the rest are produced by the validator, the team splitter and the
approval builder. Records are frozen: every transformation returns a copy.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ApprovalStatus(str, Enum):
    NO_REQUEST = "no_request"
    PENDING = "pending"
    APPROVED = "approved"
    INVALID = "invalid"


@dataclass(frozen=True)
class UserRecord:
    """One validated row of an uploaded user sheet."""

    email: str
    first_name: str
    last_name: str
    job_title: str = ""
    mobile_number: str = "0"
    teams: tuple[str, ...] = ()
    user_role: str = "TEAM MEMBER"

    def with_teams(self, teams) -> UserRecord:
        return replace(self, teams=tuple(teams))


@dataclass(frozen=True)
class TeamNameAnalysis:
    raw_name: str
    is_ambiguous: bool
    split_candidates: tuple[str, ...]
    confidence: Confidence
    reason: str


@dataclass(frozen=True)
class AttachmentFingerprint:
    """Content identity of one attached file.

    ``size_bytes`` is informational and excluded from equality.
    """

    filename: str
    content_hash: str
    size_bytes: int = field(default=0, compare=False)

    @property
    def short_hash(self) -> str:
        return self.content_hash[:8]

    def to_dict(self) -> dict:
        return {"filename": self.filename, "content_hash": self.content_hash, "size_bytes": self.size_bytes}

    @classmethod
    def from_dict(cls, data: dict) -> AttachmentFingerprint:
        return cls(
            filename=str(data["filename"]),
            content_hash=str(data["content_hash"]),
            size_bytes=int(data.get("size_bytes", 0)),
        )


@dataclass(frozen=True)
class SheetLayout:
    """Where the user table sits inside a workbook; rows are 0-based."""

    sheet: str
    header_row: int = 0
    data_start_row: int = 1

    def to_dict(self) -> dict:
        return {"sheet": self.sheet, "header_row": self.header_row, "data_start_row": self.data_start_row}

    @classmethod
    def from_dict(cls, data: dict) -> SheetLayout:
        header_row = int(data.get("header_row", 0))
        return cls(
            sheet=str(data["sheet"]),
            header_row=header_row,
            data_start_row=int(data.get("data_start_row", header_row + 1)),
        )


@dataclass(frozen=True)
class ApprovalRequest:
    """What the bot proposed for a ticket, embedded in its approval comment."""

    ticket_key: str
    tenant: str
    user_count: int
    team_count: int
    teams: tuple[str, ...]
    attachments: tuple[AttachmentFingerprint, ...]
    column_mapping: dict[str, str] = field(default_factory=dict)
    csv_attachment_id: str | None = None
    created_at: str = ""  # ISO-8601 UTC timestamp
    sheet_layouts: dict[str, SheetLayout] = field(default_factory=dict)  # filename -> detected layout

    def to_payload(self) -> dict:
        return {
            "ticket_key": self.ticket_key,
            "tenant": self.tenant,
            "user_count": self.user_count,
            "team_count": self.team_count,
            "teams": list(self.teams),
            "attachments": [a.to_dict() for a in self.attachments],
            "column_mapping": dict(self.column_mapping),
            "csv_attachment_id": self.csv_attachment_id,
            "created_at": self.created_at,
            "sheet_layouts": {name: layout.to_dict() for name, layout in self.sheet_layouts.items()},
        }

    @classmethod
    def from_payload(cls, data: dict) -> ApprovalRequest:
        return cls(
            ticket_key=str(data["ticket_key"]),
            tenant=str(data["tenant"]),
            user_count=int(data["user_count"]),
            team_count=int(data["team_count"]),
            teams=tuple(data.get("teams") or ()),
            attachments=tuple(AttachmentFingerprint.from_dict(a) for a in data.get("attachments") or ()),
            column_mapping=dict(data.get("column_mapping") or {}),
            csv_attachment_id=data.get("csv_attachment_id"),
            created_at=str(data.get("created_at") or ""),
            sheet_layouts={
                str(name): SheetLayout.from_dict(layout) for name, layout in (data.get("sheet_layouts") or {}).items()
            },
        )


@dataclass(frozen=True)
class Comment:
    id: str
    author_id: str
    author_name: str
    body: str  # plain-text rendering
    created: datetime
    document: Any = None  # original rich-text (ADF) body, when available


@dataclass(frozen=True)
class Attachment:
    id: str
    filename: str
    size: int
    content_url: str
    created: datetime | None = None


@dataclass
class Ticket:
    key: str
    status: str
    summary: str = ""
    description: str = ""
    comments: list[Comment] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class ApprovalDecision:
    """Outcome of scanning a ticket's comments for its approval state."""

    status: ApprovalStatus
    message: str
    request: ApprovalRequest | None = None
    approval_comment: Comment | None = None
    changes: dict[str, list[str]] = field(default_factory=dict)
