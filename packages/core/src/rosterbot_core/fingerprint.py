"""Content fingerprints for ticket attachments."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from rosterbot_core.models import AttachmentFingerprint


@dataclass(frozen=True)
class FingerprintComparison:
    valid: bool
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    def describe(self) -> str:
        """Human-readable list of changes, empty when nothing changed."""
        parts = []
        if self.added:
            parts.append("Added: " + ", ".join(self.added))
        if self.removed:
            parts.append("Removed: " + ", ".join(self.removed))
        if self.modified:
            parts.append("Modified: " + ", ".join(self.modified))
        return "; ".join(parts)

    def as_dict(self) -> dict[str, list[str]]:
        return {"added": list(self.added), "removed": list(self.removed), "modified": list(self.modified)}


def fingerprint(filename: str, content: bytes) -> AttachmentFingerprint:
    return AttachmentFingerprint(
        filename=filename,
        content_hash=hashlib.sha256(content).hexdigest(),
        size_bytes=len(content),
    )


def compare(
    current: list[AttachmentFingerprint] | tuple[AttachmentFingerprint, ...],
    recorded: list[AttachmentFingerprint] | tuple[AttachmentFingerprint, ...],
) -> FingerprintComparison:
    """Diff two fingerprint sets by filename.

    Files only in ``current`` are added, files only in ``recorded`` are
    removed, files in both with a different digest are modified.
    """
    now = {f.filename: f.content_hash for f in current}
    before = {f.filename: f.content_hash for f in recorded}

    added = sorted(set(now) - set(before))
    removed = sorted(set(before) - set(now))
    modified = sorted(name for name in set(now) & set(before) if now[name] != before[name])

    return FingerprintComparison(
        valid=not (added or removed or modified),
        added=added,
        removed=removed,
        modified=modified,
    )
