"""Team name disambiguation.

Spreadsheets routinely pack several team names into one cell separated by
spaces ("M&E-Underground Branch-WA Agnew"), while other names genuinely
contain spaces ("M&E-Surface Non-IronOre"). The splitter decides which is
which using only the string itself and the other team names found in the
same upload.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterable

from rosterbot_core.models import Confidence, TeamNameAnalysis, UserRecord

logger = logging.getLogger(__name__)

# Hyphen-joined qualifiers that bind a token to its neighbour.
COMPOUND_QUALIFIERS = ("Non", "Sub", "Pre", "Post", "Anti", "Multi")
_QUALIFIER_RE = re.compile(r"^(?:%s)-\S" % "|".join(COMPOUND_QUALIFIERS), re.IGNORECASE)

# Organisation prefix such as "M&E-" shared by related team names.
_PREFIX_RE = re.compile(r"^([^\s-]+-)\S")

# Above this many tokens the grouping search is skipped.
_MAX_TOKENS = 10


@dataclass
class TeamDatasetAnalysis:
    team_analyses: list[TeamNameAnalysis] = field(default_factory=list)
    split_count: int = 0

    @property
    def ambiguous(self) -> list[TeamNameAnalysis]:
        return [a for a in self.team_analyses if a.is_ambiguous]


def _not_ambiguous(raw_name: str, confidence: Confidence, reason: str) -> TeamNameAnalysis:
    return TeamNameAnalysis(
        raw_name=raw_name,
        is_ambiguous=False,
        split_candidates=(),
        confidence=confidence,
        reason=reason,
    )


def _groupings(tokens: list[str]) -> Iterable[tuple[str, ...]]:
    """Yield every contiguous grouping of tokens with at least two groups.

    Groupings come out ordered by group count, then by cut position, so the
    first one seen wins a full tie.
    """
    cut_points = range(1, len(tokens))
    for n_cuts in range(1, len(tokens)):
        for cuts in combinations(cut_points, n_cuts):
            bounds = (0, *cuts, len(tokens))
            yield tuple(" ".join(tokens[a:b]) for a, b in zip(bounds, bounds[1:]))


def _is_corroborated(group: str, known: set[str], prefix: str | None) -> bool:
    if group in known:
        return True
    return bool(prefix) and not group.startswith(prefix) and f"{prefix}{group}" in known


def analyze(raw_name, other_team_names: Iterable[str] = ()) -> TeamNameAnalysis:
    """Decide whether ``raw_name`` names one team or several.

    Never raises: unusable input comes back as not ambiguous with low
    confidence.
    """
    if not isinstance(raw_name, str) or not raw_name.strip():
        return _not_ambiguous(
            raw_name if isinstance(raw_name, str) else "",
            Confidence.LOW,
            "empty or unreadable team name",
        )

    name = raw_name.strip()
    tokens = name.split()
    if len(tokens) < 2:
        return _not_ambiguous(raw_name, Confidence.HIGH, "single token")

    if any(_QUALIFIER_RE.match(t) for t in tokens):
        return _not_ambiguous(raw_name, Confidence.HIGH, "compound qualifier detected")

    known = {n.strip() for n in other_team_names if isinstance(n, str) and n.strip()}
    known.discard(name)
    prefix_match = _PREFIX_RE.match(tokens[0])
    prefix = prefix_match.group(1) if prefix_match else None

    best: tuple[str, ...] | None = None
    best_score = 0
    if len(tokens) <= _MAX_TOKENS:
        for grouping in _groupings(tokens):
            score = sum(1 for g in grouping if _is_corroborated(g, known, prefix))
            # Strictly greater keeps the earlier grouping, which has fewer groups.
            if score > best_score:
                best, best_score = grouping, score

    if best is None:
        return TeamNameAnalysis(
            raw_name=raw_name,
            is_ambiguous=True,
            split_candidates=tuple(tokens),
            confidence=Confidence.MEDIUM,
            reason="split on spaces; no part matches another team in this upload",
        )

    confidence = Confidence.HIGH if best_score == len(best) else Confidence.MEDIUM
    return TeamNameAnalysis(
        raw_name=raw_name,
        is_ambiguous=True,
        split_candidates=best,
        confidence=confidence,
        reason=f"{best_score} of {len(best)} parts match other teams in this upload",
    )


def analyze_dataset(records: Iterable[UserRecord]) -> TeamDatasetAnalysis:
    """Analyze every distinct team name containing whitespace."""
    all_names: list[str] = []
    for record in records:
        for team in record.teams:
            if team not in all_names:
                all_names.append(team)

    analyses = [analyze(name, all_names) for name in all_names if len(name.split()) > 1]
    split_count = sum(1 for a in analyses if a.is_ambiguous)
    if split_count:
        logger.info("Found %d ambiguous team name(s) out of %d analysed", split_count, len(analyses))
    return TeamDatasetAnalysis(team_analyses=analyses, split_count=split_count)


def _expand(team: str, splits: dict[str, tuple[str, ...]]) -> list[str]:
    # Candidates are strictly shorter than their raw name, so recursion ends.
    if team not in splits:
        return [team]
    expanded: list[str] = []
    for part in splits[team]:
        expanded.extend(_expand(part, splits))
    return expanded


def apply_splitting(records: Iterable[UserRecord], analyses: Iterable[TeamNameAnalysis]) -> list[UserRecord]:
    """Return new records with ambiguous team entries replaced by their split."""
    splits = {a.raw_name: a.split_candidates for a in analyses if a.is_ambiguous and len(a.split_candidates) >= 2}

    result = []
    for record in records:
        teams: list[str] = []
        for team in record.teams:
            for part in _expand(team, splits):
                if part not in teams:
                    teams.append(part)
        result.append(record.with_teams(teams))
    return result
