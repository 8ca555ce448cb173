"""Base assistant implementing the Template Method pattern.

Every provider answers the same three questions the same way:
    detect_intent() / map_columns() / detect_sheet() → build prompts
        → _call_with_retry() → _call_api()   ← only this differs per provider
        → _parse()

Subclasses implement ``__init__`` (client setup) and ``_call_api`` (one raw
call returning text). A provider signals a timeout by raising
``TimeoutError``; timeouts are reported as ``ErrorKind.TIMEOUT`` and are not
retried.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rosterbot_core.models import SheetLayout
from rosterbot_core.result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MAX_TOKENS = 1024

INTENT_SYSTEM_PROMPT = 'Return ONLY JSON: {"is_user_upload": <bool>} with no prose.'
MAPPING_SYSTEM_PROMPT = (
    'Return ONLY JSON with fields: {"mapping": {<file-col>: <expected>}, '
    '"unmapped": [<expected-fields-missing>]}. No prose.'
)
SHEET_SYSTEM_PROMPT = (
    'Return ONLY JSON: {"sheet_name": <sheet>, "header_row": <0-based row>, "data_start_row": <0-based row>, '
    '"confidence": "high"|"medium"|"low", "reasoning": <one sentence>}. No prose.'
)


@dataclass
class ColumnMapping:
    mapping: dict[str, str] = field(default_factory=dict)  # file header -> expected field
    unmapped: list[str] = field(default_factory=list)


class BaseAssistant(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def detect_intent(self, summary: str, description: str, attachment_names: list[str]) -> Result[bool]:
        """Ask whether a ticket is a request to bulk-upload users."""
        answer = self._ask(INTENT_SYSTEM_PROMPT, self._build_intent_prompt(summary, description, attachment_names))
        if isinstance(answer, Err):
            return answer
        value = answer.value.get("is_user_upload")
        if not isinstance(value, bool):
            return Err(ErrorKind.DATA, "Missing is_user_upload field in response", {"response": answer.value})
        return Ok(value)

    def map_columns(self, expected: list[str], headers: list[str]) -> Result[ColumnMapping]:
        """Map spreadsheet headers onto the expected field names."""
        answer = self._ask(MAPPING_SYSTEM_PROMPT, self._build_mapping_prompt(expected, headers))
        if isinstance(answer, Err):
            return answer
        raw_mapping = answer.value.get("mapping")
        if not isinstance(raw_mapping, dict):
            return Err(ErrorKind.DATA, "Missing mapping field in response", {"response": answer.value})

        allowed = set(expected)
        known_headers = {str(h) for h in headers}
        mapping = {
            str(src): str(dst) for src, dst in raw_mapping.items() if str(dst) in allowed and str(src) in known_headers
        }
        unmapped = [f for f in expected if f not in set(mapping.values())]
        return Ok(ColumnMapping(mapping=mapping, unmapped=unmapped))

    def detect_sheet(self, filename: str, previews: list) -> Result[SheetLayout]:
        """Locate the sheet, header row and first data row holding the user list.

        ``previews`` are the :class:`~rosterbot_core.tabular.SheetPreview` of
        every sheet; the answer must name one of them and a header row
        inside its preview.
        """
        answer = self._ask(SHEET_SYSTEM_PROMPT, self._build_sheet_prompt(filename, previews))
        if isinstance(answer, Err):
            return answer
        data = answer.value
        shown = {p.name: len(p.rows) for p in previews}
        sheet = data.get("sheet_name")
        header_row = data.get("header_row")
        data_start_row = data.get("data_start_row", header_row + 1 if isinstance(header_row, int) else None)
        if sheet not in shown:
            return Err(ErrorKind.DATA, f"Unknown sheet in response: {sheet!r}", {"response": data})
        if not _is_row(header_row) or header_row >= shown[sheet]:
            return Err(ErrorKind.DATA, f"Invalid header_row in response: {header_row!r}", {"response": data})
        if not _is_row(data_start_row) or data_start_row <= header_row:
            return Err(ErrorKind.DATA, f"Invalid data_start_row in response: {data_start_row!r}", {"response": data})
        logger.info(
            "%s: user data on sheet '%s' (header row %d, confidence %s): %s",
            filename,
            sheet,
            header_row,
            data.get("confidence", "medium"),
            data.get("reasoning", ""),
        )
        return Ok(SheetLayout(sheet=sheet, header_row=header_row, data_start_row=data_start_row))

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                 #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single call and return the raw text response.

        Raise ``TimeoutError`` on timeout and any other exception on failure.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _ask(self, system_prompt: str, user_prompt: str) -> Result[dict]:
        raw = self._call_with_retry(system_prompt, user_prompt)
        if isinstance(raw, Err):
            return raw
        return self._parse(raw.value)

    def _call_with_retry(self, system_prompt: str, user_prompt: str) -> Result[str]:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        name = self.__class__.__name__
        for attempt in range(self.MAX_RETRIES):
            try:
                return Ok(self._call_api(system_prompt, user_prompt))
            except TimeoutError as e:
                logger.error("%s call timed out: %s", name, e)
                return Err(ErrorKind.TIMEOUT, f"{name} timed out: {e}")
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error("%s failed after %d attempts: %s", name, self.MAX_RETRIES, e)
                    return Err(ErrorKind.TRANSPORT, f"{name} failed: {e}")
                delay = 2**attempt
                logger.warning(
                    "%s error (attempt %d/%d): %s. Retrying in %ds...",
                    name,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        return Err(ErrorKind.TRANSPORT, f"{name} was not called")

    def _build_intent_prompt(self, summary: str, description: str, attachment_names: list[str]) -> str:
        return json.dumps(
            {
                "task": "intent",
                "question": (
                    "Is this ticket asking for a batch of users to be created or uploaded "
                    "from an attached spreadsheet?"
                ),
                "ticket": {"summary": summary or "", "description": (description or "")[:4000]},
                "attachments": list(attachment_names),
            },
            ensure_ascii=False,
        )

    def _build_mapping_prompt(self, expected: list[str], headers: list[str]) -> str:
        return json.dumps(
            {
                "task": "map-columns",
                "instructions": (
                    "Map each file column to at most one expected field. Leave out columns "
                    "that do not correspond to any expected field."
                ),
                "expected_fields": list(expected),
                "file_headers": [str(h) for h in headers],
            },
            ensure_ascii=False,
        )

    def _build_sheet_prompt(self, filename: str, previews: list) -> str:
        return json.dumps(
            {
                "task": "detect-sheet",
                "instructions": (
                    "Find the sheet listing the users to create (emails, names, teams). Rows are 0-based; "
                    "skip title rows, notes and cover sheets."
                ),
                "file": filename,
                "sheets": [
                    {"name": p.name, "total_rows": p.total_rows, "first_rows": [list(r) for r in p.rows]}
                    for p in previews
                ],
            },
            ensure_ascii=False,
        )

    def _parse(self, raw: str) -> Result[dict]:
        """Parse the model's text into a JSON object, stripping an outer ```json fence."""
        cleaned = re.sub(r"^```(?:json)?\s*", "", (raw or "").strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning("%s: failed to parse response as JSON: %s", self.__class__.__name__, (raw or "")[:200])
            return Err(ErrorKind.DATA, "Failed to parse JSON response", {"raw": (raw or "")[:200]})
        if not isinstance(data, dict):
            return Err(ErrorKind.DATA, "Expected a JSON object", {"raw": (raw or "")[:200]})
        return Ok(data)


def _is_row(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
