"""Reading uploaded spreadsheets and writing the review file."""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Iterable

import pandas as pd

from rosterbot_core.models import SheetLayout, UserRecord
from rosterbot_core.result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

WORKBOOK_EXTENSIONS = (".xlsx",)
ELIGIBLE_EXTENSIONS = (".csv",) + WORKBOOK_EXTENSIONS
PREVIEW_ROWS = 10

REVIEW_FILENAME = "users-for-approval.csv"
REVIEW_COLUMNS = ["Email", "First Name", "Last Name", "Job Title", "Mobile Number", "Teams", "User Role"]

_READ_ERRORS = (ValueError, OSError, ImportError, KeyError, zipfile.BadZipFile, pd.errors.ParserError)


@dataclass
class Table:
    headers: list[str] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)


@dataclass
class SheetPreview:
    """The first rows of one worksheet, as shown to the assistant."""

    name: str
    total_rows: int
    rows: list[list[str]] = field(default_factory=list)


def is_eligible(filename: str) -> bool:
    return filename.lower().endswith(ELIGIBLE_EXTENSIONS)


def is_workbook(filename: str) -> bool:
    return filename.lower().endswith(WORKBOOK_EXTENSIONS)


def _read_frame(filename: str, content: bytes) -> pd.DataFrame:
    buffer = io.BytesIO(content)
    if filename.lower().endswith(".csv"):
        return pd.read_csv(buffer, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    return pd.read_excel(buffer, sheet_name=0, dtype=str, engine="openpyxl")


def _read_grid(content: bytes, sheet) -> dict[str, list[list[str]]]:
    """Read raw cells, no header row, keyed by sheet name; ``sheet=None`` reads every sheet."""
    frames = pd.read_excel(io.BytesIO(content), sheet_name=sheet, header=None, dtype=str, engine="openpyxl")
    if isinstance(frames, pd.DataFrame):
        frames = {sheet: frames}
    return {
        str(name): [[str(v).strip() for v in row] for row in frame.fillna("").itertuples(index=False, name=None)]
        for name, frame in frames.items()
    }


def preview_sheets(filename: str, content: bytes, preview_rows: int = PREVIEW_ROWS) -> Result[list[SheetPreview]]:
    """Summarise every sheet of a workbook: its non-blank row count and first rows."""
    try:
        grids = _read_grid(content, None)
    except _READ_ERRORS as e:
        logger.warning("Could not read sheets of %s: %s", filename, e)
        return Err(ErrorKind.DATA, f"Could not read {filename}: {e}")
    return Ok(
        [
            SheetPreview(name=name, total_rows=sum(1 for row in grid if any(row)), rows=grid[:preview_rows])
            for name, grid in grids.items()
        ]
    )


def _table_from_grid(filename: str, grid: list[list[str]], layout: SheetLayout) -> Result[Table]:
    if layout.header_row >= len(grid):
        return Err(ErrorKind.DATA, f"{filename}: sheet '{layout.sheet}' has no row {layout.header_row + 1}")
    raw_headers = grid[layout.header_row]
    body = [row for row in grid[max(layout.data_start_row, layout.header_row + 1) :] if any(row)]
    # Unlabelled columns are kept only when they hold data.
    columns = [i for i, h in enumerate(raw_headers) if h or any(row[i] for row in body)]
    headers = [raw_headers[i] or f"Unnamed: {i}" for i in columns]
    rows = [{headers[n]: row[i] for n, i in enumerate(columns)} for row in body]
    if not headers or not rows:
        return Err(ErrorKind.DATA, f"{filename} contains no data rows")
    return Ok(Table(headers=headers, rows=rows))


def parse_table(filename: str, content: bytes, layout: SheetLayout | None = None) -> Result[Table]:
    """Parse a CSV or Excel attachment into headers and string-valued rows.

    Without a ``layout`` a workbook is read from its first sheet with headers
    in the first row. ``layout`` is ignored for CSV files.
    """
    if not is_eligible(filename):
        return Err(
            ErrorKind.DATA,
            f"Unsupported file format: {filename}. Only .xlsx and .csv files are supported.",
        )
    if layout is not None and is_workbook(filename):
        try:
            grid = _read_grid(content, layout.sheet)[layout.sheet]
        except _READ_ERRORS as e:
            logger.warning("Could not parse sheet '%s' of %s: %s", layout.sheet, filename, e)
            return Err(ErrorKind.DATA, f"Could not read sheet '{layout.sheet}' of {filename}: {e}")
        table = _table_from_grid(filename, grid, layout)
        if isinstance(table, Ok):
            logger.info(
                "Parsed %s sheet '%s': %d column(s), %d row(s)",
                filename,
                layout.sheet,
                len(table.value.headers),
                len(table.value.rows),
            )
        return table

    try:
        frame = _read_frame(filename, content)
    except _READ_ERRORS as e:
        logger.warning("Could not parse %s: %s", filename, e)
        return Err(ErrorKind.DATA, f"Could not read {filename}: {e}")

    frame = frame.fillna("")
    headers = [str(c).strip() for c in frame.columns]
    frame.columns = headers
    if not headers or frame.empty:
        return Err(ErrorKind.DATA, f"{filename} contains no data rows")

    rows = frame.to_dict(orient="records")
    logger.info("Parsed %s: %d column(s), %d row(s)", filename, len(headers), len(rows))
    return Ok(Table(headers=headers, rows=rows))


def review_csv(records: Iterable[UserRecord]) -> bytes:
    """Render records as the CSV attached for human review."""
    frame = pd.DataFrame(
        [
            [r.email, r.first_name, r.last_name, r.job_title, r.mobile_number, "|".join(r.teams), r.user_role]
            for r in records
        ],
        columns=REVIEW_COLUMNS,
    )
    return frame.to_csv(index=False).encode("utf-8")
