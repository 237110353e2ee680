"""Tabular data loader: CSV/JSON attachments to row dicts, summary and slim CSV.

Pure data transforms, no network. Rows are plain dicts mapping column name
to a string (or a float for the computed ``engagement`` column) so they can
be handed to the tool executor unchanged.
"""

from __future__ import annotations

import io
import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field

import polars as pl

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SLIM_CSV_MAX_CHARS = 15_000
SLIM_COLUMNS = [
    "title",
    "viewCount",
    "likeCount",
    "commentCount",
    "duration",
    "releaseDate",
    "videoUrl",
    "engagement",
]
SLIM_FALLBACK_WIDTH = 8
NUMERIC_RATIO_THRESHOLD = 0.8
TOP_CATEGORY_VALUES = 5
ENGAGEMENT_COLUMN = "engagement"


@dataclass
class ParsedTable:
    """Result of :func:`parse`."""

    headers: list[str]
    rows: list[dict]
    row_count: int


@dataclass
class DatasetContext:
    """Per-session derived dataset state; replaced wholesale on every attachment."""

    name: str
    kind: str
    headers: list[str] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)
    summary: str = ""
    slim_csv: str = ""

    @property
    def row_count(self) -> int:
        return len(self.rows)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_name(name: str) -> str:
    """Lower-case *name* and drop every non-alphanumeric character."""
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def to_number(value: object) -> float | None:
    """Parse *value* as a finite float; anything else is treated as absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def format_number(value: float) -> int | float:
    """Render whole floats as ints so summaries read ``10`` rather than ``10.0``."""
    if float(value).is_integer():
        return int(value)
    return value


def _cell_to_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def detect_kind(filename: str, mime_type: str | None = None) -> str | None:
    """Return ``"csv"``/``"json"`` for a supported attachment, else ``None``."""
    lower = (filename or "").lower()
    if lower.endswith(".csv") or mime_type == "text/csv":
        return "csv"
    if lower.endswith(".json") or mime_type == "application/json":
        return "json"
    return None


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------


def _parse_csv(text: str) -> ParsedTable | None:
    if not text.strip():
        return None
    try:
        df = pl.read_csv(
            io.BytesIO(text.encode("utf-8")),
            infer_schema_length=0,
            truncate_ragged_lines=True,
        )
    except pl.exceptions.PolarsError as exc:
        logger.info("CSV attachment is not parseable: %s", exc)
        return None

    df = df.rename({c: c.strip().strip('"') for c in df.columns})
    df = df.with_columns(pl.all().fill_null("").str.strip_chars())
    # Drop rows that are entirely blank (trailing newlines, spacer lines)
    df = df.filter(~pl.all_horizontal(pl.all() == ""))
    if df.height == 0:
        return None

    return ParsedTable(headers=list(df.columns), rows=df.to_dicts(), row_count=df.height)


def _parse_json(text: str) -> ParsedTable | None:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None

    if isinstance(data, dict):
        arrays = [v for v in data.values() if isinstance(v, list)]
        if len(arrays) != 1:
            return None
        data = arrays[0]

    if not isinstance(data, list) or not data:
        return None
    if not all(isinstance(item, dict) for item in data):
        return None

    headers: list[str] = []
    seen: set[str] = set()
    for item in data:
        for key in item:
            if key not in seen:
                seen.add(key)
                headers.append(key)

    rows = [{h: _cell_to_str(item.get(h)) for h in headers} for item in data]
    return ParsedTable(headers=headers, rows=rows, row_count=len(rows))


def parse(text: str, kind: str) -> ParsedTable | None:
    """Parse CSV or JSON *text* into row dicts.

    Returns ``None`` (never raises) when the text is not tabular: blank or
    header-only CSV, invalid JSON, or JSON that is neither an array of
    objects nor an object with exactly one array-valued property.
    """
    if kind == "csv":
        return _parse_csv(text)
    if kind == "json":
        return _parse_json(text)
    return None


# ---------------------------------------------------------------------------
# enrich
# ---------------------------------------------------------------------------


def _find_header(headers: list[str], candidates: tuple[str, ...]) -> str | None:
    for candidate in candidates:
        for h in headers:
            if candidate in normalize_name(h):
                return h
    return None


def find_view_column(headers: list[str]) -> str | None:
    return _find_header(headers, ("viewcount", "views"))


def find_like_column(headers: list[str]) -> str | None:
    return _find_header(headers, ("likecount", "favoritecount", "likes", "favorites"))


def enrich(rows: list[dict], headers: list[str]) -> tuple[list[dict], list[str]]:
    """Add an ``engagement`` column (likes / views) when both columns exist.

    Idempotent: returns the input unchanged if the column is already present.
    """
    if not rows or ENGAGEMENT_COLUMN in headers:
        return rows, headers

    view_col = find_view_column(headers)
    like_col = find_like_column(headers)
    if not view_col or not like_col:
        return rows, headers

    enriched = []
    for row in rows:
        likes = to_number(row.get(like_col))
        views = to_number(row.get(view_col))
        engagement = None
        if likes is not None and views is not None and views > 0:
            engagement = round(likes / views, 6)
        enriched.append({**row, ENGAGEMENT_COLUMN: engagement})
    return enriched, [*headers, ENGAGEMENT_COLUMN]


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


def summarize(rows: list[dict], headers: list[str]) -> str:
    """Describe every column so the model sees exact names, types and values."""
    if not rows or not headers:
        return ""

    lines = [f"**Dataset: {len(rows)} rows × {len(headers)} columns**\n"]
    numeric_lines: list[str] = []
    categorical_lines: list[str] = []

    for h in headers:
        values = [v for v in (row.get(h) for row in rows) if v is not None and v != ""]
        numbers = [n for n in (to_number(v) for v in values) if n is not None]
        ratio = len(numbers) / (len(values) or 1)

        if numbers and ratio >= NUMERIC_RATIO_THRESHOLD:
            series = pl.Series(h, numbers, dtype=pl.Float64)
            numeric_lines.append(
                f'  • "{h}": mean={round(series.mean(), 2)}, '
                f"min={format_number(series.min())}, max={format_number(series.max())}, "
                f"n={len(series)}"
            )
        else:
            counts = Counter(_cell_to_str(v) for v in values)
            top = ", ".join(f"{v} ({n})" for v, n in counts.most_common(TOP_CATEGORY_VALUES))
            categorical_lines.append(f'  • "{h}": {len(counts)} unique values — top: {top}')

    if numeric_lines:
        lines.append("**Numeric columns** (exact names — use these verbatim in tool calls):")
        lines.extend(numeric_lines)
    if categorical_lines:
        lines.append("\n**Categorical columns** (exact names — use these verbatim in tool calls):")
        lines.extend(categorical_lines)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# build_slim_projection
# ---------------------------------------------------------------------------


def build_slim_projection(rows: list[dict], headers: list[str]) -> str:
    """Project rows onto the high-value columns as CSV, capped at 15,000 chars."""
    if not rows or not headers:
        return ""

    columns = [c for c in SLIM_COLUMNS if c in headers] or headers[:SLIM_FALLBACK_WIDTH]
    frame = pl.DataFrame(
        {c: [_cell_to_str(row.get(c)) for row in rows] for c in columns},
        schema={c: pl.Utf8 for c in columns},
    )
    return frame.write_csv().rstrip("\n")[:SLIM_CSV_MAX_CHARS]


# ---------------------------------------------------------------------------
# load_dataset
# ---------------------------------------------------------------------------


def load_dataset(name: str, text: str, kind: str) -> DatasetContext | None:
    """Parse, enrich, summarize and project an attachment in one step."""
    parsed = parse(text, kind)
    if parsed is None:
        return None
    rows, headers = enrich(parsed.rows, parsed.headers)
    return DatasetContext(
        name=name,
        kind=kind,
        headers=headers,
        rows=rows,
        summary=summarize(rows, headers),
        slim_csv=build_slim_projection(rows, headers),
    )
