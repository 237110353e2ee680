"""Data tools: registry and executor for the model-callable analytics tools.

Each tool is registered with its Gemini function declaration, a pydantic
model validating its arguments, and an async handler working on the loaded
dataset rows. Tool-level failures are returned as ``{"error": message}``
dicts, never raised, so they can be shown inline and relayed to the model.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import polars as pl
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from app.exceptions import ImageGenerationError
from app.services import image_service
from app.services.tabular_loader import (
    ENGAGEMENT_COLUMN,
    format_number,
    normalize_name,
    to_number,
)

logger = logging.getLogger(__name__)

STAT_DECIMALS = 4
TEXT_PREVIEW_CHARS = 150
SAMPLE_TITLES = 3
TIME_COLUMN_CANDIDATES = ("releaseDate", "publishedAt", "date", "created_at", "createdAt", "timestamp")
INLINE_BINARY_KEYS = ("inlineData",)

_FIRST_RE = re.compile(r"^(first|1st|one)$", re.IGNORECASE)
_LAST_RE = re.compile(r"^(last|latest)$", re.IGNORECASE)
_MOST_VIEWED_RE = re.compile(
    r"^(most\s*viewed|most\s*popular|top\s*video|highest\s*views)$", re.IGNORECASE
)
_MOST_LIKED_RE = re.compile(
    r"^(most\s*liked|most\s*loved|highest\s*likes|top\s*liked|most\s*like)", re.IGNORECASE
)
_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%a %b %d %H:%M:%S %z %Y",
)


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------


def available_headers(rows: list[dict]) -> list[str]:
    """Union of row keys in first-seen order."""
    headers: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return headers


def resolve_column(headers: list[str], name: str | None) -> str | None:
    """Map a model-supplied column name onto an actual header.

    Exact match first, then a case/whitespace/underscore/hyphen-insensitive
    match; otherwise the literal name is returned unchanged.
    """
    if not name or not headers:
        return name
    if name in headers:
        return name
    target = re.sub(r"[\s_\-]+", "", name.lower())
    for h in headers:
        if re.sub(r"[\s_\-]+", "", h.lower()) == target:
            return h
    return name


def _find_exact(headers: list[str], name: str) -> str | None:
    for h in headers:
        if h.lower() == name.lower():
            return h
    return None


def _find_matching(headers: list[str], pattern: str) -> str | None:
    regex = re.compile(pattern, re.IGNORECASE)
    for h in headers:
        if regex.search(h):
            return h
    return None


def _numeric_values(rows: list[dict], column: str) -> list[float]:
    return [n for n in (to_number(r.get(column)) for r in rows) if n is not None]


def _parse_date(value: object) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def describe(values: list[float]) -> dict:
    """Count/mean/median/population std/min/max, rounded to 4 places."""
    series = pl.Series("values", values, dtype=pl.Float64)
    return {
        "count": len(series),
        "mean": round(series.mean(), STAT_DECIMALS),
        "median": round(series.median(), STAT_DECIMALS),
        "std": round(series.std(ddof=0), STAT_DECIMALS),
        "min": format_number(series.min()),
        "max": format_number(series.max()),
    }


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------


class ColumnArgs(BaseModel):
    column: str


class FieldArgs(BaseModel):
    field: str


class ValueCountsArgs(BaseModel):
    column: str
    top_n: int = Field(default=10, ge=1)


class TopItemsArgs(BaseModel):
    sort_column: str
    n: int = Field(default=10, ge=1)
    ascending: bool = False


class PlotArgs(BaseModel):
    metric: str
    time_column: str | None = None


class PlayVideoArgs(BaseModel):
    title: str = ""


class GenerateImageArgs(BaseModel):
    prompt: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _column_stats(args: ColumnArgs, rows: list[dict], context: dict) -> dict:
    headers = available_headers(rows)
    col = resolve_column(headers, args.column)
    logger.debug("compute_column_stats resolved %r -> %r", args.column, col)
    values = _numeric_values(rows, col)
    if not values:
        return {
            "error": f'No numeric values found in column "{col}". '
            f"Available columns: {', '.join(headers)}"
        }
    return {"column": col, **describe(values)}


async def _stats_json(args: FieldArgs, rows: list[dict], context: dict) -> dict:
    headers = available_headers(rows)
    col = resolve_column(headers, args.field)
    logger.debug("compute_stats_json resolved %r -> %r", args.field, col)
    values = _numeric_values(rows, col)
    if not values:
        return {
            "error": f'No numeric values found in field "{col}". '
            f"Available columns: {', '.join(headers)}"
        }
    return {"field": col, **describe(values)}


async def _value_counts(args: ValueCountsArgs, rows: list[dict], context: dict) -> dict:
    headers = available_headers(rows)
    col = resolve_column(headers, args.column)
    counts = Counter(
        str(r.get(col)) for r in rows if r.get(col) is not None and r.get(col) != ""
    )
    if not counts:
        return {
            "error": f'No values found in column "{col}". '
            f"Available columns: {', '.join(headers)}"
        }
    return {
        "column": col,
        "total_rows": len(rows),
        "value_counts": dict(counts.most_common(args.top_n)),
    }


async def _top_items(args: TopItemsArgs, rows: list[dict], context: dict) -> dict:
    headers = available_headers(rows)
    sort_col = resolve_column(headers, args.sort_column)

    keyed = [(to_number(r.get(sort_col)), r) for r in rows]
    numeric = [(v, r) for v, r in keyed if v is not None]
    if not numeric:
        return {
            "error": f'No rows found. Column "{sort_col}" may not exist or is not numeric. '
            f"Available: {', '.join(headers)}"
        }
    # sorted() is stable in both directions: ties keep their original row order
    ordered = [r for _, r in sorted(numeric, key=lambda pair: pair[0], reverse=not args.ascending)]
    ordered.extend(r for v, r in keyed if v is None)

    text_col = (
        _find_exact(headers, "title")
        or _find_exact(headers, "text")
        or _find_matching(headers, r"text|content|tweet|body")
    )
    like_col = _find_matching(headers, r"favorite.?count") or _find_matching(headers, r"like.?count")
    view_col = _find_matching(headers, r"view.?count")
    eng_col = ENGAGEMENT_COLUMN if ENGAGEMENT_COLUMN in headers else None

    items = []
    for rank, row in enumerate(ordered[: args.n], start=1):
        item: dict[str, Any] = {"rank": rank}
        if text_col:
            item["text"] = str(row.get(text_col) or "")[:TEXT_PREVIEW_CHARS]
        item[sort_col] = row.get(sort_col)
        for col in (like_col, view_col, eng_col):
            if col:
                item[col] = row.get(col)
        items.append(item)

    return {
        "sort_column": sort_col,
        "direction": "ascending (lowest first)" if args.ascending else "descending (highest first)",
        "count": len(items),
        "items": items,
    }


async def _plot_metric_vs_time(args: PlotArgs, rows: list[dict], context: dict) -> dict:
    headers = available_headers(rows)
    metric_col = resolve_column(headers, args.metric)
    if args.time_column:
        time_col = resolve_column(headers, args.time_column)
    else:
        time_col = next(
            (h for c in TIME_COLUMN_CANDIDATES for h in headers if h.lower() == c.lower()),
            None,
        )
    logger.debug("plot_metric_vs_time metric=%r time=%r", metric_col, time_col)

    label_col = _find_exact(headers, "title")
    points = []
    for row in rows if time_col else []:
        value = to_number(row.get(metric_col))
        raw_time = row.get(time_col)
        when = _parse_date(raw_time)
        if value is None or when is None:
            continue
        points.append((when, str(raw_time).split("T")[0], value, row.get(label_col) if label_col else None))

    if not points:
        return {
            "error": f'No valid data points for "{metric_col}" vs "{time_col}". '
            f"Available columns: {', '.join(headers)}"
        }

    points.sort(key=lambda p: p[0])
    return {
        "_chartType": "timeSeries",
        "metric": metric_col,
        "timeColumn": time_col,
        "count": len(points),
        "data": [
            {"x": date_str, "y": value, "date": date_str, metric_col: value, "label": label}
            for _, date_str, value, label in points
        ],
    }


def _max_by(rows: list[dict], column: str | None) -> dict | None:
    if not rows:
        return None
    if not column:
        return rows[0]
    # max() keeps the first row among equal maxima
    return max(rows, key=lambda r: to_number(r.get(column)) or 0.0)


async def _play_video(args: PlayVideoArgs, rows: list[dict], context: dict) -> dict:
    headers = available_headers(rows)
    title_col = _find_exact(headers, "title")
    url_col = _find_exact(headers, "videoUrl")
    thumb_col = _find_exact(headers, "thumbnailUrl")
    view_col = _find_exact(headers, "viewCount")
    like_col = _find_matching(headers, r"like.?count")

    if not title_col or not url_col:
        return {"error": f"Cannot find required columns. Have: {', '.join(headers)}"}

    query = args.title.strip().lower()
    match: dict | None = None
    if _FIRST_RE.match(query):
        match = rows[0] if rows else None
    elif _LAST_RE.match(query):
        match = rows[-1] if rows else None
    elif _MOST_VIEWED_RE.match(query):
        match = _max_by(rows, view_col)
    elif _MOST_LIKED_RE.match(query):
        match = _max_by(rows, like_col)
    else:
        match = next((r for r in rows if query in str(r.get(title_col) or "").lower()), None)

    if not match or not match.get(title_col):
        samples = ", ".join(str(r.get(title_col)) for r in rows[:SAMPLE_TITLES])
        return {"error": f'No video found matching "{args.title}". Available: {samples}'}

    title = match[title_col]
    url = match.get(url_col)
    if not url:
        return {"error": f'Video "{title}" found but missing URL.'}

    return {
        "_playVideo": True,
        "title": title,
        "url": url,
        "thumbnailUrl": match.get(thumb_col) if thumb_col else None,
        "message": f'Playing: "{title}"',
    }


async def _generate_image(args: GenerateImageArgs, rows: list[dict], context: dict) -> dict:
    anchor = context.get("anchor_image")
    try:
        image = await image_service.generate_image(args.prompt, anchor)
    except (ImageGenerationError, ValueError) as exc:
        logger.warning("generateImage failed: %s", exc)
        return {"error": f"Image generation failed: {exc}"}
    return {
        "_chartType": "generatedImage",
        "data": image["data"],
        "mimeType": image["mimeType"],
        "url": image["url"],
        "fileName": image["fileName"],
        "prompt": args.prompt,
        "anchorUsed": bool(anchor),
        "message": "Generated image preview ready.",
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    """A model-callable tool: declaration, argument schema and handler."""

    name: str
    declaration: types.FunctionDeclaration
    args_model: type[BaseModel]
    handler: Callable[[Any, list[dict], dict], Awaitable[dict]]


def _string_param(description: str) -> types.Schema:
    return types.Schema(type="STRING", description=description)


TOOL_REGISTRY: dict[str, ToolSpec] = {
    tool.name: tool
    for tool in [
        ToolSpec(
            name="compute_column_stats",
            declaration=types.FunctionDeclaration(
                name="compute_column_stats",
                description="Compute count, mean, median, std, min and max of a numeric column in the loaded CSV.",
                parameters=types.Schema(
                    type="OBJECT",
                    properties={"column": _string_param("Exact column name from the dataset summary")},
                    required=["column"],
                ),
            ),
            args_model=ColumnArgs,
            handler=_column_stats,
        ),
        ToolSpec(
            name="compute_stats_json",
            declaration=types.FunctionDeclaration(
                name="compute_stats_json",
                description="Computes mean, median, std, min, and max for any numeric field in the channel JSON.",
                parameters=types.Schema(
                    type="OBJECT",
                    properties={"field": _string_param("Field name, e.g. viewCount")},
                    required=["field"],
                ),
            ),
            args_model=FieldArgs,
            handler=_stats_json,
        ),
        ToolSpec(
            name="get_value_counts",
            declaration=types.FunctionDeclaration(
                name="get_value_counts",
                description="Return the most frequent values of a column with their counts.",
                parameters=types.Schema(
                    type="OBJECT",
                    properties={
                        "column": _string_param("Exact column name"),
                        "top_n": types.Schema(type="INTEGER", description="How many values to return (default 10)"),
                    },
                    required=["column"],
                ),
            ),
            args_model=ValueCountsArgs,
            handler=_value_counts,
        ),
        ToolSpec(
            name="get_top_items",
            declaration=types.FunctionDeclaration(
                name="get_top_items",
                description="Return the top N rows sorted by a numeric column, with their text and key metrics.",
                parameters=types.Schema(
                    type="OBJECT",
                    properties={
                        "sort_column": _string_param("Numeric column to sort by"),
                        "n": types.Schema(type="INTEGER", description="Number of rows (default 10)"),
                        "ascending": types.Schema(type="BOOLEAN", description="Lowest first when true (default false)"),
                    },
                    required=["sort_column"],
                ),
            ),
            args_model=TopItemsArgs,
            handler=_top_items,
        ),
        ToolSpec(
            name="plot_metric_vs_time",
            declaration=types.FunctionDeclaration(
                name="plot_metric_vs_time",
                description="Plot any numeric field (e.g. viewCount, likeCount, commentCount) vs time for the channel videos.",
                parameters=types.Schema(
                    type="OBJECT",
                    properties={
                        "metric": _string_param("Numeric column to plot"),
                        "time_column": _string_param("Date column (defaults to releaseDate or similar)"),
                    },
                    required=["metric"],
                ),
            ),
            args_model=PlotArgs,
            handler=_plot_metric_vs_time,
        ),
        ToolSpec(
            name="play_video",
            declaration=types.FunctionDeclaration(
                name="play_video",
                description='Play a YouTube video in the chat. Specify the video by title, ordinal (e.g. "first"), or keyword ("most viewed", "most liked").',
                parameters=types.Schema(
                    type="OBJECT",
                    properties={"title": _string_param("Title fragment, ordinal or keyword")},
                    required=["title"],
                ),
            ),
            args_model=PlayVideoArgs,
            handler=_play_video,
        ),
        ToolSpec(
            name="generateImage",
            declaration=types.FunctionDeclaration(
                name="generateImage",
                description="Generate an image from a text prompt. The system handles anchor images automatically.",
                parameters=types.Schema(
                    type="OBJECT",
                    properties={"prompt": _string_param("Description of the image to generate")},
                    required=["prompt"],
                ),
            ),
            args_model=GenerateImageArgs,
            handler=_generate_image,
        ),
    ]
}

TOOLS = [types.Tool(function_declarations=[tool.declaration for tool in TOOL_REGISTRY.values()])]


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


def _format_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}" for err in exc.errors()
    )


async def execute(
    tool_name: str,
    args: dict | None,
    rows: list[dict] | None,
    context: dict | None = None,
) -> dict:
    """Validate *args* against the tool's schema and run it against *rows*.

    Returns the tool's result dict, or ``{"error": message}`` for an unknown
    tool, invalid arguments, or any tool-level failure.
    """
    safe_rows = rows if isinstance(rows, list) else []
    tool = TOOL_REGISTRY.get(tool_name)
    if tool is None:
        return {"error": f"Unknown tool: {tool_name}"}

    logger.debug("Executing tool %s with %s over %d rows", tool_name, args, len(safe_rows))
    try:
        parsed = tool.args_model.model_validate(args or {})
    except ValidationError as exc:
        return {"error": f"Invalid arguments for {tool_name}: {_format_validation_error(exc)}"}

    return await tool.handler(parsed, safe_rows, context or {})


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------


def sanitize_for_model(result: dict) -> dict:
    """Return a copy of *result* without inline binary payloads."""
    clean = {k: v for k, v in result.items() if k not in INLINE_BINARY_KEYS}
    if clean.get("_chartType") == "generatedImage":
        clean.pop("data", None)
    return clean


def chart_payload(result: dict) -> dict | None:
    """Return the renderer payload carried by *result*, if any."""
    if "error" in result:
        return None
    if result.get("_chartType") or result.get("_playVideo"):
        return {k: v for k, v in result.items() if k not in INLINE_BINARY_KEYS}
    return None
