"""Mapping of an extraction result onto a spreadsheet row."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser

from extractify.integrations.timestamps import iso_utc_millis
from extractify.schemas.integrations import SheetsColumnMapping

DEFAULT_JOIN_SEPARATOR = ", "

_MISSING: Any = object()

# Fields a partial date leaves out (month, day, time) resolve against this.
_DATE_DEFAULT = datetime(1970, 1, 1)


def normalize_extraction_result(result: dict[str, Any] | None) -> dict[str, Any]:
    """Unwrap top-level ``{value, confidence}`` envelopes into bare values."""

    if not result:
        return {}
    normalized: dict[str, Any] = {}
    for key, raw_value in result.items():
        if isinstance(raw_value, dict) and "value" in raw_value:
            normalized[key] = raw_value.get("value")
        else:
            normalized[key] = raw_value
    return normalized


def get_value_by_path(source: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path; on lists, integer segments index and other segments project.

    Returns ``None`` when the path does not resolve.
    """

    value = _resolve(source, path)
    return None if value is _MISSING else value


def _resolve(source: Any, path: str) -> Any:
    current: Any = source
    for part in (segment.strip() for segment in path.split(".")):
        if not part:
            continue
        if current is None or current is _MISSING:
            return _MISSING
        if isinstance(current, list):
            index = _as_index(part)
            if index is not None:
                current = current[index] if 0 <= index < len(current) else _MISSING
                continue
            current = [
                item[part]
                for item in current
                if isinstance(item, dict) and part in item
            ]
            continue
        if not isinstance(current, dict):
            return _MISSING
        current = current.get(part, _MISSING)
    return current


def _as_index(part: str) -> int | None:
    try:
        return int(part)
    except ValueError:
        return None


def _stringify_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _to_iso(value: Any) -> str | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = date_parser.parse(str(value).strip(), default=_DATE_DEFAULT)
        except (ValueError, OverflowError):
            return None
    return iso_utc_millis(parsed)


def apply_sheets_transform(
    value: Any,
    transform: str = "raw",
    *,
    join_with: str | None = None,
    fallback: str | None = None,
) -> str:
    """Render a resolved value as a single cell string."""

    empty = fallback if fallback is not None else ""
    if value is None or value == "":
        return empty

    if transform == "json":
        return _to_json(value)

    if transform == "join":
        if not isinstance(value, list):
            return empty
        separator = join_with if join_with is not None else DEFAULT_JOIN_SEPARATOR
        return separator.join(
            "" if item is None else _to_json(item) if isinstance(item, (dict, list)) else _stringify_scalar(item)
            for item in value
        )

    if transform == "date_iso":
        iso = _to_iso(value)
        return empty if iso is None else iso

    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return _stringify_scalar(value)
    return _to_json(value)


def merge_headers(existing: list[str], required: list[str]) -> list[str]:
    """Keep existing order and append required headers that are missing."""

    merged = list(existing)
    for header in required:
        if header not in merged:
            merged.append(header)
    return merged


def header_needs_write(existing: list[str], merged: list[str]) -> bool:
    return bool(merged) and (not existing or len(merged) != len(existing))


def build_row(headers: list[str], normalized_result: dict[str, Any], columns: list[SheetsColumnMapping]) -> list[str]:
    """Produce one cell per header; headers without a mapping stay blank."""

    by_name = {}
    for column in columns:
        by_name.setdefault(column.column_name, column)

    row: list[str] = []
    for header in headers:
        column = by_name.get(header)
        if column is None:
            row.append("")
            continue
        row.append(
            apply_sheets_transform(
                get_value_by_path(normalized_result, column.source_path),
                column.transform,
                join_with=column.join_with,
                fallback=column.fallback,
            )
        )
    return row
