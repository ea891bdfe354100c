"""Normalization of heterogeneous HR API error payloads.

The HR API reports validation problems in several nested shapes (DRF-style
field maps, row-keyed maps, field→row maps, row records, message envelopes).
This module flattens any of them into:

- a field → messages map for form-style display (`flatten_to_field_errors`)
- a sorted list of row-attributed errors for import results (`flatten_to_row_errors`)

Nothing here raises on malformed input. A message that cannot be classified is
reported as a general (row 0) error rather than dropped.
"""
import json
import logging
import re
from collections.abc import Iterator, Mapping
from typing import Any

from hr_console.schemas.imports import ImportRowError

logger = logging.getLogger(__name__)

# ─── Constants ───

GENERAL_FIELD = "general"
ROW_WRAPPER_KEYS = ("rows", "by_row", "row_errors")
ENVELOPE_CHILD_KEYS = ("details", "errors")
RECORD_METADATA_KEYS = ("status", "status_code", "code")

DEFAULT_FIELD_KEY_MAP: dict[str, str] = {
    "non_field_errors": GENERAL_FIELD,
    "__all__": GENERAL_FIELD,
    "detail": GENERAL_FIELD,
}

_DIGIT_RUN = re.compile(r"\d+")

Path = tuple[str, ...]


# ─── Leaf walking ───

def _stringify(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def _is_flat_object(node: Mapping) -> bool:
    return not any(isinstance(v, (Mapping, list, tuple)) for v in node.values())


def _iter_leaves(node: Any, path: Path = ()) -> Iterator[tuple[Path, str]]:
    """Yield (path, message) for every message reachable from `node`.

    Leaves: strings, scalars inside lists (stringified), objects carrying a
    `message` string, and flat objects inside lists (stringified whole).
    Other scalars are stringified. Scalars beside a `message` (status, code)
    are metadata of that message.
    """
    if node is None:
        return
    if isinstance(node, str):
        yield path, node
    elif isinstance(node, Mapping):
        message = node.get("message")
        if isinstance(message, str):
            field = node.get("field")
            leaf_path = path + (str(field),) if isinstance(field, str) and field else path
            yield leaf_path, message
            # Scalar siblings (status, code, row) are metadata; containers may hold more errors
            for key, value in node.items():
                if key != "message" and isinstance(value, (Mapping, list, tuple)):
                    yield from _iter_leaves(value, leaf_path)
            return
        for key, value in node.items():
            yield from _iter_leaves(value, path + (str(key),))
    elif isinstance(node, (list, tuple)):
        for item in node:
            if isinstance(item, Mapping) and item and "message" not in item and _is_flat_object(item):
                yield path, _stringify(item)
            else:
                yield from _iter_leaves(item, path)
    elif isinstance(node, (bool, int, float)):
        yield path, _stringify(node)
    else:
        yield path, str(node)


def _field_from_path(path: Path) -> str | None:
    """Last path segment that is not a bare number (list/row index)."""
    for segment in reversed(path):
        if segment and not segment.isdigit():
            return segment
    return None


def _as_payload_list(errors: Any) -> list[Any]:
    if errors is None:
        return []
    if isinstance(errors, (list, tuple)):
        return list(errors)
    return [errors]


# ─── Contract A: field errors ───

def flatten_to_field_errors(
    errors: Any,
    field_key_map: Mapping[str, str] | None = None,
) -> dict[str, list[str]]:
    """Flatten error payloads into {ui_field: [messages]}.

    The raw field key of a message is the last non-numeric segment of its path
    (GENERAL_FIELD at the root). `field_key_map` renames backend field names to
    UI names on top of DEFAULT_FIELD_KEY_MAP; unmapped keys pass through.
    """
    key_map = {**DEFAULT_FIELD_KEY_MAP, **(field_key_map or {})}
    flattened: dict[str, list[str]] = {}
    for payload in _as_payload_list(errors):
        for path, message in _iter_leaves(payload):
            raw_key = _field_from_path(path) or GENERAL_FIELD
            field = key_map.get(raw_key, raw_key)
            flattened.setdefault(field, []).append(message)
    return flattened


# ─── Contract B: row errors ───

def parse_row_id(key: Any) -> int | None:
    """Extract a row number from a key: int keys, or the first digit run of a string."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if key >= 0 else None
    if not isinstance(key, str):
        return None
    match = _DIGIT_RUN.search(key)
    return int(match.group()) if match else None


class _RowCollector:
    """Accumulates (row, field, seq, message) tuples in encounter order."""

    def __init__(self) -> None:
        self._entries: list[tuple[int, str | None, int, str]] = []

    def add(self, row: int, field: str | None, message: str) -> None:
        self._entries.append((row, field, len(self._entries), message))

    def general(self, node: Any, path: Path = ()) -> None:
        for _, message in _iter_leaves(node, path):
            self.add(0, None, message)

    def row(self, row: int, node: Any, field: str | None = None) -> None:
        for path, message in _iter_leaves(node):
            self.add(row, field or _field_from_path(path), message)

    def payload(self, node: Any) -> None:
        if isinstance(node, (list, tuple)):
            for item in node:
                self.payload(item)
        elif isinstance(node, Mapping):
            self._mapping(node)
        else:
            self.general(node)

    def _record(self, node: Mapping) -> bool:
        """Row record: {"row": 3, "field": "email", "message": "..."}."""
        if isinstance(node.get("row"), (Mapping, list, tuple)):
            return False
        row = parse_row_id(node.get("row"))
        if row is None:
            return False
        field = node.get("field") if isinstance(node.get("field"), str) else None
        # status/code scalars are metadata only when the record carries something else
        has_content = any(k not in ("row", "field", *RECORD_METADATA_KEYS) for k in node)
        for key, value in node.items():
            if key in ("row", "field"):
                continue
            if has_content and key in RECORD_METADATA_KEYS and not isinstance(value, (Mapping, list, tuple)):
                continue
            if key in ("message", "errors", "details"):
                self.row(row, value, field)
            else:
                self.row(row, value, field or str(key))
        return True

    def _mapping(self, node: Mapping) -> None:
        if "row" in node and self._record(node):
            return

        # Envelope: {"message": "...", "status": 400, "details": {...}}
        if isinstance(node.get("message"), str):
            field = node.get("field") if isinstance(node.get("field"), str) else None
            self.add(0, field, node["message"])
            for key, value in node.items():
                if key != "message" and isinstance(value, (Mapping, list, tuple)):
                    self.payload(value)
            return

        wrapper_key = next(
            (k for k in ROW_WRAPPER_KEYS if isinstance(node.get(k), (Mapping, list, tuple))),
            None,
        )
        if wrapper_key is not None:
            self._wrapped_rows(node[wrapper_key])
            for key, value in node.items():
                if key != wrapper_key:
                    self.general(value, (str(key),))
            return

        for key, value in node.items():
            row = parse_row_id(key)
            if key in ENVELOPE_CHILD_KEYS and isinstance(value, (Mapping, list, tuple)):
                self.payload(value)
            elif row is not None:
                self.row(row, value)
            elif isinstance(value, Mapping) and any(parse_row_id(k) is not None for k in value):
                self._inverted(str(key), value)
            else:
                self.general(value, (str(key),))

    def _wrapped_rows(self, rows: Any) -> None:
        if isinstance(rows, Mapping):
            for key, value in rows.items():
                row = parse_row_id(key)
                if row is None:
                    self.general(value, (str(key),))
                else:
                    self.row(row, value)
        else:
            # list of row records
            self.payload(rows)

    def _inverted(self, field: str, by_row: Mapping) -> None:
        for key, value in by_row.items():
            row = parse_row_id(key)
            if row is None:
                self.general(value, (field, str(key)))
            else:
                self.row(row, value, field)

    def sorted_entries(self) -> list[ImportRowError]:
        ordered = sorted(
            self._entries,
            key=lambda e: (e[0], e[1] is not None, e[1] or "", e[2]),
        )
        return [ImportRowError(row=row, field=field, message=message) for row, field, _, message in ordered]


def flatten_to_row_errors(errors: Any) -> list[ImportRowError]:
    """Flatten import error payloads into row-attributed entries.

    Recognized shapes, in priority order:
    1. wrapper key (rows / by_row / row_errors) keyed by row identifiers
    2. top-level row-identifier keys
    3. field keys whose values are keyed by row identifiers
    4. row records and message envelopes
    5. anything else → row 0

    Sorted by (row, field, encounter order); fields of None sort first.
    """
    collector = _RowCollector()
    for payload in _as_payload_list(errors):
        try:
            collector.payload(payload)
        except RecursionError:
            logger.warning("Error payload too deeply nested to flatten")
            collector.add(0, None, "Error details too deeply nested to display")
    return collector.sorted_entries()


# ─── Display helpers ───

def summarize_errors(row_errors: list[ImportRowError], limit: int = 5) -> list[str]:
    """One-line messages for the top of an import report, plus an overflow note."""
    lines: list[str] = []
    for entry in row_errors[:limit]:
        prefix = f"Row {entry.row}" if entry.row else "General"
        if entry.field:
            prefix = f"{prefix} ({entry.field})"
        lines.append(f"{prefix}: {entry.message}")
    if len(row_errors) > limit:
        lines.append(f"... and {len(row_errors) - limit} more errors")
    return lines
