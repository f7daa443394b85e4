# app/services/table_utils.py
"""2D-array helpers shared by the exporters, plus best-effort column typing."""
import csv, io
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

Grid = List[List[Any]]

_BOOL_WORDS = {"true", "false", "1", "0", "yes", "no"}
_DATE_FORMATS = ("%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%b %d, %Y", "%d %b %Y", "%B %d, %Y", "%d %B %Y")


def _cell(v: Any) -> str:
    return "" if v is None else str(v)


def array_to_csv(data: Sequence[Sequence[Any]]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    for row in data:
        w.writerow([_cell(c) for c in row])
    out = buf.getvalue()
    # no trailing newline after the last row
    return out[:-1] if out.endswith("\n") else out


def csv_to_array(text: str) -> List[List[str]]:
    return [row for row in csv.reader(io.StringIO(text))]


def array_to_json(data: Sequence[Sequence[Any]], headers: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    """Rows as dicts. Without ``headers`` the first row names the columns."""
    if not data:
        return []
    header_row = list(headers) if headers is not None else list(data[0])
    body = data if headers is not None else data[1:]
    return [
        {h: (row[j] if j < len(row) else None) for j, h in enumerate(header_row)}
        for row in body
    ]


def json_to_array(items: Sequence[Dict[str, Any]]) -> Grid:
    if not items:
        return []
    keys: List[str] = []
    for obj in items:
        for k in obj:
            if k not in keys:
                keys.append(k)
    out: Grid = [keys]
    for obj in items:
        out.append([obj[k] if obj.get(k) is not None else "" for k in keys])
    return out


def detect_headers(data: Sequence[Sequence[Any]]) -> bool:
    """Heuristic: the first row differs in cell types from the second."""
    if len(data) < 2 or not data[0]:
        return False
    first, second = data[0], data[1]
    different = sum(1 for a, b in zip(first, second) if type(a) is not type(b))
    if different / len(first) > 0.5:
        return True
    return all(isinstance(c, str) for c in first) and any(not isinstance(c, str) for c in second)


def _is_number(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, (int, float)):
        return True
    try:
        float(str(v).strip())
    except ValueError:
        return False
    return True


def _is_date(v: Any) -> bool:
    s = str(v).strip()
    try:
        datetime.fromisoformat(s.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(s, fmt)
            return True
        except ValueError:
            continue
    return False


def infer_column_types(data: Sequence[Sequence[Any]], has_headers: bool = True) -> List[str]:
    """
    One of "boolean", "number", "date", "string" per column, checked in that
    order. Empty cells are ignored; a column with nothing but empty cells is
    "string".
    """
    if not data:
        return []
    width = len(data[0])
    start = 1 if has_headers else 0
    types = ["string"] * width
    if len(data) <= start:
        return types

    for col in range(width):
        values = [row[col] for row in data[start:] if col < len(row) and row[col] not in (None, "")]
        if not values:
            continue
        if all(str(v).lower() in _BOOL_WORDS for v in values):
            types[col] = "boolean"
        elif all(_is_number(v) for v in values):
            types[col] = "number"
        elif all(_is_date(v) for v in values):
            types[col] = "date"
    return types
