# app/services/response_parser.py
import json, logging, re
from typing import Any, Callable, List, NamedTuple, Optional

from app.models.table_models import ExtractionData
from .errors import ParseError, ValidationError
from .partial_json import balance_brackets, capture_json, read_array_prefix, read_object_members
from .table_normalizer import normalize

log = logging.getLogger("tablextract")

NO_JSON_ERROR      = "Could not extract JSON from model response"
INVALID_JSON_ERROR = "Invalid JSON format in model response"

_TABLES_KEY  = re.compile(r'"tables"\s*:\s*\[')
_TITLE_KEY   = re.compile(r'"title"\s*:')
_HEADERS_KEY = re.compile(r'"headers"\s*:\s*(?=\[)')
_ROWS_KEY    = re.compile(r'"rows"\s*:\s*(?=\[)')


class ParsedResponse(NamedTuple):
    data: ExtractionData
    truncated: bool = False
    strategy: str = "direct"


def _recover_first_table(text: str) -> Optional[dict]:
    """First element of a cut-off ``"tables": [...]`` array, rows up to the cut."""
    m = _TABLES_KEY.search(text)
    if not m:
        return None
    start = text.find("{", m.end())
    if start < 0:
        return None
    members, _ = read_object_members(text, start)
    if not isinstance(members.get("headers"), list) or "rows" not in members:
        return None
    table = {"headers": members["headers"], "rows": members["rows"]}
    if isinstance(members.get("title"), str):
        table["title"] = members["title"]
    if isinstance(members.get("headerPosition"), str):
        table["headerPosition"] = members["headerPosition"]
    return {"tables": [table]}


def _recover_single_table(text: str) -> Optional[dict]:
    h = _HEADERS_KEY.search(text)
    if not h:
        return None
    try:
        headers, end = read_array_prefix(text, h.end())
    except ValueError:
        return None
    if end < 0:
        return None
    r = _ROWS_KEY.search(text, end)
    if not r:
        return None
    rows, _ = read_array_prefix(text, r.end())
    return {"headers": headers, "rows": rows}


def _try_recovery(name: str, fn: Callable[[], Any]) -> Optional[ExtractionData]:
    try:
        payload = fn()
    except json.JSONDecodeError as e:
        log.info(f"[parser] {name}: still not JSON ({e.msg} at {e.pos})")
        return None
    if payload is None:
        return None
    try:
        return normalize(payload)
    except ValidationError as e:
        log.info(f"[parser] {name}: recovered payload rejected: {e}")
        return None


def parse(response_text: str) -> ParsedResponse:
    """
    Pull a table out of free-form model output. Tries, in order: the
    captured JSON as-is, the same span with its brackets balanced, the first
    table of a cut-off ``tables`` array, and a bare headers/rows pair.

    Raises ParseError when nothing usable is found; a payload that decodes
    cleanly but has the wrong shape raises ValidationError.
    """
    cap = capture_json(response_text or "")
    if cap is None:
        raise ParseError(NO_JSON_ERROR)

    try:
        payload = json.loads(cap.text)
    except json.JSONDecodeError as e:
        log.warning(f"[parser] direct decode failed: {e.msg} at {e.pos} (len={len(cap.text)})")
    else:
        return ParsedResponse(normalize(payload), truncated=False, strategy="direct")

    cut = {"balanced": True}

    def balanced():
        repaired = balance_brackets(cap.tail)
        if repaired is None:
            return None
        text, cut["balanced"] = repaired
        return json.loads(text)

    steps: List[tuple] = [("balanced", balanced)]
    has_tables = _TABLES_KEY.search(cap.tail) is not None
    if has_tables and _TITLE_KEY.search(cap.tail):
        steps.append(("first_table", lambda: _recover_first_table(cap.tail)))
    if not has_tables:
        steps.append(("single_table", lambda: _recover_single_table(cap.tail)))

    for name, fn in steps:
        data = _try_recovery(name, fn)
        if data is None:
            continue
        truncated = cut.get(name, True)
        if truncated:
            log.warning(f"[parser] recovered via {name}: {len(data.rows)} rows kept, cut-off tail dropped")
        return ParsedResponse(data, truncated=truncated, strategy=name)

    raise ParseError(INVALID_JSON_ERROR)
