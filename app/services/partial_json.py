# app/services/partial_json.py
"""
Helpers for pulling JSON out of free-form model output that may be wrapped
in prose or code fences and may stop mid-value because the model ran out of
output tokens.

Nothing here guesses missing data: a truncated value is dropped, never
completed.
"""
import json, re
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

# the body may start on the fence line: ```json {"headers": ...}```
_FENCED_JSON = re.compile(r"```json(?![\w+-])[ \t]*\r?\n?(.*?)\r?\n?```", re.S | re.I)
_FENCED_ANY  = re.compile(r"```(?:[\w+-]+(?=[\s{\[]))?[ \t]*\r?\n?(.*?)```", re.S)

_WS = " \t\r\n"
_LITERAL_CHARS = set("+-.0123456789eEtruefalsn")

_decoder = json.JSONDecoder()


class Capture(NamedTuple):
    text: str          # span handed to json.loads
    tail: str          # same start, running to the end of the input (for repair)


def capture_json(text: str) -> Optional[Capture]:
    """
    Closed ```json fence, else any closed fence holding a brace, else the
    span from the first '{' to the last '}' (or to the end when the output
    was cut before any closing brace).
    """
    for rx in (_FENCED_JSON, _FENCED_ANY):
        for m in rx.finditer(text):
            body = m.group(1)
            if "{" in body:
                return Capture(body.strip(), body.strip())
    start = text.find("{")
    if start < 0:
        return None
    end = text.rfind("}")
    tail = text[start:].rstrip()
    if tail.endswith("```"):
        tail = tail[:-3].rstrip()
    if end > start:
        return Capture(text[start:end + 1], tail)
    return Capture(tail, tail)


def _skip_ws(s: str, i: int) -> int:
    n = len(s)
    while i < n and s[i] in _WS:
        i += 1
    return i


def _scan_string(s: str, i: int) -> int:
    """i points at the opening quote; returns the index after the closing one, or -1 at EOF."""
    i += 1
    n = len(s)
    while i < n:
        c = s[i]
        if c == "\\":
            i += 2
            continue
        if c == '"':
            return i + 1
        i += 1
    return -1


def balance_brackets(src: str) -> Optional[Tuple[str, bool]]:
    """
    Cut ``src`` back to the last point where every still-open container is
    an object member (or the root) and close what remains in stack order.

    Returns ``(json_text, cut)`` where ``cut`` is False when the root value
    closed on its own (trailing noise only), or None when the text is
    malformed in a way truncation does not explain.
    """
    # frame: [closer, is_array_element, seen_colon]
    stack: List[list] = []
    open_elems = 0
    checkpoint: Optional[Tuple[int, str]] = None
    i = _skip_ws(src, 0)
    n = len(src)

    def closers() -> str:
        return "".join(f[0] for f in reversed(stack))

    def value_done(end: int) -> Optional[str]:
        nonlocal checkpoint
        if not stack:
            return src[:end]
        top = stack[-1]
        if top[0] == "}":
            top[2] = False
        if open_elems == 0:
            checkpoint = (end, closers())
        return None

    while i < n:
        c = src[i]
        if c in _WS or c == ",":
            i += 1
            continue
        if c == ":":
            if not stack or stack[-1][0] != "}":
                return None
            stack[-1][2] = True
            i += 1
            continue
        if c in "{[":
            is_elem = bool(stack) and stack[-1][0] == "]"
            stack.append(["}" if c == "{" else "]", is_elem, False])
            if is_elem:
                open_elems += 1
            i += 1
            if open_elems == 0:
                checkpoint = (i, closers())
            continue
        if c in "}]":
            if not stack or stack[-1][0] != c:
                return None
            frame = stack.pop()
            if frame[1]:
                open_elems -= 1
            i += 1
            done = value_done(i)
            if done is not None:
                return done, False
            continue
        if c == '"':
            end = _scan_string(src, i)
            if end < 0:
                break
            is_key = bool(stack) and stack[-1][0] == "}" and not stack[-1][2]
            i = end
            if not is_key:
                done = value_done(i)
                if done is not None:
                    return done, False
            continue
        if c in _LITERAL_CHARS:
            j = i
            while j < n and src[j] in _LITERAL_CHARS:
                j += 1
            if j >= n:
                # a literal running into EOF may itself be cut short
                break
            i = j
            done = value_done(i)
            if done is not None:
                return done, False
            continue
        return None

    if checkpoint is None:
        return None
    end, tail = checkpoint
    return src[:end] + tail, True


# --- streaming element reader for partial-row recovery ---

def read_value(s: str, i: int) -> Tuple[Any, int]:
    """Decode one complete JSON value at s[i:] (leading whitespace allowed)."""
    i = _skip_ws(s, i)
    return _decoder.raw_decode(s, i)


def read_array_prefix(s: str, i: int) -> Tuple[List[Any], int]:
    """
    ``s[i]`` must be '['. Decodes elements one by one and stops at the first
    one that does not decode (an unterminated row, typically). Returns the
    complete elements and the index after the closing ']', or -1 when the
    array never closed.
    """
    if i >= len(s) or s[i] != "[":
        raise ValueError("expected '['")
    items: List[Any] = []
    i = _skip_ws(s, i + 1)
    if i < len(s) and s[i] == "]":
        return items, i + 1
    while i < len(s):
        try:
            value, i = read_value(s, i)
        except json.JSONDecodeError:
            return items, -1
        items.append(value)
        i = _skip_ws(s, i)
        if i >= len(s):
            break
        if s[i] == "]":
            return items, i + 1
        if s[i] != ",":
            break
        i += 1
    return items, -1


def read_object_members(s: str, i: int) -> Tuple[Dict[str, Any], bool]:
    """
    ``s[i]`` must be '{'. Reads members in order; array values are read with
    :func:`read_array_prefix` so a cut-off array still yields its complete
    elements. Stops at the first member that cannot be read.
    """
    if i >= len(s) or s[i] != "{":
        raise ValueError("expected '{'")
    members: Dict[str, Any] = {}
    i = _skip_ws(s, i + 1)
    while i < len(s):
        if s[i] == "}":
            return members, True
        if s[i] != '"':
            break
        try:
            key, i = _decoder.raw_decode(s, i)
        except json.JSONDecodeError:
            break
        i = _skip_ws(s, i)
        if i >= len(s) or s[i] != ":":
            break
        i = _skip_ws(s, i + 1)
        if i < len(s) and s[i] == "[":
            items, end = read_array_prefix(s, i)
            members[key] = items
            if end < 0:
                return members, False
            i = end
        else:
            try:
                members[key], i = read_value(s, i)
            except json.JSONDecodeError:
                break
        i = _skip_ws(s, i)
        if i < len(s) and s[i] == ",":
            i = _skip_ws(s, i + 1)
    return members, False
