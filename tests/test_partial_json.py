import json

import pytest

from app.services.partial_json import (
    balance_brackets, capture_json, read_array_prefix, read_object_members,
)


def test_capture_prefers_json_fence():
    text = 'noise {"a": 1}\n```json\n{"b": 2}\n```'
    assert capture_json(text).text == '{"b": 2}'


def test_capture_skips_fences_without_braces():
    text = '```\nplain text\n```\n```\n{"b": 2}\n```'
    assert capture_json(text).text == '{"b": 2}'


def test_capture_first_to_last_brace():
    cap = capture_json('pre {"a": {"b": 1}} post')
    assert cap.text == '{"a": {"b": 1}}'
    assert cap.tail == '{"a": {"b": 1}} post'


def test_capture_without_closing_brace_runs_to_end():
    cap = capture_json('Sure! {"headers": ["A"')
    assert cap.text == cap.tail == '{"headers": ["A"'


def test_capture_none_without_brace():
    assert capture_json("no table here") is None


def test_balance_root_closed_reports_no_cut():
    assert balance_brackets('{"a": 1} trailing }') == ('{"a": 1}', False)


def test_balance_drops_open_array_element():
    text, cut = balance_brackets('{"rows": [["1", "2"], ["3", "4"], ["5"')
    assert cut is True
    assert json.loads(text) == {"rows": [["1", "2"], ["3", "4"]]}


def test_balance_ignores_brackets_inside_strings():
    text, cut = balance_brackets('{"headers": ["a]b", "c{d"], "rows": [["x\\"]"')
    assert json.loads(text) == {"headers": ["a]b", "c{d"], "rows": []}


def test_balance_drops_dangling_key():
    text, _ = balance_brackets('{"headers": ["A"], "rows"')
    assert json.loads(text) == {"headers": ["A"]}


def test_balance_drops_literal_cut_at_eof():
    text, _ = balance_brackets('{"headers": ["A"], "count": 12')
    assert json.loads(text) == {"headers": ["A"]}


def test_balance_mismatched_closer_is_malformed():
    assert balance_brackets('{"a": ]') is None


def test_read_array_prefix_closed():
    s = '[["1"], ["2"]] rest'
    assert read_array_prefix(s, 0) == ([["1"], ["2"]], 14)


def test_read_array_prefix_stops_at_unterminated_element():
    items, end = read_array_prefix('[["1", "2"], ["3", "4"], ["5", ', 0)
    assert items == [["1", "2"], ["3", "4"]]
    assert end == -1


def test_read_array_prefix_requires_bracket():
    with pytest.raises(ValueError):
        read_array_prefix('{"a": 1}', 0)


def test_read_object_members_partial():
    members, closed = read_object_members('{"title": "T", "headers": ["A"], "rows": [["1"], ["2', 0)
    assert closed is False
    assert members == {"title": "T", "headers": ["A"], "rows": [["1"]]}


def test_read_object_members_closed():
    members, closed = read_object_members('{"a": 1, "b": [2]}', 0)
    assert closed is True
    assert members == {"a": 1, "b": [2]}


def test_capture_single_line_fences():
    assert capture_json('```json {"a": 1}```').text == '{"a": 1}'
    assert capture_json('```python {"a": 1}```').text == '{"a": 1}'
    assert capture_json('```{"a": 1}```').text == '{"a": 1}'
