import asyncio
import base64

import httpx
import pytest

from app.models.api_models import FileIn
from app.services.extraction import (
    decode_file, extract_table_from_clipboard, extract_table_from_file, extract_table_from_text,
)

TABLE = '```json\n{"headers": ["A","B"], "rows": [["1","2"]]}\n```'


@pytest.mark.asyncio
async def test_file_extraction_success(make_gemini, gemini_replies):
    client = make_gemini(gemini_replies(TABLE))
    result = await extract_table_from_file(client, b"img", "image/png")
    assert result.success is True
    assert result.error is None
    assert result.data.headers == ["A", "B"]
    assert result.truncated is False
    assert result.raw_response is None


@pytest.mark.asyncio
async def test_debug_keeps_raw_response(make_gemini, gemini_replies):
    client = make_gemini(gemini_replies(TABLE))
    result = await extract_table_from_text(client, "A B\n1 2", debug=True)
    assert result.raw_response["candidates"][0]["content"]["parts"][0]["text"] == TABLE


@pytest.mark.asyncio
async def test_truncation_is_flagged(make_gemini, gemini_replies):
    client = make_gemini(gemini_replies('{"headers": ["A"], "rows": [["1"], ["2'))
    result = await extract_table_from_text(client, "A\n1\n2")
    assert result.success is True
    assert result.truncated is True
    assert result.data.rows == [["1"]]


@pytest.mark.asyncio
async def test_exhausted_retries_become_a_failed_result(make_gemini):
    def handler(request):
        return httpx.Response(500, json={})

    result = await extract_table_from_text(make_gemini(handler, max_attempts=2), "x")
    assert result.success is False
    assert result.data is None
    assert result.error == "Model API returned 500 after 2 attempts"


@pytest.mark.asyncio
async def test_parse_error_becomes_a_failed_result(make_gemini, gemini_replies):
    client = make_gemini(gemini_replies("Sorry, I can't see any table."))
    result = await extract_table_from_file(client, b"img", "image/png")
    assert result.success is False
    assert result.error == "Could not extract JSON from model response"


@pytest.mark.asyncio
async def test_validation_error_becomes_a_failed_result(make_gemini, gemini_replies):
    client = make_gemini(gemini_replies('{"headers": "A", "rows": []}'))
    result = await extract_table_from_text(client, "x")
    assert result.success is False
    assert result.error == "Invalid table data format in model response"


def test_decode_file_rejects_bad_base64():
    with pytest.raises(ValueError, match="invalid base64"):
        decode_file(FileIn(filename="a.png", mime_type="image/png", b64="***"))


@pytest.mark.asyncio
async def test_clipboard_image_wins_over_text(make_gemini, gemini_replies):
    handler = gemini_replies(TABLE)
    client = make_gemini(handler)
    img = FileIn(filename="shot.png", mime_type="image/png", b64=base64.b64encode(b"png").decode())

    result = await extract_table_from_clipboard(client, text="ignored", files=[img])

    assert result.success is True
    parts = handler.seen[0]["body"]["contents"][0]["parts"]
    assert parts[1]["inline_data"]["mime_type"] == "image/png"


@pytest.mark.asyncio
async def test_clipboard_text(make_gemini, gemini_replies):
    handler = gemini_replies(TABLE)
    client = make_gemini(handler)
    doc = FileIn(filename="a.pdf", mime_type="application/pdf", b64="")

    result = await extract_table_from_clipboard(client, text="A\tB\n1\t2", files=[doc])

    assert result.success is True
    assert handler.seen[0]["body"]["contents"][0]["parts"][1] == {"text": "A\tB\n1\t2"}


@pytest.mark.asyncio
async def test_clipboard_empty(make_gemini, gemini_replies):
    result = await extract_table_from_clipboard(make_gemini(gemini_replies(TABLE)))
    assert result.success is False
    assert result.error == "No valid content found in clipboard"


@pytest.mark.asyncio
async def test_clipboard_bad_image_payload(make_gemini, gemini_replies):
    img = FileIn(filename="shot.png", mime_type="image/png", b64="@@@")
    result = await extract_table_from_clipboard(make_gemini(gemini_replies(TABLE)), files=[img])
    assert result.success is False
    assert "invalid base64" in result.error


@pytest.mark.asyncio
@pytest.mark.parametrize("extract", [
    lambda client: extract_table_from_text(client, "x"),
    lambda client: extract_table_from_file(client, b"img", "image/png"),
    lambda client: extract_table_from_clipboard(client, text="x"),
])
async def test_cancellation_is_not_turned_into_a_result(make_gemini, extract):
    waiting = asyncio.Event()

    async def slow_sleep(seconds):
        waiting.set()
        await asyncio.sleep(3600)

    def handler(request):
        return httpx.Response(429, json={})

    task = asyncio.create_task(extract(make_gemini(handler, sleep=slow_sleep)))
    await waiting.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
