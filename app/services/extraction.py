# app/services/extraction.py
import base64, binascii, logging, traceback
from typing import List, Optional

from app.models.api_models import FileIn
from app.models.table_models import ExtractionResult
from .errors import ExtractionError
from .file_inspect import is_image_file
from .gemini_client import GeminiClient
from .response_parser import parse

log = logging.getLogger("tablextract")


def _failed(where: str, e: BaseException) -> ExtractionResult:
    if isinstance(e, ExtractionError):
        log.warning(f"[extract] {where} failed: {type(e).__name__}: {e}")
        return ExtractionResult.fail(str(e))
    log.error(f"[extract] {where} crashed: {type(e).__name__}: {e}\n{traceback.format_exc()}")
    return ExtractionResult.fail(str(e) or "Unknown error occurred")


def _result(text: str, raw: dict, debug: bool) -> ExtractionResult:
    parsed = parse(text)
    return ExtractionResult.ok(parsed.data, truncated=parsed.truncated, raw=raw if debug else None)


async def extract_table_from_file(client: GeminiClient, content: bytes, mime_type: str, *,
                                  hints: Optional[str] = None, model_version: Optional[str] = None,
                                  debug: bool = False) -> ExtractionResult:
    try:
        text, raw = await client.extract_from_file(content, mime_type, hints=hints, model_version=model_version)
        if debug:
            log.info(f"[extract] file response text: {text[:2000]}")
        return _result(text, raw, debug)
    except Exception as e:
        return _failed("file", e)


async def extract_table_from_text(client: GeminiClient, text: str, *, hints: Optional[str] = None,
                                  model_version: Optional[str] = None, debug: bool = False) -> ExtractionResult:
    try:
        out, raw = await client.extract_from_text(text, hints=hints, model_version=model_version)
        if debug:
            log.info(f"[extract] text response text: {out[:2000]}")
        return _result(out, raw, debug)
    except Exception as e:
        return _failed("text", e)


def decode_file(f: FileIn) -> bytes:
    try:
        return base64.b64decode(f.b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"{f.filename}: invalid base64 content") from e


async def extract_table_from_clipboard(client: GeminiClient, *, text: Optional[str] = None,
                                       files: Optional[List[FileIn]] = None, hints: Optional[str] = None,
                                       model_version: Optional[str] = None, debug: bool = False) -> ExtractionResult:
    """An image on the clipboard wins over its text; anything else is ignored."""
    try:
        if files:
            first = files[0]
            if is_image_file(first.mime_type):
                content = decode_file(first)
                return await extract_table_from_file(client, content, first.mime_type, hints=hints,
                                                     model_version=model_version, debug=debug)
        if text:
            return await extract_table_from_text(client, text, hints=hints, model_version=model_version, debug=debug)
        return ExtractionResult.fail("No valid content found in clipboard")
    except Exception as e:
        return _failed("clipboard", e)
