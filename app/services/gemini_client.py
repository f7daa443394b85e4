# app/services/gemini_client.py
import base64, logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from httpx import Limits, Timeout

from app.config import Settings
from .errors import ModelAPIError
from .retry_transport import RetryTransport

log = logging.getLogger("tablextract")

DEFAULT_MODEL = "gemini-2.0-flash"

GENERATION_CONFIG = {
    "temperature": 0.2,
    "topP": 0.8,
    "topK": 40,
    "maxOutputTokens": 4096,
}

_FORMAT_RULES = (
    "If there are multiple tables, return them as an array of tables in the format: "
    "{ 'tables': [{ 'title': 'Table 1', 'headers': [...], 'rows': [...] }, ...] }. "
    "If there is only one table, return it in the format: { 'headers': [...], 'rows': [...] }. "
    "Important: Not all tables have headers in the top row. If you detect that the table doesn't have "
    "headers, return an empty array for 'headers' and put all data in 'rows'. "
    "If the headers appear to be in the leftmost column instead of the top row, still use the standard "
    "format but make a note of this in a 'headerPosition' field with value 'left'. "
    "For large documents, focus on extracting the most important tables first. "
    "Ensure your JSON response is complete and properly formatted. "
)


def build_prompt(source: str, hints: Optional[str] = None) -> str:
    """source: "file" for uploads, "text" for pasted content."""
    if source == "text":
        lead = "Extract all data from this text that appears to be in a table format into a structured JSON format. "
    else:
        lead = "Extract all data from this table into a structured JSON format. "
    prompt = lead + _FORMAT_RULES
    if hints:
        prompt += f"Additional context: {hints}"
    return prompt


def build_request(parts: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "contents": [{"parts": parts}],
        "generationConfig": dict(GENERATION_CONFIG),
    }


def response_text(data: Dict[str, Any]) -> str:
    candidates = (data.get("candidates") if isinstance(data, dict) else None) or []
    content = candidates[0].get("content") if candidates and isinstance(candidates[0], dict) else None
    if not content:
        raise ModelAPIError("No content in Gemini API response")
    parts = content.get("parts") or []
    text = parts[0].get("text") if parts and isinstance(parts[0], dict) else None
    if not text:
        raise ModelAPIError("No text in Gemini API response")
    return text


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    t = settings.gemini_timeout_seconds
    return httpx.AsyncClient(
        headers={"Content-Type": "application/json"},
        timeout=Timeout(connect=30.0, read=t, write=30.0, pool=t),
        limits=Limits(max_connections=10, max_keepalive_connections=2),
    )


class GeminiClient:
    def __init__(self, transport: RetryTransport, *, api_key: str, base_url: str, default_model: str = DEFAULT_MODEL):
        self.transport = transport
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model or DEFAULT_MODEL

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> "GeminiClient":
        transport = RetryTransport(
            http_client or build_http_client(settings),
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            jitter_ms=settings.retry_jitter_ms,
        )
        return cls(transport, api_key=settings.gemini_api_key, base_url=settings.gemini_base_url,
                   default_model=settings.gemini_model)

    def endpoint(self, model_version: Optional[str] = None) -> str:
        model = model_version or self.default_model
        return f"{self.base_url}/models/{model}:generateContent?key={self.api_key}"

    async def generate(self, parts: List[Dict[str, Any]], model_version: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        """Returns (response text, raw envelope)."""
        model = model_version or self.default_model
        log.info(f"[gemini] generateContent model={model} parts={len(parts)}")
        resp = await self.transport.call(self.endpoint(model), build_request(parts))

        if not resp.is_success:
            try:
                body = resp.json()
            except ValueError:
                body = None
            err = body.get("error") if isinstance(body, dict) else None
            msg = err.get("message") if isinstance(err, dict) else None
            log.error(f"[gemini] {resp.status_code} body={resp.text[:200]!r}")
            raise ModelAPIError(f"Gemini API error: {msg or resp.reason_phrase}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ModelAPIError("Gemini API returned a non-JSON body") from e
        text = response_text(data)
        log.info(f"[gemini] response text len={len(text)}")
        return text, data

    async def extract_from_file(self, content: bytes, mime_type: str, *, hints: Optional[str] = None,
                                model_version: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        parts = [
            {"text": build_prompt("file", hints)},
            {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(content).decode("ascii")}},
        ]
        return await self.generate(parts, model_version)

    async def extract_from_text(self, text: str, *, hints: Optional[str] = None,
                                model_version: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        parts = [{"text": build_prompt("text", hints)}, {"text": text}]
        return await self.generate(parts, model_version)

    async def aclose(self) -> None:
        await self.transport.client.aclose()
