"""Text-completion client used for enrichment lookups and card OCR.

Two providers share one call shape (a list of role/content messages in, a
completion string out):

- ``toolkit``: POST ``{"messages": [...]}`` to LLM_ENDPOINT, response
  ``{"completion": "..."}``.
- ``openai``: OpenAI chat completions.

Completions are free-form text. Callers that expect JSON go through
``extract_json_object`` which tolerates markdown fences and surrounding prose.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from cardscan.config import settings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?|\n?```")


class LLMError(RuntimeError):
    """Network error, timeout, non-OK status or unusable response body."""


def _get_openai_client():
    try:
        from openai import AsyncOpenAI
        if not settings.openai_api_key:
            logger.warning("OpenAI API key not configured – LLM calls will fail")
            return None
        return AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.llm_timeout_seconds)
    except ImportError:
        logger.error("openai package not installed. Run: pip install openai")
        return None


def _to_openai_content(content: Any) -> Any:
    """Convert toolkit-style ``{"type": "image", "image": b64}`` parts to OpenAI image parts."""
    if not isinstance(content, list):
        return content
    parts = []
    for part in content:
        if isinstance(part, dict) and part.get("type") == "image":
            image = part.get("image", "")
            url = image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"
            parts.append({"type": "image_url", "image_url": {"url": url}})
        else:
            parts.append(part)
    return parts


class LLMClient:
    """Thin async wrapper over the configured completion provider."""

    def __init__(
        self,
        provider: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider or settings.llm_provider
        self.endpoint = endpoint if endpoint is not None else settings.llm_endpoint
        self.timeout = timeout if timeout is not None else settings.llm_timeout_seconds
        self.model = settings.openai_model
        self._transport = transport
        self._openai = _get_openai_client() if self.provider == "openai" else None

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        """Return the completion text. Raises ``LLMError`` on any failure."""
        if self.provider == "openai":
            return await self._complete_openai(messages)
        return await self._complete_toolkit(messages)

    async def complete_json(self, messages: list[dict[str, Any]]) -> dict:
        """Completion parsed as a JSON object. Raises ``LLMError`` when none can be extracted."""
        completion = await self.complete(messages)
        parsed = extract_json_object(completion)
        if parsed is None:
            logger.debug("Raw completion was: %s", completion[:500])
            raise LLMError("Completion did not contain a JSON object")
        return parsed

    async def _complete_toolkit(self, messages: list[dict[str, Any]]) -> str:
        if not self.endpoint:
            raise LLMError("LLM endpoint not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.endpoint,
                    json={"messages": messages},
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise LLMError(f"LLM request timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc

        if not resp.is_success:
            raise LLMError(f"LLM returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise LLMError("LLM response body is not JSON") from exc
        completion = data.get("completion") if isinstance(data, dict) else None
        if not isinstance(completion, str):
            raise LLMError("LLM response has no completion string")
        return completion

    async def _complete_openai(self, messages: list[dict[str, Any]]) -> str:
        if not self._openai:
            raise LLMError("OpenAI client not initialised (missing API key or package)")
        converted = [
            {"role": m["role"], "content": _to_openai_content(m.get("content", ""))}
            for m in messages
        ]
        try:
            response = await self._openai.chat.completions.create(
                model=self.model,
                temperature=0.1,
                messages=converted,
            )
        except Exception as exc:
            raise LLMError(f"OpenAI request failed: {exc}") from exc
        return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def _first_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, honouring JSON string quoting."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def extract_json_object(completion: str | None) -> dict | None:
    """Pull a JSON object out of a free-form completion.

    Strips markdown code fences, then tries the whole text, then the first
    balanced ``{...}`` substring. Returns None when nothing parses to a dict.
    """
    if not completion or not isinstance(completion, str):
        return None
    cleaned = _FENCE_RE.sub("", completion.strip()).strip()

    candidates = [cleaned]
    balanced = _first_balanced_object(cleaned)
    if balanced and balanced != cleaned:
        candidates.append(balanced)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
