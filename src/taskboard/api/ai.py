"""
AI collaborator: sends a fixed instruction template plus the user's text to an
OpenAI-compatible chat-completions endpoint and validates the JSON it returns.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import CollaboratorError
from .schemas import AiParseResponse, AiRewriteResponse, AiSubtasksResponse, AiTagsResponse
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

PARSE_INSTRUCTIONS = (
    "You convert messy todo text into JSON with keys: title (string), "
    "due_at (ISO datetime or null), priority (low|medium|high), tags (string[]). Return ONLY JSON."
)
REWRITE_INSTRUCTIONS = (
    "Rewrite the todo title to be clear, specific, and actionable. Output JSON {title}. Return ONLY JSON."
)
SUBTASKS_INSTRUCTIONS = (
    "Generate up to 8 concise subtasks for the given todo. Output JSON {subtasks: string[]}. Return ONLY JSON."
)
TAGS_INSTRUCTIONS = (
    "Suggest up to 6 short tags for the given todo. Output JSON {tags: string[]}. Return ONLY JSON."
)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)


# PUBLIC_INTERFACE
def extract_json(text: str) -> str:
    """
    Pull the JSON object out of a model reply.

    Accepts a bare object, a ```json fenced block, or an object embedded in
    surrounding prose (first '{' to last '}').

    Raises:
        CollaboratorError if no object can be located.
    """
    trimmed = text.strip()
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed

    fenced = _FENCED_JSON.search(trimmed)
    if fenced and fenced.group(1):
        return fenced.group(1).strip()

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first != -1 and last > first:
        return trimmed[first : last + 1]

    raise CollaboratorError("Model did not return JSON")


# PUBLIC_INTERFACE
class AiCollaborator:
    """
    Thin client for the language-model collaborator.

    Every call is one chat completion at temperature 0 whose reply must parse
    as JSON matching the declared pydantic model; anything else raises
    CollaboratorError.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "AiCollaborator":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout=settings.ai_timeout_seconds,
        )

    def complete_json(self, system: str, user: str, schema: Type[T]) -> T:
        if not self._api_key:
            raise CollaboratorError("Missing OPENAI_API_KEY")

        payload: dict[str, Any] = {
            "model": self._model,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                res = client.post(
                    f"{self._base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as e:
            logger.warning("AI request failed: %s", e)
            raise CollaboratorError(f"AI request failed: {e}") from e

        if res.is_error:
            raise CollaboratorError(f"OpenAI error: {res.status_code} {res.text}")

        try:
            content = res.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            content = None
        if not isinstance(content, str):
            raise CollaboratorError("Invalid OpenAI response")

        try:
            parsed = json.loads(extract_json(content))
        except json.JSONDecodeError as e:
            raise CollaboratorError("Model did not return JSON") from e

        try:
            return schema.model_validate(parsed)
        except ValidationError as e:
            logger.info("AI reply failed %s validation: %s", schema.__name__, e.errors())
            raise CollaboratorError(f"AI response did not match {schema.__name__}") from e

    def parse(self, text: str) -> AiParseResponse:
        return self.complete_json(PARSE_INSTRUCTIONS, text, AiParseResponse)

    def rewrite(self, title: str) -> AiRewriteResponse:
        return self.complete_json(REWRITE_INSTRUCTIONS, title, AiRewriteResponse)

    def subtasks(self, title: str) -> AiSubtasksResponse:
        return self.complete_json(SUBTASKS_INSTRUCTIONS, title, AiSubtasksResponse)

    def tags(self, title: str) -> AiTagsResponse:
        return self.complete_json(TAGS_INSTRUCTIONS, title, AiTagsResponse)


# PUBLIC_INTERFACE
def get_ai_collaborator() -> AiCollaborator:
    """FastAPI dependency returning a collaborator configured from settings."""
    return AiCollaborator.from_settings(get_settings())
