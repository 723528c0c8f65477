"""Thin wrapper around the OpenAI chat API shared by extraction, OCR and corrections."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import OpenAI, OpenAIError

from ..exceptions import ExtractionError

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def parse_json_block(content: str) -> dict[str, Any]:
    """Pull the JSON object out of a model answer.

    Reasoning blocks are dropped, a fenced block wins over bare text, and the
    outermost ``{...}`` is parsed.
    """
    cleaned = _THINK_RE.sub("", content or "").strip()
    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object in model response")
    data = json.loads(cleaned[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return data


class ChatModel:
    """Lazily initialised OpenAI client with a single ``complete`` entry point."""

    def __init__(self, api_key: str | None, client: OpenAI | None = None) -> None:
        self._api_key = api_key
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise ExtractionError("OpenAI API key is not configured.")
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def complete(
        self,
        model: str,
        system: str,
        user: str | list[dict[str, Any]],
        temperature: float = 0,
        max_tokens: int | None = None,
    ) -> str:
        """Return the text of a single chat completion, raising ``ExtractionError``."""
        client = self._get_client()
        kwargs: dict[str, Any] = {}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        try:
            response = client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                **kwargs,
            )
        except OpenAIError as exc:
            logger.error("OpenAI request to %s failed: %s", model, exc)
            raise ExtractionError(f"Model {model} request failed: {exc}") from exc

        if not response.choices:
            raise ExtractionError(f"Model {model} returned no choices.")
        return response.choices[0].message.content or ""
