from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any


class LLMConfigError(RuntimeError):
    pass


class LLMResponseError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatCompletionResult:
    content: str
    raw: dict[str, Any]


@dataclass(frozen=True)
class ImageGenerationResult:
    url: str
    raw: dict[str, Any]


class OpenAICompatibleChatClient:
    """Minimal OpenAI-compatible client wrapper for the video workflows.

    Kept small on purpose:
    - providers/models are swapped via OpenAI-compatible gateways (env vars)
    - callers get the raw response back so it can be written to the job trace
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        image_model: str | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.base_url = (
            base_url
            or os.getenv("OPENAI_API_BASE")
            or os.getenv("OPENAI_BASE_URL")
            or "https://api.openai.com/v1"
        )
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("LLM_MODEL") or "gpt-4o-mini"
        self.image_model = image_model or os.getenv("IMAGE_MODEL") or "dall-e-3"
        self.timeout_s = timeout_s

        if not self.api_key:
            raise LLMConfigError("Missing OPENAI_API_KEY (or provide api_key explicitly).")

        try:
            from openai import OpenAI  # type: ignore
        except Exception as e:
            raise LLMConfigError("Missing dependency: openai. Install it in the runtime environment.") from e

        self._client = OpenAI(base_url=self.base_url, api_key=self.api_key, timeout=self.timeout_s)

    def chat(
        self,
        *,
        system: str,
        user: str,
        temperature: float,
        extra: dict[str, Any] | None = None,
    ) -> ChatCompletionResult:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, {"role": "user", "content": user}],
            "temperature": float(temperature),
        }
        if extra:
            payload.update(extra)
        resp = self._client.chat.completions.create(**payload)
        raw = resp.model_dump()
        if not resp.choices:
            raise LLMResponseError("Chat completion returned no choices.")
        content = (resp.choices[0].message.content or "").strip()
        return ChatCompletionResult(content=content, raw=raw)

    def generate_image(self, *, prompt: str, size: str, model: str | None = None) -> ImageGenerationResult:
        resp = self._client.images.generate(
            model=model or self.image_model,
            prompt=prompt,
            n=1,
            size=size,
        )
        raw = resp.model_dump()
        data = resp.data or []
        url = getattr(data[0], "url", None) if data else None
        if not url:
            raise LLMResponseError("Image generation returned no URL.")
        return ImageGenerationResult(url=str(url), raw=raw)
