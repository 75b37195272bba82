from __future__ import annotations

import logging
from typing import Any

from openai import OpenAI

from .config import AppConfig, get_config, llm_api_key

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You assist the strength and conditioning staff of a professional football club.
You work only with the data supplied in the user message by the system. Never invent,
estimate, interpolate or complete missing metrics; if a value is not present, say so.
Do not change thresholds or categories and do not make medical diagnoses.
Rephrase the supplied data summary into a short, direct answer to the coach's question:
a synthesis, what the metrics show, and practical implications. Keep every number as given."""


def build_user_message(question: str, grounded_context: str) -> str:
    return (
        f"Coach question: {question}\n\n"
        "-------------------------------\n"
        "DATA RETRIEVED FROM THE SYSTEM:\n"
        "-------------------------------\n"
        f"{grounded_context}"
    )


class OpenAIRewriter:
    """Rephrases grounded answers through an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str | None = None,
        timeout: float = 20.0,
        max_tokens: int = 1200,
        temperature: float = 0.25,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def rewrite(self, question: str, grounded_context: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(question, grounded_context)},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if not response.choices:
            return ""
        content = response.choices[0].message.content or ""
        LOGGER.debug("Rewrite via %s returned %d characters", self.model, len(content))
        return content


def build_rewriter(config: AppConfig | None = None) -> OpenAIRewriter | None:
    """Rewriter for the configured endpoint, or None when no API key is set."""
    api_key = llm_api_key()
    if not api_key:
        return None
    settings = (config or get_config()).llm
    return OpenAIRewriter(
        api_key,
        model=settings.model,
        base_url=settings.base_url,
        timeout=settings.timeout_seconds,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
    )
