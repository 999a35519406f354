from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from dotenv import load_dotenv
from openai import OpenAI, OpenAIError

from app.analytics.errors import CredentialError, UpstreamError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1"


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str
    model: str
    timeout_s: float = 60.0
    max_retries: int = 2


def get_openai_config() -> OpenAIConfig:
    # A missing key is reported on first use so the API can still start and fall back.
    api_key = os.getenv("OPENAI_API_KEY", "")
    model = os.getenv("OPENAI_MODEL") or DEFAULT_MODEL
    return OpenAIConfig(
        api_key=api_key,
        model=model,
        timeout_s=float(os.getenv("OPENAI_TIMEOUT_S", "60")),
        max_retries=int(os.getenv("OPENAI_MAX_RETRIES", "2")),
    )


class OpenAIClient:
    """Thin chat-completions wrapper: messages in, text out."""

    def __init__(self, cfg: Optional[OpenAIConfig] = None, client: Optional[Any] = None):
        self.cfg = cfg or get_openai_config()
        self.model = self.cfg.model
        self._client = client

    def _get_client(self) -> Any:
        if not self.cfg.api_key:
            logger.error("OPENAI_API_KEY is not set in environment variables")
            raise CredentialError("OPENAI_API_KEY is not set")
        if self._client is None:
            self._client = OpenAI(
                api_key=self.cfg.api_key,
                timeout=self.cfg.timeout_s,
                max_retries=self.cfg.max_retries,
            )
        return self._client

    def complete(
        self,
        messages: Iterable[Dict[str, str]],
        *,
        temperature: float = 0.2,
        max_tokens: int = 800,
        json_mode: bool = False,
    ) -> str:
        """
        Send an ordered list of role/content messages and return the reply text.
        Raises CredentialError without a key and UpstreamError when the provider call fails.
        """
        client = self._get_client()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            resp = client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.error("OpenAI API error: %s", e)
            raise UpstreamError(str(e) or "OpenAI API request failed") from e

        if not resp.choices:
            raise UpstreamError("OpenAI API returned no choices")
        choice = resp.choices[0]
        logger.debug("LLM finish_reason=%s usage=%s", choice.finish_reason, resp.usage)
        return choice.message.content or ""

    def text(self, system: str, user: str, **options: Any) -> str:
        return self.complete(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            **options,
        )
