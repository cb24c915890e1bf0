"""OpenAI-compatible chat completion adapter."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import LlmSettings
from .errors import ConfigurationError


logger = logging.getLogger(__name__)


class OpenAIChatCompletion:
    def __init__(self, settings: Optional[LlmSettings] = None, client: Optional[AsyncOpenAI] = None) -> None:
        self.settings = settings or LlmSettings()
        if client is None:
            api_key = os.getenv(self.settings.api_key_env)
            if not api_key:
                raise ConfigurationError(f"Environment variable {self.settings.api_key_env} is not set")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.settings.base_url,
                timeout=self.settings.timeout,
                max_retries=self.settings.max_retries,
            )
        self.client = client

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.1,
        max_tokens: int = 500,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {
            "model": self.settings.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content if response.choices else None
        logger.debug("Chat completion with %s returned %d characters", self.settings.model, len(content or ""))
        return content or ""
