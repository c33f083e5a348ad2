"""OpenAI chat-completions adapter implementing the LLMService port."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from dream_diary_backend.domain.ports.llm import LLMService

logger = logging.getLogger(__name__)


class OpenAILLM(LLMService):
    def __init__(self, api_key: Optional[str], model: str, client: Optional[AsyncOpenAI] = None) -> None:
        self._model = model
        # SDK-level retries are off; retry policy belongs to the callers.
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key, max_retries=0)
        else:
            self._client = None

    @property
    def model(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return self._client is not None

    async def generate_response(
        self,
        messages: List[Dict[str, str]],
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        kwargs: Dict[str, Any] = {}
        if response_format:
            kwargs["response_format"] = response_format

        start = time.time()
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            **kwargs,
        )
        content = response.choices[0].message.content or ""
        logger.debug(f"{self._model} replied with {len(content)} chars in {time.time() - start:.2f}s")
        return content
