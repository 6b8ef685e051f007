"""LLM provider abstraction."""

import asyncio
import logging
from typing import Any, Optional

import httpx
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from chatkb.core.config import settings

logger = logging.getLogger(__name__)

Message = dict[str, str]


class LLMProvider:
    """Abstract LLM provider."""

    def __init__(self):
        self.model_name = ""

    def generate(self, messages: list[Message], **kwargs: Any) -> str:
        """Generate a reply for a chat transcript."""
        raise NotImplementedError

    async def agenerate(self, messages: list[Message], **kwargs: Any) -> str:
        """Generate off the event loop."""
        return await asyncio.to_thread(self.generate, messages, **kwargs)


class OpenAILLMProvider(LLMProvider):
    """OpenAI chat completions."""

    def __init__(self):
        super().__init__()
        self.client = OpenAI(api_key=settings.openai_api_key)
        self.model_name = settings.openai_chat_model

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=8), reraise=True)
    def generate(self, messages: list[Message], **kwargs: Any) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                temperature=kwargs.get("temperature", 0.3),
                max_tokens=kwargs.get("max_tokens", 600),
            )
            return (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.error(f"Error generating with OpenAI: {e}")
            raise


class OllamaLLMProvider(LLMProvider):
    """Ollama chat endpoint."""

    def __init__(self):
        super().__init__()
        self.client = httpx.Client(base_url=settings.ollama_host, timeout=120.0)
        self.model_name = settings.ollama_model

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=8), reraise=True)
    def generate(self, messages: list[Message], **kwargs: Any) -> str:
        try:
            response = self.client.post(
                "/api/chat",
                json={
                    "model": self.model_name,
                    "messages": messages,
                    "stream": False,
                    "options": {
                        "temperature": kwargs.get("temperature", 0.3),
                        "num_predict": kwargs.get("max_tokens", 600),
                    },
                },
            )
            response.raise_for_status()
            return response.json().get("message", {}).get("content", "").strip()
        except Exception as e:
            logger.error(f"Error generating with Ollama: {e}")
            raise


def get_llm_provider() -> LLMProvider:
    """Get configured LLM provider."""
    if settings.llm_provider == "openai":
        if not settings.openai_api_key:
            raise ValueError("OpenAI API key not set")
        return OpenAILLMProvider()
    elif settings.llm_provider == "ollama":
        return OllamaLLMProvider()
    else:
        raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")
