from __future__ import annotations

import logging
from abc import ABC, abstractmethod


class LLMProviderError(RuntimeError):
    pass


class LLMProvider(ABC):
    @abstractmethod
    def prompt(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> str:
        """Send a prompt and return the response text."""
        raise NotImplementedError


class BaseLLMProvider(LLMProvider):
    """Shared response handling for chat-completion style providers.

    Subclasses only need to implement _call_api() for their specific API client.
    """

    DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

    def __init__(self, logger_name: str = "meetscribe.llm") -> None:
        self._logger = logging.getLogger(logger_name)

    @abstractmethod
    def _call_api(
        self,
        prompt: str,
        temperature: float = 0.2,
        timeout: int = 120,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Make an API call and return the raw response text.

        Args:
            prompt: The user prompt to send
            temperature: Sampling temperature (0.0-1.0)
            timeout: Request timeout in seconds
            system_prompt: Optional system prompt
            max_tokens: Optional completion length cap

        Returns:
            The response text content
        """
        raise NotImplementedError

    def _build_messages(self, prompt: str, system_prompt: str | None) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt or self.DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    @staticmethod
    def _extract_content(data: dict, service: str) -> str:
        choices = data.get("choices", []) if isinstance(data, dict) else []
        if not choices:
            raise LLMProviderError(f"{service} response missing choices")
        content = choices[0].get("message", {}).get("content", "")
        return str(content or "").strip()

    @staticmethod
    def strip_markdown_code_blocks(text: str) -> str:
        """Remove markdown code block wrappers from text."""
        text = text.strip()
        if not text.startswith("```"):
            return text

        lines = text.split("\n")
        kept = []
        for line in lines:
            if line.startswith("```"):
                continue
            kept.append(line)
        return "\n".join(kept).strip()

    def prompt(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> str:
        return self._call_api(
            prompt,
            temperature=temperature,
            timeout=120,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
        )
