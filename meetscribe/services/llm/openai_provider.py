from __future__ import annotations

import requests

from meetscribe.services.llm.base import BaseLLMProvider, LLMProviderError


class OpenAIProvider(BaseLLMProvider):
    """LLM provider for OpenAI and OpenAI-compatible APIs."""

    def __init__(
        self, api_key: str, model: str, base_url: str | None = "https://api.openai.com"
    ) -> None:
        super().__init__(logger_name="meetscribe.llm.openai")
        self._api_key = api_key
        self._model = model
        self._base_url = (base_url or "https://api.openai.com").rstrip("/")

    def _call_api(
        self,
        prompt: str,
        temperature: float = 0.2,
        timeout: int = 120,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        request_body = {
            "model": self._model,
            "messages": self._build_messages(prompt, system_prompt),
            "temperature": temperature,
        }
        if max_tokens:
            request_body["max_tokens"] = max_tokens

        try:
            response = requests.post(
                f"{self._base_url}/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise LLMProviderError("Failed to reach OpenAI") from exc

        if response.status_code != 200:
            raise LLMProviderError(f"OpenAI error: {response.status_code}")

        return self._extract_content(response.json(), "OpenAI")


class AzureOpenAIProvider(BaseLLMProvider):
    """Azure OpenAI deployment; the model id names the deployment."""

    DEFAULT_API_VERSION = "2023-12-01-preview"

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        deployment: str,
        api_version: str | None = None,
    ) -> None:
        super().__init__(logger_name="meetscribe.llm.azure_openai")
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._deployment = deployment
        self._api_version = api_version or self.DEFAULT_API_VERSION

    @property
    def url(self) -> str:
        return f"{self._endpoint}/openai/deployments/{self._deployment}/chat/completions"

    def _call_api(
        self,
        prompt: str,
        temperature: float = 0.2,
        timeout: int = 120,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        request_body = {
            "messages": self._build_messages(prompt, system_prompt),
            "temperature": temperature,
        }
        if max_tokens:
            request_body["max_tokens"] = max_tokens

        try:
            response = requests.post(
                self.url,
                params={"api-version": self._api_version},
                headers={
                    "api-key": self._api_key,
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise LLMProviderError("Failed to reach Azure OpenAI") from exc

        if response.status_code != 200:
            raise LLMProviderError(f"Azure OpenAI error: {response.status_code}")

        return self._extract_content(response.json(), "Azure OpenAI")
