from meetscribe.services.llm.base import BaseLLMProvider, LLMProvider, LLMProviderError
from meetscribe.services.llm.openai_provider import AzureOpenAIProvider, OpenAIProvider

__all__ = [
    "AzureOpenAIProvider",
    "BaseLLMProvider",
    "LLMProvider",
    "LLMProviderError",
    "OpenAIProvider",
]
