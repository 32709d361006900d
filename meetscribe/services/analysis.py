import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional, TypeVar

from meetscribe.services.config_store import ConfigStore
from meetscribe.services.llm import (
    AzureOpenAIProvider,
    BaseLLMProvider,
    LLMProvider,
    LLMProviderError,
    OpenAIProvider,
)

T = TypeVar("T")

MAX_ATTEMPTS = 3

ANALYZE_SYSTEM_PROMPT = (
    "You are a meeting analysis assistant. Provide clear, concise, and actionable "
    "insights from meeting transcripts."
)
QUERY_SYSTEM_PROMPT = (
    "You are a meeting analysis assistant. Answer questions about the meeting transcript "
    "accurately and concisely, using only information from the transcript."
)


@dataclass
class MeetingAnalysis:
    summary: str
    action_items: list[str] = field(default_factory=list)
    key_points: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_response(cls, parsed: object) -> "MeetingAnalysis":
        """Validate a parsed model response, accepting camelCase keys."""
        if not isinstance(parsed, dict):
            raise LLMProviderError("Invalid analysis structure")
        summary = parsed.get("summary")
        action_items = parsed.get("action_items", parsed.get("actionItems"))
        key_points = parsed.get("key_points", parsed.get("keyPoints"))
        if not isinstance(summary, str) or not summary.strip():
            raise LLMProviderError("Invalid analysis structure: missing summary")
        if not isinstance(action_items, list) or not isinstance(key_points, list):
            raise LLMProviderError("Invalid analysis structure: action items and key points must be lists")
        return cls(
            summary=summary.strip(),
            action_items=[str(item).strip() for item in action_items if str(item).strip()],
            key_points=[str(item).strip() for item in key_points if str(item).strip()],
        )


def format_transcript_lines(lines: list[dict]) -> str:
    """Join ``{speaker, text}`` entries into ``speaker: text`` lines."""
    return "\n".join(f"{line.get('speaker', '')}: {line.get('text', '')}" for line in lines)


class AnalysisService:
    """Summaries and Q&A over a flattened transcript using the selected model.

    Reads model selection from config.json dynamically:
    - models.selected_model: format "provider:model_id" (e.g., "openai:gpt-4o")
    - providers.<provider>: contains api_key, base_url and, for Azure, endpoint
    """

    def __init__(
        self,
        config_store: ConfigStore,
        prompts_dir: str,
        retry_delay: float = 1.0,
    ) -> None:
        self._config = config_store
        self._prompts_dir = prompts_dir
        self._retry_delay = retry_delay
        self._logger = logging.getLogger("meetscribe.analysis")

    def _get_selected_model(self) -> tuple[str, str]:
        selected = self._config.get("models", "selected_model", "")
        if not selected:
            raise LLMProviderError("No AI model selected. Set models.selected_model in config.json.")
        if ":" not in selected:
            raise LLMProviderError(
                f"Invalid model format '{selected}'. Expected 'provider:model_id'."
            )
        provider, model_id = selected.split(":", 1)
        return provider.lower(), model_id

    def _get_provider(self) -> LLMProvider:
        provider_name, model_id = self._get_selected_model()
        provider_config = self._config.section("providers").get(provider_name, {}) or {}
        api_key = provider_config.get("api_key", "")
        base_url = provider_config.get("base_url", "")

        if provider_name == "openai":
            if not api_key:
                raise LLMProviderError("Missing OpenAI API key in providers.openai.api_key.")
            return OpenAIProvider(api_key=api_key, model=model_id, base_url=base_url or None)

        if provider_name == "azure_openai":
            endpoint = provider_config.get("endpoint") or base_url
            if not api_key or not endpoint:
                raise LLMProviderError(
                    "Azure OpenAI requires providers.azure_openai.api_key and endpoint."
                )
            return AzureOpenAIProvider(
                api_key=api_key,
                endpoint=endpoint,
                deployment=model_id,
                api_version=provider_config.get("api_version"),
            )

        if provider_name == "lmstudio":
            return OpenAIProvider(
                api_key="lmstudio",
                model=model_id,
                base_url=base_url or "http://127.0.0.1:1234",
            )

        raise LLMProviderError(f"Unknown provider: {provider_name}")

    def _load_prompt(self, filename: str) -> str:
        prompt_path = os.path.join(self._prompts_dir, filename)
        try:
            with open(prompt_path, "r", encoding="utf-8") as prompt_file:
                return prompt_file.read()
        except OSError as exc:
            raise LLMProviderError(f"Missing prompt file: {prompt_path}") from exc

    def _with_retries(self, operation: Callable[[], T], label: str) -> T:
        last_error: Optional[LLMProviderError] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return operation()
            except LLMProviderError as exc:
                last_error = exc
                self._logger.warning("%s attempt %s/%s failed: %s", label, attempt, MAX_ATTEMPTS, exc)
                if attempt < MAX_ATTEMPTS:
                    time.sleep(self._retry_delay * attempt)
        raise LLMProviderError(f"{label} failed after {MAX_ATTEMPTS} attempts: {last_error}") from last_error

    def analyze(self, transcript: str) -> MeetingAnalysis:
        if not transcript.strip():
            raise LLMProviderError("Transcript is empty")
        provider = self._get_provider()
        self._logger.info("Analysis using provider=%s", provider.__class__.__name__)
        prompt = self._load_prompt("analyze_prompt.txt").replace("{{transcript}}", transcript)

        def attempt() -> MeetingAnalysis:
            content = provider.prompt(
                prompt, system_prompt=ANALYZE_SYSTEM_PROMPT, temperature=0.7, max_tokens=1000
            )
            text = BaseLLMProvider.strip_markdown_code_blocks(content)
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError as exc:
                self._logger.warning("Non-JSON analysis response: %s", text[:500])
                raise LLMProviderError("Invalid response format from model") from exc
            return MeetingAnalysis.from_response(parsed)

        return self._with_retries(attempt, "Analysis")

    def query(self, transcript: str, question: str) -> str:
        if not transcript.strip():
            raise LLMProviderError("Transcript is empty")
        if not question.strip():
            raise LLMProviderError("Question is required")
        provider = self._get_provider()
        self._logger.info("Query using provider=%s", provider.__class__.__name__)
        prompt = (
            self._load_prompt("query_prompt.txt")
            .replace("{{transcript}}", transcript)
            .replace("{{question}}", question.strip())
        )

        def attempt() -> str:
            answer = provider.prompt(
                prompt, system_prompt=QUERY_SYSTEM_PROMPT, temperature=0.3, max_tokens=500
            )
            if not answer.strip():
                raise LLMProviderError("Empty answer from model")
            return answer.strip()

        return self._with_retries(attempt, "Query")
