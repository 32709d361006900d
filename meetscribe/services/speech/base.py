from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from meetscribe.services.transcript.models import TranscriptionEvent


class SpeechServiceError(RuntimeError):
    pass


@dataclass(frozen=True)
class SpeechStreamConfig:
    """Connection settings for one streaming recognition session."""

    key: str
    region: str
    language: str = "en-US"
    max_speakers: int = 2
    diarize_interim_results: bool = True
    detailed_results: bool = True

    @classmethod
    def from_config(cls, section: dict) -> "SpeechStreamConfig":
        key = str(section.get("key") or "").strip()
        region = str(section.get("region") or "").strip()
        if not key or not region:
            raise SpeechServiceError("Speech service is not configured (speech.key, speech.region)")
        try:
            max_speakers = int(section.get("max_speakers", 2))
        except (TypeError, ValueError) as exc:
            raise SpeechServiceError("speech.max_speakers must be an integer") from exc
        return cls(
            key=key,
            region=region,
            language=str(section.get("language") or "en-US"),
            max_speakers=max(1, max_speakers),
            diarize_interim_results=bool(section.get("diarize_interim_results", True)),
            detailed_results=bool(section.get("detailed_results", True)),
        )

    @property
    def endpoint(self) -> str:
        return f"wss://{self.region}.stt.speech.microsoft.com/speech/universal/v2"

    def properties(self) -> dict[str, str]:
        props = {
            "SpeechServiceConnection_RecoLanguage": self.language,
            "SpeechServiceResponse_DiarizeIntermediateResults": str(self.diarize_interim_results).lower(),
            "ConversationTranscriptionInRoomAndOnline_MaxSpeakerCount": str(self.max_speakers),
        }
        if self.detailed_results:
            props["SpeechServiceResponse_OutputFormatOption"] = "Detailed"
        return props

    def public_dict(self) -> dict:
        """Everything a client needs except the subscription key."""
        return {
            "region": self.region,
            "language": self.language,
            "max_speakers": self.max_speakers,
            "diarize_interim_results": self.diarize_interim_results,
            "detailed_results": self.detailed_results,
            "endpoint": self.endpoint,
            "properties": self.properties(),
        }


EventCallback = Callable[[TranscriptionEvent], None]


class SpeechStream(ABC):
    def __init__(self, config: Optional[SpeechStreamConfig]) -> None:
        self._config = config

    @property
    def config(self) -> Optional[SpeechStreamConfig]:
        return self._config

    @property
    @abstractmethod
    def is_active(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def start(self, on_event: EventCallback) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError
