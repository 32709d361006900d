from meetscribe.services.speech.base import (
    SpeechServiceError,
    SpeechStream,
    SpeechStreamConfig,
)
from meetscribe.services.speech.relay import RelayedSpeechStream
from meetscribe.services.speech.token import SpeechTokenIssuer

__all__ = [
    "RelayedSpeechStream",
    "SpeechServiceError",
    "SpeechStream",
    "SpeechStreamConfig",
    "SpeechTokenIssuer",
]
