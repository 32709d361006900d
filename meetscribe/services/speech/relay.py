from __future__ import annotations

import logging
from typing import Optional

from meetscribe.services.speech.base import (
    EventCallback,
    SpeechServiceError,
    SpeechStream,
    SpeechStreamConfig,
)
from meetscribe.services.transcript.models import TranscriptionEvent, now_ms


class RelayedSpeechStream(SpeechStream):
    """Recognition runs in the client; it forwards each result here."""

    def __init__(self, config: Optional[SpeechStreamConfig] = None) -> None:
        super().__init__(config)
        self._on_event: Optional[EventCallback] = None
        self._active = False
        self._received = 0
        self._logger = logging.getLogger("meetscribe.speech.relay")

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def received(self) -> int:
        return self._received

    def start(self, on_event: EventCallback) -> None:
        if self._active:
            raise SpeechServiceError("Speech stream already started")
        self._on_event = on_event
        self._active = True
        self._logger.info(
            "Relay stream started: region=%s language=%s",
            self._config.region if self._config else "-",
            self._config.language if self._config else "-",
        )

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._on_event = None
        self._logger.info("Relay stream stopped: events=%s", self._received)

    def push(self, payload: dict) -> TranscriptionEvent:
        """Parse a relayed result and hand it to the consumer.

        Raises SpeechServiceError when the stream is not running and
        ValueError for malformed payloads.
        """
        if not self._active or self._on_event is None:
            raise SpeechServiceError("Speech stream is not active")
        event = TranscriptionEvent.from_payload(payload, received_at=now_ms())
        self._received += 1
        self._on_event(event)
        return event
