from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def timestamp_ms(value) -> int:
    """Coerce epoch milliseconds or an ISO-8601 string to epoch milliseconds.

    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (OverflowError, ValueError) as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"Invalid timestamp: {value!r}")


def _final_flag(value) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"is_final must be a boolean, got {value!r}")
    return value


@dataclass(frozen=True)
class TranscriptionEvent:
    """One interim or final recognition result from the speech stream."""

    text: str
    is_final: bool
    timestamp: int
    raw_speaker_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict, received_at: Optional[int] = None) -> "TranscriptionEvent":
        """Build an event from relay JSON.

        Accepts both snake_case and the camelCase keys emitted by browser
        speech SDKs. Raises ValueError for payloads that are not events.
        """
        if not isinstance(payload, dict):
            raise ValueError("Event payload must be an object")
        text = payload.get("text")
        if not isinstance(text, str):
            raise ValueError("Event text must be a string")
        is_final = _final_flag(payload.get("is_final", payload.get("isFinal", False)))
        raw_speaker_id = payload.get(
            "raw_speaker_id", payload.get("speaker_id", payload.get("speakerId"))
        )
        if raw_speaker_id is not None and not isinstance(raw_speaker_id, str):
            raw_speaker_id = str(raw_speaker_id)
        timestamp = payload.get("timestamp")
        if timestamp is None:
            timestamp = received_at if received_at is not None else now_ms()
        try:
            timestamp = timestamp_ms(timestamp)
        except ValueError as exc:
            raise ValueError("Event timestamp must be epoch milliseconds or ISO-8601") from exc
        return cls(
            text=text,
            is_final=is_final,
            timestamp=timestamp,
            raw_speaker_id=raw_speaker_id,
        )


@dataclass
class Utterance:
    """One reconciled transcript entry attributed to a speaker."""

    text: str
    timestamp: int
    is_final: bool
    speaker_id: str = ""
    speaker_name: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Utterance":
        """Rebuild a stored utterance; raises ValueError for unusable items."""
        # Older documents were written by a JavaScript client in camelCase.
        if not isinstance(data, dict):
            raise ValueError("Utterance must be an object")
        timestamp = data.get("timestamp")
        return cls(
            text=str(data.get("text") or ""),
            timestamp=0 if timestamp in (None, "") else timestamp_ms(timestamp),
            is_final=_final_flag(data.get("is_final", data.get("isFinal", True))),
            speaker_id=str(data.get("speaker_id", data.get("speakerId")) or ""),
            speaker_name=str(data.get("speaker_name", data.get("speakerName")) or ""),
        )
