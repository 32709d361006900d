"""Live transcript reconciliation.

Recognition events arrive interleaved across speakers, each speaker's
hypothesis being revised by interim events until a final event locks it.
The reconciler keeps the displayed transcript consistent with that stream:

- at most one interim utterance per speaker id; a newer interim replaces it
- a final utterance drops the speaker's interim and is never removed again
- the sequence is ordered by timestamp, ties by insertion order
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from meetscribe.services.transcript.models import TranscriptionEvent, Utterance
from meetscribe.services.transcript.speakers import (
    UNKNOWN_SPEAKER_LABEL,
    SpeakerNameMap,
    detect_speaker_name,
)


class RecordingInProgressError(RuntimeError):
    pass


@dataclass(frozen=True)
class HandledEvent:
    utterance: Utterance
    display_name: Optional[str]
    detected_name: Optional[str] = None
    first_identification: bool = False


class TranscriptReconciler:
    def __init__(
        self,
        speaker_names: Optional[SpeakerNameMap] = None,
        on_notify: Optional[Callable[[dict], None]] = None,
    ) -> None:
        self._names = speaker_names or SpeakerNameMap()
        self._entries: list[tuple[int, Utterance]] = []
        self._seq = itertools.count()
        self._speaker_identified = False
        self._recording = False
        self._on_notify = on_notify
        self._logger = logging.getLogger("meetscribe.transcript")

    # ── State ──────────────────────────────────────────────────────────

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def speaker_identified(self) -> bool:
        return self._speaker_identified

    @property
    def speaker_names(self) -> dict[str, str]:
        return self._names.as_dict()

    @property
    def utterances(self) -> list[Utterance]:
        return [replace(utterance) for _, utterance in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def begin_recording(self) -> None:
        self._recording = True

    def end_recording(self) -> int:
        """Leave recording mode, locking any interim utterance still on screen.

        Returns the number of interim utterances promoted to final.
        """
        self._recording = False
        promoted = 0
        for _, utterance in self._entries:
            if not utterance.is_final:
                utterance.is_final = True
                promoted += 1
        if promoted:
            self._logger.info("Promoted %s interim utterance(s) on stop", promoted)
        return promoted

    # ── Event handling ─────────────────────────────────────────────────

    def handle_event(self, event: TranscriptionEvent) -> HandledEvent:
        raw_id = (event.raw_speaker_id or "").strip()
        display_name = self._names.resolve(raw_id)

        first_identification = False
        if display_name is not None and not self._speaker_identified:
            self._speaker_identified = True
            first_identification = True
            self._logger.info("Speaker identification achieved: speaker_id=%s", raw_id)

        detected_name = None
        if event.is_final and display_name is not None:
            detected_name = detect_speaker_name(event.text)
            if detected_name and detected_name != display_name:
                self._names.set(raw_id, detected_name)
                display_name = detected_name
                self._logger.info("Speaker name detected: speaker_id=%s name=%s", raw_id, detected_name)
                self._notify(
                    {
                        "type": "speaker_name_detected",
                        "speaker_id": raw_id,
                        "name": detected_name,
                    }
                )
            elif detected_name:
                detected_name = None

        utterance = Utterance(
            text=event.text,
            timestamp=event.timestamp,
            is_final=event.is_final,
            speaker_id=raw_id,
            speaker_name=display_name or UNKNOWN_SPEAKER_LABEL,
        )
        self._drop_interim(raw_id)
        self._entries.append((next(self._seq), utterance))
        self._sort()
        return HandledEvent(
            utterance=replace(utterance),
            display_name=display_name,
            detected_name=detected_name,
            first_identification=first_identification,
        )

    def _drop_interim(self, speaker_id: str) -> None:
        self._entries = [
            entry
            for entry in self._entries
            if entry[1].is_final or entry[1].speaker_id != speaker_id
        ]

    def _sort(self) -> None:
        self._entries.sort(key=lambda entry: (entry[1].timestamp, entry[0]))

    def _notify(self, message: dict) -> None:
        if self._on_notify is not None:
            self._on_notify(message)

    # ── Editing ────────────────────────────────────────────────────────

    def rename_speaker(self, raw_speaker_id: str, new_name: str) -> bool:
        """Rename a speaker everywhere in the transcript.

        Returns False when the request is a no-op (blank name or id).
        Raises RecordingInProgressError while recording.
        """
        if self._recording:
            raise RecordingInProgressError("Speakers cannot be renamed while recording is in progress")
        name = (new_name or "").strip()
        if not name or not raw_speaker_id:
            return False
        self._names.set(raw_speaker_id, name)
        updated = 0
        for _, utterance in self._entries:
            if utterance.speaker_id == raw_speaker_id:
                utterance.speaker_name = name
                updated += 1
        self._logger.info(
            "Speaker renamed: speaker_id=%s name=%s utterances=%s", raw_speaker_id, name, updated
        )
        return True

    # ── Export / restore ───────────────────────────────────────────────

    def flatten_for_analysis(self) -> str:
        lines = []
        for _, utterance in self._entries:
            if not utterance.is_final or not utterance.speaker_id:
                continue
            name = self._names.lookup(utterance.speaker_id)
            if not name or name == UNKNOWN_SPEAKER_LABEL:
                continue
            lines.append(f"{name}: {utterance.text}")
        return "\n".join(lines)

    def snapshot(self) -> dict:
        return {
            "transcriptions": [utterance.to_dict() for _, utterance in self._entries],
            "speaker_names": self._names.as_dict(),
        }

    def load_from_persisted(
        self,
        meeting: Optional[dict] = None,
        initial_transcriptions: Optional[list] = None,
        initial_speaker_names: Optional[dict] = None,
    ) -> None:
        """Restore a saved transcript; explicit initial data wins over ``meeting``."""
        if self._recording:
            raise RecordingInProgressError("Cannot load a saved transcript into a live recording")
        meeting = meeting or {}
        transcriptions = initial_transcriptions
        if transcriptions is None:
            transcriptions = meeting.get("transcriptions") or []
        speaker_names = initial_speaker_names
        if speaker_names is None:
            speaker_names = meeting.get("speaker_names") or meeting.get("speakerNames") or {}

        names = SpeakerNameMap(speaker_names)
        entries: list[tuple[int, Utterance]] = []
        for item in transcriptions:
            try:
                utterance = Utterance.from_dict(item)
            except ValueError as exc:
                self._logger.warning("Skipping unreadable utterance: %s", exc)
                continue
            utterance.is_final = True
            if (
                utterance.speaker_id
                and utterance.speaker_id not in names
                and utterance.speaker_name
                and utterance.speaker_name != UNKNOWN_SPEAKER_LABEL
            ):
                names.set(utterance.speaker_id, utterance.speaker_name)
            entries.append((next(self._seq), utterance))

        self._names = names
        self._entries = entries
        self._sort()
        self._speaker_identified = any(
            names.lookup(utterance.speaker_id) for _, utterance in entries
        )
        self._logger.info(
            "Transcript restored: utterances=%s speakers=%s", len(entries), len(names)
        )
