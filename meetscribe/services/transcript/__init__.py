from meetscribe.services.transcript.autosave import AutosaveLoop
from meetscribe.services.transcript.models import TranscriptionEvent, Utterance, now_ms, timestamp_ms
from meetscribe.services.transcript.reconciler import HandledEvent, RecordingInProgressError, TranscriptReconciler
from meetscribe.services.transcript.speakers import (
    UNKNOWN_SPEAKER_LABEL,
    SpeakerIdKind,
    SpeakerIdentity,
    SpeakerNameMap,
    classify_speaker_id,
    detect_speaker_name,
)

__all__ = [
    "AutosaveLoop",
    "HandledEvent",
    "RecordingInProgressError",
    "SpeakerIdKind",
    "SpeakerIdentity",
    "SpeakerNameMap",
    "TranscriptReconciler",
    "TranscriptionEvent",
    "UNKNOWN_SPEAKER_LABEL",
    "Utterance",
    "classify_speaker_id",
    "detect_speaker_name",
    "now_ms",
    "timestamp_ms",
]
