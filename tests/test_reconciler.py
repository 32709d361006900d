"""Tests for the live transcript reconciler."""

from __future__ import annotations

import random
from collections import Counter

import pytest

from meetscribe.services.transcript import (
    UNKNOWN_SPEAKER_LABEL,
    RecordingInProgressError,
    TranscriptionEvent,
    TranscriptReconciler,
    Utterance,
)


def _event(text: str, ts: int, speaker: str | None = "Guest-1", final: bool = True) -> TranscriptionEvent:
    return TranscriptionEvent(text=text, is_final=final, timestamp=ts, raw_speaker_id=speaker)


def _recording() -> tuple[TranscriptReconciler, list[dict]]:
    notes: list[dict] = []
    engine = TranscriptReconciler(on_notify=notes.append)
    engine.begin_recording()
    return engine, notes


def test_interim_is_replaced_then_locked_by_final() -> None:
    engine, _ = _recording()

    engine.handle_event(_event("hel", 100, final=False))
    engine.handle_event(_event("hello the", 110, final=False))
    assert [u.text for u in engine.utterances] == ["hello the"]

    engine.handle_event(_event("hello there", 120))

    utterances = engine.utterances
    assert len(utterances) == 1
    assert utterances[0].text == "hello there"
    assert utterances[0].is_final


def test_interims_of_other_speakers_are_preserved() -> None:
    engine, _ = _recording()

    engine.handle_event(_event("a", 100, speaker="Guest-1", final=False))
    engine.handle_event(_event("b", 105, speaker="Guest-2", final=False))
    engine.handle_event(_event("a done", 110, speaker="Guest-1"))

    texts = [(u.speaker_id, u.text, u.is_final) for u in engine.utterances]
    assert texts == [("Guest-2", "b", False), ("Guest-1", "a done", True)]


def test_transcript_sorted_by_timestamp_with_stable_ties() -> None:
    engine, _ = _recording()

    engine.handle_event(_event("third", 300))
    engine.handle_event(_event("first", 100, speaker="Guest-2"))
    engine.handle_event(_event("second-a", 200))
    engine.handle_event(_event("second-b", 200, speaker="Guest-2"))

    assert [u.text for u in engine.utterances] == ["first", "second-a", "second-b", "third"]


def test_finals_are_never_removed() -> None:
    engine, _ = _recording()

    engine.handle_event(_event("one", 100))
    engine.handle_event(_event("two", 200))
    engine.handle_event(_event("thr", 300, final=False))
    engine.handle_event(_event("three", 310))

    assert [u.text for u in engine.utterances] == ["one", "two", "three"]


def test_first_resolvable_speaker_marks_identification() -> None:
    engine, _ = _recording()

    result = engine.handle_event(_event("noise", 100, speaker="Unknown"))
    assert not engine.speaker_identified
    assert not result.first_identification
    assert result.utterance.speaker_name == UNKNOWN_SPEAKER_LABEL

    result = engine.handle_event(_event("hi", 110, speaker="Guest-1"))
    assert engine.speaker_identified
    assert result.first_identification
    assert result.display_name == "Speaker 1"


def test_detected_name_updates_map_and_notifies() -> None:
    engine, notes = _recording()

    result = engine.handle_event(_event("Hi my name is Joe", 100))

    assert result.detected_name == "Joe"
    assert result.utterance.speaker_name == "Joe"
    assert engine.speaker_names == {"Guest-1": "Joe"}
    assert notes == [{"type": "speaker_name_detected", "speaker_id": "Guest-1", "name": "Joe"}]


def test_name_detection_ignores_interims_and_unresolved_speakers() -> None:
    engine, notes = _recording()

    engine.handle_event(_event("my name is Joe", 100, final=False))
    engine.handle_event(_event("my name is Ann", 110, speaker=None))

    assert notes == []
    assert engine.speaker_names == {"Guest-1": "Speaker 1"}


def test_rename_rejected_while_recording() -> None:
    engine, _ = _recording()
    engine.handle_event(_event("hello", 100))

    with pytest.raises(RecordingInProgressError):
        engine.rename_speaker("Guest-1", "Alice")


def test_rename_after_stop_updates_history() -> None:
    engine, _ = _recording()
    engine.handle_event(_event("hello", 100))
    engine.handle_event(_event("again", 200))
    engine.handle_event(_event("other", 150, speaker="Guest-2"))
    engine.end_recording()

    assert engine.rename_speaker("Guest-1", "  Alice ")

    names = [(u.speaker_id, u.speaker_name) for u in engine.utterances]
    assert names == [("Guest-1", "Alice"), ("Guest-2", "Speaker 2"), ("Guest-1", "Alice")]
    assert engine.speaker_names["Guest-1"] == "Alice"


def test_blank_rename_is_a_noop() -> None:
    engine = TranscriptReconciler()

    assert engine.rename_speaker("Guest-1", "   ") is False
    assert engine.speaker_names == {}


def test_end_recording_promotes_interims() -> None:
    engine, _ = _recording()
    engine.handle_event(_event("unfinished", 100, final=False))

    assert engine.end_recording() == 1
    assert engine.utterances[0].is_final
    assert not engine.is_recording


def test_flatten_skips_interim_and_unresolved() -> None:
    engine, _ = _recording()
    engine.handle_event(_event("Hi my name is Joe", 100))
    engine.handle_event(_event("mumble", 150, speaker="Unknown"))
    engine.handle_event(_event("sure", 200, speaker="Guest-2"))
    engine.handle_event(_event("still talk", 300, final=False))

    assert engine.flatten_for_analysis() == "Joe: Hi my name is Joe\nSpeaker 2: sure"


def test_load_from_persisted_round_trips_flattened_transcript() -> None:
    engine, _ = _recording()
    engine.handle_event(_event("I'm alice", 100))
    engine.handle_event(_event("hello", 200, speaker="Guest-2"))
    engine.end_recording()
    flattened = engine.flatten_for_analysis()

    restored = TranscriptReconciler()
    restored.load_from_persisted(engine.snapshot())

    assert restored.flatten_for_analysis() == flattened
    assert restored.speaker_identified


def test_load_from_persisted_prefers_initial_data_and_seeds_names() -> None:
    meeting = {
        "transcriptions": [{"text": "old", "timestamp": 1, "speaker_id": "Guest-1"}],
        "speaker_names": {"Guest-1": "Old"},
    }
    initial = [
        {"text": "new", "timestamp": 5, "isFinal": False, "speakerId": "7", "speakerName": "Zed"},
    ]

    engine = TranscriptReconciler()
    engine.load_from_persisted(meeting, initial_transcriptions=initial, initial_speaker_names={})

    utterances = engine.utterances
    assert [u.text for u in utterances] == ["new"]
    assert utterances[0].is_final
    assert engine.speaker_names == {"7": "Zed"}


def test_load_refused_while_recording() -> None:
    engine, _ = _recording()

    with pytest.raises(RecordingInProgressError):
        engine.load_from_persisted({"transcriptions": []})


def test_event_from_payload_accepts_camel_case() -> None:
    event = TranscriptionEvent.from_payload(
        {"text": "hi", "isFinal": True, "speakerId": "Guest-1"}, received_at=42
    )

    assert event == TranscriptionEvent(text="hi", is_final=True, timestamp=42, raw_speaker_id="Guest-1")


def test_event_from_payload_rejects_missing_text() -> None:
    with pytest.raises(ValueError):
        TranscriptionEvent.from_payload({"is_final": True})


def test_event_from_payload_rejects_non_boolean_final_flag() -> None:
    with pytest.raises(ValueError):
        TranscriptionEvent.from_payload({"text": "hi", "is_final": "false"})


@pytest.mark.parametrize("seed", range(25))
def test_random_interleavings_keep_transcript_invariants(seed) -> None:
    rng = random.Random(seed)
    engine, _ = _recording()
    finals: list[str] = []

    for index in range(60):
        final = rng.random() < 0.4
        text = f"w{index}"
        speaker = rng.choice(["Guest-1", "Guest-2", "3", "Unknown", None])
        engine.handle_event(_event(text, rng.randint(0, 40), speaker=speaker, final=final))
        if final:
            finals.append(text)

        utterances = engine.utterances
        timestamps = [u.timestamp for u in utterances]
        assert timestamps == sorted(timestamps)
        interims = Counter(u.speaker_id for u in utterances if not u.is_final)
        assert all(count == 1 for count in interims.values())
        final_texts = {u.text for u in utterances if u.is_final}
        assert final_texts == set(finals)


def test_utterance_from_dict_accepts_iso_timestamps() -> None:
    utterance = Utterance.from_dict(
        {"text": "hi", "timestamp": "2024-01-01T00:00:05Z", "speaker_id": "Guest-1"}
    )

    assert utterance.timestamp == 1704067205000
    assert Utterance.from_dict({"text": "hi", "timestamp": "1500"}).timestamp == 1500


def test_load_from_persisted_skips_unreadable_items() -> None:
    meeting = {
        "transcriptions": [
            {"text": "iso", "timestamp": "2024-01-01T00:00:05Z", "speaker_id": "Guest-1"},
            {"text": "bad", "timestamp": "next tuesday", "speaker_id": "Guest-1"},
            {"text": "flag", "timestamp": 1, "is_final": "yes", "speaker_id": "Guest-2"},
            "not an object",
        ],
        "speaker_names": {"Guest-1": "Ann"},
    }

    engine = TranscriptReconciler()
    engine.load_from_persisted(meeting)

    assert [u.text for u in engine.utterances] == ["iso"]
    assert engine.flatten_for_analysis() == "Ann: iso"
