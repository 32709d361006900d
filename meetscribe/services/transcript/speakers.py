"""Speaker identifier classification, display names and name detection."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

UNKNOWN_SPEAKER_LABEL = "Unknown Speaker"


class SpeakerIdKind(Enum):
    GUEST = "guest"
    CONVERSATION = "conversation"
    NUMERIC = "numeric"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class SpeakerIdentity:
    kind: SpeakerIdKind
    number: Optional[str] = None

    @property
    def default_label(self) -> Optional[str]:
        if self.kind is SpeakerIdKind.UNRECOGNIZED or self.number is None:
            return None
        return f"Speaker {self.number}"


_UNRECOGNIZED = SpeakerIdentity(SpeakerIdKind.UNRECOGNIZED)

_ID_FORMATS = (
    (SpeakerIdKind.GUEST, re.compile(r"^Guest-(\d+)$")),
    (SpeakerIdKind.CONVERSATION, re.compile(r"^CONVERSATION_SPEAKER_(\d+)$")),
    (SpeakerIdKind.NUMERIC, re.compile(r"^(?:Speaker_)?(\d+)$")),
)


def classify_speaker_id(raw_speaker_id: Optional[str]) -> SpeakerIdentity:
    """Classify a raw diarization id into one of the known formats."""
    if not raw_speaker_id:
        return _UNRECOGNIZED
    candidate = raw_speaker_id.strip()
    for kind, pattern in _ID_FORMATS:
        match = pattern.match(candidate)
        if match:
            return SpeakerIdentity(kind, match.group(1))
    return _UNRECOGNIZED


class SpeakerNameMap:
    """Raw speaker id -> display name, created lazily and never shrunk."""

    def __init__(self, names: Optional[dict] = None) -> None:
        self._names: dict[str, str] = {}
        self._identities: dict[str, SpeakerIdentity] = {}
        for raw_id, name in (names or {}).items():
            if raw_id and isinstance(name, str) and name.strip():
                self._names[str(raw_id)] = name.strip()

    def identity(self, raw_speaker_id: str) -> SpeakerIdentity:
        identity = self._identities.get(raw_speaker_id)
        if identity is None:
            identity = classify_speaker_id(raw_speaker_id)
            self._identities[raw_speaker_id] = identity
        return identity

    def lookup(self, raw_speaker_id: Optional[str]) -> Optional[str]:
        """Resolve without creating an entry."""
        if not raw_speaker_id:
            return None
        name = self._names.get(raw_speaker_id)
        if name:
            return name
        return self.identity(raw_speaker_id).default_label

    def resolve(self, raw_speaker_id: Optional[str]) -> Optional[str]:
        """Resolve a display name, recording the default label on first sight."""
        name = self.lookup(raw_speaker_id)
        if name is not None and raw_speaker_id not in self._names:
            self._names[raw_speaker_id] = name
        return name

    def set(self, raw_speaker_id: str, name: str) -> None:
        self._names[raw_speaker_id] = name

    def as_dict(self) -> dict[str, str]:
        return dict(self._names)

    def __contains__(self, raw_speaker_id: object) -> bool:
        return raw_speaker_id in self._names

    def __len__(self) -> int:
        return len(self._names)


# Letters in any script, optionally hyphenated; never cut off mid-word.
_NAME = r"([^\W\d_][^\W\d_\-]*)\b"
_APOSTROPHE = r"['’]"

# Tried in order; the first hit wins.
_NAME_PATTERNS = (
    re.compile(rf"\bmy name is {_NAME}", re.IGNORECASE),
    re.compile(rf"\bmy name{_APOSTROPHE}s {_NAME}", re.IGNORECASE),
    re.compile(rf"\bthis is {_NAME} speaking\b", re.IGNORECASE),
    re.compile(rf"^\s*(?:(?:hi|hello|hey)\W*\s*)?this is {_NAME}\b", re.IGNORECASE),
    re.compile(rf"\bit{_APOSTROPHE}s {_NAME} speaking\b", re.IGNORECASE),
    re.compile(rf"\bI{_APOSTROPHE}m {_NAME}\b", re.IGNORECASE),
    re.compile(rf"\bI am {_NAME}\b", re.IGNORECASE),
    re.compile(rf"\bcall me {_NAME}", re.IGNORECASE),
    re.compile(rf"^\s*(?:(?:hi|hello|hey)\W*\s*)?(?:it{_APOSTROPHE}s\s+)?{_NAME}\s+here\b", re.IGNORECASE),
)

_NOT_NAMES = frozenset(
    {
        "a", "about", "actually", "afraid", "after", "again", "all", "almost",
        "also", "always", "amazing", "an", "and", "any", "anyone", "anything",
        "around", "as", "at", "available", "awesome", "back", "because",
        "before", "behind", "busy", "but", "by", "calling", "confused",
        "curious", "definitely", "done", "down", "early", "easy", "evening",
        "every", "everybody", "everyone", "excited", "fine", "for", "free",
        "friday", "from", "glad", "going", "gonna", "good", "great", "happy",
        "hard", "he", "her", "here", "him", "his", "home", "how", "i", "if",
        "important", "in", "interesting", "into", "it", "just", "kind", "late",
        "later", "like", "looking", "lost", "maybe", "me", "monday", "morning",
        "my", "near", "never", "new", "no", "nobody", "not", "nothing", "now",
        "of", "off", "ok", "okay", "on", "one", "or", "our", "out", "over",
        "please", "pleased", "pretty", "probably", "quite", "ready", "really",
        "right", "saturday", "she", "sick", "so", "some", "someone",
        "something", "sometimes", "soon", "sorry", "still", "sunday",
        "supposed", "sure", "than", "that", "the", "their", "them", "then",
        "there", "they", "thinking", "this", "thursday", "tired", "to", "today",
        "tomorrow", "tonight", "too", "totally", "true", "trying", "tuesday",
        "under", "up", "us", "used", "very", "we", "wednesday", "well", "what",
        "when", "where", "who", "why", "with", "without", "wrong", "yesterday",
        "you", "your",
    }
)


def detect_speaker_name(text: str) -> Optional[str]:
    """Return the name a speaker introduces themselves with, if any.

    Pure function over final utterance text. The matched token is normalized
    to a capital first letter with the remainder lowercased.
    """
    if not text:
        return None
    for pattern in _NAME_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        candidate = match.group(1).strip("-")
        if not candidate or candidate.lower() in _NOT_NAMES:
            continue
        return candidate[0].upper() + candidate[1:].lower()
    return None
