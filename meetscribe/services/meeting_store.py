from __future__ import annotations

import json
import logging
import math
import os
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from meetscribe.services.transcript.models import Utterance

SCHEMA_VERSION = 1
MEETING_STATUSES = ("scheduled", "in-progress", "completed", "cancelled")
TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500

_MEETING_ID_RE = re.compile(r"^[0-9a-f]{32}$")

# camelCase keys written by older browser clients.
_FIELD_ALIASES = {
    "startTime": "start_time",
    "endTime": "end_time",
    "speakerNames": "speaker_names",
}

_UPDATABLE_FIELDS = (
    "title",
    "description",
    "start_time",
    "end_time",
    "status",
    "participants",
    "tags",
    "transcriptions",
    "speaker_names",
    "summary",
)


class MeetingValidationError(ValueError):
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_time(value) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MeetingValidationError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise MeetingValidationError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_time(value) -> str:
    return parse_time(value).astimezone(timezone.utc).isoformat()


def meeting_duration_seconds(meeting: dict) -> int:
    start, end = meeting.get("start_time"), meeting.get("end_time")
    if not start or not end:
        return 0
    try:
        seconds = (parse_time(end) - parse_time(start)).total_seconds()
    except MeetingValidationError:
        return 0
    return max(0, int(seconds))


class MeetingStore:
    """Meetings as JSON documents, one file per meeting, scoped by owner."""

    def __init__(self, meetings_dir: str) -> None:
        self._meetings_dir = meetings_dir
        self._lock = threading.RLock()
        self._logger = logging.getLogger("meetscribe.meetings")
        os.makedirs(self._meetings_dir, exist_ok=True)

    # ── Files ──────────────────────────────────────────────────────────

    def _meeting_path(self, meeting_id: str) -> Optional[str]:
        if not isinstance(meeting_id, str) or not _MEETING_ID_RE.match(meeting_id):
            return None
        return os.path.join(self._meetings_dir, f"{meeting_id}.json")

    def _list_meeting_paths(self) -> list[str]:
        try:
            names = os.listdir(self._meetings_dir)
        except OSError as exc:
            self._logger.warning("Failed to list meetings dir: %s", exc)
            return []
        return sorted(
            os.path.join(self._meetings_dir, name) for name in names if name.endswith(".json")
        )

    def _read_meeting_file(self, path: str) -> Optional[dict]:
        try:
            with open(path, "r", encoding="utf-8") as meeting_file:
                data = json.load(meeting_file)
            if isinstance(data, dict):
                return data
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning("Failed to read meeting file: %s error=%s", path, exc)
        return None

    def _write_meeting_file(self, path: str, meeting: dict) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        temp_path = f"{path}.tmp"
        with open(temp_path, "w", encoding="utf-8") as meeting_file:
            json.dump(meeting, meeting_file, indent=2)
        os.replace(temp_path, path)

    def _load_owned(self, user_id: str, meeting_id: str) -> tuple[Optional[str], Optional[dict]]:
        path = self._meeting_path(meeting_id)
        if not path:
            return None, None
        meeting = self._read_meeting_file(path)
        if not meeting or meeting.get("user_id") != user_id:
            return path, None
        return path, meeting

    # ── Validation ─────────────────────────────────────────────────────

    @staticmethod
    def _normalize_keys(data: dict) -> dict:
        normalized = {}
        for key, value in (data or {}).items():
            normalized[_FIELD_ALIASES.get(key, key)] = value
        return normalized

    @staticmethod
    def _validate_fields(fields: dict) -> dict:
        clean: dict = {}
        if "title" in fields:
            title = fields["title"]
            if not isinstance(title, str) or not title.strip():
                raise MeetingValidationError("Please provide a meeting title")
            if len(title.strip()) > TITLE_MAX_LENGTH:
                raise MeetingValidationError(
                    f"Title cannot be more than {TITLE_MAX_LENGTH} characters"
                )
            clean["title"] = title.strip()
        if "description" in fields:
            description = fields["description"] or ""
            if not isinstance(description, str):
                raise MeetingValidationError("Description must be a string")
            if len(description) > DESCRIPTION_MAX_LENGTH:
                raise MeetingValidationError(
                    f"Description cannot be more than {DESCRIPTION_MAX_LENGTH} characters"
                )
            clean["description"] = description
        if "start_time" in fields:
            clean["start_time"] = format_time(fields["start_time"])
        if "end_time" in fields:
            clean["end_time"] = format_time(fields["end_time"]) if fields["end_time"] else None
        if "status" in fields:
            if fields["status"] not in MEETING_STATUSES:
                raise MeetingValidationError(
                    f"Invalid status {fields['status']!r}; expected one of {', '.join(MEETING_STATUSES)}"
                )
            clean["status"] = fields["status"]
        for key in ("participants", "tags"):
            if key in fields:
                values = fields[key] or []
                if not isinstance(values, list):
                    raise MeetingValidationError(f"{key} must be a list")
                clean[key] = [str(value) for value in values]
        if "transcriptions" in fields:
            transcriptions = fields["transcriptions"] or []
            if not isinstance(transcriptions, list):
                raise MeetingValidationError("transcriptions must be a list of objects")
            try:
                clean["transcriptions"] = [
                    Utterance.from_dict(item).to_dict() for item in transcriptions
                ]
            except ValueError as exc:
                raise MeetingValidationError(f"Invalid transcription entry: {exc}") from exc
        if "speaker_names" in fields:
            names = fields["speaker_names"] or {}
            if not isinstance(names, dict):
                raise MeetingValidationError("speaker_names must be an object")
            clean["speaker_names"] = {str(k): str(v) for k, v in names.items()}
        if "summary" in fields:
            summary = fields["summary"]
            if summary is not None and not isinstance(summary, dict):
                raise MeetingValidationError("summary must be an object")
            clean["summary"] = summary
        return clean

    # ── Operations ─────────────────────────────────────────────────────

    def create(self, user_id: str, data: dict) -> dict:
        fields = self._normalize_keys(data)
        if not fields.get("title") or not fields.get("start_time"):
            raise MeetingValidationError("Title and start time are required")
        clean = self._validate_fields(
            {key: fields[key] for key in _UPDATABLE_FIELDS if key in fields}
        )
        now = utc_now().isoformat()
        meeting = {
            "schema_version": SCHEMA_VERSION,
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "title": clean["title"],
            "description": clean.get("description", ""),
            "start_time": clean["start_time"],
            "end_time": clean.get("end_time"),
            "status": clean.get("status", "scheduled"),
            "participants": clean.get("participants", []),
            "tags": clean.get("tags", []),
            "transcriptions": clean.get("transcriptions", []),
            "speaker_names": clean.get("speaker_names", {}),
            "summary": clean.get("summary"),
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._write_meeting_file(self._meeting_path(meeting["id"]), meeting)
        self._logger.info(
            "Meeting created: id=%s user_id=%s status=%s", meeting["id"], user_id, meeting["status"]
        )
        return meeting

    def get(self, user_id: str, meeting_id: str) -> Optional[dict]:
        with self._lock:
            _, meeting = self._load_owned(user_id, meeting_id)
            return meeting

    def update(self, user_id: str, meeting_id: str, partial: dict) -> Optional[dict]:
        """Apply provided, non-empty fields. ``description`` may be cleared."""
        fields = self._normalize_keys(partial)
        provided = {
            key: fields[key]
            for key in _UPDATABLE_FIELDS
            if key in fields and (key == "description" or fields[key] not in (None, "", [], {}))
        }
        clean = self._validate_fields(provided)
        with self._lock:
            path, meeting = self._load_owned(user_id, meeting_id)
            if meeting is None:
                return None
            meeting.update(clean)
            meeting["updated_at"] = utc_now().isoformat()
            self._write_meeting_file(path, meeting)
        self._logger.info(
            "Meeting updated: id=%s fields=%s", meeting_id, ",".join(sorted(clean)) or "-"
        )
        return meeting

    def delete(self, user_id: str, meeting_id: str) -> bool:
        with self._lock:
            path, meeting = self._load_owned(user_id, meeting_id)
            if meeting is None:
                return False
            try:
                os.unlink(path)
            except OSError as exc:
                self._logger.warning("Failed to delete meeting file: %s error=%s", path, exc)
                return False
        self._logger.info("Meeting deleted: id=%s", meeting_id)
        return True

    def _owned_meetings(self, user_id: str) -> list[dict]:
        meetings = []
        for path in self._list_meeting_paths():
            meeting = self._read_meeting_file(path)
            if meeting and meeting.get("user_id") == user_id:
                meetings.append(meeting)
        return meetings

    def list(
        self,
        user_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        page = max(1, int(page))
        limit = max(1, int(limit))
        needle = (search or "").strip().lower()
        with self._lock:
            meetings = self._owned_meetings(user_id)

        if status:
            meetings = [m for m in meetings if m.get("status") == status]
        if needle:
            meetings = [m for m in meetings if self._matches(m, needle)]

        meetings.sort(key=lambda m: m.get("start_time") or "", reverse=True)
        total = len(meetings)
        start = (page - 1) * limit
        return {
            "meetings": meetings[start : start + limit],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit),
            },
        }

    @staticmethod
    def _matches(meeting: dict, needle: str) -> bool:
        haystacks = [meeting.get("title") or "", meeting.get("description") or ""]
        haystacks.extend(str(tag) for tag in meeting.get("tags") or [])
        return any(needle in value.lower() for value in haystacks)

    def set_end_time_if_missing(
        self, user_id: str, meeting_id: str, duration_seconds: float
    ) -> Optional[dict]:
        with self._lock:
            path, meeting = self._load_owned(user_id, meeting_id)
            if meeting is None:
                return None
            if not meeting.get("end_time"):
                start = parse_time(meeting["start_time"])
                end = start.timestamp() + max(0.0, float(duration_seconds))
                meeting["end_time"] = datetime.fromtimestamp(end, tz=timezone.utc).isoformat()
                meeting["updated_at"] = utc_now().isoformat()
                self._write_meeting_file(path, meeting)
                self._logger.info(
                    "Meeting end time set: id=%s duration=%ss", meeting_id, int(duration_seconds)
                )
            return meeting

    def total_recorded_seconds(self, user_id: str) -> int:
        with self._lock:
            meetings = self._owned_meetings(user_id)
        return sum(meeting_duration_seconds(meeting) for meeting in meetings)
