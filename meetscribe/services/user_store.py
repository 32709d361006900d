from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

import bcrypt

NAME_MAX_LENGTH = 60
DEFAULT_RECORDING_TIME_LIMIT = 10800
USAGE_SERVICES = ("speech", "meeting", "ai")

_PUBLIC_FIELDS = (
    "id",
    "name",
    "email",
    "recording_time_used",
    "recording_time_limit",
    "beta_user",
    "subscription",
    "subscription_status",
    "created_at",
    "updated_at",
)


class UserExistsError(RuntimeError):
    pass


class UserValidationError(ValueError):
    pass


def public_user(user: dict) -> dict:
    """User document without credentials."""
    return {key: user.get(key) for key in _PUBLIC_FIELDS}


class UserStore:
    """Users and usage records as JSON documents.

    Users live in ``users_dir/<id>.json``; usage records are appended to
    ``usage_dir/<user_id>.json``.
    """

    def __init__(self, users_dir: str, usage_dir: str) -> None:
        self._users_dir = users_dir
        self._usage_dir = usage_dir
        self._lock = threading.RLock()
        self._logger = logging.getLogger("meetscribe.users")
        os.makedirs(self._users_dir, exist_ok=True)
        os.makedirs(self._usage_dir, exist_ok=True)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _safe_id(user_id: str) -> bool:
        return isinstance(user_id, str) and len(user_id) == 32 and user_id.isalnum()

    def _user_path(self, user_id: str) -> str:
        return os.path.join(self._users_dir, f"{user_id}.json")

    def _usage_path(self, user_id: str) -> str:
        return os.path.join(self._usage_dir, f"{user_id}.json")

    @staticmethod
    def _read_json(path: str, default):
        try:
            with open(path, "r", encoding="utf-8") as json_file:
                return json.load(json_file)
        except FileNotFoundError:
            return default

    @staticmethod
    def _write_json(path: str, data) -> None:
        temp_path = f"{path}.tmp"
        with open(temp_path, "w", encoding="utf-8") as json_file:
            json.dump(data, json_file, indent=2)
        os.replace(temp_path, path)

    def _all_users(self) -> list[dict]:
        users = []
        for name in sorted(os.listdir(self._users_dir)):
            if not name.endswith(".json"):
                continue
            data = self._read_json(os.path.join(self._users_dir, name), None)
            if isinstance(data, dict):
                users.append(data)
        return users

    def _find_by_email(self, email: str) -> Optional[dict]:
        for user in self._all_users():
            if user.get("email") == email:
                return user
        return None

    def register(self, name: str, email: str, password: str) -> dict:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email or not password:
            raise UserValidationError("Missing required fields")
        if len(name) > NAME_MAX_LENGTH:
            raise UserValidationError(f"Name cannot be more than {NAME_MAX_LENGTH} characters")

        password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        with self._lock:
            if self._find_by_email(email):
                raise UserExistsError("User already exists")
            now = self._now()
            user = {
                "id": uuid.uuid4().hex,
                "name": name,
                "email": email,
                "password_hash": password_hash,
                "recording_time_used": 0,
                "recording_time_limit": DEFAULT_RECORDING_TIME_LIMIT,
                "beta_user": True,
                "subscription": "free",
                "subscription_status": "active",
                "created_at": now,
                "updated_at": now,
            }
            self._write_json(self._user_path(user["id"]), user)
        self._logger.info("User registered: id=%s", user["id"])
        return user

    def authenticate(self, email: str, password: str) -> Optional[dict]:
        email = (email or "").strip().lower()
        if not email or not password:
            return None
        with self._lock:
            user = self._find_by_email(email)
        if not user or not user.get("password_hash"):
            return None
        if not bcrypt.checkpw(password.encode("utf-8"), user["password_hash"].encode("utf-8")):
            self._logger.info("Login rejected: id=%s", user["id"])
            return None
        return user

    def get(self, user_id: str) -> Optional[dict]:
        if not self._safe_id(user_id):
            return None
        with self._lock:
            data = self._read_json(self._user_path(user_id), None)
        return data if isinstance(data, dict) else None

    def set_recording_time_used(self, user_id: str, seconds: int) -> Optional[dict]:
        with self._lock:
            user = self.get(user_id)
            if user is None:
                return None
            seconds = max(0, int(seconds))
            if user.get("recording_time_used") != seconds:
                user["recording_time_used"] = seconds
                user["updated_at"] = self._now()
                self._write_json(self._user_path(user_id), user)
            return user

    def track_usage(self, user_id: str, service: str, duration: float) -> dict:
        if service not in USAGE_SERVICES:
            raise UserValidationError(
                f"Invalid service {service!r}; expected one of {', '.join(USAGE_SERVICES)}"
            )
        try:
            duration = float(duration)
        except (TypeError, ValueError) as exc:
            raise UserValidationError("duration must be a number of seconds") from exc
        if duration < 0:
            raise UserValidationError("duration must not be negative")
        record = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "service": service,
            "duration": duration,
            "timestamp": self._now(),
        }
        with self._lock:
            path = self._usage_path(user_id)
            records = self._read_json(path, [])
            records.append(record)
            self._write_json(path, records)
        self._logger.info("Usage tracked: user_id=%s service=%s duration=%s", user_id, service, duration)
        return record

    def list_usage(self, user_id: str, service: Optional[str] = None) -> list[dict]:
        with self._lock:
            records = self._read_json(self._usage_path(user_id), [])
        if service:
            records = [record for record in records if record.get("service") == service]
        return records


def recording_time_summary(user: dict, time_used: int) -> dict:
    limit = int(user.get("recording_time_limit") or DEFAULT_RECORDING_TIME_LIMIT)
    return {
        "time_used": time_used,
        "time_limit": limit,
        "remaining_time": max(0, limit - time_used),
        "percentage_used": min(100.0, (time_used / limit) * 100) if limit else 100.0,
    }
