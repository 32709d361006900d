import json
import logging
import os
import secrets
import threading
from typing import Any

DEFAULT_AUTOSAVE_INTERVAL_SECONDS = 30.0


class ConfigStore:
    """Reads and writes ``config.json`` on demand.

    Values are never cached, so edits made while the server runs take effect
    on the next request.
    """

    def __init__(self, config_path: str) -> None:
        self._config_path = config_path
        self._lock = threading.Lock()
        self._logger = logging.getLogger("meetscribe.config")

    @property
    def path(self) -> str:
        return self._config_path

    def read(self) -> dict:
        """Read config from file, returning empty dict if not found."""
        if not os.path.exists(self._config_path):
            return {}
        with open(self._config_path, "r", encoding="utf-8") as config_file:
            data = json.load(config_file)
        return data if isinstance(data, dict) else {}

    def write(self, data: dict) -> None:
        with self._lock:
            os.makedirs(os.path.dirname(self._config_path) or ".", exist_ok=True)
            temp_path = f"{self._config_path}.tmp"
            with open(temp_path, "w", encoding="utf-8") as config_file:
                json.dump(data, config_file, indent=2)
            os.replace(temp_path, self._config_path)

    def section(self, name: str) -> dict:
        value = self.read().get(name, {})
        return value if isinstance(value, dict) else {}

    def get(self, section: str, key: str, default: Any = None) -> Any:
        return self.section(section).get(key, default)

    def autosave_interval(self) -> float:
        raw = self.get("recording", "autosave_interval_seconds", DEFAULT_AUTOSAVE_INTERVAL_SECONDS)
        try:
            interval = float(raw)
        except (TypeError, ValueError):
            self._logger.warning("Invalid autosave_interval_seconds=%r, using default", raw)
            return DEFAULT_AUTOSAVE_INTERVAL_SECONDS
        return interval if interval > 0 else DEFAULT_AUTOSAVE_INTERVAL_SECONDS

    def session_secret(self) -> str:
        """Return the cookie-signing secret, generating one on first boot."""
        env_secret = os.environ.get("MEETSCRIBE_SESSION_SECRET")
        if env_secret:
            return env_secret
        data = self.read()
        auth = data.get("auth", {}) if isinstance(data.get("auth"), dict) else {}
        secret = auth.get("session_secret")
        if secret:
            return secret
        secret = secrets.token_urlsafe(48)
        auth["session_secret"] = secret
        data["auth"] = auth
        self.write(data)
        self._logger.info("Generated new session secret in %s", self._config_path)
        return secret
