from __future__ import annotations

import logging

import requests

from meetscribe.services.speech.base import SpeechServiceError, SpeechStreamConfig

# Tokens issued by the STS endpoint are valid for ten minutes.
TOKEN_TTL_SECONDS = 600


class SpeechTokenIssuer:
    """Exchanges the subscription key for a short-lived client token."""

    def __init__(self, timeout: int = 10) -> None:
        self._timeout = timeout
        self._logger = logging.getLogger("meetscribe.speech.token")

    @staticmethod
    def token_url(region: str) -> str:
        return f"https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"

    def issue(self, config: SpeechStreamConfig) -> dict:
        try:
            response = requests.post(
                self.token_url(config.region),
                headers={
                    "Ocp-Apim-Subscription-Key": config.key,
                    "Content-Length": "0",
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise SpeechServiceError("Failed to reach speech token service") from exc

        if response.status_code != 200:
            self._logger.warning("Speech token request failed: status=%s", response.status_code)
            raise SpeechServiceError(f"Speech token error: {response.status_code}")

        token = response.text.strip()
        if not token:
            raise SpeechServiceError("Speech token service returned an empty token")
        return {
            "token": token,
            "expires_in": TOKEN_TTL_SECONDS,
            **config.public_dict(),
        }
