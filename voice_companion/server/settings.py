from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


class Settings:
    """
    Backend configuration.

    Values are read once from environment variables (a ``.env`` file is
    honoured) and exposed as properties.
    """

    def __init__(self) -> None:
        self._openai_api_key = os.getenv("OPENAI_API_KEY")
        self._openai_base_url = os.getenv("OPENAI_BASE_URL") or None
        self._chat_model = os.getenv("VOICE_COMPANION_CHAT_MODEL", "gpt-5-mini")
        self._analysis_model = os.getenv("VOICE_COMPANION_ANALYSIS_MODEL", "gpt-5.2")
        self._transcription_model = os.getenv("VOICE_COMPANION_STT_MODEL", "whisper-1")
        self._speech_model = os.getenv("VOICE_COMPANION_TTS_MODEL", "tts-1")
        self._voice = os.getenv("VOICE_COMPANION_TTS_VOICE", "onyx")
        self._speech_speed = float(os.getenv("VOICE_COMPANION_TTS_SPEED", "0.95"))
        self._language = os.getenv("VOICE_COMPANION_LANGUAGE", "en")
        self._host = os.getenv("VOICE_COMPANION_HOST", "127.0.0.1")
        self._port = int(os.getenv("VOICE_COMPANION_PORT", "8000"))

    # ------------------------------------------------------------------
    # OpenAI
    # ------------------------------------------------------------------

    @property
    def openai_api_key(self) -> str:
        if not self._openai_api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set. Please export it in your environment "
                "or define it in a .env file."
            )
        return self._openai_api_key

    @property
    def openai_base_url(self) -> Optional[str]:
        return self._openai_base_url

    @property
    def chat_model(self) -> str:
        return self._chat_model

    @property
    def analysis_model(self) -> str:
        return self._analysis_model

    @property
    def transcription_model(self) -> str:
        return self._transcription_model

    @property
    def speech_model(self) -> str:
        return self._speech_model

    @property
    def voice(self) -> str:
        return self._voice

    @property
    def speech_speed(self) -> float:
        return self._speech_speed

    @property
    def language(self) -> str:
        return self._language

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port


settings = Settings()
