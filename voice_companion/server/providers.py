"""
Speech, chat and analysis providers used by the backend routes.

The routes only see the ``SpeechProviders`` protocol; ``OpenAIProviders`` is
the production implementation.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Protocol

from openai import AsyncOpenAI

from .prompts import ANALYSIS_SYSTEM_MESSAGE, get_analysis_prompt
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class SpeechProviders(Protocol):
    async def transcribe(self, audio: bytes, filename: str) -> str:
        ...

    async def complete(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        ...

    def speech(self, text: str) -> AsyncIterator[bytes]:
        """Synthesized MP3 for ``text``, streamed as it is produced."""
        ...

    async def analyze(self, transcript: str) -> Dict[str, Any]:
        ...


class OpenAIProviders:
    """Whisper transcription, chat completions and TTS through the OpenAI API."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        self.settings = settings or default_settings
        self._client = client or AsyncOpenAI(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
        )

    async def transcribe(self, audio: bytes, filename: str) -> str:
        start = time.time()
        result = await self._client.audio.transcriptions.create(
            file=(filename, audio),
            model=self.settings.transcription_model,
            language=self.settings.language,
            response_format="text",
        )
        text = result if isinstance(result, str) else getattr(result, "text", str(result))
        logger.info("Transcribed %d bytes in %.0f ms", len(audio), (time.time() - start) * 1000)
        return text.strip()

    async def complete(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        start = time.time()
        completion = await self._client.chat.completions.create(
            model=self.settings.chat_model,
            messages=messages,
            max_completion_tokens=max_tokens,
        )
        logger.info("Chat completion in %.0f ms", (time.time() - start) * 1000)
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()

    async def speech(self, text: str) -> AsyncIterator[bytes]:
        async with self._client.audio.speech.with_streaming_response.create(
            model=self.settings.speech_model,
            voice=self.settings.voice,
            input=text,
            speed=self.settings.speech_speed,
            response_format="mp3",
        ) as response:
            async for chunk in response.iter_bytes():
                yield chunk

    async def analyze(self, transcript: str) -> Dict[str, Any]:
        completion = await self._client.chat.completions.create(
            model=self.settings.analysis_model,
            messages=[
                {"role": "system", "content": ANALYSIS_SYSTEM_MESSAGE},
                {"role": "user", "content": get_analysis_prompt(transcript)},
            ],
            max_completion_tokens=1000,
            response_format={"type": "json_object"},
        )
        content = completion.choices[0].message.content if completion.choices else None
        return json.loads(content or "{}")
