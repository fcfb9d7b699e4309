from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Iterable, Optional, Union

import httpx
from pydantic import ValidationError

from voice_companion.client.protocol import read_header
from voice_companion.config import ClientConfig
from voice_companion.errors import (
    PipelineError,
    PipelineHTTPError,
    PipelineTimeoutError,
    ProtocolError,
)
from voice_companion.models import AnalyzeResponse, AssessmentReport, Message, ReplyHeader

logger = logging.getLogger(__name__)

PROCESS_AUDIO_PATH = "/process-audio"
GREETING_PATH = "/greeting"
ANALYZE_PATH = "/analyze"

PriorMessage = Union[Message, dict]


class StreamedReply:
    """Header of a streamed response plus the still-open audio body.

    The header is available as soon as the delimiter arrives; audio is read
    lazily by whoever consumes ``reader``. Always ``aclose()`` the reply (or
    use it as an async context manager) so the HTTP response is released.
    """

    def __init__(
        self,
        header: ReplyHeader,
        first_chunk: bytes,
        reader: AsyncIterator[bytes],
        response: Optional[httpx.Response] = None,
    ) -> None:
        self.header = header
        self.first_chunk = first_chunk
        self._reader = reader
        self._response = response
        self._closed = False

    @property
    def reply_text(self) -> str:
        return self.header.text or ""

    @property
    def transcript_text(self) -> str:
        return self.header.transcript or ""

    @property
    def reader(self) -> AsyncIterator[bytes]:
        """Remaining body bytes, positioned right after the first chunk."""
        return self._reader

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            await self._response.aclose()

    async def __aenter__(self) -> "StreamedReply":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @staticmethod
    async def _guarded(reader: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        try:
            async for chunk in reader:
                yield chunk
        except httpx.TimeoutException as exc:
            raise PipelineTimeoutError("Timed out while receiving audio") from exc
        except httpx.HTTPError as exc:
            raise PipelineError(f"Audio stream interrupted: {exc}") from exc


class PipelineClient:
    """Client for the speech-to-text → reply → text-to-speech backend.

    ``submit_turn`` and ``submit_session_start`` return as soon as the JSON
    header line has been parsed, leaving the MP3 body streaming behind it.

    Parameters
    ----------
    config : ClientConfig, optional
        Base URL and timeouts.
    client : httpx.AsyncClient, optional
        Pre-built client (tests pass one with a mock transport). When given,
        its base URL and timeout are used as-is and it is not closed by
        ``aclose``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_sec, connect=self.config.connect_timeout_sec),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "PipelineClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def submit_turn(
        self,
        audio: bytes,
        prior_messages: Iterable[PriorMessage] = (),
        *,
        filename: str = "recording.wav",
        content_type: str = "audio/wav",
    ) -> StreamedReply:
        """Send one utterance plus the conversation so far."""
        history = [m.as_chat() if isinstance(m, Message) else dict(m) for m in prior_messages]
        request = self._client.build_request(
            "POST",
            PROCESS_AUDIO_PATH,
            files={"audio": (filename, audio, content_type)},
            data={"messages": json.dumps(history)},
        )
        logger.info("Submitting turn (%d bytes, %d prior messages)", len(audio), len(history))
        return await self._open_stream(request, "Processing failed")

    async def submit_session_start(self) -> StreamedReply:
        """Ask for the opening remark of a new session."""
        request = self._client.build_request("POST", GREETING_PATH)
        return await self._open_stream(request, "Failed to get greeting")

    async def analyze(self, transcript: str) -> AssessmentReport:
        """Request the structured report for a finished transcript."""
        try:
            response = await self._client.post(ANALYZE_PATH, json={"transcript": transcript})
        except httpx.TimeoutException as exc:
            raise PipelineTimeoutError("Analysis request timed out") from exc
        except httpx.HTTPError as exc:
            raise PipelineError(f"Analysis request failed: {exc}") from exc

        if response.is_error:
            raise PipelineHTTPError(response.status_code, _error_message(response, "Analysis failed"))
        try:
            body = AnalyzeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ProtocolError(f"Malformed analysis response: {exc}") from exc
        if not body.success or body.analysis is None:
            raise PipelineHTTPError(response.status_code, body.error or "Analysis failed")
        return body.analysis

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _open_stream(self, request: httpx.Request, default_error: str) -> StreamedReply:
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise PipelineTimeoutError(f"{default_error}: request timed out") from exc
        except httpx.HTTPError as exc:
            raise PipelineError(f"{default_error}: {exc}") from exc

        try:
            if response.is_error:
                await response.aread()
                raise PipelineHTTPError(response.status_code, _error_message(response, default_error))

            reader = StreamedReply._guarded(response.aiter_bytes())
            header, first_chunk = await read_header(reader)
            try:
                parsed = ReplyHeader.model_validate(header)
            except ValidationError as exc:
                raise ProtocolError(f"Unexpected header fields: {exc}") from exc
        except BaseException:
            await response.aclose()
            raise

        logger.info(
            "Header received (%d chars of reply, %d bytes of audio buffered)",
            len(parsed.text or ""),
            len(first_chunk),
        )
        return StreamedReply(parsed, first_chunk, reader, response)


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default
