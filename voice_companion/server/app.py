"""
FastAPI backend for the voice companion.

Routes:

- POST /greeting       -> ``{"text"}\\n`` + MP3, the opening question
- POST /process-audio  -> ``{"text","transcript"}\\n`` + MP3, one full turn
                          (transcribe, reply, synthesize) in a single request
- POST /analyze        -> JSON structured report for a finished transcript

Every failure is answered with ``{"error": str, "success": false}``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from voice_companion.client.protocol import encode_header
from voice_companion.models import AnalyzeRequest, AssessmentReport, ChatMessage

from .prompts import ASSESSMENT_GREETING_USER_PROMPT, ASSESSMENT_SYSTEM_PROMPT
from .providers import SpeechProviders

logger = logging.getLogger(__name__)

FALLBACK_GREETING = "How has your day been so far? I'd love to hear about it."
FALLBACK_REPLY = "I apologize, I had trouble understanding. Could you please repeat that?"

GREETING_MAX_TOKENS = 150
REPLY_MAX_TOKENS = 300

STREAM_HEADERS = {"Cache-Control": "no-cache"}
STREAM_MEDIA_TYPE = "application/octet-stream"


def error_response(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse({"error": message, "success": False}, status_code=status_code)


async def stream_reply(header: Dict[str, Any], speech: AsyncIterator[bytes]) -> StreamingResponse:
    """Header line first, then the synthesized audio as it arrives.

    The first audio chunk is fetched before the response starts so that a
    failing speech provider still produces a JSON error response.
    """
    try:
        first = await speech.__anext__()
    except StopAsyncIteration:
        first = b""

    async def body() -> AsyncIterator[bytes]:
        yield encode_header(header)
        if first:
            yield first
        async for chunk in speech:
            yield chunk

    return StreamingResponse(body(), media_type=STREAM_MEDIA_TYPE, headers=STREAM_HEADERS)


def create_app(providers: Optional[SpeechProviders] = None) -> FastAPI:
    """Build the application around ``providers`` (OpenAI by default)."""
    if providers is None:
        from .providers import OpenAIProviders

        providers = OpenAIProviders()

    app = FastAPI(title="Voice Companion")
    app.state.providers = providers
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(
                {"error": "Not Found", "path": request.url.path, "success": False}, status_code=404
            )
        return error_response(str(exc.detail), exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0].get("msg", "validation failed") if errors else "validation failed"
        return error_response(f"Invalid request: {detail}", 400)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("API error on %s", request.url.path)
        return error_response("Internal Server Error")

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------
    @app.post("/greeting")
    async def greeting(request: Request):
        p: SpeechProviders = request.app.state.providers
        try:
            text = await p.complete(
                [
                    {"role": "system", "content": ASSESSMENT_SYSTEM_PROMPT},
                    {"role": "user", "content": ASSESSMENT_GREETING_USER_PROMPT},
                ],
                GREETING_MAX_TOKENS,
            )
            text = text or FALLBACK_GREETING
            return await stream_reply({"text": text}, p.speech(text))
        except Exception as exc:
            logger.exception("Greeting error")
            return error_response(str(exc) or "Failed to get greeting")

    @app.post("/process-audio")
    async def process_audio(
        request: Request,
        audio: Optional[UploadFile] = File(None),
        messages: Optional[str] = Form(None),
    ):
        p: SpeechProviders = request.app.state.providers
        if audio is None:
            return error_response("No audio file provided", 400)
        try:
            history = _parse_history(messages)
        except (ValueError, ValidationError) as exc:
            return error_response(f"Invalid messages payload: {exc}", 400)

        try:
            data = await audio.read()
            transcript = await p.transcribe(data, audio.filename or "recording.wav")
            if not transcript.strip():
                # Nothing was said; no reply, no audio.
                return Response(
                    encode_header({"text": "", "transcript": ""}), media_type=STREAM_MEDIA_TYPE
                )

            conversation = [{"role": "system", "content": ASSESSMENT_SYSTEM_PROMPT}]
            conversation.extend(m.model_dump() for m in history)
            conversation.append({"role": "user", "content": transcript})
            text = await p.complete(conversation, REPLY_MAX_TOKENS) or FALLBACK_REPLY
            logger.info("Turn: %r -> %r", transcript[:60], text[:60])
            return await stream_reply({"text": text, "transcript": transcript}, p.speech(text))
        except Exception as exc:
            logger.exception("Process-audio error")
            return error_response(str(exc) or "Processing failed")

    @app.post("/analyze")
    async def analyze(request: Request, body: AnalyzeRequest):
        p: SpeechProviders = request.app.state.providers
        try:
            raw = await p.analyze(body.transcript)
            report = AssessmentReport.model_validate(raw)
        except ValidationError as exc:
            logger.error("Analysis did not match the report schema: %s", exc)
            return error_response("Analysis did not match the report schema")
        except Exception as exc:
            logger.exception("Analysis error")
            return error_response(str(exc) or "Analysis failed")
        return {"success": True, "analysis": report.model_dump()}

    return app


def _parse_history(raw: Optional[str]) -> List[ChatMessage]:
    if not raw:
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        raise ValueError("messages must be a JSON array")
    return [ChatMessage.model_validate(m) for m in parsed]
