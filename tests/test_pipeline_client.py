import json

import httpx
import pytest

from voice_companion.client.pipeline import PipelineClient
from voice_companion.client.protocol import iter_audio
from voice_companion.errors import (
    EmptyResponseError,
    PipelineError,
    PipelineHTTPError,
    PipelineTimeoutError,
    ProtocolError,
)
from voice_companion.models import Message, Role

from conftest import REPORT


async def _stream(chunks):
    for chunk in chunks:
        yield chunk


def _client(handler) -> PipelineClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return PipelineClient(client=http)


@pytest.mark.asyncio
async def test_submit_turn_streams_header_then_audio():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.content
        chunks = [b'{"text": "h', b'i", "transcript": "yo"}', b"\nID", b"3abc"]
        return httpx.Response(200, content=_stream(chunks))

    client = _client(handler)
    prior = [Message(Role.ASSISTANT, "How are you?")]
    async with await client.submit_turn(b"RIFFwav", prior) as reply:
        assert reply.reply_text == "hi"
        assert reply.transcript_text == "yo"
        audio = b"".join([c async for c in iter_audio(reply.first_chunk, reply.reader)])

    assert audio == b"ID3abc"
    assert seen["path"] == "/process-audio"
    assert b'name="audio"; filename="recording.wav"' in seen["body"]
    assert b"RIFFwav" in seen["body"]
    assert json.dumps([{"role": "assistant", "content": "How are you?"}]).encode() in seen["body"]


@pytest.mark.asyncio
async def test_greeting_header_only():
    def handler(request):
        assert request.url.path == "/greeting"
        return httpx.Response(200, content=b'{"text": "Hello there"}\n')

    reply = await _client(handler).submit_session_start()
    assert reply.reply_text == "Hello there"
    assert reply.transcript_text == ""
    assert [c async for c in iter_audio(reply.first_chunk, reply.reader)] == []
    await reply.aclose()


@pytest.mark.asyncio
async def test_error_status_uses_error_field():
    def handler(request):
        return httpx.Response(500, json={"error": "Failed to transcribe", "success": False})

    with pytest.raises(PipelineHTTPError) as info:
        await _client(handler).submit_turn(b"RIFF")
    assert info.value.status_code == 500
    assert str(info.value) == "Failed to transcribe"


@pytest.mark.asyncio
async def test_error_status_without_json_falls_back_to_default():
    def handler(request):
        return httpx.Response(502, content=b"Bad Gateway")

    with pytest.raises(PipelineHTTPError) as info:
        await _client(handler).submit_session_start()
    assert str(info.value) == "Failed to get greeting"


@pytest.mark.asyncio
async def test_empty_body_is_reported():
    def handler(request):
        return httpx.Response(200, content=b"")

    with pytest.raises(EmptyResponseError):
        await _client(handler).submit_turn(b"RIFF")


@pytest.mark.asyncio
async def test_non_json_header_is_a_protocol_error():
    def handler(request):
        return httpx.Response(200, content=b"<html></html>\n")

    with pytest.raises(ProtocolError):
        await _client(handler).submit_turn(b"RIFF")


@pytest.mark.asyncio
async def test_connect_timeout_maps_to_pipeline_timeout():
    def handler(request):
        raise httpx.ConnectTimeout("too slow", request=request)

    with pytest.raises(PipelineTimeoutError):
        await _client(handler).submit_turn(b"RIFF")


@pytest.mark.asyncio
async def test_connection_error_maps_to_pipeline_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PipelineError):
        await _client(handler).submit_session_start()


@pytest.mark.asyncio
async def test_stall_mid_audio_surfaces_as_timeout():
    async def stalling():
        yield b'{"text": "ok"}\nID3'
        raise httpx.ReadTimeout("stalled")

    def handler(request):
        return httpx.Response(200, content=stalling())

    reply = await _client(handler).submit_turn(b"RIFF")
    received = []
    with pytest.raises(PipelineTimeoutError):
        async for chunk in iter_audio(reply.first_chunk, reply.reader):
            received.append(chunk)
    assert received == [b"ID3"]
    await reply.aclose()


@pytest.mark.asyncio
async def test_analyze_returns_report():
    def handler(request):
        assert json.loads(request.content) == {"transcript": "User: hi"}
        return httpx.Response(200, json={"success": True, "analysis": REPORT})

    report = await _client(handler).analyze("User: hi")
    assert report.overallSeverity == "normal"
    assert report.attention.concerns == ["Lost the thread once"]


@pytest.mark.asyncio
async def test_analyze_failure():
    def handler(request):
        return httpx.Response(500, json={"success": False, "error": "Analysis failed"})

    with pytest.raises(PipelineHTTPError, match="Analysis failed"):
        await _client(handler).analyze("User: hi")


@pytest.mark.asyncio
async def test_analyze_malformed_report():
    bad = dict(REPORT, overallSeverity="catastrophic")

    def handler(request):
        return httpx.Response(200, json={"success": True, "analysis": bad})

    with pytest.raises(ProtocolError):
        await _client(handler).analyze("User: hi")
