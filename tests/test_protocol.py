import pytest

from voice_companion.client.protocol import encode_header, iter_audio, read_header
from voice_companion.errors import EmptyResponseError, ProtocolError

from conftest import iter_chunks

HEADER = encode_header({"text": "hi", "transcript": "yo"})
PAYLOAD = b"ID3\x04\x00\n\n\xff\xfbsome-mp3-frames"
BODY = HEADER + PAYLOAD


async def _read_all(chunks):
    source = iter_chunks(chunks)
    header, first = await read_header(source)
    rest = b"".join([c async for c in iter_audio(first, source)])
    return header, rest


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "split_at",
    [
        3,  # inside the JSON
        len(HEADER) - 1,  # right before the delimiter
        len(HEADER),  # right after the delimiter
        len(HEADER) + 5,  # inside the payload
    ],
)
async def test_header_split_across_chunks(split_at):
    header, audio = await _read_all([BODY[:split_at], BODY[split_at:]])
    assert header == {"text": "hi", "transcript": "yo"}
    assert audio == PAYLOAD


@pytest.mark.asyncio
async def test_one_byte_chunks():
    chunks = [BODY[i : i + 1] for i in range(len(BODY))]
    header, audio = await _read_all(chunks)
    assert header["text"] == "hi"
    assert audio == PAYLOAD


@pytest.mark.asyncio
async def test_newlines_inside_text_are_escaped():
    body = encode_header({"text": "line one\nline two"}) + b"mp3"
    header, audio = await _read_all([body])
    assert header["text"] == "line one\nline two"
    assert audio == b"mp3"


@pytest.mark.asyncio
async def test_non_ascii_header():
    header, _ = await _read_all([encode_header({"text": "Schön, danke"})])
    assert header["text"] == "Schön, danke"


@pytest.mark.asyncio
async def test_header_without_delimiter_is_header_only():
    header, audio = await _read_all([b'{"text": "", ', b'"transcript": ""}'])
    assert header == {"text": "", "transcript": ""}
    assert audio == b""


@pytest.mark.asyncio
async def test_empty_body():
    with pytest.raises(EmptyResponseError):
        await read_header(iter_chunks([]))


@pytest.mark.asyncio
async def test_invalid_json_header():
    with pytest.raises(ProtocolError):
        await read_header(iter_chunks([b"<html>oops\n"]))


@pytest.mark.asyncio
async def test_header_must_be_an_object():
    with pytest.raises(ProtocolError):
        await read_header(iter_chunks([b"[1, 2]\nmp3"]))


@pytest.mark.asyncio
async def test_runaway_header_is_rejected():
    with pytest.raises(ProtocolError):
        await read_header(iter_chunks([b"x" * 64] * 4), max_header_bytes=100)
