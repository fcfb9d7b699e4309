"""
Streamed response codec shared by the client and the backend.

A body is ``<UTF-8 JSON object>`` + ``\\n`` + ``<raw MP3 bytes>``. The split
is the first 0x0A byte; standard JSON escaping guarantees the header never
contains a raw newline. There is no length prefix, so the reader buffers
across chunk boundaries until the delimiter shows up.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, Tuple

from voice_companion.errors import EmptyResponseError, ProtocolError

DELIMITER = b"\n"
MAX_HEADER_BYTES = 1 << 20


def encode_header(payload: Dict[str, Any]) -> bytes:
    """Serialize the header line, delimiter included."""
    return json.dumps(payload, ensure_ascii=False).encode("utf-8") + DELIMITER


def decode_header(raw: bytes) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"Header is not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Header is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ProtocolError("Header must be a JSON object")
    return parsed


async def read_header(
    chunks: AsyncIterator[bytes], *, max_header_bytes: int = MAX_HEADER_BYTES
) -> Tuple[Dict[str, Any], bytes]:
    """Consume ``chunks`` up to and including the delimiter.

    Returns the parsed header and whatever audio bytes followed the delimiter
    in the same chunk. ``chunks`` is left positioned right after that chunk,
    so the caller keeps reading audio from it.

    A stream that ends without a delimiter is parsed as a bare header (no
    audio); an empty stream raises ``EmptyResponseError``.
    """
    pending = bytearray()
    while True:
        try:
            chunk = await chunks.__anext__()
        except StopAsyncIteration:
            break
        idx = chunk.find(DELIMITER)
        if idx == -1:
            pending += chunk
            if len(pending) > max_header_bytes:
                raise ProtocolError(f"No header delimiter within {max_header_bytes} bytes")
            continue
        pending += chunk[:idx]
        return decode_header(bytes(pending)), bytes(chunk[idx + 1 :])

    if not pending:
        raise EmptyResponseError("Response has no body")
    return decode_header(bytes(pending)), b""


async def iter_audio(first_chunk: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Yield the already-buffered first slice, then everything left in ``rest``."""
    if first_chunk:
        yield first_chunk
    async for chunk in rest:
        if chunk:
            yield chunk
