"""Connect protocol wire helpers shared by the client and the server.

- Unary calls carry a bare protobuf body (``application/proto``); trailers
  travel as ``trailer-`` prefixed headers and errors as a JSON object.
- Streaming calls carry a sequence of envelopes
  (``application/connect+proto``): a flags byte, a 4-byte big-endian
  length, then the payload.  The final envelope has flag ``0x02`` and a
  JSON ``{"error": ..., "metadata": ...}`` payload with the status and
  trailers.
- ``-bin`` header values are unpadded standard base64.
"""

from __future__ import annotations

import json
import struct
from collections.abc import Iterable, Iterator
from typing import Any

from google.protobuf import any_pb2

from connect_crosstest.codes import Code, code_from_http_status
from connect_crosstest.metadata import Metadata, decode_binary_header, encode_binary_header, is_binary_key
from connect_crosstest.rpc import RpcError

UNARY_CONTENT_TYPE = "application/proto"
STREAM_CONTENT_TYPE = "application/connect+proto"
JSON_CONTENT_TYPE = "application/json"

PROTOCOL_VERSION_HEADER = "connect-protocol-version"
PROTOCOL_VERSION = "1"
TIMEOUT_HEADER = "connect-timeout-ms"
TRAILER_PREFIX = "trailer-"

COMPRESSED_FLAG = 0x01
END_STREAM_FLAG = 0x02

_ENVELOPE_PREFIX = struct.Struct(">BI")
_TYPE_URL_PREFIX = "type.googleapis.com/"

# Headers owned by HTTP or the protocol; never surfaced as call metadata.
_PROTOCOL_HEADERS: frozenset[str] = frozenset(
    {
        "accept",
        "accept-encoding",
        "connection",
        "content-encoding",
        "content-length",
        "content-type",
        "date",
        "host",
        "server",
        "te",
        "transfer-encoding",
        "user-agent",
    }
)


def is_protocol_header(key: str) -> bool:
    """Whether *key* belongs to HTTP or the Connect protocol rather than the application."""
    key = key.lower()
    return key in _PROTOCOL_HEADERS or key.startswith("connect-")


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


def encode_envelope(data: bytes, flags: int = 0) -> bytes:
    """Frame *data* as one envelope."""
    return _ENVELOPE_PREFIX.pack(flags, len(data)) + data


def iter_envelopes(chunks: Iterable[bytes]) -> Iterator[tuple[int, bytes]]:
    """Reassemble ``(flags, payload)`` envelopes from arbitrarily split byte chunks.

    Raises:
        RpcError: ``INTERNAL`` if the input ends inside an envelope, or an
            envelope is compressed.

    """
    buffer = bytearray()
    for chunk in chunks:
        buffer.extend(chunk)
        while len(buffer) >= _ENVELOPE_PREFIX.size:
            flags, length = _ENVELOPE_PREFIX.unpack_from(buffer)
            end = _ENVELOPE_PREFIX.size + length
            if len(buffer) < end:
                break
            if flags & COMPRESSED_FLAG:
                raise RpcError(Code.INTERNAL, "received a compressed message but no compression was negotiated")
            payload = bytes(buffer[_ENVELOPE_PREFIX.size : end])
            del buffer[:end]
            yield flags, payload
    if buffer:
        raise RpcError(Code.INTERNAL, f"stream ended inside an envelope ({len(buffer)} bytes left over)")


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


def split_header_value(value: str) -> list[str]:
    """Split a comma-joined header value back into its parts."""
    return [part.strip() for part in value.split(",")]


def metadata_to_headers(md: Metadata | None, *, prefix: str = "") -> list[tuple[str, str]]:
    """Convert metadata to HTTP header pairs, base64-encoding ``-bin`` values."""
    if not md:
        return []
    headers: list[tuple[str, str]] = []
    for key, value in md:
        text = encode_binary_header(value) if isinstance(value, bytes) else value
        headers.append((prefix + key, text))
    return headers


def headers_to_metadata(headers: Iterable[tuple[str, str]], *, split_values: bool = False) -> tuple[Metadata, Metadata]:
    """Split HTTP headers into leading metadata and ``trailer-`` prefixed trailers.

    ``-bin`` values are split on commas and decoded; other values are split
    only when *split_values* is set.

    Raises:
        ValueError: If a ``-bin`` value is not valid base64.

    """
    leading = Metadata()
    trailing = Metadata()
    for raw_key, raw_value in headers:
        key = raw_key.lower()
        target = leading
        if key.startswith(TRAILER_PREFIX):
            key = key[len(TRAILER_PREFIX) :]
            target = trailing
        elif is_protocol_header(key):
            continue
        if is_binary_key(key):
            for part in split_header_value(raw_value):
                target.add(key, decode_binary_header(part))
        elif split_values:
            for part in split_header_value(raw_value):
                target.add(key, part)
        else:
            target.add(key, raw_value)
    return leading, trailing


def parse_timeout(value: str | None) -> float | None:
    """Parse a ``Connect-Timeout-Ms`` value into seconds.

    Raises:
        RpcError: ``INVALID_ARGUMENT`` for a malformed value.

    """
    if value is None or value == "":
        return None
    if not value.isdigit() or len(value) > 10:
        raise RpcError(Code.INVALID_ARGUMENT, f"invalid {TIMEOUT_HEADER} header: {value!r}")
    return int(value) / 1000


def format_timeout(seconds: float) -> str:
    """Format *seconds* as a ``Connect-Timeout-Ms`` value (at least 1)."""
    return str(max(1, round(seconds * 1000)))


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def error_to_json(err: RpcError) -> dict[str, Any]:
    """Build the Connect JSON error object for *err*."""
    obj: dict[str, Any] = {"code": err.code.connect_name}
    if err.message:
        obj["message"] = err.message
    if err.details:
        obj["details"] = [
            {"type": d.type_url.removeprefix(_TYPE_URL_PREFIX), "value": encode_binary_header(d.value)}
            for d in err.details
        ]
    return obj


def error_from_json(
    obj: Any,
    *,
    http_status: int | None = None,
    headers: Metadata | None = None,
    trailers: Metadata | None = None,
) -> RpcError:
    """Rebuild an :class:`RpcError` from a Connect JSON error object.

    A missing or unreadable ``code`` falls back to the HTTP status mapping
    (or ``UNKNOWN`` inside an end-stream message).
    """
    if not isinstance(obj, dict):
        obj = {}
    name = obj.get("code")
    if isinstance(name, str):
        code = Code.from_connect_name(name)
    elif http_status is not None:
        code = code_from_http_status(http_status)
    else:
        code = Code.UNKNOWN
    message = obj.get("message")
    details: list[any_pb2.Any] = []
    for item in obj.get("details") or ():
        try:
            details.append(
                any_pb2.Any(type_url=_TYPE_URL_PREFIX + item["type"], value=decode_binary_header(item["value"]))
            )
        except (KeyError, TypeError, ValueError):
            continue
    return RpcError(
        code,
        message if isinstance(message, str) else "",
        details,
        headers=headers,
        trailers=trailers,
    )


def encode_end_stream(err: RpcError | None, trailers: Metadata) -> bytes:
    """Build the end-stream envelope carrying the final status and trailers."""
    obj: dict[str, Any] = {}
    if err is not None:
        obj["error"] = error_to_json(err)
    if trailers:
        metadata: dict[str, list[str]] = {}
        for key, value in metadata_to_headers(trailers):
            metadata.setdefault(key, []).append(value)
        obj["metadata"] = metadata
    return encode_envelope(json.dumps(obj, ensure_ascii=False).encode(), END_STREAM_FLAG)


def decode_end_stream(payload: bytes, headers: Metadata) -> tuple[RpcError | None, Metadata]:
    """Parse an end-stream payload into ``(error or None, trailers)``.

    Raises:
        RpcError: ``INTERNAL`` if the payload is not a JSON object.

    """
    try:
        obj = json.loads(payload) if payload else {}
    except ValueError as exc:
        raise RpcError(Code.INTERNAL, f"malformed end-stream message: {exc}") from exc
    if not isinstance(obj, dict):
        raise RpcError(Code.INTERNAL, "malformed end-stream message: not an object")
    trailers = Metadata()
    for key, values in (obj.get("metadata") or {}).items():
        key = key.lower()
        for value in values:
            if is_binary_key(key):
                for part in split_header_value(value):
                    trailers.add(key, decode_binary_header(part))
            else:
                trailers.add(key, value)
    error = obj.get("error")
    if error is None:
        return None, trailers
    return error_from_json(error, headers=headers, trailers=trailers), trailers
