"""Length-prefixed binary envelope shared by file and socket transports.

Layout::

    [magic: u32, network order][length: u16, network order][payload]

``length`` covers the whole envelope, header included.  The payload is a
compact UTF-8 JSON document describing one :class:`Message`.  Nothing here
knows where the bytes come from, so the same functions serve the file queue
and a stream socket.
"""

from __future__ import annotations

import json
import socket
import struct
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from harmony_codeserver.codeserver.errors import CodeServerError
from harmony_codeserver.protocol.models import Message

HARMONY_MAGIC = 0x5261793A  # ASCII "Ray:"
MAX_MESSAGE_SIZE = 0xFFFF

_HEADER = struct.Struct("!IH")
HEADER_SIZE = _HEADER.size


class ProtocolError(CodeServerError):
    """Envelope bytes do not form a valid message."""


def encode(message: Message) -> bytes:
    """Serialize a message into a complete envelope."""

    payload = json.dumps(
        message.to_payload(),
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")
    total = HEADER_SIZE + len(payload)
    if total > MAX_MESSAGE_SIZE:
        raise ProtocolError(
            f"Message too large for envelope: {total} bytes (max {MAX_MESSAGE_SIZE}).",
        )
    return _HEADER.pack(HARMONY_MAGIC, total) + payload


def decode(data: bytes) -> Message:
    """Parse one envelope from the start of ``data``."""

    total = _parse_header(data[:HEADER_SIZE])
    if len(data) < total:
        raise ProtocolError(f"Truncated message: expected {total} bytes, got {len(data)}.")
    return _parse_payload(data[HEADER_SIZE:total])


def read_message(stream: BinaryIO) -> Message:
    """Read exactly one envelope from a binary stream."""

    return _read_with(stream.read)


def write_message(stream: BinaryIO, message: Message) -> int:
    """Write one envelope to a binary stream and return its size."""

    data = encode(message)
    view = memoryview(data)
    while view:
        written = stream.write(view)
        if written is None:
            # raw non-blocking streams may report nothing written yet
            continue
        view = view[written:]
    stream.flush()
    return len(data)


def recv_message(sock: socket.socket) -> Message:
    """Receive exactly one envelope from a connected stream socket."""

    return _read_with(sock.recv)


def send_message(sock: socket.socket, message: Message) -> int:
    """Send one envelope over a connected stream socket."""

    data = encode(message)
    sock.sendall(data)
    return len(data)


def read_message_file(path: Path) -> Message:
    """Decode the message stored in ``path``."""

    with path.open("rb") as handle:
        return read_message(handle)


def write_message_file(path: Path, message: Message) -> int:
    """Encode ``message`` into ``path``, replacing any previous content."""

    with path.open("wb") as handle:
        return write_message(handle, message)


def _read_with(read: Callable[[int], bytes]) -> Message:
    header = _read_exact(read, HEADER_SIZE)
    total = _parse_header(header)
    payload = _read_exact(read, total - HEADER_SIZE)
    return _parse_payload(payload)


def _read_exact(read: Callable[[int], bytes], size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = read(remaining)
        if not chunk:
            raise ProtocolError(
                f"Truncated message: expected {size} bytes, got {size - remaining}.",
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _parse_header(header: bytes) -> int:
    if len(header) < HEADER_SIZE:
        raise ProtocolError(f"Truncated header: got {len(header)} of {HEADER_SIZE} bytes.")
    magic, total = _HEADER.unpack(header)
    if magic != HARMONY_MAGIC:
        raise ProtocolError(f"Bad magic number: 0x{magic:08x}.")
    if total < HEADER_SIZE:
        raise ProtocolError(f"Declared length {total} is shorter than the header.")
    return total


def _parse_payload(payload: bytes) -> Message:
    try:
        raw = json.loads(payload.decode("utf-8"))
        if not isinstance(raw, dict):
            raise TypeError("Expected JSON object payload")
        return Message.from_payload(raw)
    except (
        UnicodeDecodeError,
        ValueError,
        KeyError,
        TypeError,
        AttributeError,
        RecursionError,
    ) as error:
        raise ProtocolError(f"Malformed message payload: {error}") from error
