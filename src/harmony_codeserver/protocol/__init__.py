"""Harmony message envelope and payload model."""

from harmony_codeserver.protocol.codec import (
    ProtocolError,
    decode,
    encode,
    read_message,
    read_message_file,
    recv_message,
    send_message,
    write_message,
    write_message_file,
)
from harmony_codeserver.protocol.models import (
    Message,
    MessageStatus,
    MessageType,
    Point,
    SessionPayload,
)

__all__ = [
    "Message",
    "MessageStatus",
    "MessageType",
    "Point",
    "ProtocolError",
    "SessionPayload",
    "decode",
    "encode",
    "read_message",
    "read_message_file",
    "recv_message",
    "send_message",
    "write_message",
    "write_message_file",
]
