"""Message model carried inside the Harmony envelope."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

Scalar = int | float | str


class MessageType(str, Enum):
    """Kinds of messages exchanged with the tuning server."""

    SESSION = "session"
    JOIN = "join"
    FETCH = "fetch"
    REPORT = "report"
    BEST = "best"
    RESTART = "restart"


class MessageStatus(str, Enum):
    """Request/reply status field shared by every message type."""

    REQ = "req"
    OK = "ok"
    FAIL = "fail"
    BUSY = "busy"


class ValueType(str, Enum):
    """Wire tags for typed point values."""

    INT = "i"
    REAL = "r"
    STR = "s"


def value_type_of(value: object) -> ValueType:
    """Return the wire tag for a point value, rejecting unsupported types."""

    # bool is an int subclass but has no place in a point
    if isinstance(value, bool):
        raise TypeError(f"Unsupported point value type: {type(value).__name__}")
    if isinstance(value, int):
        return ValueType.INT
    if isinstance(value, float):
        return ValueType.REAL
    if isinstance(value, str):
        return ValueType.STR
    raise TypeError(f"Unsupported point value type: {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class Point:
    """One candidate configuration proposed by the optimizer."""

    id: int
    values: tuple[Scalar, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))
        for value in self.values:
            value_type_of(value)

    def render(self) -> str:
        """Space separated values, as handed to generation scripts."""

        return " ".join(str(value) for value in self.values)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "values": [[value_type_of(value).value, value] for value in self.values],
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> Point:
        _expect(raw, dict, "point")
        values: list[Scalar] = []
        for tag, value in _expect(raw["values"], list, "point values"):
            kind = ValueType(tag)
            if kind is ValueType.INT:
                values.append(int(value))
            elif kind is ValueType.REAL:
                values.append(float(value))
            else:
                if not isinstance(value, str):
                    raise TypeError(f"Expected string point value, got {value!r}")
                values.append(value)
        return cls(id=int(raw["id"]), values=tuple(values))


@dataclass(frozen=True, slots=True)
class SessionPayload:
    """Session name plus the configuration the tuning server hands to satellites."""

    name: str
    config: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.config.get(key)


@dataclass(frozen=True, slots=True)
class Message:
    """Envelope contents; the same type carries a request and its reply."""

    type: MessageType
    status: MessageStatus = MessageStatus.REQ
    dest: int = -1
    src_id: str = ""
    session: SessionPayload | None = None
    point: Point | None = None
    perf: tuple[float, ...] = ()
    error: str | None = None

    def reply(self, status: MessageStatus = MessageStatus.OK, error: str | None = None) -> Message:
        """Return this message with its status flipped to a reply status."""

        return replace(self, status=status, error=error)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "status": self.status.value,
            "dest": self.dest,
            "src_id": self.src_id,
        }
        if self.session is not None:
            payload["session"] = {"name": self.session.name, "config": dict(self.session.config)}
        if self.point is not None:
            payload["point"] = self.point.to_payload()
        if self.perf:
            payload["perf"] = list(self.perf)
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> Message:
        session_raw = raw.get("session")
        point_raw = raw.get("point")
        session = None
        if session_raw is not None:
            _expect(session_raw, dict, "session")
            config = _expect(session_raw["config"], dict, "session config")
            session = SessionPayload(
                name=str(session_raw["name"]),
                config={str(key): str(value) for key, value in config.items()},
            )
        return cls(
            type=MessageType(raw["type"]),
            status=MessageStatus(raw["status"]),
            dest=int(raw.get("dest", -1)),
            src_id=str(raw.get("src_id", "")),
            session=session,
            point=Point.from_payload(point_raw) if point_raw is not None else None,
            perf=tuple(float(value) for value in raw.get("perf", ())),
            error=raw.get("error"),
        )


def _expect(value: Any, kind: type, what: str) -> Any:
    if not isinstance(value, kind):
        raise TypeError(
            f"Expected {what} to be a JSON {kind.__name__}, got {type(value).__name__}",
        )
    return value
