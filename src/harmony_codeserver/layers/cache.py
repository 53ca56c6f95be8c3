"""Point caching/replay layer.

Records point/performance pairs as they are reported.  When the search later
proposes a point that is already known, :meth:`PointCache.generate` returns
the recorded performance so the point never reaches a generator or client.

The cache may be seeded from a point-logger file, one record per line::

    Point #12: ( 4, 0.500000[0x1p-1], "unroll" ) => ( 1.250000[0x1.4p+0] )

Reals carry their exact hexadecimal form in brackets.  Strings are double
quoted with backslash escapes.  Lines not starting with ``P`` are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from harmony_codeserver.codeserver.errors import CodeServerError
from harmony_codeserver.protocol.models import Point, Scalar, ValueType, value_type_of

logger = logging.getLogger(__name__)

_PointKey = tuple[tuple[ValueType, Scalar], ...]


class CacheLogError(CodeServerError, ValueError):
    """Point-logger file could not be parsed."""


@dataclass(frozen=True, slots=True)
class CacheHit:
    """Recorded performance returned instead of evaluating a point."""

    perf: tuple[float, ...]


class PointCache:
    """In-memory lookup-or-pass-through cache keyed by typed point values."""

    def __init__(self) -> None:
        self._entries: dict[_PointKey, tuple[float, ...]] = {}
        self._skip_next = False

    def __len__(self) -> int:
        return len(self._entries)

    def generate(self, point: Point) -> CacheHit | None:
        """Return the recorded performance, or None to pass the point on."""

        perf = self._entries.get(_key(point.values))
        if perf is None:
            return None
        self._skip_next = True
        return CacheHit(perf=perf)

    def analyze(self, point: Point, perf: tuple[float, ...]) -> None:
        """Record an observed pair unless it came from a cache hit."""

        if self._skip_next:
            self._skip_next = False
            return
        self._entries.setdefault(_key(point.values), tuple(perf))

    def load_log(self, path: Path) -> int:
        """Seed the cache from a point-logger file and return the records loaded."""

        loaded = 0
        with path.open(encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                stripped = line.strip()
                if not stripped.startswith("P"):
                    continue
                values, perf = _parse_record(stripped, line_no)
                self._entries.setdefault(_key(values), perf)
                loaded += 1
        logger.info("Loaded %d cached points from %s", loaded, path)
        return loaded


def parse_point_values(text: str) -> tuple[Scalar, ...]:
    """Parse a comma separated value list written in point-logger notation."""

    scanner = _Scanner(text, line_no=0)
    values = scanner.values(terminator=None)
    scanner.end()
    return values


def _key(values: tuple[Scalar, ...]) -> _PointKey:
    return tuple((value_type_of(value), value) for value in values)


def _parse_record(line: str, line_no: int) -> tuple[tuple[Scalar, ...], tuple[float, ...]]:
    scanner = _Scanner(line, line_no=line_no)
    scanner.literal("Point")
    scanner.literal("#")
    scanner.integer()
    scanner.literal(":")
    scanner.literal("(")
    values = scanner.values(terminator=")")
    scanner.literal(")")
    scanner.literal("=>")
    scanner.literal("(")
    perf = scanner.values(terminator=")")
    scanner.literal(")")
    # anything after the closing parenthesis is ignored

    perf_reals: list[float] = []
    for value in perf:
        if isinstance(value, str):
            raise CacheLogError(f"Line {line_no}: performance values must be numeric.")
        perf_reals.append(float(value))
    return values, tuple(perf_reals)


class _Scanner:
    def __init__(self, text: str, *, line_no: int) -> None:
        self.text = text
        self.pos = 0
        self.line_no = line_no

    def fail(self, reason: str) -> CacheLogError:
        return CacheLogError(f"Line {self.line_no}, column {self.pos + 1}: {reason}")

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def peek(self) -> str:
        self.skip_ws()
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def literal(self, expected: str) -> None:
        self.skip_ws()
        if not self.text.startswith(expected, self.pos):
            raise self.fail(f"expected {expected!r}")
        self.pos += len(expected)

    def end(self) -> None:
        if self.peek():
            raise self.fail("unexpected trailing text")

    def integer(self) -> int:
        token = self._token()
        try:
            return int(token)
        except ValueError as error:
            raise self.fail(f"invalid integer {token!r}") from error

    def values(self, *, terminator: str | None) -> tuple[Scalar, ...]:
        values: list[Scalar] = []
        if self.peek() == (terminator or ""):
            return ()
        while True:
            values.append(self.value())
            if self.peek() != ",":
                return tuple(values)
            self.pos += 1

    def value(self) -> Scalar:
        if self.peek() == '"':
            return self._quoted()
        token = self._token()
        if not token:
            raise self.fail("missing value")
        if "[" in token:
            if not token.endswith("]"):
                raise self.fail(f"unterminated exact real {token!r}")
            exact = token[token.index("[") + 1 : -1]
            try:
                return float.fromhex(exact)
            except ValueError as error:
                raise self.fail(f"invalid hexadecimal real {exact!r}") from error
        try:
            return int(token)
        except ValueError:
            pass
        try:
            return float(token)
        except ValueError as error:
            raise self.fail(f"invalid value {token!r}") from error

    def _token(self) -> str:
        self.skip_ws()
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in ",():\" \t":
            self.pos += 1
        return self.text[start : self.pos]

    def _quoted(self) -> str:
        self.pos += 1
        chars: list[str] = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            self.pos += 1
            if char == "\\":
                if self.pos >= len(self.text):
                    break
                chars.append(self.text[self.pos])
                self.pos += 1
                continue
            if char == '"':
                return "".join(chars)
            chars.append(char)
        raise self.fail("unterminated string value")
