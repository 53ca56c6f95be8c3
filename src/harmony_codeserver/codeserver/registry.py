"""Worker slots and the host-list grammar that produces them."""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from harmony_codeserver.codeserver.errors import InvalidWorkerSpec
from harmony_codeserver.protocol.models import Message

logger = logging.getLogger(__name__)

_ENTRY_RE = re.compile(r"^\s*(?P<host>\S+)\s+(?P<count>[+-]?\d+)\s*$")


@dataclass(slots=True)
class WorkerSlot:
    """One unit of generation capacity bound to a host."""

    hostname: str
    process: subprocess.Popen[bytes] | None = None
    step: int = -1
    message: Message | None = None
    point_path: Path | None = None

    @property
    def logical_host(self) -> str:
        """Host name with the slot suffix stripped (``node7_2`` -> ``node7``)."""

        return self.hostname.split("_", 1)[0]

    @property
    def is_free(self) -> bool:
        return self.process is None

    @property
    def pid(self) -> int:
        return self.process.pid if self.process is not None else 0

    def assign(
        self,
        *,
        process: subprocess.Popen[bytes],
        step: int,
        message: Message,
        point_path: Path,
    ) -> None:
        if self.process is not None:
            raise RuntimeError(f"Slot {self.hostname} already runs step {self.step}.")
        self.process = process
        self.step = step
        self.message = message
        self.point_path = point_path

    def clear(self) -> None:
        self.process = None
        self.step = -1
        self.message = None
        self.point_path = None


class WorkerRegistry:
    """Ordered, fixed-size sequence of worker slots for one session."""

    def __init__(self, slots: list[WorkerSlot]) -> None:
        self._slots = tuple(slots)

    def __iter__(self) -> Iterator[WorkerSlot]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def hostnames(self) -> list[str]:
        return [slot.hostname for slot in self._slots]

    def first_free(self) -> WorkerSlot | None:
        """First free slot in registry order, not load balanced."""

        for slot in self._slots:
            if slot.is_free:
                return slot
        return None

    def free_count(self) -> int:
        return sum(1 for slot in self._slots if slot.is_free)

    def busy(self) -> list[WorkerSlot]:
        return [slot for slot in self._slots if not slot.is_free]


def parse_worker_spec(spec: str) -> WorkerRegistry:
    """Expand ``"alpha 2, beta 1"`` into slots ``alpha_1, alpha_2, beta_1``.

    Parsing is all-or-nothing: any malformed entry raises
    :class:`InvalidWorkerSpec` and no slots are returned.
    """

    if not spec or not spec.strip():
        raise InvalidWorkerSpec("Worker host list is empty.")

    slots: list[WorkerSlot] = []
    for entry in spec.split(","):
        match = _ENTRY_RE.match(entry)
        if match is None:
            raise InvalidWorkerSpec(f"Error parsing worker host list entry {entry!r} in {spec!r}")
        count = int(match.group("count"))
        if count <= 0:
            raise InvalidWorkerSpec(
                f"Worker count must be a positive integer, got {count} for "
                f"{match.group('host')!r} in {spec!r}",
            )
        host = match.group("host")
        slots.extend(WorkerSlot(hostname=f"{host}_{index}") for index in range(1, count + 1))

    logger.debug("Parsed worker host list %r into %d slots", spec, len(slots))
    return WorkerRegistry(slots)
