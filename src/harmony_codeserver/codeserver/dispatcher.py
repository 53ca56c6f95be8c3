"""Control loop that feeds queued points to generator slots."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from harmony_codeserver.codeserver.bootstrap import SessionBootstrapper, SessionConfig
from harmony_codeserver.codeserver.errors import (
    ConfigurationError,
    RegistryExhausted,
    WorkerFailedError,
)
from harmony_codeserver.codeserver.generator import (
    GenerationRequest,
    GeneratorLauncher,
    generation_logger,
    terminate_process,
)
from harmony_codeserver.codeserver.inbox import clear_inbox, init_path, is_ready, point_path
from harmony_codeserver.codeserver.registry import WorkerSlot
from harmony_codeserver.config import Settings
from harmony_codeserver.protocol.codec import ProtocolError, read_message_file
from harmony_codeserver.protocol.models import MessageStatus

logger = logging.getLogger(__name__)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class DispatchState(str, Enum):
    """Coordinator lifecycle states."""

    AWAITING_INIT = "awaiting_init"
    RUNNING = "running"
    TERMINATED = "terminated"


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate loop counters for CLI reporting."""

    dispatched: int = 0
    completed: int = 0
    sessions: int = 0
    rejected_sessions: int = 0
    protocol_errors: int = 0
    idle_polls: int = 0

    def add(self, other: DispatchSummary) -> None:
        self.dispatched += other.dispatched
        self.completed += other.completed
        self.sessions += other.sessions
        self.rejected_sessions += other.rejected_sessions
        self.protocol_errors += other.protocol_errors
        self.idle_polls += other.idle_polls


class DispatchLoop:
    """Owns the session context, the worker registry and the step counter.

    Every cycle reaps finished workers without blocking, then handles at most
    one inbox event: a new initialization file or the point file for the
    current step.  When a dispatch fills the last free slot the loop blocks
    until exactly one worker exits, which is the only admission control.
    """

    def __init__(
        self,
        *,
        inbox: Path,
        settings: Settings,
        bootstrapper: SessionBootstrapper | None = None,
        launcher: GeneratorLauncher | None = None,
    ) -> None:
        self.inbox = inbox
        self.settings = settings
        self.bootstrapper = bootstrapper or SessionBootstrapper(inbox=inbox, settings=settings)
        self.launcher = launcher or GeneratorLauncher(settings.generator)
        self.state = DispatchState.AWAITING_INIT
        self.session: SessionConfig | None = None
        self.step = 0
        self._protocol_failures = 0
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def prepare(self) -> None:
        """Drop point files left over from an earlier run."""

        clear_inbox(self.inbox)
        logger.info("Waiting to hear from harmony server in %s", self.inbox)

    def run_once(self) -> DispatchSummary:
        """Run one cycle: reap, then handle at most one inbox event."""

        summary = DispatchSummary()
        if self.state is DispatchState.TERMINATED:
            raise RuntimeError("Dispatch loop was terminated by a fatal error.")

        try:
            summary.completed += self.reap_finished()

            init_file = init_path(self.inbox)
            if is_ready(init_file):
                self._start_session(init_file, summary)
                return summary

            next_file = point_path(self.inbox, self.step)
            if not is_ready(next_file):
                summary.idle_polls = 1
                return summary

            self._dispatch(next_file, summary)
            return summary
        except Exception:
            self.abort()
            raise

    def run_loop(
        self,
        *,
        max_steps: int | None = None,
        max_idle_polls: int | None = None,
    ) -> DispatchSummary:
        """Run until stopped, or until the optional step/idle limits are reached.

        Args:
            max_steps: Stop after dispatching this many points (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = poll forever).

        Limited runs wait for in-flight workers before returning; a stop
        request terminates them instead.
        """

        aggregate = DispatchSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_steps is not None and aggregate.dispatched >= max_steps:
                    break

                summary = self.run_once()
                aggregate.add(summary)

                if summary.idle_polls:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                    self._sleep_with_stop(self.settings.dispatch.poll_interval_seconds)
                    continue
                consecutive_idle = 0

            if self._stop_requested:
                logger.warning("Stop requested (%s); terminating workers.", self._stop_signal_name)
                self.shutdown()
            else:
                try:
                    aggregate.completed += self.drain()
                except Exception:
                    self.abort()
                    raise
        return aggregate

    def reap_finished(self) -> int:
        """Collect every worker that has already exited, without blocking."""

        if self.session is None:
            return 0
        reaped = 0
        for slot in self.session.registry.busy():
            exit_code = _poll(slot)
            if exit_code is not None:
                self._complete(slot, exit_code)
                reaped += 1
        return reaped

    def wait_for_any(self) -> int:
        """Block until exactly one worker exits and reap it."""

        if self.session is None:
            return 0
        while not self._stop_requested:
            busy = self.session.registry.busy()
            if not busy:
                return 0
            for slot in busy:
                exit_code = _poll(slot)
                if exit_code is not None:
                    self._complete(slot, exit_code)
                    return 1
            time.sleep(self.settings.dispatch.wait_interval_seconds)
        return 0

    def drain(self) -> int:
        """Wait for every in-flight worker to finish."""

        reaped = 0
        while self.session is not None and self.session.registry.busy():
            completed = self.wait_for_any()
            if completed == 0:
                break
            reaped += completed
        return reaped

    def shutdown(self) -> None:
        """Terminate running workers and forget the session."""

        self._discard_session()
        self.bootstrapper.close()

    def abort(self) -> None:
        """Fatal path: stop every worker and refuse further cycles."""

        self.shutdown()
        self.state = DispatchState.TERMINATED

    def request_stop(self, signal_name: str = "request") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name

    def _start_session(self, init_file: Path, summary: DispatchSummary) -> None:
        logger.info("Harmony initialization file found.")
        self._discard_session()
        try:
            self.session = self.bootstrapper.bootstrap(init_file)
        except (ConfigurationError, ProtocolError) as error:
            logger.error("Removing invalid configuration file: %s", error)
            summary.rejected_sessions += 1
            return
        finally:
            init_file.unlink(missing_ok=True)

        self.state = DispatchState.RUNNING
        summary.sessions += 1
        logger.info(
            "Beginning new code server session for %s with %d slots.",
            self.session.app_name,
            len(self.session.registry),
        )

    def _dispatch(self, next_file: Path, summary: DispatchSummary) -> None:
        started = time.monotonic()
        session = self.session
        if session is None:
            raise RegistryExhausted(
                f"Point file {next_file.name} arrived before a session was initialized.",
            )
        slot = session.registry.first_free()
        if slot is None:
            raise RegistryExhausted(f"Generator registry overflow at step {self.step}.")

        try:
            message = read_message_file(next_file)
            if message.point is None:
                raise ProtocolError(f"{next_file.name} carries no point.")
        except ProtocolError as error:
            self._protocol_failures += 1
            if self._protocol_failures >= self.settings.dispatch.protocol_retry_limit:
                raise ProtocolError(
                    f"Giving up on {next_file.name} after "
                    f"{self._protocol_failures} attempts: {error}",
                ) from error
            logger.warning("Could not read %s, will retry: %s", next_file.name, error)
            summary.protocol_errors += 1
            summary.idle_polls = 1
            return
        self._protocol_failures = 0

        process = self.launcher.launch(
            GenerationRequest(
                slot_name=slot.hostname,
                app_name=session.app_name,
                slave_path=session.slave_path,
                local_host=session.local_host,
                target=session.target_endpoint,
                point=message.point,
            ),
        )
        slot.assign(process=process, step=self.step, message=message, point_path=next_file)
        summary.dispatched += 1
        logger.info("Step %d dispatched to %s (pid %d)", self.step, slot.hostname, slot.pid)

        if session.registry.free_count() == 0:
            logger.debug("All generators busy; waiting for one to finish.")
            summary.completed += self.wait_for_any()

        generation_logger.info(
            "Total time for iteration %d : %.6f",
            self.step,
            time.monotonic() - started,
        )
        self.step += 1

    def _complete(self, slot: WorkerSlot, exit_code: int) -> None:
        session = self.session
        if session is None or slot.message is None:
            raise RuntimeError(f"Slot {slot.hostname} finished without an active job.")
        generation_logger.info("%s: returned %d", slot.hostname, exit_code)
        if exit_code != 0:
            raise WorkerFailedError(slot.hostname, slot.step, exit_code)

        session.publisher.publish(slot.message.reply(MessageStatus.OK), slot.step)
        consumed = slot.point_path
        logger.info("Step %d complete on %s", slot.step, slot.hostname)
        slot.clear()
        if consumed is not None:
            consumed.unlink(missing_ok=True)

    def _discard_session(self) -> None:
        self.step = 0
        self._protocol_failures = 0
        if self.session is None:
            return
        for slot in self.session.registry.busy():
            if slot.process is not None:
                logger.warning(
                    "Terminating %s (pid %d) running step %d",
                    slot.hostname,
                    slot.pid,
                    slot.step,
                )
                terminate_process(slot.process)
            slot.clear()
        self.session = None
        self.state = DispatchState.AWAITING_INIT

    def _sleep_with_stop(self, seconds: float) -> None:
        # sleeps in wait-interval slices; a stop request ends the wait early
        deadline = time.monotonic() + seconds
        tick = self.settings.dispatch.wait_interval_seconds
        while not self._stop_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(tick, remaining))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        """Turn SIGINT/SIGTERM into a stop request for the duration of a run."""

        def _request_stop(signum: int, _: object | None) -> None:
            self.request_stop(signal.Signals(signum).name)

        previous: dict[signal.Signals, object] = {}
        try:
            for signum in _STOP_SIGNALS:
                previous[signum] = signal.signal(signum, _request_stop)
        except ValueError:
            # not the main thread; the caller stops the loop through request_stop()
            logger.debug("Stop signals not installed outside the main thread.")
        try:
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)


def _poll(slot: WorkerSlot) -> int | None:
    if slot.process is None:
        return None
    return slot.process.poll()
