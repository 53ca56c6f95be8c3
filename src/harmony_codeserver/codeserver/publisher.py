"""Write result envelopes to the outbox and relay them to the reply endpoint."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from harmony_codeserver.codeserver.endpoint import Endpoint, EndpointScheme
from harmony_codeserver.codeserver.errors import RelayError
from harmony_codeserver.codeserver.inbox import result_path
from harmony_codeserver.protocol.codec import write_message_file
from harmony_codeserver.protocol.models import Message

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PublishResult:
    """Where a result ended up."""

    local_path: Path
    relayed: bool
    relay_error: str | None = None


class ResultPublisher:
    """Emits ``code_complete.<step>`` files for one session."""

    def __init__(
        self,
        *,
        outbox: Path,
        reply: Endpoint | None,
        scp_command: tuple[str, ...] = ("scp",),
    ) -> None:
        self.outbox = outbox
        self.reply = reply
        self.scp_command = scp_command

    def publish(self, message: Message, step: int) -> PublishResult:
        """Write ``message`` for ``step``; relay failures are logged, not raised."""

        path = result_path(self.outbox, step)
        write_message_file(path, message)
        logger.debug("Wrote result for step %d to %s", step, path)

        if self.reply is None or self._reply_is_outbox():
            return PublishResult(local_path=path, relayed=False)

        try:
            self._relay(path)
        except RelayError as error:
            logger.warning("Could not relay %s to %s: %s", path.name, self.reply, error)
            return PublishResult(local_path=path, relayed=False, relay_error=str(error))

        path.unlink(missing_ok=True)
        logger.debug("Relayed %s to %s", path.name, self.reply)
        return PublishResult(local_path=path, relayed=True)

    def scp_args(self, path: Path) -> list[str]:
        if self.reply is None:
            raise RelayError("No reply endpoint configured.")
        args = list(self.scp_command)
        if self.reply.port:
            args.extend(["-P", self.reply.port])
        args.extend([str(path), self.reply.scp_destination()])
        return args

    def _reply_is_outbox(self) -> bool:
        if self.reply is None or self.reply.scheme is not EndpointScheme.DIR:
            return False
        return Path(self.reply.path).resolve() == self.outbox.resolve()

    def _relay(self, path: Path) -> None:
        if self.reply is None:
            raise RelayError("No reply endpoint configured.")
        if self.reply.scheme is EndpointScheme.DIR:
            try:
                shutil.copyfile(path, Path(self.reply.path) / path.name)
            except OSError as error:
                raise RelayError(str(error)) from error
            return

        args = self.scp_args(path)
        try:
            completed = subprocess.run(  # noqa: S603
                args,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as error:
            raise RelayError(f"{args[0]} failed to start: {error}") from error
        if completed.returncode != 0:
            detail = completed.stderr.strip() or f"exit code {completed.returncode}"
            raise RelayError(f"{args[0]} failed: {detail}")
