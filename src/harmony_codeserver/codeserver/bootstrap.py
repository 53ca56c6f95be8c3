"""Turn an initialization envelope into a ready session."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from harmony_codeserver.codeserver.endpoint import (
    Endpoint,
    parse_endpoint,
    parse_optional_endpoint,
)
from harmony_codeserver.codeserver.errors import (
    ConfigurationError,
    MissingConfigKey,
    SetupStepFailed,
)
from harmony_codeserver.codeserver.generator import generation_logger
from harmony_codeserver.codeserver.inbox import INIT_STEP, clear_inbox
from harmony_codeserver.codeserver.publisher import ResultPublisher
from harmony_codeserver.codeserver.registry import WorkerRegistry, parse_worker_spec
from harmony_codeserver.config import Settings
from harmony_codeserver.protocol.codec import read_message_file
from harmony_codeserver.protocol.models import Message, MessageStatus, SessionPayload

logger = logging.getLogger(__name__)

CFGKEY_SERVER_URL = "SERVER_URL"
CFGKEY_TARGET_URL = "TARGET_URL"
CFGKEY_REPLY_URL = "REPLY_URL"
CFGKEY_SLAVE_LIST = "SLAVE_LIST"
CFGKEY_SLAVE_PATH = "SLAVE_PATH"


@dataclass(slots=True)
class SessionConfig:
    """Read-only session state built from one initialization message."""

    app_name: str
    slave_path: str
    local_host: str
    local_endpoint: Endpoint
    target_endpoint: Endpoint
    reply_endpoint: Endpoint | None
    registry: WorkerRegistry
    publisher: ResultPublisher
    init_message: Message


class SessionBootstrapper:
    """Handles the one-time ``candidate.-1`` message of a tuning session."""

    def __init__(self, *, inbox: Path, settings: Settings) -> None:
        self.inbox = inbox
        self.settings = settings
        self._log_handler: logging.Handler | None = None

    def bootstrap(self, init_file: Path) -> SessionConfig:
        """Parse, prepare hosts and acknowledge; raises on any configuration error.

        Points queued for the previous session are dropped first, so a rejected
        message leaves an empty queue behind.
        """

        clear_inbox(self.inbox)
        message = read_message_file(init_file)
        if message.session is None:
            raise ConfigurationError("Initialization message carries no session payload.")
        payload = message.session
        if not payload.name.strip():
            raise ConfigurationError("Initialization message has an empty application name.")

        local_endpoint = parse_endpoint(_required(payload, CFGKEY_SERVER_URL))
        target_endpoint = parse_endpoint(_required(payload, CFGKEY_TARGET_URL))
        reply_endpoint = parse_optional_endpoint(payload.get(CFGKEY_REPLY_URL))
        registry = parse_worker_spec(_required(payload, CFGKEY_SLAVE_LIST))
        slave_path = _required(payload, CFGKEY_SLAVE_PATH)

        session = SessionConfig(
            app_name=payload.name,
            slave_path=slave_path,
            local_host=local_endpoint.host or self.settings.local_host,
            local_endpoint=local_endpoint,
            target_endpoint=target_endpoint,
            reply_endpoint=reply_endpoint,
            registry=registry,
            publisher=ResultPublisher(
                outbox=self.inbox,
                reply=reply_endpoint,
                scp_command=self.settings.generator.scp_command,
            ),
            init_message=message,
        )

        self._attach_generation_log(session.app_name)
        logger.info("Generating code for: %s", session.app_name)
        generation_logger.info("-------------------------------------------")
        generation_logger.info("The list of available machines: %s", " ".join(registry.hostnames))

        try:
            self._run_setup(session)
        except SetupStepFailed:
            self.close()
            raise

        session.publisher.publish(message.reply(MessageStatus.OK), INIT_STEP)
        logger.info("Session initialized. Ready to generate code.")
        return session

    def close(self) -> None:
        if self._log_handler is not None:
            generation_logger.removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    def _run_setup(self, session: SessionConfig) -> None:
        args = [
            *self.settings.generator.setup_command,
            session.app_name,
            session.slave_path,
            session.local_host,
            *session.registry.hostnames,
        ]
        logger.info("Preparing generator hosts: %s", shlex.join(args))
        try:
            completed = subprocess.run(args, stdin=subprocess.DEVNULL, check=False)  # noqa: S603
        except OSError as error:
            raise SetupStepFailed(f"Setup command failed to start: {error}") from error
        if completed.returncode != 0:
            raise SetupStepFailed(
                f"Setup command exited with {completed.returncode}: {shlex.join(args)}",
            )

    def _attach_generation_log(self, app_name: str) -> None:
        self.close()
        log_dir = self.settings.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / f"generation.{app_name}.log", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        generation_logger.addHandler(handler)
        generation_logger.setLevel(logging.INFO)
        self._log_handler = handler


def _required(payload: SessionPayload, key: str) -> str:
    value = payload.get(key)
    if value is None or not value.strip():
        raise MissingConfigKey(key)
    return value.strip()
