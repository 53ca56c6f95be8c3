"""Runtime configuration for the code-generation coordinator."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class DispatchSettings:
    """Dispatch loop pacing settings."""

    poll_interval_seconds: float = 1.0
    wait_interval_seconds: float = 0.05
    protocol_retry_limit: int = 3


@dataclass(slots=True)
class GeneratorSettings:
    """External command settings for generation, setup and relay."""

    setup_command: tuple[str, ...] = ("/bin/sh", "setup_code_gen_hosts.sh")
    script_template: str = "chill_script.{app}.sh"
    ssh_command: tuple[str, ...] = ("ssh",)
    scp_command: tuple[str, ...] = ("scp",)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    local_host: str = ""
    log_dir: Path = Path()
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    generator: GeneratorSettings = field(default_factory=GeneratorSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults matching a stock Harmony install."""

        return cls(
            local_host=os.getenv("HARMONY_CODESERVER_LOCAL_HOST", "").strip()
            or _short_hostname(),
            log_dir=Path(os.getenv("HARMONY_CODESERVER_LOG_DIR", ".")),
            dispatch=DispatchSettings(
                poll_interval_seconds=float(
                    os.getenv("HARMONY_CODESERVER_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                wait_interval_seconds=float(
                    os.getenv("HARMONY_CODESERVER_WAIT_INTERVAL_SECONDS", "0.05"),
                ),
                protocol_retry_limit=int(
                    os.getenv("HARMONY_CODESERVER_PROTOCOL_RETRY_LIMIT", "3"),
                ),
            ),
            generator=GeneratorSettings(
                setup_command=_env_command(
                    "HARMONY_CODESERVER_SETUP_COMMAND",
                    "/bin/sh setup_code_gen_hosts.sh",
                ),
                script_template=os.getenv(
                    "HARMONY_CODESERVER_SCRIPT_TEMPLATE",
                    "chill_script.{app}.sh",
                ),
                ssh_command=_env_command("HARMONY_CODESERVER_SSH_COMMAND", "ssh"),
                scp_command=_env_command("HARMONY_CODESERVER_SCP_COMMAND", "scp"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if pacing or command settings are unusable."""

        if self.dispatch.poll_interval_seconds <= 0:
            raise ValueError("HARMONY_CODESERVER_POLL_INTERVAL_SECONDS must be > 0.")
        if self.dispatch.wait_interval_seconds <= 0:
            raise ValueError("HARMONY_CODESERVER_WAIT_INTERVAL_SECONDS must be > 0.")
        if self.dispatch.protocol_retry_limit <= 0:
            raise ValueError("HARMONY_CODESERVER_PROTOCOL_RETRY_LIMIT must be a positive integer.")
        if not self.generator.setup_command:
            raise ValueError("HARMONY_CODESERVER_SETUP_COMMAND must not be empty.")
        if not self.generator.ssh_command:
            raise ValueError("HARMONY_CODESERVER_SSH_COMMAND must not be empty.")
        if not self.generator.scp_command:
            raise ValueError("HARMONY_CODESERVER_SCP_COMMAND must not be empty.")
        if "{app}" not in self.generator.script_template:
            raise ValueError(
                "HARMONY_CODESERVER_SCRIPT_TEMPLATE must include {app}: "
                f"{self.generator.script_template!r}",
            )


def _env_command(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        raw = default
    return tuple(shlex.split(raw))


def _short_hostname() -> str:
    return socket.gethostname().split(".", 1)[0]
