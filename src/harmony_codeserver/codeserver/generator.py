"""Launch external code-generation commands for worker slots."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import PurePosixPath

from harmony_codeserver.codeserver.endpoint import Endpoint
from harmony_codeserver.codeserver.errors import WorkerLaunchError
from harmony_codeserver.config import GeneratorSettings
from harmony_codeserver.protocol.models import Point

logger = logging.getLogger(__name__)
generation_logger = logging.getLogger("harmony_codeserver.generation")


@dataclass(slots=True)
class GenerationRequest:
    """Inputs required to generate code for one point on one slot."""

    slot_name: str
    app_name: str
    slave_path: str
    local_host: str
    target: Endpoint
    point: Point

    @property
    def logical_host(self) -> str:
        return self.slot_name.split("_", 1)[0]

    @property
    def is_local(self) -> bool:
        return self.logical_host == self.local_host

    @property
    def workdir(self) -> str:
        return str(PurePosixPath(self.slave_path) / f"{self.slot_name}_{self.app_name}")


@dataclass(slots=True)
class GenerationCommand:
    """Resolved argument list plus the facts it was built from."""

    argv: list[str]
    remote: bool
    script: str
    workdir: str


def build_command(request: GenerationRequest, settings: GeneratorSettings) -> GenerationCommand:
    """Build the argument list for the per-application generation script.

    The script receives ``<values> <logical_host> <workdir> <target_host>
    <target_path>``.  Remote slots go through ssh, which joins its arguments
    into a single remote shell line, so each remote word is quoted there and
    only there.
    """

    workdir = request.workdir
    script = str(PurePosixPath(workdir) / settings.script_template.format(app=request.app_name))
    script_args = [
        request.point.render(),
        request.logical_host,
        workdir,
        request.target.host,
        request.target.path,
    ]

    if request.is_local:
        return GenerationCommand(
            argv=[script, *script_args],
            remote=False,
            script=script,
            workdir=workdir,
        )

    remote_line = " ".join(["exec", *(shlex.quote(word) for word in [script, *script_args])])
    return GenerationCommand(
        argv=[*settings.ssh_command, request.logical_host, remote_line],
        remote=True,
        script=script,
        workdir=workdir,
    )


class GeneratorLauncher:
    """Starts one generation process per dispatched point."""

    def __init__(self, settings: GeneratorSettings) -> None:
        self.settings = settings

    def launch(self, request: GenerationRequest) -> subprocess.Popen[bytes]:
        command = build_command(request, self.settings)
        generation_logger.info("%s: %s", request.slot_name, request.point.render())
        logger.info(
            "Executing (%s): %s",
            "remote" if command.remote else "local",
            shlex.join(command.argv),
        )
        try:
            return subprocess.Popen(  # noqa: S603
                command.argv,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as error:
            raise WorkerLaunchError(
                f"Generation command not found for {request.slot_name}: {command.argv[0]}",
            ) from error
        except OSError as error:
            raise WorkerLaunchError(
                f"Generation command failed to start for {request.slot_name}: {error}",
            ) from error


def terminate_process(process: subprocess.Popen[bytes], *, grace_seconds: float = 2.0) -> None:
    """Stop a generation process; SIGKILL it if SIGTERM is ignored for ``grace_seconds``."""

    if process.poll() is not None:
        return
    try:
        process.terminate()
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("Generator pid %d ignored SIGTERM; killing it.", process.pid)
        process.kill()
        process.wait()
    except ProcessLookupError:
        # exited between poll() and terminate()
        return
