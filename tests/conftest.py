"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
import textwrap
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from harmony_codeserver.codeserver.generator import GenerationRequest
from harmony_codeserver.codeserver.inbox import init_path, point_path
from harmony_codeserver.config import DispatchSettings, GeneratorSettings, Settings
from harmony_codeserver.protocol.codec import write_message_file
from harmony_codeserver.protocol.models import (
    Message,
    MessageType,
    Point,
    Scalar,
    SessionPayload,
)

_GENERATOR_SCRIPT = textwrap.dedent(
    """\
    import os
    import sys
    from pathlib import Path

    values, host, workdir, target_host, target_path = sys.argv[1:6]
    record = Path(os.environ["HARMONY_TEST_RECORD"])
    with record.open("a", encoding="utf-8") as handle:
        handle.write(f"begin {values}|{host}|{workdir}|{target_host}|{target_path}\\n")
    with record.open("a", encoding="utf-8") as handle:
        handle.write(f"end {values}\\n")
    sys.exit(int(os.environ.get("HARMONY_TEST_EXIT_CODE", "0")))
    """,
)

_SETUP_SCRIPT = textwrap.dedent(
    """\
    import os
    import sys
    from pathlib import Path

    app, slave_path, local_host, *slots = sys.argv[1:]
    generator = os.environ["HARMONY_TEST_GENERATOR"]
    with open(os.environ["HARMONY_TEST_SETUP_RECORD"], "a", encoding="utf-8") as handle:
        handle.write(" ".join(sys.argv[1:]) + "\\n")
    for slot in slots:
        workdir = Path(slave_path) / f"{slot}_{app}"
        workdir.mkdir(parents=True, exist_ok=True)
        script = workdir / f"chill_script.{app}.sh"
        script.write_text(
            f'#!/bin/sh\\nexec "{sys.executable}" "{generator}" "$@"\\n',
            encoding="utf-8",
        )
        script.chmod(0o755)
    """,
)

_FAKE_SCP_SCRIPT = textwrap.dedent(
    """\
    import shutil
    import sys

    args = sys.argv[1:]
    if args[:1] == ["-P"]:
        args = args[2:]
    source, destination = args
    _, _, path = destination.partition(":")
    shutil.copyfile(source, path + "/" + source.rsplit("/", 1)[-1])
    """,
)


@dataclass(slots=True)
class CodegenLayout:
    """Directories and scripts used by tests that run real processes."""

    root: Path
    inbox: Path
    slave_path: Path
    target: Path
    record: Path
    setup_record: Path
    setup_script: Path
    scp_script: Path

    def recorded(self) -> list[str]:
        if not self.record.exists():
            return []
        return self.record.read_text("utf-8").splitlines()


@pytest.fixture()
def codegen_layout(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CodegenLayout:
    """Inbox, slave directory and stand-in generation/setup/scp scripts."""

    inbox = tmp_path / "inbox"
    slave_path = tmp_path / "slaves"
    target = tmp_path / "target"
    scripts = tmp_path / "scripts"
    for directory in (inbox, slave_path, target, scripts):
        directory.mkdir()

    generator = scripts / "generator.py"
    generator.write_text(_GENERATOR_SCRIPT, "utf-8")
    setup_script = scripts / "setup_code_gen_hosts.py"
    setup_script.write_text(_SETUP_SCRIPT, "utf-8")
    scp_script = scripts / "fake_scp.py"
    scp_script.write_text(_FAKE_SCP_SCRIPT, "utf-8")

    layout = CodegenLayout(
        root=tmp_path,
        inbox=inbox,
        slave_path=slave_path,
        target=target,
        record=tmp_path / "record.log",
        setup_record=tmp_path / "setup.log",
        setup_script=setup_script,
        scp_script=scp_script,
    )
    monkeypatch.setenv("HARMONY_TEST_RECORD", str(layout.record))
    monkeypatch.setenv("HARMONY_TEST_SETUP_RECORD", str(layout.setup_record))
    monkeypatch.setenv("HARMONY_TEST_GENERATOR", str(generator))
    monkeypatch.delenv("HARMONY_TEST_EXIT_CODE", raising=False)
    return layout


@pytest.fixture()
def settings(codegen_layout: CodegenLayout) -> Settings:
    """Fast-polling settings wired to the stand-in scripts."""

    return Settings(
        local_host="fallback-host",
        log_dir=codegen_layout.root / "logs",
        dispatch=DispatchSettings(
            poll_interval_seconds=0.01,
            wait_interval_seconds=0.005,
            protocol_retry_limit=3,
        ),
        generator=GeneratorSettings(
            setup_command=(sys.executable, str(codegen_layout.setup_script)),
            scp_command=(sys.executable, str(codegen_layout.scp_script)),
        ),
    )


@pytest.fixture()
def make_init_message(codegen_layout: CodegenLayout) -> Callable[..., Message]:
    """Build a session message; keys named in ``omit`` are left out."""

    def _make(
        *,
        app: str = "gemm",
        server_url: str | None = None,
        target_url: str | None = None,
        reply_url: str | None = None,
        slave_list: str | None = "local 1",
        slave_path: str | None = None,
        omit: tuple[str, ...] = (),
    ) -> Message:
        config = {
            "SERVER_URL": server_url or f"ssh://local/{codegen_layout.inbox}",
            "TARGET_URL": target_url or f"dir://{codegen_layout.target}",
            "SLAVE_LIST": slave_list,
            "SLAVE_PATH": slave_path or str(codegen_layout.slave_path),
        }
        if reply_url is not None:
            config["REPLY_URL"] = reply_url
        return Message(
            type=MessageType.SESSION,
            session=SessionPayload(
                name=app,
                config={
                    key: value
                    for key, value in config.items()
                    if value is not None and key not in omit
                },
            ),
        )

    return _make


@pytest.fixture()
def write_init(codegen_layout: CodegenLayout) -> Callable[[Message], Path]:
    def _write(message: Message) -> Path:
        path = init_path(codegen_layout.inbox)
        write_message_file(path, message)
        return path

    return _write


@pytest.fixture()
def write_point(codegen_layout: CodegenLayout) -> Callable[..., Message]:
    """Drop ``candidate.<step>`` into the inbox and return the message written."""

    def _write(step: int, *values: Scalar) -> Message:
        message = Message(type=MessageType.FETCH, point=Point(id=step, values=values))
        write_message_file(point_path(codegen_layout.inbox, step), message)
        return message

    return _write


@dataclass
class FakeProcess:
    """Popen stand-in that exits after a fixed number of polls."""

    pid: int
    step: int
    events: list[tuple[str, int]]
    polls_until_exit: int = 1
    exit_code: int = 0
    returncode: int | None = None
    terminated: bool = False
    polls: int = 0

    def poll(self) -> int | None:
        if self.returncode is not None:
            return self.returncode
        self.polls += 1
        if self.polls >= self.polls_until_exit:
            self.returncode = self.exit_code
            self.events.append(("exit", self.step))
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.terminate()

    def wait(self, timeout: float | None = None) -> int | None:
        return self.returncode


@dataclass
class FakeLauncher:
    """Launcher stand-in; point ids double as step numbers."""

    polls_until_exit: dict[int, int] = field(default_factory=dict)
    exit_codes: dict[int, int] = field(default_factory=dict)
    events: list[tuple[str, int]] = field(default_factory=list)
    requests: list[GenerationRequest] = field(default_factory=list)
    processes: list[FakeProcess] = field(default_factory=list)

    def launch(self, request: GenerationRequest) -> FakeProcess:
        step = request.point.id
        self.requests.append(request)
        self.events.append(("launch", step))
        process = FakeProcess(
            pid=os.getpid() * 1000 + len(self.processes) + 1,
            step=step,
            events=self.events,
            polls_until_exit=self.polls_until_exit.get(step, 1),
            exit_code=self.exit_codes.get(step, 0),
        )
        self.processes.append(process)
        return process


@pytest.fixture()
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()
