from __future__ import annotations

import sys
from pathlib import Path

import allure

from harmony_codeserver.codeserver.endpoint import parse_endpoint
from harmony_codeserver.codeserver.publisher import ResultPublisher
from harmony_codeserver.protocol.codec import encode, read_message_file
from harmony_codeserver.protocol.models import Message, MessageStatus, MessageType, Point

pytestmark = [
    allure.epic("Code Server"),
    allure.feature("Result Publisher"),
]


def _result() -> Message:
    return Message(
        type=MessageType.FETCH,
        point=Point(id=4, values=(8, 0.25, "tile")),
    ).reply(MessageStatus.OK)


def test_without_reply_endpoint_result_stays_in_outbox(tmp_path: Path) -> None:
    publisher = ResultPublisher(outbox=tmp_path, reply=None)

    result = publisher.publish(_result(), 4)

    assert result.local_path == tmp_path / "code_complete.4"
    assert not result.relayed
    assert read_message_file(result.local_path) == _result()


def test_dir_reply_moves_result_with_identical_bytes(tmp_path: Path) -> None:
    outbox = tmp_path / "outbox"
    reply_dir = tmp_path / "reply"
    outbox.mkdir()
    reply_dir.mkdir()
    publisher = ResultPublisher(outbox=outbox, reply=parse_endpoint(f"dir://{reply_dir}"))

    result = publisher.publish(_result(), 4)

    assert result.relayed
    assert not (outbox / "code_complete.4").exists()
    assert (reply_dir / "code_complete.4").read_bytes() == encode(_result())


def test_dir_reply_pointing_at_outbox_is_not_a_relay(tmp_path: Path) -> None:
    publisher = ResultPublisher(outbox=tmp_path, reply=parse_endpoint(f"dir://{tmp_path}"))

    result = publisher.publish(_result(), 1)

    assert not result.relayed
    assert (tmp_path / "code_complete.1").exists()


def test_ssh_reply_copies_with_scp_and_removes_local_copy(tmp_path: Path) -> None:
    outbox = tmp_path / "outbox"
    remote = tmp_path / "remote"
    outbox.mkdir()
    remote.mkdir()
    scp = tmp_path / "fake_scp.py"
    scp.write_text(
        "import shutil, sys\n"
        "args = sys.argv[1:]\n"
        "if args[0] == '-P':\n"
        "    args = args[2:]\n"
        "source, destination = args\n"
        "path = destination.split(':', 1)[1]\n"
        "shutil.copyfile(source, path + '/' + source.rsplit('/', 1)[-1])\n",
        "utf-8",
    )
    publisher = ResultPublisher(
        outbox=outbox,
        reply=parse_endpoint(f"ssh://tuner@server:2200/{remote}"),
        scp_command=(sys.executable, str(scp)),
    )

    result = publisher.publish(_result(), 7)

    assert result.relayed
    assert not (outbox / "code_complete.7").exists()
    assert (remote / "code_complete.7").read_bytes() == encode(_result())


def test_scp_arguments_include_port_and_user(tmp_path: Path) -> None:
    publisher = ResultPublisher(
        outbox=tmp_path,
        reply=parse_endpoint("ssh://tuner@server:2200/results"),
    )

    args = publisher.scp_args(tmp_path / "code_complete.3")

    assert args == [
        "scp",
        "-P",
        "2200",
        str(tmp_path / "code_complete.3"),
        "tuner@server:results",
    ]


def test_scp_arguments_without_port_or_user(tmp_path: Path) -> None:
    publisher = ResultPublisher(outbox=tmp_path, reply=parse_endpoint("ssh://server/results"))

    assert publisher.scp_args(tmp_path / "f") == ["scp", str(tmp_path / "f"), "server:results"]


def test_failed_relay_is_reported_and_keeps_local_result(tmp_path: Path) -> None:
    publisher = ResultPublisher(
        outbox=tmp_path,
        reply=parse_endpoint("ssh://server/results"),
        scp_command=(sys.executable, "-c", "import sys; sys.exit('lost connection')"),
    )

    result = publisher.publish(_result(), 2)

    assert not result.relayed
    assert result.relay_error is not None
    assert "lost connection" in result.relay_error
    assert read_message_file(tmp_path / "code_complete.2") == _result()


def test_missing_scp_binary_is_non_fatal(tmp_path: Path) -> None:
    publisher = ResultPublisher(
        outbox=tmp_path,
        reply=parse_endpoint("ssh://server/results"),
        scp_command=(str(tmp_path / "no-such-scp"),),
    )

    result = publisher.publish(_result(), 0)

    assert not result.relayed
    assert (tmp_path / "code_complete.0").exists()
